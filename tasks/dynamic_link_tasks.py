"""
tasks/dynamic_link_tasks.py
Short share links for records, created through the Firebase Dynamic Links API.

Enqueued after a firm is committed:
    from tasks.dynamic_link_tasks import create_dynamic_link
    create_dynamic_link.delay("Firm", firm.id)

Idempotent per link target: re-running overwrites the stored link with an
equivalent one.
"""

import logging

import httpx
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

SHORT_LINKS_URL = "https://firebasedynamiclinks.googleapis.com/v1/shortLinks"


# ── Helpers ────────────────────────────────────────────────────────────────────

# One engine per worker process, created on first use
_sync_engine = None
SyncSession = sessionmaker()


def _get_sync_engine():
    global _sync_engine
    if _sync_engine is None:
        sync_url = settings.DATABASE_URL.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")
        _sync_engine = create_engine(sync_url, pool_pre_ping=True)
    return _sync_engine


def _get_sync_session():
    """Synchronous SQLAlchemy session (Celery runs sync by default)."""
    return SyncSession(bind=_get_sync_engine())


def _linkable_models() -> dict:
    from shared.models.models import Firm

    return {"Firm": (Firm, "firms")}


def build_link_request(path: str, record_id: int) -> dict:
    return {
        "dynamicLinkInfo": {
            "domainUriPrefix": settings.DYNAMIC_LINK_DOMAIN,
            "link": f"{settings.DYNAMIC_LINK_BASE_URL}/{path}/{record_id}",
        },
        "suffix": {"option": "SHORT"},
    }


def request_short_link(payload: dict, client: httpx.Client) -> str:
    response = client.post(
        SHORT_LINKS_URL,
        params={"key": settings.FIREBASE_WEB_API_KEY},
        json=payload,
    )
    response.raise_for_status()
    return response.json()["shortLink"]


# ── Tasks ──────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def create_dynamic_link(self, class_name: str, record_id: int):
    """Create a short link for a record and store it in its `dynamic_link` column."""
    models = _linkable_models()
    if class_name not in models:
        logger.error(f"create_dynamic_link: unsupported record type {class_name}")
        return
    if not settings.FIREBASE_WEB_API_KEY:
        logger.info(f"create_dynamic_link: no Firebase key configured, skipping {class_name} {record_id}")
        return

    model, path = models[class_name]
    db = _get_sync_session()
    try:
        record = db.execute(select(model).where(model.id == record_id)).scalar_one_or_none()
        if not record:
            logger.warning(f"create_dynamic_link: {class_name} {record_id} not found")
            return

        with httpx.Client(timeout=10.0) as client:
            record.dynamic_link = request_short_link(build_link_request(path, record_id), client)
        db.commit()
        logger.info(f"Dynamic link stored for {class_name} {record_id}: {record.dynamic_link}")

    except (httpx.HTTPError, KeyError) as e:
        db.rollback()
        logger.exception(f"create_dynamic_link failed for {class_name} {record_id}: {e}")
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))
    finally:
        db.close()
