"""
tasks/celery_app.py
Celery application instance — shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=4
"""

from celery import Celery

from config.settings import settings

celery_app = Celery(
    "pin_platform",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.dynamic_link_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Acknowledge after execution so a dying worker does not lose the task
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Results are only kept for debugging
    result_expires=3600,

    # Link shortener quota
    task_annotations={
        "tasks.dynamic_link_tasks.create_dynamic_link": {"rate_limit": "5/s"},
    },

    task_routes={
        "tasks.dynamic_link_tasks.*": {"queue": "links"},
    },

    worker_prefetch_multiplier=1,

    # Publishing must not hang a request when the broker is down
    broker_connection_timeout=2,
    broker_connection_max_retries=0,
)
