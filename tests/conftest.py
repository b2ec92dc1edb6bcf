"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, HTTP client with overridden
dependencies (DB session, Redis, geocoder), account factories and auth headers.
Celery dispatch is patched out for every test.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-jwt-signing-only")
os.environ.setdefault("APP_ENV", "test")
os.environ["GOOGLE_MAPS_API_KEY"] = ""
os.environ["FIREBASE_WEB_API_KEY"] = ""

import uuid
from datetime import date
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.database import Base, get_db
from config.redis_client import get_redis
from main import app
from shared.models.models import (
    AccountRole,
    Admin,
    Business,
    Firm,
    PinBalance,
    SupportTicket,
    TicketableType,
    User,
)
from shared.utils.geocoding import Coordinates, GeocodingError, get_geocoder
from shared.utils.security import create_access_token, hash_password

ADMIN_PASSWORD = "correct-horse-battery"
ADMIN_PASSWORD_HASH = hash_password(ADMIN_PASSWORD)


def _suffix() -> str:
    return uuid.uuid4().hex[:10]


ROLES = {Admin: AccountRole.ADMIN, Business: AccountRole.BUSINESS, User: AccountRole.USER}


def auth_headers(account) -> dict:
    """Bearer header for any account kind."""
    token, _ = create_access_token(
        account_id=account.id,
        role=ROLES[type(account)].value,
        email=account.email,
    )
    return {"Authorization": f"Bearer {token}"}


async def reload(db: AsyncSession, model, record_id: int, include_discarded: bool = False):
    """Fresh copy of a row as the database sees it now."""
    result = await db.execute(
        select(model)
        .where(model.id == record_id)
        .execution_options(populate_existing=True, include_discarded=include_discarded)
    )
    return result.scalar_one_or_none()


# ── Fakes ─────────────────────────────────────────────────────

class FakeGeocoder:
    """Stands in for the Google geocoder; records every address it is asked for."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.result: Optional[Coordinates] = Coordinates(lat=42.36, lng=-71.06)
        self.error: Optional[Exception] = None
        self.calls: List[str] = []

    async def geocode(self, address: str) -> Optional[Coordinates]:
        self.calls.append(address)
        if self.error:
            raise self.error
        return self.result

    def fail(self, message: str = "provider unavailable") -> None:
        self.error = GeocodingError(message)


# ── Database ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


# ── Collaborators ─────────────────────────────────────────────

@pytest.fixture
def redis_mock():
    redis = MagicMock()
    redis.exists = AsyncMock(return_value=0)
    redis.setex = AsyncMock(return_value=True)
    redis.get = AsyncMock(return_value=None)
    redis.delete = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture(autouse=True)
def dynamic_link_task():
    with patch("services.firm.router.create_dynamic_link") as task:
        yield task


@pytest_asyncio.fixture
async def client(session_factory, redis_mock, geocoder):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis_mock
    app.dependency_overrides[get_geocoder] = lambda: geocoder

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Factories ─────────────────────────────────────────────────

async def make_admin(db: AsyncSession, **overrides) -> Admin:
    n = _suffix()
    fields = dict(
        email=f"admin{n}@example.com",
        username=f"admin{n}",
        name="Console Admin",
        password_hash=ADMIN_PASSWORD_HASH,
    )
    fields.update(overrides)
    admin = Admin(**fields)
    db.add(admin)
    await db.commit()
    return admin


async def make_business(db: AsyncSession, **overrides) -> Business:
    n = _suffix()
    fields = dict(email=f"business{n}@example.com", username=f"business{n}", first_name="Biz", last_name=str(n))
    fields.update(overrides)
    business = Business(**fields)
    db.add(business)
    await db.commit()
    return business


async def make_user(db: AsyncSession, **overrides) -> User:
    n = _suffix()
    fields = dict(
        email=f"user{n}@example.com",
        username=f"user{n}",
        first_name="Pat",
        last_name=f"User{n}",
        birthday=date(1990, 5, 17),
    )
    fields.update(overrides)
    user = User(**fields)
    db.add(user)
    await db.commit()
    return user


async def make_firm(db: AsyncSession, owner: Optional[Business] = None, **overrides) -> Firm:
    if owner is None:
        owner = await make_business(db)
    n = _suffix()
    fields = dict(name=f"Firm {n}", phone_number="1584757364", owner_id=owner.id)
    fields.update(overrides)
    firm = Firm(schedules=[], **fields)
    firm.set_default_schedules()
    db.add(firm)
    await db.commit()
    return firm


async def make_ticket(db: AsyncSession, owner, **overrides) -> SupportTicket:
    fields = dict(
        ticketable_type=TicketableType(type(owner).__name__).value,
        ticketable_id=owner.id,
        query="The map pin does not show up",
    )
    fields.update(overrides)
    ticket = SupportTicket(**fields)
    db.add(ticket)
    await db.commit()
    return ticket


async def add_balance(db: AsyncSession, firm: Firm, amount_in_cents: int, **overrides) -> PinBalance:
    entry = PinBalance(firm_id=firm.id, amount_in_cents=amount_in_cents, **overrides)
    db.add(entry)
    await db.commit()
    return entry


# ── Account fixtures ──────────────────────────────────────────

@pytest_asyncio.fixture
async def admin(db) -> Admin:
    return await make_admin(db)


@pytest_asyncio.fixture
async def admin_headers(admin) -> dict:
    return auth_headers(admin)


@pytest_asyncio.fixture
async def user(db) -> User:
    return await make_user(db)


@pytest_asyncio.fixture
async def business(db) -> Business:
    return await make_business(db)
