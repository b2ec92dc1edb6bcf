"""
config/database.py
Async SQLAlchemy engine, session factory, and base model.
Uses asyncpg for PostgreSQL in production; aiosqlite works for local runs and tests.

Every ORM SELECT is filtered to kept rows (discarded_at IS NULL) by a single
session hook, see `_filter_discarded`.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, ORMExecuteState, Session, with_loader_criteria

from config.settings import settings


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        return {"echo": settings.DEBUG}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
        "pool_pre_ping": True,       # Detect stale connections
        "pool_recycle": 3600,        # Recycle connections every hour
        "echo": settings.DEBUG,      # Log SQL in debug mode
    }


# ── Engine ────────────────────────────────────────────────────
engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

# ── Session Factory ───────────────────────────────────────────
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,      # Don't expire after commit (async-safe)
    autocommit=False,
    autoflush=False,
)


# ── Base Model ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """All ORM models inherit from this."""
    pass


# ── Kept scope ────────────────────────────────────────────────
@event.listens_for(Session, "do_orm_execute")
def _filter_discarded(execute_state: ORMExecuteState) -> None:
    """
    Attach `discarded_at IS NULL` to every ORM SELECT, relationship loads included.
    Opt out per statement with `.execution_options(include_discarded=True)`.
    """
    from shared.models.models import DiscardMixin

    if (
        execute_state.is_select
        and not execute_state.is_column_load
        and not execute_state.execution_options.get("include_discarded", False)
    ):
        execute_state.statement = execute_state.statement.options(
            with_loader_criteria(
                DiscardMixin,
                lambda cls: cls.discarded_at.is_(None),
                include_aliases=True,
            )
        )


# ── Dependency ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: yields an async database session.
    Auto-commits on success, rolls back on error.

    Usage:
        @router.get("/firms")
        async def list_firms(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager version for use outside of FastAPI routes."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Create all tables. Run during app startup."""
    import shared.models.models  # noqa: F401  (registers mappers)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose engine. Run during app shutdown."""
    await engine.dispose()
