"""
shared/discard.py
Cascading soft delete.

Ownership is declared as static trees of (model, foreign key, children). The
walk is top-down: each level collects the ids of its kept rows, stamps them,
and hands the ids to its children. Already-discarded rows are never touched,
so discarding twice is a no-op.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import CascadeDiscardError
from shared.models.models import (
    Firm,
    Flag,
    LikeDislike,
    Pin,
    PinBalance,
    Post,
    Report,
    Schedule,
    Swipe,
    Trustee,
    User,
    View,
    VisitedLocation,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Owned:
    model: type
    foreign_key: str
    children: Tuple["Owned", ...] = ()


FIRM_TREE: Tuple[Owned, ...] = (
    Owned(Trustee, "firm_id"),
    Owned(Flag, "firm_id"),
    Owned(Schedule, "firm_id"),
    Owned(PinBalance, "firm_id"),
    Owned(
        Post,
        "firm_id",
        (
            Owned(Report, "post_id"),
            Owned(LikeDislike, "post_id"),
            Owned(View, "post_id"),
            Owned(Swipe, "post_id"),
        ),
    ),
    Owned(Pin, "firm_id", (Owned(VisitedLocation, "pin_id"),)),
)

USER_TREE: Tuple[Owned, ...] = (
    Owned(View, "user_id"),
    Owned(Swipe, "user_id"),
    Owned(VisitedLocation, "user_id"),
    Owned(LikeDislike, "user_id"),
    Owned(Report, "user_id"),
)


async def _stamp(db: AsyncSession, model: type, ids: Sequence[int], now: datetime) -> None:
    if not ids:
        return
    await db.execute(
        update(model)
        .where(model.id.in_(ids), model.discarded_at.is_(None))
        .values(discarded_at=now)
        .execution_options(synchronize_session=False)
    )


async def _discard_children(
    db: AsyncSession, tree: Sequence[Owned], parent_ids: List[int], now: datetime
) -> None:
    for node in tree:
        fk = getattr(node.model, node.foreign_key)
        result = await db.execute(select(node.model.id).where(fk.in_(parent_ids)))
        ids = list(result.scalars().all())
        if not ids:
            continue
        await _stamp(db, node.model, ids, now)
        if node.children:
            await _discard_children(db, node.children, ids, now)


async def _discard_tree(db: AsyncSession, root, tree: Sequence[Owned]) -> bool:
    if root.discarded_at is not None:
        return False

    name = type(root).__name__
    # Read before a rollback expires the instance
    root_id = root.id
    now = utcnow()
    try:
        root.discarded_at = now
        await db.flush()
        await _discard_children(db, tree, [root_id], now)
    except SQLAlchemyError as exc:
        logger.error(f"Cascade discard failed for {name} {root_id}: {exc}")
        await db.rollback()
        raise CascadeDiscardError(name, root_id) from exc

    logger.info(f"Discarded {name} {root_id} with its owned records")
    return True


async def discard_firm(db: AsyncSession, firm: Firm) -> bool:
    """Discard a firm and everything it owns. Returns False if it was already discarded."""
    return await _discard_tree(db, firm, FIRM_TREE)


async def discard_user(db: AsyncSession, user: User) -> bool:
    """Discard a user and their activity records."""
    return await _discard_tree(db, user, USER_TREE)


async def discard_record(db: AsyncSession, record) -> bool:
    """Discard a record that owns nothing."""
    return await _discard_tree(db, record, ())
