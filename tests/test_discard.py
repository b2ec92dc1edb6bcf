"""
tests/test_discard.py
Tests for cascading soft delete and the kept-only query scope.
"""

from datetime import datetime
from unittest.mock import patch

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shared.discard import _stamp as real_stamp
from shared.discard import discard_firm, discard_record, discard_user
from shared.exceptions import CascadeDiscardError
from shared.models.models import (
    Feature,
    Firm,
    Flag,
    LikeDislike,
    Pin,
    PinBalance,
    Post,
    Report,
    Schedule,
    SupportTicket,
    Swipe,
    Trustee,
    User,
    View,
    VisitedLocation,
)
from tests.conftest import add_balance, make_firm, make_ticket, make_user, reload


async def _firm_with_activity(db: AsyncSession):
    firm = await make_firm(db)
    user = await make_user(db)
    post = Post(firm_id=firm.id, title="Launch")
    pin = Pin(firm_id=firm.id, is_home=True, lat=1.0, lng=2.0)
    db.add_all([post, pin, Trustee(firm_id=firm.id, user_id=user.id)])
    await db.commit()
    db.add_all([
        Report(post_id=post.id, user_id=user.id, reason="spam"),
        LikeDislike(post_id=post.id, user_id=user.id, is_like=True),
        View(post_id=post.id, user_id=user.id),
        Swipe(post_id=post.id, user_id=user.id, is_right=True),
        VisitedLocation(pin_id=pin.id, user_id=user.id),
    ])
    await db.commit()
    await add_balance(db, firm, 100)
    return firm, user


async def _kept(db: AsyncSession, model) -> list:
    return list((await db.execute(select(model))).scalars().all())


async def _all(db: AsyncSession, model) -> list:
    result = await db.execute(select(model).execution_options(include_discarded=True, populate_existing=True))
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_discard_firm_cascades(db: AsyncSession):
    firm, user = await _firm_with_activity(db)

    assert await discard_firm(db, firm) is True
    await db.commit()

    for model in (Firm, Trustee, Schedule, PinBalance, Post, Pin, Report, LikeDislike, View, Swipe, VisitedLocation):
        assert await _kept(db, model) == [], model.__name__
        assert all(r.discarded_at is not None for r in await _all(db, model)), model.__name__

    # The user is not owned by the firm
    assert await reload(db, User, user.id) is not None


@pytest.mark.asyncio
async def test_discard_firm_stamps_one_timestamp(db: AsyncSession):
    firm, _ = await _firm_with_activity(db)
    await discard_firm(db, firm)
    await db.commit()

    stamps = {r.discarded_at for model in (Post, Report, Pin, VisitedLocation) for r in await _all(db, model)}
    stamps.add((await reload(db, Firm, firm.id, include_discarded=True)).discarded_at)
    assert len(stamps) == 1


@pytest.mark.asyncio
async def test_discard_firm_leaves_other_firms_alone(db: AsyncSession):
    firm, _ = await _firm_with_activity(db)
    other = await make_firm(db)
    await add_balance(db, other, 50)

    await discard_firm(db, firm)
    await db.commit()

    assert [f.id for f in await _kept(db, Firm)] == [other.id]
    assert len(await _kept(db, Schedule)) == 2
    assert [b.firm_id for b in await _kept(db, PinBalance)] == [other.id]


@pytest.mark.asyncio
async def test_discard_keeps_earlier_timestamps(db: AsyncSession):
    firm = await make_firm(db)
    earlier = datetime(2020, 1, 1)
    voided = await add_balance(db, firm, 10, discarded_at=earlier)

    await discard_firm(db, firm)
    await db.commit()

    assert (await reload(db, PinBalance, voided.id, include_discarded=True)).discarded_at == earlier


@pytest.mark.asyncio
async def test_discard_twice_is_a_noop(db: AsyncSession):
    firm = await make_firm(db)
    assert await discard_firm(db, firm) is True
    await db.commit()
    first_stamp = firm.discarded_at

    assert await discard_firm(db, firm) is False
    assert firm.discarded_at == first_stamp


@pytest.mark.asyncio
async def test_discard_user_cascades_activity_only(db: AsyncSession):
    firm, user = await _firm_with_activity(db)
    ticket = await make_ticket(db, user)

    assert await discard_user(db, user) is True
    await db.commit()

    for model in (View, Swipe, VisitedLocation, LikeDislike, Report):
        assert await _kept(db, model) == [], model.__name__
    assert await reload(db, User, user.id) is None
    assert await reload(db, Firm, firm.id) is not None
    assert len(await _kept(db, Post)) == 1
    assert len(await _kept(db, Trustee)) == 1
    assert await reload(db, SupportTicket, ticket.id) is not None


@pytest.mark.asyncio
async def test_discard_record(db: AsyncSession):
    user = await make_user(db)
    ticket = await make_ticket(db, user)
    assert await discard_record(db, ticket) is True
    await db.commit()
    assert await reload(db, SupportTicket, ticket.id) is None


@pytest.mark.asyncio
async def test_kept_scope_applies_to_relationship_loads(db: AsyncSession):
    firm = await make_firm(db)
    post = Post(firm_id=firm.id, title="Hidden", discarded_at=datetime(2024, 1, 1))
    shown = Post(firm_id=firm.id, title="Shown")
    db.add_all([post, shown])
    await db.commit()

    result = await db.execute(
        select(Firm)
        .where(Firm.id == firm.id)
        .options(selectinload(Firm.posts))
        .execution_options(populate_existing=True)
    )
    assert [p.title for p in result.scalar_one().posts] == ["Shown"]


def _stamp_failing_at(failing_model):
    async def stamp(db, model, ids, now):
        if model is failing_model:
            raise SQLAlchemyError("database is locked")
        await real_stamp(db, model, ids, now)

    return stamp


async def _firm_with_flag(db: AsyncSession):
    firm, user = await _firm_with_activity(db)
    feature = Feature(name="Parking")
    db.add(feature)
    await db.commit()
    db.add(Flag(firm_id=firm.id, feature_id=feature.id))
    await db.commit()
    return firm, user


@pytest.mark.asyncio
async def test_failed_cascade_rolls_back_every_level(db: AsyncSession):
    firm, _ = await _firm_with_flag(db)
    firm_id = firm.id

    with patch("shared.discard._stamp", new=_stamp_failing_at(Post)):
        with pytest.raises(CascadeDiscardError) as exc_info:
            await discard_firm(db, firm)

    assert exc_info.value.resource_id == firm_id
    assert await reload(db, Firm, firm_id) is not None
    for model in (Trustee, Flag, Schedule, PinBalance, Post, Pin, Report, VisitedLocation):
        assert await _kept(db, model), model.__name__


@pytest.mark.asyncio
async def test_failed_cascade_answers_500(client: AsyncClient, admin_headers: dict, db: AsyncSession):
    firm, _ = await _firm_with_flag(db)

    with patch("shared.discard._stamp", new=_stamp_failing_at(Post)):
        response = await client.delete(f"/admin/firms/{firm.id}", headers=admin_headers)

    assert response.status_code == 500
    error = response.json()["errors"][0]
    assert error["status"] == "500"
    assert error["detail"] == f"Could not discard Firm {firm.id}"

    assert (await client.get(f"/admin/firms/{firm.id}", headers=admin_headers)).status_code == 200
    assert len(await _kept(db, Trustee)) == 1
    assert len(await _kept(db, Flag)) == 1
    assert len(await _kept(db, Schedule)) == 2
