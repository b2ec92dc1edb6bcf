"""
services/firm/service.py
Firm persistence rules shared by the admin firm endpoints.

Save order: whitelist params -> apply attributes and nested collections ->
top up schedule slots -> validate -> geocode if the address changed -> flush.
The caller commits, then enqueues the dynamic link job.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shared.exceptions import FieldError, RecordInvalid
from shared.models.models import (
    ActiveStatus,
    Business,
    Feature,
    Firm,
    Flag,
    LikeDislike,
    Pin,
    PinBalance,
    Post,
    Report,
    Schedule,
    VisitedLocation,
    utcnow,
)
from shared.schemas.jsonapi import NO_INCLUDE, Include, loader_options
from shared.schemas.schemas import FirmCreate, FirmParams, PinBalanceParams
from shared.utils.geocoding import Geocoder, GeocodingError

logger = logging.getLogger(__name__)

ADDRESS_NOT_FOUND = "Address could not be located; coordinates were cleared"
GEOCODING_UNAVAILABLE = "Geocoding failed; coordinates were cleared"


# ── Loading ───────────────────────────────────────────────────

async def get_firm(db: AsyncSession, firm_id: int, include: Include = NO_INCLUDE, populate: bool = False) -> Firm:
    """Load a kept firm with its include shape or raise 404."""
    query = select(Firm).where(Firm.id == firm_id).options(*loader_options(Firm, include))
    if populate:
        query = query.execution_options(populate_existing=True)
    firm = (await db.execute(query)).scalar_one_or_none()
    if not firm:
        raise HTTPException(status_code=404, detail="Firm not found")
    return firm


async def _get_firm_for_update(db: AsyncSession, firm_id: int) -> Firm:
    query = (
        select(Firm)
        .where(Firm.id == firm_id)
        .options(selectinload(Firm.schedules), selectinload(Firm.flags))
    )
    firm = (await db.execute(query)).scalar_one_or_none()
    if not firm:
        raise HTTPException(status_code=404, detail="Firm not found")
    return firm


# ── Nested collections ────────────────────────────────────────

def _apply_schedules(firm: Firm, items) -> List[FieldError]:
    existing = {s.id: s for s in firm.schedules}
    new_items = [item for item in items if item.id is None]
    unknown = [item.id for item in items if item.id is not None and item.id not in existing]

    if unknown:
        return [("schedules", f"contain unknown slots {unknown}")]
    if len(firm.schedules) + len(new_items) > Firm.MAX_SCHEDULES:
        return [("schedules", f"can't have more than {Firm.MAX_SCHEDULES} slots")]

    for item in items:
        slot = existing[item.id] if item.id is not None else Schedule()
        slot.week_days = sorted(set(item.week_days))
        slot.starts = item.starts
        slot.ends = item.ends
        if item.id is None:
            firm.schedules.append(slot)
    return []


async def _apply_features(db: AsyncSession, firm: Firm, feature_ids: Sequence[int]) -> List[FieldError]:
    wanted = set(feature_ids)
    found = set((await db.execute(select(Feature.id).where(Feature.id.in_(wanted)))).scalars().all())
    if wanted - found:
        return [("feature_ids", f"contain unknown features {sorted(wanted - found)}")]

    now = utcnow()
    current = {flag.feature_id: flag for flag in firm.flags}
    for feature_id, flag in current.items():
        if feature_id not in wanted:
            flag.discarded_at = now
    for feature_id in sorted(wanted - set(current)):
        firm.flags.append(Flag(feature_id=feature_id))
    return []


# ── Validation & geocoding ────────────────────────────────────

async def _validate(db: AsyncSession, firm: Firm) -> List[FieldError]:
    errors: List[FieldError] = []
    if firm.owner_id is not None:
        owner = await db.execute(select(Business.id).where(Business.id == firm.owner_id))
        if owner.scalar_one_or_none() is None:
            errors.append(("owner", "must exist"))
    if len(firm.schedules) != Firm.MAX_SCHEDULES:
        errors.append(("schedules", f"must have exactly {Firm.MAX_SCHEDULES} slots"))
    return errors


def address_changed(firm: Firm) -> bool:
    state = inspect(firm)
    if state.transient or state.pending:
        return any(getattr(firm, f) for f in Firm.ADDRESS_FIELDS)
    return any(state.attrs[f].history.has_changes() for f in Firm.ADDRESS_FIELDS)


async def geocode_firm(firm: Firm, geocoder: Geocoder) -> Optional[str]:
    """
    Refresh lat/lng from the address. Returns a warning when the lookup failed
    and the coordinates were cleared. A disabled geocoder leaves them untouched.
    """
    if not geocoder.enabled:
        return None

    address = firm.address
    if not address:
        firm.lat = firm.lng = None
        return None

    try:
        coordinates = await geocoder.geocode(address)
    except GeocodingError as exc:
        logger.warning(f"Geocoding failed for firm {firm.id or 'new'}: {exc}")
        firm.lat = firm.lng = None
        return GEOCODING_UNAVAILABLE

    if coordinates is None:
        firm.lat = firm.lng = None
        return ADDRESS_NOT_FOUND

    firm.lat, firm.lng = coordinates.lat, coordinates.lng
    return None


# ── Save ──────────────────────────────────────────────────────

async def save_firm(
    db: AsyncSession,
    payload: dict,
    geocoder: Geocoder,
    firm_id: Optional[int] = None,
) -> Tuple[Firm, List[str]]:
    """
    Create (firm_id None) or update a firm from a raw request payload.
    Returns (firm, warnings). Raises RecordInvalid on validation errors and
    HTTPException(404) for an unknown firm_id.
    """
    creating = firm_id is None
    firm = Firm(schedules=[], flags=[]) if creating else await _get_firm_for_update(db, firm_id)

    try:
        params = (FirmCreate if creating else FirmParams).model_validate(payload)
    except ValidationError as exc:
        raise RecordInvalid.from_validation_error(exc)

    for attr, value in params.attributes().items():
        setattr(firm, attr, value)

    errors: List[FieldError] = []
    if params.schedules is not None:
        errors += _apply_schedules(firm, params.schedules)
    if params.feature_ids is not None:
        errors += await _apply_features(db, firm, params.feature_ids)

    firm.set_default_schedules()
    errors += await _validate(db, firm)
    if errors:
        raise RecordInvalid(errors)

    warnings: List[str] = []
    if address_changed(firm):
        warning = await geocode_firm(firm, geocoder)
        if warning:
            warnings.append(warning)

    if creating:
        db.add(firm)
    try:
        await db.flush()
    except IntegrityError as exc:
        logger.warning(f"Firm save rejected by constraints: {exc.orig}")
        raise RecordInvalid.single("base", "could not be saved")

    logger.info(f"Firm {firm.id} {'created' if creating else 'updated'}")
    return firm, warnings


async def add_pin_balance(db: AsyncSession, firm: Firm, payload: dict) -> PinBalance:
    try:
        params = PinBalanceParams.model_validate(payload)
    except ValidationError as exc:
        raise RecordInvalid.from_validation_error(exc)

    entry = PinBalance(firm_id=firm.id, **params.model_dump())
    db.add(entry)
    await db.flush()
    logger.info(f"Pin balance entry {entry.id} of {entry.amount_in_cents} added to firm {firm.id}")
    return entry


# ── Aggregates ────────────────────────────────────────────────

async def available_balances(db: AsyncSession, firm_ids: Iterable[int]) -> Dict[int, int]:
    """Sum of kept ledger entries per firm, 0 for firms without entries."""
    firm_ids = list(firm_ids)
    if not firm_ids:
        return {}
    result = await db.execute(
        select(PinBalance.firm_id, func.coalesce(func.sum(PinBalance.amount_in_cents), 0))
        .select_from(PinBalance)
        .where(PinBalance.firm_id.in_(firm_ids))
        .group_by(PinBalance.firm_id)
    )
    balances = {firm_id: 0 for firm_id in firm_ids}
    balances.update({firm_id: int(total) for firm_id, total in result.all()})
    return balances


async def available_balance(db: AsyncSession, firm_id: int) -> int:
    return (await available_balances(db, [firm_id]))[firm_id]


async def firm_stats(db: AsyncSession, firm_id: int) -> Dict[str, int]:
    async def count(query) -> int:
        return (await db.execute(query)).scalar_one()

    def per_post(model, column):
        return (
            select(func.count(column))
            .select_from(model)
            .join(Post, model.post_id == Post.id)
            .where(Post.firm_id == firm_id)
        )

    pins = select(func.count(Pin.id)).select_from(Pin).where(Pin.firm_id == firm_id)
    # Reached users are distinct visitors of the firm's pins
    reached = (
        select(func.count(VisitedLocation.user_id.distinct()))
        .select_from(VisitedLocation)
        .join(Pin, VisitedLocation.pin_id == Pin.id)
        .where(Pin.firm_id == firm_id)
    )
    return {
        "pins_count": await count(pins),
        "active_pins_count": await count(pins.where(Pin.status == ActiveStatus.ACTIVE)),
        "likes_count": await count(per_post(LikeDislike, LikeDislike.id).where(LikeDislike.is_like.is_(True))),
        "reports_count": await count(per_post(Report, Report.id)),
        "reached_users_count": await count(reached),
    }
