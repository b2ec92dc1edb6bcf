"""
services/firm/router.py
Admin firm console: listing with search, CRUD, and pin balance ledger entries.

Invalid create/update payloads answer 200 with a JSON:API errors array; the
admin console reads `errors` rather than the status code.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Response
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.firm.service import (
    add_pin_balance,
    available_balance,
    available_balances,
    firm_stats,
    get_firm,
    save_firm,
)
from shared.discard import discard_firm
from shared.exceptions import RecordInvalid
from shared.middleware.auth import require_admin
from shared.models.models import Admin, Firm
from shared.schemas.jsonapi import FIRM_DETAIL, FIRM_LISTING, document, errors_document, loader_options
from shared.search import firm_search
from shared.utils.geocoding import Geocoder, get_geocoder
from shared.utils.pagination import PageParams, apply_sort, page_params, paginate
from tasks.dynamic_link_tasks import create_dynamic_link

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/firms", tags=["Admin: Firms"])

SORTABLE = {
    "id": Firm.id,
    "name": Firm.name,
    "status": Firm.status,
    "checked": Firm.checked,
    "created_at": Firm.created_at,
    "updated_at": Firm.updated_at,
}


# ── Helpers ────────────────────────────────────────────────────────────────────

def _enqueue_dynamic_link(firm_id: int) -> None:
    """Fire-and-forget; a broker outage must not fail a committed save."""
    try:
        create_dynamic_link.delay("Firm", firm_id)
    except Exception as exc:
        logger.warning(f"Could not enqueue dynamic link for firm {firm_id}: {exc}")


async def _firm_document(db: AsyncSession, firm_id: int, meta: Optional[dict] = None) -> dict:
    firm = await get_firm(db, firm_id, FIRM_DETAIL, populate=True)
    stats = await firm_stats(db, firm.id)
    stats["available_balance"] = await available_balance(db, firm.id)
    stats["home_pin_id"] = firm.home_pin.id if firm.home_pin else None
    return document(firm, FIRM_DETAIL, meta=meta, resource_meta={firm.id: stats})


async def _invalid(db: AsyncSession, exc: RecordInvalid) -> JSONResponse:
    await db.rollback()
    return JSONResponse(content=errors_document(exc.errors), status_code=200)


# ── Endpoints ──────────────────────────────────────────────────────────────────

@router.get("")
async def list_firms(
    search: Optional[str] = Query(None, max_length=200),
    paging: PageParams = Depends(page_params),
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Firms in insertion order, optionally filtered by `search`.
    "checked" / "unchecked" select on the checked flag; any other term is
    matched against id, status, name, and trustee email / last sign-in.
    """
    query = select(Firm).order_by(Firm.id)
    condition = firm_search(search)
    if condition is not None:
        query = query.where(condition)
    query = apply_sort(query, paging.sort, SORTABLE)

    page = await paginate(db, query, paging.page, paging.per_page, loader_options(Firm, FIRM_LISTING))
    balances = await available_balances(db, [firm.id for firm in page.items])
    return document(
        page.items,
        FIRM_LISTING,
        meta=page.meta,
        resource_meta={firm_id: {"available_balance": b} for firm_id, b in balances.items()},
    )


@router.post("")
async def create_firm(
    payload: Dict[str, Any] = Body(default={}),
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    geocoder: Geocoder = Depends(get_geocoder),
):
    try:
        firm, warnings = await save_firm(db, payload, geocoder)
    except RecordInvalid as exc:
        return await _invalid(db, exc)

    await db.commit()
    _enqueue_dynamic_link(firm.id)
    return await _firm_document(db, firm.id, {"warnings": warnings} if warnings else None)


@router.get("/{firm_id}")
async def get_firm_detail(
    firm_id: int,
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Firm with owner, trustees, pins, schedules and posts (with reports), plus stats."""
    return await _firm_document(db, firm_id)


@router.patch("/{firm_id}")
async def update_firm(
    firm_id: int,
    payload: Dict[str, Any] = Body(default={}),
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    geocoder: Geocoder = Depends(get_geocoder),
):
    try:
        firm, warnings = await save_firm(db, payload, geocoder, firm_id=firm_id)
    except RecordInvalid as exc:
        return await _invalid(db, exc)

    await db.commit()
    _enqueue_dynamic_link(firm.id)
    return await _firm_document(db, firm.id, {"warnings": warnings} if warnings else None)


@router.delete("/{firm_id}", status_code=204)
async def delete_firm(
    firm_id: int,
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete the firm and everything it owns."""
    firm = await get_firm(db, firm_id)
    await discard_firm(db, firm)
    await db.commit()
    return Response(status_code=204)


@router.post("/{firm_id}/pin_balances")
async def create_pin_balance(
    firm_id: int,
    payload: Dict[str, Any] = Body(default={}),
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Append a signed ledger entry; answers with the updated firm."""
    firm = await get_firm(db, firm_id)
    try:
        await add_pin_balance(db, firm, payload)
    except RecordInvalid as exc:
        return await _invalid(db, exc)

    await db.commit()
    return await _firm_document(db, firm.id)
