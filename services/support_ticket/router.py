"""
services/support_ticket/router.py
Admin support desk: search, CSV export, moderation and soft delete of tickets.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Response
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from services.support_ticket.service import CSV_HEADER, csv_row, get_support_ticket, moderate
from shared.discard import discard_record
from shared.exceptions import RecordInvalid
from shared.middleware.auth import require_admin
from shared.models.models import Admin, SupportTicket
from shared.schemas.jsonapi import SUPPORT_TICKET_DETAIL, document, errors_document, loader_options
from shared.search import support_ticket_search
from shared.utils.csv_export import csv_response
from shared.utils.pagination import PageParams, apply_sort, page_params, paginate

router = APIRouter(prefix="/admin/support_tickets", tags=["Admin: Support tickets"])

SORTABLE = {
    "id": SupportTicket.id,
    "status": SupportTicket.status,
    "checked": SupportTicket.checked,
    "created_at": SupportTicket.created_at,
    "updated_at": SupportTicket.updated_at,
}


def _search_query(search: Optional[str]):
    query = select(SupportTicket).order_by(SupportTicket.id)
    condition = support_ticket_search(search)
    if condition is not None:
        query = query.where(condition)
    return query


@router.get("")
async def list_support_tickets(
    search: Optional[str] = Query(None, max_length=200),
    paging: PageParams = Depends(page_params),
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Tickets in insertion order with their owner included. `search` matches id,
    status, owner username/email, firm name, or "checked"/"unchecked".
    """
    query = apply_sort(_search_query(search), paging.sort, SORTABLE)
    page = await paginate(
        db, query, paging.page, paging.per_page, loader_options(SupportTicket, SUPPORT_TICKET_DETAIL)
    )
    return document(page.items, SUPPORT_TICKET_DETAIL, meta=page.meta)


@router.get(".csv")
async def export_support_tickets(
    search: Optional[str] = Query(None, max_length=200),
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Same filter as the listing, unpaginated."""
    query = _search_query(search).options(
        *loader_options(SupportTicket, SUPPORT_TICKET_DETAIL),
        selectinload(SupportTicket.firm),
    )
    tickets = (await db.execute(query)).scalars().all()
    return csv_response("support_tickets", CSV_HEADER, (csv_row(t) for t in tickets))


@router.get("/{ticket_id}")
async def get_support_ticket_detail(
    ticket_id: int,
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    ticket = await get_support_ticket(db, ticket_id, SUPPORT_TICKET_DETAIL)
    return document(ticket, SUPPORT_TICKET_DETAIL)


@router.patch("/{ticket_id}")
async def update_support_ticket(
    ticket_id: int,
    payload: Dict[str, Any] = Body(default={}),
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Set status and/or checked. Invalid values answer 200 with errors."""
    ticket = await get_support_ticket(db, ticket_id)
    try:
        await moderate(db, ticket, payload)
    except RecordInvalid as exc:
        await db.rollback()
        return JSONResponse(content=errors_document(exc.errors), status_code=200)

    await db.commit()
    ticket = await get_support_ticket(db, ticket_id, SUPPORT_TICKET_DETAIL, populate=True)
    return document(ticket, SUPPORT_TICKET_DETAIL)


@router.delete("/{ticket_id}", status_code=204)
async def delete_support_ticket(
    ticket_id: int,
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    ticket = await get_support_ticket(db, ticket_id)
    await discard_record(db, ticket)
    await db.commit()
    return Response(status_code=204)
