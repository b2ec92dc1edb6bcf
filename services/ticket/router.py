"""
services/ticket/router.py
A signed-in app user's own support tickets.

Unlike the admin console, invalid payloads answer 422. Tickets owned by
someone else are reported as missing.
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.support_ticket.service import edit_ticket, get_support_ticket, open_ticket, owned_by
from shared.discard import discard_record
from shared.exceptions import RecordInvalid
from shared.middleware.auth import require_user
from shared.models.models import SupportTicket, User
from shared.schemas.jsonapi import document, errors_document
from shared.utils.pagination import PageParams, page_params, paginate

router = APIRouter(prefix="/support_tickets", tags=["Support tickets"])


async def _invalid(db: AsyncSession, exc: RecordInvalid) -> JSONResponse:
    await db.rollback()
    return JSONResponse(
        content=errors_document(exc.errors, status=422),
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
    )


@router.get("")
async def list_my_support_tickets(
    paging: PageParams = Depends(page_params),
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    query = owned_by(select(SupportTicket), current_user).order_by(SupportTicket.id.desc())
    page = await paginate(db, query, paging.page, paging.per_page)
    return document(page.items, meta=page.meta)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_support_ticket(
    payload: Dict[str, Any] = Body(default={}),
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        ticket = await open_ticket(db, current_user, payload)
    except RecordInvalid as exc:
        return await _invalid(db, exc)

    await db.commit()
    return document(ticket)


@router.get("/{ticket_id}")
async def get_my_support_ticket(
    ticket_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return document(await get_support_ticket(db, ticket_id, owner=current_user))


@router.patch("/{ticket_id}")
async def update_my_support_ticket(
    ticket_id: int,
    payload: Dict[str, Any] = Body(default={}),
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    ticket = await get_support_ticket(db, ticket_id, owner=current_user)
    try:
        await edit_ticket(db, ticket, payload)
    except RecordInvalid as exc:
        return await _invalid(db, exc)

    await db.commit()
    return document(ticket)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_my_support_ticket(
    ticket_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    ticket = await get_support_ticket(db, ticket_id, owner=current_user)
    await discard_record(db, ticket)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
