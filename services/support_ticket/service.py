"""
services/support_ticket/service.py
Support ticket lookups and saves shared by the admin and user endpoints.
"""

import logging
from typing import Optional

from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import RecordInvalid
from shared.models.models import Firm, SupportTicket, TicketableType, User
from shared.schemas.jsonapi import NO_INCLUDE, Include, loader_options
from shared.schemas.schemas import SupportTicketAdminUpdate, SupportTicketCreate, SupportTicketUpdate

logger = logging.getLogger(__name__)

CSV_HEADER = (
    "id",
    "ticketable_type",
    "ticketable_id",
    "ticketable_email",
    "firm_id",
    "firm_name",
    "query",
    "status",
    "checked",
    "created_at",
    "updated_at",
)


def owned_by(query: Select, user: User) -> Select:
    return query.where(
        SupportTicket.ticketable_type == TicketableType.USER.value,
        SupportTicket.ticketable_id == user.id,
    )


async def get_support_ticket(
    db: AsyncSession,
    ticket_id: int,
    include: Include = NO_INCLUDE,
    owner: Optional[User] = None,
    populate: bool = False,
) -> SupportTicket:
    """Load a kept ticket or raise 404. With `owner`, other users' tickets are 404 too."""
    query = select(SupportTicket).where(SupportTicket.id == ticket_id)
    if owner is not None:
        query = owned_by(query, owner)
    query = query.options(*loader_options(SupportTicket, include))
    if populate:
        query = query.execution_options(populate_existing=True)
    ticket = (await db.execute(query)).scalar_one_or_none()
    if not ticket:
        raise HTTPException(status_code=404, detail="Support ticket not found")
    return ticket


def csv_row(ticket: SupportTicket) -> tuple:
    owner = ticket.ticketable
    return (
        ticket.id,
        ticket.ticketable_type,
        ticket.ticketable_id,
        owner.email if owner is not None else None,
        ticket.firm_id,
        ticket.firm.name if ticket.firm is not None else None,
        ticket.query,
        ticket.status,
        ticket.checked,
        ticket.created_at,
        ticket.updated_at,
    )


async def _check_firm(db: AsyncSession, firm_id: Optional[int]) -> None:
    if firm_id is None:
        return
    found = (await db.execute(select(Firm.id).where(Firm.id == firm_id))).scalar_one_or_none()
    if found is None:
        raise RecordInvalid.single("firm", "must exist")


async def moderate(db: AsyncSession, ticket: SupportTicket, payload: dict) -> SupportTicket:
    """Admin update: only status and checked are writable."""
    try:
        params = SupportTicketAdminUpdate.model_validate(payload)
    except ValidationError as exc:
        raise RecordInvalid.from_validation_error(exc)

    for attr, value in params.model_dump(exclude_unset=True).items():
        setattr(ticket, attr, value)
    await db.flush()
    logger.info(f"Support ticket {ticket.id} moderated: {params.model_dump(exclude_unset=True)}")
    return ticket


async def open_ticket(db: AsyncSession, user: User, payload: dict) -> SupportTicket:
    try:
        params = SupportTicketCreate.model_validate(payload)
    except ValidationError as exc:
        raise RecordInvalid.from_validation_error(exc)
    await _check_firm(db, params.firm_id)

    ticket = SupportTicket(
        ticketable_type=TicketableType.USER.value,
        ticketable_id=user.id,
        firm_id=params.firm_id,
        query=params.query,
    )
    db.add(ticket)
    await db.flush()
    logger.info(f"Support ticket {ticket.id} opened by user {user.id}")
    return ticket


async def edit_ticket(db: AsyncSession, ticket: SupportTicket, payload: dict) -> SupportTicket:
    """Owner update: only the query text is writable."""
    try:
        params = SupportTicketUpdate.model_validate(payload)
    except ValidationError as exc:
        raise RecordInvalid.from_validation_error(exc)

    for attr, value in params.model_dump(exclude_unset=True).items():
        setattr(ticket, attr, value)
    await db.flush()
    return ticket
