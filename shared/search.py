"""
shared/search.py
Free-text search for admin listings.

Every builder turns one search term into a single OR-group of predicates, or
None when the term is blank. A predicate only joins the group when the term
can be coerced to the column's type, so e.g. "abc" never compares against ids.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import ColumnElement, or_, select

from shared.models.models import (
    ActiveStatus,
    Admin,
    Business,
    Firm,
    SupportTicket,
    SupportTicketStatus,
    TicketableType,
    User,
)


# Owner columns searched for each ticketable variant
TICKETABLE_SEARCH_FIELDS: Dict[TicketableType, Tuple[type, Tuple[str, ...]]] = {
    TicketableType.USER: (User, ("username", "email")),
    TicketableType.BUSINESS: (Business, ("username", "email")),
    TicketableType.ADMIN: (Admin, ("username", "email")),
}


def normalize(term: Optional[str]) -> Optional[str]:
    if term is None:
        return None
    term = term.strip()
    return term or None


def checked_literal(term: Optional[str]) -> Optional[bool]:
    """'checked' -> True, 'unchecked' -> False, anything else -> None."""
    term = normalize(term)
    if term is None:
        return None
    return {"checked": True, "unchecked": False}.get(term.lower())


MAX_ID = 2**31 - 1


def _as_int(term: str) -> Optional[int]:
    # ASCII only: str.isdigit() also accepts "²" which int() rejects
    if not (term.isascii() and term.isdigit()):
        return None
    value = int(term)
    return value if value <= MAX_ID else None


def _as_enum(enum_cls, term: str):
    try:
        return enum_cls(term.upper())
    except ValueError:
        return None


def _as_datetime(term: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(term)
    except ValueError:
        return None


def _contains(column, term: str) -> ColumnElement:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return column.ilike(f"%{escaped}%", escape="\\")


def firm_search(term: Optional[str]) -> Optional[ColumnElement]:
    term = normalize(term)
    if term is None:
        return None

    literal = checked_literal(term)
    if literal is not None:
        return Firm.checked.is_(literal)

    clauses: List[ColumnElement] = [
        _contains(Firm.name, term),
        Firm.users.any(User.email == term),
    ]
    firm_id = _as_int(term)
    if firm_id is not None:
        clauses.append(Firm.id == firm_id)
    status = _as_enum(ActiveStatus, term)
    if status is not None:
        clauses.append(Firm.status == status)
    signed_in = _as_datetime(term)
    if signed_in is not None:
        clauses.append(Firm.users.any(User.last_sign_in_at == signed_in))
    return or_(*clauses)


def support_ticket_search(term: Optional[str]) -> Optional[ColumnElement]:
    term = normalize(term)
    if term is None:
        return None

    literal = checked_literal(term)
    if literal is not None:
        return SupportTicket.checked.is_(literal)

    clauses: List[ColumnElement] = [SupportTicket.firm.has(_contains(Firm.name, term))]
    for kind, (model, fields) in TICKETABLE_SEARCH_FIELDS.items():
        owners = select(model.id).where(or_(*(_contains(getattr(model, f), term) for f in fields)))
        clauses.append(
            (SupportTicket.ticketable_type == kind.value) & SupportTicket.ticketable_id.in_(owners)
        )
    ticket_id = _as_int(term)
    if ticket_id is not None:
        clauses.append(SupportTicket.id == ticket_id)
    status = _as_enum(SupportTicketStatus, term)
    if status is not None:
        clauses.append(SupportTicket.status == status)
    return or_(*clauses)


def user_search(term: Optional[str]) -> Optional[ColumnElement]:
    term = normalize(term)
    if term is None:
        return None

    clauses: List[ColumnElement] = [
        _contains(User.username, term),
        _contains(User.email, term),
        _contains(User.first_name, term),
        _contains(User.last_name, term),
    ]
    user_id = _as_int(term)
    if user_id is not None:
        clauses.append(User.id == user_id)
    status = _as_enum(ActiveStatus, term)
    if status is not None:
        clauses.append(User.status == status)
    return or_(*clauses)
