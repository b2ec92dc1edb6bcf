"""
services/user/service.py
Admin-side user maintenance: profile edits with uniqueness and the
change-birthday-once rule.
"""

import logging
from typing import List

from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import FieldError, RecordInvalid
from shared.models.models import User
from shared.schemas.jsonapi import NO_INCLUDE, Include, loader_options
from shared.schemas.schemas import UserAdminUpdate

logger = logging.getLogger(__name__)

CSV_HEADER = (
    "id",
    "name",
    "email",
    "username",
    "phone",
    "birthday",
    "lat",
    "lng",
    "status",
    "blocked",
    "created_at",
    "updated_at",
)


def csv_row(user: User) -> tuple:
    return (
        user.id,
        user.name,
        user.email,
        user.username,
        user.phone,
        user.birthday,
        user.lat,
        user.lng,
        user.status,
        user.blocked,
        user.created_at,
        user.updated_at,
    )


async def get_user(
    db: AsyncSession, user_id: int, include: Include = NO_INCLUDE, populate: bool = False
) -> User:
    query = select(User).where(User.id == user_id).options(*loader_options(User, include))
    if populate:
        query = query.execution_options(populate_existing=True)
    user = (await db.execute(query)).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def _taken(db: AsyncSession, user: User, column, value) -> bool:
    """Uniqueness is checked across discarded users too; the constraint is table-wide."""
    query = (
        select(User.id)
        .where(column == value, User.id != user.id)
        .execution_options(include_discarded=True)
    )
    return (await db.execute(query)).first() is not None


async def update_user(db: AsyncSession, user: User, payload: dict) -> User:
    try:
        params = UserAdminUpdate.model_validate(payload)
    except ValidationError as exc:
        raise RecordInvalid.from_validation_error(exc)

    changes = params.model_dump(exclude_unset=True)
    errors: List[FieldError] = []

    if "email" in changes:
        changes["email"] = changes["email"].lower()
        if await _taken(db, user, func.lower(User.email), changes["email"]):
            errors.append(("email", "has already been taken"))
    if "username" in changes and await _taken(db, user, User.username, changes["username"]):
        errors.append(("username", "has already been taken"))

    birthday_changed = "birthday" in changes and changes["birthday"] != user.birthday
    if birthday_changed and user.user_changed_birthday:
        errors.append(("birthday", "can only be changed once"))

    if errors:
        raise RecordInvalid(errors)

    for attr, value in changes.items():
        setattr(user, attr, value)
    if birthday_changed:
        user.user_changed_birthday = True

    try:
        await db.flush()
    except IntegrityError as exc:
        logger.warning(f"User {user.id} update rejected by constraints: {exc.orig}")
        raise RecordInvalid.single("base", "could not be saved")

    logger.info(f"User {user.id} updated: {sorted(changes)}")
    return user
