"""
services/user/router.py
Admin user moderation: listing, CSV export, profile edits and soft delete.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Response
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.user.service import CSV_HEADER, csv_row, get_user, update_user
from shared.discard import discard_user
from shared.exceptions import RecordInvalid
from shared.middleware.auth import require_admin
from shared.models.models import Admin, User
from shared.schemas.jsonapi import USER_DETAIL, document, errors_document
from shared.search import user_search
from shared.utils.csv_export import csv_response
from shared.utils.pagination import PageParams, apply_sort, page_params, paginate

router = APIRouter(prefix="/admin/users", tags=["Admin: Users"])

SORTABLE = {
    "id": User.id,
    "username": User.username,
    "email": User.email,
    "status": User.status,
    "created_at": User.created_at,
    "last_sign_in_at": User.last_sign_in_at,
}


def _search_query(search: Optional[str]):
    query = select(User).order_by(User.id)
    condition = user_search(search)
    if condition is not None:
        query = query.where(condition)
    return query


@router.get("")
async def list_users(
    search: Optional[str] = Query(None, max_length=200),
    paging: PageParams = Depends(page_params),
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = apply_sort(_search_query(search), paging.sort, SORTABLE)
    page = await paginate(db, query, paging.page, paging.per_page)
    return document(page.items, meta=page.meta)


@router.get(".csv")
async def export_users(
    search: Optional[str] = Query(None, max_length=200),
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    users = (await db.execute(_search_query(search))).scalars().all()
    return csv_response("users", CSV_HEADER, (csv_row(u) for u in users))


@router.get("/{user_id}")
async def get_user_detail(
    user_id: int,
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """User with their kept support tickets."""
    return document(await get_user(db, user_id, USER_DETAIL), USER_DETAIL)


@router.patch("/{user_id}")
async def update_user_profile(
    user_id: int,
    payload: Dict[str, Any] = Body(default={}),
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Edit profile fields, status or the blocked flag. Username and email stay
    unique; a birthday can be changed only once.
    """
    user = await get_user(db, user_id)
    try:
        await update_user(db, user, payload)
    except RecordInvalid as exc:
        await db.rollback()
        return JSONResponse(content=errors_document(exc.errors), status_code=200)

    await db.commit()
    user = await get_user(db, user_id, USER_DETAIL, populate=True)
    return document(user, USER_DETAIL)


@router.delete("/{user_id}", status_code=204)
async def delete_user(
    user_id: int,
    current_admin: Admin = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete the user and their views, swipes, visits, likes and reports."""
    user = await get_user(db, user_id)
    await discard_user(db, user)
    await db.commit()
    return Response(status_code=204)
