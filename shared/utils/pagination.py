"""
shared/utils/pagination.py
Page-number pagination and whitelisted sorting for listing endpoints.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Mapping, Optional, Sequence, TypeVar

from fastapi import HTTPException, Query, status
from sqlalchemy import Select, distinct, func
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings

T = TypeVar("T")


@dataclass
class PageParams:
    page: int
    per_page: int
    sort: Optional[str]


def page_params(
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, alias="perPage"),
    sort: Optional[str] = Query(None, max_length=50),
) -> PageParams:
    """FastAPI dependency collecting `page`, `perPage` and `sort`."""
    return PageParams(page=page, per_page=per_page, sort=sort)


@dataclass
class Page(Generic[T]):
    items: List[T]
    current_page: int
    per_page: int
    total_pages: int
    total_count: int

    @property
    def meta(self) -> Dict[str, int]:
        return {
            "currentPage": self.current_page,
            "perPage": self.per_page,
            "totalPages": self.total_pages,
        }


def apply_sort(query: Select, sort: Optional[str], columns: Mapping[str, Any]) -> Select:
    """
    Order by one whitelisted column; '-name' sorts descending.
    Falls back to insertion order. Unknown columns are a 400.
    """
    if not sort:
        return query
    descending = sort.startswith("-")
    key = sort.lstrip("-")
    if key not in columns:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot sort by '{key}'. Allowed: {', '.join(sorted(columns))}",
        )
    column = columns[key]
    return query.order_by(None).order_by(column.desc() if descending else column.asc())


async def paginate(
    db: AsyncSession,
    query: Select,
    page: int,
    per_page: int,
    options: Sequence[Any] = (),
) -> Page:
    """
    De-duplicate, count, then slice. `query` must select a single mapped
    entity and carry its ordering already; loader `options` only apply to
    the page query.
    """
    entity = query.column_descriptions[0]["entity"]
    count_query = (
        query.with_only_columns(func.count(distinct(entity.id)))
        .select_from(entity)
        .order_by(None)
    )
    total = (await db.execute(count_query)).scalar_one()
    total_pages = math.ceil(total / per_page) if total else 0

    result = await db.execute(query.distinct().options(*options).offset((page - 1) * per_page).limit(per_page))
    items = list(result.scalars().unique().all())
    return Page(
        items=items,
        current_page=page,
        per_page=per_page,
        total_pages=total_pages,
        total_count=total,
    )
