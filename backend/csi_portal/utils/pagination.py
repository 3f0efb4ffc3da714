"""
Pagination helpers for list endpoints backed by Core selects.
"""
from typing import Any, Dict

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

MAX_PAGE_SIZE = 200


async def paginate(
    db: AsyncSession,
    query: Select,
    page: int = 1,
    page_size: int = 50,
) -> Dict[str, Any]:
    """
    Run ``query`` for one page and count the full result.

    Returns:
        Dictionary with items (row dicts), total, page, page_size,
        total_pages, has_next, has_previous
    """
    page = max(1, page)
    page_size = max(1, min(MAX_PAGE_SIZE, page_size))

    count_stmt = select(func.count()).select_from(query.order_by(None).subquery())
    total = (await db.execute(count_stmt)).scalar() or 0
    total_pages = (total + page_size - 1) // page_size if total > 0 else 1

    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    items = [dict(row._mapping) for row in result.all()]

    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_previous": page > 1,
    }
