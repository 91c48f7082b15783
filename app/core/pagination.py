"""
Offset pagination over SQLAlchemy select statements.
"""
from typing import Any, Generic, List, TypeVar
from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """Paginated list response."""
    items: List[T]
    total: int
    page: int
    page_size: int
    pages: int


def page_count(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if limit > 0 else 0


async def paginate(db: AsyncSession, stmt: Select, page: int, limit: int) -> tuple[list[Any], int]:
    """
    Run stmt for one page and count the whole result.

    The statement should already carry its ORDER BY; page is 1-based.
    """
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = await db.scalar(count_stmt) or 0

    result = await db.execute(stmt.offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), total
