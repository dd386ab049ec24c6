import math

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

MAX_LIMIT = 50


async def paginate(db: AsyncSession, stmt, page: int, limit: int) -> dict:
    """
    Runs stmt for one page and counts the full result set.
    Returns the keyword arguments for a Page response model.
    """
    total = await db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))
    result = await db.execute(stmt.offset((page - 1) * limit).limit(limit))

    return {
        "items": list(result.scalars().all()),
        "total": total or 0,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil((total or 0) / limit) if limit else 0,
    }
