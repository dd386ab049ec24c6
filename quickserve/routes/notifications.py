from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_db
from ..errors import NotFound
from ..models import Notification
from ..pagination import MAX_LIMIT, paginate
from ..schemas import NotificationPage, NotificationResponse
from ..security import Actor, get_current_actor

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=NotificationPage)
async def list_notifications(
    unread_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_LIMIT),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Notification).where(Notification.user_id == actor.user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc())

    result = await paginate(db, stmt, page, limit)
    result["unread_count"] = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == actor.user_id,
            Notification.is_read.is_(False),
        )
    )
    return result


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    notification = await db.get(Notification, notification_id)
    if not notification or notification.user_id != actor.user_id:
        raise NotFound("Notification not found")

    notification.is_read = True
    await db.commit()
    return notification


@router.post("/read-all")
async def mark_all_read(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == actor.user_id, Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return {"updated": result.rowcount}
