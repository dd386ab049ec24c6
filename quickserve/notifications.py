import logging
from typing import Protocol

from .models import Notification
from .realtime import EventBus, publish_safely, user_topic

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def create(self, user_id: str, type: str, title: str, body: str, data: dict | None = None) -> None:
        ...


class NotificationService:
    """
    Stores a Notification row in its own session and pushes it to the user's
    realtime topic. Callers treat it as fire-and-forget.
    """

    def __init__(self, session_factory, bus: EventBus):
        self.session_factory = session_factory
        self.bus = bus

    async def create(self, user_id: str, type: str, title: str, body: str, data: dict | None = None) -> None:
        async with self.session_factory() as db:
            notification = Notification(
                user_id=user_id,
                type=type,
                title=title,
                body=body,
                data=data or {},
            )
            db.add(notification)
            await db.commit()

        logger.info("created notification %s type=%s for user %s", notification.id, type, user_id)

        await publish_safely(
            self.bus,
            user_topic(user_id),
            "notification",
            {
                "id": notification.id,
                "type": type,
                "title": title,
                "body": body,
                "data": data or {},
            },
        )


async def notify_safely(
    notifier: Notifier,
    user_id: str,
    type: str,
    title: str,
    body: str,
    data: dict | None = None,
) -> None:
    try:
        await notifier.create(user_id, type, title, body, data)
    except Exception:
        logger.exception("notification %s for user %s dropped", type, user_id)
