import logging
from typing import Protocol

from shared.events import build_event, to_json
from shared.rabbitmq import RabbitPublisher

from .config import RABBIT_URL, REALTIME_EXCHANGE

logger = logging.getLogger(__name__)


def booking_topic(booking_id: str) -> str:
    return f"booking:{booking_id}"


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


class EventBus(Protocol):
    async def publish(self, topic: str, event_name: str, payload: dict) -> None:
        ...


class RabbitEventBus:
    """
    Publishes realtime events on a topic exchange, routing key = topic.
    Socket gateways bind per-room queues ("booking:<id>", "user:<id>").
    """

    def __init__(self, publisher: RabbitPublisher):
        self.publisher = publisher

    @property
    def enabled(self) -> bool:
        return self.publisher.enabled

    async def publish(self, topic: str, event_name: str, payload: dict) -> None:
        event = build_event(event_name, payload)
        event["topic"] = topic
        await self.publisher.publish(topic, to_json(event))

    async def start(self):
        await self.publisher.connect()

    async def close(self):
        await self.publisher.close()


async def publish_safely(bus: EventBus, topic: str, event_name: str, payload: dict) -> None:
    try:
        await bus.publish(topic, event_name, payload)
    except Exception:
        logger.exception("realtime publish failed topic=%s event=%s", topic, event_name)


event_bus = RabbitEventBus(RabbitPublisher(RABBIT_URL, REALTIME_EXCHANGE))
