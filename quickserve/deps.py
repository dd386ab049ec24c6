from fastapi import Depends

from .db import SessionLocal
from .lifecycle import BookingLifecycleManager
from .momo import PaymentProvider, momo_client
from .notifications import NotificationService, Notifier
from .realtime import EventBus, event_bus
from .redis_client import redis_client
from .workers import WorkerDirectory, directory


def get_event_bus() -> EventBus:
    return event_bus


def get_notifier(bus: EventBus = Depends(get_event_bus)) -> Notifier:
    return NotificationService(SessionLocal, bus)


def get_directory() -> WorkerDirectory:
    return directory


def get_lifecycle(
    notifier: Notifier = Depends(get_notifier),
    bus: EventBus = Depends(get_event_bus),
    workers: WorkerDirectory = Depends(get_directory),
) -> BookingLifecycleManager:
    return BookingLifecycleManager(notifier, bus, workers)


def get_payment_provider() -> PaymentProvider:
    return momo_client


def get_redis():
    return redis_client
