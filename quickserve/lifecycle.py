"""
Booking lifecycle: the status state machine and its side effects.

    PENDING -> ACCEPTED -> WORKER_EN_ROUTE -> IN_PROGRESS -> COMPLETED
    (any non-terminal) -> CANCELLED

Every status write is a conditional UPDATE keyed on the status it was
validated against, so two requests can never both apply a transition. The
claim of an unassigned PENDING booking is additionally keyed on
worker_id IS NULL: exactly one worker wins it.

Notifications and realtime events go out after the commit. They are best
effort and never undo or block the status change.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import Forbidden, InvalidTransition, NotAvailable, NotFound, ValidationError
from .models import Booking, BookingStatus, PaymentStatus, VerificationStatus, Worker, utcnow
from .notifications import Notifier, notify_safely
from .realtime import EventBus, booking_topic, publish_safely
from .security import Actor
from .workers import WorkerDirectory, find_offering

logger = logging.getLogger(__name__)

TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.ACCEPTED, BookingStatus.CANCELLED}),
    BookingStatus.ACCEPTED: frozenset({BookingStatus.WORKER_EN_ROUTE, BookingStatus.CANCELLED}),
    BookingStatus.WORKER_EN_ROUTE: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, allowed in TRANSITIONS.items() if not allowed)


@dataclass(frozen=True)
class NotificationTemplate:
    type: str
    title: str
    body: str


STATUS_NOTIFICATIONS: dict[BookingStatus, NotificationTemplate] = {
    BookingStatus.ACCEPTED: NotificationTemplate(
        "BOOKING_ACCEPTED", "Booking Accepted", "Your service request has been accepted"
    ),
    BookingStatus.WORKER_EN_ROUTE: NotificationTemplate(
        "WORKER_EN_ROUTE", "Worker On The Way", "Your service provider is on the way"
    ),
    BookingStatus.IN_PROGRESS: NotificationTemplate(
        "SERVICE_STARTED", "Service Started", "Your service is now in progress"
    ),
    BookingStatus.COMPLETED: NotificationTemplate(
        "SERVICE_COMPLETED",
        "Service Completed",
        "Your service has been completed. Please rate your experience.",
    ),
    BookingStatus.CANCELLED: NotificationTemplate(
        "BOOKING_CANCELLED", "Booking Cancelled", "Your booking has been cancelled."
    ),
}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def is_terminal(status: BookingStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_capture_payment(booking: Booking) -> bool:
    """A booking may be paid for once it is COMPLETED and not already paid."""
    if booking.status != BookingStatus.COMPLETED.value:
        return False
    return booking.payment is None or booking.payment.status != PaymentStatus.COMPLETED.value


@dataclass
class _Parties:
    is_customer: bool
    is_worker: bool
    worker_user_id: str | None


class BookingLifecycleManager:
    def __init__(
        self,
        notifier: Notifier,
        bus: EventBus,
        directory: WorkerDirectory,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.notifier = notifier
        self.bus = bus
        self.directory = directory
        self.clock = clock

    async def request_transition(
        self,
        db: AsyncSession,
        booking_id: str,
        actor: Actor,
        target_status: BookingStatus | str,
        final_price: float | None = None,
    ) -> Booking:
        target = BookingStatus(target_status)
        booking = await self._load(db, booking_id)
        current = BookingStatus(booking.status)

        if target is BookingStatus.ACCEPTED and current is BookingStatus.ACCEPTED and not actor.is_admin:
            # a rival worker whose claim arrives after the winner's committed
            parties = await self._parties(db, booking, actor)
            if not parties.is_worker and await self.directory.get_worker_for_user(db, actor.user_id):
                raise NotAvailable("Booking is not available")

        if not can_transition(current, target):
            raise InvalidTransition(current.value, target.value)

        if final_price is not None:
            if target is not BookingStatus.COMPLETED:
                raise ValidationError(
                    "finalPrice can only be set when completing a booking",
                    code="FINAL_PRICE_NOT_ALLOWED",
                )
            if final_price <= 0:
                raise ValidationError("finalPrice must be positive", code="INVALID_FINAL_PRICE")

        if target is BookingStatus.ACCEPTED and booking.worker_id is None:
            worker = await self._claim(db, booking, actor)
            parties = _Parties(is_customer=False, is_worker=True, worker_user_id=worker.user_id)
        else:
            parties = await self._parties(db, booking, actor)
            self._authorize(actor, target, parties)
            await self._apply(db, booking, current, target, final_price)

        booking = await self._load(db, booking_id)
        logger.info(
            "booking %s %s -> %s by user %s",
            booking.id, current.value, target.value, actor.user_id,
        )

        await self._dispatch(booking, target, actor, parties)
        return booking

    async def _load(self, db: AsyncSession, booking_id: str) -> Booking:
        result = await db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFound("Booking not found")
        return booking

    async def _parties(self, db: AsyncSession, booking: Booking, actor: Actor) -> _Parties:
        worker_user_id = None
        if booking.worker_id:
            worker = await self.directory.get_worker(db, booking.worker_id)
            worker_user_id = worker.user_id if worker else None

        return _Parties(
            is_customer=booking.customer_id == actor.user_id,
            is_worker=worker_user_id is not None and worker_user_id == actor.user_id,
            worker_user_id=worker_user_id,
        )

    def _authorize(self, actor: Actor, target: BookingStatus, parties: _Parties) -> None:
        if actor.is_admin:
            return

        if target is BookingStatus.CANCELLED:
            if not (parties.is_customer or parties.is_worker):
                raise Forbidden("Only customer or worker can cancel")
            return

        if not parties.is_worker:
            raise Forbidden("Only the assigned worker can update status")

    async def _claim(self, db: AsyncSession, booking: Booking, actor: Actor) -> Worker:
        worker = await self.directory.get_worker_for_user(db, actor.user_id)
        if not worker:
            raise Forbidden("Worker profile not found", code="NOT_WORKER")

        if worker.verification_status != VerificationStatus.VERIFIED.value:
            raise Forbidden("Worker not verified", code="NOT_VERIFIED")

        if worker.user_id == booking.customer_id:
            raise Forbidden("Cannot accept your own booking")

        offering = find_offering(worker, booking.category_id)
        if not offering:
            raise Forbidden("You do not offer this service", code="SERVICE_NOT_OFFERED")

        stmt = (
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.status == BookingStatus.PENDING.value,
                Booking.worker_id.is_(None),
            )
            .values(
                status=BookingStatus.ACCEPTED.value,
                worker_id=worker.id,
                estimated_price=offering.base_price,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)

        if result.rowcount != 1:
            await db.rollback()
            logger.info("worker %s lost claim on booking %s", worker.id, booking.id)
            raise NotAvailable("Booking is not available")

        await db.commit()
        return worker

    async def _apply(
        self,
        db: AsyncSession,
        booking: Booking,
        current: BookingStatus,
        target: BookingStatus,
        final_price: float | None,
    ) -> None:
        values = {"status": target.value}
        now = self.clock()

        if target is BookingStatus.IN_PROGRESS and booking.started_at is None:
            values["started_at"] = now

        if target is BookingStatus.COMPLETED:
            values["completed_at"] = now
            if final_price is not None:
                values["final_price"] = final_price

        stmt = (
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)

        if result.rowcount != 1:
            await db.rollback()
            fresh = await self._load(db, booking.id)
            raise InvalidTransition(fresh.status, target.value)

        if target is BookingStatus.COMPLETED and booking.worker_id:
            await db.execute(
                update(Worker)
                .where(Worker.id == booking.worker_id)
                .values(total_jobs_completed=Worker.total_jobs_completed + 1)
                .execution_options(synchronize_session=False)
            )

        await db.commit()

    def _recipients(self, booking: Booking, target: BookingStatus, actor: Actor, parties: _Parties) -> list[str]:
        if target is not BookingStatus.CANCELLED:
            return [booking.customer_id]

        if parties.is_customer:
            return [parties.worker_user_id] if parties.worker_user_id else []
        if parties.is_worker:
            return [booking.customer_id]

        # admin cancellation: tell everyone involved
        recipients = [booking.customer_id]
        if parties.worker_user_id:
            recipients.append(parties.worker_user_id)
        return recipients

    async def _dispatch(self, booking: Booking, target: BookingStatus, actor: Actor, parties: _Parties) -> None:
        await publish_safely(
            self.bus,
            booking_topic(booking.id),
            "booking:status",
            {"bookingId": booking.id, "status": target.value, "workerId": booking.worker_id},
        )

        template = STATUS_NOTIFICATIONS.get(target)
        if not template:
            return

        for user_id in self._recipients(booking, target, actor, parties):
            await notify_safely(
                self.notifier,
                user_id,
                template.type,
                template.title,
                template.body,
                {"bookingId": booking.id, "status": target.value},
            )
