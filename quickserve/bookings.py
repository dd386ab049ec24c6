import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import Forbidden, NotFound, ValidationError
from .models import Booking, BookingStatus, ServiceCategory, VerificationStatus, Worker, WorkerService
from .notifications import Notifier, notify_safely
from .pagination import paginate
from .realtime import EventBus, publish_safely, user_topic
from .schemas import CreateBookingRequest
from .security import Actor
from .workers import WorkerDirectory, find_offering

logger = logging.getLogger(__name__)


async def create_booking(
    db: AsyncSession,
    actor: Actor,
    data: CreateBookingRequest,
    directory: WorkerDirectory,
    notifier: Notifier,
    bus: EventBus,
) -> Booking:
    category = await db.get(ServiceCategory, data.category_id)
    if not category or not category.is_active:
        raise NotFound("Service category not found")

    estimated_price = None
    worker = None
    if data.worker_id:
        worker = await directory.get_worker(db, data.worker_id)
        offering = None
        if worker and worker.verification_status == VerificationStatus.VERIFIED.value:
            offering = find_offering(worker, data.category_id)
        if not offering:
            raise ValidationError("Worker does not offer this service", code="INVALID_WORKER")
        if worker.user_id == actor.user_id:
            raise ValidationError("Cannot book yourself", code="INVALID_WORKER")
        estimated_price = offering.base_price

    booking = Booking(
        customer_id=actor.user_id,
        worker_id=worker.id if worker else None,
        category_id=category.id,
        description=data.description,
        latitude=data.latitude,
        longitude=data.longitude,
        address=data.address,
        scheduled_at=data.scheduled_at,
        estimated_price=estimated_price,
        status=BookingStatus.PENDING.value,
    )
    db.add(booking)
    await db.commit()

    logger.info("booking %s created by user %s (worker=%s)", booking.id, actor.user_id, booking.worker_id)

    if worker:
        await publish_safely(
            bus,
            user_topic(worker.user_id),
            "booking:new",
            {"bookingId": booking.id, "category": category.name, "address": booking.address},
        )
        await notify_safely(
            notifier,
            worker.user_id,
            "BOOKING_REQUEST",
            "New Booking Request",
            f"New {category.name} service request",
            {"bookingId": booking.id},
        )

    return booking


async def get_booking_for_actor(
    db: AsyncSession,
    actor: Actor,
    booking_id: str,
    directory: WorkerDirectory,
) -> Booking:
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise NotFound("Booking not found")

    if actor.is_admin or booking.customer_id == actor.user_id:
        return booking

    if booking.worker_id:
        worker = await directory.get_worker(db, booking.worker_id)
        if worker and worker.user_id == actor.user_id:
            return booking

    raise Forbidden("Access denied")


async def list_customer_bookings(
    db: AsyncSession,
    actor: Actor,
    status: BookingStatus | None,
    page: int,
    limit: int,
) -> dict:
    stmt = select(Booking).where(Booking.customer_id == actor.user_id)
    if status:
        stmt = stmt.where(Booking.status == status.value)
    stmt = stmt.order_by(Booking.created_at.desc())
    return await paginate(db, stmt, page, limit)


async def list_worker_bookings(
    db: AsyncSession,
    worker: Worker,
    status: BookingStatus | None,
    page: int,
    limit: int,
) -> dict:
    stmt = select(Booking).where(Booking.worker_id == worker.id)
    if status:
        stmt = stmt.where(Booking.status == status.value)
    stmt = stmt.order_by(Booking.created_at.desc())
    return await paginate(db, stmt, page, limit)


async def list_open_bookings(db: AsyncSession, worker: Worker, page: int, limit: int) -> dict:
    """Unassigned PENDING bookings in the categories this worker offers."""
    categories = (
        select(WorkerService.category_id)
        .where(WorkerService.worker_id == worker.id, WorkerService.is_active.is_(True))
    )
    stmt = (
        select(Booking)
        .where(
            Booking.status == BookingStatus.PENDING.value,
            Booking.worker_id.is_(None),
            Booking.category_id.in_(categories),
            Booking.customer_id != worker.user_id,
        )
        .order_by(Booking.created_at.desc())
    )
    return await paginate(db, stmt, page, limit)


async def list_all_bookings(
    db: AsyncSession,
    status: BookingStatus | None,
    category_id: str | None,
    page: int,
    limit: int,
) -> dict:
    stmt = select(Booking)
    if status:
        stmt = stmt.where(Booking.status == status.value)
    if category_id:
        stmt = stmt.where(Booking.category_id == category_id)
    stmt = stmt.order_by(Booking.created_at.desc())
    return await paginate(db, stmt, page, limit)
