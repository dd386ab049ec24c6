import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .errors import Forbidden, NotFound, ValidationError
from .models import Booking, BookingStatus, Review, Worker
from .notifications import Notifier, notify_safely
from .pagination import paginate
from .realtime import EventBus, publish_safely, user_topic
from .schemas import CreateReview
from .security import Actor
from .workers import WorkerDirectory

logger = logging.getLogger(__name__)


async def recompute_worker_rating(db: AsyncSession, worker_id: str) -> None:
    result = await db.execute(
        select(func.avg(Review.rating), func.count(Review.id)).where(Review.worker_id == worker_id)
    )
    avg_rating, count = result.one()

    await db.execute(
        update(Worker)
        .where(Worker.id == worker_id)
        .values(average_rating=float(avg_rating or 0), total_reviews=count or 0)
        .execution_options(synchronize_session=False)
    )


async def create_review(
    db: AsyncSession,
    actor: Actor,
    data: CreateReview,
    directory: WorkerDirectory,
    notifier: Notifier,
    bus: EventBus,
) -> Review:
    result = await db.execute(
        select(Booking).options(selectinload(Booking.review)).where(Booking.id == data.booking_id)
    )
    booking = result.scalar_one_or_none()

    if not booking:
        raise NotFound("Booking not found")

    if booking.customer_id != actor.user_id:
        raise Forbidden("Not your booking")

    if booking.status != BookingStatus.COMPLETED.value:
        raise ValidationError("Booking is not completed", code="NOT_COMPLETED")

    if booking.review:
        raise ValidationError("Review already exists", code="ALREADY_REVIEWED")

    worker = await directory.get_worker(db, booking.worker_id) if booking.worker_id else None
    if not worker:
        raise ValidationError("No worker assigned to booking", code="NO_WORKER")

    review = Review(
        booking_id=booking.id,
        customer_id=actor.user_id,
        worker_id=worker.id,
        rating=data.rating,
        comment=data.comment,
    )
    db.add(review)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("Review already exists", code="ALREADY_REVIEWED")

    await recompute_worker_rating(db, worker.id)
    await db.commit()

    logger.info("review %s (%s stars) for worker %s", review.id, review.rating, worker.id)

    await publish_safely(
        bus,
        user_topic(worker.user_id),
        "review:new",
        {"bookingId": booking.id, "rating": data.rating},
    )
    await notify_safely(
        notifier,
        worker.user_id,
        "REVIEW_RECEIVED",
        "New Review",
        f"You received a {data.rating}-star review",
        {"bookingId": booking.id, "reviewId": review.id},
    )

    return review


async def list_worker_reviews(db: AsyncSession, worker_id: str, page: int, limit: int) -> dict:
    stmt = select(Review).where(Review.worker_id == worker_id).order_by(Review.created_at.desc())
    result = await paginate(db, stmt, page, limit)

    dist = await db.execute(
        select(Review.rating, func.count(Review.id))
        .where(Review.worker_id == worker_id)
        .group_by(Review.rating)
    )
    result["rating_distribution"] = {rating: count for rating, count in dist.all()}
    return result


async def latest_reviews(db: AsyncSession, worker_id: str, limit: int = 10) -> list[Review]:
    result = await db.execute(
        select(Review).where(Review.worker_id == worker_id).order_by(Review.created_at.desc()).limit(limit)
    )
    return list(result.scalars().all())
