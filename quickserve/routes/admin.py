from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..bookings import list_all_bookings
from ..db import get_db
from ..deps import get_lifecycle, get_notifier
from ..errors import NotFound
from ..lifecycle import BookingLifecycleManager
from ..models import Booking, BookingStatus, Review, User, UserRole, UserStatus, VerificationStatus, Worker
from ..notifications import Notifier
from ..pagination import MAX_LIMIT, paginate
from ..reviews import latest_reviews
from ..schemas import (
    AdminBookingDetail,
    AdminUpdateUser,
    AdminUserDetail,
    AdminWorkerDetail,
    BookingResponse,
    Page,
    RejectWorker,
    ReviewResponse,
    UserResponse,
    WorkerResponse,
)
from ..security import Actor, require_admin
from .. import workers as worker_service
from .users import load_profile

router = APIRouter(prefix="/admin", tags=["Admin"])

RECENT_BOOKINGS_SHOWN = 10
RECENT_REVIEWS_SHOWN = 5


@router.get("/bookings", response_model=Page[BookingResponse])
async def admin_list_bookings(
    status: BookingStatus | None = None,
    category_id: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_LIMIT),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await list_all_bookings(db, status, category_id, page, limit)


@router.get("/bookings/{booking_id}", response_model=AdminBookingDetail)
async def admin_get_booking(
    booking_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Booking)
        .options(selectinload(Booking.payment), selectinload(Booking.review))
        .where(Booking.id == booking_id)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFound("Booking not found")
    return booking


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def admin_cancel_booking(
    booking_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    lifecycle: BookingLifecycleManager = Depends(get_lifecycle),
):
    return await lifecycle.request_transition(db, booking_id, actor, BookingStatus.CANCELLED)


@router.get("/workers", response_model=Page[WorkerResponse])
async def admin_list_workers(
    status: VerificationStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_LIMIT),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Worker).options(selectinload(Worker.services))
    if status:
        stmt = stmt.where(Worker.verification_status == status.value)
    stmt = stmt.order_by(Worker.created_at.desc())
    return await paginate(db, stmt, page, limit)


@router.get("/workers/{worker_id}", response_model=AdminWorkerDetail)
async def admin_get_worker(
    worker_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Worker)
        .options(selectinload(Worker.services), selectinload(Worker.user))
        .where(Worker.id == worker_id)
    )
    worker = result.scalar_one_or_none()
    if not worker:
        raise NotFound("Worker not found")

    bookings = await db.execute(
        select(Booking)
        .where(Booking.worker_id == worker.id)
        .order_by(Booking.created_at.desc())
        .limit(RECENT_BOOKINGS_SHOWN)
    )

    detail = AdminWorkerDetail.model_validate(worker)
    detail.recent_bookings = [BookingResponse.model_validate(b) for b in bookings.scalars().all()]
    detail.recent_reviews = [ReviewResponse.model_validate(r) for r in await latest_reviews(db, worker.id)]
    return detail


@router.post("/workers/{worker_id}/verify", response_model=WorkerResponse)
async def admin_verify_worker(
    worker_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return await worker_service.set_verification(db, worker_id, True, notifier)


@router.post("/workers/{worker_id}/reject", response_model=WorkerResponse)
async def admin_reject_worker(
    worker_id: str,
    data: RejectWorker | None = None,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return await worker_service.set_verification(db, worker_id, False, notifier, reason=data.reason if data else None)


@router.post("/workers/{worker_id}/suspend", response_model=WorkerResponse)
async def admin_suspend_worker(
    worker_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await worker_service.suspend_worker(db, worker_id)


@router.get("/users", response_model=Page[UserResponse])
async def admin_list_users(
    role: UserRole | None = None,
    status: UserStatus | None = None,
    search: str | None = Query(None, min_length=1, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_LIMIT),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(User)
    if role:
        stmt = stmt.where(User.role == role.value)
    if status:
        stmt = stmt.where(User.status == status.value)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                User.phone.contains(search),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
                User.email.ilike(pattern),
            )
        )
    stmt = stmt.order_by(User.created_at.desc())
    return await paginate(db, stmt, page, limit)


@router.get("/users/{user_id}", response_model=AdminUserDetail)
async def admin_get_user(
    user_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await load_profile(db, user_id)

    bookings = await db.execute(
        select(Booking)
        .where(Booking.customer_id == user.id)
        .order_by(Booking.created_at.desc())
        .limit(RECENT_BOOKINGS_SHOWN)
    )
    reviews = await db.execute(
        select(Review)
        .where(Review.customer_id == user.id)
        .order_by(Review.created_at.desc())
        .limit(RECENT_REVIEWS_SHOWN)
    )

    detail = AdminUserDetail.model_validate(user)
    detail.recent_bookings = [BookingResponse.model_validate(b) for b in bookings.scalars().all()]
    detail.recent_reviews = [ReviewResponse.model_validate(r) for r in reviews.scalars().all()]
    return detail


@router.patch("/users/{user_id}", response_model=UserResponse)
async def admin_update_user(
    user_id: str,
    data: AdminUpdateUser,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await load_profile(db, user_id)

    if data.role is not None:
        user.role = data.role.value
    if data.status is not None:
        user.status = data.status.value
        if data.status is not UserStatus.ACTIVE and user.worker:
            user.worker.is_online = False

    await db.commit()
    return user


@router.delete("/users/{user_id}")
async def admin_deactivate_user(
    user_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    # soft delete: bookings, payments and reviews keep their owner
    user = await load_profile(db, user_id)
    user.status = UserStatus.INACTIVE.value
    if user.worker:
        user.worker.is_online = False

    await db.commit()
    return {"message": "User deactivated"}
