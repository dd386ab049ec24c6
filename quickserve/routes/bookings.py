from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from .. import bookings as service
from ..db import get_db
from ..deps import get_directory, get_event_bus, get_lifecycle, get_notifier
from ..lifecycle import BookingLifecycleManager
from ..models import BookingStatus
from ..notifications import Notifier
from ..pagination import MAX_LIMIT
from ..realtime import EventBus
from ..schemas import BookingResponse, CreateBookingRequest, Page, UpdateBookingStatus
from ..security import Actor, get_current_actor
from ..workers import WorkerDirectory

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("", response_model=BookingResponse, status_code=201)
async def create_booking(
    data: CreateBookingRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    directory: WorkerDirectory = Depends(get_directory),
    notifier: Notifier = Depends(get_notifier),
    bus: EventBus = Depends(get_event_bus),
):
    return await service.create_booking(db, actor, data, directory, notifier, bus)


@router.get("", response_model=Page[BookingResponse])
async def list_my_bookings(
    status: BookingStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await service.list_customer_bookings(db, actor, status, page, limit)


@router.get("/open", response_model=Page[BookingResponse])
async def list_open_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_LIMIT),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    directory: WorkerDirectory = Depends(get_directory),
):
    worker = await directory.require_worker_for_user(db, actor.user_id)
    return await service.list_open_bookings(db, worker, page, limit)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    directory: WorkerDirectory = Depends(get_directory),
):
    return await service.get_booking_for_actor(db, actor, booking_id, directory)


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: str,
    data: UpdateBookingStatus,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    lifecycle: BookingLifecycleManager = Depends(get_lifecycle),
):
    return await lifecycle.request_transition(db, booking_id, actor, data.status, data.final_price)


@router.post("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    lifecycle: BookingLifecycleManager = Depends(get_lifecycle),
):
    return await lifecycle.request_transition(db, booking_id, actor, BookingStatus.ACCEPTED)
