from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from .. import workers as service
from ..bookings import list_worker_bookings
from ..db import get_db
from ..deps import get_directory
from ..matching import DEFAULT_RADIUS_KM, search_workers
from ..models import BookingStatus
from ..pagination import MAX_LIMIT
from ..reviews import latest_reviews
from ..schemas import (
    BookingResponse,
    MatchResult,
    Page,
    RegisterWorker,
    ReviewResponse,
    UpdateWorkerLocation,
    WorkerProfileResponse,
    WorkerResponse,
)
from ..security import Actor, get_current_actor
from ..workers import WorkerDirectory

router = APIRouter(prefix="/workers", tags=["Workers"])


@router.post("/register", response_model=WorkerResponse, status_code=201)
async def register_worker(
    data: RegisterWorker,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await service.register_worker(db, actor, data)


@router.get("/search", response_model=list[MatchResult])
async def search(
    latitude: float = Query(ge=-90, le=90),
    longitude: float = Query(ge=-180, le=180),
    category_id: str | None = None,
    radius_km: float = Query(DEFAULT_RADIUS_KM, ge=1, le=50),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_LIMIT),
    db: AsyncSession = Depends(get_db),
):
    return await search_workers(db, latitude, longitude, category_id, radius_km, page, limit)


@router.patch("/me/location", response_model=WorkerResponse)
async def update_my_location(
    data: UpdateWorkerLocation,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await service.update_location(db, actor, data)


@router.get("/me/bookings", response_model=Page[BookingResponse])
async def my_worker_bookings(
    status: BookingStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    directory: WorkerDirectory = Depends(get_directory),
):
    worker = await directory.require_worker_for_user(db, actor.user_id)
    return await list_worker_bookings(db, worker, status, page, limit)


@router.get("/{worker_id}", response_model=WorkerProfileResponse)
async def get_worker(
    worker_id: str,
    db: AsyncSession = Depends(get_db),
    directory: WorkerDirectory = Depends(get_directory),
):
    worker = await directory.require_worker(db, worker_id)
    profile = WorkerProfileResponse.model_validate(worker)
    profile.reviews = [ReviewResponse.model_validate(r) for r in await latest_reviews(db, worker.id)]
    return profile
