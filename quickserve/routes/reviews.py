from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from .. import reviews as service
from ..db import get_db
from ..deps import get_directory, get_event_bus, get_notifier
from ..notifications import Notifier
from ..pagination import MAX_LIMIT
from ..realtime import EventBus
from ..schemas import CreateReview, ReviewResponse, WorkerReviewsPage
from ..security import Actor, get_current_actor
from ..workers import WorkerDirectory

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.post("", response_model=ReviewResponse, status_code=201)
async def create_review(
    data: CreateReview,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    directory: WorkerDirectory = Depends(get_directory),
    notifier: Notifier = Depends(get_notifier),
    bus: EventBus = Depends(get_event_bus),
):
    return await service.create_review(db, actor, data, directory, notifier, bus)


@router.get("/worker/{worker_id}", response_model=WorkerReviewsPage)
async def worker_reviews(
    worker_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    db: AsyncSession = Depends(get_db),
    directory: WorkerDirectory = Depends(get_directory),
):
    await directory.require_worker(db, worker_id)
    return await service.list_worker_reviews(db, worker_id, page, limit)
