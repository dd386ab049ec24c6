import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .errors import NotFound, ValidationError
from .models import (
    ServiceCategory,
    User,
    UserRole,
    UserStatus,
    VerificationStatus,
    Worker,
    WorkerService,
    utcnow,
)
from .notifications import Notifier, notify_safely
from .schemas import RegisterWorker, UpdateWorkerLocation
from .security import Actor

logger = logging.getLogger(__name__)


def find_offering(worker: Worker, category_id: str) -> WorkerService | None:
    for service in worker.services:
        if service.category_id == category_id and service.is_active:
            return service
    return None


class WorkerDirectory:
    """Read-side lookups of worker profiles with their offerings loaded."""

    async def get_worker(self, db: AsyncSession, worker_id: str) -> Worker | None:
        result = await db.execute(
            select(Worker)
            .options(selectinload(Worker.services))
            .where(Worker.id == worker_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_worker_for_user(self, db: AsyncSession, user_id: str) -> Worker | None:
        result = await db.execute(
            select(Worker)
            .options(selectinload(Worker.services))
            .where(Worker.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def require_worker(self, db: AsyncSession, worker_id: str) -> Worker:
        worker = await self.get_worker(db, worker_id)
        if not worker:
            raise NotFound("Worker not found")
        return worker

    async def require_worker_for_user(self, db: AsyncSession, user_id: str) -> Worker:
        worker = await self.get_worker_for_user(db, user_id)
        if not worker:
            raise NotFound("Worker profile not found")
        return worker


directory = WorkerDirectory()


async def register_worker(db: AsyncSession, actor: Actor, data: RegisterWorker) -> Worker:
    if await directory.get_worker_for_user(db, actor.user_id):
        raise ValidationError("Already registered as worker", code="ALREADY_WORKER")

    category_ids = [s.category_id for s in data.services]
    if len(set(category_ids)) != len(category_ids):
        raise ValidationError("Each category may only be offered once", code="DUPLICATE_SERVICE")

    result = await db.execute(select(ServiceCategory.id).where(ServiceCategory.id.in_(category_ids)))
    known = set(result.scalars().all())
    missing = [c for c in category_ids if c not in known]
    if missing:
        raise NotFound(f"Service category not found: {missing[0]}")

    worker = Worker(user_id=actor.user_id, bio=data.bio)
    db.add(worker)
    await db.flush()

    for s in data.services:
        db.add(
            WorkerService(
                worker_id=worker.id,
                category_id=s.category_id,
                base_price=s.base_price,
                price_unit=s.price_unit,
                description=s.description,
            )
        )

    if not actor.is_admin:
        await db.execute(update(User).where(User.id == actor.user_id).values(role=UserRole.WORKER.value))

    await db.commit()
    logger.info("registered worker %s for user %s", worker.id, actor.user_id)

    return await directory.get_worker(db, worker.id)


async def update_location(db: AsyncSession, actor: Actor, data: UpdateWorkerLocation) -> Worker:
    worker = await directory.require_worker_for_user(db, actor.user_id)

    worker.current_latitude = data.latitude
    worker.current_longitude = data.longitude
    if data.is_online is not None:
        worker.is_online = data.is_online

    await db.commit()
    return worker


async def set_verification(
    db: AsyncSession,
    worker_id: str,
    verified: bool,
    notifier: Notifier,
    reason: str | None = None,
) -> Worker:
    worker = await directory.require_worker(db, worker_id)

    if verified:
        worker.verification_status = VerificationStatus.VERIFIED.value
        worker.verified_at = utcnow()
        title = "Verification Approved"
        body = "Your worker profile has been verified. You can now receive job requests."
    else:
        worker.verification_status = VerificationStatus.REJECTED.value
        title = "Verification Rejected"
        body = reason or "Your worker verification was rejected. Please contact support."

    await db.commit()
    logger.info("worker %s verification set to %s", worker.id, worker.verification_status)

    await notify_safely(notifier, worker.user_id, "SYSTEM", title, body, {"workerId": worker.id})
    return worker


async def suspend_worker(db: AsyncSession, worker_id: str) -> Worker:
    worker = await directory.require_worker(db, worker_id)

    await db.execute(update(User).where(User.id == worker.user_id).values(status=UserStatus.SUSPENDED.value))
    worker.is_online = False
    await db.commit()

    logger.info("worker %s suspended", worker.id)
    return worker
