from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..db import get_db
from ..errors import NotFound, ValidationError
from ..models import ServiceCategory, VerificationStatus, Worker, WorkerService
from ..schemas import CategoryDetailResponse, CategoryResponse, CreateCategory, UpdateCategory, WorkerResponse
from ..security import Actor, require_admin

router = APIRouter(prefix="/categories", tags=["Categories"])

CATEGORY_WORKERS_SHOWN = 20


async def _require_category(db: AsyncSession, category_id: str) -> ServiceCategory:
    category = await db.get(ServiceCategory, category_id)
    if not category:
        raise NotFound("Category not found")
    return category


async def _ensure_name_free(db: AsyncSession, name: str, category_id: str | None = None) -> None:
    stmt = select(ServiceCategory.id).where(ServiceCategory.name == name)
    if category_id:
        stmt = stmt.where(ServiceCategory.id != category_id)
    if (await db.execute(stmt)).first():
        raise ValidationError("Category already exists", code="CATEGORY_EXISTS")


@router.get("", response_model=list[CategoryResponse])
async def list_categories(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(ServiceCategory)
        .where(ServiceCategory.is_active.is_(True))
        .order_by(ServiceCategory.sort_order, ServiceCategory.name)
    )
    categories = result.scalars().all()

    counts = await db.execute(
        select(WorkerService.category_id, func.count(WorkerService.id))
        .join(Worker, Worker.id == WorkerService.worker_id)
        .where(
            WorkerService.is_active.is_(True),
            Worker.verification_status == VerificationStatus.VERIFIED.value,
            Worker.is_online.is_(True),
        )
        .group_by(WorkerService.category_id)
    )
    active = dict(counts.all())

    return [
        CategoryResponse(
            id=c.id,
            name=c.name,
            description=c.description,
            sort_order=c.sort_order,
            is_active=c.is_active,
            active_workers_count=active.get(c.id, 0),
        )
        for c in categories
    ]


@router.get("/{category_id}", response_model=CategoryDetailResponse)
async def get_category(category_id: str, db: AsyncSession = Depends(get_db)):
    category = await _require_category(db, category_id)
    if not category.is_active:
        raise NotFound("Category not found")

    result = await db.execute(
        select(Worker)
        .options(selectinload(Worker.services))
        .join(WorkerService, WorkerService.worker_id == Worker.id)
        .where(
            WorkerService.category_id == category.id,
            WorkerService.is_active.is_(True),
            Worker.verification_status == VerificationStatus.VERIFIED.value,
        )
        .order_by(Worker.average_rating.desc(), Worker.created_at)
        .limit(CATEGORY_WORKERS_SHOWN)
    )
    workers = result.scalars().all()

    online = await db.scalar(
        select(func.count(WorkerService.id))
        .join(Worker, Worker.id == WorkerService.worker_id)
        .where(
            WorkerService.category_id == category.id,
            WorkerService.is_active.is_(True),
            Worker.verification_status == VerificationStatus.VERIFIED.value,
            Worker.is_online.is_(True),
        )
    )

    detail = CategoryDetailResponse.model_validate(category)
    detail.active_workers_count = online or 0
    detail.workers = [WorkerResponse.model_validate(w) for w in workers]
    return detail


@router.post("", response_model=CategoryResponse, status_code=201)
async def create_category(
    data: CreateCategory,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_name_free(db, data.name)

    category = ServiceCategory(name=data.name, description=data.description, sort_order=data.sort_order)
    db.add(category)
    await db.commit()
    return category


@router.patch("/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: str,
    data: UpdateCategory,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    category = await _require_category(db, category_id)

    changes = data.model_dump(exclude_unset=True)
    if changes.get("name"):
        await _ensure_name_free(db, changes["name"], category.id)

    for field, value in changes.items():
        if value is not None:
            setattr(category, field, value)

    await db.commit()
    return category


@router.delete("/{category_id}")
async def deactivate_category(
    category_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    # bookings and offerings keep pointing at it, so it is hidden rather than removed
    category = await _require_category(db, category_id)
    category.is_active = False
    await db.commit()
    return {"message": "Category deactivated"}
