import math

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import User, VerificationStatus, Worker, WorkerService

DEFAULT_RADIUS_KM = 10.0


def haversine(lat1, lon1, lat2, lon2):
    R = 6371
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return R * c


async def search_workers(
    db: AsyncSession,
    latitude: float,
    longitude: float,
    category_id: str | None = None,
    radius_km: float = DEFAULT_RADIUS_KM,
    page: int = 1,
    limit: int = 20,
) -> list[dict]:
    """
    Online, verified workers within radius_km of the origin, nearest first.

    There is no ranking beyond distance and nothing is reserved: the first
    worker to claim a booking wins it.
    """
    stmt = (
        select(Worker, User)
        .join(User, User.id == Worker.user_id)
        .where(
            Worker.is_online.is_(True),
            Worker.verification_status == VerificationStatus.VERIFIED.value,
            Worker.current_latitude.is_not(None),
            Worker.current_longitude.is_not(None),
        )
    )

    if category_id:
        offers = (
            select(WorkerService.id)
            .where(
                WorkerService.worker_id == Worker.id,
                WorkerService.category_id == category_id,
                WorkerService.is_active.is_(True),
            )
            .exists()
        )
        stmt = stmt.where(offers)

    result = await db.execute(stmt)

    candidates = []
    for worker, user in result.all():
        distance = haversine(latitude, longitude, worker.current_latitude, worker.current_longitude)
        if distance > radius_km:
            continue

        candidates.append(
            {
                "id": worker.id,
                "user_id": worker.user_id,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "bio": worker.bio,
                "average_rating": worker.average_rating,
                "total_reviews": worker.total_reviews,
                "total_jobs_completed": worker.total_jobs_completed,
                "current_latitude": worker.current_latitude,
                "current_longitude": worker.current_longitude,
                "distance_km": round(distance, 2),
            }
        )

    candidates.sort(key=lambda x: x["distance_km"])

    offset = (page - 1) * limit
    return candidates[offset:offset + limit]
