from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..db import get_db
from ..errors import NotFound
from ..models import User
from ..schemas import ProfileResponse, UpdateProfile
from ..security import Actor, get_current_actor

router = APIRouter(prefix="/users", tags=["Users"])


async def load_profile(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(
        select(User)
        .options(selectinload(User.worker))
        .where(User.id == user_id)
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if not user:
        raise NotFound("User not found")
    return user


@router.get("/me", response_model=ProfileResponse)
async def get_me(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await load_profile(db, actor.user_id)


@router.patch("/me", response_model=ProfileResponse)
async def update_me(
    data: UpdateProfile,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    user = await load_profile(db, actor.user_id)

    # role and status are not self-service
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(user, field, value)

    await db.commit()
    return await load_profile(db, actor.user_id)
