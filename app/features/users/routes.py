"""
Profile routes for the authenticated user.
"""
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.schemas import UserResponse, UserUpdate
from app.features.users.dependencies import get_current_user
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["users"])


@router.get("/me", response_model=UserResponse)
async def read_profile(user: Annotated[User, Depends(get_current_user)]):
    return user


@router.patch("/me", response_model=UserResponse)
async def update_profile(
    update_data: UserUpdate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Change display name or avatar. Email and global role are managed by the identity provider."""
    for field, value in update_data.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(user, field, value)

    await db.commit()
    await db.refresh(user)
    log.info("User %s updated profile", user.id)
    return user
