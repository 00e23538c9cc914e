from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from medremind.core.auth import get_current_user
from medremind.db.database import get_db
from medremind.db.models import User
from medremind.db.schema import SettingsRead, SettingsUpdate, UserRead
from medremind.users.directory import UserDirectory

router = APIRouter()


@router.get("/me", response_model=UserRead)
async def get_my_user(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserRead:
    """
    Get the currently authenticated user, with both sides of the caretaker relationship.
    """
    directory = UserDirectory(db)
    return UserRead(
        id=current_user.id,
        email=current_user.email,
        name=current_user.name,
        role=current_user.role,
        caretakers=await directory.caretaker_ids(current_user.id),
        patients=await directory.patient_ids(current_user.id),
        created_at=current_user.created_at,
    )


@router.get("/me/settings", response_model=SettingsRead)
async def get_my_settings(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await UserDirectory(db).get_settings(current_user.id)


@router.put("/me/settings", response_model=SettingsRead)
async def update_my_settings(
    payload: SettingsUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await UserDirectory(db).update_settings(current_user.id, **payload.model_dump())
