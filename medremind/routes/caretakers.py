import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from medremind.core.auth import get_current_user
from medremind.core.deps import get_clock
from medremind.core.errors import NotFoundError, RelationshipError
from medremind.db.database import get_db
from medremind.db.models import User
from medremind.db.schema import AddCaretakerRequest, ContactRead, DoseLogRead, MedicationRead
from medremind.notifications import dispatcher as intents
from medremind.notifications.dispatcher import NotificationDispatcher
from medremind.store.adherence import AdherenceStore
from medremind.users.directory import UserDirectory

router = APIRouter()


@router.get("/", response_model=List[ContactRead])
async def list_caretakers(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    directory = UserDirectory(db)
    return await directory.get_users(await directory.caretaker_ids(current_user.id))


@router.post("/", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
async def add_caretaker(
    payload: AddCaretakerRequest,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
    current_user: User = Depends(get_current_user),
):
    try:
        caretaker = await UserDirectory(db).add_caretaker(current_user, payload.email)
    except RelationshipError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await NotificationDispatcher(db, clock).emit(
        intents.caretaker_invite(caretaker.id, current_user.name or current_user.email)
    )
    return caretaker


@router.delete("/{caretaker_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_caretaker(
    caretaker_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
    current_user: User = Depends(get_current_user),
):
    try:
        caretaker = await UserDirectory(db).remove_caretaker(current_user, caretaker_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    await NotificationDispatcher(db, clock).emit(
        intents.caretaker_removed(caretaker.id, current_user.name or current_user.email)
    )


# ---------------- CARETAKER VIEWS ----------------

@router.get("/patients", response_model=List[ContactRead])
async def list_patients(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    directory = UserDirectory(db)
    return await directory.get_users(await directory.patient_ids(current_user.id))


async def _require_patient(directory: UserDirectory, caretaker: User, patient_id: uuid.UUID) -> None:
    # Unlinked patients look the same as unknown ones
    if not await directory.is_caretaker_of(caretaker.id, patient_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")


@router.get("/patients/{patient_id}/medications", response_model=List[MedicationRead])
async def patient_medications(
    patient_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await _require_patient(UserDirectory(db), current_user, patient_id)
    return await AdherenceStore(db).list_medications(patient_id)


@router.get("/patients/{patient_id}/logs", response_model=List[DoseLogRead])
async def patient_logs(
    patient_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await _require_patient(UserDirectory(db), current_user, patient_id)
    return await AdherenceStore(db).list_logs(patient_id)
