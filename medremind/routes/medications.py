import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from medremind.core.auth import get_current_user
from medremind.core.deps import get_clock
from medremind.core.errors import NotFoundError, ScheduleValidationError
from medremind.db.database import get_db
from medremind.db.models import User
from medremind.db.schema import (
    DoseLogRead,
    MedicationCreate,
    MedicationRead,
    MedicationUpdate,
    ScheduledDoseRead,
)
from medremind.medications.services import MedicationService

router = APIRouter()


def get_service(db: AsyncSession = Depends(get_db), clock=Depends(get_clock)) -> MedicationService:
    return MedicationService(db, clock)


# ---------------- QUERIES ----------------

@router.get("/", response_model=List[MedicationRead])
async def list_medications(
    service: MedicationService = Depends(get_service),
    current_user: User = Depends(get_current_user),
):
    return await service.list_medications(current_user.id)


@router.get("/active", response_model=List[MedicationRead])
async def active_medications(
    day: Optional[date] = None,
    service: MedicationService = Depends(get_service),
    current_user: User = Depends(get_current_user),
):
    """Medications whose validity window covers ``day`` (today by default)."""
    return await service.get_active_medications(current_user.id, day)


@router.get("/today", response_model=List[ScheduledDoseRead])
async def todays_doses(
    service: MedicationService = Depends(get_service),
    current_user: User = Depends(get_current_user),
):
    return await service.get_today_statuses(current_user.id)


@router.get("/upcoming", response_model=List[ScheduledDoseRead])
async def upcoming_doses(
    service: MedicationService = Depends(get_service),
    current_user: User = Depends(get_current_user),
):
    return await service.get_upcoming_doses(current_user.id)


@router.get("/missed", response_model=List[ScheduledDoseRead])
async def missed_doses(
    service: MedicationService = Depends(get_service),
    current_user: User = Depends(get_current_user),
):
    return await service.get_missed_doses(current_user.id)


@router.get("/low-stock", response_model=List[MedicationRead])
async def low_stock_medications(
    service: MedicationService = Depends(get_service),
    current_user: User = Depends(get_current_user),
):
    return await service.get_low_stock_medications(current_user.id)


# ---------------- MUTATIONS ----------------

@router.post("/", response_model=MedicationRead, status_code=status.HTTP_201_CREATED)
async def create_medication(
    payload: MedicationCreate,
    service: MedicationService = Depends(get_service),
    current_user: User = Depends(get_current_user),
):
    try:
        return await service.add_medication(current_user.id, payload)
    except ScheduleValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/{medication_id}", response_model=MedicationRead)
async def get_medication(
    medication_id: uuid.UUID,
    service: MedicationService = Depends(get_service),
    current_user: User = Depends(get_current_user),
):
    try:
        return await service.get_medication(current_user.id, medication_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.put("/{medication_id}", response_model=MedicationRead)
async def update_medication(
    medication_id: uuid.UUID,
    payload: MedicationUpdate,
    service: MedicationService = Depends(get_service),
    current_user: User = Depends(get_current_user),
):
    try:
        return await service.update_medication(current_user.id, medication_id, payload)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ScheduleValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.delete("/{medication_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_medication(
    medication_id: uuid.UUID,
    service: MedicationService = Depends(get_service),
    current_user: User = Depends(get_current_user),
):
    try:
        await service.delete_medication(current_user.id, medication_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


# ---------------- MARK AS TAKEN ----------------

@router.post("/{medication_id}/times/{dose_time_id}/take", response_model=DoseLogRead)
async def mark_dose_taken(
    medication_id: uuid.UUID,
    dose_time_id: uuid.UUID,
    service: MedicationService = Depends(get_service),
    current_user: User = Depends(get_current_user),
):
    try:
        return await service.mark_dose_taken(current_user.id, medication_id, dose_time_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


# ------------------ LOGS ------------------

@router.get("/{medication_id}/logs", response_model=List[DoseLogRead])
async def medication_logs(
    medication_id: uuid.UUID,
    service: MedicationService = Depends(get_service),
    current_user: User = Depends(get_current_user),
):
    try:
        return await service.get_logs_for_medication(current_user.id, medication_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
