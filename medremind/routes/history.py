from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from medremind.core.auth import get_current_user
from medremind.core.deps import get_clock
from medremind.db.database import get_db
from medremind.db.models import User
from medremind.db.schema import DaySummary, WeekSummary
from medremind.medications.history import day_summary, week_summary
from medremind.store.adherence import AdherenceStore

router = APIRouter()


@router.get("/day", response_model=DaySummary)
async def get_day_history(
    day: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
    current_user: User = Depends(get_current_user),
):
    """
    Dose logs and adherence for one day (today by default).

    Examples:
    - GET /history/day
    - GET /history/day?day=2025-11-22
    """
    return await day_summary(AdherenceStore(db), current_user.id, day or clock.now().date())


@router.get("/week", response_model=WeekSummary)
async def get_week_history(
    day: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
    current_user: User = Depends(get_current_user),
):
    """
    Adherence for the Monday-to-Sunday week containing ``day``.
    Returns daily breakdown + overall stats.
    """
    return await week_summary(AdherenceStore(db), current_user.id, day or clock.now().date())
