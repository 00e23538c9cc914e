import logging
import uuid
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from medremind.db.models import DoseLog, EscalationTask, Medication
from medremind.scheduling.evaluator import LogIntent

logger = logging.getLogger(__name__)


class AdherenceStore:
    """Medications, dose logs and pending escalations for one session.

    Every read is scoped by the owning user id, so a medication that belongs
    to somebody else looks exactly like a medication that does not exist.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Medications
    # ------------------------------------------------------------------

    async def list_medications(self, user_id: uuid.UUID) -> List[Medication]:
        result = await self.db.execute(
            select(Medication)
            .where(Medication.user_id == user_id)
            .order_by(Medication.created_at, Medication.name)
        )
        return list(result.scalars().all())

    async def get_medication(self, user_id: uuid.UUID, medication_id: uuid.UUID) -> Optional[Medication]:
        result = await self.db.execute(
            select(Medication).where(
                Medication.id == medication_id,
                Medication.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def add_medication(self, medication: Medication) -> Medication:
        self.db.add(medication)
        await self.db.commit()
        return medication

    async def save_medication(self, medication: Medication) -> Medication:
        await self.db.commit()
        return medication

    async def delete_medication(self, medication: Medication) -> None:
        await self.db.execute(delete(DoseLog).where(DoseLog.medication_id == medication.id))
        await self.db.execute(delete(EscalationTask).where(EscalationTask.medication_id == medication.id))
        await self.db.delete(medication)
        await self.db.commit()

    # ------------------------------------------------------------------
    # Dose logs
    # ------------------------------------------------------------------

    async def list_logs(
        self,
        user_id: uuid.UUID,
        medication_id: Optional[uuid.UUID] = None,
        day: Optional[date] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[DoseLog]:
        query = select(DoseLog).where(DoseLog.user_id == user_id)
        if medication_id is not None:
            query = query.where(DoseLog.medication_id == medication_id)
        if day is not None:
            start = datetime.combine(day, time.min)
            end = datetime.combine(day + timedelta(days=1), time.min)
        if start is not None:
            query = query.where(DoseLog.scheduled_time >= start)
        if end is not None:
            query = query.where(DoseLog.scheduled_time < end)

        result = await self.db.execute(query.order_by(DoseLog.scheduled_time))
        return list(result.scalars().all())

    async def find_log(self, medication_id: uuid.UUID, scheduled_time: datetime) -> Optional[DoseLog]:
        result = await self.db.execute(
            select(DoseLog).where(
                DoseLog.medication_id == medication_id,
                DoseLog.scheduled_time == scheduled_time,
            )
        )
        return result.scalar_one_or_none()

    async def record_log(self, intent: LogIntent) -> tuple[DoseLog, bool]:
        """Insert the log an evaluator intent asks for.

        Returns ``(log, created)``. When a log for the same medication and
        scheduled time already exists it is returned untouched, so replaying
        an intent never duplicates a dose or overwrites a taken status.
        """
        existing = await self.find_log(intent.medication_id, intent.scheduled_time)
        if existing is not None:
            return existing, False

        log = DoseLog(
            medication_id=intent.medication_id,
            user_id=intent.user_id,
            dose_time_id=intent.dose_time_id,
            scheduled_time=intent.scheduled_time,
            status=intent.status,
        )
        self.db.add(log)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race on the unique (medication, scheduled_time) key
            await self.db.rollback()
            existing = await self.find_log(intent.medication_id, intent.scheduled_time)
            if existing is None:
                raise
            logger.info("Dose log for %s at %s already recorded", intent.medication_id, intent.scheduled_time)
            return existing, False
        return log, True

    # ------------------------------------------------------------------
    # Escalation queue
    # ------------------------------------------------------------------

    async def schedule_escalation(
        self,
        patient_id: uuid.UUID,
        medication_id: uuid.UUID,
        scheduled_time: datetime,
        fire_at: datetime,
    ) -> Optional[EscalationTask]:
        """Queue a caretaker check; returns None when one is already queued for this dose."""
        result = await self.db.execute(
            select(EscalationTask).where(
                EscalationTask.medication_id == medication_id,
                EscalationTask.scheduled_time == scheduled_time,
            )
        )
        if result.scalar_one_or_none() is not None:
            return None

        task = EscalationTask(
            patient_id=patient_id,
            medication_id=medication_id,
            scheduled_time=scheduled_time,
            fire_at=fire_at,
            status="pending",
        )
        self.db.add(task)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return None
        return task

    async def due_escalations(self, patient_id: uuid.UUID, now: datetime) -> List[EscalationTask]:
        result = await self.db.execute(
            select(EscalationTask)
            .where(
                EscalationTask.patient_id == patient_id,
                EscalationTask.status == "pending",
                EscalationTask.fire_at <= now,
            )
            .order_by(EscalationTask.fire_at)
        )
        return list(result.scalars().all())

    async def pending_escalations(self, patient_id: uuid.UUID) -> List[EscalationTask]:
        result = await self.db.execute(
            select(EscalationTask)
            .where(
                EscalationTask.patient_id == patient_id,
                EscalationTask.status == "pending",
            )
            .order_by(EscalationTask.fire_at)
        )
        return list(result.scalars().all())

    async def complete_escalation(self, task: EscalationTask) -> None:
        task.status = "done"
        await self.db.commit()
