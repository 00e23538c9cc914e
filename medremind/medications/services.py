import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from medremind.core.errors import NotFoundError
from medremind.db.models import DoseLog, DoseTime, Medication
from medremind.db.schema import MedicationCreate, MedicationUpdate
from medremind.scheduling.evaluator import DoseState, evaluate_doses
from medremind.scheduling.schedule import derive_period, is_active_on, scheduled_at, validate_schedule
from medremind.store.adherence import AdherenceStore

logger = logging.getLogger(__name__)


@dataclass
class ScheduledDose:
    medication_id: uuid.UUID
    medication_name: str
    dosage: str
    dose_time_id: Optional[uuid.UUID]
    time: time
    scheduled_time: datetime
    status: str

    @property
    def period(self) -> str:
        return derive_period(self.time).value


def _dose(medication: Medication, dose_time_id, t: time, scheduled: datetime, status: str) -> ScheduledDose:
    return ScheduledDose(
        medication_id=medication.id,
        medication_name=medication.name,
        dosage=medication.dosage,
        dose_time_id=dose_time_id,
        time=t,
        scheduled_time=scheduled,
        status=status,
    )


class MedicationService:
    """The operations the HTTP layer offers on a user's medications.

    Mutations validate before anything is written. Unknown ids and ids owned
    by another user both raise ``NotFoundError``.
    """

    def __init__(self, db: AsyncSession, clock):
        self.store = AdherenceStore(db)
        self.clock = clock

    async def get_medication(self, user_id: uuid.UUID, medication_id: uuid.UUID) -> Medication:
        medication = await self.store.get_medication(user_id, medication_id)
        if medication is None:
            raise NotFoundError("Medication not found")
        return medication

    async def list_medications(self, user_id: uuid.UUID) -> List[Medication]:
        return await self.store.list_medications(user_id)

    async def add_medication(self, user_id: uuid.UUID, data: MedicationCreate) -> Medication:
        validate_schedule(
            data.times,
            data.start_date,
            data.end_date,
            data.quantity_remaining,
            data.quantity_threshold,
        )
        medication = Medication(
            user_id=user_id,
            name=data.name,
            dosage=data.dosage,
            start_date=data.start_date,
            end_date=data.end_date,
            quantity_remaining=data.quantity_remaining,
            quantity_threshold=data.quantity_threshold,
            notes=data.notes,
            created_at=self.clock.now(),
            times=[DoseTime(time=t.replace(second=0, microsecond=0)) for t in sorted(data.times)],
        )
        await self.store.add_medication(medication)
        logger.info("User %s added medication %s", user_id, medication.id)
        return medication

    async def update_medication(
        self,
        user_id: uuid.UUID,
        medication_id: uuid.UUID,
        data: MedicationUpdate,
    ) -> Medication:
        medication = await self.get_medication(user_id, medication_id)
        changes = data.model_dump(exclude_unset=True, exclude={"times"})

        new_times = None
        if data.times is not None:
            new_times = [entry.time.replace(second=0, microsecond=0) for entry in data.times]

        validate_schedule(
            new_times if new_times is not None else [t.time for t in medication.times],
            changes.get("start_date") or medication.start_date,
            changes.get("end_date") or medication.end_date,
            changes["quantity_remaining"] if changes.get("quantity_remaining") is not None else medication.quantity_remaining,
            changes["quantity_threshold"] if changes.get("quantity_threshold") is not None else medication.quantity_threshold,
        )

        for field, value in changes.items():
            if value is None and field != "notes":
                continue
            setattr(medication, field, value)

        if data.times is not None:
            # Keep rows whose id was sent back so existing references stay valid
            current = {t.id: t for t in medication.times}
            updated = []
            for entry in data.times:
                row = current.get(entry.id) if entry.id is not None else None
                if row is None:
                    row = DoseTime(time=entry.time.replace(second=0, microsecond=0))
                else:
                    row.time = entry.time.replace(second=0, microsecond=0)
                updated.append(row)
            medication.times = updated

        await self.store.save_medication(medication)
        logger.info("User %s updated medication %s", user_id, medication.id)
        return medication

    async def delete_medication(self, user_id: uuid.UUID, medication_id: uuid.UUID) -> None:
        medication = await self.get_medication(user_id, medication_id)
        await self.store.delete_medication(medication)
        logger.info("User %s deleted medication %s", user_id, medication_id)

    async def mark_dose_taken(
        self,
        user_id: uuid.UUID,
        medication_id: uuid.UUID,
        dose_time_id: uuid.UUID,
    ) -> DoseLog:
        """Record today's dose at ``dose_time_id`` as taken.

        A pending (missed) log moves to taken; without a log a taken one is
        created. Stock drops by one, never below zero. Marking an already
        taken dose again changes nothing.
        """
        now = self.clock.now()
        try:
            return await self._take(user_id, medication_id, dose_time_id, now)
        except IntegrityError:
            # A poll inserted the pending log between our read and the commit
            await self.store.db.rollback()
            logger.info("Dose log for %s recorded concurrently, retrying", medication_id)
            return await self._take(user_id, medication_id, dose_time_id, now)

    async def _take(
        self,
        user_id: uuid.UUID,
        medication_id: uuid.UUID,
        dose_time_id: uuid.UUID,
        now: datetime,
    ) -> DoseLog:
        medication = await self.get_medication(user_id, medication_id)
        dose_time = next((t for t in medication.times if t.id == dose_time_id), None)
        if dose_time is None:
            raise NotFoundError("Time slot not found")

        scheduled = scheduled_at(now.date(), dose_time.time)
        log = await self.store.find_log(medication.id, scheduled)
        if log is not None and log.status == "taken":
            return log

        if log is None:
            log = DoseLog(
                medication_id=medication.id,
                user_id=user_id,
                dose_time_id=dose_time.id,
                scheduled_time=scheduled,
                status="taken",
                taken_time=now,
            )
            self.store.db.add(log)
        else:
            log.status = "taken"
            log.taken_time = now

        medication.quantity_remaining = max(0, medication.quantity_remaining - 1)
        await self.store.db.commit()
        logger.info("User %s took %s scheduled at %s", user_id, medication.name, scheduled)
        return log

    async def get_logs_for_medication(self, user_id: uuid.UUID, medication_id: uuid.UUID) -> List[DoseLog]:
        await self.get_medication(user_id, medication_id)
        return await self.store.list_logs(user_id, medication_id=medication_id)

    async def get_active_medications(self, user_id: uuid.UUID, day: Optional[date] = None) -> List[Medication]:
        day = day or self.clock.now().date()
        return [m for m in await self.store.list_medications(user_id) if is_active_on(m, day)]

    async def get_upcoming_doses(self, user_id: uuid.UUID) -> List[ScheduledDose]:
        """Doses later today that have not been taken yet, earliest first."""
        now = self.clock.now()
        logs = await self.store.list_logs(user_id, day=now.date())
        taken = {(log.medication_id, log.scheduled_time) for log in logs if log.status == "taken"}

        upcoming = []
        for medication in await self.get_active_medications(user_id, now.date()):
            for dose_time in medication.times:
                scheduled = scheduled_at(now.date(), dose_time.time)
                if scheduled <= now or (medication.id, scheduled) in taken:
                    continue
                upcoming.append(_dose(medication, dose_time.id, dose_time.time, scheduled, DoseState.UPCOMING.value))
        return sorted(upcoming, key=lambda d: (d.scheduled_time, d.medication_name))

    async def get_missed_doses(self, user_id: uuid.UUID) -> List[ScheduledDose]:
        """Today's doses whose log still says missed."""
        now = self.clock.now()
        medications = {m.id: m for m in await self.store.list_medications(user_id)}
        missed = []
        for log in await self.store.list_logs(user_id, day=now.date()):
            medication = medications.get(log.medication_id)
            if log.status != "missed" or medication is None:
                continue
            missed.append(
                _dose(medication, log.dose_time_id, log.scheduled_time.time(), log.scheduled_time, log.status)
            )
        return missed

    async def get_low_stock_medications(self, user_id: uuid.UUID) -> List[Medication]:
        return [m for m in await self.store.list_medications(user_id) if m.is_low_stock]

    async def get_today_statuses(self, user_id: uuid.UUID) -> List[ScheduledDose]:
        """Read-only view of today's schedule as the poller would classify it."""
        now = self.clock.now()
        logs = await self.store.list_logs(user_id, day=now.date())
        doses = []
        for medication in await self.get_active_medications(user_id, now.date()):
            evaluation = evaluate_doses(medication, logs, now)
            for status in evaluation.statuses:
                doses.append(
                    _dose(medication, status.dose_time_id, status.time, status.scheduled_time, status.state.value)
                )
        return sorted(doses, key=lambda d: (d.scheduled_time, d.medication_name))
