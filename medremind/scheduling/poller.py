"""Recurring dose polling.

One ``DosePoller`` runs per logged-in user. Every tick it evaluates the
user's medications, records the dose logs the evaluator asks for, emits
reminder and low-stock notifications, and fires caretaker escalations whose
delay has elapsed. Escalations are stored as ``EscalationTask`` rows so a
restart does not lose them; while the poller runs, an in-process timer also
fires each one on time instead of waiting for the next tick.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from medremind.core.config import settings
from medremind.notifications import dispatcher as intents
from medremind.notifications.dispatcher import NotificationDispatcher
from medremind.scheduling.evaluator import Evaluation, evaluate_doses
from medremind.scheduling.schedule import format_time
from medremind.store.adherence import AdherenceStore
from medremind.users.directory import UserDirectory

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    evaluated: int = 0
    logs_created: int = 0
    reminders: int = 0
    low_stock: int = 0
    escalations_queued: int = 0
    caretaker_alerts: int = 0
    failures: int = 0


@dataclass(frozen=True)
class _MedicationSnapshot:
    # Plain copies: a rollback expires ORM rows and async sessions cannot reload them lazily
    id: uuid.UUID
    name: str
    dosage: str
    quantity_remaining: int
    low_stock: bool

    @classmethod
    def of(cls, medication) -> "_MedicationSnapshot":
        return cls(
            id=medication.id,
            name=medication.name,
            dosage=medication.dosage,
            quantity_remaining=medication.quantity_remaining,
            low_stock=medication.quantity_remaining <= medication.quantity_threshold,
        )


class DosePoller:
    def __init__(
        self,
        user_id: uuid.UUID,
        session_factory,
        clock,
        interval: Optional[timedelta] = None,
        due_window: Optional[timedelta] = None,
        escalation_delay: Optional[timedelta] = None,
    ):
        self.user_id = user_id
        self.session_factory = session_factory
        self.clock = clock
        self.interval = interval or timedelta(minutes=settings.poll_interval_minutes)
        self.due_window = due_window or timedelta(minutes=settings.due_window_minutes)
        self.escalation_delay = escalation_delay or timedelta(minutes=settings.escalation_delay_minutes)

        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._timers: Dict[uuid.UUID, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"dose-poller-{self.user_id}")
        logger.info("Dose poller started for user %s (every %s)", self.user_id, self.interval)

    async def stop(self) -> None:
        tasks = list(self._timers.values())
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()
        self._task = None
        logger.info("Dose poller stopped for user %s", self.user_id)

    async def _run(self) -> None:
        await self._rearm_pending()
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Dose poll for user %s failed", self.user_id)
            await asyncio.sleep(self.interval.total_seconds())

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def tick(self) -> Optional[TickReport]:
        """Run one poll. Returns None when a previous tick is still running."""
        if self._lock.locked():
            logger.warning("Dose poll for user %s still running, skipping tick", self.user_id)
            return None
        async with self._lock:
            async with self.session_factory() as db:
                return await self._tick(db)

    async def _tick(self, db) -> TickReport:
        now = self.clock.now()
        report = TickReport()
        store = AdherenceStore(db)
        directory = UserDirectory(db)
        dispatcher = NotificationDispatcher(db, self.clock)

        user = await directory.lookup_user(self.user_id)
        if user is None:
            logger.warning("Dose poll for unknown user %s", self.user_id)
            return report

        user_settings = await directory.get_settings(self.user_id)
        notify = user_settings.notifications
        escalate = user_settings.caretaker_alerts and bool(await directory.caretaker_ids(self.user_id))

        medications = await store.list_medications(self.user_id)
        logs = await store.list_logs(self.user_id, day=now.date())

        # Evaluate everything before the first write
        plans = [
            (_MedicationSnapshot.of(med), evaluate_doses(med, logs, now, self.due_window))
            for med in medications
        ]
        report.evaluated = len(plans)

        for snapshot, evaluation in plans:
            try:
                await self._reconcile(store, dispatcher, snapshot, evaluation, now, notify, escalate, report)
            except SQLAlchemyError:
                # Dropped for this tick; the next one re-derives it through the missed path
                await db.rollback()
                report.failures += 1
                logger.warning(
                    "Could not reconcile doses of medication %s for user %s",
                    snapshot.id, self.user_id, exc_info=True,
                )

        try:
            report.caretaker_alerts = await self._escalate_due(db, now)
        except SQLAlchemyError:
            await db.rollback()
            report.failures += 1
            logger.warning("Could not run caretaker escalations for user %s", self.user_id, exc_info=True)

        logger.debug("Dose poll for user %s at %s: %s", self.user_id, now, report)
        return report

    async def _reconcile(
        self,
        store: AdherenceStore,
        dispatcher: NotificationDispatcher,
        snapshot: _MedicationSnapshot,
        evaluation: Evaluation,
        now: datetime,
        notify: bool,
        escalate: bool,
        report: TickReport,
    ) -> None:
        for intent in evaluation.new_logs:
            _, created = await store.record_log(intent)
            if not created:
                continue
            report.logs_created += 1
            if not intent.reminder:
                continue

            if notify:
                await dispatcher.emit(intents.reminder(self.user_id, snapshot.id, snapshot.name, snapshot.dosage))
                report.reminders += 1
            if escalate:
                task = await store.schedule_escalation(
                    patient_id=self.user_id,
                    medication_id=snapshot.id,
                    scheduled_time=intent.scheduled_time,
                    fire_at=now + self.escalation_delay,
                )
                if task is not None:
                    report.escalations_queued += 1
                    self._arm(task.id, self.escalation_delay)

        # Repeats every tick while stock stays low
        if snapshot.low_stock and notify:
            await dispatcher.emit(
                intents.low_stock(self.user_id, snapshot.id, snapshot.name, snapshot.quantity_remaining)
            )
            report.low_stock += 1

    # ------------------------------------------------------------------
    # Caretaker escalation
    # ------------------------------------------------------------------

    async def run_escalations(self) -> int:
        """Fire every escalation whose delay has elapsed. Returns caretaker alerts sent."""
        async with self._lock:
            async with self.session_factory() as db:
                return await self._escalate_due(db, self.clock.now())

    async def _escalate_due(self, db, now: datetime) -> int:
        store = AdherenceStore(db)
        tasks = await store.due_escalations(self.user_id, now)
        if not tasks:
            return 0

        directory = UserDirectory(db)
        dispatcher = NotificationDispatcher(db, self.clock)
        patient = await directory.lookup_user(self.user_id)
        user_settings = await directory.get_settings(self.user_id)
        caretaker_ids = await directory.caretaker_ids(self.user_id)
        patient_name = (patient.name or patient.email) if patient is not None else "Your patient"

        sent = 0
        for task in tasks:
            medication = await store.get_medication(self.user_id, task.medication_id)
            log = await store.find_log(task.medication_id, task.scheduled_time)
            # Taken since, or deleted while waiting: nothing to report
            if (
                medication is not None
                and log is not None
                and log.status == "missed"
                and user_settings.caretaker_alerts
            ):
                for caretaker_id in caretaker_ids:
                    await dispatcher.emit(
                        intents.missed_dose(
                            caretaker_id,
                            medication.id,
                            patient_name,
                            medication.name,
                            format_time(task.scheduled_time.time()),
                        ),
                        commit=False,
                    )
                    sent += 1
                logger.info(
                    "Escalated missed %s dose at %s to %d caretaker(s)",
                    medication.name, task.scheduled_time, len(caretaker_ids),
                )
            # Alerts and the done flag commit together
            await store.complete_escalation(task)
        return sent

    def _arm(self, task_id: uuid.UUID, delay: timedelta) -> None:
        # Timers only exist while the loop runs; ticks driven by hand rely on the sweep
        if not self.running or task_id in self._timers:
            return
        self._timers[task_id] = asyncio.create_task(self._fire_later(task_id, delay.total_seconds()))

    async def _fire_later(self, task_id: uuid.UUID, seconds: float) -> None:
        try:
            await asyncio.sleep(max(seconds, 0))
            await self.run_escalations()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Caretaker escalation %s for user %s failed", task_id, self.user_id)
        finally:
            self._timers.pop(task_id, None)

    async def _rearm_pending(self) -> None:
        async with self.session_factory() as db:
            pending = await AdherenceStore(db).pending_escalations(self.user_id)
        now = self.clock.now()
        for task in pending:
            if task.fire_at > now:
                self._arm(task.id, task.fire_at - now)


class PollerRegistry:
    """Keeps one poller per logged-in user."""

    def __init__(self, session_factory, clock, **poller_options):
        self.session_factory = session_factory
        self.clock = clock
        self.poller_options = poller_options
        self._pollers: Dict[uuid.UUID, DosePoller] = {}

    def get(self, user_id: uuid.UUID) -> Optional[DosePoller]:
        return self._pollers.get(user_id)

    def __contains__(self, user_id) -> bool:
        return user_id in self._pollers

    async def start(self, user_id: uuid.UUID) -> DosePoller:
        # A fresh login replaces the old session's timers. The swap happens
        # before the first await so overlapping logins never orphan a poller.
        previous = self._pollers.pop(user_id, None)
        poller = DosePoller(user_id, self.session_factory, self.clock, **self.poller_options)
        self._pollers[user_id] = poller
        poller.start()
        if previous is not None:
            await previous.stop()
        return poller

    async def stop(self, user_id: uuid.UUID) -> None:
        poller = self._pollers.pop(user_id, None)
        if poller is not None:
            await poller.stop()

    async def stop_all(self) -> None:
        for user_id in list(self._pollers):
            await self.stop(user_id)
