"""Due-dose evaluation.

``evaluate_doses`` looks at one medication at one instant and decides, for
every dose time of that day, whether it is upcoming, due, taken or missed.
It never touches the database: logs that ought to exist are returned as
``LogIntent`` records and the caller persists them.
"""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Iterable, List, Optional

from medremind.scheduling.schedule import is_active_on, scheduled_at

DUE_WINDOW = timedelta(minutes=5)


class DoseState(str, enum.Enum):
    UPCOMING = "upcoming"
    DUE = "due"
    TAKEN = "taken"
    MISSED = "missed"


@dataclass(frozen=True)
class DoseStatus:
    dose_time_id: Optional[uuid.UUID]
    time: time
    scheduled_time: datetime
    state: DoseState


@dataclass(frozen=True)
class LogIntent:
    medication_id: uuid.UUID
    user_id: uuid.UUID
    dose_time_id: Optional[uuid.UUID]
    scheduled_time: datetime
    status: str = "missed"
    # True when the dose was caught inside the due window and the user
    # should be reminded; False for the catch-up path after a polling gap
    reminder: bool = False


@dataclass
class Evaluation:
    medication_id: uuid.UUID
    statuses: List[DoseStatus] = field(default_factory=list)
    new_logs: List[LogIntent] = field(default_factory=list)

    @property
    def due(self) -> List[DoseStatus]:
        return [s for s in self.statuses if s.state is DoseState.DUE]

    @property
    def reminders(self) -> List[LogIntent]:
        return [intent for intent in self.new_logs if intent.reminder]


def classify(scheduled: datetime, now: datetime, due_window: timedelta = DUE_WINDOW) -> DoseState:
    """Classify a dose instant that has no log yet."""
    if scheduled > now:
        return DoseState.UPCOMING
    if now - scheduled <= due_window:
        return DoseState.DUE
    return DoseState.MISSED


def evaluate_doses(
    medication,
    logs: Iterable,
    now: datetime,
    due_window: timedelta = DUE_WINDOW,
) -> Evaluation:
    evaluation = Evaluation(medication_id=medication.id)
    today = now.date()
    if not is_active_on(medication, today):
        return evaluation

    # The (medication, scheduled_time) pair is the only dedupe key
    existing = {
        log.scheduled_time: log
        for log in logs
        if log.medication_id == medication.id
    }
    seen = set()

    for dose_time in sorted(medication.times, key=lambda dt: dt.time):
        scheduled = scheduled_at(today, dose_time.time)
        if scheduled in seen:
            continue
        seen.add(scheduled)

        log = existing.get(scheduled)
        if log is not None:
            state = DoseState.TAKEN if log.status == "taken" else DoseState.MISSED
        else:
            state = classify(scheduled, now, due_window)
            if state is not DoseState.UPCOMING:
                evaluation.new_logs.append(
                    LogIntent(
                        medication_id=medication.id,
                        user_id=medication.user_id,
                        dose_time_id=dose_time.id,
                        scheduled_time=scheduled,
                        reminder=state is DoseState.DUE,
                    )
                )

        evaluation.statuses.append(
            DoseStatus(
                dose_time_id=dose_time.id,
                time=dose_time.time,
                scheduled_time=scheduled,
                state=state,
            )
        )

    return evaluation
