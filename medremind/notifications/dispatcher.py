import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from medremind.core.errors import NotFoundError
from medremind.db.models import Notification

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ("reminder", "missed", "low-stock", "caretaker-invite", "system")


@dataclass(frozen=True)
class NotificationIntent:
    user_id: uuid.UUID
    title: str
    message: str
    type: str
    medication_id: Optional[uuid.UUID] = None

    def __post_init__(self):
        if self.type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {self.type}")


# ---------------------------------------------------------------------------
# Intent builders
# ---------------------------------------------------------------------------

def reminder(user_id, medication_id, name: str, dosage: str) -> NotificationIntent:
    return NotificationIntent(
        user_id=user_id,
        medication_id=medication_id,
        title="Medication Reminder",
        message=f"Time to take {name} - {dosage}",
        type="reminder",
    )


def missed_dose(caretaker_id, medication_id, patient_name: str, name: str, at: str) -> NotificationIntent:
    return NotificationIntent(
        user_id=caretaker_id,
        medication_id=medication_id,
        title="Missed Medication",
        message=f"{patient_name} missed their {name} dose at {at}",
        type="missed",
    )


def low_stock(user_id, medication_id, name: str, remaining: int) -> NotificationIntent:
    return NotificationIntent(
        user_id=user_id,
        medication_id=medication_id,
        title="Low Medication Stock",
        message=f"You have only {remaining} {name} left. Time to refill!",
        type="low-stock",
    )


def caretaker_invite(caretaker_id, patient_name: str) -> NotificationIntent:
    return NotificationIntent(
        user_id=caretaker_id,
        title="New Patient Connection",
        message=f"{patient_name} has added you as their caretaker",
        type="caretaker-invite",
    )


def caretaker_removed(caretaker_id, patient_name: str) -> NotificationIntent:
    return NotificationIntent(
        user_id=caretaker_id,
        title="Patient Connection Removed",
        message=f"{patient_name} has removed you as their caretaker",
        type="system",
    )


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class NotificationDispatcher:
    """Persists notification intents and serves the read/unread operations.

    ``emit`` does not deduplicate: emitting the same intent twice stores two
    notifications. Callers decide how often a trigger fires.
    """

    def __init__(self, db: AsyncSession, clock=None):
        self.db = db
        self.clock = clock

    def _now(self) -> datetime:
        return self.clock.now() if self.clock is not None else datetime.utcnow()

    async def emit(self, intent: NotificationIntent, commit: bool = True) -> Notification:
        notification = Notification(
            user_id=intent.user_id,
            medication_id=intent.medication_id,
            title=intent.title,
            message=intent.message,
            type=intent.type,
            read=False,
            created_at=self._now(),
        )
        self.db.add(notification)
        if commit:
            await self.db.commit()
        logger.info("Notification %s for user %s: %s", intent.type, intent.user_id, intent.title)
        return notification

    async def list(self, user_id: uuid.UUID, unread_only: bool = False) -> List[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.read.is_(False))
        result = await self.db.execute(query.order_by(Notification.created_at.desc()))
        return list(result.scalars().all())

    async def unread_count(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
        )
        return result.scalar_one()

    async def _get(self, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification not found")
        return notification

    async def mark_read(self, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
        notification = await self._get(user_id, notification_id)
        notification.read = True
        await self.db.commit()
        return notification

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount

    async def delete(self, user_id: uuid.UUID, notification_id: uuid.UUID) -> None:
        notification = await self._get(user_id, notification_id)
        await self.db.delete(notification)
        await self.db.commit()

    async def clear(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            delete(Notification)
            .where(Notification.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount
