import logging
import uuid
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from medremind.core.errors import NotFoundError, RelationshipError
from medremind.db.models import CaretakerLink, User, UserSettings

logger = logging.getLogger(__name__)


class UserDirectory:
    """Read access to users plus the caretaker/patient relationship."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lookup_user(self, user_id: uuid.UUID) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def find_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalars().first()

    async def create_user(
        self,
        *,
        email: str,
        password_hash: str,
        name: Optional[str] = None,
        role: str = "patient",
    ) -> User:
        user = User(
            email=email.lower(),
            name=name,
            password_hash=password_hash,
            role=role,
        )
        self.db.add(user)
        await self.db.commit()
        return user

    async def get_users(self, user_ids: List[uuid.UUID]) -> List[User]:
        if not user_ids:
            return []
        result = await self.db.execute(select(User).where(User.id.in_(user_ids)).order_by(User.name))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Caretaker links
    # ------------------------------------------------------------------

    async def caretaker_ids(self, patient_id: uuid.UUID) -> List[uuid.UUID]:
        result = await self.db.execute(
            select(CaretakerLink.caretaker_id)
            .where(CaretakerLink.patient_id == patient_id)
            .order_by(CaretakerLink.created_at)
        )
        return list(result.scalars().all())

    async def patient_ids(self, caretaker_id: uuid.UUID) -> List[uuid.UUID]:
        result = await self.db.execute(
            select(CaretakerLink.patient_id)
            .where(CaretakerLink.caretaker_id == caretaker_id)
            .order_by(CaretakerLink.created_at)
        )
        return list(result.scalars().all())

    async def is_caretaker_of(self, caretaker_id: uuid.UUID, patient_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(CaretakerLink).where(
                CaretakerLink.caretaker_id == caretaker_id,
                CaretakerLink.patient_id == patient_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def add_caretaker(self, patient: User, caretaker_email: str) -> User:
        caretaker = await self.find_by_email(caretaker_email)
        if caretaker is None or caretaker.role != "caretaker":
            raise RelationshipError("No caretaker found with this email")
        if caretaker.id == patient.id:
            raise RelationshipError("You cannot be your own caretaker")
        if await self.is_caretaker_of(caretaker.id, patient.id):
            raise RelationshipError("This caretaker is already added")

        self.db.add(CaretakerLink(patient_id=patient.id, caretaker_id=caretaker.id))
        await self.db.commit()
        logger.info("User %s added caretaker %s", patient.id, caretaker.id)
        return caretaker

    async def remove_caretaker(self, patient: User, caretaker_id: uuid.UUID) -> User:
        caretaker = await self.lookup_user(caretaker_id)
        if caretaker is None or not await self.is_caretaker_of(caretaker_id, patient.id):
            raise NotFoundError("Caretaker not found")

        await self.db.execute(
            delete(CaretakerLink).where(
                CaretakerLink.patient_id == patient.id,
                CaretakerLink.caretaker_id == caretaker_id,
            )
        )
        await self.db.commit()
        logger.info("User %s removed caretaker %s", patient.id, caretaker_id)
        return caretaker

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def get_settings(self, user_id: uuid.UUID) -> UserSettings:
        result = await self.db.execute(select(UserSettings).where(UserSettings.user_id == user_id))
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing
        # Defaults, not persisted until the user changes something
        return UserSettings(user_id=user_id, notifications=True, caretaker_alerts=True)

    async def update_settings(self, user_id: uuid.UUID, **values) -> UserSettings:
        result = await self.db.execute(select(UserSettings).where(UserSettings.user_id == user_id))
        existing = result.scalar_one_or_none()
        if existing is None:
            existing = UserSettings(user_id=user_id, notifications=True, caretaker_alerts=True)
            self.db.add(existing)

        for field, value in values.items():
            if value is not None:
                setattr(existing, field, value)
        await self.db.commit()
        return existing
