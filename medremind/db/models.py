import uuid
from datetime import datetime
from sqlalchemy import (
    Column,
    String,
    DateTime,
    Date,
    Time,
    Boolean,
    ForeignKey,
    Integer,
    Text,
    Uuid,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from medremind.db.database import Base
from medremind.scheduling.schedule import derive_period


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    email = Column(String(320), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="patient")  # 'patient' | 'caretaker'
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"


class CaretakerLink(Base):
    """One row per (patient, caretaker) pair.

    Both the patient's ``caretakers`` list and the caretaker's ``patients``
    list are read from this table, so the two views cannot drift apart.
    """
    __tablename__ = "caretaker_links"

    patient_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    caretaker_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UserSettings(Base):
    __tablename__ = "user_settings"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    notifications = Column(Boolean, default=True, nullable=False)
    caretaker_alerts = Column(Boolean, default=True, nullable=False)


class Medication(Base):
    __tablename__ = "medications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    dosage = Column(String(255), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    quantity_remaining = Column(Integer, nullable=False, default=0)
    quantity_threshold = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    times = relationship(
        "DoseTime",
        back_populates="medication",
        cascade="all, delete-orphan",
        order_by="DoseTime.time",
        lazy="selectin",
    )

    @property
    def frequency(self) -> int:
        return len(self.times)

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_remaining <= self.quantity_threshold

    def __repr__(self) -> str:
        return f"<Medication id={self.id} name={self.name} user={self.user_id}>"


class DoseTime(Base):
    __tablename__ = "dose_times"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    medication_id = Column(Uuid(as_uuid=True), ForeignKey("medications.id", ondelete="CASCADE"), nullable=False, index=True)
    time = Column(Time, nullable=False)

    medication = relationship("Medication", back_populates="times")

    @property
    def period(self) -> str:
        return derive_period(self.time).value

    def __repr__(self) -> str:
        return f"<DoseTime id={self.id} time={self.time:%H:%M}>"


class DoseLog(Base):
    __tablename__ = "dose_logs"
    __table_args__ = (
        UniqueConstraint("medication_id", "scheduled_time", name="uq_dose_logs_medication_scheduled"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    medication_id = Column(Uuid(as_uuid=True), ForeignKey("medications.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    dose_time_id = Column(Uuid(as_uuid=True), nullable=True)
    scheduled_time = Column(DateTime, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="missed")  # 'taken' | 'missed'
    taken_time = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<DoseLog medication={self.medication_id} at={self.scheduled_time} status={self.status}>"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    medication_id = Column(Uuid(as_uuid=True), nullable=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(32), nullable=False)  # reminder | missed | low-stock | caretaker-invite | system
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


class EscalationTask(Base):
    """Deferred caretaker check for one dose.

    Stored instead of held in memory so a pending check survives restarts.
    """
    __tablename__ = "escalation_tasks"
    __table_args__ = (
        UniqueConstraint("medication_id", "scheduled_time", name="uq_escalation_tasks_medication_scheduled"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    patient_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    medication_id = Column(Uuid(as_uuid=True), nullable=False)
    scheduled_time = Column(DateTime, nullable=False)
    fire_at = Column(DateTime, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")  # 'pending' | 'done'
