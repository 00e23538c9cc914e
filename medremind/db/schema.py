import uuid
import datetime as dt
from typing import List, Literal, Optional
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from medremind.scheduling.schedule import parse_dose_time, validate_schedule


def _coerce_time(value):
    if isinstance(value, str):
        return parse_dose_time(value)
    return value


# ---------------------------------------------------------------------------
# USER SCHEMAS
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    password: str = Field(min_length=6)
    role: Literal["patient", "caretaker"] = "patient"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserRead(BaseModel):
    id: uuid.UUID
    email: EmailStr
    name: Optional[str] = None
    role: str
    caretakers: List[uuid.UUID] = []
    patients: List[uuid.UUID] = []
    created_at: dt.datetime


class ContactRead(BaseModel):
    id: uuid.UUID
    email: EmailStr
    name: Optional[str] = None

    model_config = {"from_attributes": True}


class AddCaretakerRequest(BaseModel):
    email: EmailStr


class SettingsRead(BaseModel):
    notifications: bool = True
    caretaker_alerts: bool = True

    model_config = {"from_attributes": True}


class SettingsUpdate(BaseModel):
    notifications: Optional[bool] = None
    caretaker_alerts: Optional[bool] = None


# ---------------------------------------------------------------------------
# MEDICATION
# ---------------------------------------------------------------------------

class DoseTimeIn(BaseModel):
    id: Optional[uuid.UUID] = None
    time: dt.time

    @field_validator("time", mode="before")
    @classmethod
    def parse_time(cls, value):
        return _coerce_time(value)


class DoseTimeRead(BaseModel):
    id: uuid.UUID
    time: dt.time
    period: str

    model_config = {"from_attributes": True}


class MedicationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    dosage: str = Field(min_length=1, max_length=255)
    times: List[dt.time]
    start_date: dt.date
    end_date: dt.date
    quantity_remaining: int = Field(ge=0)
    quantity_threshold: int = Field(default=0, ge=0)
    notes: Optional[str] = None

    @field_validator("times", mode="before")
    @classmethod
    def parse_times(cls, value):
        if isinstance(value, list):
            return [_coerce_time(v) for v in value]
        return value

    @model_validator(mode="after")
    def check_schedule(self):
        validate_schedule(
            self.times,
            self.start_date,
            self.end_date,
            self.quantity_remaining,
            self.quantity_threshold,
        )
        return self


class MedicationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    dosage: Optional[str] = Field(default=None, min_length=1, max_length=255)
    times: Optional[List[DoseTimeIn]] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    quantity_remaining: Optional[int] = Field(default=None, ge=0)
    quantity_threshold: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class MedicationRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    dosage: str
    frequency: int
    times: List[DoseTimeRead]
    start_date: dt.date
    end_date: dt.date
    quantity_remaining: int
    quantity_threshold: int
    notes: Optional[str] = None
    created_at: dt.datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# DOSE LOG
# ---------------------------------------------------------------------------

class DoseLogRead(BaseModel):
    id: uuid.UUID
    medication_id: uuid.UUID
    user_id: uuid.UUID
    dose_time_id: Optional[uuid.UUID] = None
    scheduled_time: dt.datetime
    status: Literal["taken", "missed"]
    taken_time: Optional[dt.datetime] = None

    model_config = {"from_attributes": True}


class ScheduledDoseRead(BaseModel):
    medication_id: uuid.UUID
    medication_name: str
    dosage: str
    dose_time_id: Optional[uuid.UUID] = None
    time: dt.time
    period: str
    scheduled_time: dt.datetime
    status: str

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# NOTIFICATIONS
# ---------------------------------------------------------------------------

class NotificationRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    medication_id: Optional[uuid.UUID] = None
    title: str
    message: str
    type: str
    read: bool
    created_at: dt.datetime

    model_config = {"from_attributes": True}


class UnreadCount(BaseModel):
    unread: int


# ---------------------------------------------------------------------------
# HISTORY
# ---------------------------------------------------------------------------

class DaySummary(BaseModel):
    date: dt.date
    day: str
    taken: int
    missed: int
    total: int
    percentage: int
    logs: List[DoseLogRead] = []


class WeekSummary(BaseModel):
    start_date: dt.date
    end_date: dt.date
    days: List[DaySummary]
    taken: int
    total: int
    percentage: int
    perfect_days: int
    current_streak: int
