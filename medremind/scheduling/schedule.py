"""Schedule model helpers.

Pure functions over a medication's dosing schedule. They accept ORM rows or
any object exposing the same attributes, which keeps them usable from the
evaluator and from the request schemas alike.
"""
import enum
from datetime import date, datetime, time
from typing import Iterable, Optional

from medremind.core.errors import ScheduleValidationError


class Period(str, enum.Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


def derive_period(t: time) -> Period:
    """Bucket a time of day: [5,12) morning, [12,17) afternoon, [17,21) evening, else night."""
    hour = t.hour
    if 5 <= hour < 12:
        return Period.MORNING
    if 12 <= hour < 17:
        return Period.AFTERNOON
    if 17 <= hour < 21:
        return Period.EVENING
    return Period.NIGHT


def is_active_on(medication, day: date) -> bool:
    return medication.start_date <= day <= medication.end_date


def parse_dose_time(time_str: str) -> time:
    """
    Try several common time formats and return a time object.
    Raises ValueError if no format matches.
    """
    fmts = ["%H:%M", "%H:%M:%S", "%I:%M %p", "%I:%M%p", "%I %p"]
    for f in fmts:
        try:
            return datetime.strptime(time_str.strip(), f).time()
        except ValueError:
            continue
    # As a last resort, normalise lowercase / dotted AM-PM spellings
    normalized = time_str.replace(".", "").replace("am", " AM").replace("pm", " PM").strip()
    normalized = " ".join(normalized.split())
    for f in fmts:
        try:
            return datetime.strptime(normalized, f).time()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized time format: '{time_str}'")


def validate_schedule(
    times: Iterable[time],
    start_date: date,
    end_date: date,
    quantity_remaining: int,
    quantity_threshold: int = 0,
) -> None:
    times = list(times)
    if not times:
        raise ScheduleValidationError("A medication needs at least one dose time")
    if len({(t.hour, t.minute) for t in times}) != len(times):
        raise ScheduleValidationError("Dose times must be unique")
    if end_date < start_date:
        raise ScheduleValidationError("end_date must not be before start_date")
    if quantity_remaining < 0:
        raise ScheduleValidationError("quantity_remaining must be zero or more")
    if quantity_threshold < 0:
        raise ScheduleValidationError("quantity_threshold must be zero or more")


def scheduled_at(day: date, t: time) -> datetime:
    # Seconds are dropped: a dose is identified by hour and minute only
    return datetime(day.year, day.month, day.day, t.hour, t.minute)


def format_time(t: Optional[time]) -> str:
    if t is None:
        return ""
    return t.strftime("%H:%M")
