from datetime import date, datetime, time
from types import SimpleNamespace

import pytest

from medremind.core.errors import ScheduleValidationError
from medremind.scheduling.schedule import (
    Period,
    derive_period,
    format_time,
    is_active_on,
    parse_dose_time,
    scheduled_at,
    validate_schedule,
)


@pytest.mark.parametrize(
    "t, expected",
    [
        (time(4, 59), Period.NIGHT),
        (time(5, 0), Period.MORNING),
        (time(11, 59), Period.MORNING),
        (time(12, 0), Period.AFTERNOON),
        (time(16, 59), Period.AFTERNOON),
        (time(17, 0), Period.EVENING),
        (time(20, 59), Period.EVENING),
        (time(21, 0), Period.NIGHT),
        (time(0, 0), Period.NIGHT),
    ],
)
def test_derive_period_boundaries(t, expected):
    assert derive_period(t) is expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("09:00", time(9, 0)),
        ("21:30", time(21, 30)),
        ("09:00:00", time(9, 0)),
        ("9:00 PM", time(21, 0)),
        ("9:00PM", time(21, 0)),
        ("8 AM", time(8, 0)),
        ("7:15pm", time(19, 15)),
        ("12:00 am", time(0, 0)),
    ],
)
def test_parse_dose_time_accepts_common_formats(raw, expected):
    assert parse_dose_time(raw) == expected


def test_parse_dose_time_rejects_garbage():
    with pytest.raises(ValueError):
        parse_dose_time("breakfast")


def test_is_active_on_includes_both_ends():
    med = SimpleNamespace(start_date=date(2025, 3, 1), end_date=date(2025, 3, 31))
    assert is_active_on(med, date(2025, 3, 1))
    assert is_active_on(med, date(2025, 3, 31))
    assert not is_active_on(med, date(2025, 2, 28))
    assert not is_active_on(med, date(2025, 4, 1))


def test_validate_schedule_accepts_single_day_course():
    validate_schedule([time(9, 0)], date(2025, 3, 10), date(2025, 3, 10), 0)


@pytest.mark.parametrize(
    "kwargs, message",
    [
        (dict(times=[]), "at least one"),
        (dict(times=[time(9, 0), time(9, 0, 30)]), "unique"),
        (dict(end_date=date(2025, 3, 9)), "end_date"),
        (dict(quantity_remaining=-1), "quantity_remaining"),
        (dict(quantity_threshold=-1), "quantity_threshold"),
    ],
)
def test_validate_schedule_rejects_broken_schedules(kwargs, message):
    args = dict(
        times=[time(9, 0)],
        start_date=date(2025, 3, 10),
        end_date=date(2025, 3, 20),
        quantity_remaining=10,
        quantity_threshold=2,
    )
    args.update(kwargs)
    with pytest.raises(ScheduleValidationError) as exc:
        validate_schedule(**args)
    assert message in str(exc.value)


def test_schedule_validation_error_is_a_value_error():
    assert issubclass(ScheduleValidationError, ValueError)


def test_scheduled_at_drops_seconds():
    assert scheduled_at(date(2025, 3, 10), time(9, 0, 45)) == datetime(2025, 3, 10, 9, 0)


def test_format_time():
    assert format_time(time(7, 5)) == "07:05"
    assert format_time(None) == ""
