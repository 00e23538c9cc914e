from datetime import datetime
from typing import Protocol

import pytz

from medremind.core.config import settings


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Reads the local wall clock of the configured timezone.

    The returned datetime is naive so it compares directly with the naive
    scheduled times stored on dose logs.
    """

    def __init__(self, tz_name: str | None = None):
        self.tz = pytz.timezone(tz_name or settings.timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz).replace(tzinfo=None)
