"""Time sources.

Cache expiry runs on a monotonic clock so wall-clock adjustments never make an
entry fresh again; audit stamps use naive UTC datetimes like every other
timestamp column in the store.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def time(self) -> float:
        ...

    def now(self) -> datetime:
        ...


class SystemClock:
    def time(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalise an aware datetime to the naive UTC form stored in the database."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
