"""Clock capabilities handed to anything that needs the current time."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...

    def monotonic_ms(self) -> float: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic_ms(self) -> float:
        return time.monotonic() * 1000


class FixedClock:
    """Every read returns the same instant; the monotonic clock never advances."""

    def __init__(self, instant: datetime, monotonic_offset_ms: float = 0.0):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self.instant = instant
        self.monotonic_offset_ms = monotonic_offset_ms

    def now(self) -> datetime:
        return self.instant

    def monotonic_ms(self) -> float:
        return self.monotonic_offset_ms

    def epoch_ms(self) -> int:
        return int(self.instant.timestamp() * 1000)


def iso_timestamp(clock: Clock) -> str:
    return clock.now().strftime("%Y-%m-%dT%H:%M:%SZ")
