"""Time scales: pluggable clocks for running schedules at real or simulated speed.

A fixed-delay schedule only asks its time scale how many milliseconds one
tick lasts. A cron schedule asks for the current time in a timezone and
for the speedup used to compress a virtual gap back into a real delay.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Protocol, runtime_checkable
from zoneinfo import ZoneInfo


@runtime_checkable
class TickScale(Protocol):
    """Converts tick counts into milliseconds."""

    def ms_per_tick(self) -> float:
        ...


@runtime_checkable
class ClockScale(Protocol):
    """Supplies a (possibly accelerated) current time."""

    def now(self, tz: str) -> datetime:
        ...

    def speedup(self) -> float:
        ...


TimeScale = TickScale | ClockScale


class IdentityTimeScale:
    """Real wall-clock time: one tick is one millisecond, no speedup."""

    def ms_per_tick(self) -> float:
        return 1.0

    def now(self, tz: str) -> datetime:
        return datetime.now(ZoneInfo(tz))

    def speedup(self) -> float:
        return 1.0

    def __repr__(self) -> str:
        return "IdentityTimeScale()"


class AcceleratedTimeScale:
    """Virtual clock that runs ``speedup`` times faster than real time.

    The virtual clock reads ``start`` at construction and then advances
    ``speedup`` virtual milliseconds per real millisecond. Ticks shrink
    accordingly, so a fixed-delay schedule of 1000 ticks fires after
    ``1000 / speedup`` real milliseconds.

    Example:
        scale = AcceleratedTimeScale(60, start=datetime(2024, 1, 1, tzinfo=timezone.utc))
        handle = run_every(report, "* * * * *", time_scale=scale)  # fires every real second
    """

    def __init__(self, speedup: float, start: datetime | None = None) -> None:
        if speedup <= 0:
            raise ValueError(f"speedup must be positive, got {speedup}")
        self._speedup = float(speedup)
        if start is None:
            start = datetime.now(timezone.utc)
        elif start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._start = start
        self._origin = time.monotonic()

    def ms_per_tick(self) -> float:
        return 1.0 / self._speedup

    def now(self, tz: str) -> datetime:
        elapsed = (time.monotonic() - self._origin) * self._speedup
        return (self._start + timedelta(seconds=elapsed)).astimezone(ZoneInfo(tz))

    def speedup(self) -> float:
        return self._speedup

    def __repr__(self) -> str:
        return f"AcceleratedTimeScale(speedup={self._speedup}, start={self._start.isoformat()})"
