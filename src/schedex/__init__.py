"""schedex - single-schedule timers with drift-free pacing and cron support.

Example:
    from schedex import cancel, run_every, run_in

    async def main():
        ticker = run_in(lambda: print("tick"), 500, repeat=True)
        nightly = run_every(backup, "0 3 * * *", timezone="Europe/Berlin")
        ...
        cancel(ticker)
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("schedex")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from schedex.errors import (
    InvalidCronExpression,
    NotCancellableError,
    SchedexError,
    ScheduleValidationError,
)
from schedex.runner import RunnerHandle
from schedex.schedule import CronExpression
from schedex.service import cancel, run_at, run_every, run_in, stats
from schedex.timescale import (
    AcceleratedTimeScale,
    ClockScale,
    IdentityTimeScale,
    TickScale,
    TimeScale,
)
from schedex.types import CronRule, FixedDelay, RunnerOptions, RunnerStats, RunnerStatus

__all__ = [
    # Entry points
    "run_in",
    "run_at",
    "run_every",
    "cancel",
    "stats",
    "RunnerHandle",
    # Types
    "CronExpression",
    "CronRule",
    "FixedDelay",
    "RunnerOptions",
    "RunnerStats",
    "RunnerStatus",
    # Time scales
    "TimeScale",
    "TickScale",
    "ClockScale",
    "IdentityTimeScale",
    "AcceleratedTimeScale",
    # Errors
    "SchedexError",
    "ScheduleValidationError",
    "InvalidCronExpression",
    "NotCancellableError",
]
