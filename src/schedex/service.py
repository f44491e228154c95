"""Entry points for starting and cancelling schedules.

Each ``run_*`` function validates its inputs, builds the schedule and its
options, and starts one runner on the current event loop. Validation
errors are raised before anything is started.

Example:
    async def main():
        handle = run_in(lambda: print("tick"), 500, repeat=True)
        nightly = run_every(report, "0 3 * * *", timezone="Europe/Berlin")
        ...
        cancel(handle)
"""

import asyncio
import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError

from schedex.errors import NotCancellableError, ScheduleValidationError
from schedex.runner import Runner, RunnerHandle
from schedex.schedule import CronExpression, as_cron_expression
from schedex.timescale import ClockScale, TickScale, TimeScale
from schedex.types import CronRule, FixedDelay, RunnerOptions, RunnerStats, ScheduleSpec

logger = logging.getLogger(__name__)


def _require_loop() -> asyncio.AbstractEventLoop:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        raise ScheduleValidationError(
            "schedules must be started from a running event loop"
        ) from None


def _build_options(**kwargs: Any) -> RunnerOptions:
    # Unset values fall back to the model defaults
    values = {key: value for key, value in kwargs.items() if value is not None}
    try:
        return RunnerOptions(**values)
    except ValidationError as e:
        raise ScheduleValidationError(str(e)) from e


def _start(callback: Callable[..., Any], spec: ScheduleSpec, options: RunnerOptions) -> RunnerHandle:
    loop = _require_loop()
    runner = Runner(callback, spec, options, loop)
    runner.start()
    return RunnerHandle(runner)


def _check_callback(callback: Any) -> None:
    if not callable(callback):
        raise ScheduleValidationError(f"callback must be callable, got {type(callback).__name__}")


def run_in(
    callback: Callable[..., Any],
    delay: int,
    *,
    start_time: datetime | None = None,
    repeat: bool = False,
    time_scale: TimeScale | None = None,
    name: str | None = None,
) -> RunnerHandle:
    """Run ``callback`` after ``delay`` ticks, optionally repeating.

    Repeated runs are paced from the previous target time, so they land
    at ``start + delay, start + 2 * delay, ...`` no matter how long the
    callback takes.

    Args:
        callback: Called with no arguments or with the scheduled time.
        delay: Non-negative delay in ticks (1 tick = 1 ms by default).
        start_time: Anchor for the first run (defaults to now).
        repeat: Keep running every ``delay`` ticks.
        time_scale: Scale converting ticks into milliseconds.
        name: Label used in logs.

    Returns:
        Handle to the started runner.

    Raises:
        ScheduleValidationError: If any input is invalid.
    """
    _check_callback(callback)
    if isinstance(delay, bool) or not isinstance(delay, int) or delay < 0:
        raise ScheduleValidationError(f"delay must be a non-negative integer, got {delay!r}")
    if time_scale is not None and not isinstance(time_scale, TickScale):
        raise ScheduleValidationError("time_scale for a delay schedule must implement ms_per_tick()")

    options = _build_options(
        start_time=start_time,
        repeat=repeat,
        time_scale=time_scale,
        name=name,
    )
    return _start(callback, FixedDelay(ticks=delay), options)


def run_at(
    callback: Callable[..., Any],
    when: datetime,
    *,
    time_scale: TimeScale | None = None,
    name: str | None = None,
) -> RunnerHandle:
    """Run ``callback`` once at an absolute time.

    The distance to ``when`` is taken as a tick count, so an accelerated
    time scale shortens the wait accordingly. A time in the past runs
    immediately.

    Args:
        callback: Called with no arguments or with the scheduled time.
        when: Target time. Naive values are read as UTC.
        time_scale: Scale converting ticks into milliseconds.
        name: Label used in logs.

    Returns:
        Handle to the started runner.
    """
    if not isinstance(when, datetime):
        raise ScheduleValidationError(f"when must be a datetime, got {type(when).__name__}")
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    now = datetime.now(timezone.utc)
    # Round up so the target never lands before when
    ticks = max(math.ceil((when - now) / timedelta(milliseconds=1)), 0)
    return run_in(callback, ticks, start_time=now, time_scale=time_scale, name=name)


def run_every(
    callback: Callable[..., Any],
    crontab: CronExpression | str,
    *,
    timezone: str | None = None,
    time_scale: TimeScale | None = None,
    name: str | None = None,
) -> RunnerHandle:
    """Run ``callback`` on every match of a cron expression.

    Args:
        callback: Called with no arguments or with the scheduled time.
        crontab: Parsed expression, or five-field cron text to parse.
        timezone: Timezone the expression is evaluated in.
        time_scale: Clock supplying the current time and speedup.
        name: Label used in logs.

    Returns:
        Handle to the started runner.

    Raises:
        InvalidCronExpression: If ``crontab`` is text that does not parse.
        ScheduleValidationError: If any other input is invalid.
    """
    _check_callback(callback)
    expression = as_cron_expression(crontab)
    if time_scale is not None and not isinstance(time_scale, ClockScale):
        raise ScheduleValidationError("time_scale for a cron schedule must implement now() and speedup()")

    options = _build_options(timezone=timezone, time_scale=time_scale, name=name)
    rule = CronRule(expression=expression, timezone=options.timezone)
    return _start(callback, rule, options)


def cancel(handle: RunnerHandle) -> None:
    """Stop future runs of a schedule.

    A run already in progress completes. Cancelling a finished or
    already cancelled runner does nothing.

    Raises:
        NotCancellableError: If ``handle`` is not a runner handle.
    """
    if not isinstance(handle, RunnerHandle):
        raise NotCancellableError(handle)
    logger.debug(f"Cancelling runner {handle.name}")
    handle._runner.shutdown()


def stats(handle: RunnerHandle) -> RunnerStats:
    """Return a snapshot of a runner's execution statistics."""
    if not isinstance(handle, RunnerHandle):
        raise TypeError(f"Not a runner handle: {handle!r}")
    return handle._runner.stats()
