"""The runner: one asyncio task driving one schedule.

A runner owns exactly one pending timer. When the timer fires it posts a
``RUN`` message into the runner's mailbox; the runner task picks it up,
invokes the callback, computes the next target and arms a new timer.
Cancellation posts ``SHUTDOWN`` into the same mailbox, so it is always
observed between invocations and never interrupts a running callback.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from schedex.errors import ScheduleValidationError
from schedex.schedule import next_cron, next_fixed_delay
from schedex.types import CronRule, FixedDelay, RunnerOptions, RunnerStats, RunnerStatus, ScheduleSpec

logger = logging.getLogger(__name__)

# Strong references to live runner tasks
_live_tasks: set[asyncio.Task] = set()


class _Message(str, Enum):
    RUN = "run"
    SHUTDOWN = "shutdown"


def accepts_scheduled_at(callback: Callable[..., Any]) -> bool:
    """Decide once whether ``callback`` receives the scheduled instant.

    Args:
        callback: The user callback.

    Returns:
        True if the callback can be called with one positional argument,
        False if it must be called with none.

    Raises:
        ScheduleValidationError: If it accepts neither form.
    """
    try:
        sig = inspect.signature(callback)
    except (TypeError, ValueError):
        # No introspectable signature (some builtins)
        return False

    try:
        sig.bind(None)
        return True
    except TypeError:
        pass

    try:
        sig.bind()
        return False
    except TypeError:
        raise ScheduleValidationError(
            f"callback {callback!r} must accept zero arguments or the scheduled time"
        ) from None


def _adapt_callback(callback: Callable[..., Any]) -> Callable[[datetime], Any]:
    if accepts_scheduled_at(callback):
        return callback
    return lambda _scheduled_at: callback()


def _is_coroutine_callable(callback: Callable[..., Any]) -> bool:
    return inspect.iscoroutinefunction(callback) or inspect.iscoroutinefunction(
        getattr(callback, "__call__", None)
    )


def _label(callback: Callable[..., Any]) -> str:
    return getattr(callback, "__qualname__", None) or repr(callback)


class Runner:
    """Single-schedule state machine.

    All state is mutated on the event loop the runner was started on.
    ``shutdown`` is the only method that may be called from elsewhere.
    """

    def __init__(
        self,
        callback: Callable[..., Any],
        spec: ScheduleSpec,
        options: RunnerOptions,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._callback = _adapt_callback(callback)
        self._is_async = _is_coroutine_callable(callback)
        self._spec = spec
        self._options = options
        self._loop = loop
        self.name = options.name or _label(callback)

        self._mailbox: asyncio.Queue[_Message] = asyncio.Queue()
        self._timer: asyncio.TimerHandle | None = None
        self._armed_at = 0.0
        self._armed_delay_ms = 0.0
        self._shutdown_requested = False
        self._task: asyncio.Task | None = None

        self.status = RunnerStatus.INITIALIZING
        self.scheduled_at: datetime | None = None
        self._stats = RunnerStats()

    @property
    def spec(self) -> ScheduleSpec:
        return self._spec

    @property
    def options(self) -> RunnerOptions:
        return self._options

    @property
    def task(self) -> asyncio.Task:
        if self._task is None:
            raise RuntimeError("runner has not been started")
        return self._task

    def start(self) -> None:
        """Compute the first run, arm its timer and spawn the runner task."""
        if isinstance(self._spec, FixedDelay):
            start_time = self._options.start_time or datetime.now(timezone.utc)
            next_time, delay_ms = next_fixed_delay(
                start_time, self._spec.ticks, self._options.time_scale
            )
        else:
            next_time, delay_ms = self._next_cron()

        self._arm(next_time, delay_ms)
        self._task = self._loop.create_task(self._run(), name=f"schedex:{self.name}")
        _live_tasks.add(self._task)
        self._task.add_done_callback(self._on_done)
        logger.info(f"Started runner {self.name}, first run at {next_time.isoformat()}")

    def shutdown(self) -> None:
        """Ask the runner to stop. Safe from any thread; no-op once finished."""
        if self._task is None or self._task.done() or self._loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._request_shutdown()
        else:
            self._loop.call_soon_threadsafe(self._request_shutdown)

    def stats(self) -> RunnerStats:
        """Snapshot of the runner's statistics."""
        return self._stats.model_copy(update={"scheduled_at": self.scheduled_at})

    def _request_shutdown(self) -> None:
        if self._shutdown_requested or self.status is RunnerStatus.TERMINATED:
            return
        self._shutdown_requested = True
        if self.status is RunnerStatus.ARMED:
            self._disarm()
        self._mailbox.put_nowait(_Message.SHUTDOWN)

    def _next_cron(self) -> tuple[datetime, float]:
        assert isinstance(self._spec, CronRule)
        return next_cron(
            self._spec.expression,
            self._spec.timezone,
            self._options.time_scale,
            after=self.scheduled_at,
        )

    def _arm(self, next_time: datetime, delay_ms: float) -> None:
        self.scheduled_at = next_time
        self._armed_at = self._loop.time()
        self._armed_delay_ms = delay_ms
        self._timer = self._loop.call_later(
            delay_ms / 1000, self._mailbox.put_nowait, _Message.RUN
        )
        self.status = RunnerStatus.ARMED
        logger.debug(f"Runner {self.name} armed for {next_time.isoformat()} (in {delay_ms:.0f}ms)")

    def _disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _reschedule(self) -> bool:
        """Arm the next run. Returns False when the schedule is complete."""
        if isinstance(self._spec, CronRule):
            self._arm(*self._next_cron())
            return True

        if self._options.repeat:
            # Anchor on the previous target, not on the current time
            self._arm(*next_fixed_delay(
                self.scheduled_at, self._spec.ticks, self._options.time_scale
            ))
            return True

        return False

    async def _fire(self) -> None:
        self.status = RunnerStatus.FIRING
        self._timer = None
        this_time = self.scheduled_at
        lateness_ms = max((self._loop.time() - self._armed_at) * 1000 - self._armed_delay_ms, 0.0)

        self._stats.invocations += 1
        self._stats.last_scheduled_at = this_time
        self._stats.last_started_at = datetime.now(timezone.utc)
        started = self._loop.time()

        logger.debug(f"Runner {self.name} firing for {this_time.isoformat()}")
        if self._is_async:
            await self._callback(this_time)
        else:
            # Worker thread, so a blocking callback only holds up this runner
            result = await asyncio.to_thread(self._callback, this_time)
            if inspect.isawaitable(result):
                await result

        self._stats.last_finished_at = datetime.now(timezone.utc)
        self._stats.record(lateness_ms, (self._loop.time() - started) * 1000)

    async def _run(self) -> None:
        try:
            while True:
                message = await self._mailbox.get()
                if self._shutdown_requested or message is _Message.SHUTDOWN:
                    logger.info(f"Runner {self.name} cancelled")
                    return

                await self._fire()

                if self._shutdown_requested:
                    logger.info(f"Runner {self.name} cancelled after in-flight run")
                    return
                if not self._reschedule():
                    logger.info(f"Runner {self.name} completed")
                    return
        finally:
            self._disarm()
            self.scheduled_at = None
            self.status = RunnerStatus.TERMINATED

    def _on_done(self, task: asyncio.Task) -> None:
        _live_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Runner {self.name} terminated by callback error: {exc!r}", exc_info=exc)


class RunnerHandle:
    """Opaque handle to a started runner.

    Returned by the ``run_*`` entry points and accepted by ``cancel`` and
    ``stats``.
    """

    __slots__ = ("_runner",)

    def __init__(self, runner: Runner) -> None:
        self._runner = runner

    @property
    def name(self) -> str:
        return self._runner.name

    @property
    def status(self) -> RunnerStatus:
        return self._runner.status

    @property
    def scheduled_at(self) -> datetime | None:
        """Target instant of the pending run, or None once terminated."""
        return self._runner.scheduled_at

    def done(self) -> bool:
        return self._runner.task.done()

    def exception(self) -> BaseException | None:
        """The callback error that terminated the runner, if any."""
        task = self._runner.task
        if not task.done() or task.cancelled():
            return None
        return task.exception()

    async def wait(self) -> None:
        """Wait for the runner to terminate, re-raising a callback error."""
        await asyncio.shield(self._runner.task)

    def __repr__(self) -> str:
        return f"<RunnerHandle {self.name} {self.status.value}>"
