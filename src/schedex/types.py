"""Type definitions for schedex.

This module defines the Pydantic models describing a schedule, the
options a runner is started with, and the statistics it keeps.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schedex.config import settings
from schedex.schedule import CronExpression
from schedex.timescale import ClockScale, IdentityTimeScale, TickScale, TimeScale


def validate_timezone(value: str) -> str:
    """Return `value` if it names a timezone in the zone database."""
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"unknown timezone {value!r}") from e
    return value


class RunnerStatus(str, Enum):
    """Lifecycle state of a runner.

    Attributes:
        INITIALIZING: Computing the first run; no timer armed yet.
        ARMED: A timer is pending.
        FIRING: The callback is executing.
        TERMINATED: Finished, cancelled, or failed. Final.
    """

    INITIALIZING = "initializing"
    ARMED = "armed"
    FIRING = "firing"
    TERMINATED = "terminated"


class FixedDelay(BaseModel):
    """Repeat by a fixed tick interval.

    Attributes:
        ticks: Interval in ticks, scaled to ms by the time scale.
    """

    model_config = ConfigDict(frozen=True)

    ticks: int = Field(..., ge=0, strict=True, description="Interval in ticks")


class CronRule(BaseModel):
    """Repeat by a calendar rule.

    Attributes:
        expression: Parsed cron expression.
        timezone: Timezone the expression is evaluated in.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    expression: CronExpression = Field(..., description="Parsed cron expression")
    timezone: str = Field(default="UTC", description="Timezone for evaluation")

    @field_validator("timezone")
    @classmethod
    def _timezone_known(cls, value: str) -> str:
        return validate_timezone(value)


ScheduleSpec = FixedDelay | CronRule


class RunnerOptions(BaseModel):
    """Options a runner is started with.

    Attributes:
        start_time: Anchor for the first fixed-delay computation.
        repeat: Whether a fixed-delay schedule repeats. Cron always repeats.
        time_scale: Clock used to scale ticks or supply the current time.
        timezone: Timezone for cron resolution.
        name: Label used in logs and the runner task name.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    start_time: datetime | None = Field(
        default=None,
        description="Anchor for the first fixed-delay run (default: now)",
    )
    repeat: bool = Field(
        default=False,
        description="Repeat a fixed-delay schedule after it fires",
    )
    time_scale: Any = Field(
        default_factory=IdentityTimeScale,
        description="Time scale implementing ms_per_tick or now/speedup",
    )
    timezone: str = Field(
        default_factory=lambda: settings.default_timezone,
        description="Timezone for cron resolution",
    )
    name: str | None = Field(
        default=None,
        description="Label used in logs",
    )

    @field_validator("start_time")
    @classmethod
    def _start_time_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_validator("time_scale")
    @classmethod
    def _time_scale_protocol(cls, value: Any) -> TimeScale:
        if not isinstance(value, (TickScale, ClockScale)):
            raise ValueError(
                "time_scale must implement ms_per_tick() or now(tz) and speedup()"
            )
        return value

    @field_validator("timezone")
    @classmethod
    def _timezone_known(cls, value: str) -> str:
        return validate_timezone(value)


class RunnerStats(BaseModel):
    """Execution statistics for a runner.

    Lateness is how much later than armed the timer actually woke the
    runner, measured on the event loop clock.

    Attributes:
        scheduled_at: Target of the pending run, if any.
        last_scheduled_at: Target of the most recent run.
        last_started_at: Real time the most recent run started.
        last_finished_at: Real time the most recent run finished.
        invocations: Number of callback invocations started.
        avg_lateness_ms: Mean wake-up lateness.
        max_lateness_ms: Worst wake-up lateness.
        avg_duration_ms: Mean callback duration.
        max_duration_ms: Longest callback duration.
    """

    scheduled_at: datetime | None = Field(default=None, description="Pending run target")
    last_scheduled_at: datetime | None = Field(default=None, description="Last run target")
    last_started_at: datetime | None = Field(default=None, description="Last run start")
    last_finished_at: datetime | None = Field(default=None, description="Last run end")
    invocations: int = Field(default=0, description="Callback invocations started")
    avg_lateness_ms: float = Field(default=0.0, description="Mean wake-up lateness in ms")
    max_lateness_ms: float = Field(default=0.0, description="Worst wake-up lateness in ms")
    avg_duration_ms: float = Field(default=0.0, description="Mean callback duration in ms")
    max_duration_ms: float = Field(default=0.0, description="Longest callback duration in ms")

    def record(self, lateness_ms: float, duration_ms: float) -> None:
        """Fold one completed invocation into the running averages.

        Args:
            lateness_ms: Wake-up lateness of the invocation.
            duration_ms: Callback duration of the invocation.
        """
        n = self.invocations
        self.avg_lateness_ms += (lateness_ms - self.avg_lateness_ms) / n
        self.avg_duration_ms += (duration_ms - self.avg_duration_ms) / n
        self.max_lateness_ms = max(self.max_lateness_ms, lateness_ms)
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
