"""Next-run computation for fixed-delay and cron schedules.

Every computation works from absolute instants. A fixed-delay schedule
advances its previous target by a constant amount and only then measures
the remaining gap against the real clock, so callback latency and timer
jitter never accumulate. A cron schedule resolves the next matching local
wall time and converts it into an instant in the schedule's timezone.
"""

import logging
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from croniter import CroniterBadDateError, croniter

from schedex.errors import InvalidCronExpression
from schedex.timescale import ClockScale, TickScale

logger = logging.getLogger(__name__)

# Macros understood in place of the five fields
CRON_MACROS = frozenset({
    "@yearly",
    "@annually",
    "@monthly",
    "@weekly",
    "@daily",
    "@midnight",
    "@hourly",
})

_DOW_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

# Fixed reference for the reachability check in _normalize
_MATCH_SEARCH_START = datetime(2000, 1, 1)


def _normalize(text: str) -> str:
    if not isinstance(text, str):
        raise InvalidCronExpression(repr(text), "expression must be a string")

    normalized = " ".join(text.split())
    if not normalized:
        raise InvalidCronExpression(text, "expression is empty")

    if normalized.startswith("@"):
        if normalized.lower() not in CRON_MACROS:
            raise InvalidCronExpression(text, f"unknown macro {normalized}")
        normalized = normalized.lower()
    elif len(normalized.split(" ")) != 5:
        raise InvalidCronExpression(
            text, f"expected 5 fields, got {len(normalized.split(' '))}"
        )

    try:
        # Syntax alone accepts rules like Feb 31 that never match
        croniter(normalized, _MATCH_SEARCH_START).get_next(datetime)
    except CroniterBadDateError as e:
        raise InvalidCronExpression(text, "expression never matches any date") from e
    except (ValueError, KeyError) as e:
        raise InvalidCronExpression(text, str(e)) from e

    return normalized


class CronExpression:
    """A validated five-field cron expression.

    Construction validates the text, so holding an instance means the
    expression is known to be valid and evaluating it cannot fail.

    Example:
        expr = CronExpression.parse("*/5 * * * *")
        expr.next_after(datetime(2024, 1, 1, 0, 2))  # datetime(2024, 1, 1, 0, 5)
    """

    __slots__ = ("_text",)

    def __init__(self, text: str) -> None:
        self._text = _normalize(text)

    @classmethod
    def parse(cls, text: str) -> "CronExpression":
        """Parse and validate a cron expression.

        Args:
            text: Five space-separated fields or one of the ``@`` macros.

        Returns:
            The parsed expression.

        Raises:
            InvalidCronExpression: If the text is not a valid expression or
                can never match a date.
        """
        return cls(text)

    @property
    def text(self) -> str:
        """The normalized expression text."""
        return self._text

    def next_after(self, local: datetime) -> datetime:
        """Return the first naive local time strictly after ``local`` that matches.

        Args:
            local: Reference wall time. Any tzinfo is dropped.

        Returns:
            Naive datetime of the next match.
        """
        return croniter(self._text, local.replace(tzinfo=None)).get_next(datetime)

    def describe(self) -> str:
        """Return a short human-readable summary of the expression."""
        if self._text.startswith("@"):
            return {
                "@yearly": "once a year at midnight on Jan 1",
                "@annually": "once a year at midnight on Jan 1",
                "@monthly": "at midnight on the first of every month",
                "@weekly": "at midnight every Sunday",
                "@daily": "every day at midnight",
                "@midnight": "every day at midnight",
                "@hourly": "at minute 0 of every hour",
            }[self._text]

        minute, hour, day, month, dow = self._text.split(" ")
        parts = []

        if minute == "*":
            parts.append("every minute")
        elif minute.startswith("*/"):
            parts.append(f"every {minute[2:]} minutes")
        else:
            parts.append(f"at minute {minute}")

        if hour == "*":
            parts.append("of every hour")
        elif hour.startswith("*/"):
            parts.append(f"every {hour[2:]} hours")
        else:
            parts.append(f"past hour {hour}")

        if day != "*":
            parts.append(f"on day {day}")
        if month != "*":
            parts.append(f"in month {month}")
        if dow != "*":
            if dow.isdigit() and int(dow) <= 7:
                parts.append(f"on {_DOW_NAMES[int(dow) % 7]}")
            else:
                parts.append(f"on {dow}")

        return " ".join(parts)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CronExpression):
            return NotImplemented
        return self._text == other._text

    def __hash__(self) -> int:
        return hash(self._text)

    def __repr__(self) -> str:
        return f"CronExpression({self._text!r})"

    def __str__(self) -> str:
        return self._text


def as_cron_expression(source: "CronExpression | str") -> CronExpression:
    """Return ``source`` unchanged if already parsed, otherwise parse it."""
    if isinstance(source, CronExpression):
        return source
    return CronExpression.parse(source)


def to_zoned(local: datetime, tz: str) -> datetime:
    """Attach ``tz`` to a naive local wall time.

    During a DST fall-back the wall time occurs twice; the later of the
    two instants is chosen so an already elapsed occurrence is not
    re-entered. A wall time skipped by a spring-forward transition is
    read with the offset in force before the gap, which places it just
    after the gap.

    Args:
        local: Naive local wall time.
        tz: IANA timezone name.

    Returns:
        Aware datetime in ``tz``.
    """
    zone = ZoneInfo(tz)
    naive = local.replace(tzinfo=None)
    earlier = naive.replace(tzinfo=zone, fold=0)
    later = naive.replace(tzinfo=zone, fold=1)

    if earlier.utcoffset() == later.utcoffset():
        return earlier

    roundtrip = earlier.astimezone(timezone.utc).astimezone(zone)
    if roundtrip.replace(tzinfo=None) != naive:
        # Nonexistent wall time
        logger.debug(f"{naive.isoformat()} does not exist in {tz}, using {roundtrip.isoformat()}")
        return roundtrip

    # Ambiguous wall time
    chosen = max(earlier, later, key=lambda dt: dt.astimezone(timezone.utc))
    logger.debug(f"{naive.isoformat()} is ambiguous in {tz}, choosing {chosen.isoformat()}")
    return chosen


def _diff_ms(later: datetime, earlier: datetime) -> float:
    # Same-zone aware subtraction ignores the offset, so compare in UTC
    later = later.astimezone(timezone.utc)
    earlier = earlier.astimezone(timezone.utc)
    return (later - earlier) / timedelta(milliseconds=1)


def next_fixed_delay(
    from_: datetime,
    ticks: int,
    time_scale: TickScale,
    now: datetime | None = None,
) -> tuple[datetime, float]:
    """Compute the next fixed-delay run.

    Args:
        from_: Anchor instant (the start time, or the previous target).
        ticks: Delay in ticks.
        time_scale: Scale converting ticks to milliseconds.
        now: Current real time (defaults to UTC now).

    Returns:
        Tuple of (next target instant in UTC, real delay in ms until it).
    """
    scaled_ms = round(ticks * time_scale.ms_per_tick())
    # Zoned addition shifts wall time, not the instant, across DST changes
    candidate = from_.astimezone(timezone.utc) + timedelta(milliseconds=scaled_ms)
    now = now or datetime.now(timezone.utc)
    delay_ms = max(_diff_ms(candidate, now), 0.0)
    return candidate, delay_ms


def next_cron(
    expression: CronExpression,
    tz: str,
    time_scale: ClockScale,
    after: datetime | None = None,
) -> tuple[datetime, int]:
    """Compute the next cron run.

    Args:
        expression: Parsed cron expression.
        tz: Timezone the expression is evaluated in.
        time_scale: Clock supplying the current (virtual) time and speedup.
        after: Previous target. The next run is strictly later than it even
            if the clock woke up slightly early.

    Returns:
        Tuple of (next target instant in ``tz``, real delay in ms until it).
    """
    now = time_scale.now(tz)
    reference = now
    if after is not None and _diff_ms(after, now) > 0:
        reference = after
    candidate = to_zoned(expression.next_after(reference.astimezone(ZoneInfo(tz))), tz)
    delay_ms = round(max(_diff_ms(candidate, now) / time_scale.speedup(), 0))
    return candidate, delay_ms


def iter_runs(
    expression: CronExpression,
    start: datetime,
    tz: str,
) -> Iterator[datetime]:
    """Yield successive run instants of ``expression`` after ``start``.

    Each instant is resolved exactly as a running schedule would resolve
    it when woken at the previous instant.

    Args:
        expression: Parsed cron expression.
        start: Instant to resolve from. Naive values are read as UTC.
        tz: Timezone the expression is evaluated in.
    """
    zone = ZoneInfo(tz)
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    current = start.astimezone(zone)
    while True:
        current = to_zoned(expression.next_after(current), tz)
        yield current
