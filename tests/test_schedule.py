"""Tests for next-run computation and cron expressions."""

from datetime import datetime, timedelta, timezone
from itertools import islice
from zoneinfo import ZoneInfo

import pytest

from schedex.errors import InvalidCronExpression, ScheduleValidationError
from schedex.schedule import (
    CronExpression,
    as_cron_expression,
    iter_runs,
    next_cron,
    next_fixed_delay,
    to_zoned,
)
from schedex.timescale import IdentityTimeScale

NEW_YORK = "America/New_York"


class FixedClock:
    """Clock scale frozen at one instant."""

    def __init__(self, now: datetime, speedup: float = 1.0) -> None:
        self._now = now
        self._speedup = speedup

    def now(self, tz: str) -> datetime:
        return self._now.astimezone(ZoneInfo(tz))

    def speedup(self) -> float:
        return self._speedup


class Ticks:
    def __init__(self, ms: float) -> None:
        self._ms = ms

    def ms_per_tick(self) -> float:
        return self._ms


class TestCronExpressionParse:
    """Parsing and validation of cron text."""

    def test_parses_five_fields(self):
        expr = CronExpression.parse("*/5 * * * *")
        assert expr.text == "*/5 * * * *"

    def test_normalizes_whitespace(self):
        assert CronExpression.parse("  0   9 * *  1-5 ").text == "0 9 * * 1-5"

    def test_macro_accepted(self):
        assert CronExpression.parse("@Hourly").text == "@hourly"

    def test_unknown_macro_rejected(self):
        with pytest.raises(InvalidCronExpression, match="unknown macro"):
            CronExpression.parse("@reboot")

    def test_out_of_range_field_rejected(self):
        with pytest.raises(InvalidCronExpression) as exc_info:
            CronExpression.parse("61 * * * *")
        assert exc_info.value.expression == "61 * * * *"
        assert exc_info.value.reason

    def test_wrong_field_count_rejected(self):
        with pytest.raises(InvalidCronExpression, match="expected 5 fields"):
            CronExpression.parse("0 0 * * * *")

    def test_empty_rejected(self):
        with pytest.raises(InvalidCronExpression, match="empty"):
            CronExpression.parse("   ")

    def test_non_string_rejected(self):
        with pytest.raises(InvalidCronExpression):
            CronExpression.parse(5)

    def test_is_a_validation_error(self):
        with pytest.raises(ScheduleValidationError):
            CronExpression.parse("not a cron")

    def test_equality_and_hash(self):
        assert CronExpression.parse("0 * * * *") == CronExpression.parse("0  *  * * *")
        assert len({CronExpression.parse("0 * * * *"), CronExpression.parse("0 * * * *")}) == 1

    def test_as_cron_expression_passes_parsed_through(self):
        expr = CronExpression.parse("0 * * * *")
        assert as_cron_expression(expr) is expr
        assert as_cron_expression("0 * * * *") == expr

    def test_never_matching_rule_rejected(self):
        with pytest.raises(InvalidCronExpression, match="never matches") as exc_info:
            CronExpression.parse("0 0 31 2 *")
        assert exc_info.value.expression == "0 0 31 2 *"

    def test_leap_day_accepted(self):
        assert CronExpression.parse("0 0 29 2 *").text == "0 0 29 2 *"

    def test_constructor_validates(self):
        with pytest.raises(InvalidCronExpression):
            CronExpression("garbage")

    def test_constructor_normalizes(self):
        assert CronExpression(" 0  9 * * 1-5") == CronExpression.parse("0 9 * * 1-5")


class TestCronExpressionEvaluate:
    """Evaluating a parsed expression against local wall time."""

    def test_next_after(self):
        expr = CronExpression.parse("*/5 * * * *")
        assert expr.next_after(datetime(2024, 1, 1, 0, 2)) == datetime(2024, 1, 1, 0, 5)

    def test_next_after_is_strict(self):
        expr = CronExpression.parse("*/5 * * * *")
        assert expr.next_after(datetime(2024, 1, 1, 0, 5)) == datetime(2024, 1, 1, 0, 10)

    def test_next_after_drops_tzinfo(self):
        expr = CronExpression.parse("0 9 * * *")
        local = datetime(2024, 1, 1, 8, 0, tzinfo=ZoneInfo("Europe/Berlin"))
        assert expr.next_after(local) == datetime(2024, 1, 1, 9, 0)

    def test_describe_steps(self):
        assert CronExpression.parse("*/5 * * * *").describe() == "every 5 minutes of every hour"

    def test_describe_weekday(self):
        assert CronExpression.parse("0 9 * * 1").describe() == "at minute 0 past hour 9 on Mon"

    def test_describe_macro(self):
        assert CronExpression.parse("@daily").describe() == "every day at midnight"


class TestToZoned:
    """Conversion of local wall time into an instant."""

    def test_regular_time(self):
        result = to_zoned(datetime(2024, 6, 1, 12, 0), NEW_YORK)
        assert result.utcoffset() == timedelta(hours=-4)
        assert result.astimezone(timezone.utc) == datetime(2024, 6, 1, 16, 0, tzinfo=timezone.utc)

    def test_ambiguous_time_picks_later_instant(self):
        # 01:30 happens twice on 2024-11-03 in New York
        result = to_zoned(datetime(2024, 11, 3, 1, 30), NEW_YORK)
        assert result.utcoffset() == timedelta(hours=-5)
        assert result.astimezone(timezone.utc) == datetime(2024, 11, 3, 6, 30, tzinfo=timezone.utc)

    def test_nonexistent_time_lands_after_gap(self):
        # 02:30 does not exist on 2024-03-10 in New York
        result = to_zoned(datetime(2024, 3, 10, 2, 30), NEW_YORK)
        assert result.astimezone(timezone.utc) == datetime(2024, 3, 10, 7, 30, tzinfo=timezone.utc)
        assert (result.hour, result.minute) == (3, 30)

    def test_utc_is_never_ambiguous(self):
        result = to_zoned(datetime(2024, 11, 3, 1, 30), "UTC")
        assert result == datetime(2024, 11, 3, 1, 30, tzinfo=timezone.utc)


class TestNextFixedDelay:
    """Fixed-delay computation with drift correction."""

    def test_advances_from_anchor(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        next_time, delay_ms = next_fixed_delay(start, 500, IdentityTimeScale(), now=start)
        assert next_time == start + timedelta(milliseconds=500)
        assert delay_ms == 500

    def test_delay_measured_against_now(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        now = start + timedelta(milliseconds=120)
        _, delay_ms = next_fixed_delay(start, 500, IdentityTimeScale(), now=now)
        assert delay_ms == pytest.approx(380)

    def test_overdue_target_fires_immediately(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        now = start + timedelta(seconds=2)
        next_time, delay_ms = next_fixed_delay(start, 500, IdentityTimeScale(), now=now)
        assert next_time == start + timedelta(milliseconds=500)
        assert delay_ms == 0

    def test_ticks_are_scaled(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        next_time, _ = next_fixed_delay(start, 4, Ticks(2.5), now=start)
        assert next_time == start + timedelta(milliseconds=10)

    def test_sequence_is_arithmetic(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        anchor = start
        targets = []
        for lag_ms in (0, 37, 3, 250):
            now = anchor + timedelta(milliseconds=lag_ms)
            anchor, _ = next_fixed_delay(anchor, 100, IdentityTimeScale(), now=now)
            targets.append(anchor)
        gaps = {b - a for a, b in zip(targets, targets[1:])}
        assert gaps == {timedelta(milliseconds=100)}

    def test_zero_delay(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        next_time, delay_ms = next_fixed_delay(start, 0, IdentityTimeScale(), now=start)
        assert next_time == start
        assert delay_ms == 0

    def test_zoned_anchor_shifts_the_instant_across_fall_back(self):
        # 00:30 EDT; two real hours later it is 01:30 EST
        start = datetime(2024, 11, 3, 0, 30, tzinfo=ZoneInfo(NEW_YORK))
        next_time, delay_ms = next_fixed_delay(start, 7_200_000, IdentityTimeScale(), now=start)
        assert next_time - start.astimezone(timezone.utc) == timedelta(hours=2)
        assert next_time == datetime(2024, 11, 3, 6, 30, tzinfo=timezone.utc)
        assert delay_ms == 7_200_000

    def test_zoned_anchor_sequence_stays_arithmetic(self):
        # 01:45 EDT, fifteen minutes before the clocks go back
        anchor = datetime(2024, 11, 3, 1, 45, tzinfo=ZoneInfo(NEW_YORK))
        targets = [anchor.astimezone(timezone.utc)]
        for _ in range(4):
            anchor, _ = next_fixed_delay(anchor, 1_800_000, IdentityTimeScale(), now=anchor)
            targets.append(anchor)
        gaps = {b - a for a, b in zip(targets, targets[1:])}
        assert gaps == {timedelta(minutes=30)}
        assert targets[1] == datetime(2024, 11, 3, 6, 15, tzinfo=timezone.utc)


class TestNextCron:
    """Cron computation against a clock scale."""

    def test_every_five_minutes_from_two_past(self):
        clock = FixedClock(datetime(2024, 1, 1, 0, 2, tzinfo=timezone.utc))
        next_time, delay_ms = next_cron(CronExpression.parse("*/5 * * * *"), "UTC", clock)
        assert next_time == datetime(2024, 1, 1, 0, 5, tzinfo=timezone.utc)
        assert delay_ms == 180_000

    def test_speedup_compresses_delay(self):
        clock = FixedClock(datetime(2024, 1, 1, 0, 2, tzinfo=timezone.utc), speedup=10)
        _, delay_ms = next_cron(CronExpression.parse("*/5 * * * *"), "UTC", clock)
        assert delay_ms == 18_000

    def test_result_is_in_schedule_timezone(self):
        clock = FixedClock(datetime(2024, 1, 1, 7, 0, tzinfo=timezone.utc))
        next_time, _ = next_cron(CronExpression.parse("0 9 * * *"), "Europe/Berlin", clock)
        assert (next_time.hour, next_time.minute) == (9, 0)
        assert next_time.astimezone(timezone.utc) == datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)

    def test_early_wake_does_not_repeat_previous_target(self):
        previous = datetime(2024, 1, 1, 0, 5, tzinfo=timezone.utc)
        clock = FixedClock(previous - timedelta(milliseconds=200), speedup=600)
        next_time, delay_ms = next_cron(
            CronExpression.parse("*/5 * * * *"), "UTC", clock, after=previous
        )
        assert next_time == datetime(2024, 1, 1, 0, 10, tzinfo=timezone.utc)
        assert delay_ms == round(300_200 / 600)

    def test_fall_back_selects_later_instant(self):
        # 05:10Z is 01:10 EDT, before the repeated hour starts
        clock = FixedClock(datetime(2024, 11, 3, 5, 10, tzinfo=timezone.utc))
        next_time, delay_ms = next_cron(CronExpression.parse("30 1 * * *"), NEW_YORK, clock)
        assert next_time.astimezone(timezone.utc) == datetime(2024, 11, 3, 6, 30, tzinfo=timezone.utc)
        assert delay_ms == 80 * 60 * 1000


class TestIterRuns:
    """Previewing successive cron runs."""

    def test_runs_match_and_increase(self):
        expr = CronExpression.parse("*/15 * * * *")
        start = datetime(2024, 1, 1, 0, 7, tzinfo=timezone.utc)
        runs = list(islice(iter_runs(expr, start, "UTC"), 4))
        assert [r.minute for r in runs] == [15, 30, 45, 0]
        assert all(a < b for a, b in zip(runs, runs[1:]))

    def test_naive_start_read_as_utc(self):
        expr = CronExpression.parse("0 * * * *")
        first = next(iter_runs(expr, datetime(2024, 1, 1, 0, 30), "UTC"))
        assert first == datetime(2024, 1, 1, 1, 0, tzinfo=timezone.utc)

    def test_daily_across_fall_back(self):
        expr = CronExpression.parse("30 1 * * *")
        start = datetime(2024, 11, 2, 12, 0, tzinfo=timezone.utc)
        runs = [r.astimezone(timezone.utc) for r in islice(iter_runs(expr, start, NEW_YORK), 2)]
        assert runs == [
            datetime(2024, 11, 3, 6, 30, tzinfo=timezone.utc),
            datetime(2024, 11, 4, 6, 30, tzinfo=timezone.utc),
        ]
