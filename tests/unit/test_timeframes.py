"""Unit tests for day/week boundary utilities."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from bookpost.errors import InvalidInputError
from bookpost.timeframes import (
    as_utc,
    current_week_start,
    format_duration,
    get_monday,
    get_week_iso,
    local_date,
    month_range,
    parse_week_start,
    resolve_timezone,
    split_seconds_by_day,
    week_window,
)

UTC = ZoneInfo("UTC")
TOKYO = ZoneInfo("Asia/Tokyo")


class TestResolveTimezone:
    def test_known_zone(self):
        assert resolve_timezone("Asia/Tokyo") == TOKYO

    def test_unknown_zone_falls_back_to_default(self):
        assert resolve_timezone("Not/AZone", "Asia/Tokyo") == TOKYO

    def test_missing_zone_falls_back_to_utc(self):
        assert resolve_timezone(None) == UTC


class TestLocalDate:
    def test_instant_after_local_midnight_is_next_day(self):
        instant = datetime(2026, 3, 1, 15, 30, tzinfo=timezone.utc)  # 00:30 in Tokyo
        assert local_date(instant, TOKYO) == date(2026, 3, 2)
        assert local_date(instant, UTC) == date(2026, 3, 1)

    def test_as_utc_treats_naive_as_utc(self):
        assert as_utc(datetime(2026, 3, 1, 12, 0)) == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_as_utc_converts_offsets(self):
        tokyo_noon = datetime(2026, 3, 1, 12, 0, tzinfo=TOKYO)
        assert as_utc(tokyo_noon) == datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc)


class TestSplitSecondsByDay:
    def test_interval_within_one_day(self):
        start = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
        end = datetime(2026, 3, 1, 10, 2, tzinfo=timezone.utc)
        assert split_seconds_by_day(start, end, 120, UTC) == [(date(2026, 3, 1), 120)]

    def test_interval_across_midnight_splits_proportionally(self):
        start = datetime(2026, 3, 1, 23, 59, tzinfo=timezone.utc)
        end = datetime(2026, 3, 2, 0, 1, tzinfo=timezone.utc)
        assert split_seconds_by_day(start, end, 120, UTC) == [
            (date(2026, 3, 1), 60),
            (date(2026, 3, 2), 60),
        ]

    def test_shares_sum_exactly_to_credit(self):
        start = datetime(2026, 3, 1, 23, 59, 50, tzinfo=timezone.utc)
        end = datetime(2026, 3, 2, 0, 0, 20, tzinfo=timezone.utc)
        parts = split_seconds_by_day(start, end, 7, UTC)
        assert parts == [(date(2026, 3, 1), 2), (date(2026, 3, 2), 5)]
        assert sum(share for _, share in parts) == 7

    def test_split_uses_local_midnight(self):
        # 14:50Z-15:10Z crosses midnight in Tokyo but not in UTC.
        start = datetime(2026, 3, 1, 14, 50, tzinfo=timezone.utc)
        end = datetime(2026, 3, 1, 15, 10, tzinfo=timezone.utc)
        assert split_seconds_by_day(start, end, 1200, TOKYO) == [
            (date(2026, 3, 1), 600),
            (date(2026, 3, 2), 600),
        ]
        assert split_seconds_by_day(start, end, 1200, UTC) == [(date(2026, 3, 1), 1200)]

    def test_multi_day_interval(self):
        start = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        end = datetime(2026, 3, 3, 12, 0, tzinfo=timezone.utc)
        assert split_seconds_by_day(start, end, 4800, UTC) == [
            (date(2026, 3, 1), 1200),
            (date(2026, 3, 2), 2400),
            (date(2026, 3, 3), 1200),
        ]

    def test_zero_credit_yields_nothing(self):
        start = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert split_seconds_by_day(start, start, 0, UTC) == []

    def test_empty_interval_credits_start_day(self):
        start = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert split_seconds_by_day(start, start, 30, UTC) == [(date(2026, 3, 1), 30)]


class TestWeeks:
    def test_get_monday(self):
        assert get_monday(date(2026, 3, 1)) == date(2026, 2, 23)  # Sunday
        assert get_monday(datetime(2026, 2, 23, 8, 0, tzinfo=timezone.utc)) == date(2026, 2, 23)

    def test_week_iso(self):
        assert get_week_iso(date(2026, 2, 23)) == "2026-W09"

    def test_week_window_is_half_open_monday_to_monday(self):
        start, end = week_window(date(2026, 2, 23), UTC)
        assert start == datetime(2026, 2, 23, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 2, tzinfo=timezone.utc)

    def test_week_window_in_reference_timezone(self):
        start, end = week_window(date(2026, 2, 23), TOKYO)
        assert start == datetime(2026, 2, 22, 15, 0, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc)

    def test_current_week_start_depends_on_timezone(self):
        now = datetime(2026, 3, 1, 23, 0, tzinfo=timezone.utc)  # Monday 08:00 in Tokyo
        assert current_week_start(now, UTC) == date(2026, 2, 23)
        assert current_week_start(now, TOKYO) == date(2026, 3, 2)

    def test_parse_iso_week(self):
        assert parse_week_start("2026-W09") == date(2026, 2, 23)
        assert parse_week_start("2026-w09") == date(2026, 2, 23)

    def test_parse_monday_date(self):
        assert parse_week_start("2026-02-23") == date(2026, 2, 23)

    def test_parse_rejects_non_monday(self):
        with pytest.raises(InvalidInputError, match="Monday"):
            parse_week_start("2026-02-24")

    def test_parse_rejects_garbage(self):
        with pytest.raises(InvalidInputError):
            parse_week_start("next week")


class TestMonthRange:
    def test_leap_february(self):
        assert month_range(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))

    def test_invalid_month(self):
        with pytest.raises(InvalidInputError):
            month_range(2026, 13)

    def test_invalid_year(self):
        with pytest.raises(InvalidInputError):
            month_range(1969, 12)


class TestFormatDuration:
    def test_hours_and_minutes(self):
        assert format_duration(3725) == "1h 2m"

    def test_minutes_only(self):
        assert format_duration(600) == "10m"
        assert format_duration(59) == "0m"
