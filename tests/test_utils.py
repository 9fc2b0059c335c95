"""
Tests for timestamp parsing and duration formatting.
"""

from datetime import date, datetime, timezone

import pytest

from leaderboard.utils import (
    datetime_to_ms,
    extract_time_of_day,
    format_duration,
    normalize_cutoff_ms,
    parse_time_of_day,
    parse_time_value,
    time_of_day_on_date_ms,
)


def utc_ms(*args) -> int:
    return datetime_to_ms(datetime(*args, tzinfo=timezone.utc))


class TestParseTimeValue:

    def test_absolute_datetime(self):
        value = parse_time_value("2025-01-05 07:00:00")
        assert value.ms == utc_ms(2025, 1, 5, 7, 0, 0)
        assert value.raw == "2025-01-05 07:00:00"

    def test_fraction_is_padded_to_milliseconds(self):
        assert parse_time_value("2025-01-05 07:00:00.5").ms == utc_ms(2025, 1, 5, 7) + 500
        assert parse_time_value("2025-01-05 07:00:00.123").ms == utc_ms(2025, 1, 5, 7) + 123

    def test_minutes_only_and_t_separator(self):
        assert parse_time_value("2025-01-05T07:15").ms == utc_ms(2025, 1, 5, 7, 15)
        assert parse_time_value("2025/01/05 07:15:30").ms == utc_ms(2025, 1, 5, 7, 15, 30)

    def test_timezone_is_applied_to_calendar_fields(self):
        # 07:00 in Jakarta (UTC+7) is midnight UTC
        value = parse_time_value("2025-01-05 07:00:00", "Asia/Jakarta")
        assert value.ms == utc_ms(2025, 1, 5, 0, 0, 0)

    def test_zulu_suffix_forces_utc(self):
        value = parse_time_value("2025-01-05 07:00:00Z", "Asia/Jakarta")
        assert value.ms == utc_ms(2025, 1, 5, 7)

    def test_numeric_is_epoch_milliseconds(self):
        assert parse_time_value("7200000").ms == 7200000
        assert parse_time_value(" 0 ").ms == 0

    @pytest.mark.parametrize("raw", ["1736060400123456", "-99999999999999999"])
    def test_numeric_outside_datetime_range(self, raw):
        assert parse_time_value(raw).ms is None

    def test_bare_time_needs_reference_date(self):
        assert parse_time_value("07:30:00").ms is None
        value = parse_time_value("07:30:00", reference_date=date(2025, 1, 5))
        assert value.ms == utc_ms(2025, 1, 5, 7, 30)

    @pytest.mark.parametrize("raw", ["", "   ", "abc", "2025-13-01 10:00:00", "2025-01-05 25:00:00", None])
    def test_malformed_cells_yield_none(self, raw):
        value = parse_time_value(raw)
        assert value.ms is None

    def test_raw_is_preserved(self):
        assert parse_time_value("not a time").raw == "not a time"


class TestTimeOfDay:

    def test_parse_time_of_day_parts(self):
        assert parse_time_of_day("7:05") == (7, 5, 0, 0)
        assert parse_time_of_day("07:05:09.12") == (7, 5, 9, 120)
        assert parse_time_of_day("start at 06:30") == (6, 30, 0, 0)
        assert parse_time_of_day("soon") is None

    def test_projection_uses_reference_date(self):
        finish_ms = utc_ms(2025, 1, 5, 9, 0)
        assert time_of_day_on_date_ms("07:30", finish_ms) == utc_ms(2025, 1, 5, 7, 30)

    def test_projection_in_event_timezone(self):
        # 01:00 UTC is 08:00 in Jakarta, so "07:00" is 00:00 UTC the same day
        finish_ms = utc_ms(2025, 1, 5, 1, 0)
        assert time_of_day_on_date_ms("07:00", finish_ms, "Asia/Jakarta") == utc_ms(2025, 1, 5, 0, 0)

    def test_projection_on_unrepresentable_reference(self):
        assert time_of_day_on_date_ms("07:00", 1736060400123456) is None

    def test_out_of_range_hour(self):
        assert time_of_day_on_date_ms("25:00", utc_ms(2025, 1, 5, 9)) is None

    def test_extract_time_of_day(self):
        assert extract_time_of_day("2025-01-05 07:45:12.345") == "07:45:12.345"
        assert extract_time_of_day("  08:01:02 ") == "08:01:02"
        assert extract_time_of_day("7200000") == "7200000"
        assert extract_time_of_day(None) == ""


class TestFormatDuration:

    def test_hours_minutes_seconds(self):
        assert format_duration(7200000) == "02:00:00"
        assert format_duration(3723999) == "01:02:03"

    def test_hours_do_not_wrap(self):
        assert format_duration(26 * 3600000) == "26:00:00"

    def test_none(self):
        assert format_duration(None) == ""


class TestNormalizeCutoff:

    @pytest.mark.parametrize("value", [None, "", 0, -1, "abc", float("nan")])
    def test_disabled(self, value):
        assert normalize_cutoff_ms(value) is None

    def test_small_values_are_hours(self):
        assert normalize_cutoff_ms(2) == 7200000
        assert normalize_cutoff_ms(3.5) == 12600000
        assert normalize_cutoff_ms("48") == 48 * 3600000

    def test_large_values_are_milliseconds(self):
        assert normalize_cutoff_ms(3600000) == 3600000
        assert normalize_cutoff_ms(49) == 49
