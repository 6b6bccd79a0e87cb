"""Tests for sync date parsing and formatting."""

from datetime import datetime, timezone

from assetsync.services.datetime_service import format_iso, now_utc, parse_datetime


class TestDatetimeParsing:
    def test_parse_browser_iso_format(self) -> None:
        result = parse_datetime("2021-06-01T10:00:00.000Z")
        assert result.year == 2021
        assert result.month == 6
        assert result.hour == 10
        assert result.utcoffset() is not None
        assert result.utcoffset().total_seconds() == 0

    def test_parse_offset_format(self) -> None:
        result = parse_datetime("2026-02-02T22:21:29.975359+02:00")
        assert result.hour == 22
        assert result.utcoffset().total_seconds() == 7200

    def test_parse_date_only(self) -> None:
        result = parse_datetime("2026-02-02")
        assert result.day == 2
        assert result.hour == 0
        assert result.tzinfo is not None

    def test_parse_datetime_object(self) -> None:
        dt = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert parse_datetime(dt) == dt

    def test_parse_naive_datetime_adds_tz(self) -> None:
        assert parse_datetime(datetime(2026, 1, 1, 12, 0)).tzinfo is not None


class TestFormatting:
    def test_round_trip(self) -> None:
        dt = datetime(2026, 2, 2, 22, 21, 29, 975359, tzinfo=timezone.utc)
        assert parse_datetime(format_iso(dt)) == dt

    def test_naive_is_treated_as_utc(self) -> None:
        assert format_iso(datetime(2026, 1, 1)).endswith("+00:00")

    def test_now_utc(self) -> None:
        assert now_utc().tzinfo is not None
