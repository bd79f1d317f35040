"""
Tests for timestamp utilities.
"""

from datetime import datetime, timedelta, timezone

from energy_assistant.domain.timestamps import day_span, parse_timestamp, to_iso8601


def test_parse_timestamp_iso8601_with_z():
    """Test parsing ISO8601 timestamp with Z suffix."""
    result = parse_timestamp("2024-06-08T12:00:00Z")
    assert result == datetime(2024, 6, 8, 12, tzinfo=timezone.utc)


def test_parse_timestamp_with_offset_converts_to_utc():
    result = parse_timestamp("2024-06-08T12:00:00+02:00")
    assert result == datetime(2024, 6, 8, 10, tzinfo=timezone.utc)
    assert result.tzinfo == timezone.utc


def test_parse_timestamp_naive_is_utc():
    """Test that naive strings and datetimes are treated as UTC."""
    assert parse_timestamp("2024-06-08 13:00:00").tzinfo == timezone.utc
    assert parse_timestamp(datetime(2024, 6, 8)).tzinfo == timezone.utc


def test_parse_timestamp_fractional_seconds():
    result = parse_timestamp("2024-06-08T00:00:00.000Z")
    assert result == datetime(2024, 6, 8, tzinfo=timezone.utc)


def test_parse_timestamp_invalid():
    """Test that unparseable input yields None instead of raising."""
    assert parse_timestamp("last week") is None
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp(12345) is None  # type: ignore[arg-type]


def test_to_iso8601_uses_z_suffix():
    dt = datetime(2024, 6, 8, tzinfo=timezone(timedelta(hours=-5)))
    assert to_iso8601(dt) == "2024-06-08T05:00:00Z"
    assert to_iso8601(datetime(2024, 6, 8)) == "2024-06-08T00:00:00Z"
    assert to_iso8601(None) is None


def test_day_span_rounds_up():
    start = datetime(2024, 6, 8, tzinfo=timezone.utc)
    assert day_span(start, start) == 0
    assert day_span(start, start + timedelta(hours=1)) == 1
    assert day_span(start, start + timedelta(days=7)) == 7
    assert day_span(start, start + timedelta(days=7, seconds=1)) == 8
