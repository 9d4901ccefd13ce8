from datetime import datetime, timedelta, timezone

from datetime_utils import UTC, coerce_utc, ensure_utc, parse_rfc3339, to_rfc3339_utc, utc_fields


def test_parse_rfc3339_variants():
    expected = datetime(2024, 3, 1, 12, 0, 0, 123000, tzinfo=UTC)
    assert parse_rfc3339("2024-03-01T12:00:00.123Z") == expected
    assert parse_rfc3339("2024-03-01T14:00:00.123+02:00") == expected
    assert parse_rfc3339("2024-03-01T12:00:00Z") == expected.replace(microsecond=0)
    assert parse_rfc3339("") is None
    assert parse_rfc3339("yesterday") is None


def test_ensure_utc_treats_naive_as_utc():
    naive = datetime(2024, 3, 1, 12, 0)
    assert ensure_utc(naive) == datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
    shifted = datetime(2024, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert ensure_utc(shifted).tzinfo is UTC
    assert ensure_utc(None) is None


def test_to_rfc3339_keeps_milliseconds():
    value = datetime(2024, 3, 1, 12, 0, 0, 123456, tzinfo=UTC)
    assert to_rfc3339_utc(value) == "2024-03-01T12:00:00.123Z"
    assert to_rfc3339_utc(None) is None


def test_coerce_utc_accepts_strings_and_datetimes():
    assert coerce_utc("2024-03-01T12:00:00Z") == datetime(2024, 3, 1, 12, tzinfo=UTC)
    assert coerce_utc(datetime(2024, 3, 1, 12)) == datetime(2024, 3, 1, 12, tzinfo=UTC)
    assert coerce_utc(17) is None


def test_utc_fields_only_touches_datetimes():
    data = {"at": datetime(2024, 3, 1, 12), "name": "x", "n": 1}
    result = utc_fields(data)
    assert result["at"].tzinfo is UTC
    assert result["name"] == "x" and result["n"] == 1
