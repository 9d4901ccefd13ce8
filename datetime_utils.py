from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union


UTC = timezone.utc

Timestamp = Union[datetime, str, None]


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; treat those as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _normalize_fraction(s: str) -> str:
    """Pad or trim fractional seconds to 6 digits."""

    digits = s[:6]
    if len(digits) < 6:
        digits = digits + "0" * (6 - len(digits))
    return digits


def parse_rfc3339(s: Optional[str]) -> Optional[datetime]:
    """Parse a RFC3339 string and return a timezone-aware UTC datetime."""

    if not s:
        return None

    value = s.strip()
    if not value:
        return None

    if value.endswith("Z") or value.endswith("z"):
        value = value[:-1] + "+00:00"

    if "." in value:
        head, tail = value.split(".", 1)
        tz_sign = "+"
        tz_suffix = "00:00"
        if "+" in tail:
            frac, tz_suffix = tail.split("+", 1)
            tz_sign = "+"
        elif "-" in tail:
            frac, tz_suffix = tail.split("-", 1)
            tz_sign = "-"
        else:
            frac = tail
        frac = _normalize_fraction(frac)
        value = f"{head}.{frac}{tz_sign}{tz_suffix}"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None

    return ensure_utc(dt)


def coerce_utc(value: Timestamp) -> Optional[datetime]:
    """Accept either a datetime or an RFC3339 string from a remote payload."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        return parse_rfc3339(value)
    return None


def utc_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``data`` with every datetime value made UTC-aware."""
    return {k: ensure_utc(v) if isinstance(v, datetime) else v for k, v in data.items()}


def to_rfc3339_utc(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to RFC3339 in UTC, keeping milliseconds."""

    if dt is None:
        return None
    value = ensure_utc(dt)
    if value is None:
        return None
    text = value.isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


__all__ = [
    "UTC",
    "coerce_utc",
    "ensure_utc",
    "parse_rfc3339",
    "to_rfc3339_utc",
    "utc_fields",
    "utc_now",
]
