"""
Timestamp helpers. All datetimes handled by the package are timezone-aware UTC.
"""
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """
    ISO-8601 in UTC with millisecond precision and a trailing Z,
    e.g. 2024-01-01T12:00:00.000Z
    """
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse ISO-8601 strings, RFC 2822 dates (RSS), epoch seconds and datetimes.
    Returns None when the value cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        try:
            return ensure_utc(value)
        except OverflowError:
            return None

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    if text.isascii() and text.isdigit():
        try:
            seconds = int(text)
        except ValueError:  # longer than int() will convert
            return None
        return parse_timestamp(seconds)

    iso = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        parsed = datetime.fromisoformat(iso)
    except ValueError:
        parsed = None
    if parsed is not None:
        try:
            return ensure_utc(parsed)
        except OverflowError:
            return None

    try:
        return ensure_utc(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
