"""Shared utility functions.

utcnow / as_utc:  one clock and one normalisation rule for every timestamp
parse_datetime:   lenient ISO parsing for request payloads
to_bool:          lenient flag parsing for request payloads
isoformat:        None-safe serialisation used by every ``to_dict``
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes.

    SQLite hands back naive values for ``DateTime(timezone=True)`` columns;
    everything is stored in UTC so re-attaching the zone is lossless.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def parse_datetime(value) -> datetime | None:
    """Parse an ISO-8601 datetime (a trailing ``Z`` is accepted).

    Returns None for empty/invalid input.  Naive input is taken as UTC.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def to_bool(value, fallback: bool = False) -> bool:
    if value is None or value == "":
        return fallback
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    normalized = str(value).strip().lower()
    if normalized in {"true", "1", "yes", "on"}:
        return True
    if normalized in {"false", "0", "no", "off"}:
        return False
    return fallback
