"""
swapgraph/core/time.py

Timestamp helpers. All stored timestamps use one wire format:

    YYYY-MM-DDTHH:MM:SS.mmmZ  (milliseconds, explicit Z, UTC)

Comparisons always go through parse_timestamp(); never compare raw strings
produced by other clocks.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union


def format_timestamp(moment: datetime) -> str:
    """Render a datetime in wire format. Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    ms = moment.microsecond // 1000
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms:03d}Z"


def utc_timestamp() -> str:
    """Current UTC time in wire format."""
    return format_timestamp(datetime.now(timezone.utc))


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """
    Parse an ISO-8601 timestamp (Z or offset suffix) to an aware UTC datetime.
    Raises ValueError on malformed input.
    """
    if isinstance(value, datetime):
        moment = value
    else:
        if not isinstance(value, str) or not value:
            raise ValueError(f"timestamp must be a non-empty string, got {value!r}")
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def normalize_timestamp(value: Optional[Union[str, datetime]]) -> str:
    """Wire-format an input timestamp, defaulting to now."""
    if value is None:
        return utc_timestamp()
    return format_timestamp(parse_timestamp(value))


def add_seconds(value: Union[str, datetime], seconds: float) -> str:
    return format_timestamp(parse_timestamp(value) + timedelta(seconds=seconds))


def is_at_or_after(value: Union[str, datetime], reference: Union[str, datetime]) -> bool:
    """True when value >= reference."""
    return parse_timestamp(value) >= parse_timestamp(reference)
