import re
from datetime import date, datetime, timezone
from typing import Optional

DISPLAY_DATE_FORMAT = "%d/%m/%Y"
DISPLAY_DATE_PATTERN = re.compile(r"^(0[1-9]|[12][0-9]|3[01])/(0[1-9]|1[0-2])/(\d{4})$")
ISO_DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:T.*)?$")


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to UTC timezone-aware datetime.

    Naive datetimes are assumed to already be in UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO-8601 timestamp (``Z`` suffix allowed) into aware UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        return to_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except ValueError:
        return None


def parse_calendar_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a date given as ``DD/MM/YYYY`` or ISO (``YYYY-MM-DD`` with an
    optional time part).

    Returns None when the text has neither shape or names a day that does
    not exist (31/02/2000).
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()

    match = DISPLAY_DATE_PATTERN.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
    else:
        match = ISO_DATE_PATTERN.match(text)
        if not match:
            return None
        year, month, day = (int(part) for part in match.groups())

    try:
        return date(year, month, day)
    except ValueError:
        return None


def format_display_date(value: Optional[str]) -> Optional[str]:
    """Render a stored date or timestamp as ``DD/MM/YYYY``."""
    parsed = parse_calendar_date(value)
    if parsed is None:
        return None
    return parsed.strftime(DISPLAY_DATE_FORMAT)
