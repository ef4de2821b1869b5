from dataclasses import dataclass
from datetime import date
from typing import Optional

from library_portal.utils.datetime_utils import utc_now

PLACEHOLDER = "N/A"


@dataclass
class ExportFile:
    """A rendered export ready to be sent as a download."""

    content: bytes
    filename: str
    media_type: str
    page_count: Optional[int] = None


def export_filename(stem: str, extension: str, today: Optional[date] = None) -> str:
    today = today or utc_now().date()
    return f"{stem}_{today.isoformat()}.{extension}"


def display_value(value: Optional[str]) -> str:
    return str(value) if value else PLACEHOLDER
