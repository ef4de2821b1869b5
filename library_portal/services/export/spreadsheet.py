import csv
import io
from datetime import date
from typing import List, Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter

from library_portal.schemas.student_schemas import StudentRecord
from library_portal.services.export.base import (
    PLACEHOLDER,
    ExportFile,
    display_value,
    export_filename,
)
from library_portal.utils.datetime_utils import format_display_date
from library_portal.utils.logging import get_logger

logger = get_logger()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MEDIA_TYPE = "text/csv"
SHEET_TITLE = "Students"
HEADER_ROW_HEIGHT = 25

# (header, record attribute, column width in characters)
COLUMNS = [
    ("Branch", "course", 12),
    ("PRN", "prn", 15),
    ("Name", "name", 25),
    ("Phone Number", "mobile", 15),
    ("Library Number", "library_number", 18),
    ("Email", "email", 30),
    ("Admitted Year", "admitted_year", 15),
    ("Roll Number", "roll_number", 15),
    ("Gender", "gender", 10),
    ("Blood Group", "blood_group", 12),
    ("Category", "category", 12),
    ("Date of Birth", "date_of_birth", 15),
    ("Parent Mobile", "parent_mobile", 15),
    ("Permanent Address", "permanent_address", 40),
    ("Local Address", "local_address", 40),
    ("Registration Date", "registration_date", 18),
]
HEADERS = [header for header, _, _ in COLUMNS]
DATE_ATTRIBUTES = {"date_of_birth", "registration_date"}


def student_row(record: StudentRecord) -> List[str]:
    """One export row in column order; dates as DD/MM/YYYY, gaps as N/A."""
    row = []
    for _, attribute, _ in COLUMNS:
        value = getattr(record, attribute)
        if attribute in DATE_ATTRIBUTES:
            row.append(format_display_date(value) or PLACEHOLDER)
        else:
            row.append(display_value(value))
    return row


def build_workbook(records: Sequence[StudentRecord]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = SHEET_TITLE

    sheet.append(HEADERS)
    for record in records:
        sheet.append(student_row(record))

    for index, (_, _, width) in enumerate(COLUMNS, start=1):
        sheet.column_dimensions[get_column_letter(index)].width = width
    sheet.row_dimensions[1].height = HEADER_ROW_HEIGHT
    for cell in sheet[1]:
        cell.font = Font(bold=True)
        cell.alignment = Alignment(vertical="center")

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def build_csv(records: Sequence[StudentRecord]) -> bytes:
    """Header line, then one line per record with every field double-quoted."""
    buffer = io.StringIO()
    buffer.write(",".join(HEADERS) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for record in records:
        writer.writerow(student_row(record))
    text = buffer.getvalue()
    return text.rstrip("\n").encode("utf-8")


def export_students(
    records: Sequence[StudentRecord], today: Optional[date] = None
) -> ExportFile:
    """Spreadsheet of the given students, falling back to CSV if the workbook fails."""
    try:
        content = build_workbook(records)
        logger.info(f"Exported {len(records)} students to xlsx")
        return ExportFile(
            content=content,
            filename=export_filename("students_export", "xlsx", today),
            media_type=XLSX_MEDIA_TYPE,
        )
    except Exception as e:
        logger.error(f"Error generating Excel file, falling back to CSV: {e}")

    content = build_csv(records)
    logger.info(f"Exported {len(records)} students to csv")
    return ExportFile(
        content=content,
        filename=export_filename("students_export", "csv", today),
        media_type=CSV_MEDIA_TYPE,
    )
