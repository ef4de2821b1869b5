import io
from dataclasses import dataclass
from datetime import date
from typing import Mapping, Optional, Sequence, Tuple

import httpx
import qrcode
from fastapi.concurrency import run_in_threadpool
from PIL import Image
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from library_portal.config.settings import settings
from library_portal.schemas.student_schemas import StudentRecord
from library_portal.services.export.base import (
    PLACEHOLDER,
    ExportFile,
    display_value,
    export_filename,
)
from library_portal.utils.datetime_utils import format_display_date
from library_portal.utils.errors import ValidationError
from library_portal.utils.logging import get_logger

logger = get_logger()

PDF_MEDIA_TYPE = "application/pdf"

# Page geometry in millimetres, origin at the top-left corner
PAGE_WIDTH = 210
PAGE_HEIGHT = 297
MARGIN = 10
CARDS_PER_PAGE = 4
CARD_WIDTH = (PAGE_WIDTH - 3 * MARGIN) / 2
CARD_HEIGHT = (PAGE_HEIGHT - 5 * MARGIN) / CARDS_PER_PAGE

FRONT_HEADER_HEIGHT = 18
BACK_HEADER_HEIGHT = 14
PHOTO_WIDTH = 25
PHOTO_HEIGHT = 30
PHOTO_RASTER_SIZE = (PHOTO_WIDTH * 4, PHOTO_HEIGHT * 4)
PHOTO_JPEG_QUALITY = 80
QR_SIZE = 22
QR_RASTER_SIZE = 128
LINE_HEIGHT_FACTOR = 1.15

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"

Rgb = Tuple[int, int, int]

BLUE: Rgb = (59, 130, 246)
DARK_BLUE: Rgb = (37, 99, 235)
WHITE: Rgb = (255, 255, 255)
MUTED: Rgb = (120, 120, 120)
DETAIL_TEXT: Rgb = (75, 85, 99)
FRONT_FILL: Rgb = (248, 250, 252)
FRONT_SHADOW: Rgb = (230, 235, 240)
BACK_FILL: Rgb = (250, 251, 252)
BACK_SHADOW: Rgb = (235, 240, 245)
PHOTO_SHADOW: Rgb = (220, 220, 220)
PHOTO_PLACEHOLDER_FILL: Rgb = (240, 242, 247)
PATTERN_LINE: Rgb = (220, 225, 235)
QR_DARK_COLOR = "#3b82f6"


@dataclass
class IDCardDocument:
    content: bytes
    page_count: int


def _rgb(value: Rgb) -> colors.Color:
    return colors.Color(value[0] / 255, value[1] / 255, value[2] / 255)


class _Sheet:
    """Thin wrapper over a reportlab canvas that takes top-left millimetre coordinates."""

    def __init__(self, pdf: canvas.Canvas):
        self.pdf = pdf

    def _y(self, y: float) -> float:
        return (PAGE_HEIGHT - y) * mm

    def rect(
        self,
        x: float,
        y: float,
        width: float,
        height: float,
        fill: Optional[Rgb] = None,
        stroke: Optional[Rgb] = None,
        line_width: float = 0.2,
    ) -> None:
        if fill is not None:
            self.pdf.setFillColor(_rgb(fill))
        if stroke is not None:
            self.pdf.setStrokeColor(_rgb(stroke))
            self.pdf.setLineWidth(line_width * mm)
        self.pdf.rect(
            x * mm,
            self._y(y + height),
            width * mm,
            height * mm,
            stroke=int(stroke is not None),
            fill=int(fill is not None),
        )

    def line(
        self, x1: float, y1: float, x2: float, y2: float, color: Rgb, line_width: float
    ) -> None:
        self.pdf.setStrokeColor(_rgb(color))
        self.pdf.setLineWidth(line_width * mm)
        self.pdf.line(x1 * mm, self._y(y1), x2 * mm, self._y(y2))

    def text(
        self,
        value: str,
        x: float,
        y: float,
        size: float,
        color: Rgb,
        bold: bool = False,
        centered: bool = False,
    ) -> None:
        self.pdf.setFont(FONT_BOLD if bold else FONT, size)
        self.pdf.setFillColor(_rgb(color))
        if centered:
            self.pdf.drawCentredString(x * mm, self._y(y), value)
        else:
            self.pdf.drawString(x * mm, self._y(y), value)

    def lines(
        self,
        values: Sequence[str],
        x: float,
        y: float,
        size: float,
        color: Rgb,
        bold: bool = False,
    ) -> None:
        step = size * LINE_HEIGHT_FACTOR / mm
        for index, value in enumerate(values):
            self.text(value, x, y + index * step, size, color, bold=bold)

    def image(self, image: ImageReader, x: float, y: float, width: float, height: float) -> None:
        self.pdf.drawImage(image, x * mm, self._y(y + height), width * mm, height * mm)

    @staticmethod
    def split(value: str, size: float, max_width: float, bold: bool = False):
        return simpleSplit(value, FONT_BOLD if bold else FONT, size, max_width * mm)


def rasterize_photo(data: bytes) -> ImageReader:
    """Decode a photo and flatten it to a small JPEG so the PDF stays light."""
    with Image.open(io.BytesIO(data)) as source:
        photo = source.convert("RGB").resize(PHOTO_RASTER_SIZE)
    buffer = io.BytesIO()
    photo.save(buffer, format="JPEG", quality=PHOTO_JPEG_QUALITY)
    buffer.seek(0)
    return ImageReader(buffer)


def build_qr_image(url: str) -> ImageReader:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.ERROR_CORRECT_M,
        box_size=4,
        border=0,
    )
    qr.add_data(url)
    qr.make(fit=True)

    buffer = io.BytesIO()
    qr.make_image(fill_color=QR_DARK_COLOR, back_color="white").save(buffer, format="PNG")
    buffer.seek(0)
    with Image.open(buffer) as generated:
        scaled = generated.convert("RGB").resize(
            (QR_RASTER_SIZE, QR_RASTER_SIZE), Image.NEAREST
        )

    output = io.BytesIO()
    scaled.save(output, format="PNG")
    output.seek(0)
    return ImageReader(output)


class IDCardRenderer:
    """
    Lays out printable library ID cards: per student a front card (left) and a
    back card (right), four students per A4 page.
    """

    def __init__(
        self,
        portal_url: Optional[str] = None,
        institution_name: Optional[str] = None,
        institution_subtitle: Optional[str] = None,
    ):
        self.portal_url = portal_url or settings.PORTAL_URL
        self.institution_name = institution_name or settings.CARD_INSTITUTION_NAME
        self.institution_subtitle = institution_subtitle or settings.CARD_INSTITUTION_SUBTITLE

    def render(
        self,
        records: Sequence[StudentRecord],
        photos: Optional[Mapping[str, Optional[bytes]]] = None,
    ) -> IDCardDocument:
        photos = photos or {}
        buffer = io.BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=A4)
        pdf.setTitle("Student ID Cards")
        sheet = _Sheet(pdf)

        try:
            qr_image: Optional[ImageReader] = build_qr_image(self.portal_url)
        except Exception as e:
            logger.warning(f"QR code generation failed, using placeholder: {e}")
            qr_image = None

        page_count = 0
        for start in range(0, len(records), CARDS_PER_PAGE):
            page_count += 1
            for row, record in enumerate(records[start : start + CARDS_PER_PAGE]):
                y = MARGIN + row * (CARD_HEIGHT + MARGIN)
                self._draw_front(sheet, record, photos.get(record.user_id), MARGIN, y)
                self._draw_back(sheet, record, qr_image, MARGIN + CARD_WIDTH + MARGIN, y)
            pdf.showPage()

        pdf.save()
        logger.info(f"Rendered ID cards for {len(records)} students on {page_count} pages")
        return IDCardDocument(content=buffer.getvalue(), page_count=page_count)

    def _draw_card_body(
        self, sheet: _Sheet, x: float, y: float, fill: Rgb, shadow: Rgb
    ) -> None:
        sheet.rect(x + 1, y + 1, CARD_WIDTH, CARD_HEIGHT, fill=shadow)
        sheet.rect(x, y, CARD_WIDTH, CARD_HEIGHT, fill=fill)
        sheet.rect(x, y, CARD_WIDTH, CARD_HEIGHT, stroke=BLUE, line_width=1)

    def _draw_front(
        self,
        sheet: _Sheet,
        record: StudentRecord,
        photo: Optional[bytes],
        x: float,
        y: float,
    ) -> None:
        self._draw_card_body(sheet, x, y, FRONT_FILL, FRONT_SHADOW)

        sheet.rect(x, y, CARD_WIDTH, FRONT_HEADER_HEIGHT, fill=BLUE)
        sheet.rect(x, y, CARD_WIDTH, FRONT_HEADER_HEIGHT / 2, fill=DARK_BLUE)
        center = x + CARD_WIDTH / 2
        sheet.text(self.institution_name, center, y + 6, 8, WHITE, bold=True, centered=True)
        sheet.text(self.institution_subtitle, center, y + 10, 6, WHITE, centered=True)
        sheet.text("LIBRARY CARD", center, y + 15, 5, WHITE, bold=True, centered=True)

        photo_x = x + 8
        photo_y = y + FRONT_HEADER_HEIGHT + 8
        sheet.rect(photo_x + 1, photo_y + 1, PHOTO_WIDTH, PHOTO_HEIGHT, fill=PHOTO_SHADOW)
        image = self._photo_image(record, photo)
        if image is not None:
            sheet.image(image, photo_x, photo_y, PHOTO_WIDTH, PHOTO_HEIGHT)
            sheet.rect(
                photo_x, photo_y, PHOTO_WIDTH, PHOTO_HEIGHT, stroke=BLUE, line_width=0.8
            )
        else:
            self._draw_photo_placeholder(sheet, photo_x, photo_y)

        info_x = photo_x + PHOTO_WIDTH + 8
        info_y = photo_y
        name = (record.name or PLACEHOLDER).upper()
        name_lines = sheet.split(name, 10, CARD_WIDTH - PHOTO_WIDTH - 20, bold=True)
        sheet.lines(name_lines, info_x, info_y + 5, 10, BLUE, bold=True)

        details = (
            f"PRN: {display_value(record.prn)}",
            f"Course: {display_value(record.course)}",
            f"Gender: {display_value(record.gender)}",
            f"Blood: {display_value(record.blood_group)}",
        )
        detail_y = info_y + len(name_lines) * 5 + 8
        for index, detail in enumerate(details):
            sheet.text(detail, info_x, detail_y + index * 5, 7, DETAIL_TEXT)

        footer_y = y + CARD_HEIGHT - 10
        sheet.rect(x + 3, footer_y, CARD_WIDTH - 6, 7, fill=DARK_BLUE)
        sheet.text(
            f"LIB ID: {display_value(record.library_number)}",
            center,
            footer_y + 5,
            7,
            WHITE,
            bold=True,
            centered=True,
        )

        sheet.line(
            x + 3,
            y + FRONT_HEADER_HEIGHT + 2,
            x + CARD_WIDTH - 3,
            y + FRONT_HEADER_HEIGHT + 2,
            BLUE,
            0.5,
        )
        sheet.rect(x, y, 8, 2, fill=BLUE)
        sheet.rect(x, y, 2, 8, fill=BLUE)
        sheet.rect(x + CARD_WIDTH - 8, y, 8, 2, fill=BLUE)
        sheet.rect(x + CARD_WIDTH - 2, y, 2, 8, fill=BLUE)

    def _photo_image(
        self, record: StudentRecord, photo: Optional[bytes]
    ) -> Optional[ImageReader]:
        if not photo:
            if record.photo_url:
                logger.warning(f"No photo data for student {record.user_id}, using placeholder")
            return None
        try:
            return rasterize_photo(photo)
        except Exception as e:
            logger.warning(f"Could not decode photo for student {record.user_id}: {e}")
            return None

    def _draw_photo_placeholder(self, sheet: _Sheet, x: float, y: float) -> None:
        sheet.rect(
            x,
            y,
            PHOTO_WIDTH,
            PHOTO_HEIGHT,
            fill=PHOTO_PLACEHOLDER_FILL,
            stroke=BLUE,
            line_width=0.5,
        )
        center_x = x + PHOTO_WIDTH / 2
        center_y = y + PHOTO_HEIGHT / 2
        sheet.text("STUDENT", center_x, center_y - 2, 6, MUTED, centered=True)
        sheet.text("PHOTO", center_x, center_y + 2, 6, MUTED, centered=True)

    def _draw_back(
        self,
        sheet: _Sheet,
        record: StudentRecord,
        qr_image: Optional[ImageReader],
        x: float,
        y: float,
    ) -> None:
        self._draw_card_body(sheet, x, y, BACK_FILL, BACK_SHADOW)

        sheet.rect(x, y, CARD_WIDTH, BACK_HEADER_HEIGHT, fill=BLUE)
        center = x + CARD_WIDTH / 2
        sheet.text("LIBRARY CARD - BACK", center, y + 8, 7, WHITE, bold=True, centered=True)

        details_x = x + 5
        details_y = y + BACK_HEADER_HEIGHT + 8
        details = (
            f"Blood Group: {display_value(record.blood_group)}",
            f"Mobile: {display_value(record.mobile)}",
            f"DOB: {format_display_date(record.date_of_birth) or PLACEHOLDER}",
        )
        for index, detail in enumerate(details):
            sheet.text(detail, details_x, details_y + index * 6, 7, DETAIL_TEXT)

        address_y = details_y + len(details) * 6 + 4
        sheet.text("Address:", details_x, address_y, 7, BLUE, bold=True)
        address = record.permanent_address or record.local_address or "Not provided"
        sheet.lines(sheet.split(address, 6, CARD_WIDTH - 30), details_x, address_y + 4, 6, DETAIL_TEXT)

        qr_x = x + CARD_WIDTH - QR_SIZE - 6
        qr_y = y + CARD_HEIGHT - QR_SIZE - 16
        sheet.rect(
            qr_x - 2,
            qr_y - 2,
            QR_SIZE + 4,
            QR_SIZE + 4,
            fill=WHITE,
            stroke=BLUE,
            line_width=0.5,
        )
        if qr_image is not None:
            sheet.image(qr_image, qr_x, qr_y, QR_SIZE, QR_SIZE)
        else:
            sheet.rect(qr_x, qr_y, QR_SIZE, QR_SIZE, fill=BLUE)
            sheet.text(
                "QR", qr_x + QR_SIZE / 2, qr_y + QR_SIZE / 2 + 1, 5, WHITE, bold=True, centered=True
            )
        sheet.text(
            "Scan for Portal", qr_x + QR_SIZE / 2, qr_y + QR_SIZE + 5, 5, MUTED, centered=True
        )

        sheet.text(
            "Valid only with student ID verification",
            center,
            y + CARD_HEIGHT - 3,
            5,
            MUTED,
            centered=True,
        )

        bracket = 8
        inset = 3
        left, right = x + inset, x + CARD_WIDTH - inset
        top, bottom = y + inset, y + CARD_HEIGHT - inset
        for (corner_x, corner_y, dx, dy) in (
            (left, top, 1, 1),
            (right, top, -1, 1),
            (left, bottom, 1, -1),
            (right, bottom, -1, -1),
        ):
            sheet.line(corner_x, corner_y, corner_x + dx * bracket, corner_y, BLUE, 0.5)
            sheet.line(corner_x, corner_y, corner_x, corner_y + dy * bracket, BLUE, 0.5)

        for index in range(5):
            line_y = y + 20 + index * 8
            sheet.line(x + CARD_WIDTH - 20, line_y, x + CARD_WIDTH - 5, line_y, PATTERN_LINE, 0.1)


class IDCardExportService:
    """Fetches student photos and renders the ID-card PDF off the event loop."""

    def __init__(
        self,
        renderer: Optional[IDCardRenderer] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.renderer = renderer or IDCardRenderer()
        self.timeout = timeout
        self.transport = transport

    async def fetch_photo(self, client: httpx.AsyncClient, url: str) -> Optional[bytes]:
        try:
            response = await client.get(url)
            response.raise_for_status()
            return response.content
        except httpx.HTTPError as e:
            logger.warning(f"Photo fetch failed: {type(e).__name__}")
            return None

    async def fetch_photos(self, records: Sequence[StudentRecord]) -> dict:
        photos = {}
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport, follow_redirects=True
        ) as client:
            # Sequential, one request in flight
            for record in records:
                if record.photo_url:
                    photos[record.user_id] = await self.fetch_photo(client, record.photo_url)
        return photos

    async def export(
        self, records: Sequence[StudentRecord], today: Optional[date] = None
    ) -> ExportFile:
        if not records:
            raise ValidationError("No students to export", error_code="NO_STUDENTS_TO_EXPORT")

        photos = await self.fetch_photos(records)
        document = await run_in_threadpool(self.renderer.render, list(records), photos)

        logger.info(
            f"ID card export ready - students: {len(records)}, pages: {document.page_count}"
        )
        return ExportFile(
            content=document.content,
            filename=export_filename("student_id_cards", "pdf", today),
            media_type=PDF_MEDIA_TYPE,
            page_count=document.page_count,
        )


def get_id_card_export_service() -> IDCardExportService:
    return IDCardExportService()
