"""Medical record export: JSON bytes or a paginated A4-landscape PDF."""
from __future__ import annotations

import io
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from medrecord.services.aggregator import MedicalRecordAggregate
from medrecord.services.dedup import row_is_abnormal
from medrecord.services.lab_types import FlatLabValue
from medrecord.services.pdf_format import emergency_contact_line, format_section, vital_sign_lines
from medrecord.utils.dates import iso_day
from medrecord.utils.exceptions import RenderError

logger = logging.getLogger("medrecord")

FORMATS = ("json", "pdf")
MODES = ("summary", "full")

PAGE_SIZE = landscape(A4)
MARGIN = 30
LINE_HEIGHT = 16
ROW_HEIGHT = 16
FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"

LAB_HEADERS = ("Date", "Test", "Value", "Unit", "Range", "Flag")
LAB_COL_WIDTHS = (80, 210, 80, 70, 200, 60)
LAB_CHAR_LIMITS = (10, 28, 10, 8, 26, 8)

DOC_HEADERS = ("File", "Type", "Size (KB)", "Date")
DOC_COL_WIDTHS = (300, 120, 100, 120)
DOC_CHAR_LIMIT = 35

NARRATIVE_SECTIONS = (
    ("Chief Complaint", "chiefComplaint"),
    ("Physical Exam", "physicalExam"),
    ("Diagnosis", "diagnosis"),
    ("Treatment", "treatment"),
    ("Summary", "summary"),
)

TRUNCATED_NOTICE = "Document truncated: an error occurred while rendering the remaining content."


def truncate(text: Any, limit: int) -> str:
    s = "" if text is None else str(text)
    return s if len(s) <= limit else s[: limit - 1] + "…"


def lab_rows(aggregate: MedicalRecordAggregate, mode: str = "summary") -> List[FlatLabValue]:
    """Rows for the PDF lab table, newest day first."""
    rows = list(aggregate.lab_values_flat)
    if mode == "summary":
        rows = [row for row in rows if row_is_abnormal(row)]
    return sorted(rows, key=lambda row: row.day, reverse=True)


def render_json(aggregate: MedicalRecordAggregate) -> bytes:
    return json.dumps(aggregate.to_dict(), ensure_ascii=False, default=str).encode("utf-8")


class PdfCursor:
    """Canvas plus a running vertical cursor; y decreases down the page."""

    def __init__(self, buffer: io.BytesIO):
        self.canvas = canvas.Canvas(buffer, pagesize=PAGE_SIZE, invariant=1)
        self.width, self.height = PAGE_SIZE
        self.pages_flushed = 0
        self.y = self.top

    @property
    def top(self) -> float:
        return self.height - MARGIN

    @property
    def bottom(self) -> float:
        return MARGIN

    @property
    def content_width(self) -> float:
        return self.width - 2 * MARGIN

    def new_page(self) -> None:
        self.canvas.showPage()
        self.pages_flushed += 1
        self.y = self.top

    def ensure(self, height: float) -> bool:
        """Start a new page when ``height`` no longer fits; True when it did."""
        if self.y - height < self.bottom:
            self.new_page()
            return True
        return False

    def text(self, value: str, x: float = MARGIN, font: str = FONT, size: int = 10) -> None:
        self.canvas.setFont(font, size)
        self.canvas.drawString(x, self.y - size, value)

    def centered(self, value: str, font: str = FONT, size: int = 10) -> None:
        self.canvas.setFont(font, size)
        self.canvas.drawCentredString(self.width / 2, self.y - size, value)
        self.y -= size + 6

    def heading(self, value: str, size: int = 12) -> None:
        self.ensure(size + LINE_HEIGHT)
        self.text(value, font=FONT_BOLD, size=size)
        self.y -= size + 8

    def paragraph(self, value: str, x: float = MARGIN, size: int = 10) -> None:
        width = self.width - MARGIN - x
        for raw_line in value.split("\n"):
            wrapped = simpleSplit(raw_line, FONT, size, width) or [""]
            for line in wrapped:
                self.ensure(LINE_HEIGHT)
                self.text(line, x=x, size=size)
                self.y -= LINE_HEIGHT

    def two_columns(self, items: Sequence[str], size: int = 10) -> None:
        col_width = self.content_width / 2 - 20
        for i in range(0, len(items), 2):
            self.ensure(LINE_HEIGHT)
            self.text(truncate(items[i], 90), size=size)
            if i + 1 < len(items):
                self.text(truncate(items[i + 1], 90), x=MARGIN + col_width + 20, size=size)
            self.y -= LINE_HEIGHT

    def rule(self) -> None:
        self.canvas.setStrokeGray(0.67)
        self.canvas.setLineWidth(0.5)
        self.canvas.line(MARGIN, self.y, self.width - MARGIN, self.y)
        self.canvas.setStrokeGray(0)
        self.canvas.setLineWidth(1)

    def table_row(self, cells: Sequence[str], widths: Sequence[int], font: str = FONT, size: int = 9) -> None:
        x = MARGIN
        self.canvas.setFont(font, size)
        for cell, width in zip(cells, widths):
            self.canvas.drawString(x, self.y - size, cell)
            x += width
        self.y -= ROW_HEIGHT


class MedicalRecordPdf:
    def __init__(self, aggregate: MedicalRecordAggregate, mode: str):
        self.aggregate = aggregate
        self.mode = mode

    def draw(self, cur: PdfCursor) -> None:
        self.draw_header(cur)
        self.draw_patient(cur)
        self.draw_consultations(cur)
        self.draw_labs(cur)
        self.draw_documents(cur)

    def draw_header(self, cur: PdfCursor) -> None:
        p = self.aggregate.patient
        period = self.aggregate.range
        cur.centered("Medical Record", font=FONT_BOLD, size=16)
        cur.centered(
            f"Patient: {p.get('lastName') or ''} {p.get('firstName') or ''} | "
            f"Doc: {p.get('documentType') or ''} {p.get('documentNumber') or ''}"
        )
        cur.centered(f"Period: {iso_day(period['from'])} to {iso_day(period['to'])} | Mode: {self.mode}")
        cur.y -= 10

    def draw_patient(self, cur: PdfCursor) -> None:
        p = self.aggregate.patient
        cur.heading("Patient Information")
        cur.two_columns([
            f"Name: {p.get('firstName') or ''} {p.get('lastName') or ''}",
            f"Document: {p.get('documentType') or ''} {p.get('documentNumber') or ''}",
            f"Gender: {p.get('gender') or 'Not specified'}",
            f"Date of Birth: {iso_day(p.get('dateOfBirth')) or 'Not specified'}",
            f"Phone: {p.get('phone') or 'Not recorded'}",
            f"Email: {p.get('email') or 'Not recorded'}",
            f"Address: {p.get('address') or 'Not recorded'}",
            f"Blood Type: {p.get('bloodType') or 'Not recorded'}",
        ])
        contact = emergency_contact_line(p.get("emergencyContact"))
        if contact:
            cur.y -= 4
            cur.heading("Emergency Contact", size=10)
            cur.paragraph(contact)

    def draw_consultations(self, cur: PdfCursor) -> None:
        consultations = self.aggregate.consultations
        if not consultations:
            return
        cur.new_page()
        cur.heading("Consultation History")
        for index, c in enumerate(consultations):
            if index > 0:
                cur.new_page()
            cur.heading(f"Consultation {index + 1} - {iso_day(c.get('date'))}", size=11)
            cur.two_columns([f"Doctor: {c.get('doctor') or ''}", f"Status: {c.get('status') or ''}"])
            cur.two_columns([f"Reason: {c.get('reason') or ''}"])
            for title, key in NARRATIVE_SECTIONS:
                block = format_section(title, c.get(key))
                if not block:
                    continue
                cur.heading(f"{title}:", size=10)
                cur.paragraph(block)
                cur.y -= 8
            vitals = vital_sign_lines(c.get("vitalSigns"))
            if vitals:
                cur.heading("Vital Signs:", size=10)
                cur.two_columns(vitals)

    def draw_lab_header(self, cur: PdfCursor) -> None:
        cur.table_row(LAB_HEADERS, LAB_COL_WIDTHS, font=FONT_BOLD)
        cur.y += ROW_HEIGHT - 12
        cur.rule()
        cur.y -= 6

    def draw_labs(self, cur: PdfCursor) -> None:
        rows = lab_rows(self.aggregate, self.mode)
        if not rows:
            return
        cur.new_page()
        cur.heading("Laboratory Results")
        self.draw_lab_header(cur)
        for row in rows:
            if cur.ensure(ROW_HEIGHT):
                self.draw_lab_header(cur)
            cells = [
                truncate(value, limit)
                for value, limit in zip(
                    (row.day, row.test, row.value, row.unit, row.range, row.flag), LAB_CHAR_LIMITS
                )
            ]
            cur.table_row(cells, LAB_COL_WIDTHS, font=FONT_BOLD if row_is_abnormal(row) else FONT)

    def draw_documents(self, cur: PdfCursor) -> None:
        documents = self.aggregate.documents
        if not documents:
            return
        if cur.y < cur.bottom + 150 or len(documents) > 5:
            cur.new_page()
        cur.heading("Attached Documents")
        cur.table_row(DOC_HEADERS, DOC_COL_WIDTHS, font=FONT_BOLD, size=10)
        for d in documents:
            if cur.ensure(ROW_HEIGHT):
                cur.table_row(DOC_HEADERS, DOC_COL_WIDTHS, font=FONT_BOLD, size=10)
            cells = [d.get("filename"), d.get("type"), str(round((d.get("size") or 0) / 1024)), iso_day(d.get("createdAt"))]
            cur.table_row([truncate(c, DOC_CHAR_LIMIT) for c in cells], DOC_COL_WIDTHS, size=10)


def render_pdf(aggregate: MedicalRecordAggregate, mode: str = "summary") -> bytes:
    buffer = io.BytesIO()
    cur = PdfCursor(buffer)
    try:
        MedicalRecordPdf(aggregate, mode).draw(cur)
    except Exception as exc:
        if cur.pages_flushed == 0:
            raise RenderError(str(exc)) from exc
        logger.warning({
            "function": "render_pdf",
            "stage": "partial",
            "pages_flushed": cur.pages_flushed,
            "error": str(exc),
        })
        cur.canvas.setFillGray(0)
        cur.canvas.setFont(FONT_BOLD, 10)
        cur.canvas.drawString(MARGIN, MARGIN / 2, TRUNCATED_NOTICE)
    cur.canvas.save()
    return buffer.getvalue()


def render(aggregate: MedicalRecordAggregate, fmt: str = "json", mode: Optional[str] = "summary") -> bytes:
    mode = mode or "summary"
    if fmt not in FORMATS:
        raise ValueError(f"Unsupported format: {fmt}")
    if mode not in MODES:
        raise ValueError(f"Unsupported mode: {mode}")
    if fmt == "json":
        return render_json(aggregate)
    return render_pdf(aggregate, mode)


__all__ = ["render", "render_json", "render_pdf", "lab_rows", "truncate", "PdfCursor", "MedicalRecordPdf"]
