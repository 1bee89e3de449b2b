"""Visible identity/time watermark stamped onto PDF bytes.

Placement is a pure function per model returning the marks to draw; the
stamper renders them on a reportlab overlay per page and merges it with pypdf.
Stamping twice stamps twice.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pypdf import PdfReader, PdfWriter
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from medrecord.utils.dates import utcnow
from medrecord.utils.exceptions import WatermarkError

logger = logging.getLogger("medrecord")

FONT = "Helvetica"
GRAY = (0.47, 0.47, 0.47)
DEFAULT_INTENSITY = 0.15

DIAGONAL_SCALE = 0.08
DIAGONAL_MAX_WIDTH = 0.8
GRID_SPACING_X = 300
GRID_SPACING_Y = 200
GRID_ANGLE = -30
GRID_SIZE = 16
BORDER_MARGIN = 20
BORDER_SIZE = 10
CORNER_MARGIN = 30
CORNER_SIZE = 12


@dataclass(frozen=True)
class Mark:
    x: float
    y: float
    text: str
    size: float
    angle: float = 0.0
    align: str = "left"  # left | center | right
    opacity: float = DEFAULT_INTENSITY


def diagonal(width: float, height: float, text: str, intensity: float) -> List[Mark]:
    size = min(width, height) * DIAGONAL_SCALE
    text_width = stringWidth(text, FONT, size)
    if text_width > width * DIAGONAL_MAX_WIDTH:
        size = size * (width * DIAGONAL_MAX_WIDTH) / text_width
    return [Mark(width / 2, height / 2, text, size, angle=-45, align="center", opacity=intensity)]


def grid(width: float, height: float, text: str, intensity: float) -> List[Mark]:
    marks: List[Mark] = []
    y = GRID_SPACING_Y / 2
    while y < height:
        x = GRID_SPACING_X / 2
        while x < width:
            marks.append(Mark(x, y, text, GRID_SIZE, angle=GRID_ANGLE, align="center", opacity=intensity))
            x += GRID_SPACING_X
        y += GRID_SPACING_Y
    return marks


def border(width: float, height: float, text: str, intensity: float) -> List[Mark]:
    return [Mark(width - BORDER_MARGIN, BORDER_MARGIN, text, BORDER_SIZE, align="right", opacity=intensity)]


def corner(width: float, height: float, text: str, intensity: float) -> List[Mark]:
    return [
        Mark(width - CORNER_MARGIN, height - CORNER_MARGIN - CORNER_SIZE, text, CORNER_SIZE, align="right", opacity=intensity)
    ]


PLACEMENTS: Dict[str, Callable[[float, float, str, float], List[Mark]]] = {
    "diagonal": diagonal,
    "grid": grid,
    "border": border,
    "corner": corner,
}


def watermark_text(identity: str, source_ip: Optional[str] = None, timestamp: Optional[datetime] = None) -> str:
    parts = [identity or "unknown"]
    if source_ip:
        parts.append(source_ip)
    parts.append((timestamp or utcnow()).strftime("%Y-%m-%d %H:%M"))
    return " • ".join(parts)


def _overlay(width: float, height: float, marks: List[Mark]) -> PdfReader:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=(width, height), invariant=1)
    c.setFillColorRGB(*GRAY)
    for mark in marks:
        c.saveState()
        c.setFillAlpha(mark.opacity)
        c.setFont(FONT, mark.size)
        c.translate(mark.x, mark.y)
        c.rotate(mark.angle)
        if mark.align == "center":
            c.drawCentredString(0, 0, mark.text)
        elif mark.align == "right":
            c.drawRightString(0, 0, mark.text)
        else:
            c.drawString(0, 0, mark.text)
        c.restoreState()
    c.showPage()
    c.save()
    buffer.seek(0)
    return PdfReader(buffer)


def apply_watermark(pdf_bytes: bytes, model: str, intensity: float, text: str) -> bytes:
    """Strict variant; raises WatermarkError on bad parameters or unreadable input."""
    placement = PLACEMENTS.get(model)
    if placement is None:
        raise WatermarkError(f"Unknown watermark model: {model}")
    try:
        intensity = float(intensity)
    except (TypeError, ValueError) as exc:
        raise WatermarkError(f"Invalid intensity: {intensity!r}") from exc
    if not 0 < intensity <= 1:
        raise WatermarkError(f"Intensity must be in (0, 1]: {intensity}")

    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        writer = PdfWriter()
        for page in reader.pages:
            width = float(page.mediabox.width)
            height = float(page.mediabox.height)
            overlay = _overlay(width, height, placement(width, height, text, intensity))
            page.merge_page(overlay.pages[0])
            writer.add_page(page)
        out = io.BytesIO()
        writer.write(out)
    except Exception as exc:
        raise WatermarkError(str(exc)) from exc
    return out.getvalue()


def stamp(
    pdf_bytes: bytes,
    model: str,
    intensity: float,
    identity: str,
    *,
    source_ip: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> bytes:
    """Best-effort stamp: any failure returns ``pdf_bytes`` unchanged."""
    try:
        stamped = apply_watermark(pdf_bytes, model, intensity, watermark_text(identity, source_ip, timestamp))
    except WatermarkError as exc:
        logger.warning({"function": "stamp", "model": model, "error": str(exc)})
        return pdf_bytes
    logger.info({"function": "stamp", "model": model, "intensity": intensity})
    return stamped


__all__ = ["stamp", "apply_watermark", "watermark_text", "PLACEMENTS", "Mark"]
