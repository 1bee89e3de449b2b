"""File-to-text helpers (PDF text layer, image OCR)."""
from __future__ import annotations

import io
import logging
from typing import Optional

import pytesseract
from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader
from pypdf.errors import PyPdfError

logger = logging.getLogger("medrecord")

SUPPORTED_IMAGE_EXT = {".png", ".jpg", ".jpeg", ".tiff", ".bmp", ".webp"}


def is_pdf(mime_type: str, filename: str = "") -> bool:
    return "pdf" in (mime_type or "").lower() or (filename or "").lower().endswith(".pdf")


def is_image(mime_type: str, filename: str = "") -> bool:
    lowered = (filename or "").lower()
    return (mime_type or "").lower().startswith("image/") or any(lowered.endswith(ext) for ext in SUPPORTED_IMAGE_EXT)


def extract_pdf_text(data: bytes) -> Optional[str]:
    """Text layer of a PDF, or None for scanned/corrupt files."""
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PyPdfError, ValueError, KeyError, TypeError) as exc:
        logger.warning({"function": "extract_pdf_text", "error": str(exc)})
        return None
    text = "\n".join(pages).replace("\x00", "").strip()
    return text or None


def extract_image_text(data: bytes, lang: str = "spa+eng") -> Optional[str]:
    try:
        img = Image.open(io.BytesIO(data))
        text = pytesseract.image_to_string(img, lang=lang)
    except (UnidentifiedImageError, pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as exc:
        logger.warning({"function": "extract_image_text", "error": str(exc)})
        return None
    text = (text or "").strip()
    return text or None


__all__ = ["extract_pdf_text", "extract_image_text", "is_pdf", "is_image"]
