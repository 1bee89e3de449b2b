"""ExtractionGateway: document bytes or pasted text -> candidate lab values.

Steps run in order and each returns an ExtractionResult or None:

1. remote AI (only with an API key),
2. text layer / OCR + regex line parser,
3. failed (zero values, source "manual").

The gateway never raises for extraction problems; the upload must always
succeed even when nothing could be read.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Awaitable, Optional

from medrecord.services.dedup import dedup_report_values
from medrecord.services.gemini import GeminiClient
from medrecord.services.lab_parser import parse_lab_text
from medrecord.services.lab_types import ExtractionResult
from medrecord.services.ocr import extract_image_text, extract_pdf_text, is_image, is_pdf
from medrecord.utils.exceptions import ExtractionError

logger = logging.getLogger("medrecord")


def parsed_text_result(text: Optional[str]) -> Optional[ExtractionResult]:
    values = parse_lab_text(text or "")
    if not values:
        return None
    return ExtractionResult(source="ocr", values=tuple(values))


def choose_result(ai: Optional[ExtractionResult], text: Optional[ExtractionResult]) -> ExtractionResult:
    if ai is not None and ai.values:
        return ai
    if text is not None:
        # keep whatever date/summary the model did manage to read
        return replace(text, report_date=ai.report_date, summary=ai.summary) if ai is not None else text
    return ExtractionResult.failed(summary=ai.summary if ai is not None else "")


class ExtractionGateway:
    def __init__(self, client: Optional[GeminiClient] = None, ocr_images: bool = False):
        self.client = client
        self.ocr_images = ocr_images

    @property
    def ai_enabled(self) -> bool:
        return self.client is not None and self.client.enabled

    async def _recover(self, call: Awaitable[Optional[ExtractionResult]]) -> Optional[ExtractionResult]:
        try:
            return await call
        except ExtractionError as exc:
            logger.warning({"function": "ai_step", "stage": exc.stage, "error": str(exc)})
            return None

    async def ai_step(self, data: bytes, mime_type: str) -> Optional[ExtractionResult]:
        if not self.ai_enabled:
            return None
        return await self._recover(self.client.extract_lab(data, mime_type))

    def document_text(self, data: bytes, mime_type: str, filename: str = "") -> Optional[str]:
        if is_pdf(mime_type, filename):
            return extract_pdf_text(data)
        if self.ocr_images and is_image(mime_type, filename):
            return extract_image_text(data)
        return None

    def text_step(self, data: bytes, mime_type: str, filename: str = "") -> Optional[ExtractionResult]:
        try:
            text = self.document_text(data, mime_type, filename)
        except Exception as exc:
            logger.warning({"function": "text_step", "mime_type": mime_type, "error": str(exc)}, exc_info=exc)
            return None
        return parsed_text_result(text)

    def _finish(self, result: ExtractionResult, origin: str) -> ExtractionResult:
        deduped = tuple(dedup_report_values(result.values))
        logger.info({
            "function": "extract",
            "origin": origin,
            "source": result.source,
            "values": len(deduped),
            "dropped_duplicates": len(result.values) - len(deduped),
        })
        return replace(result, values=deduped)

    async def extract(self, data: bytes, mime_type: str, filename: str = "") -> ExtractionResult:
        ai = await self.ai_step(data, mime_type)
        text = None if ai is not None and ai.values else self.text_step(data, mime_type, filename)
        return self._finish(choose_result(ai, text), mime_type)

    async def extract_text(self, text: str) -> ExtractionResult:
        """Same chain for report text pasted by the clinician; there is no file to read."""
        ai = None
        if self.ai_enabled:
            ai = await self._recover(self.client.extract_lab_text(text))
        parsed = None if ai is not None and ai.values else parsed_text_result(text)
        return self._finish(choose_result(ai, parsed), "text/plain")


__all__ = ["ExtractionGateway", "choose_result", "parsed_text_result"]
