"""Thin client for Gemini generateContent with structured lab output."""
from __future__ import annotations

import base64
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from medrecord.services.lab_types import ExtractionResult, RawLabValue
from medrecord.utils.exceptions import ExtractionError

logger = logging.getLogger("medrecord")

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "gemini-2.5-flash"

LAB_PROMPT = (
    "Analyze this medical laboratory report and return JSON with:\n"
    "1. 'report_date' (YYYY-MM-DD).\n"
    "2. 'results': [{'test','value','unit','range','flag','category'}], values copied exactly as printed.\n"
    "3. 'summary' of the main findings (<=100 words).\n"
    "If something cannot be read, leave it empty instead of guessing."
)

LAB_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "report_date": {"type": "string", "description": "Report date as YYYY-MM-DD"},
        "summary": {"type": "string", "description": "Short summary of the main findings"},
        "results": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "test": {"type": "string"},
                    "value": {"type": "string"},
                    "unit": {"type": "string"},
                    "range": {"type": "string"},
                    "flag": {"type": "string"},
                    "category": {"type": "string"},
                },
                "required": ["test", "value"],
            },
        },
    },
    "required": ["report_date", "summary", "results"],
}

_FENCE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


class GeminiLabValue(BaseModel):
    test: str
    value: str
    unit: Optional[str] = None
    range: Optional[str] = None
    flag: Optional[str] = None
    category: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, v: Any) -> Any:
        # models sometimes answer 110 instead of "110"
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("test")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("test must not be blank")
        return v

    def to_raw(self) -> RawLabValue:
        return RawLabValue(
            test=self.test.strip(),
            value=self.value.strip(),
            unit=(self.unit or "").strip() or None,
            range=(self.range or "").strip() or None,
            flag=(self.flag or "").strip() or None,
            category=(self.category or "").strip() or None,
        )


class GeminiLabPayload(BaseModel):
    report_date: Optional[str] = None
    summary: str = ""
    results: List[GeminiLabValue]

    def parsed_date(self) -> Optional[datetime]:
        try:
            return datetime.strptime((self.report_date or "").strip(), "%Y-%m-%d")
        except ValueError:
            return None

    def to_result(self) -> ExtractionResult:
        return ExtractionResult(
            source="ai",
            values=tuple(item.to_raw() for item in self.results),
            report_date=self.parsed_date(),
            summary=(self.summary or "").strip(),
        )


def _request(parts: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "contents": [{"parts": [{"text": LAB_PROMPT}, *parts]}],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": LAB_RESPONSE_SCHEMA,
        },
    }


def build_request(data: bytes, mime_type: str) -> Dict[str, Any]:
    return _request([{"inlineData": {"mimeType": mime_type, "data": base64.b64encode(data).decode("ascii")}}])


def build_text_request(text: str) -> Dict[str, Any]:
    """Pasted report text goes in as a second text part after the prompt."""
    return _request([{"text": text}])


def _first_text(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    for candidate in body.get("candidates") or []:
        parts = ((candidate or {}).get("content") or {}).get("parts") or []
        for part in parts:
            text = (part or {}).get("text")
            if isinstance(text, str) and text.strip():
                return text
    return None


def parse_response(body: Any) -> Optional[GeminiLabPayload]:
    """Validate a generateContent body; anything off-schema is None."""
    text = _first_text(body)
    if text is None:
        return None
    try:
        return GeminiLabPayload.model_validate(json.loads(_FENCE.sub("", text)))
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.warning({"function": "gemini_parse", "error": str(exc)[:300]})
        return None


class GeminiClient:
    """Stateless wrapper; the httpx client is owned by the caller."""

    def __init__(self, api_key: str, http_client: httpx.AsyncClient, model: str = DEFAULT_MODEL, timeout_s: float = 30.0):
        self.api_key = (api_key or "").strip()
        self.model = (model or DEFAULT_MODEL).strip()
        self.http_client = http_client
        self.timeout_s = timeout_s

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    @property
    def url(self) -> str:
        return f"{GEMINI_BASE_URL}/{self.model}:generateContent"

    async def _generate(self, body: Dict[str, Any]) -> ExtractionResult:
        """POST one generateContent request; every failure surfaces as ExtractionError."""
        try:
            r = await self.http_client.post(
                self.url,
                params={"key": self.api_key},
                headers={"Content-Type": "application/json"},
                json=body,
                timeout=self.timeout_s,
            )
            r.raise_for_status()
            raw = r.json()
        except httpx.TimeoutException as exc:
            raise ExtractionError(f"no answer within {self.timeout_s}s", stage="timeout") from exc
        except httpx.HTTPStatusError as exc:
            raise ExtractionError(f"status {exc.response.status_code}", stage="http") from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(str(exc), stage="transport") from exc
        except ValueError as exc:
            raise ExtractionError(str(exc), stage="decode") from exc

        payload = parse_response(raw)
        if payload is None:
            raise ExtractionError("response does not match the lab schema", stage="schema")
        result = payload.to_result()
        logger.info({"function": "gemini_extract", "stage": "done", "values": len(result.values)})
        return result

    async def extract_lab(self, data: bytes, mime_type: str) -> Optional[ExtractionResult]:
        if not self.enabled:
            return None
        return await self._generate(build_request(data, mime_type))

    async def extract_lab_text(self, text: str) -> Optional[ExtractionResult]:
        if not self.enabled or not (text or "").strip():
            return None
        return await self._generate(build_text_request(text))


__all__ = [
    "GeminiClient",
    "GeminiLabPayload",
    "GeminiLabValue",
    "build_request",
    "build_text_request",
    "parse_response",
    "LAB_RESPONSE_SCHEMA",
]
