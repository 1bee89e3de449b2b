import asyncio
import base64
import json
from datetime import datetime

import httpx
import pytest

from medrecord.services.extraction import ExtractionGateway
from medrecord.services.gemini import GeminiClient, parse_response
from medrecord.services.lab_types import RawLabValue
from medrecord.utils.exceptions import ExtractionError

LAB_LINES = ["LABORATORIO CENTRAL", "Glucosa: 110 mg/dL (70-100)", "Urea: 30 mg/dL (15-45)"]


def _gemini_body(payload):
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _run(handler, data, mime_type="application/pdf", api_key="test-key"):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            gateway = ExtractionGateway(GeminiClient(api_key, http_client, timeout_s=1))
            return await gateway.extract(data, mime_type, "report.pdf")

    return asyncio.run(go())


def _unreachable(request):
    raise AssertionError("remote service must not be called")


def test_ai_disabled_uses_pdf_text(pdf_factory):
    result = _run(_unreachable, pdf_factory([LAB_LINES]), api_key="")
    assert result.source == "ocr"
    assert result.values[0] == RawLabValue(test="Glucosa", value="110", unit="mg/dL", range="70-100")
    assert [v.test for v in result.values] == ["Glucosa", "Urea"]
    assert result.report_date is None


def test_ai_result_is_used_and_request_is_well_formed(pdf_factory):
    seen = {}
    data = pdf_factory([LAB_LINES])

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json=_gemini_body(
                {
                    "report_date": "2024-05-01",
                    "summary": "Glucosa elevada.",
                    "results": [
                        {"test": "Glucosa", "value": "110", "unit": "mg/dL", "range": "70-100", "flag": "alto"},
                        {"test": "Glucosa ", "value": "110", "unit": "MG/DL", "range": "70-100"},
                        {"test": "HbA1c", "value": 6.1, "unit": "%", "category": "Diabetes"},
                    ],
                }
            ),
        )

    result = _run(handler, data)
    assert result.source == "ai"
    assert result.report_date == datetime(2024, 5, 1)
    assert result.summary == "Glucosa elevada."
    # duplicate collapsed, first one (with its flag) kept
    assert [(v.test, v.value, v.flag) for v in result.values] == [("Glucosa", "110", "alto"), ("HbA1c", "6.1", None)]

    assert ":generateContent" in seen["url"] and "key=test-key" in seen["url"]
    parts = seen["body"]["contents"][0]["parts"]
    assert parts[1]["inlineData"]["mimeType"] == "application/pdf"
    assert base64.b64decode(parts[1]["inlineData"]["data"]) == data
    config = seen["body"]["generationConfig"]
    assert config["responseMimeType"] == "application/json"
    assert "results" in config["responseSchema"]["properties"]


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="upstream exploded"),
        httpx.Response(403, json={"error": {"message": "bad key"}}),
        httpx.Response(200, json=_gemini_body({"summary": "no results key"})),
        httpx.Response(200, json=_gemini_body("not json at all")),
        httpx.Response(200, json={"candidates": []}),
        httpx.Response(200, text="<html>"),
    ],
)
def test_ai_failures_fall_back_to_text(pdf_factory, response):
    result = _run(lambda request: response, pdf_factory([LAB_LINES]))
    assert result.source == "ocr"
    assert len(result.values) == 2


def test_timeout_behaves_like_http_failure(pdf_factory):
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    result = _run(handler, pdf_factory([LAB_LINES]))
    assert result.source == "ocr"
    assert len(result.values) == 2


def test_transport_error_on_unreadable_file_yields_failed_result():
    def handler(request):
        raise httpx.ConnectError("no route", request=request)

    result = _run(handler, b"\x89PNG not really", mime_type="image/png")
    assert result.source == "manual"
    assert result.values == ()
    assert result.parsed is False


def test_empty_ai_result_keeps_its_date_and_summary(pdf_factory):
    def handler(request):
        return httpx.Response(200, json=_gemini_body({"report_date": "2024-04-30", "summary": "Sin datos", "results": []}))

    result = _run(handler, pdf_factory([LAB_LINES]))
    assert result.source == "ocr"
    assert len(result.values) == 2
    assert result.report_date == datetime(2024, 4, 30)
    assert result.summary == "Sin datos"


def test_pdf_without_lab_lines_fails_softly(pdf_factory):
    result = _run(_unreachable, pdf_factory([["Informe sin resultados"]]), api_key="")
    assert result.source == "manual"
    assert result.values == ()


def test_images_are_only_ocred_when_enabled(monkeypatch):
    import medrecord.services.extraction as extraction

    monkeypatch.setattr(extraction, "extract_image_text", lambda data: "Glucosa: 95 mg/dL (70-100)")

    async def go(ocr_images):
        gateway = ExtractionGateway(None, ocr_images=ocr_images)
        return await gateway.extract(b"img", "image/png", "scan.png")

    assert asyncio.run(go(False)).source == "manual"
    enabled = asyncio.run(go(True))
    assert enabled.source == "ocr"
    assert enabled.values[0].value == "95"


def test_parse_response_strips_code_fences():
    fenced = '```json\n{"report_date": "2024-05-01", "summary": "", "results": [{"test": "K", "value": "4.1"}]}\n```'
    payload = parse_response(_gemini_body(fenced))
    assert payload is not None
    assert payload.results[0].test == "K"


def test_parse_response_bad_date_is_dropped():
    payload = parse_response(_gemini_body({"report_date": "01/05/2024", "summary": "", "results": []}))
    assert payload is not None
    assert payload.to_result().report_date is None


def test_parse_response_rejects_blank_test_names():
    assert parse_response(_gemini_body({"summary": "", "results": [{"test": " ", "value": "1"}]})) is None


def test_text_step_errors_never_escape(monkeypatch, pdf_factory):
    import medrecord.services.extraction as extraction

    def broken(data):
        raise RuntimeError("xref table is corrupt")

    monkeypatch.setattr(extraction, "extract_pdf_text", broken)
    result = _run(_unreachable, pdf_factory([LAB_LINES]), api_key="")
    assert result.source == "manual"
    assert result.values == ()


def _run_text(handler, text, api_key="test-key"):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            gateway = ExtractionGateway(GeminiClient(api_key, http_client, timeout_s=1))
            return await gateway.extract_text(text)

    return asyncio.run(go())


def test_pasted_text_is_sent_as_text_part():
    seen = {}
    text = "\n".join(LAB_LINES)

    def handler(request):
        seen["parts"] = json.loads(request.content)["contents"][0]["parts"]
        return httpx.Response(
            200,
            json=_gemini_body({"report_date": "2024-05-01", "summary": "", "results": [{"test": "Glucosa", "value": "110"}]}),
        )

    result = _run_text(handler, text)
    assert result.source == "ai"
    assert result.report_date == datetime(2024, 5, 1)
    assert seen["parts"][1] == {"text": text}


def test_pasted_text_falls_back_to_parser():
    text = "\n".join(LAB_LINES + ["HbA1c: 6.8 % (4-5.6)"])
    result = _run_text(lambda request: httpx.Response(503), text)
    assert result.source == "ocr"
    assert [v.test for v in result.values] == ["Glucosa", "Urea", "HbA1c"]

    assert _run_text(_unreachable, text, api_key="").source == "ocr"
    assert _run_text(_unreachable, "Sin resultados", api_key="").source == "manual"


@pytest.mark.parametrize(
    "response,stage",
    [
        (httpx.Response(500, text="upstream exploded"), "http"),
        (httpx.Response(200, text="<html>"), "decode"),
        (httpx.Response(200, json={"candidates": []}), "schema"),
    ],
)
def test_client_reports_failures_as_extraction_error(response, stage):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: response)) as http_client:
            return await GeminiClient("test-key", http_client, timeout_s=1).extract_lab(b"%PDF", "application/pdf")

    with pytest.raises(ExtractionError) as exc_info:
        asyncio.run(go())
    assert exc_info.value.stage == stage
