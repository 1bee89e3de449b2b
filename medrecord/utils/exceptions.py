import logging
from typing import Any
from fastapi import Request, status
from starlette.exceptions import HTTPException
from fastapi.responses import JSONResponse

from medrecord.middleware.tracing import TRACE_ID_CTX_VAR

logger = logging.getLogger("medrecord")


class MedRecordError(Exception):
    """Base class for lab pipeline and export failures."""


class ExtractionError(MedRecordError):
    """Remote extraction failed. Recovered inside the gateway."""

    def __init__(self, message: str, stage: str = "extract"):
        super().__init__(message)
        self.stage = stage


class ValidationError(MedRecordError):
    status_code = status.HTTP_400_BAD_REQUEST


class PatientNotFound(ValidationError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, patient_id: str):
        super().__init__(f"Patient not found: {patient_id}")
        self.patient_id = patient_id


class ConsultationNotFound(ValidationError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, consultation_id: str):
        super().__init__(f"Consultation not found: {consultation_id}")
        self.consultation_id = consultation_id


class ConsultationMismatch(ValidationError):
    """The consultation exists but belongs to another patient."""

    def __init__(self, consultation_id: str, patient_id: str):
        super().__init__(f"Consultation {consultation_id} does not belong to patient {patient_id}")
        self.consultation_id = consultation_id
        self.patient_id = patient_id


class InvalidRange(ValidationError):
    pass


class RenderError(MedRecordError):
    """Rendering failed before any page was flushed."""


class WatermarkError(MedRecordError):
    """Stamping failed. Callers fall back to the unstamped bytes."""


def status_to_code(status_code: int) -> str:
    mapping = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        413: "PAYLOAD_TOO_LARGE",
        415: "UNSUPPORTED_MEDIA_TYPE",
        422: "UNPROCESSABLE_ENTITY",
        429: "TOO_MANY_REQUESTS",
        500: "INTERNAL_SERVER_ERROR",
    }
    return mapping.get(status_code, f"HTTP_{status_code}")


def _envelope(status_code: int, message: str, details: Any = None) -> JSONResponse:
    body = {"code": status_to_code(status_code), "message": message, "trace_id": TRACE_ID_CTX_VAR.get()}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


async def handle_http_exception(request: Request, exc: HTTPException):
    detail: Any = exc.detail
    message = detail if isinstance(detail, str) else "HTTP error"
    return _envelope(exc.status_code, message, detail)


async def handle_validation_error(request: Request, exc: ValidationError):
    return _envelope(exc.status_code, str(exc))


async def handle_render_error(request: Request, exc: RenderError):
    logger.error({"function": "handle_render_error", "path": str(request.url.path), "error": str(exc)})
    return _envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, "Medical record could not be rendered", str(exc))


async def handle_unhandled_exception(request: Request, exc: Exception):
    logger.error({"function": "handle_unhandled_exception", "path": str(request.url.path)}, exc_info=exc)
    return _envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred", str(exc))
