import logging
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

TRACE_ID_CTX_VAR: ContextVar[str] = ContextVar("trace_id", default="")
TRACE_HEADER = "x-trace-id"


class TracingMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with a trace id.
    An incoming x-trace-id is reused so upstream proxies can correlate logs;
    otherwise a fresh one is generated. The id is echoed on the response.
    """
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = (request.headers.get(TRACE_HEADER) or "").strip()[:64] or uuid.uuid4().hex
        TRACE_ID_CTX_VAR.set(trace_id)
        request.state.trace_id = trace_id

        response = await call_next(request)

        response.headers[TRACE_HEADER] = trace_id
        return response


class TraceIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = TRACE_ID_CTX_VAR.get()
        return True
