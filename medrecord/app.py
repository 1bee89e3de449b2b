# --- imports (top of medrecord/app.py) ---
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

# Resolve paths early so env vars are available before importing the app modules
BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"

load_dotenv(ENV_PATH)

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from medrecord.middleware.rate_limit import limiter, rate_limit_handler
from medrecord.middleware.tracing import TraceIdFilter, TracingMiddleware
from medrecord.models import init_db
from medrecord.routes import labs_routes, records_routes, reports_routes
from medrecord.utils.exceptions import (
    RenderError,
    ValidationError,
    handle_http_exception,
    handle_render_error,
    handle_unhandled_exception,
    handle_validation_error,
)


# --- logging setup ---
class JsonFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "function": record.funcName,
            "trace_id": getattr(record, "trace_id", ""),
            "message": record.msg if isinstance(record.msg, dict) else record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> logging.Logger:
    logger = logging.getLogger("medrecord")
    logger.setLevel(logging.INFO)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        handler.addFilter(TraceIdFilter())
        logger.addHandler(handler)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    return logger


logger = configure_logging()

# --- app & router setup ---
app = FastAPI(title="MedRecord Backend", version="0.1.0")

# ---- Rate limiting (slowapi) ----
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(TracingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "x-trace-id"],
)

# ---- Error envelope ----
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
app.add_exception_handler(StarletteHTTPException, handle_http_exception)
app.add_exception_handler(ValidationError, handle_validation_error)
app.add_exception_handler(RenderError, handle_render_error)
app.add_exception_handler(Exception, handle_unhandled_exception)


@app.on_event("startup")
def _init_db():
    init_db()


app.include_router(labs_routes.router)
app.include_router(reports_routes.router)
app.include_router(records_routes.router)


@app.get("/api/health")
def health():
    return {"status": "ok"}
