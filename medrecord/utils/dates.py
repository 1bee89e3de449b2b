from datetime import date, datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """Naive UTC now; every DateTime column in the schema is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso_day(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()[:10]
    parsed = parse_iso(str(value))
    return parsed.isoformat()[:10] if parsed else str(value)


def to_iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse YYYY-MM-DD or a full ISO-8601 timestamp; aware values become naive UTC."""
    text = (value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
