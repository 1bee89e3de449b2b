"""Canonical text forms used to compare lab values for equality."""
from __future__ import annotations

import re
import unicodedata
from typing import Any

_WS = re.compile(r"\s+")


def normalize(value: Any) -> str:
    """NFKC, collapse whitespace, trim, lower-case. Comparison only; never stored."""
    if value is None:
        return ""
    text = unicodedata.normalize("NFKC", value if isinstance(value, str) else str(value))
    return _WS.sub(" ", text).strip().lower()


def lab_key(test: Any, unit: Any, range_: Any, value: Any) -> str:
    return "|".join((normalize(test), normalize(unit), normalize(range_), normalize(value)))


def value_key(v: Any) -> str:
    """Key for anything shaped like a RawLabValue (attributes test/unit/range/value)."""
    return lab_key(
        getattr(v, "test", None),
        getattr(v, "unit", None),
        getattr(v, "range", None),
        getattr(v, "value", None),
    )


__all__ = ["normalize", "lab_key", "value_key"]
