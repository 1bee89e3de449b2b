"""Duplicate removal for lab values and the abnormality rule used for display."""
from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional, TypeVar

from medrecord.services.lab_types import DEFAULT_CATEGORY, FlatLabValue
from medrecord.services.normalizer import lab_key, normalize, value_key

T = TypeVar("T")

NUM = r"\d+(?:[.,]\d+)?"
LEADING_NUMBER = re.compile(r"^\s*(?:<=|>=|[<>≤≥])?\s*([-+]?" + NUM + r")")
BETWEEN_RANGE = re.compile(r"^\s*(" + NUM + r")\s*[-–—]\s*(" + NUM + r")")
THRESHOLD_RANGE = re.compile(r"^\s*(<=|>=|≤|≥|<|>)\s*(" + NUM + r")")
_OPS = {"<=": "lte", "≤": "lte", "<": "lt", ">=": "gte", "≥": "gte", ">": "gt"}


def dedup_report_values(values: Iterable[T]) -> List[T]:
    """Stable, first-seen-wins dedup over (test, unit, range, value) inside one report."""
    seen = set()
    out: List[T] = []
    for v in values or []:
        key = value_key(v)
        if key in seen:
            continue
        seen.add(key)
        out.append(v)
    return out


def category_or_default(category: Optional[str]) -> str:
    cleaned = (category or "").strip()
    return cleaned or DEFAULT_CATEGORY


def flat_key(row: FlatLabValue) -> str:
    return "|".join(
        (
            row.day,
            normalize(category_or_default(row.category)),
            lab_key(row.test, row.unit, row.range, row.value),
        )
    )


def dedup_flat(rows: Iterable[FlatLabValue]) -> List[FlatLabValue]:
    """Cross-report dedup keyed additionally by report day and category."""
    seen = set()
    out: List[FlatLabValue] = []
    for row in rows or []:
        key = flat_key(row)
        if key in seen:
            continue
        seen.add(key)
        out.append(row)
    return out


def _to_float(token: str) -> float:
    return float(token.replace(",", "."))


def numeric_value(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = LEADING_NUMBER.match(str(value))
    return _to_float(match.group(1)) if match else None


def parse_reference(range_text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse "70-100", "<200", ">=40" into a reference dict; anything else is None."""
    text = (range_text or "").strip()
    if not text:
        return None
    between = BETWEEN_RANGE.match(text)
    if between:
        return {"kind": "between", "lo": _to_float(between.group(1)), "hi": _to_float(between.group(2))}
    threshold = THRESHOLD_RANGE.match(text)
    if threshold:
        return {"kind": _OPS[threshold.group(1)], "v": _to_float(threshold.group(2))}
    return None


def compare_to_range(value: float, reference: Dict[str, Any]) -> Optional[str]:
    kind = reference.get("kind") if reference else None
    if not kind:
        return None
    if kind == "lte":
        return "high" if value > reference["v"] else "normal"
    if kind == "lt":
        return "high" if value >= reference["v"] else "normal"
    if kind == "gte":
        return "low" if value < reference["v"] else "normal"
    if kind == "gt":
        return "low" if value <= reference["v"] else "normal"
    if kind == "between":
        lo, hi = reference["lo"], reference["hi"]
        if value < lo:
            return "low"
        if value > hi:
            return "high"
        return "normal"
    return None


def is_abnormal(flag: Optional[str], value: Any = None, range_text: Optional[str] = None) -> bool:
    """A non-blank flag decides; without one, fall back to comparing value against range."""
    normalized_flag = normalize(flag)
    if normalized_flag:
        return normalized_flag != "normal"
    number = numeric_value(value)
    reference = parse_reference(range_text)
    if number is None or reference is None:
        return False
    return compare_to_range(number, reference) in ("high", "low")


def row_is_abnormal(row: Any) -> bool:
    return is_abnormal(getattr(row, "flag", None), getattr(row, "value", None), getattr(row, "range", None))


__all__ = [
    "dedup_report_values",
    "dedup_flat",
    "flat_key",
    "category_or_default",
    "numeric_value",
    "parse_reference",
    "compare_to_range",
    "is_abnormal",
    "row_is_abnormal",
]
