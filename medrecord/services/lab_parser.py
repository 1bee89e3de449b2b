"""Line-oriented lab report parsing for text pulled out of PDFs or OCR."""
from __future__ import annotations

import re
from typing import List, Optional

from medrecord.services.lab_types import RawLabValue

NUM = r"\d+(?:[.,]\d+)?"
LETTER = r"[^\W\d_]"  # any Unicode letter
# a label word holds at least one letter: "B12", "HbA1c", "T4", never a bare "2024"
WORD = r"\d*" + LETTER + r"[^\W_]*"

# "Glucosa: 110 mg/dL (70-100)", "Ácido úrico - 5,4 mg/dL 3,5-7,2", "HDL: 38 mg/dL (>40)",
# "Vitamina B12: 350 pg/mL (200-900)", "25-OH Vitamina D: 30 ng/mL (30-100)"
LINE_PATTERN = re.compile(
    r"^\s*"
    r"(?P<test>(?:\d+-)?" + WORD + r"(?:[\s.\-/()]+" + WORD + r")*\)?)"
    r"\s*[:\-]\s*"
    r"(?P<value>[-+]?" + NUM + r")(?!\d|[.,:/\-]\d)"  # whole number only, and not a date or a time
    r"(?:\s*(?P<unit>(?:" + LETTER + r"|[%µ/])[\w%µ/^.·*]*|10\^\d+/" + LETTER + r"+))?"
    r"(?:\s*\(?\s*(?P<range>" + NUM + r"\s*[-–—]\s*" + NUM + r"|(?:<=|>=|[<>≤≥])\s*" + NUM + r")\s*\)?)?",
)


def _clean_test_name(raw: str) -> str:
    name = re.sub(r"\s+", " ", raw).strip(" .-/")
    # drop an unbalanced "(" such as "Glucosa (ayunas: 90"
    if name.count("(") > name.count(")"):
        name = name.rsplit("(", 1)[0].strip()
    return name


def _clean_range(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    return re.sub(r"\s*([-–—])\s*", r"\1", raw.strip())


def parse_line(line: str) -> Optional[RawLabValue]:
    match = LINE_PATTERN.match(line)
    if not match:
        return None
    test = _clean_test_name(match.group("test"))
    if not test:
        return None
    unit = (match.group("unit") or "").strip() or None
    return RawLabValue(
        test=test,
        value=match.group("value"),
        unit=unit,
        range=_clean_range(match.group("range")),
    )


def parse_lab_text(text: str) -> List[RawLabValue]:
    """One RawLabValue per matching line, in document order. Values keep their decimal separator."""
    values: List[RawLabValue] = []
    for line in (text or "").splitlines():
        line = line.strip()
        if not line:
            continue
        parsed = parse_line(line)
        if parsed is not None:
            values.append(parsed)
    return values


__all__ = ["parse_lab_text", "parse_line", "LINE_PATTERN"]
