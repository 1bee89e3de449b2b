"""Value types shared by extraction, aggregation and rendering."""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

DEFAULT_CATEGORY = "General"


@dataclass(frozen=True)
class RawLabValue:
    test: str
    value: str
    unit: Optional[str] = None
    range: Optional[str] = None
    flag: Optional[str] = None
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ExtractionResult:
    source: str  # ai | ocr | manual
    values: Tuple[RawLabValue, ...] = ()
    report_date: Optional[datetime] = None
    summary: str = ""

    @property
    def parsed(self) -> bool:
        return bool(self.values)

    @classmethod
    def failed(cls, summary: str = "") -> "ExtractionResult":
        return cls(source="manual", values=(), summary=summary)


@dataclass
class FlatLabValue:
    """A stored value tagged with its report context."""

    day: str
    test: str
    value: str
    unit: str
    range: str
    flag: str
    category: str
    source: str = "ocr"
    summary: str = ""
    report_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day,
            "test": self.test,
            "value": self.value,
            "unit": self.unit,
            "range": self.range,
            "flag": self.flag,
            "category": self.category,
            "source": self.source,
        }


@dataclass
class LabGroup:
    category: str
    date: str
    summary: str = ""
    items: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"category": self.category, "date": self.date, "summary": self.summary, "items": list(self.items)}


__all__ = ["DEFAULT_CATEGORY", "RawLabValue", "ExtractionResult", "FlatLabValue", "LabGroup"]
