# medrecord/schemas/labs.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


# ---------- Lab values / reports ----------
class LabValueOut(_CamelModel):
    id: str
    position: int
    test: str
    value: str
    unit: Optional[str] = None
    range: Optional[str] = None
    flag: Optional[str] = None
    category: Optional[str] = None


class LabReportOut(_CamelModel):
    id: str
    patient_id: str
    document_id: Optional[str] = None
    consultation_id: Optional[str] = None
    report_date: Optional[datetime] = None
    source: str
    summary: Optional[str] = None
    created_at: datetime
    values: List[LabValueOut] = []


# ---------- Documents ----------
class DocumentOut(_CamelModel):
    id: str
    patient_id: str
    consultation_id: Optional[str] = None
    type: str
    filename: str
    mime_type: str
    size: int
    ocr_status: str
    parsed: bool
    created_at: datetime


class UploadOut(_CamelModel):
    ocr_status: str
    parsed: bool
    document: Optional[DocumentOut] = None
    lab_report: LabReportOut


# ---------- Timeline ----------
class TimelineItemOut(BaseModel):
    kind: str
    id: str
    date: Optional[str] = None
    title: str

    class Config:
        extra = "allow"


class TimelineOut(BaseModel):
    patient_id: str
    items: List[TimelineItemOut]


__all__ = ["LabValueOut", "LabReportOut", "DocumentOut", "UploadOut", "TimelineItemOut", "TimelineOut"]
