"""Chronological patient timeline across consultations, lab reports and documents."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from medrecord.services.dedup import row_is_abnormal
from medrecord.services.pdf_format import inline_value
from medrecord.services.store import RecordStore
from medrecord.utils.dates import to_iso
from medrecord.utils.exceptions import PatientNotFound


@dataclass
class TimelineItem:
    kind: str  # consultation | lab | document
    id: str
    date: datetime
    title: str
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "id": self.id, "date": to_iso(self.date), "title": self.title, **self.extra}


async def patient_timeline(store: RecordStore, patient_id: str) -> List[TimelineItem]:
    if await store.get_patient(patient_id) is None:
        raise PatientNotFound(patient_id)

    consultations, reports, documents = await asyncio.gather(
        store.find_consultations_by_patient(patient_id),
        store.find_reports_by_patient(patient_id),
        store.find_documents_by_patient(patient_id),
    )

    items: List[TimelineItem] = [
        TimelineItem(
            kind="consultation",
            id=c.id,
            date=c.date,
            title=c.reason or "Consultation",
            extra={"status": c.status, "doctor": c.doctor, "diagnosis": inline_value(c.diagnosis) or None},
        )
        for c in consultations
    ]
    items += [
        TimelineItem(
            kind="lab",
            id=r.id,
            date=r.report_date or r.created_at,
            title="Lab result",
            extra={
                "summary": r.summary,
                "source": r.source,
                "abnormalCount": sum(1 for v in r.values if row_is_abnormal(v)),
            },
        )
        for r in reports
    ]
    items += [
        TimelineItem(
            kind="document",
            id=d.id,
            date=d.created_at,
            title=d.filename,
            extra={"type": d.type, "mimeType": d.mime_type, "size": d.size},
        )
        for d in documents
    ]
    items.sort(key=lambda item: item.date)
    return items


__all__ = ["TimelineItem", "patient_timeline"]
