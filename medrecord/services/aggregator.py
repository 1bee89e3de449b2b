"""Builds the per-patient medical record view used by the JSON and PDF exports."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

from medrecord.models.document import UploadedDocument
from medrecord.models.lab_report import LabReport
from medrecord.models.patient import Consultation, Patient
from medrecord.services.dedup import category_or_default, dedup_flat, dedup_report_values, row_is_abnormal
from medrecord.services.lab_types import FlatLabValue, LabGroup
from medrecord.services.normalizer import normalize, value_key
from medrecord.services.store import RecordStore
from medrecord.utils.dates import iso_day, parse_iso, to_iso, utcnow
from medrecord.utils.exceptions import InvalidRange, PatientNotFound

logger = logging.getLogger("medrecord")

DEFAULT_WINDOW_DAYS = 30

DateLike = Union[None, str, date, datetime]


def _as_day(value: DateLike, label: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_iso(value)
    if parsed is None:
        raise InvalidRange(f"Invalid '{label}' date: {value}")
    return parsed.date()


def resolve_range(date_from: DateLike = None, date_to: DateLike = None, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Whole-day window; defaults to the last 30 days ending today."""
    now = now or utcnow()
    to_day = _as_day(date_to, "to") or now.date()
    from_day = _as_day(date_from, "from") or (now - timedelta(days=DEFAULT_WINDOW_DAYS)).date()
    start = datetime.combine(from_day, time.min)
    end = datetime.combine(to_day, time.max)
    if start > end:
        raise InvalidRange(f"'from' ({from_day.isoformat()}) is after 'to' ({to_day.isoformat()})")
    return start, end


@dataclass
class MedicalRecordAggregate:
    patient: Dict[str, Any]
    range: Dict[str, datetime]
    consultations: List[Dict[str, Any]] = field(default_factory=list)
    lab_results: List[Dict[str, Any]] = field(default_factory=list)
    lab_values_flat: List[FlatLabValue] = field(default_factory=list)
    lab_groups: List[LabGroup] = field(default_factory=list)
    documents: List[Dict[str, Any]] = field(default_factory=list)
    documents_by_type: List[Dict[str, Any]] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _isoformat(
            {
                "range": self.range,
                "patient": self.patient,
                "counts": self.counts,
                "consultations": self.consultations,
                "labResults": self.lab_results,
                "labValues": [row.to_dict() for row in self.lab_values_flat],
                "labGroups": [group.to_dict() for group in self.lab_groups],
                "documents": self.documents,
                "documentsByType": self.documents_by_type,
            }
        )


def _isoformat(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _isoformat(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_isoformat(v) for v in value]
    if isinstance(value, (datetime, date)):
        return to_iso(value)
    return value


def patient_dict(p: Patient) -> Dict[str, Any]:
    return {
        "id": p.id,
        "firstName": p.first_name,
        "lastName": p.last_name,
        "gender": p.gender,
        "dateOfBirth": p.date_of_birth,
        "documentType": p.document_type,
        "documentNumber": p.document_number,
        "phone": p.phone,
        "email": p.email,
        "address": p.address,
        "bloodType": p.blood_type,
        "emergencyContact": p.emergency_contact,
        "createdAt": p.created_at,
    }


def consultation_dict(c: Consultation) -> Dict[str, Any]:
    return {
        "id": c.id,
        "date": c.date,
        "doctor": c.doctor or "",
        "reason": c.reason or "",
        "status": c.status or "",
        "summary": c.summary or "",
        "chiefComplaint": c.chief_complaint,
        "physicalExam": c.physical_exam,
        "diagnosis": c.diagnosis,
        "treatment": c.treatment,
        "vitalSigns": c.vital_signs,
    }


def document_dict(d: UploadedDocument) -> Dict[str, Any]:
    return {
        "id": d.id,
        "type": d.type or "unknown",
        "filename": d.filename or "",
        "mimeType": d.mime_type or "",
        "size": d.size or 0,
        "ocrStatus": d.ocr_status,
        "createdAt": d.created_at,
    }


def report_day(report: LabReport) -> str:
    return iso_day(report.report_date or report.created_at)


def lab_result_dict(report: LabReport) -> Dict[str, Any]:
    values = dedup_report_values(report.values)
    return {
        "id": report.id,
        "date": report.report_date or report.created_at,
        "source": report.source or "ocr",
        "summary": report.summary or "",
        "values": [
            {
                "id": v.id,
                "test": v.test,
                "value": v.value,
                "unit": v.unit or "",
                "range": v.range or "",
                "flag": v.flag or "",
                "category": category_or_default(v.category),
            }
            for v in values
        ],
    }


def flatten(reports: List[LabReport], lab_results: List[Dict[str, Any]]) -> List[FlatLabValue]:
    rows: List[FlatLabValue] = []
    for report, detailed in zip(reports, lab_results):
        day = report_day(report)
        for v in detailed["values"]:
            rows.append(
                FlatLabValue(
                    day=day,
                    test=v["test"],
                    value=v["value"],
                    unit=v["unit"],
                    range=v["range"],
                    flag=v["flag"],
                    category=v["category"],
                    source=detailed["source"],
                    summary=detailed["summary"],
                    report_id=report.id,
                )
            )
    return rows


def build_groups(rows: List[FlatLabValue]) -> List[LabGroup]:
    groups: Dict[str, LabGroup] = {}
    seen: Dict[str, set] = {}
    for row in rows:
        category = category_or_default(row.category)
        group_key = f"{normalize(category)}|{row.day}"
        group = groups.get(group_key)
        if group is None:
            group = groups[group_key] = LabGroup(category=category, date=row.day)
            seen[group_key] = set()
        item_key = value_key(row)
        if item_key not in seen[group_key]:
            seen[group_key].add(item_key)
            group.items.append(
                {"test": row.test, "value": row.value, "unit": row.unit, "range": row.range, "flag": row.flag}
            )
        if not group.summary and row.summary.strip():
            group.summary = row.summary
    return sorted(groups.values(), key=lambda g: (g.date, g.category.lower()))


def documents_by_type(documents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    totals: Dict[str, Dict[str, Any]] = {}
    for d in documents:
        entry = totals.setdefault(d["type"], {"type": d["type"], "count": 0, "totalKB": 0})
        entry["count"] += 1
        entry["totalKB"] += round((d["size"] or 0) / 1024)
    return list(totals.values())


async def aggregate(
    store: RecordStore,
    patient_id: str,
    date_from: DateLike = None,
    date_to: DateLike = None,
    now: Optional[datetime] = None,
) -> MedicalRecordAggregate:
    start, end = resolve_range(date_from, date_to, now=now)
    patient = await store.get_patient(patient_id)
    if patient is None:
        raise PatientNotFound(patient_id)

    consultations, reports, documents = await asyncio.gather(
        store.find_consultations_by_patient_in_range(patient_id, start, end),
        store.find_reports_by_patient_in_range(patient_id, start, end),
        store.find_documents_by_patient_in_range(patient_id, start, end),
    )

    # oldest first so first-seen-wins keeps the earliest reading
    reports = sorted(reports, key=lambda r: (r.report_date or r.created_at, r.created_at))
    lab_results = [lab_result_dict(r) for r in reports]
    flat = dedup_flat(flatten(reports, lab_results))
    docs = [document_dict(d) for d in documents]

    result = MedicalRecordAggregate(
        patient=patient_dict(patient),
        range={"from": start, "to": end},
        consultations=[consultation_dict(c) for c in sorted(consultations, key=lambda c: c.date)],
        lab_results=lab_results,
        lab_values_flat=flat,
        lab_groups=build_groups(flat),
        documents=docs,
        documents_by_type=documents_by_type(docs),
        counts={
            "consultations": len(consultations),
            "labResults": len(reports),
            "labValues": len(flat),
            "abnormalLabValues": sum(1 for row in flat if row_is_abnormal(row)),
            "documents": len(documents),
        },
    )
    logger.info({"function": "aggregate", "patient_id": patient_id, "counts": result.counts})
    return result


__all__ = ["aggregate", "resolve_range", "MedicalRecordAggregate", "DEFAULT_WINDOW_DAYS"]
