"""Typed record-store operations used by the lab pipeline.

The core only talks to ``RecordStore``; ``SqlRecordStore`` is the SQLAlchemy
adapter bound to one request-scoped Session. Operations are declared async so
a non-blocking driver can be swapped in; with the synchronous Session they run
one after another.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, selectinload

from medrecord.models.document import UploadedDocument
from medrecord.models.lab_report import LabReport, LabValue
from medrecord.models.patient import Consultation, Patient
from medrecord.services.lab_types import RawLabValue


class RecordStore(Protocol):
    async def get_patient(self, patient_id: str) -> Optional[Patient]: ...

    async def create_document(
        self,
        patient_id: str,
        *,
        filename: str,
        mime_type: str,
        size: int,
        path: str,
        type: str = "lab",
        consultation_id: Optional[str] = None,
    ) -> UploadedDocument: ...

    async def update_document_status(self, document_id: str, ocr_status: str, parsed: bool) -> UploadedDocument: ...

    async def get_document(self, document_id: str) -> Optional[UploadedDocument]: ...

    async def create_report(
        self,
        patient_id: str,
        *,
        source: str,
        report_date: Optional[datetime],
        summary: str = "",
        document_id: Optional[str] = None,
        consultation_id: Optional[str] = None,
    ) -> LabReport: ...

    async def append_values(self, report_id: str, values: Sequence[RawLabValue]) -> int: ...

    async def get_report(self, report_id: str) -> Optional[LabReport]: ...

    async def find_reports_by_patient(self, patient_id: str) -> List[LabReport]: ...

    async def find_reports_by_patient_in_range(self, patient_id: str, start: datetime, end: datetime) -> List[LabReport]: ...

    async def find_reports_by_consultation(self, consultation_id: str) -> List[LabReport]: ...

    async def get_consultation(self, consultation_id: str) -> Optional[Consultation]: ...

    async def find_consultations_by_patient(self, patient_id: str) -> List[Consultation]: ...

    async def find_consultations_by_patient_in_range(
        self, patient_id: str, start: datetime, end: datetime
    ) -> List[Consultation]: ...

    async def find_documents_by_patient(self, patient_id: str) -> List[UploadedDocument]: ...

    async def find_documents_by_patient_in_range(
        self, patient_id: str, start: datetime, end: datetime
    ) -> List[UploadedDocument]: ...


class SqlRecordStore:
    def __init__(self, db: Session):
        self.db = db

    # --- patients ---
    async def get_patient(self, patient_id: str) -> Optional[Patient]:
        return self.db.get(Patient, patient_id)

    # --- documents ---
    async def create_document(
        self,
        patient_id: str,
        *,
        filename: str,
        mime_type: str,
        size: int,
        path: str,
        type: str = "lab",
        consultation_id: Optional[str] = None,
    ) -> UploadedDocument:
        doc = UploadedDocument(
            patient_id=patient_id,
            consultation_id=consultation_id,
            type=type,
            filename=filename,
            mime_type=mime_type,
            size=size,
            path=path,
            ocr_status="pending",
            parsed=False,
        )
        self.db.add(doc)
        self.db.commit()
        self.db.refresh(doc)
        return doc

    async def update_document_status(self, document_id: str, ocr_status: str, parsed: bool) -> UploadedDocument:
        doc = self.db.get(UploadedDocument, document_id)
        if doc is None:
            raise LookupError(f"document {document_id} not found")
        doc.ocr_status = ocr_status
        doc.parsed = parsed
        self.db.commit()
        self.db.refresh(doc)
        return doc

    async def get_document(self, document_id: str) -> Optional[UploadedDocument]:
        return self.db.get(UploadedDocument, document_id)

    async def find_documents_by_patient(self, patient_id: str) -> List[UploadedDocument]:
        return (
            self.db.query(UploadedDocument)
            .filter(UploadedDocument.patient_id == patient_id)
            .order_by(UploadedDocument.created_at.asc())
            .all()
        )

    async def find_documents_by_patient_in_range(
        self, patient_id: str, start: datetime, end: datetime
    ) -> List[UploadedDocument]:
        return (
            self.db.query(UploadedDocument)
            .filter(
                UploadedDocument.patient_id == patient_id,
                UploadedDocument.created_at >= start,
                UploadedDocument.created_at <= end,
            )
            .order_by(UploadedDocument.created_at.asc())
            .all()
        )

    # --- lab reports ---
    async def create_report(
        self,
        patient_id: str,
        *,
        source: str,
        report_date: Optional[datetime],
        summary: str = "",
        document_id: Optional[str] = None,
        consultation_id: Optional[str] = None,
    ) -> LabReport:
        report = LabReport(
            patient_id=patient_id,
            source=source,
            report_date=report_date,
            summary=summary or None,
            document_id=document_id,
            consultation_id=consultation_id,
        )
        self.db.add(report)
        self.db.commit()
        self.db.refresh(report)
        return report

    async def append_values(self, report_id: str, values: Sequence[RawLabValue]) -> int:
        start = self.db.query(LabValue).filter(LabValue.report_id == report_id).count()
        for offset, v in enumerate(values):
            self.db.add(
                LabValue(
                    report_id=report_id,
                    position=start + offset,
                    test=v.test,
                    value=v.value,
                    unit=v.unit,
                    range=v.range,
                    flag=v.flag,
                    category=v.category,
                )
            )
        self.db.commit()
        return len(values)

    def _reports(self):
        return self.db.query(LabReport).options(selectinload(LabReport.values))

    async def get_report(self, report_id: str) -> Optional[LabReport]:
        report = self._reports().filter(LabReport.id == report_id).first()
        if report is not None:
            # values appended after the report was loaded into this session
            self.db.refresh(report, attribute_names=["values"])
        return report

    async def find_reports_by_patient(self, patient_id: str) -> List[LabReport]:
        return (
            self._reports()
            .filter(LabReport.patient_id == patient_id)
            .order_by(LabReport.created_at.desc())
            .all()
        )

    async def find_reports_by_patient_in_range(self, patient_id: str, start: datetime, end: datetime) -> List[LabReport]:
        in_range = or_(
            and_(LabReport.created_at >= start, LabReport.created_at <= end),
            and_(LabReport.report_date.isnot(None), LabReport.report_date >= start, LabReport.report_date <= end),
        )
        return (
            self._reports()
            .filter(LabReport.patient_id == patient_id, in_range)
            .order_by(LabReport.created_at.desc())
            .all()
        )

    async def find_reports_by_consultation(self, consultation_id: str) -> List[LabReport]:
        return (
            self._reports()
            .filter(LabReport.consultation_id == consultation_id)
            .order_by(LabReport.created_at.desc())
            .all()
        )

    # --- consultations ---
    async def get_consultation(self, consultation_id: str) -> Optional[Consultation]:
        return self.db.get(Consultation, consultation_id)

    async def find_consultations_by_patient(self, patient_id: str) -> List[Consultation]:
        return (
            self.db.query(Consultation)
            .filter(Consultation.patient_id == patient_id)
            .order_by(Consultation.date.asc())
            .all()
        )

    async def find_consultations_by_patient_in_range(
        self, patient_id: str, start: datetime, end: datetime
    ) -> List[Consultation]:
        return (
            self.db.query(Consultation)
            .filter(
                Consultation.patient_id == patient_id,
                Consultation.date >= start,
                Consultation.date <= end,
            )
            .order_by(Consultation.date.asc())
            .all()
        )


__all__ = ["RecordStore", "SqlRecordStore"]
