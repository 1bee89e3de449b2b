"""End-to-end lab intake: check ownership, store bytes, extract, persist, read back."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from medrecord.models.document import UploadedDocument
from medrecord.models.lab_report import LabReport
from medrecord.services.extraction import ExtractionGateway
from medrecord.services.lab_types import ExtractionResult
from medrecord.services.storage import sanitize_filename, store_local_upload
from medrecord.services.store import RecordStore
from medrecord.utils.dates import utcnow
from medrecord.utils.exceptions import ConsultationMismatch, ConsultationNotFound, PatientNotFound, ValidationError

logger = logging.getLogger("medrecord")


@dataclass
class IngestOutcome:
    report: LabReport
    parsed: bool
    document: Optional[UploadedDocument] = None

    @property
    def ocr_status(self) -> str:
        if self.document is not None:
            return self.document.ocr_status
        return "done" if self.parsed else "failed"


async def check_ownership(store: RecordStore, patient_id: str, consultation_id: Optional[str]) -> None:
    if await store.get_patient(patient_id) is None:
        raise PatientNotFound(patient_id)
    if not consultation_id:
        return
    consultation = await store.get_consultation(consultation_id)
    if consultation is None:
        raise ConsultationNotFound(consultation_id)
    if consultation.patient_id != patient_id:
        raise ConsultationMismatch(consultation_id, patient_id)


async def _save_report(
    store: RecordStore,
    patient_id: str,
    extracted: ExtractionResult,
    *,
    report_date: Optional[datetime],
    document_id: Optional[str],
    consultation_id: Optional[str],
) -> LabReport:
    report = await store.create_report(
        patient_id,
        source=extracted.source,
        report_date=report_date or extracted.report_date or utcnow(),
        summary=extracted.summary,
        document_id=document_id,
        consultation_id=consultation_id,
    )
    if extracted.values:
        await store.append_values(report.id, extracted.values)
    return report


async def ingest_lab_upload(
    store: RecordStore,
    gateway: ExtractionGateway,
    patient_id: str,
    data: bytes,
    mime_type: str,
    filename: Optional[str],
    consultation_id: Optional[str] = None,
    report_date: Optional[datetime] = None,
) -> IngestOutcome:
    """Never fails because extraction failed; the document is kept with ocr_status=failed.

    ``report_date`` given by the caller wins over the date read from the document.
    """
    if not data:
        raise ValidationError("Empty file")
    await check_ownership(store, patient_id, consultation_id)

    name = sanitize_filename(filename)
    mime_type = (mime_type or "application/octet-stream").lower()
    path, _stored_name = store_local_upload(data, name, patient_id)
    document = await store.create_document(
        patient_id,
        filename=name,
        mime_type=mime_type,
        size=len(data),
        path=path,
        type="lab",
        consultation_id=consultation_id,
    )

    extracted = await gateway.extract(data, mime_type, name)
    report = await _save_report(
        store,
        patient_id,
        extracted,
        report_date=report_date,
        document_id=document.id,
        consultation_id=consultation_id,
    )

    document = await store.update_document_status(
        document.id,
        "done" if extracted.parsed else "failed",
        extracted.parsed,
    )
    stored = await store.get_report(report.id)

    logger.info({
        "function": "ingest_lab_upload",
        "patient_id": patient_id,
        "document_id": document.id,
        "lab_report_id": report.id,
        "source": extracted.source,
        "values": len(extracted.values),
        "ocr_status": document.ocr_status,
    })
    return IngestOutcome(report=stored or report, parsed=extracted.parsed, document=document)


async def ingest_lab_text(
    store: RecordStore,
    gateway: ExtractionGateway,
    patient_id: str,
    text: str,
    consultation_id: Optional[str] = None,
    report_date: Optional[datetime] = None,
) -> IngestOutcome:
    """Pasted report text: same extraction chain, no document is stored."""
    if not (text or "").strip():
        raise ValidationError("Empty text")
    await check_ownership(store, patient_id, consultation_id)

    extracted = await gateway.extract_text(text)
    report = await _save_report(
        store,
        patient_id,
        extracted,
        report_date=report_date,
        document_id=None,
        consultation_id=consultation_id,
    )
    stored = await store.get_report(report.id)

    logger.info({
        "function": "ingest_lab_text",
        "patient_id": patient_id,
        "lab_report_id": report.id,
        "source": extracted.source,
        "values": len(extracted.values),
    })
    return IngestOutcome(report=stored or report, parsed=extracted.parsed)


__all__ = ["IngestOutcome", "check_ownership", "ingest_lab_text", "ingest_lab_upload"]
