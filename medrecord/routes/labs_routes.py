# medrecord/routes/labs_routes.py
import logging
import os
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, Response, UploadFile, status

from medrecord.auth.deps import get_current_user
from medrecord.middleware.rate_limit import UPLOAD_RATE_LIMIT, limiter
from medrecord.models.user import User
from medrecord.routes.deps import get_gateway, get_store
from medrecord.schemas.labs import DocumentOut, LabReportOut, UploadOut
from medrecord.services.extraction import ExtractionGateway
from medrecord.services.ocr import is_pdf
from medrecord.services.report_pipeline import ingest_lab_text, ingest_lab_upload
from medrecord.services.storage import read_upload
from medrecord.services.store import SqlRecordStore
from medrecord.services.watermark import stamp
from medrecord.utils.dates import parse_iso
from medrecord.utils.env import env_float, env_int
from medrecord.utils.exceptions import ConsultationNotFound, PatientNotFound, ValidationError

logger = logging.getLogger("medrecord")

router = APIRouter(prefix="/api/labs", tags=["labs"])

ALLOWED_MIME_PREFIXES = ("application/pdf", "image/")


def watermark_identity(user: User) -> str:
    return getattr(user, "email", None) or getattr(user, "name", None) or str(user.id)


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@router.post("/upload/{patient_id}", response_model=UploadOut, status_code=status.HTTP_201_CREATED)
@limiter.limit(UPLOAD_RATE_LIMIT)
async def upload_lab_report(
    request: Request,
    patient_id: str,
    file: Optional[UploadFile] = File(None),
    texto: Optional[str] = Form(None),
    consultation_id: Optional[str] = Form(None),
    report_date: Optional[str] = Form(None),
    store: SqlRecordStore = Depends(get_store),
    gateway: ExtractionGateway = Depends(get_gateway),
    current_user: User = Depends(get_current_user),
):
    """Accepts a lab file or pasted report text. With both, the file is processed."""
    override = parse_iso(report_date)
    if report_date and override is None:
        raise ValidationError(f"Invalid report_date: {report_date}")

    if file is None:
        if not (texto or "").strip():
            raise ValidationError("Send a file or texto")
        outcome = await ingest_lab_text(
            store,
            gateway,
            patient_id,
            texto,
            consultation_id=consultation_id or None,
            report_date=override,
        )
    else:
        data = await file.read()
        max_mb = env_int("MAX_FILE_MB", 10)
        if len(data) > max_mb * 1024 * 1024:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File size exceeds the {max_mb}MB limit",
            )
        mime_type = (file.content_type or "").lower()
        if not mime_type.startswith(ALLOWED_MIME_PREFIXES):
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                detail=f"Unsupported file type: {mime_type or 'unknown'}",
            )
        outcome = await ingest_lab_upload(
            store,
            gateway,
            patient_id,
            data,
            mime_type,
            file.filename,
            consultation_id=consultation_id or None,
            report_date=override,
        )

    return UploadOut(
        ocr_status=outcome.ocr_status,
        parsed=outcome.parsed,
        document=DocumentOut.model_validate(outcome.document) if outcome.document is not None else None,
        lab_report=LabReportOut.model_validate(outcome.report),
    )


@router.get("/by-patient", response_model=List[LabReportOut])
async def list_lab_reports(
    patient_id: str = Query(..., min_length=1),
    store: SqlRecordStore = Depends(get_store),
    current_user: User = Depends(get_current_user),
):
    if await store.get_patient(patient_id) is None:
        raise PatientNotFound(patient_id)
    return await store.find_reports_by_patient(patient_id)


@router.get("/by-consultation", response_model=List[LabReportOut])
async def list_consultation_lab_reports(
    consultation_id: str = Query(..., min_length=1),
    store: SqlRecordStore = Depends(get_store),
    current_user: User = Depends(get_current_user),
):
    if await store.get_consultation(consultation_id) is None:
        raise ConsultationNotFound(consultation_id)
    return await store.find_reports_by_consultation(consultation_id)


@router.get("/{report_id}/pdf")
async def download_lab_document(
    request: Request,
    report_id: str,
    watermark: Optional[str] = Query(None, description="diagonal|grid|border|corner"),
    intensity: Optional[float] = Query(None),
    store: SqlRecordStore = Depends(get_store),
    current_user: User = Depends(get_current_user),
):
    report = await store.get_report(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Lab report not found")
    document = await store.get_document(report.document_id) if report.document_id else None
    if document is None or not os.path.exists(document.path):
        raise HTTPException(status_code=404, detail="Stored document not found")

    content = read_upload(document.path)
    if watermark and is_pdf(document.mime_type, document.filename):
        content = stamp(
            content,
            watermark,
            intensity if intensity is not None else env_float("WATERMARK_DEFAULT_INTENSITY", 0.15),
            watermark_identity(current_user),
            source_ip=client_ip(request),
        )

    logger.info({
        "function": "download_lab_document",
        "lab_report_id": report_id,
        "document_id": document.id,
        "watermark": watermark or None,
    })
    return Response(
        content=content,
        media_type=document.mime_type,
        headers={
            "Content-Disposition": f'attachment; filename="{document.filename}"',
            "Cache-Control": "no-store",
        },
    )
