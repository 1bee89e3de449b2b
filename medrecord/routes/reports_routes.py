# medrecord/routes/reports_routes.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from medrecord.auth.deps import require_clinician
from medrecord.middleware.rate_limit import EXPORT_RATE_LIMIT, limiter
from medrecord.models.user import User
from medrecord.routes.deps import get_store
from medrecord.routes.labs_routes import client_ip, watermark_identity
from medrecord.services.aggregator import aggregate
from medrecord.services.renderer import MODES, render
from medrecord.services.store import SqlRecordStore
from medrecord.services.watermark import stamp
from medrecord.utils.dates import iso_day
from medrecord.utils.env import env_float

logger = logging.getLogger("medrecord")

router = APIRouter(prefix="/api/reports", tags=["reports"])


def _check_mode(mode: str) -> str:
    if mode not in MODES:
        raise HTTPException(status_code=400, detail=f"Unsupported mode: {mode}")
    return mode


@router.get("/medical-record.json")
@limiter.limit(EXPORT_RATE_LIMIT)
async def medical_record_json(
    request: Request,
    patient_id: str = Query(..., min_length=1),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    store: SqlRecordStore = Depends(get_store),
    current_user: User = Depends(require_clinician),
):
    record = await aggregate(store, patient_id, date_from, date_to)
    return Response(
        content=render(record, "json"),
        media_type="application/json",
        headers={"Cache-Control": "no-store"},
    )


@router.get("/medical-record.pdf")
@limiter.limit(EXPORT_RATE_LIMIT)
async def medical_record_pdf(
    request: Request,
    patient_id: str = Query(..., min_length=1),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    mode: str = Query("summary"),
    watermark: Optional[str] = Query(None, description="diagonal|grid|border|corner"),
    intensity: Optional[float] = Query(None),
    store: SqlRecordStore = Depends(get_store),
    current_user: User = Depends(require_clinician),
):
    mode = _check_mode(mode)
    record = await aggregate(store, patient_id, date_from, date_to)
    pdf = render(record, "pdf", mode)
    if watermark:
        pdf = stamp(
            pdf,
            watermark,
            intensity if intensity is not None else env_float("WATERMARK_DEFAULT_INTENSITY", 0.15),
            watermark_identity(current_user),
            source_ip=client_ip(request),
        )

    filename = f"medical_record_{iso_day(record.range['from'])}_{iso_day(record.range['to'])}.pdf"
    logger.info({
        "function": "medical_record_pdf",
        "patient_id": patient_id,
        "mode": mode,
        "watermark": watermark or None,
        "bytes": len(pdf),
    })
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-store",
        },
    )
