# medrecord/routes/records_routes.py
from fastapi import APIRouter, Depends

from medrecord.auth.deps import require_clinician
from medrecord.models.user import User
from medrecord.routes.deps import get_store
from medrecord.schemas.labs import TimelineOut
from medrecord.services.store import SqlRecordStore
from medrecord.services.timeline import patient_timeline

router = APIRouter(prefix="/api/records", tags=["records"])


@router.get("/timeline/{patient_id}", response_model=TimelineOut)
async def get_timeline(
    patient_id: str,
    store: SqlRecordStore = Depends(get_store),
    current_user: User = Depends(require_clinician),
):
    items = await patient_timeline(store, patient_id)
    return {"patient_id": patient_id, "items": [item.to_dict() for item in items]}
