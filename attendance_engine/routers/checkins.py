from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from attendance_engine.db import get_db
from attendance_engine.schemas import CheckinCreateRequest, CheckinRead, CheckinStatusResponse
from attendance_engine.security import AuthContext, require_auth
from attendance_engine.services.absences import list_pending_justifications
from attendance_engine.services.checkins import record_checkin

router = APIRouter(prefix="/api/checkins", tags=["checkins"])


@router.get("/status", response_model=CheckinStatusResponse)
def checkin_status(
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> CheckinStatusResponse:
    pending = list_pending_justifications(db, auth.user_id)
    return CheckinStatusResponse(blocked=bool(pending), pending_absence_ids=[absence.id for absence in pending])


@router.post("", response_model=CheckinRead, status_code=status.HTTP_201_CREATED)
def create_checkin(
    payload: CheckinCreateRequest,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> CheckinRead:
    return record_checkin(
        db,
        auth.user_id,
        mood=payload.mood,
        stress=payload.stress,
        sleep=payload.sleep,
        physical_health=payload.physical_health,
        notes=payload.notes,
    )
