from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from attendance_engine.audit import log_audit
from attendance_engine.db import get_db
from attendance_engine.models import AuditActorType
from attendance_engine.schemas import SweepResultRead, SweepTriggerRequest
from attendance_engine.security import AuthContext, Capability, require_capability
from attendance_engine.services.finalizer import finalize_yesterday, process_shift_end

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.post("/run-yesterday", response_model=SweepResultRead)
def run_yesterday(
    payload: SweepTriggerRequest | None = None,
    auth: AuthContext = Depends(require_capability(Capability.RUN_FINALIZER)),
    db: Session = Depends(get_db),
) -> SweepResultRead:
    payload = payload or SweepTriggerRequest()
    result = finalize_yesterday(db, payload.now_utc, force=payload.force, company_id=auth.company_id)
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=auth.user_id,
        action="FINALIZER_YESTERDAY_TRIGGERED",
        company_id=auth.company_id,
        details=result.to_dict(),
    )
    return SweepResultRead(**result.to_dict())


@router.post("/run-shift-end", response_model=SweepResultRead)
def run_shift_end(
    payload: SweepTriggerRequest | None = None,
    auth: AuthContext = Depends(require_capability(Capability.RUN_FINALIZER)),
    db: Session = Depends(get_db),
) -> SweepResultRead:
    payload = payload or SweepTriggerRequest()
    result = process_shift_end(db, payload.now_utc, force=payload.force, company_id=auth.company_id)
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=auth.user_id,
        action="FINALIZER_SHIFT_END_TRIGGERED",
        company_id=auth.company_id,
        details=result.to_dict(),
    )
    return SweepResultRead(**result.to_dict())
