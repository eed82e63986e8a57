from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from attendance_engine.db import get_db
from attendance_engine.errors import ApiError
from attendance_engine.schemas import (
    AbsenceJustifyRequest,
    AbsenceRead,
    AbsenceReviewRequest,
    AbsenceStatsRead,
)
from attendance_engine.security import AuthContext, Capability, require_auth
from attendance_engine.services.absences import (
    JustificationItem,
    absence_stats,
    justify_absences,
    list_absence_history,
    list_pending_justifications,
    list_pending_reviews,
    review_absence,
)

router = APIRouter(prefix="/api/absences", tags=["absences"])


@router.get("/my-pending", response_model=list[AbsenceRead])
def my_pending_absences(
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> list[AbsenceRead]:
    return list_pending_justifications(db, auth.user_id)


@router.post("/justify", response_model=list[AbsenceRead])
def justify(
    payload: AbsenceJustifyRequest,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> list[AbsenceRead]:
    items = [
        JustificationItem(
            absence_id=item.absence_id,
            reason_category=item.reason_category,
            explanation=item.explanation,
        )
        for item in payload.justifications
    ]
    return justify_absences(db, auth, items)


@router.get("/my-history", response_model=list[AbsenceRead])
def my_absence_history(
    limit: int = Query(default=50, ge=1, le=500),
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> list[AbsenceRead]:
    return list_absence_history(db, auth.user_id, limit=limit)


@router.get("/team-pending", response_model=list[AbsenceRead])
def team_pending_reviews(
    team_id: int | None = Query(default=None, ge=1),
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> list[AbsenceRead]:
    return list_pending_reviews(db, auth, team_id=team_id)


@router.post("/{absence_id}/review", response_model=AbsenceRead)
def review(
    absence_id: int,
    payload: AbsenceReviewRequest,
    request: Request,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> AbsenceRead:
    absence = review_absence(db, auth, absence_id, payload.action, notes=payload.notes)
    request.state.absence_id = absence.id
    return absence


@router.get("/stats", response_model=AbsenceStatsRead)
def stats(
    user_id: int | None = Query(default=None, ge=1),
    team_id: int | None = Query(default=None, ge=1),
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> AbsenceStatsRead:
    if user_id is None and team_id is None and not auth.can(Capability.VIEW_COMPANY_ANALYTICS):
        user_id = auth.user_id
    elif user_id != auth.user_id and not (
        auth.can(Capability.VIEW_TEAM_ANALYTICS) or auth.can(Capability.VIEW_COMPANY_ANALYTICS)
    ):
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    return AbsenceStatsRead(**absence_stats(db, company_id=auth.company_id, user_id=user_id, team_id=team_id))
