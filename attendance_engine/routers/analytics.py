from datetime import date, datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.db import get_db
from attendance_engine.errors import ApiError
from attendance_engine.models import Company, Team, User
from attendance_engine.schemas import (
    AttendanceHistoryDayRead,
    DailyTeamSummaryRead,
    PerformanceScoreRead,
    SummaryRecalculateRequest,
    SummaryRecalculateResponse,
    TeamGradeRead,
    TeamsOverviewResponse,
    TeamsOverviewSummaryRead,
    TeamSummariesResponse,
)
from attendance_engine.security import AuthContext, Capability, require_auth, require_capability
from attendance_engine.services.daily_summary import (
    aggregate_summaries,
    list_team_summaries,
    recalculate_summaries_for_range,
)
from attendance_engine.services.performance import (
    calculate_performance_score,
    get_attendance_history,
    grade_for_score,
)
from attendance_engine.services.team_grades import (
    GradeOptions,
    calculate_team_grades,
    grade_periods,
    summarize_team_grades,
)
from attendance_engine.services.workdays import local_date, resolve_timezone

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


def _company_today(db: Session, company_id: int) -> date:
    company = db.get(Company, company_id)
    if company is None:
        raise ApiError(status_code=404, code="COMPANY_NOT_FOUND", message="Company not found.")
    return local_date(datetime.now(timezone.utc), resolve_timezone(company.timezone))


def _led_team_ids(db: Session, auth: AuthContext) -> list[int]:
    return list(
        db.scalars(select(Team.id).where(Team.company_id == auth.company_id, Team.leader_id == auth.user_id)).all()
    )


def _ensure_can_view_worker(db: Session, auth: AuthContext, user_id: int) -> None:
    user = db.get(User, user_id)
    if user is None or user.company_id != auth.company_id:
        raise ApiError(status_code=404, code="WORKER_NOT_FOUND", message="Worker not found.")
    if user.id == auth.user_id or auth.can(Capability.VIEW_COMPANY_ANALYTICS):
        return
    if auth.can(Capability.VIEW_TEAM_ANALYTICS) and user.team_id in _led_team_ids(db, auth):
        return
    raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")


def _ensure_can_view_team(db: Session, auth: AuthContext, team_id: int) -> None:
    team = db.get(Team, team_id)
    if team is None or team.company_id != auth.company_id:
        raise ApiError(status_code=404, code="TEAM_NOT_FOUND", message="Team not found.")
    if auth.can(Capability.VIEW_COMPANY_ANALYTICS):
        return
    if auth.can(Capability.VIEW_TEAM_ANALYTICS) and team.leader_id == auth.user_id:
        return
    raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")


@router.get("/workers/{user_id}/performance", response_model=PerformanceScoreRead)
def worker_performance(
    user_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> PerformanceScoreRead:
    _ensure_can_view_worker(db, auth, user_id)
    end = end_date or _company_today(db, auth.company_id)
    start = start_date or end - timedelta(days=29)
    if end < start:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end_date must not precede start_date.")

    result = calculate_performance_score(db, user_id, start, end)
    grade, grade_label = grade_for_score(result.score)
    return PerformanceScoreRead(
        user_id=user_id,
        start_date=start,
        end_date=end,
        score=result.score,
        grade=grade,
        grade_label=grade_label,
        total_days=result.total_days,
        work_days=result.work_days,
        counted_days=result.counted_days,
        breakdown=result.breakdown.to_dict(),
    )


@router.get("/workers/{user_id}/attendance-history", response_model=list[AttendanceHistoryDayRead])
def worker_attendance_history(
    user_id: int,
    days: int = Query(default=30, ge=1, le=366),
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> list[AttendanceHistoryDayRead]:
    _ensure_can_view_worker(db, auth, user_id)
    return [AttendanceHistoryDayRead(**item) for item in get_attendance_history(db, user_id, days=days)]


@router.get("/teams/overview", response_model=TeamsOverviewResponse)
def teams_overview(
    days: int = Query(default=30, ge=1, le=366),
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> TeamsOverviewResponse:
    if auth.can(Capability.VIEW_COMPANY_ANALYTICS):
        team_ids = None
    elif auth.can(Capability.VIEW_TEAM_ANALYTICS):
        team_ids = _led_team_ids(db, auth)
    else:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")

    options = GradeOptions.from_settings(days=days)
    grades = calculate_team_grades(db, auth.company_id, team_ids=team_ids, options=options)
    (start, end), (previous_start, previous_end) = grade_periods(_company_today(db, auth.company_id), options.days)
    return TeamsOverviewResponse(
        teams=[TeamGradeRead(**grade.to_dict()) for grade in grades],
        summary=TeamsOverviewSummaryRead(**summarize_team_grades(grades)),
        period={
            "days": options.days,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "previous_start_date": previous_start.isoformat(),
            "previous_end_date": previous_end.isoformat(),
        },
    )


@router.get("/teams/{team_id}/summaries", response_model=TeamSummariesResponse)
def team_summaries(
    team_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> TeamSummariesResponse:
    _ensure_can_view_team(db, auth, team_id)
    end = end_date or _company_today(db, auth.company_id)
    start = start_date or end - timedelta(days=6)
    if end < start:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end_date must not precede start_date.")

    rows = list_team_summaries(db, team_id, start, end)
    return TeamSummariesResponse(
        team_id=team_id,
        summaries=[DailyTeamSummaryRead.model_validate(row) for row in rows],
        aggregate=aggregate_summaries(rows),
    )


@router.post("/summaries/recalculate", response_model=SummaryRecalculateResponse)
def recalculate_summaries(
    payload: SummaryRecalculateRequest,
    auth: AuthContext = Depends(require_capability(Capability.RECALCULATE_SUMMARIES)),
    db: Session = Depends(get_db),
) -> SummaryRecalculateResponse:
    if payload.team_id is not None:
        _ensure_can_view_team(db, auth, payload.team_id)
        team_ids = [payload.team_id]
    else:
        team_ids = list(
            db.scalars(
                select(Team.id)
                .where(Team.company_id == auth.company_id, Team.is_active.is_(True))
                .order_by(Team.id.asc())
            ).all()
        )

    team_days = 0
    for team_id in team_ids:
        team_days += recalculate_summaries_for_range(db, team_id, payload.start_date, payload.end_date)
    return SummaryRecalculateResponse(team_days=team_days)
