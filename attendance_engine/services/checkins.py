from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_engine.errors import ApiError
from attendance_engine.models import (
    AttendanceStatus,
    Checkin,
    Company,
    DailyAttendance,
    Holiday,
    Leave,
    LeaveStatus,
    ReadinessStatus,
    Team,
    User,
)
from attendance_engine.services.daily_summary import WORKER_ROLES, recalculate_summaries_best_effort
from attendance_engine.services.workdays import (
    format_hhmm,
    is_work_day,
    local_date,
    normalize_ts,
    parse_hhmm,
    parse_work_days,
    resolve_timezone,
)
from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.checkins")

READY_THRESHOLD = 70
CAUTION_THRESHOLD = 40

# Check-ins open this many minutes before the shift starts.
CHECKIN_GRACE_MINUTES = 30


@dataclass(frozen=True, slots=True)
class ReadinessResult:
    score: int
    status: ReadinessStatus


def calculate_readiness(*, mood: int, stress: int, sleep: int, physical_health: int) -> ReadinessResult:
    """Average of the four 1-10 ratings scaled to 0-100; stress counts inversely."""
    for name, value in (("mood", mood), ("stress", stress), ("sleep", sleep), ("physical_health", physical_health)):
        if not 1 <= value <= 10:
            raise ApiError(status_code=422, code="INVALID_RATING", message=f"{name} must be between 1 and 10.")

    components = (
        mood / 10 * 100,
        (10 - stress) / 10 * 100,
        sleep / 10 * 100,
        physical_health / 10 * 100,
    )
    score = round(sum(components) / len(components))
    if score >= READY_THRESHOLD:
        status = ReadinessStatus.GREEN
    elif score >= CAUTION_THRESHOLD:
        status = ReadinessStatus.YELLOW
    else:
        status = ReadinessStatus.RED
    return ReadinessResult(score=score, status=status)


def ensure_checkin_window(db: Session, user: User, team: Team, day: date, local_now: datetime) -> None:
    """Reject check-ins outside the worker's scheduled shift on a required day."""
    holiday_id = db.scalar(select(Holiday.id).where(Holiday.company_id == user.company_id, Holiday.day_date == day))
    if holiday_id is not None:
        raise ApiError(status_code=409, code="HOLIDAY", message="Today is a company holiday.")

    leave_id = db.scalar(
        select(Leave.id).where(
            Leave.user_id == user.id,
            Leave.status == LeaveStatus.APPROVED,
            Leave.start_date <= day,
            Leave.end_date >= day,
        )
    )
    if leave_id is not None:
        raise ApiError(status_code=409, code="ON_LEAVE", message="Worker is on approved leave today.")

    if not is_work_day(day, parse_work_days(team.work_days)):
        raise ApiError(status_code=409, code="NOT_WORK_DAY", message="Today is not a scheduled work day.")

    settings = get_settings()
    shift_start = team.shift_start or parse_hhmm(settings.default_shift_start)
    shift_end = team.shift_end or parse_hhmm(settings.default_shift_end)
    opens_at = datetime.combine(day, shift_start) - timedelta(minutes=CHECKIN_GRACE_MINUTES)
    wall_clock = local_now.replace(tzinfo=None)
    if wall_clock < opens_at:
        raise ApiError(
            status_code=409,
            code="TOO_EARLY",
            message=f"Check-in opens at {opens_at.strftime('%H:%M')}.",
        )
    if wall_clock > datetime.combine(day, shift_end):
        raise ApiError(
            status_code=409,
            code="TOO_LATE",
            message=f"Shift ended at {shift_end.strftime('%H:%M')}.",
        )


def record_checkin(
    db: Session,
    user_id: int,
    *,
    mood: int,
    stress: int,
    sleep: int,
    physical_health: int,
    notes: str | None = None,
    now_utc: datetime | None = None,
) -> Checkin:
    """Store a check-in and its GREEN attendance row for the company-local day."""
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise ApiError(status_code=404, code="WORKER_NOT_FOUND", message="Worker not found.")
    if user.role not in WORKER_ROLES:
        raise ApiError(status_code=403, code="NOT_MEMBER_ROLE", message="Only team members can check in.")
    if user.team_id is None:
        raise ApiError(status_code=409, code="WORKER_WITHOUT_TEAM", message="Worker is not assigned to a team.")

    company = db.get(Company, user.company_id)
    team = db.get(Team, user.team_id)
    if team is None:
        raise ApiError(status_code=409, code="WORKER_WITHOUT_TEAM", message="Worker is not assigned to a team.")
    tz = resolve_timezone(company.timezone if company is not None else None)
    now = normalize_ts(now_utc)
    day = local_date(now, tz)

    existing = db.scalar(
        select(DailyAttendance.id).where(
            DailyAttendance.user_id == user.id,
            DailyAttendance.day_date == day,
        )
    )
    if existing is not None:
        raise ApiError(status_code=409, code="ALREADY_CHECKED_IN", message="Attendance for today is already recorded.")
    ensure_checkin_window(db, user, team, day, now.astimezone(tz))

    readiness = calculate_readiness(mood=mood, stress=stress, sleep=sleep, physical_health=physical_health)
    checkin = Checkin(
        user_id=user.id,
        company_id=user.company_id,
        mood=mood,
        stress=stress,
        sleep=sleep,
        physical_health=physical_health,
        notes=notes,
        readiness_score=readiness.score,
        readiness_status=readiness.status,
        created_at=now,
    )
    db.add(checkin)
    db.add(
        DailyAttendance(
            user_id=user.id,
            company_id=user.company_id,
            team_id=user.team_id,
            day_date=day,
            scheduled_start=format_hhmm(team.shift_start, get_settings().default_shift_start),
            check_in_time=now,
            status=AttendanceStatus.GREEN,
            score=100,
            is_counted=True,
        )
    )
    user.total_checkins = (user.total_checkins or 0) + 1
    user.last_checkin_at = now
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="ALREADY_CHECKED_IN",
            message="Attendance for today is already recorded.",
        ) from exc
    db.refresh(checkin)

    logger.info(
        "checkin_recorded",
        extra={
            "user_id": user.id,
            "day": day,
            "readiness_score": readiness.score,
            "readiness_status": readiness.status.value,
        },
    )
    recalculate_summaries_best_effort(db, [(user.team_id, day)])
    return checkin
