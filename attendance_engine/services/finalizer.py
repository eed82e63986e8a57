from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_engine.models import (
    Absence,
    AbsenceStatus,
    AttendanceStatus,
    Company,
    DailyAttendance,
    Holiday,
    Leave,
    LeaveStatus,
    Team,
    User,
    UserRole,
)
from attendance_engine.services.baseline import baseline_for_user, first_checkin_times
from attendance_engine.services.daily_summary import recalculate_summaries_best_effort
from attendance_engine.services.workdays import (
    format_hhmm,
    is_work_day,
    normalize_ts,
    parse_hhmm,
    parse_work_days,
    resolve_timezone,
)
from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.finalizer")

WORKER_ROLES = (UserRole.WORKER, UserRole.MEMBER)


class WorkerOutcome(str, enum.Enum):
    MARKED_ABSENT = "MARKED_ABSENT"
    SKIPPED = "SKIPPED"
    ALREADY_HANDLED = "ALREADY_HANDLED"
    FAILED = "FAILED"


@dataclass(slots=True)
class SweepResult:
    companies_processed: int = 0
    teams_processed: int = 0
    marked_absent: int = 0
    skipped: int = 0
    already_handled: int = 0
    failed: int = 0
    summary_failures: int = 0

    def record(self, outcome: WorkerOutcome) -> None:
        if outcome == WorkerOutcome.MARKED_ABSENT:
            self.marked_absent += 1
        elif outcome == WorkerOutcome.SKIPPED:
            self.skipped += 1
        elif outcome == WorkerOutcome.ALREADY_HANDLED:
            self.already_handled += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _is_holiday(db: Session, company_id: int, day: date) -> bool:
    return db.scalar(select(Holiday.id).where(Holiday.company_id == company_id, Holiday.day_date == day)) is not None


def _skip_reason(
    db: Session,
    worker: User,
    team: Team,
    day: date,
    *,
    baseline: date,
) -> str | None:
    if not is_work_day(day, parse_work_days(team.work_days)):
        return "not_work_day"
    if day < baseline:
        return "before_baseline"

    attendance_id = db.scalar(
        select(DailyAttendance.id).where(
            DailyAttendance.user_id == worker.id,
            DailyAttendance.day_date == day,
        )
    )
    if attendance_id is not None:
        return "attendance_exists"

    leave_id = db.scalar(
        select(Leave.id).where(
            Leave.user_id == worker.id,
            Leave.status == LeaveStatus.APPROVED,
            Leave.start_date <= day,
            Leave.end_date >= day,
        )
    )
    if leave_id is not None:
        return "on_leave"

    absence_id = db.scalar(
        select(Absence.id).where(
            Absence.user_id == worker.id,
            Absence.absence_date == day,
        )
    )
    if absence_id is not None:
        return "absence_exists"
    return None


def finalize_worker_day(
    db: Session,
    worker: User,
    team: Team,
    day: date,
    *,
    tz: ZoneInfo,
    first_checkin_at: datetime | None,
) -> WorkerOutcome:
    """Mark one worker absent for ``day`` unless any safeguard says otherwise."""
    try:
        baseline = baseline_for_user(worker, tz, first_checkin_at=first_checkin_at)
        reason = _skip_reason(db, worker, team, day, baseline=baseline)
        if reason is not None:
            logger.debug(
                "finalizer_worker_skipped",
                extra={"user_id": worker.id, "day": day, "reason": reason},
            )
            return WorkerOutcome.SKIPPED

        db.add(
            DailyAttendance(
                user_id=worker.id,
                company_id=worker.company_id,
                team_id=team.id,
                day_date=day,
                scheduled_start=format_hhmm(team.shift_start, get_settings().default_shift_start),
                check_in_time=None,
                status=AttendanceStatus.ABSENT,
                score=0,
                is_counted=True,
            )
        )
        db.add(
            Absence(
                user_id=worker.id,
                company_id=worker.company_id,
                team_id=team.id,
                absence_date=day,
                status=AbsenceStatus.PENDING_JUSTIFICATION,
            )
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(
            "finalizer_worker_already_handled",
            extra={"user_id": worker.id, "day": day},
        )
        return WorkerOutcome.ALREADY_HANDLED
    except Exception:
        db.rollback()
        logger.exception(
            "finalizer_worker_failed",
            extra={"user_id": worker.id, "day": day},
        )
        return WorkerOutcome.FAILED

    logger.info(
        "finalizer_worker_marked_absent",
        extra={"user_id": worker.id, "team_id": team.id, "day": day},
    )
    return WorkerOutcome.MARKED_ABSENT


def _active_companies(db: Session, company_id: int | None = None) -> list[Company]:
    stmt = select(Company).where(Company.is_active.is_(True)).order_by(Company.id.asc())
    if company_id is not None:
        stmt = stmt.where(Company.id == company_id)
    return list(db.scalars(stmt).all())


def _active_workers(db: Session, company_id: int, *, team_id: int | None = None) -> list[tuple[User, Team]]:
    stmt = (
        select(User, Team)
        .join(Team, User.team_id == Team.id)
        .where(
            User.company_id == company_id,
            User.is_active.is_(True),
            User.role.in_(WORKER_ROLES),
            Team.is_active.is_(True),
        )
        .order_by(User.id.asc())
    )
    if team_id is not None:
        stmt = stmt.where(Team.id == team_id)
    return [(user, team) for user, team in db.execute(stmt).all()]


def _finalize_workers(
    db: Session,
    workers: list[tuple[User, Team]],
    day: date,
    *,
    tz: ZoneInfo,
    result: SweepResult,
) -> set[int]:
    first_checkins = first_checkin_times(db, [worker.id for worker, _ in workers])
    affected_team_ids: set[int] = set()
    for worker, team in workers:
        outcome = finalize_worker_day(
            db,
            worker,
            team,
            day,
            tz=tz,
            first_checkin_at=first_checkins.get(worker.id),
        )
        result.record(outcome)
        if outcome == WorkerOutcome.MARKED_ABSENT:
            affected_team_ids.add(team.id)
    return affected_team_ids


def finalize_yesterday(
    db: Session,
    now_utc: datetime | None = None,
    *,
    force: bool = False,
    company_id: int | None = None,
) -> SweepResult:
    """Close out yesterday for every company whose local clock is at the sweep hour.

    ``company_id`` limits the sweep to one company; the scheduler sweeps them all.
    """
    now = normalize_ts(now_utc)
    sweep_hour = get_settings().finalizer_local_hour
    result = SweepResult()

    for company in _active_companies(db, company_id):
        tz = resolve_timezone(company.timezone)
        local_now = now.astimezone(tz)
        if not force and local_now.hour != sweep_hour:
            continue

        result.companies_processed += 1
        yesterday = local_now.date() - timedelta(days=1)
        if _is_holiday(db, company.id, yesterday):
            logger.info(
                "finalizer_company_holiday_skipped",
                extra={"company_id": company.id, "day": yesterday},
            )
            continue

        workers = _active_workers(db, company.id)
        affected_team_ids = _finalize_workers(db, workers, yesterday, tz=tz, result=result)
        result.teams_processed += len(affected_team_ids)
        result.summary_failures += recalculate_summaries_best_effort(
            db,
            [(team_id, yesterday) for team_id in affected_team_ids],
        )

    logger.info(
        "finalizer_yesterday_sweep",
        extra={"now_utc": now, "force": force, "company_id": company_id, **result.to_dict()},
    )
    return result


def _shift_end_hour(team: Team) -> int:
    if team.shift_end is not None:
        return team.shift_end.hour
    return parse_hhmm(get_settings().default_shift_end).hour


def process_shift_end(
    db: Session,
    now_utc: datetime | None = None,
    *,
    force: bool = False,
    company_id: int | None = None,
) -> SweepResult:
    """Mark absences for teams whose shift ended during the current local hour."""
    now = normalize_ts(now_utc)
    result = SweepResult()

    for company in _active_companies(db, company_id):
        tz = resolve_timezone(company.timezone)
        local_now = now.astimezone(tz)
        today = local_now.date()
        teams = db.scalars(
            select(Team)
            .where(Team.company_id == company.id, Team.is_active.is_(True))
            .order_by(Team.id.asc())
        ).all()
        due_teams = [team for team in teams if force or _shift_end_hour(team) == local_now.hour]
        if not due_teams:
            continue

        result.companies_processed += 1
        if _is_holiday(db, company.id, today):
            logger.info(
                "finalizer_company_holiday_skipped",
                extra={"company_id": company.id, "day": today},
            )
            continue

        for team in due_teams:
            if not is_work_day(today, parse_work_days(team.work_days)):
                continue
            result.teams_processed += 1
            workers = _active_workers(db, company.id, team_id=team.id)
            _finalize_workers(db, workers, today, tz=tz, result=result)
            result.summary_failures += recalculate_summaries_best_effort(db, [(team.id, today)])

    logger.info(
        "finalizer_shift_end_sweep",
        extra={"now_utc": now, "force": force, "company_id": company_id, **result.to_dict()},
    )
    return result
