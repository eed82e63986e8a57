from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.errors import ApiError
from attendance_engine.models import (
    Absence,
    Company,
    DailyAttendance,
    Holiday,
    Leave,
    LeaveStatus,
    Team,
    User,
)
from attendance_engine.services.baseline import baseline_for_user, first_checkin_times, load_user_baseline
from attendance_engine.services.classifier import (
    DayContext,
    DaySource,
    LeaveWindow,
    build_leave_windows,
    classify_day,
)
from attendance_engine.services.workdays import (
    ensure_utc,
    is_work_day,
    iter_days,
    local_date,
    normalize_ts,
    parse_work_days,
    resolve_timezone,
)

GRADE_BANDS: tuple[tuple[float, str, str], ...] = (
    (90.0, "A", "Excellent"),
    (80.0, "B", "Good"),
    (70.0, "C", "Fair"),
)
LOWEST_GRADE: tuple[str, str] = ("D", "Poor")


def grade_for_score(score: float) -> tuple[str, str]:
    for threshold, letter, label in GRADE_BANDS:
        if score >= threshold:
            return letter, label
    return LOWEST_GRADE


@dataclass(slots=True)
class ScoreBreakdown:
    green: int = 0
    absent: int = 0
    excused: int = 0
    absence_excused: int = 0
    absence_unexcused: int = 0
    absence_pending: int = 0

    def add(self, key: str) -> None:
        setattr(self, key, getattr(self, key) + 1)

    def merge(self, other: ScoreBreakdown) -> None:
        for key, value in asdict(other).items():
            setattr(self, key, getattr(self, key) + value)

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(slots=True)
class PerformanceScore:
    score: float = 0.0
    work_days: int = 0
    counted_days: int = 0
    total_score: int = 0
    breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)

    @property
    def total_days(self) -> int:
        return self.work_days

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "total_days": self.total_days,
            "work_days": self.work_days,
            "counted_days": self.counted_days,
            "breakdown": self.breakdown.to_dict(),
        }


def aggregate_performance(ctx: DayContext, start: date, end: date) -> PerformanceScore:
    result = PerformanceScore()
    effective_start = max(start, ctx.baseline)
    for day in iter_days(effective_start, end):
        if not is_work_day(day, ctx.work_days) or day in ctx.holidays:
            continue
        result.work_days += 1

        classification = classify_day(day, ctx)
        if classification is None:
            continue
        result.breakdown.add(classification.breakdown_key)
        points = classification.points
        if points is None:
            continue
        result.counted_days += 1
        result.total_score += points

    if result.counted_days > 0:
        result.score = round(result.total_score / result.counted_days, 1)
    return result


@dataclass(slots=True)
class WorkerRecords:
    """Raw rows of one worker over a date range, keyed by company-local day."""

    attendance: dict[date, DailyAttendance] = field(default_factory=dict)
    absences: dict[date, Absence] = field(default_factory=dict)
    leaves: list[LeaveWindow] = field(default_factory=list)


def load_worker_records(
    db: Session,
    user_ids: Iterable[int],
    *,
    start: date,
    end: date,
) -> dict[int, WorkerRecords]:
    ids = sorted(set(user_ids))
    records: dict[int, WorkerRecords] = defaultdict(WorkerRecords)
    if not ids:
        return records

    attendance_rows = db.scalars(
        select(DailyAttendance).where(
            DailyAttendance.user_id.in_(ids),
            DailyAttendance.day_date >= start,
            DailyAttendance.day_date <= end,
        )
    ).all()
    for row in attendance_rows:
        records[row.user_id].attendance[row.day_date] = row

    absence_rows = db.scalars(
        select(Absence).where(
            Absence.user_id.in_(ids),
            Absence.absence_date >= start,
            Absence.absence_date <= end,
        )
    ).all()
    for row in absence_rows:
        records[row.user_id].absences[row.absence_date] = row

    leave_rows = db.scalars(
        select(Leave).where(
            Leave.user_id.in_(ids),
            Leave.status == LeaveStatus.APPROVED,
            Leave.start_date <= end,
            Leave.end_date >= start,
        )
    ).all()
    leaves_by_user: dict[int, list[Leave]] = defaultdict(list)
    for row in leave_rows:
        leaves_by_user[row.user_id].append(row)
    for user_id, rows in leaves_by_user.items():
        records[user_id].leaves = build_leave_windows(
            (row.start_date, row.end_date, row.type.value, row.id) for row in rows
        )
    return records


def load_holidays(db: Session, company_id: int, *, start: date, end: date) -> frozenset[date]:
    rows = db.scalars(
        select(Holiday.day_date).where(
            Holiday.company_id == company_id,
            Holiday.day_date >= start,
            Holiday.day_date <= end,
        )
    ).all()
    return frozenset(rows)


def build_day_context(
    *,
    today: date,
    baseline: date,
    team: Team,
    holidays: frozenset[date],
    records: WorkerRecords,
) -> DayContext:
    return DayContext(
        today=today,
        baseline=baseline,
        work_days=parse_work_days(team.work_days),
        holidays=holidays,
        attendance={day: row.status for day, row in records.attendance.items()},
        absences={day: row.status for day, row in records.absences.items()},
        leave_windows=records.leaves,
    )


def load_day_contexts(
    db: Session,
    members: Sequence[User],
    *,
    teams_by_id: dict[int, Team],
    company_id: int,
    tz: ZoneInfo,
    start: date,
    end: date,
    today: date,
) -> dict[int, DayContext]:
    member_ids = [member.id for member in members]
    records = load_worker_records(db, member_ids, start=start, end=end)
    holidays = load_holidays(db, company_id, start=start, end=end)
    first_checkins = first_checkin_times(db, member_ids)

    contexts: dict[int, DayContext] = {}
    for member in members:
        team = teams_by_id.get(member.team_id) if member.team_id is not None else None
        if team is None:
            continue
        contexts[member.id] = build_day_context(
            today=today,
            baseline=baseline_for_user(member, tz, first_checkin_at=first_checkins.get(member.id)),
            team=team,
            holidays=holidays,
            records=records[member.id],
        )
    return contexts


def _load_worker(db: Session, user_id: int) -> tuple[User, Company]:
    user = db.get(User, user_id)
    if user is None:
        raise ApiError(status_code=404, code="WORKER_NOT_FOUND", message="Worker not found.")
    company = db.get(Company, user.company_id)
    if company is None:
        raise ApiError(status_code=404, code="COMPANY_NOT_FOUND", message="Company not found.")
    return user, company


def calculate_performance_score(
    db: Session,
    user_id: int,
    start: date,
    end: date,
    *,
    now_utc: datetime | None = None,
) -> PerformanceScore:
    user, company = _load_worker(db, user_id)
    if user.team_id is None:
        return PerformanceScore()
    team = db.get(Team, user.team_id)
    if team is None:
        return PerformanceScore()

    tz = resolve_timezone(company.timezone)
    today = local_date(normalize_ts(now_utc), tz)
    contexts = load_day_contexts(
        db,
        [user],
        teams_by_id={team.id: team},
        company_id=company.id,
        tz=tz,
        start=start,
        end=end,
        today=today,
    )
    return aggregate_performance(contexts[user.id], start, end)


def get_attendance_history(
    db: Session,
    user_id: int,
    *,
    days: int = 30,
    now_utc: datetime | None = None,
) -> list[dict[str, Any]]:
    """Per-day classification for the last ``days`` days, newest first."""
    user, company = _load_worker(db, user_id)
    if user.team_id is None:
        return []
    team = db.get(Team, user.team_id)
    if team is None:
        return []

    tz = resolve_timezone(company.timezone)
    today = local_date(normalize_ts(now_utc), tz)
    start = today - timedelta(days=max(1, days) - 1)
    records = load_worker_records(db, [user.id], start=start, end=today)[user.id]
    ctx = build_day_context(
        today=today,
        baseline=load_user_baseline(db, user, tz),
        team=team,
        holidays=load_holidays(db, company.id, start=start, end=today),
        records=records,
    )

    history: list[dict[str, Any]] = []
    for day in sorted(iter_days(start, today), reverse=True):
        classification = classify_day(day, ctx)
        if classification is None:
            continue
        attendance = records.attendance.get(day)
        absence = records.absences.get(day)
        leave = ctx.leave_for(day)
        check_in_time = ensure_utc(attendance.check_in_time) if attendance is not None else None
        history.append(
            {
                "date": day,
                "status": classification.status.value,
                "source": classification.source.value,
                "score": classification.points,
                "is_counted": classification.is_counted,
                "check_in_time": check_in_time.astimezone(tz).strftime("%H:%M") if check_in_time else None,
                "leave_type": leave.leave_type if leave is not None and classification.source == DaySource.LEAVE else None,
                "absence_id": absence.id if absence is not None else None,
                "absence_status": absence.status.value if absence is not None else None,
                "absence_reason": absence.reason_category.value if absence is not None and absence.reason_category else None,
            }
        )
    return history
