from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.errors import ApiError
from attendance_engine.models import AbsenceStatus, AttendanceStatus, Company, Team, User
from attendance_engine.services.classifier import DayContext
from attendance_engine.services.daily_summary import WORKER_ROLES
from attendance_engine.services.performance import (
    PerformanceScore,
    ScoreBreakdown,
    aggregate_performance,
    grade_for_score,
    load_day_contexts,
)
from attendance_engine.services.workdays import (
    is_work_day,
    iter_days,
    local_date,
    normalize_ts,
    resolve_timezone,
)
from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.team_grades")

TREND_UP = "up"
TREND_DOWN = "down"
TREND_STABLE = "stable"

# Members and teams graded C or D need attention; D is critical.
NEEDS_ATTENTION_GRADES = frozenset({"C", "D"})
CRITICAL_GRADES = frozenset({"D"})

# Worst grade first; ungraded teams sort last.
_GRADE_ORDER = {"D": 0, "C": 1, "B": 2, "A": 3}


@dataclass(frozen=True, slots=True)
class GradeOptions:
    days: int = 30
    min_work_days: int = 3
    min_lifetime_checkins: int = 3
    trend_threshold: float = 3.0

    @classmethod
    def from_settings(cls, *, days: int | None = None) -> GradeOptions:
        settings = get_settings()
        return cls(
            days=days or settings.team_grade_window_days,
            min_work_days=settings.team_grade_min_work_days,
            min_lifetime_checkins=settings.team_grade_min_lifetime_checkins,
            trend_threshold=settings.trend_threshold,
        )


@dataclass(slots=True)
class MemberEvaluation:
    user_id: int
    expected_work_days: int
    lifetime_checkins: int
    included: bool
    performance: PerformanceScore | None = None


@dataclass(slots=True)
class TeamGrade:
    team_id: int
    team_name: str
    leader_id: int | None
    leader_name: str | None
    member_count: int
    included_member_count: int
    onboarding_count: int
    onboarding_member_ids: list[int] = field(default_factory=list)
    at_risk_count: int = 0
    needs_attention_count: int = 0
    attendance_rate: float | None = None
    on_time_rate: float | None = None
    score: float | None = None
    grade: str | None = None
    grade_label: str | None = None
    previous_score: float | None = None
    score_delta: float | None = None
    trend: str = TREND_STABLE
    breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)

    def to_dict(self) -> dict[str, Any]:
        return {
            "team_id": self.team_id,
            "team_name": self.team_name,
            "leader_id": self.leader_id,
            "leader_name": self.leader_name,
            "member_count": self.member_count,
            "included_member_count": self.included_member_count,
            "onboarding_count": self.onboarding_count,
            "onboarding_member_ids": list(self.onboarding_member_ids),
            "at_risk_count": self.at_risk_count,
            "needs_attention_count": self.needs_attention_count,
            "attendance_rate": self.attendance_rate,
            "on_time_rate": self.on_time_rate,
            "score": self.score,
            "grade": self.grade,
            "grade_label": self.grade_label,
            "previous_score": self.previous_score,
            "score_delta": self.score_delta,
            "trend": self.trend,
            "breakdown": self.breakdown.to_dict(),
        }


def grade_periods(today: date, days: int) -> tuple[tuple[date, date], tuple[date, date]]:
    """Current window ending today and the equally long window right before it."""
    length = max(1, days)
    start = today - timedelta(days=length - 1)
    previous_end = start - timedelta(days=1)
    previous_start = previous_end - timedelta(days=length - 1)
    return (start, today), (previous_start, previous_end)


def expected_work_days(ctx: DayContext, start: date, end: date) -> int:
    count = 0
    for day in iter_days(start, end):
        if not is_work_day(day, ctx.work_days) or day in ctx.holidays:
            continue
        if ctx.leave_for(day) is not None:
            continue
        if ctx.absences.get(day) == AbsenceStatus.EXCUSED or ctx.attendance.get(day) == AttendanceStatus.EXCUSED:
            continue
        count += 1
    return count


def checkin_day_counts(ctx: DayContext, start: date, end: date) -> tuple[int, int]:
    """(on-time, total) check-in days in the window; legacy YELLOW rows are late check-ins."""
    on_time = 0
    total = 0
    for day, status in ctx.attendance.items():
        if not start <= day <= end or not ctx.is_required_day(day):
            continue
        if status == AttendanceStatus.GREEN:
            on_time += 1
            total += 1
        elif status == AttendanceStatus.YELLOW:
            total += 1
    return on_time, total


def percentage(part: int, whole: int) -> float | None:
    if whole <= 0:
        return None
    return round(part / whole * 100, 1)


def mean_score(scores: Iterable[float]) -> float | None:
    values = list(scores)
    if not values:
        return None
    return round(sum(values) / len(values), 1)


def trend_for(current: float | None, previous: float | None, threshold: float) -> tuple[float | None, str]:
    if current is None or previous is None:
        return None, TREND_STABLE
    delta = round(current - previous, 1)
    if delta >= threshold:
        return delta, TREND_UP
    if delta <= -threshold:
        return delta, TREND_DOWN
    return delta, TREND_STABLE


def evaluate_member(
    member: User,
    ctx: DayContext,
    *,
    start: date,
    end: date,
    join_day: date,
    options: GradeOptions,
) -> MemberEvaluation:
    effective_start = max(start, join_day + timedelta(days=1))
    expected = expected_work_days(ctx, effective_start, end) if effective_start <= end else 0
    lifetime_checkins = member.total_checkins or 0
    included = expected >= options.min_work_days and lifetime_checkins >= options.min_lifetime_checkins
    return MemberEvaluation(
        user_id=member.id,
        expected_work_days=expected,
        lifetime_checkins=lifetime_checkins,
        included=included,
        performance=aggregate_performance(ctx, start, end) if included else None,
    )


def grade_team(
    team: Team,
    members: Sequence[User],
    contexts: dict[int, DayContext],
    *,
    join_days: dict[int, date],
    today: date,
    options: GradeOptions,
    leader_name: str | None = None,
) -> TeamGrade:
    (start, end), (previous_start, previous_end) = grade_periods(today, options.days)

    current: list[MemberEvaluation] = []
    previous: list[MemberEvaluation] = []
    for member in members:
        ctx = contexts.get(member.id)
        if ctx is None:
            continue
        join_day = join_days[member.id]
        current.append(evaluate_member(member, ctx, start=start, end=end, join_day=join_day, options=options))
        previous.append(
            evaluate_member(member, ctx, start=previous_start, end=previous_end, join_day=join_day, options=options)
        )

    included = [item.performance for item in current if item.included and item.performance is not None]
    breakdown = ScoreBreakdown()
    for performance in included:
        breakdown.merge(performance.breakdown)

    at_risk_count = 0
    needs_attention_count = 0
    total_expected = 0
    on_time_days = 0
    checkin_days = 0
    for item in current:
        if not item.included or item.performance is None:
            continue
        member_grade = grade_for_score(item.performance.score)[0]
        if member_grade in CRITICAL_GRADES:
            at_risk_count += 1
        if member_grade in NEEDS_ATTENTION_GRADES:
            needs_attention_count += 1
        total_expected += item.expected_work_days
        on_time, checked_in = checkin_day_counts(contexts[item.user_id], start, end)
        on_time_days += on_time
        checkin_days += checked_in

    score = mean_score(performance.score for performance in included)
    previous_score = mean_score(
        item.performance.score for item in previous if item.included and item.performance is not None
    )
    score_delta, trend = trend_for(score, previous_score, options.trend_threshold)
    grade, grade_label = grade_for_score(score) if score is not None else (None, None)

    onboarding_ids = [item.user_id for item in current if not item.included]
    return TeamGrade(
        team_id=team.id,
        team_name=team.name,
        leader_id=team.leader_id,
        leader_name=leader_name,
        member_count=len(members),
        included_member_count=len(included),
        onboarding_count=len(onboarding_ids),
        onboarding_member_ids=onboarding_ids,
        at_risk_count=at_risk_count,
        needs_attention_count=needs_attention_count,
        attendance_rate=percentage(breakdown.green, total_expected),
        on_time_rate=percentage(on_time_days, checkin_days),
        score=score,
        grade=grade,
        grade_label=grade_label,
        previous_score=previous_score,
        score_delta=score_delta,
        trend=trend,
        breakdown=breakdown,
    )


def sort_team_grades(grades: list[TeamGrade]) -> list[TeamGrade]:
    return sorted(
        grades,
        key=lambda item: (
            _GRADE_ORDER.get(item.grade or "", len(_GRADE_ORDER)),
            item.score if item.score is not None else float("inf"),
            item.team_name.lower(),
        ),
    )


def calculate_team_grades(
    db: Session,
    company_id: int,
    *,
    team_ids: Sequence[int] | None = None,
    options: GradeOptions | None = None,
    now_utc: datetime | None = None,
) -> list[TeamGrade]:
    company = db.get(Company, company_id)
    if company is None:
        raise ApiError(status_code=404, code="COMPANY_NOT_FOUND", message="Company not found.")
    options = options or GradeOptions.from_settings()
    tz = resolve_timezone(company.timezone)
    today = local_date(normalize_ts(now_utc), tz)
    (_, end), (previous_start, _) = grade_periods(today, options.days)

    team_stmt = select(Team).where(Team.company_id == company_id, Team.is_active.is_(True))
    if team_ids is not None:
        team_stmt = team_stmt.where(Team.id.in_(list(team_ids)))
    teams = list(db.scalars(team_stmt).all())
    if not teams:
        return []
    teams_by_id = {team.id: team for team in teams}

    members = list(
        db.scalars(
            select(User).where(
                User.team_id.in_(list(teams_by_id)),
                User.is_active.is_(True),
                User.role.in_(WORKER_ROLES),
            )
        ).all()
    )
    contexts = load_day_contexts(
        db,
        members,
        teams_by_id=teams_by_id,
        company_id=company_id,
        tz=tz,
        start=previous_start,
        end=end,
        today=today,
    )
    join_days = {
        member.id: local_date(member.team_joined_at or member.created_at, tz)
        for member in members
    }

    leader_ids = {team.leader_id for team in teams if team.leader_id is not None}
    leader_names = {
        user.id: user.full_name
        for user in (db.scalars(select(User).where(User.id.in_(leader_ids))).all() if leader_ids else [])
    }

    grades = []
    for team in teams:
        team_members = [member for member in members if member.team_id == team.id]
        grades.append(
            grade_team(
                team,
                team_members,
                contexts,
                join_days=join_days,
                today=today,
                options=options,
                leader_name=leader_names.get(team.leader_id) if team.leader_id is not None else None,
            )
        )

    logger.info(
        "team_grades_calculated",
        extra={"company_id": company_id, "team_count": len(grades), "days": options.days},
    )
    return sort_team_grades(grades)


def summarize_team_grades(grades: Sequence[TeamGrade]) -> dict[str, Any]:
    scored = [grade.score for grade in grades if grade.score is not None]
    avg_score = mean_score(scored)
    return {
        "total_teams": len(grades),
        "total_members": sum(grade.member_count for grade in grades),
        "avg_score": avg_score,
        "avg_grade": grade_for_score(avg_score)[0] if avg_score is not None else None,
        "teams_at_risk": sum(1 for grade in grades if grade.grade in NEEDS_ATTENTION_GRADES),
        "teams_critical": sum(1 for grade in grades if grade.grade in CRITICAL_GRADES),
        "teams_improving": sum(1 for grade in grades if grade.trend == TREND_UP),
        "teams_declining": sum(1 for grade in grades if grade.trend == TREND_DOWN),
    }
