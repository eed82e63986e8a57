from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from attendance_engine.errors import ApiError
from attendance_engine.models import (
    AttendanceStatus,
    Checkin,
    Company,
    DailyAttendance,
    DailyTeamSummary,
    Holiday,
    Leave,
    LeaveStatus,
    ReadinessStatus,
    Team,
    User,
    UserRole,
)
from attendance_engine.services.workdays import (
    is_work_day,
    iter_days,
    local_day_bounds_utc,
    parse_work_days,
    resolve_timezone,
)

logger = logging.getLogger("attendance_engine.daily_summary")

WORKER_ROLES = (UserRole.WORKER, UserRole.MEMBER)


def _active_member_ids(db: Session, team_id: int) -> list[int]:
    return list(
        db.scalars(
            select(User.id).where(
                User.team_id == team_id,
                User.is_active.is_(True),
                User.role.in_(WORKER_ROLES),
            )
        ).all()
    )


def compute_daily_team_summary(db: Session, team: Team, day: date, *, company: Company) -> dict[str, Any]:
    tz = resolve_timezone(company.timezone)
    member_ids = _active_member_ids(db, team.id)
    total_members = len(member_ids)

    work_day = is_work_day(day, parse_work_days(team.work_days))
    holiday = (
        db.scalar(
            select(Holiday.id).where(
                Holiday.company_id == team.company_id,
                Holiday.day_date == day,
            )
        )
        is not None
    )

    on_leave_ids: set[int] = set()
    absent_count = 0
    excused_ids: set[int] = set()
    checkins: list[tuple[float, ReadinessStatus]] = []
    if member_ids:
        on_leave_ids = set(
            db.scalars(
                select(Leave.user_id).where(
                    Leave.user_id.in_(member_ids),
                    Leave.status == LeaveStatus.APPROVED,
                    Leave.start_date <= day,
                    Leave.end_date >= day,
                )
            ).all()
        )
        attendance_rows = db.execute(
            select(DailyAttendance.user_id, DailyAttendance.status).where(
                DailyAttendance.user_id.in_(member_ids),
                DailyAttendance.day_date == day,
            )
        ).all()
        for user_id, status in attendance_rows:
            if status == AttendanceStatus.ABSENT:
                absent_count += 1
            elif status == AttendanceStatus.EXCUSED:
                excused_ids.add(user_id)

        day_start_utc, day_end_utc = local_day_bounds_utc(day, tz)
        checkins = [
            (float(score), ReadinessStatus(status))
            for score, status in db.execute(
                select(Checkin.readiness_score, Checkin.readiness_status).where(
                    Checkin.user_id.in_(member_ids),
                    Checkin.created_at >= day_start_utc,
                    Checkin.created_at < day_end_utc,
                )
            ).all()
        ]

    # A member on leave whose absence was also excused is only subtracted once.
    if not work_day or holiday:
        expected = 0
    else:
        expected = max(0, total_members - len(on_leave_ids | excused_ids))

    checked_in_count = len(checkins)
    avg_readiness = sum(score for score, _ in checkins) / checked_in_count if checkins else None
    compliance_rate = checked_in_count / expected * 100 if expected > 0 else None

    return {
        "team_id": team.id,
        "company_id": team.company_id,
        "day_date": day,
        "is_work_day": work_day,
        "is_holiday": holiday,
        "total_members": total_members,
        "on_leave_count": len(on_leave_ids),
        "expected_to_check_in": expected,
        "checked_in_count": checked_in_count,
        "not_checked_in_count": max(0, expected - checked_in_count),
        "green_count": sum(1 for _, status in checkins if status == ReadinessStatus.GREEN),
        "yellow_count": sum(1 for _, status in checkins if status == ReadinessStatus.YELLOW),
        "red_count": sum(1 for _, status in checkins if status == ReadinessStatus.RED),
        "absent_count": absent_count,
        "excused_count": len(excused_ids),
        "avg_readiness_score": round(avg_readiness, 2) if avg_readiness is not None else None,
        "compliance_rate": round(compliance_rate, 2) if compliance_rate is not None else None,
    }


def _upsert_summary(db: Session, values: dict[str, Any]) -> None:
    values = {**values, "updated_at": datetime.now(timezone.utc)}
    update_columns = {key: value for key, value in values.items() if key not in {"team_id", "day_date"}}
    dialect_name = db.get_bind().dialect.name

    if dialect_name in {"postgresql", "sqlite"}:
        insert = postgresql.insert if dialect_name == "postgresql" else sqlite.insert
        stmt = insert(DailyTeamSummary).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DailyTeamSummary.team_id, DailyTeamSummary.day_date],
            set_=update_columns,
        )
        db.execute(stmt)
        return

    summary = db.scalar(
        select(DailyTeamSummary).where(
            DailyTeamSummary.team_id == values["team_id"],
            DailyTeamSummary.day_date == values["day_date"],
        )
    )
    if summary is None:
        db.add(DailyTeamSummary(**values))
        return
    for key, value in update_columns.items():
        setattr(summary, key, value)


def recalculate_daily_team_summary(db: Session, team_id: int, day: date) -> dict[str, Any]:
    """Rebuild the summary row of one team-day from authoritative records."""
    team = db.get(Team, team_id)
    if team is None:
        raise ApiError(status_code=404, code="TEAM_NOT_FOUND", message="Team not found.")
    company = db.get(Company, team.company_id)
    if company is None:
        raise ApiError(status_code=404, code="COMPANY_NOT_FOUND", message="Company not found.")

    values = compute_daily_team_summary(db, team, day, company=company)
    _upsert_summary(db, values)
    db.commit()
    return values


def recalculate_summaries_for_range(db: Session, team_id: int, start: date, end: date) -> int:
    count = 0
    for day in iter_days(start, end):
        recalculate_daily_team_summary(db, team_id, day)
        count += 1
    return count


def recalculate_company_summaries_for_date(db: Session, company_id: int, day: date) -> int:
    team_ids = db.scalars(
        select(Team.id).where(Team.company_id == company_id, Team.is_active.is_(True)).order_by(Team.id.asc())
    ).all()
    for team_id in team_ids:
        recalculate_daily_team_summary(db, team_id, day)
    return len(team_ids)


def recalculate_summaries_best_effort(db: Session, team_days: Iterable[tuple[int, date]]) -> int:
    """Recompute several team-days; failures are logged and counted, never raised."""
    failures = 0
    for team_id, day in sorted(set(team_days)):
        try:
            recalculate_daily_team_summary(db, team_id, day)
        except Exception:
            db.rollback()
            failures += 1
            logger.exception(
                "daily_summary_recalculate_failed",
                extra={"team_id": team_id, "day": day},
            )
    return failures


def list_team_summaries(db: Session, team_id: int, start: date, end: date) -> list[DailyTeamSummary]:
    return list(
        db.scalars(
            select(DailyTeamSummary)
            .where(
                DailyTeamSummary.team_id == team_id,
                DailyTeamSummary.day_date >= start,
                DailyTeamSummary.day_date <= end,
            )
            .order_by(DailyTeamSummary.day_date.desc())
        ).all()
    )


def aggregate_summaries(summaries: Sequence[DailyTeamSummary]) -> dict[str, Any]:
    work_day_rows = [row for row in summaries if row.is_work_day and not row.is_holiday]
    total_expected = sum(row.expected_to_check_in for row in work_day_rows)
    total_checked_in = sum(row.checked_in_count for row in work_day_rows)
    readiness_rows = [row.avg_readiness_score for row in work_day_rows if row.avg_readiness_score is not None]

    return {
        "total_days": len(work_day_rows),
        "total_expected": total_expected,
        "total_checked_in": total_checked_in,
        "compliance_rate": round(total_checked_in / total_expected * 100, 2) if total_expected > 0 else None,
        "avg_readiness_score": round(sum(readiness_rows) / len(readiness_rows), 2) if readiness_rows else None,
        "total_green": sum(row.green_count for row in work_day_rows),
        "total_yellow": sum(row.yellow_count for row in work_day_rows),
        "total_red": sum(row.red_count for row in work_day_rows),
        "total_absent": sum(row.absent_count for row in work_day_rows),
        "total_excused": sum(row.excused_count for row in work_day_rows),
    }
