from __future__ import annotations

import logging
from calendar import monthrange
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.audit import log_audit
from attendance_engine.errors import ApiError
from attendance_engine.models import (
    AuditActorType,
    Company,
    Leave,
    LeaveStatus,
    LeaveType,
    NotificationType,
    Team,
    User,
)
from attendance_engine.security import AuthContext, Capability
from attendance_engine.services.absences import excuse_absences_for_leave
from attendance_engine.services.daily_summary import recalculate_summaries_best_effort
from attendance_engine.services.notifications import notify_best_effort
from attendance_engine.services.workdays import iter_days, local_date, normalize_ts, resolve_timezone

logger = logging.getLogger("attendance_engine.leaves")


def _get_company_user(db: Session, auth: AuthContext, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None or user.company_id != auth.company_id:
        raise ApiError(status_code=404, code="WORKER_NOT_FOUND", message="Worker not found.")
    return user


def _ensure_can_manage(db: Session, auth: AuthContext, user: User) -> None:
    if not auth.can(Capability.MANAGE_LEAVES):
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    if auth.can(Capability.REVIEW_ANY_ABSENCE):
        return
    team = db.get(Team, user.team_id) if user.team_id is not None else None
    if team is None or team.leader_id != auth.user_id:
        raise ApiError(status_code=403, code="LEAVE_OUT_OF_SCOPE", message="You can only manage leaves of your own team.")


def _get_leave(db: Session, auth: AuthContext, leave_id: int) -> Leave:
    leave = db.get(Leave, leave_id)
    if leave is None or leave.company_id != auth.company_id:
        raise ApiError(status_code=404, code="LEAVE_NOT_FOUND", message="Leave not found.")
    return leave


def create_leave(
    db: Session,
    auth: AuthContext,
    *,
    user_id: int,
    leave_type: LeaveType,
    start_date: date,
    end_date: date,
    reason: str | None = None,
) -> Leave:
    user = _get_company_user(db, auth, user_id)
    if user.id != auth.user_id:
        _ensure_can_manage(db, auth, user)

    if end_date < start_date:
        raise ApiError(
            status_code=422,
            code="INVALID_LEAVE_WINDOW",
            message="end_date must be greater than or equal to start_date",
        )

    leave = Leave(
        user_id=user.id,
        company_id=user.company_id,
        type=LeaveType(leave_type),
        status=LeaveStatus.PENDING,
        start_date=start_date,
        end_date=end_date,
        reason=reason,
    )
    db.add(leave)
    db.commit()
    db.refresh(leave)
    return leave


def list_leaves(
    db: Session,
    auth: AuthContext,
    *,
    user_id: int | None,
    status: LeaveStatus | None = None,
    year: int | None = None,
    month: int | None = None,
) -> list[Leave]:
    if (year is None) != (month is None):
        raise ApiError(
            status_code=422,
            code="INVALID_PERIOD",
            message="year and month must be provided together",
        )

    stmt = select(Leave).where(Leave.company_id == auth.company_id).order_by(Leave.start_date.asc(), Leave.id.asc())
    if user_id is not None:
        stmt = stmt.where(Leave.user_id == user_id)
    if status is not None:
        stmt = stmt.where(Leave.status == status)

    if year is not None and month is not None:
        days_in_month = monthrange(year, month)[1]
        start = date(year, month, 1)
        end = date(year, month, days_in_month)
        stmt = stmt.where(
            Leave.start_date <= end,
            Leave.end_date >= start,
        )

    return list(db.scalars(stmt).all())


def approve_leave(
    db: Session,
    auth: AuthContext,
    leave_id: int,
    *,
    note: str | None = None,
    now_utc: datetime | None = None,
) -> Leave:
    """Approve a pending leave and reconcile days already finalized inside it."""
    leave = _get_leave(db, auth, leave_id)
    user = _get_company_user(db, auth, leave.user_id)
    _ensure_can_manage(db, auth, user)
    if leave.status != LeaveStatus.PENDING:
        raise ApiError(status_code=409, code="LEAVE_ALREADY_REVIEWED", message="Leave has already been reviewed.")

    now = normalize_ts(now_utc)
    leave.status = LeaveStatus.APPROVED
    leave.reviewed_by_id = auth.user_id
    leave.reviewed_at = now
    leave.review_note = note
    excused = excuse_absences_for_leave(db, leave, reviewer_id=auth.user_id, now_utc=now)
    db.commit()

    logger.info(
        "leave_approved",
        extra={
            "leave_id": leave.id,
            "user_id": leave.user_id,
            "auto_excused_absence_ids": [absence.id for absence in excused],
        },
    )
    _recalculate_leave_window(db, leave, user, now)
    notify_best_effort(
        db,
        user_id=leave.user_id,
        company_id=leave.company_id,
        notification_type=NotificationType.LEAVE_APPROVED,
        title="Leave Approved",
        message=f"Your leave from {leave.start_date} to {leave.end_date} was approved.",
        data={"leave_id": leave.id, "auto_excused_absences": len(excused)},
    )
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=auth.user_id,
        action="LEAVE_APPROVED",
        company_id=leave.company_id,
        entity_type="leave",
        entity_id=leave.id,
        details={"auto_excused_absence_ids": [absence.id for absence in excused]},
    )
    return leave


def reject_leave(
    db: Session,
    auth: AuthContext,
    leave_id: int,
    *,
    note: str | None = None,
    now_utc: datetime | None = None,
) -> Leave:
    leave = _get_leave(db, auth, leave_id)
    user = _get_company_user(db, auth, leave.user_id)
    _ensure_can_manage(db, auth, user)
    if leave.status != LeaveStatus.PENDING:
        raise ApiError(status_code=409, code="LEAVE_ALREADY_REVIEWED", message="Leave has already been reviewed.")

    leave.status = LeaveStatus.REJECTED
    leave.reviewed_by_id = auth.user_id
    leave.reviewed_at = normalize_ts(now_utc)
    leave.review_note = note
    db.commit()

    notify_best_effort(
        db,
        user_id=leave.user_id,
        company_id=leave.company_id,
        notification_type=NotificationType.LEAVE_REJECTED,
        title="Leave Rejected",
        message=f"Your leave from {leave.start_date} to {leave.end_date} was rejected.",
        data={"leave_id": leave.id},
    )
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=auth.user_id,
        action="LEAVE_REJECTED",
        company_id=leave.company_id,
        entity_type="leave",
        entity_id=leave.id,
    )
    return leave


def delete_leave(db: Session, auth: AuthContext, leave_id: int) -> None:
    leave = _get_leave(db, auth, leave_id)
    if leave.user_id != auth.user_id or leave.status != LeaveStatus.PENDING:
        _ensure_can_manage(db, auth, _get_company_user(db, auth, leave.user_id))
    if leave.status == LeaveStatus.APPROVED:
        raise ApiError(
            status_code=409,
            code="LEAVE_ALREADY_APPROVED",
            message="Approved leaves cannot be deleted.",
        )

    db.delete(leave)
    db.commit()


def _recalculate_leave_window(db: Session, leave: Leave, user: User, now: datetime) -> None:
    if user.team_id is None or leave.start_date is None or leave.end_date is None:
        return
    company = db.get(Company, user.company_id)
    today = local_date(now, resolve_timezone(company.timezone if company is not None else None))
    end = min(leave.end_date, today)
    recalculate_summaries_best_effort(db, [(user.team_id, day) for day in iter_days(leave.start_date, end)])
