from __future__ import annotations

import enum
import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from attendance_engine.audit import log_audit
from attendance_engine.errors import (
    AbsenceAlreadyJustifiedError,
    AbsenceAlreadyReviewedError,
    AbsenceNotFoundError,
    AbsenceNotJustifiedError,
    AbsenceNotOwnedError,
    ApiError,
    ReviewForbiddenError,
    ReviewOutOfScopeError,
)
from attendance_engine.models import (
    Absence,
    AbsenceReason,
    AbsenceStatus,
    AttendanceStatus,
    AuditActorType,
    DailyAttendance,
    Leave,
    LeaveStatus,
    NotificationType,
    Team,
    User,
)
from attendance_engine.security import AuthContext, Capability
from attendance_engine.services.daily_summary import recalculate_summaries_best_effort
from attendance_engine.services.notifications import notify_best_effort
from attendance_engine.services.workdays import normalize_ts

logger = logging.getLogger("attendance_engine.absences")

MAX_EXPLANATION_LENGTH = 1000
MAX_REVIEW_NOTES_LENGTH = 500


class ReviewAction(str, enum.Enum):
    EXCUSED = "EXCUSED"
    UNEXCUSED = "UNEXCUSED"


@dataclass(frozen=True, slots=True)
class JustificationItem:
    absence_id: int
    reason_category: AbsenceReason
    explanation: str


def _clean_explanation(value: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned or len(cleaned) > MAX_EXPLANATION_LENGTH:
        raise ApiError(
            status_code=422,
            code="INVALID_EXPLANATION",
            message=f"Explanation must be between 1 and {MAX_EXPLANATION_LENGTH} characters.",
        )
    return cleaned


def _clean_review_notes(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if len(cleaned) > MAX_REVIEW_NOTES_LENGTH:
        raise ApiError(
            status_code=422,
            code="INVALID_REVIEW_NOTES",
            message=f"Review notes must be at most {MAX_REVIEW_NOTES_LENGTH} characters.",
        )
    return cleaned or None


def _flip_attendance_to_excused(db: Session, *, user_id: int, absence_date: date) -> bool:
    attendance = db.scalar(
        select(DailyAttendance).where(
            DailyAttendance.user_id == user_id,
            DailyAttendance.day_date == absence_date,
        )
    )
    if attendance is None:
        return False
    attendance.status = AttendanceStatus.EXCUSED
    attendance.score = None
    attendance.is_counted = False
    return True


def justify_absences(
    db: Session,
    auth: AuthContext,
    items: Sequence[JustificationItem],
    *,
    now_utc: datetime | None = None,
) -> list[Absence]:
    """Attach worker justifications; every item is validated before any is written."""
    if not items:
        raise ApiError(status_code=422, code="EMPTY_JUSTIFICATION", message="At least one absence is required.")
    ids = [item.absence_id for item in items]
    if len(set(ids)) != len(ids):
        raise ApiError(status_code=422, code="DUPLICATE_ABSENCE_ID", message="Each absence can be justified once.")

    now = normalize_ts(now_utc)
    rows = {
        row.id: row
        for row in db.scalars(select(Absence).where(Absence.id.in_(ids)).with_for_update()).all()
    }
    cleaned: list[tuple[Absence, JustificationItem, str]] = []
    for item in items:
        absence = rows.get(item.absence_id)
        if absence is None:
            raise AbsenceNotFoundError(absence_id=item.absence_id)
        if absence.user_id != auth.user_id:
            raise AbsenceNotOwnedError(absence_id=absence.id)
        if absence.justified_at is not None:
            raise AbsenceAlreadyJustifiedError(absence_id=absence.id)
        if absence.status != AbsenceStatus.PENDING_JUSTIFICATION:
            raise AbsenceAlreadyReviewedError(absence_id=absence.id)
        cleaned.append((absence, item, _clean_explanation(item.explanation)))

    for absence, item, explanation in cleaned:
        absence.reason_category = AbsenceReason(item.reason_category)
        absence.explanation = explanation
        absence.justified_at = now
    db.commit()

    justified = [absence for absence, _, _ in cleaned]
    logger.info(
        "absences_justified",
        extra={"user_id": auth.user_id, "absence_ids": [absence.id for absence in justified]},
    )
    _notify_leaders_of_justification(db, auth, justified)
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=auth.user_id,
        action="ABSENCE_JUSTIFIED",
        company_id=auth.company_id,
        entity_type="absence",
        entity_id=",".join(str(absence.id) for absence in justified),
        details={"count": len(justified)},
    )
    return justified


def _notify_leaders_of_justification(db: Session, auth: AuthContext, absences: Sequence[Absence]) -> None:
    by_team: dict[int, list[Absence]] = defaultdict(list)
    for absence in absences:
        if absence.team_id is not None:
            by_team[absence.team_id].append(absence)

    worker = db.get(User, auth.user_id)
    worker_name = worker.full_name if worker is not None else "A worker"
    for team_id, team_absences in by_team.items():
        team = db.get(Team, team_id)
        if team is None or team.leader_id is None:
            continue
        count = len(team_absences)
        notify_best_effort(
            db,
            user_id=team.leader_id,
            company_id=auth.company_id,
            notification_type=NotificationType.ABSENCE_JUSTIFIED,
            title="Absence Justification Submitted",
            message=f"{worker_name} submitted {count} absence justification{'s' if count != 1 else ''} for review.",
            data={"worker_id": auth.user_id, "absence_ids": [absence.id for absence in team_absences]},
        )


def _can_review(auth: AuthContext) -> bool:
    return auth.can(Capability.REVIEW_ANY_ABSENCE) or auth.can(Capability.REVIEW_TEAM_ABSENCES)


def _ensure_review_scope(db: Session, auth: AuthContext, absence: Absence) -> None:
    if auth.can(Capability.REVIEW_ANY_ABSENCE):
        return
    team_id = absence.team_id
    if team_id is None:
        owner = db.get(User, absence.user_id)
        team_id = owner.team_id if owner is not None else None
    team = db.get(Team, team_id) if team_id is not None else None
    if team is None or team.leader_id != auth.user_id:
        raise ReviewOutOfScopeError(absence_id=absence.id)


def review_absence(
    db: Session,
    auth: AuthContext,
    absence_id: int,
    action: ReviewAction | str,
    *,
    notes: str | None = None,
    now_utc: datetime | None = None,
) -> Absence:
    if not _can_review(auth):
        raise ReviewForbiddenError(absence_id=absence_id)
    decision = ReviewAction(action)
    review_notes = _clean_review_notes(notes)

    absence = db.scalar(select(Absence).where(Absence.id == absence_id).with_for_update())
    if absence is None or absence.company_id != auth.company_id:
        raise AbsenceNotFoundError(absence_id=absence_id)
    _ensure_review_scope(db, auth, absence)
    if absence.status != AbsenceStatus.PENDING_JUSTIFICATION:
        raise AbsenceAlreadyReviewedError(absence_id=absence.id)
    if absence.justified_at is None:
        raise AbsenceNotJustifiedError(absence_id=absence.id)

    absence.status = AbsenceStatus(decision.value)
    absence.reviewed_by_id = auth.user_id
    absence.reviewed_at = normalize_ts(now_utc)
    absence.review_notes = review_notes
    attendance_flipped = False
    if decision == ReviewAction.EXCUSED:
        attendance_flipped = _flip_attendance_to_excused(
            db,
            user_id=absence.user_id,
            absence_date=absence.absence_date,
        )
    db.commit()

    logger.info(
        "absence_reviewed",
        extra={
            "absence_id": absence.id,
            "user_id": absence.user_id,
            "reviewer_id": auth.user_id,
            "decision": decision.value,
            "attendance_flipped": attendance_flipped,
        },
    )
    _apply_review_side_effects(db, auth, absence, decision)
    return absence


def _apply_review_side_effects(db: Session, auth: AuthContext, absence: Absence, decision: ReviewAction) -> None:
    if absence.team_id is not None:
        recalculate_summaries_best_effort(db, [(absence.team_id, absence.absence_date)])

    excused = decision == ReviewAction.EXCUSED
    day_text = absence.absence_date.strftime("%b %d, %Y")
    notify_best_effort(
        db,
        user_id=absence.user_id,
        company_id=absence.company_id,
        notification_type=NotificationType.ABSENCE_EXCUSED if excused else NotificationType.ABSENCE_UNEXCUSED,
        title="Absence Excused" if excused else "Absence Marked Unexcused",
        message=(
            f"Your absence on {day_text} was excused and will not affect your score."
            if excused
            else f"Your absence on {day_text} was marked unexcused and counts as 0 points."
        ),
        data={"absence_id": absence.id, "review_notes": absence.review_notes},
    )
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=auth.user_id,
        action=f"ABSENCE_{decision.value}",
        company_id=absence.company_id,
        entity_type="absence",
        entity_id=absence.id,
        details={"user_id": absence.user_id, "absence_date": absence.absence_date.isoformat()},
    )


def excuse_absences_for_leave(
    db: Session,
    leave: Leave,
    *,
    reviewer_id: int | None,
    now_utc: datetime | None = None,
) -> list[Absence]:
    """Auto-excuse pending absences covered by an approved leave.

    Terminal absences are left alone. The caller owns the transaction.
    """
    if leave.status != LeaveStatus.APPROVED or leave.start_date is None or leave.end_date is None:
        return []
    if leave.end_date < leave.start_date:
        return []

    now = normalize_ts(now_utc)
    absences = list(
        db.scalars(
            select(Absence).where(
                Absence.user_id == leave.user_id,
                Absence.status == AbsenceStatus.PENDING_JUSTIFICATION,
                Absence.absence_date >= leave.start_date,
                Absence.absence_date <= leave.end_date,
            )
        ).all()
    )
    for absence in absences:
        absence.status = AbsenceStatus.EXCUSED
        absence.reviewed_by_id = reviewer_id
        absence.reviewed_at = now
        absence.review_notes = f"Auto-excused: covered by approved leave ({leave.type.value})"
        _flip_attendance_to_excused(db, user_id=absence.user_id, absence_date=absence.absence_date)
    return absences


def list_pending_justifications(db: Session, user_id: int) -> list[Absence]:
    return list(
        db.scalars(
            select(Absence)
            .where(
                Absence.user_id == user_id,
                Absence.status == AbsenceStatus.PENDING_JUSTIFICATION,
                Absence.justified_at.is_(None),
            )
            .order_by(Absence.absence_date.asc())
        ).all()
    )


def has_blocking_absences(db: Session, user_id: int) -> bool:
    return bool(list_pending_justifications(db, user_id))


def list_pending_reviews(db: Session, auth: AuthContext, *, team_id: int | None = None) -> list[Absence]:
    if not _can_review(auth):
        raise ReviewForbiddenError()

    stmt = select(Absence).where(
        Absence.company_id == auth.company_id,
        Absence.status == AbsenceStatus.PENDING_JUSTIFICATION,
        Absence.justified_at.is_not(None),
    )
    if not auth.can(Capability.REVIEW_ANY_ABSENCE):
        led_team_ids = db.scalars(
            select(Team.id).where(Team.company_id == auth.company_id, Team.leader_id == auth.user_id)
        ).all()
        if team_id is not None and team_id not in led_team_ids:
            raise ReviewOutOfScopeError()
        stmt = stmt.where(Absence.team_id.in_(led_team_ids if team_id is None else [team_id]))
    elif team_id is not None:
        stmt = stmt.where(Absence.team_id == team_id)

    return list(db.scalars(stmt.order_by(Absence.justified_at.asc(), Absence.id.asc())).all())


def list_absence_history(db: Session, user_id: int, *, limit: int = 50) -> list[Absence]:
    return list(
        db.scalars(
            select(Absence)
            .where(Absence.user_id == user_id)
            .order_by(Absence.absence_date.desc())
            .limit(max(1, min(limit, 500)))
        ).all()
    )


def absence_stats(
    db: Session,
    *,
    company_id: int,
    user_id: int | None = None,
    team_id: int | None = None,
) -> dict[str, Any]:
    justified_expr = Absence.justified_at.is_not(None)
    stmt = (
        select(Absence.status, justified_expr.label("justified"), func.count(Absence.id))
        .where(Absence.company_id == company_id)
        .group_by(Absence.status, justified_expr)
    )
    if user_id is not None:
        stmt = stmt.where(Absence.user_id == user_id)
    if team_id is not None:
        stmt = stmt.where(Absence.team_id == team_id)

    stats = {
        "pending_justification": 0,
        "pending_review": 0,
        "excused": 0,
        "unexcused": 0,
        "total": 0,
    }
    for status, justified, count in db.execute(stmt).all():
        count = int(count)
        stats["total"] += count
        if status == AbsenceStatus.EXCUSED:
            stats["excused"] += count
        elif status == AbsenceStatus.UNEXCUSED:
            stats["unexcused"] += count
        elif justified:
            stats["pending_review"] += count
        else:
            stats["pending_justification"] += count
    return stats
