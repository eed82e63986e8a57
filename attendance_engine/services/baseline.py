from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from attendance_engine.models import Checkin, User
from attendance_engine.services.workdays import ensure_utc, local_date


def resolve_baseline(
    *,
    first_checkin_day: date | None,
    team_joined_day: date | None,
    created_day: date,
) -> date:
    """First day a worker is required to check in.

    The join day itself is never required: a worker who joins mid-shift
    starts the next day unless they already checked in.
    """
    if first_checkin_day is not None:
        return first_checkin_day
    if team_joined_day is not None:
        return team_joined_day + timedelta(days=1)
    return created_day + timedelta(days=1)


def first_checkin_times(db: Session, user_ids: Iterable[int]) -> dict[int, datetime]:
    ids = sorted(set(user_ids))
    if not ids:
        return {}
    rows = db.execute(
        select(Checkin.user_id, func.min(Checkin.created_at))
        .where(Checkin.user_id.in_(ids))
        .group_by(Checkin.user_id)
    ).all()
    return {int(user_id): ensure_utc(first_at) for user_id, first_at in rows if first_at is not None}


def baseline_for_user(
    user: User,
    tz: ZoneInfo,
    *,
    first_checkin_at: datetime | None,
) -> date:
    return resolve_baseline(
        first_checkin_day=local_date(first_checkin_at, tz) if first_checkin_at is not None else None,
        team_joined_day=local_date(user.team_joined_at, tz) if user.team_joined_at is not None else None,
        created_day=local_date(user.created_at, tz),
    )


def load_user_baseline(db: Session, user: User, tz: ZoneInfo) -> date:
    first_checkin_at = first_checkin_times(db, [user.id]).get(user.id)
    return baseline_for_user(user, tz, first_checkin_at=first_checkin_at)
