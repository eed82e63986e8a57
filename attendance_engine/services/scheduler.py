from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from attendance_engine.audit import log_system_audit
from attendance_engine.db import SessionLocal
from attendance_engine.services.finalizer import SweepResult, finalize_yesterday, process_shift_end
from attendance_engine.services.workdays import normalize_ts

logger = logging.getLogger("attendance_engine.scheduler")


@dataclass(frozen=True, slots=True)
class HourlyTick:
    """Fires once per hour at ``minute`` past the hour (UTC wall clock)."""

    minute: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.minute <= 59:
            raise ValueError(f"Tick minute out of range: {self.minute}")

    def next_fire_at(self, now_utc: datetime) -> datetime:
        now = normalize_ts(now_utc)
        candidate = now.replace(minute=self.minute, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(hours=1)
        return candidate

    def seconds_until_next(self, now_utc: datetime) -> float:
        now = normalize_ts(now_utc)
        return max(0.0, (self.next_fire_at(now) - now).total_seconds())


@dataclass(slots=True)
class TickResult:
    fired_at: datetime
    yesterday: SweepResult | None = None
    shift_end: SweepResult | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def marked_absent(self) -> int:
        return sum(result.marked_absent for result in (self.yesterday, self.shift_end) if result is not None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fired_at": self.fired_at.isoformat(),
            "yesterday": self.yesterday.to_dict() if self.yesterday is not None else None,
            "shift_end": self.shift_end.to_dict() if self.shift_end is not None else None,
            "errors": list(self.errors),
        }


def run_attendance_tick(now_utc: datetime, db: Session | None = None) -> TickResult:
    """Run both sweeps for one logical tick; a failing sweep never blocks the other."""
    if db is None:
        with SessionLocal() as managed_db:
            return run_attendance_tick(now_utc, db=managed_db)

    now = normalize_ts(now_utc)
    result = TickResult(fired_at=now)
    try:
        result.yesterday = finalize_yesterday(db, now)
    except Exception:
        db.rollback()
        result.errors.append("YESTERDAY_SWEEP_FAILED")
        logger.exception("attendance_tick_yesterday_failed", extra={"fired_at": now})

    try:
        result.shift_end = process_shift_end(db, now)
    except Exception:
        db.rollback()
        result.errors.append("SHIFT_END_SWEEP_FAILED")
        logger.exception("attendance_tick_shift_end_failed", extra={"fired_at": now})

    if result.marked_absent or result.errors:
        log_system_audit(db, action="ATTENDANCE_TICK", details=result.to_dict())
    return result
