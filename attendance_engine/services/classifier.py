from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date

from attendance_engine.models import AbsenceStatus, AttendanceStatus
from attendance_engine.services.workdays import is_work_day

logger = logging.getLogger("attendance_engine.classifier")


class DayStatus(str, enum.Enum):
    GREEN = "GREEN"
    ABSENT = "ABSENT"
    EXCUSED = "EXCUSED"
    UNEXCUSED = "UNEXCUSED"
    PENDING = "PENDING"


class DaySource(str, enum.Enum):
    ATTENDANCE = "ATTENDANCE"
    LEAVE = "LEAVE"
    ABSENCE = "ABSENCE"
    IMPLICIT = "IMPLICIT"


STORED_ATTENDANCE_STATUS: dict[AttendanceStatus, DayStatus] = {
    AttendanceStatus.GREEN: DayStatus.GREEN,
    AttendanceStatus.YELLOW: DayStatus.GREEN,
    AttendanceStatus.ABSENT: DayStatus.ABSENT,
    AttendanceStatus.EXCUSED: DayStatus.EXCUSED,
}

STORED_ABSENCE_STATUS: dict[AbsenceStatus, DayStatus] = {
    AbsenceStatus.EXCUSED: DayStatus.EXCUSED,
    AbsenceStatus.UNEXCUSED: DayStatus.UNEXCUSED,
    AbsenceStatus.PENDING_JUSTIFICATION: DayStatus.PENDING,
}

# None means the day is excluded from the score entirely.
DAY_POINTS: dict[DayStatus, int | None] = {
    DayStatus.GREEN: 100,
    DayStatus.ABSENT: 0,
    DayStatus.UNEXCUSED: 0,
    DayStatus.PENDING: 0,
    DayStatus.EXCUSED: None,
}

BREAKDOWN_KEYS: dict[tuple[DaySource, DayStatus], str] = {
    (DaySource.ATTENDANCE, DayStatus.GREEN): "green",
    (DaySource.ATTENDANCE, DayStatus.ABSENT): "absent",
    (DaySource.ATTENDANCE, DayStatus.EXCUSED): "excused",
    (DaySource.LEAVE, DayStatus.EXCUSED): "excused",
    (DaySource.ABSENCE, DayStatus.EXCUSED): "absence_excused",
    (DaySource.ABSENCE, DayStatus.UNEXCUSED): "absence_unexcused",
    (DaySource.ABSENCE, DayStatus.PENDING): "absence_pending",
    (DaySource.IMPLICIT, DayStatus.ABSENT): "absent",
}


@dataclass(frozen=True, slots=True)
class LeaveWindow:
    start: date
    end: date
    leave_type: str | None = None
    leave_id: int | None = None

    def covers(self, day: date) -> bool:
        return self.start <= day <= self.end


def build_leave_windows(
    rows: Iterable[tuple[date | None, date | None, str | None, int | None]],
) -> list[LeaveWindow]:
    windows: list[LeaveWindow] = []
    for start, end, leave_type, leave_id in rows:
        if start is None or end is None or end < start:
            logger.warning(
                "leave_window_ignored",
                extra={"leave_id": leave_id, "start_date": start, "end_date": end},
            )
            continue
        windows.append(LeaveWindow(start=start, end=end, leave_type=leave_type, leave_id=leave_id))
    return windows


@dataclass(frozen=True, slots=True)
class DayClassification:
    day: date
    status: DayStatus
    source: DaySource

    @property
    def points(self) -> int | None:
        return DAY_POINTS[self.status]

    @property
    def is_counted(self) -> bool:
        return self.points is not None

    @property
    def breakdown_key(self) -> str:
        return BREAKDOWN_KEYS[(self.source, self.status)]


@dataclass(slots=True)
class DayContext:
    """Everything needed to classify any day of one worker, already loaded."""

    today: date
    baseline: date
    work_days: frozenset[int]
    holidays: frozenset[date] = frozenset()
    attendance: Mapping[date, AttendanceStatus] = field(default_factory=dict)
    absences: Mapping[date, AbsenceStatus] = field(default_factory=dict)
    leave_windows: Sequence[LeaveWindow] = ()

    def is_required_day(self, day: date) -> bool:
        return day >= self.baseline and is_work_day(day, self.work_days) and day not in self.holidays

    def leave_for(self, day: date) -> LeaveWindow | None:
        for window in self.leave_windows:
            if window.covers(day):
                return window
        return None


def classify_day(day: date, ctx: DayContext) -> DayClassification | None:
    if not ctx.is_required_day(day):
        return None

    stored_attendance = ctx.attendance.get(day)
    if stored_attendance is not None:
        mapped = STORED_ATTENDANCE_STATUS.get(AttendanceStatus(stored_attendance))
        if mapped is not None:
            return DayClassification(day=day, status=mapped, source=DaySource.ATTENDANCE)
        logger.warning("attendance_status_unmapped", extra={"day": day, "status": stored_attendance})

    if ctx.leave_for(day) is not None:
        return DayClassification(day=day, status=DayStatus.EXCUSED, source=DaySource.LEAVE)

    stored_absence = ctx.absences.get(day)
    if stored_absence is not None:
        return DayClassification(
            day=day,
            status=STORED_ABSENCE_STATUS[AbsenceStatus(stored_absence)],
            source=DaySource.ABSENCE,
        )

    if day < ctx.today:
        return DayClassification(day=day, status=DayStatus.ABSENT, source=DaySource.IMPLICIT)

    return None
