from __future__ import annotations

import unittest
from datetime import date

from attendance_engine.models import AbsenceStatus, AttendanceStatus
from attendance_engine.services.classifier import (
    DAY_POINTS,
    DayContext,
    DaySource,
    DayStatus,
    LeaveWindow,
    build_leave_windows,
    classify_day,
)
from attendance_engine.services.workdays import iter_days, parse_work_days

ALL_DAYS = parse_work_days("MON,TUE,WED,THU,FRI,SAT,SUN")
WEEKDAYS = parse_work_days(None)


def _ctx(**overrides) -> DayContext:  # type: ignore[no-untyped-def]
    values = {
        "today": date(2026, 1, 20),
        "baseline": date(2026, 1, 1),
        "work_days": WEEKDAYS,
    }
    values.update(overrides)
    return DayContext(**values)


class DayClassifierTests(unittest.TestCase):
    def test_non_required_days_are_not_classified(self) -> None:
        ctx = _ctx(holidays=frozenset({date(2026, 1, 7)}))
        self.assertIsNone(classify_day(date(2025, 12, 31), ctx))  # before baseline
        self.assertIsNone(classify_day(date(2026, 1, 10), ctx))  # Saturday
        self.assertIsNone(classify_day(date(2026, 1, 7), ctx))  # holiday

    def test_attendance_record_takes_priority_over_leave_and_absence(self) -> None:
        day = date(2026, 1, 6)
        ctx = _ctx(
            attendance={day: AttendanceStatus.GREEN},
            absences={day: AbsenceStatus.UNEXCUSED},
            leave_windows=[LeaveWindow(day, day)],
        )
        result = classify_day(day, ctx)
        self.assertEqual(result.status, DayStatus.GREEN)
        self.assertEqual(result.source, DaySource.ATTENDANCE)
        self.assertEqual(result.points, 100)

    def test_legacy_yellow_attendance_scores_as_green(self) -> None:
        day = date(2026, 1, 6)
        result = classify_day(day, _ctx(attendance={day: AttendanceStatus.YELLOW}))
        self.assertEqual(result.status, DayStatus.GREEN)
        self.assertEqual(result.breakdown_key, "green")

    def test_leave_window_is_inclusive_on_both_ends(self) -> None:
        ctx = _ctx(work_days=ALL_DAYS, leave_windows=[LeaveWindow(date(2026, 1, 10), date(2026, 1, 12))])
        for day in iter_days(date(2026, 1, 10), date(2026, 1, 12)):
            result = classify_day(day, ctx)
            self.assertEqual(result.status, DayStatus.EXCUSED)
            self.assertEqual(result.source, DaySource.LEAVE)
            self.assertFalse(result.is_counted)

        after = classify_day(date(2026, 1, 13), ctx)
        self.assertEqual(after.status, DayStatus.ABSENT)
        self.assertEqual(after.source, DaySource.IMPLICIT)

    def test_leave_beats_pending_absence(self) -> None:
        day = date(2026, 1, 8)
        ctx = _ctx(
            absences={day: AbsenceStatus.PENDING_JUSTIFICATION},
            leave_windows=[LeaveWindow(day, day, leave_type="SICK_LEAVE")],
        )
        self.assertEqual(classify_day(day, ctx).source, DaySource.LEAVE)

    def test_absence_statuses_map_to_points(self) -> None:
        ctx = _ctx(
            absences={
                date(2026, 1, 5): AbsenceStatus.EXCUSED,
                date(2026, 1, 6): AbsenceStatus.UNEXCUSED,
                date(2026, 1, 7): AbsenceStatus.PENDING_JUSTIFICATION,
            }
        )
        excused = classify_day(date(2026, 1, 5), ctx)
        unexcused = classify_day(date(2026, 1, 6), ctx)
        pending = classify_day(date(2026, 1, 7), ctx)

        self.assertEqual((excused.status, excused.points, excused.breakdown_key), (DayStatus.EXCUSED, None, "absence_excused"))
        self.assertEqual((unexcused.status, unexcused.points), (DayStatus.UNEXCUSED, 0))
        self.assertEqual((pending.status, pending.points, pending.is_counted), (DayStatus.PENDING, 0, True))

    def test_today_and_future_without_records_are_unclassified(self) -> None:
        ctx = _ctx(today=date(2026, 1, 8))
        self.assertEqual(classify_day(date(2026, 1, 7), ctx).status, DayStatus.ABSENT)
        self.assertIsNone(classify_day(date(2026, 1, 8), ctx))
        self.assertIsNone(classify_day(date(2026, 1, 9), ctx))

    def test_excused_is_the_only_uncounted_status(self) -> None:
        uncounted = {status for status, points in DAY_POINTS.items() if points is None}
        self.assertEqual(uncounted, {DayStatus.EXCUSED})
        self.assertEqual(set(DAY_POINTS), set(DayStatus))

    def test_invalid_leave_windows_are_dropped_with_warning(self) -> None:
        with self.assertLogs("attendance_engine.classifier", level="WARNING") as captured:
            windows = build_leave_windows(
                [
                    (date(2026, 1, 10), date(2026, 1, 12), "SICK_LEAVE", 1),
                    (date(2026, 1, 12), date(2026, 1, 10), "SICK_LEAVE", 2),
                    (None, date(2026, 1, 10), "OTHER", 3),
                ]
            )
        self.assertEqual([window.leave_id for window in windows], [1])
        self.assertEqual(len(captured.records), 2)


if __name__ == "__main__":
    unittest.main()
