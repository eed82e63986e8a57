from __future__ import annotations

import unittest
from datetime import date

from attendance_engine.models import AbsenceStatus, AttendanceStatus, LeaveStatus, LeaveType
from attendance_engine.services.classifier import DayContext, LeaveWindow
from attendance_engine.services.performance import (
    aggregate_performance,
    calculate_performance_score,
    get_attendance_history,
    grade_for_score,
)
from attendance_engine.services.workdays import parse_work_days

from engine_fixtures import (
    add_absence,
    add_attendance,
    add_company,
    add_holiday,
    add_leave,
    add_team,
    add_user,
    make_session,
    utc,
)


class AggregatePerformanceTests(unittest.TestCase):
    def _mixed_context(self) -> DayContext:
        # Jan 5-16 2026 holds ten weekdays.
        return DayContext(
            today=date(2026, 1, 20),
            baseline=date(2026, 1, 1),
            work_days=parse_work_days(None),
            attendance={
                date(2026, 1, 5): AttendanceStatus.GREEN,
                date(2026, 1, 6): AttendanceStatus.GREEN,
                date(2026, 1, 7): AttendanceStatus.YELLOW,
                date(2026, 1, 8): AttendanceStatus.ABSENT,
                date(2026, 1, 12): AttendanceStatus.EXCUSED,
            },
            absences={
                date(2026, 1, 15): AbsenceStatus.EXCUSED,
                date(2026, 1, 16): AbsenceStatus.EXCUSED,
            },
            leave_windows=[LeaveWindow(date(2026, 1, 13), date(2026, 1, 14))],
        )

    def test_three_green_two_absent_five_excused_scores_sixty(self) -> None:
        result = aggregate_performance(self._mixed_context(), date(2026, 1, 5), date(2026, 1, 16))

        self.assertEqual(result.work_days, 10)
        self.assertEqual(result.total_days, 10)
        self.assertEqual(result.counted_days, 5)
        self.assertEqual(result.total_score, 300)
        self.assertEqual(result.score, 60.0)
        self.assertEqual(
            result.breakdown.to_dict(),
            {
                "green": 3,
                "absent": 2,
                "excused": 3,
                "absence_excused": 2,
                "absence_unexcused": 0,
                "absence_pending": 0,
            },
        )

    def test_range_is_clipped_to_baseline(self) -> None:
        ctx = DayContext(today=date(2026, 1, 20), baseline=date(2026, 1, 8), work_days=parse_work_days(None))
        result = aggregate_performance(ctx, date(2026, 1, 5), date(2026, 1, 9))
        self.assertEqual(result.work_days, 2)
        self.assertEqual(result.breakdown.absent, 2)
        self.assertEqual(result.score, 0.0)

    def test_no_counted_days_scores_zero(self) -> None:
        ctx = DayContext(
            today=date(2026, 1, 20),
            baseline=date(2026, 1, 1),
            work_days=parse_work_days(None),
            leave_windows=[LeaveWindow(date(2026, 1, 5), date(2026, 1, 9))],
        )
        result = aggregate_performance(ctx, date(2026, 1, 5), date(2026, 1, 9))
        self.assertEqual(result.counted_days, 0)
        self.assertEqual(result.score, 0.0)
        self.assertEqual(result.breakdown.excused, 5)

    def test_rounding_happens_once_at_the_end(self) -> None:
        ctx = DayContext(
            today=date(2026, 1, 20),
            baseline=date(2026, 1, 1),
            work_days=parse_work_days(None),
            attendance={date(2026, 1, 5): AttendanceStatus.GREEN},
        )
        result = aggregate_performance(ctx, date(2026, 1, 5), date(2026, 1, 7))
        self.assertEqual(result.score, 33.3)

    def test_grade_bands(self) -> None:
        self.assertEqual(grade_for_score(90.0), ("A", "Excellent"))
        self.assertEqual(grade_for_score(89.9), ("B", "Good"))
        self.assertEqual(grade_for_score(70.0), ("C", "Fair"))
        self.assertEqual(grade_for_score(12.5), ("D", "Poor"))


class PerformanceServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.company = add_company(self.db)
        self.team = add_team(self.db, self.company, work_days="MON,TUE,WED,THU,FRI,SAT,SUN")
        self.worker = add_user(
            self.db,
            self.company,
            team=self.team,
            joined_at=utc(2026, 1, 1, 2),
        )

    def tearDown(self) -> None:
        self.db.close()

    def test_leave_window_excuses_every_day_it_covers(self) -> None:
        add_leave(self.db, self.worker, date(2026, 1, 10), date(2026, 1, 12))
        add_holiday(self.db, self.company, date(2026, 1, 14))
        add_attendance(self.db, self.worker, date(2026, 1, 13))

        result = calculate_performance_score(
            self.db,
            self.worker.id,
            date(2026, 1, 10),
            date(2026, 1, 15),
            now_utc=utc(2026, 1, 20, 4),
        )

        self.assertEqual(result.work_days, 5)
        self.assertEqual(result.breakdown.excused, 3)
        self.assertEqual(result.breakdown.green, 1)
        self.assertEqual(result.breakdown.absent, 1)
        self.assertEqual(result.counted_days, 2)
        self.assertEqual(result.score, 50.0)

    def test_pending_leave_does_not_excuse(self) -> None:
        add_leave(self.db, self.worker, date(2026, 1, 10), date(2026, 1, 10), status=LeaveStatus.PENDING)
        result = calculate_performance_score(
            self.db,
            self.worker.id,
            date(2026, 1, 10),
            date(2026, 1, 10),
            now_utc=utc(2026, 1, 20, 4),
        )
        self.assertEqual(result.breakdown.absent, 1)
        self.assertEqual(result.counted_days, 1)

    def test_worker_without_team_gets_empty_score(self) -> None:
        loner = add_user(self.db, self.company, full_name="Loner")
        result = calculate_performance_score(self.db, loner.id, date(2026, 1, 1), date(2026, 1, 31))
        self.assertEqual(result.score, 0.0)
        self.assertEqual(result.work_days, 0)

    def test_attendance_history_is_newest_first_with_sources(self) -> None:
        add_attendance(self.db, self.worker, date(2026, 1, 2))
        add_leave(self.db, self.worker, date(2026, 1, 3), date(2026, 1, 3), leave_type=LeaveType.PERSONAL_LEAVE)
        absence = add_absence(self.db, self.worker, date(2026, 1, 4), AbsenceStatus.UNEXCUSED)

        history = get_attendance_history(self.db, self.worker.id, days=4, now_utc=utc(2026, 1, 5, 4))

        # Jan 5 is "today" with no record and stays unclassified.
        self.assertEqual([item["date"] for item in history], [date(2026, 1, 4), date(2026, 1, 3), date(2026, 1, 2)])
        self.assertEqual(history[0]["status"], "UNEXCUSED")
        self.assertEqual(history[0]["absence_id"], absence.id)
        self.assertEqual(history[1]["source"], "LEAVE")
        self.assertEqual(history[1]["leave_type"], "PERSONAL_LEAVE")
        self.assertIsNone(history[1]["score"])
        self.assertEqual(history[2]["status"], "GREEN")
        self.assertEqual(history[2]["score"], 100)


if __name__ == "__main__":
    unittest.main()
