from __future__ import annotations

import unittest
from datetime import date, time
from unittest.mock import patch

from sqlalchemy import func, select

from attendance_engine.models import (
    Absence,
    AbsenceStatus,
    AttendanceStatus,
    DailyAttendance,
    DailyTeamSummary,
    UserRole,
)
from attendance_engine.services.baseline import baseline_for_user
from attendance_engine.services.finalizer import (
    WorkerOutcome,
    finalize_worker_day,
    finalize_yesterday,
    process_shift_end,
)
from attendance_engine.services.workdays import resolve_timezone

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

# 05:00 on Saturday Jan 3 2026 in Manila (UTC+8).
SWEEP_NOW = utc(2026, 1, 2, 21)
FRIDAY = date(2026, 1, 2)


class FinalizeYesterdayTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.company = add_company(self.db)
        self.team = add_team(self.db, self.company)
        self.worker = add_user(self.db, self.company, team=self.team, joined_at=utc(2025, 12, 1))

    def tearDown(self) -> None:
        self.db.close()

    def _count(self, model) -> int:  # type: ignore[no-untyped-def]
        return self.db.scalar(select(func.count()).select_from(model))

    def test_marks_missing_worker_absent_with_pending_absence(self) -> None:
        result = finalize_yesterday(self.db, SWEEP_NOW)

        self.assertEqual(result.companies_processed, 1)
        self.assertEqual(result.marked_absent, 1)
        self.assertEqual(result.teams_processed, 1)
        attendance = self.db.scalar(select(DailyAttendance))
        self.assertEqual(attendance.day_date, FRIDAY)
        self.assertEqual(attendance.status, AttendanceStatus.ABSENT)
        self.assertEqual(attendance.score, 0)
        self.assertTrue(attendance.is_counted)
        self.assertEqual(attendance.scheduled_start, "08:00")
        absence = self.db.scalar(select(Absence))
        self.assertEqual(absence.absence_date, FRIDAY)
        self.assertEqual(absence.status, AbsenceStatus.PENDING_JUSTIFICATION)
        self.assertIsNone(absence.justified_at)

        summary = self.db.scalar(select(DailyTeamSummary))
        self.assertEqual(summary.day_date, FRIDAY)
        self.assertEqual(summary.absent_count, 1)
        self.assertEqual(summary.expected_to_check_in, 1)
        self.assertEqual(summary.compliance_rate, 0.0)

    def test_running_twice_is_idempotent(self) -> None:
        finalize_yesterday(self.db, SWEEP_NOW)
        second = finalize_yesterday(self.db, SWEEP_NOW)

        self.assertEqual(second.marked_absent, 0)
        self.assertEqual(second.skipped, 1)
        self.assertEqual(self._count(DailyAttendance), 1)
        self.assertEqual(self._count(Absence), 1)
        self.assertEqual(self._count(DailyTeamSummary), 1)

    def test_only_runs_at_the_configured_local_hour(self) -> None:
        skipped = finalize_yesterday(self.db, utc(2026, 1, 2, 22))
        self.assertEqual(skipped.companies_processed, 0)
        self.assertEqual(self._count(DailyAttendance), 0)

        forced = finalize_yesterday(self.db, utc(2026, 1, 2, 22), force=True)
        self.assertEqual(forced.marked_absent, 1)

    def test_gate_uses_each_company_timezone(self) -> None:
        london = add_company(self.db, name="London", timezone_name="Europe/London")
        london_team = add_team(self.db, london)
        add_user(self.db, london, team=london_team, joined_at=utc(2025, 12, 1))

        result = finalize_yesterday(self.db, utc(2026, 1, 3, 5))

        self.assertEqual(result.companies_processed, 1)
        self.assertEqual(result.marked_absent, 1)
        absence = self.db.scalar(select(Absence))
        self.assertEqual(absence.company_id, london.id)

    def test_company_scope_leaves_other_companies_untouched(self) -> None:
        other = add_company(self.db, name="Other")
        other_team = add_team(self.db, other)
        other_worker = add_user(self.db, other, team=other_team, joined_at=utc(2025, 12, 1))

        result = finalize_yesterday(self.db, SWEEP_NOW, force=True, company_id=self.company.id)

        self.assertEqual(result.companies_processed, 1)
        self.assertEqual(result.marked_absent, 1)
        self.assertEqual(self.db.scalars(select(Absence.user_id)).all(), [self.worker.id])
        self.assertIsNone(self.db.scalar(select(DailyAttendance).where(DailyAttendance.user_id == other_worker.id)))

    def test_holiday_skips_the_whole_company(self) -> None:
        add_holiday(self.db, self.company, FRIDAY)
        result = finalize_yesterday(self.db, SWEEP_NOW)
        self.assertEqual(result.companies_processed, 1)
        self.assertEqual(result.marked_absent, 0)
        self.assertEqual(self._count(Absence), 0)

    def test_safeguards_skip_workers(self) -> None:
        checked_in = add_user(self.db, self.company, team=self.team, full_name="Present", joined_at=utc(2025, 12, 1))
        add_attendance(self.db, checked_in, FRIDAY)
        on_leave = add_user(self.db, self.company, team=self.team, full_name="Away", joined_at=utc(2025, 12, 1))
        add_leave(self.db, on_leave, date(2026, 1, 1), FRIDAY)
        newcomer = add_user(self.db, self.company, team=self.team, full_name="New", joined_at=utc(2026, 1, 2, 1))
        flagged = add_user(self.db, self.company, team=self.team, full_name="Flagged", joined_at=utc(2025, 12, 1))
        add_absence(self.db, flagged, FRIDAY)
        add_user(self.db, self.company, team=self.team, role=UserRole.TEAM_LEAD, full_name="Lead")

        result = finalize_yesterday(self.db, SWEEP_NOW)

        self.assertEqual(result.marked_absent, 1)
        self.assertEqual(result.skipped, 4)
        marked = self.db.scalars(
            select(DailyAttendance.user_id).where(DailyAttendance.status == AttendanceStatus.ABSENT)
        ).all()
        self.assertEqual(marked, [self.worker.id])
        self.assertNotIn(newcomer.id, marked)

    def test_non_work_day_is_skipped(self) -> None:
        # Monday 05:00 closes out Sunday.
        result = finalize_yesterday(self.db, utc(2026, 1, 4, 21))
        self.assertEqual(result.marked_absent, 0)
        self.assertEqual(result.skipped, 1)

    def test_unique_violation_counts_as_already_handled(self) -> None:
        add_attendance(self.db, self.worker, FRIDAY)
        tz = resolve_timezone(self.company.timezone)

        with patch("attendance_engine.services.finalizer._skip_reason", return_value=None):
            outcome = finalize_worker_day(self.db, self.worker, self.team, FRIDAY, tz=tz, first_checkin_at=None)

        self.assertEqual(outcome, WorkerOutcome.ALREADY_HANDLED)
        self.assertEqual(self._count(DailyAttendance), 1)
        self.assertEqual(self._count(Absence), 0)

    def test_worker_failure_does_not_stop_the_sweep(self) -> None:
        other = add_user(self.db, self.company, team=self.team, full_name="Other", joined_at=utc(2025, 12, 1))
        original = baseline_for_user

        def _flaky(user, tz, *, first_checkin_at):  # type: ignore[no-untyped-def]
            if user.id == self.worker.id:
                raise RuntimeError("boom")
            return original(user, tz, first_checkin_at=first_checkin_at)

        with patch("attendance_engine.services.finalizer.baseline_for_user", side_effect=_flaky):
            with self.assertLogs("attendance_engine.finalizer", level="ERROR"):
                result = finalize_yesterday(self.db, SWEEP_NOW)

        self.assertEqual(result.failed, 1)
        self.assertEqual(result.marked_absent, 1)
        self.assertEqual(self.db.scalar(select(Absence.user_id)), other.id)


class ShiftEndSweepTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.company = add_company(self.db)
        self.day_team = add_team(self.db, self.company, name="Day", shift_end=time(17, 0))
        self.default_team = add_team(self.db, self.company, name="Default", shift_start=None, shift_end=None)
        self.night_team = add_team(self.db, self.company, name="Night", shift_end=time(22, 0))
        self.day_worker = add_user(self.db, self.company, team=self.day_team, joined_at=utc(2025, 12, 1))
        self.default_worker = add_user(self.db, self.company, team=self.default_team, joined_at=utc(2025, 12, 1))
        self.night_worker = add_user(self.db, self.company, team=self.night_team, joined_at=utc(2025, 12, 1))

    def tearDown(self) -> None:
        self.db.close()

    def test_marks_teams_whose_shift_just_ended(self) -> None:
        # 17:00 on Friday Jan 2 in Manila.
        result = process_shift_end(self.db, utc(2026, 1, 2, 9))

        self.assertEqual(result.teams_processed, 2)
        self.assertEqual(result.marked_absent, 2)
        marked = set(self.db.scalars(select(Absence.user_id).where(Absence.absence_date == FRIDAY)).all())
        self.assertEqual(marked, {self.day_worker.id, self.default_worker.id})
        summary_team_ids = set(self.db.scalars(select(DailyTeamSummary.team_id)).all())
        self.assertEqual(summary_team_ids, {self.day_team.id, self.default_team.id})

    def test_checked_in_worker_is_left_alone(self) -> None:
        add_attendance(self.db, self.day_worker, FRIDAY)
        result = process_shift_end(self.db, utc(2026, 1, 2, 9))
        self.assertEqual(result.marked_absent, 1)
        self.assertEqual(result.skipped, 1)

    def test_weekend_and_holiday_do_nothing(self) -> None:
        saturday = process_shift_end(self.db, utc(2026, 1, 3, 9))
        self.assertEqual(saturday.marked_absent, 0)
        self.assertEqual(saturday.teams_processed, 0)

        add_holiday(self.db, self.company, FRIDAY)
        holiday = process_shift_end(self.db, utc(2026, 1, 2, 9))
        self.assertEqual(holiday.marked_absent, 0)

    def test_force_processes_every_team(self) -> None:
        result = process_shift_end(self.db, utc(2026, 1, 2, 2), force=True)
        self.assertEqual(result.teams_processed, 3)
        self.assertEqual(result.marked_absent, 3)

    def test_company_scope_leaves_other_companies_untouched(self) -> None:
        other = add_company(self.db, name="Other")
        other_team = add_team(self.db, other)
        other_worker = add_user(self.db, other, team=other_team, joined_at=utc(2025, 12, 1))

        result = process_shift_end(self.db, utc(2026, 1, 2, 2), force=True, company_id=self.company.id)

        self.assertEqual(result.companies_processed, 1)
        self.assertEqual(result.marked_absent, 3)
        self.assertIsNone(self.db.scalar(select(Absence).where(Absence.user_id == other_worker.id)))
        self.assertIsNone(self.db.scalar(select(DailyTeamSummary).where(DailyTeamSummary.team_id == other_team.id)))


if __name__ == "__main__":
    unittest.main()
