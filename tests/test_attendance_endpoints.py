from __future__ import annotations

import unittest
from collections.abc import Generator

from fastapi.testclient import TestClient
from sqlalchemy import select

from attendance_engine.db import get_db
from attendance_engine.main import app
from attendance_engine.models import Absence, AuditLog, UserRole
from attendance_engine.security import AuthContext, require_auth
from attendance_engine.services.checkins import record_checkin

from engine_fixtures import add_company, add_team, add_user, make_session, utc


def _override_get_db(db):  # type: ignore[no-untyped-def]
    def _override() -> Generator[object, None, None]:
        yield db

    return _override


def _auth(user) -> AuthContext:  # type: ignore[no-untyped-def]
    return AuthContext.for_role(
        user_id=user.id,
        company_id=user.company_id,
        role=user.role,
        team_id=user.team_id,
    )


class AttendanceEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.company = add_company(self.db)
        self.admin = add_user(self.db, self.company, role=UserRole.ADMIN, full_name="Admin")
        self.leader = add_user(self.db, self.company, role=UserRole.TEAM_LEAD, full_name="Lead")
        self.team = add_team(self.db, self.company, leader=self.leader)
        self.worker = add_user(
            self.db,
            self.company,
            team=self.team,
            full_name="Wanda Worker",
            joined_at=utc(2026, 1, 1, 1),
        )
        app.dependency_overrides[get_db] = _override_get_db(self.db)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def _act_as(self, user) -> None:  # type: ignore[no-untyped-def]
        auth = _auth(user)
        app.dependency_overrides[require_auth] = lambda: auth

    def test_worker_cannot_trigger_sweeps(self) -> None:
        self._act_as(self.worker)

        response = self.client.post("/api/cron/run-yesterday")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "FORBIDDEN")

    def test_manual_sweep_only_touches_caller_company(self) -> None:
        other = add_company(self.db, name="Other")
        other_team = add_team(self.db, other)
        other_worker = add_user(self.db, other, team=other_team, joined_at=utc(2025, 12, 1))
        self._act_as(self.admin)

        response = self.client.post(
            "/api/cron/run-yesterday",
            json={"now_utc": "2026-01-02T21:00:00Z", "force": True},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["companies_processed"], 1)
        self.assertIsNone(self.db.scalar(select(Absence).where(Absence.user_id == other_worker.id)))
        self.assertIsNotNone(self.db.scalar(select(Absence).where(Absence.user_id == self.worker.id)))

    def test_missing_token_is_rejected(self) -> None:
        response = self.client.get("/api/absences/my-pending")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")

    def test_review_errors_use_error_envelope(self) -> None:
        self._act_as(self.worker)

        response = self.client.post("/api/absences/999/review", json={"action": "EXCUSED"})

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "REVIEW_FORBIDDEN")

    def test_invalid_review_action_is_a_validation_error(self) -> None:
        self._act_as(self.leader)

        response = self.client.post("/api/absences/1/review", json={"action": "MAYBE"})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_absence_lifecycle_from_sweep_to_excused_score(self) -> None:
        # Thursday Jan 1, 09:00 in Manila.
        record_checkin(self.db, self.worker.id, mood=8, stress=2, sleep=8, physical_health=8, now_utc=utc(2026, 1, 1, 1))

        self._act_as(self.admin)
        sweep = self.client.post(
            "/api/cron/run-yesterday",
            json={"now_utc": "2026-01-02T21:00:00Z", "force": False},
        )
        self.assertEqual(sweep.status_code, 200)
        self.assertEqual(sweep.json()["marked_absent"], 1)
        self.assertIsNotNone(
            self.db.scalar(select(AuditLog).where(AuditLog.action == "FINALIZER_YESTERDAY_TRIGGERED"))
        )

        self._act_as(self.worker)
        pending = self.client.get("/api/absences/my-pending").json()
        self.assertEqual([item["absence_date"] for item in pending], ["2026-01-02"])
        absence_id = pending[0]["id"]

        before = self.client.get(
            f"/api/analytics/workers/{self.worker.id}/performance",
            params={"start_date": "2026-01-01", "end_date": "2026-01-02"},
        ).json()
        self.assertEqual(before["score"], 50.0)

        justified = self.client.post(
            "/api/absences/justify",
            json={
                "justifications": [
                    {"absence_id": absence_id, "reason_category": "FORGOT_CHECKIN", "explanation": "Phone died"}
                ]
            },
        )
        self.assertEqual(justified.status_code, 200)
        self.assertEqual(self.client.get("/api/absences/my-pending").json(), [])

        self._act_as(self.leader)
        queue = self.client.get("/api/absences/team-pending").json()
        self.assertEqual([item["id"] for item in queue], [absence_id])
        reviewed = self.client.post(
            f"/api/absences/{absence_id}/review",
            json={"action": "EXCUSED", "notes": "Confirmed with site"},
        )
        self.assertEqual(reviewed.status_code, 200)
        self.assertEqual(reviewed.json()["status"], "EXCUSED")

        after = self.client.get(
            f"/api/analytics/workers/{self.worker.id}/performance",
            params={"start_date": "2026-01-01", "end_date": "2026-01-02"},
        ).json()
        self.assertEqual(after["score"], 100.0)
        self.assertEqual(after["work_days"], 2)
        self.assertEqual(after["counted_days"], 1)
        self.assertEqual(after["breakdown"]["excused"], 1)
        self.assertEqual(self.db.get(Absence, absence_id).reviewed_by_id, self.leader.id)

        self._act_as(self.worker)
        stats = self.client.get("/api/absences/stats").json()
        self.assertEqual(stats["excused"], 1)
        self.assertEqual(stats["total"], 1)


if __name__ == "__main__":
    unittest.main()
