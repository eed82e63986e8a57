#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text


EXPECTED_HEAD = "0001_initial"
REQUIRED_TABLES = (
    "companies",
    "teams",
    "users",
    "checkins",
    "daily_attendance",
    "leaves",
    "absences",
    "holidays",
    "daily_team_summaries",
    "notifications",
    "audit_logs",
)


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append({"name": name, "status": status, "details": details})

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing else "ok", {"tables": missing})
        if missing:
            return report

        # Every sweep-created ABSENT row is written together with its absence.
        unpaired_absent = conn.execute(
            text(
                """
                select d.id
                from daily_attendance d
                left join absences a on a.user_id = d.user_id and a.absence_date = d.day_date
                where d.status = 'ABSENT' and a.id is null
                limit 20
                """
            )
        ).fetchall()
        add(
            "absent_attendance_without_absence",
            "warn" if unpaired_absent else "ok",
            {"sample_ids": [row[0] for row in unpaired_absent]},
        )

        excused_mismatch = conn.execute(
            text(
                """
                select a.id
                from absences a
                join daily_attendance d on d.user_id = a.user_id and d.day_date = a.absence_date
                where a.status = 'EXCUSED' and d.status <> 'EXCUSED'
                limit 20
                """
            )
        ).fetchall()
        add(
            "excused_absence_with_counted_attendance",
            "fail" if excused_mismatch else "ok",
            {"sample_ids": [row[0] for row in excused_mismatch]},
        )

        reviewed_without_justification = conn.execute(
            text(
                """
                select id
                from absences
                where status = 'UNEXCUSED' and justified_at is null
                limit 20
                """
            )
        ).fetchall()
        add(
            "unexcused_without_justification",
            "warn" if reviewed_without_justification else "ok",
            {"sample_ids": [row[0] for row in reviewed_without_justification]},
        )

        inverted_leaves = conn.execute(
            text(
                """
                select id
                from leaves
                where start_date is not null and end_date is not null and end_date < start_date
                limit 20
                """
            )
        ).fetchall()
        add(
            "leave_window_inverted",
            "warn" if inverted_leaves else "ok",
            {"sample_ids": [row[0] for row in inverted_leaves]},
        )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
