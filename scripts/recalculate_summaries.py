#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import sys
from datetime import date, timedelta
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sqlalchemy import select

from attendance_engine.db import SessionLocal
from attendance_engine.logging_utils import setup_json_logging
from attendance_engine.models import Team
from attendance_engine.services.daily_summary import recalculate_summaries_best_effort
from attendance_engine.services.workdays import iter_days


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rebuild daily team summaries for a date range.")
    parser.add_argument("--start", type=date.fromisoformat, required=True, help="First day (YYYY-MM-DD).")
    parser.add_argument("--end", type=date.fromisoformat, default=None, help="Last day, inclusive. Defaults to --start.")
    parser.add_argument("--company-id", type=int, default=None)
    parser.add_argument("--team-id", type=int, action="append", default=None)
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> dict:
    args = _parse_args(argv)
    end = args.end or args.start
    if end < args.start:
        raise SystemExit("--end must not precede --start")
    if end - args.start > timedelta(days=366):
        raise SystemExit("range must not exceed 366 days")

    with SessionLocal() as db:
        stmt = select(Team.id).where(Team.is_active.is_(True)).order_by(Team.id.asc())
        if args.company_id is not None:
            stmt = stmt.where(Team.company_id == args.company_id)
        if args.team_id:
            stmt = stmt.where(Team.id.in_(args.team_id))
        team_ids = list(db.scalars(stmt).all())

        team_days = [(team_id, day) for team_id in team_ids for day in iter_days(args.start, end)]
        failures = recalculate_summaries_best_effort(db, team_days)

    return {
        "start": args.start.isoformat(),
        "end": end.isoformat(),
        "teams": len(team_ids),
        "team_days": len(team_days),
        "failures": failures,
    }


if __name__ == "__main__":
    setup_json_logging()
    print(json.dumps(run(), ensure_ascii=False, indent=2))
