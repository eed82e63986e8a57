from __future__ import annotations

from datetime import date, datetime, time, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from attendance_engine.db import Base
from attendance_engine.models import (
    Absence,
    AbsenceStatus,
    AttendanceStatus,
    Company,
    DailyAttendance,
    Holiday,
    Leave,
    LeaveStatus,
    LeaveType,
    Team,
    User,
    UserRole,
)


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def make_session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False)()


def add_company(db: Session, *, name: str = "Acme", timezone_name: str = "Asia/Manila") -> Company:
    company = Company(name=name, timezone=timezone_name, is_active=True)
    db.add(company)
    db.commit()
    return company


def add_team(
    db: Session,
    company: Company,
    *,
    name: str = "Alpha",
    leader: User | None = None,
    work_days: str = "MON,TUE,WED,THU,FRI",
    shift_start: time | None = time(8, 0),
    shift_end: time | None = time(17, 0),
) -> Team:
    team = Team(
        company_id=company.id,
        name=name,
        leader_id=leader.id if leader is not None else None,
        work_days=work_days,
        shift_start=shift_start,
        shift_end=shift_end,
        is_active=True,
    )
    db.add(team)
    db.commit()
    return team


def add_user(
    db: Session,
    company: Company,
    *,
    team: Team | None = None,
    role: UserRole = UserRole.WORKER,
    full_name: str = "Worker",
    joined_at: datetime | None = None,
    created_at: datetime | None = None,
    total_checkins: int = 0,
) -> User:
    user = User(
        company_id=company.id,
        team_id=team.id if team is not None else None,
        full_name=full_name,
        role=role,
        is_active=True,
        team_joined_at=joined_at,
        total_checkins=total_checkins,
        created_at=created_at or utc(2025, 1, 1),
    )
    db.add(user)
    db.commit()
    return user


def add_attendance(
    db: Session,
    user: User,
    day: date,
    status: AttendanceStatus = AttendanceStatus.GREEN,
) -> DailyAttendance:
    counted = status != AttendanceStatus.EXCUSED
    row = DailyAttendance(
        user_id=user.id,
        company_id=user.company_id,
        team_id=user.team_id,
        day_date=day,
        scheduled_start="08:00",
        status=status,
        score=None if not counted else (0 if status == AttendanceStatus.ABSENT else 100),
        is_counted=counted,
    )
    db.add(row)
    db.commit()
    return row


def add_absence(
    db: Session,
    user: User,
    day: date,
    status: AbsenceStatus = AbsenceStatus.PENDING_JUSTIFICATION,
    *,
    justified_at: datetime | None = None,
) -> Absence:
    row = Absence(
        user_id=user.id,
        company_id=user.company_id,
        team_id=user.team_id,
        absence_date=day,
        status=status,
        justified_at=justified_at,
    )
    db.add(row)
    db.commit()
    return row


def add_leave(
    db: Session,
    user: User,
    start: date | None,
    end: date | None,
    *,
    status: LeaveStatus = LeaveStatus.APPROVED,
    leave_type: LeaveType = LeaveType.SICK_LEAVE,
) -> Leave:
    row = Leave(
        user_id=user.id,
        company_id=user.company_id,
        type=leave_type,
        status=status,
        start_date=start,
        end_date=end,
    )
    db.add(row)
    db.commit()
    return row


def add_holiday(db: Session, company: Company, day: date, name: str = "Holiday") -> Holiday:
    row = Holiday(company_id=company.id, day_date=day, name=name)
    db.add(row)
    db.commit()
    return row
