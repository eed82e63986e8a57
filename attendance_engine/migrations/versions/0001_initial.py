"""Initial attendance reconciliation schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-01 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = postgresql.ENUM(
    "ADMIN",
    "EXECUTIVE",
    "SUPERVISOR",
    "CLINICIAN",
    "WHS_CONTROL",
    "TEAM_LEAD",
    "WORKER",
    "MEMBER",
    name="user_role",
    create_type=False,
)
attendance_status = postgresql.ENUM("GREEN", "YELLOW", "ABSENT", "EXCUSED", name="attendance_status", create_type=False)
readiness_status = postgresql.ENUM("GREEN", "YELLOW", "RED", name="readiness_status", create_type=False)
leave_type = postgresql.ENUM(
    "SICK_LEAVE",
    "PERSONAL_LEAVE",
    "MEDICAL_APPOINTMENT",
    "FAMILY_EMERGENCY",
    "OTHER",
    name="leave_type",
    create_type=False,
)
leave_status = postgresql.ENUM("PENDING", "APPROVED", "REJECTED", name="leave_status", create_type=False)
absence_status = postgresql.ENUM(
    "PENDING_JUSTIFICATION",
    "EXCUSED",
    "UNEXCUSED",
    name="absence_status",
    create_type=False,
)
absence_reason = postgresql.ENUM(
    "SICK",
    "EMERGENCY",
    "PERSONAL",
    "FORGOT_CHECKIN",
    "TECHNICAL_ISSUE",
    "OTHER",
    name="absence_reason",
    create_type=False,
)
notification_type = postgresql.ENUM(
    "ABSENCE_JUSTIFIED",
    "ABSENCE_EXCUSED",
    "ABSENCE_UNEXCUSED",
    "LEAVE_APPROVED",
    "LEAVE_REJECTED",
    name="notification_type",
    create_type=False,
)
audit_actor_type = postgresql.ENUM("USER", "SYSTEM", name="audit_actor_type", create_type=False)

ENUM_TYPES = (
    user_role,
    attendance_status,
    readiness_status,
    leave_type,
    leave_status,
    absence_status,
    absence_reason,
    notification_type,
    audit_actor_type,
)


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default=sa.text("'Asia/Manila'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )

    op.create_table(
        "teams",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("leader_id", sa.Integer(), nullable=True),
        sa.Column(
            "work_days",
            sa.String(length=64),
            nullable=False,
            server_default=sa.text("'MON,TUE,WED,THU,FRI'"),
        ),
        sa.Column("shift_start", sa.Time(), nullable=True),
        sa.Column("shift_end", sa.Time(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_teams_company_id", "teams", ["company_id"])
    op.create_index("ix_teams_leader_id", "teams", ["leader_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=True),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("role", user_role, nullable=False, server_default=sa.text("'WORKER'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("team_joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_checkins", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_checkin_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_company_id", "users", ["company_id"])
    op.create_index("ix_users_team_id", "users", ["team_id"])

    op.create_table(
        "checkins",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("mood", sa.Integer(), nullable=False),
        sa.Column("stress", sa.Integer(), nullable=False),
        sa.Column("sleep", sa.Integer(), nullable=False),
        sa.Column("physical_health", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("readiness_score", sa.Float(), nullable=False),
        sa.Column("readiness_status", readiness_status, nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_checkins_user_id", "checkins", ["user_id"])
    op.create_index("ix_checkins_company_id", "checkins", ["company_id"])
    op.create_index("ix_checkins_created_at", "checkins", ["created_at"])

    op.create_table(
        "daily_attendance",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=True),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("scheduled_start", sa.String(length=5), nullable=False),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", attendance_status, nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("is_counted", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        _created_at("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("user_id", "day_date", name="uq_daily_attendance_user_date"),
    )
    op.create_index("ix_daily_attendance_user_id", "daily_attendance", ["user_id"])
    op.create_index("ix_daily_attendance_company_id", "daily_attendance", ["company_id"])
    op.create_index("ix_daily_attendance_team_id", "daily_attendance", ["team_id"])
    op.create_index("ix_daily_attendance_day_date", "daily_attendance", ["day_date"])

    op.create_table(
        "leaves",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("type", leave_type, nullable=False),
        sa.Column("status", leave_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("reviewed_by_id", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_note", sa.String(length=1000), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reviewed_by_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_leaves_user_id", "leaves", ["user_id"])
    op.create_index("ix_leaves_company_id", "leaves", ["company_id"])

    op.create_table(
        "absences",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=True),
        sa.Column("absence_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            absence_status,
            nullable=False,
            server_default=sa.text("'PENDING_JUSTIFICATION'"),
        ),
        sa.Column("reason_category", absence_reason, nullable=True),
        sa.Column("explanation", sa.String(length=1000), nullable=True),
        sa.Column("justified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by_id", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.String(length=500), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reviewed_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("user_id", "absence_date", name="uq_absences_user_date"),
    )
    op.create_index("ix_absences_user_id", "absences", ["user_id"])
    op.create_index("ix_absences_company_id", "absences", ["company_id"])
    op.create_index("ix_absences_team_id", "absences", ["team_id"])
    op.create_index("ix_absences_absence_date", "absences", ["absence_date"])

    op.create_table(
        "holidays",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("company_id", "day_date", name="uq_holidays_company_date"),
    )
    op.create_index("ix_holidays_company_id", "holidays", ["company_id"])

    op.create_table(
        "daily_team_summaries",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("is_work_day", sa.Boolean(), nullable=False),
        sa.Column("is_holiday", sa.Boolean(), nullable=False),
        sa.Column("total_members", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("on_leave_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expected_to_check_in", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("checked_in_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("not_checked_in_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("green_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("yellow_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("red_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("absent_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("excused_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("avg_readiness_score", sa.Float(), nullable=True),
        sa.Column("compliance_rate", sa.Float(), nullable=True),
        _created_at("updated_at"),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("team_id", "day_date", name="uq_daily_team_summaries_team_date"),
    )
    op.create_index("ix_daily_team_summaries_team_id", "daily_team_summaries", ["team_id"])
    op.create_index("ix_daily_team_summaries_company_id", "daily_team_summaries", ["company_id"])
    op.create_index("ix_daily_team_summaries_day_date", "daily_team_summaries", ["day_date"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("type", notification_type, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _created_at("ts_utc"),
        sa.Column("company_id", sa.Integer(), nullable=True),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("daily_team_summaries")
    op.drop_table("holidays")
    op.drop_table("absences")
    op.drop_table("leaves")
    op.drop_table("daily_attendance")
    op.drop_table("checkins")
    op.drop_table("users")
    op.drop_table("teams")
    op.drop_table("companies")

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
