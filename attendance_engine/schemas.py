from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from attendance_engine.models import AbsenceReason, AbsenceStatus, LeaveStatus, LeaveType, ReadinessStatus


class AbsenceJustificationItem(BaseModel):
    absence_id: int = Field(ge=1)
    reason_category: AbsenceReason
    explanation: str = Field(min_length=1, max_length=1000)


class AbsenceJustifyRequest(BaseModel):
    justifications: list[AbsenceJustificationItem] = Field(min_length=1)


class AbsenceReviewRequest(BaseModel):
    action: Literal["EXCUSED", "UNEXCUSED"]
    notes: str | None = Field(default=None, max_length=500)


class AbsenceRead(BaseModel):
    id: int
    user_id: int
    team_id: int | None
    absence_date: date
    status: AbsenceStatus
    reason_category: AbsenceReason | None
    explanation: str | None
    justified_at: datetime | None
    reviewed_by_id: int | None
    reviewed_at: datetime | None
    review_notes: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AbsenceStatsRead(BaseModel):
    pending_justification: int
    pending_review: int
    excused: int
    unexcused: int
    total: int


class LeaveCreateRequest(BaseModel):
    user_id: int = Field(ge=1)
    start_date: date
    end_date: date
    type: LeaveType
    reason: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def validate_window(self) -> "LeaveCreateRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be greater than or equal to start_date")
        return self


class LeaveReviewRequest(BaseModel):
    note: str | None = Field(default=None, max_length=1000)


class LeaveRead(BaseModel):
    id: int
    user_id: int
    start_date: date | None
    end_date: date | None
    type: LeaveType
    status: LeaveStatus
    reason: str | None
    reviewed_by_id: int | None
    reviewed_at: datetime | None
    review_note: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ScoreBreakdownRead(BaseModel):
    green: int
    absent: int
    excused: int
    absence_excused: int
    absence_unexcused: int
    absence_pending: int


class PerformanceScoreRead(BaseModel):
    user_id: int
    start_date: date
    end_date: date
    score: float
    grade: str
    grade_label: str
    total_days: int
    work_days: int
    counted_days: int
    breakdown: ScoreBreakdownRead


class AttendanceHistoryDayRead(BaseModel):
    date: date
    status: str
    source: str
    score: int | None
    is_counted: bool
    check_in_time: str | None = None
    leave_type: str | None = None
    absence_id: int | None = None
    absence_status: str | None = None
    absence_reason: str | None = None


class TeamGradeRead(BaseModel):
    team_id: int
    team_name: str
    leader_id: int | None
    leader_name: str | None
    member_count: int
    included_member_count: int
    onboarding_count: int
    onboarding_member_ids: list[int]
    at_risk_count: int
    needs_attention_count: int
    attendance_rate: float | None
    on_time_rate: float | None
    score: float | None
    grade: str | None
    grade_label: str | None
    previous_score: float | None
    score_delta: float | None
    trend: Literal["up", "down", "stable"]
    breakdown: ScoreBreakdownRead


class TeamsOverviewSummaryRead(BaseModel):
    total_teams: int
    total_members: int
    avg_score: float | None
    avg_grade: str | None
    teams_at_risk: int
    teams_critical: int
    teams_improving: int
    teams_declining: int


class TeamsOverviewResponse(BaseModel):
    teams: list[TeamGradeRead]
    summary: TeamsOverviewSummaryRead
    period: dict[str, Any]


class DailyTeamSummaryRead(BaseModel):
    team_id: int
    day_date: date
    is_work_day: bool
    is_holiday: bool
    total_members: int
    on_leave_count: int
    expected_to_check_in: int
    checked_in_count: int
    not_checked_in_count: int
    green_count: int
    yellow_count: int
    red_count: int
    absent_count: int
    excused_count: int
    avg_readiness_score: float | None
    compliance_rate: float | None

    model_config = ConfigDict(from_attributes=True)


class TeamSummariesResponse(BaseModel):
    team_id: int
    summaries: list[DailyTeamSummaryRead]
    aggregate: dict[str, Any]


class SummaryRecalculateRequest(BaseModel):
    team_id: int | None = Field(default=None, ge=1)
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def validate_range(self) -> "SummaryRecalculateRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be greater than or equal to start_date")
        if (self.end_date - self.start_date).days > 366:
            raise ValueError("range must not exceed 366 days")
        return self


class SummaryRecalculateResponse(BaseModel):
    team_days: int


class SweepResultRead(BaseModel):
    companies_processed: int
    teams_processed: int
    marked_absent: int
    skipped: int
    already_handled: int
    failed: int
    summary_failures: int


class SweepTriggerRequest(BaseModel):
    now_utc: datetime | None = None
    force: bool = True


class CheckinCreateRequest(BaseModel):
    mood: int = Field(ge=1, le=10)
    stress: int = Field(ge=1, le=10)
    sleep: int = Field(ge=1, le=10)
    physical_health: int = Field(ge=1, le=10)
    notes: str | None = Field(default=None, max_length=1000)


class CheckinRead(BaseModel):
    id: int
    user_id: int
    mood: int
    stress: int
    sleep: int
    physical_health: int
    notes: str | None
    readiness_score: float
    readiness_status: ReadinessStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CheckinStatusResponse(BaseModel):
    blocked: bool
    pending_absence_ids: list[int]
