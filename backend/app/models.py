from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def utc_now() -> datetime:
    return datetime.utcnow()


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class UserRole(str, Enum):
    admin = "admin"
    recruiter = "recruiter"
    candidate = "candidate"


class AccountStatus(str, Enum):
    active = "active"
    disabled = "disabled"


class CandidateStatus(str, Enum):
    scheduled = "scheduled"
    in_progress = "in_progress"
    validated = "validated"
    rejected = "rejected"


class InterviewStatus(str, Enum):
    scheduled = "scheduled"
    completed = "completed"
    cancelled = "cancelled"
    rescheduled = "rescheduled"


class AuditAction(str, Enum):
    created = "created"
    advanced = "advanced"
    validated = "validated"
    rejected = "rejected"
    reopened = "reopened"
    stage_set = "stage_set"
    status_set = "status_set"
    stage_reassigned = "stage_reassigned"


class SessionState(str, Enum):
    active = "active"
    expired = "expired"


class RecruiterRights(BaseModel):
    view_candidates: bool = True
    create_candidates: bool = True
    modify_candidates: bool = True
    view_interviews: bool = True
    create_interviews: bool = True
    modify_interviews: bool = True
    modify_statuses: bool = True
    modify_stages: bool = True


PERMISSION_NAMES = tuple(RecruiterRights.model_fields)


class UserRecord(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    password_hash: Optional[str] = None
    role: UserRole
    status: AccountStatus = AccountStatus.active
    rights: Optional[RecruiterRights] = None
    created_at_utc: datetime
    updated_at_utc: datetime


class StageRecord(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    order: int
    is_active: bool = True
    created_at_utc: datetime
    updated_at_utc: datetime


class CandidateRecord(BaseModel):
    id: str
    user_id: str
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    position: str
    experience: Optional[str] = None
    salary_expectation: Optional[str] = None
    cv_url: Optional[str] = None
    cv_original_filename: Optional[str] = None
    recruiter_id: Optional[str] = None
    stage_id: str
    status: CandidateStatus = CandidateStatus.scheduled
    last_interview_at_utc: Optional[datetime] = None
    version: int = 1
    created_at_utc: datetime
    updated_at_utc: datetime


class InterviewRecord(BaseModel):
    id: str
    candidate_id: str
    recruiter_id: Optional[str] = None
    scheduled_at_utc: datetime
    duration_minutes: int = 60
    notes: Optional[str] = None
    status: InterviewStatus = InterviewStatus.scheduled
    created_at_utc: datetime
    updated_at_utc: datetime


class AuditEventRecord(BaseModel):
    id: str
    candidate_id: str
    action: AuditAction
    from_stage_id: Optional[str] = None
    to_stage_id: Optional[str] = None
    from_status: Optional[CandidateStatus] = None
    to_status: Optional[CandidateStatus] = None
    actor_id: Optional[str] = None
    reason: Optional[str] = None
    created_at_utc: datetime


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=1, max_length=200)


class SessionPolicyResponse(BaseModel):
    timeout_seconds: int
    check_interval_seconds: int


class UserItem(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    role: UserRole
    status: AccountStatus


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at_utc: datetime
    user: UserItem
    session: SessionPolicyResponse


class PasswordChangeRequest(BaseModel):
    new_password: str = Field(min_length=6, max_length=200)
    user_id: Optional[str] = None


class SessionCheckRequest(BaseModel):
    last_activity_utc: datetime
    now_utc: Optional[datetime] = None

    @field_validator("last_activity_utc", "now_utc")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class SessionCheckResponse(BaseModel):
    status: SessionState
    expires_at_utc: datetime
    remaining_seconds: float
    check_interval_seconds: int


class RecruiterCreateRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=120)
    last_name: str = Field(min_length=1, max_length=120)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=254)
    password: str = Field(min_length=6, max_length=200)
    status: AccountStatus = AccountStatus.active


class RecruiterStatusRequest(BaseModel):
    status: AccountStatus


class RecruiterItem(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    status: AccountStatus
    rights: RecruiterRights
    created_at_utc: datetime


class StageCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    order: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True


class StageUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    order: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None
    reassign_to: Optional[str] = None


class StageReorderRequest(BaseModel):
    stage_ids: list[str] = Field(min_length=1)

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "StageReorderRequest":
        if len(set(self.stage_ids)) != len(self.stage_ids):
            raise ValueError("stage_ids must not contain duplicates")
        return self


class CandidateCreateRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=120)
    last_name: str = Field(min_length=1, max_length=120)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=254)
    phone: Optional[str] = Field(default=None, max_length=30)
    position: str = Field(min_length=1, max_length=120)
    experience: Optional[str] = Field(default=None, max_length=4000)
    salary_expectation: Optional[str] = Field(default=None, max_length=60)
    recruiter_id: Optional[str] = None
    stage_id: Optional[str] = None
    status: CandidateStatus = CandidateStatus.scheduled
    password: Optional[str] = Field(default=None, min_length=6, max_length=200)


class CandidateUpdateRequest(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=254)
    phone: Optional[str] = Field(default=None, max_length=30)
    position: Optional[str] = Field(default=None, min_length=1, max_length=120)
    experience: Optional[str] = Field(default=None, max_length=4000)
    salary_expectation: Optional[str] = Field(default=None, max_length=60)
    cv_url: Optional[str] = Field(default=None, max_length=500)
    cv_original_filename: Optional[str] = Field(default=None, max_length=255)
    recruiter_id: Optional[str] = None
    expected_version: Optional[int] = Field(default=None, ge=1)


class LifecycleRequest(BaseModel):
    expected_version: Optional[int] = Field(default=None, ge=1)
    reason: Optional[str] = Field(default=None, max_length=200)


class SetStageRequest(LifecycleRequest):
    stage_id: str


class SetStatusRequest(LifecycleRequest):
    # Plain string so unknown values reach the transition engine's own check.
    status: str = Field(min_length=1, max_length=40)


class CandidateItem(BaseModel):
    id: str
    user_id: str
    first_name: str
    last_name: str
    email: str
    phone: Optional[str]
    position: str
    experience: Optional[str]
    salary_expectation: Optional[str]
    cv_url: Optional[str]
    cv_original_filename: Optional[str]
    recruiter_id: Optional[str]
    stage_id: str
    stage_name: Optional[str]
    status: CandidateStatus
    last_interview_at_utc: Optional[datetime]
    version: int
    created_at_utc: datetime
    updated_at_utc: datetime


class CandidateProgressResponse(BaseModel):
    candidate_id: str
    position: str
    status: CandidateStatus
    stage_id: str
    stage_name: Optional[str]
    stage_position: Optional[int]
    total_stages: int
    upcoming_interviews: list[InterviewRecord]


class InterviewScheduleRequest(BaseModel):
    candidate_id: str
    recruiter_id: Optional[str] = None
    scheduled_at_utc: datetime
    duration_minutes: int = Field(default=60, ge=5, le=8 * 60)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("scheduled_at_utc")
    @classmethod
    def normalize_scheduled_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class InterviewUpdateRequest(BaseModel):
    recruiter_id: Optional[str] = None
    scheduled_at_utc: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(default=None, ge=5, le=8 * 60)
    notes: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[InterviewStatus] = None

    @field_validator("scheduled_at_utc")
    @classmethod
    def normalize_scheduled_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class PipelineColumn(BaseModel):
    stage: StageRecord
    candidates: list[CandidateItem]


class PipelineBoardResponse(BaseModel):
    columns: list[PipelineColumn]
    counts: dict[CandidateStatus, int]
