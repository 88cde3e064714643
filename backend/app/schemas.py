"""Pydantic schemas for API."""
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import Literal, Optional
from datetime import datetime
from uuid import UUID


OTP_PATTERN = r"^\d{6}$"
NAME_PATTERN = r"^[^\W\d_](?:[^\W\d_]|[\s\-'])*$"

TaskStatus = Literal["Pending", "In Progress", "Completed"]
TaskPriority = Literal["Low", "Medium", "High"]


def _normalize_email(value: str) -> str:
    return value.strip().lower()


# User schemas
class UserBrief(BaseModel):
    """Brief user info for nested responses."""
    id: UUID
    name: str
    email: str
    profile_image_url: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class UserResponse(UserBrief):
    role: str
    is_email_verified: bool
    account_status: str
    created_at: Optional[datetime] = None


class MemberWithCounts(UserResponse):
    pending_tasks: int = 0
    in_progress_tasks: int = 0
    completed_tasks: int = 0


# Auth schemas
class RegisterRequest(BaseModel):
    name: str = Field(min_length=2, max_length=100, pattern=NAME_PATTERN)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    profile_image_url: Optional[str] = None
    admin_invite_token: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return value.strip()

    @field_validator("email", mode="after")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return _normalize_email(value)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email", mode="after")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return _normalize_email(value)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100, pattern=NAME_PATTERN)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=6, max_length=128)
    profile_image_url: Optional[str] = None

    @field_validator("email", mode="after")
    @classmethod
    def _lower_email(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_email(value) if value else value


class OtpSentResponse(BaseModel):
    success: bool = True
    message: str
    email: str
    warning: Optional[str] = None


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(pattern=OTP_PATTERN)

    @field_validator("email", mode="after")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return _normalize_email(value)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr

    @field_validator("email", mode="after")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return _normalize_email(value)


class ResetPasswordRequest(VerifyOtpRequest):
    new_password: str = Field(min_length=6, max_length=128)


class ConfirmDeleteAccountRequest(BaseModel):
    otp: str = Field(pattern=OTP_PATTERN)


class MessageResponse(BaseModel):
    success: bool = True
    message: str


# Task schemas
class ChecklistItem(BaseModel):
    text: str = Field(min_length=1, max_length=500)
    completed: bool = False


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str = Field(min_length=1)
    priority: TaskPriority = "Medium"
    due_date: datetime
    assigned_to: list[UUID] = Field(min_length=1)
    attachments: list[str] = Field(default_factory=list)
    checklist: list[ChecklistItem] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    assigned_to: Optional[list[UUID]] = Field(default=None, min_length=1)
    attachments: Optional[list[str]] = None


class TaskStatusUpdate(BaseModel):
    status: str


class TaskChecklistUpdate(BaseModel):
    checklist: list[ChecklistItem]


class TaskCommentCreate(BaseModel):
    text: str = Field(min_length=1, max_length=5000)
    mentions: list[UUID] = Field(default_factory=list)


class TaskLabelsAdd(BaseModel):
    labels: list[str] = Field(min_length=1)


class TaskCommentResponse(BaseModel):
    id: UUID
    user: Optional[UserBrief] = None
    text: str
    mentions: list[UUID] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class TaskActivityResponse(BaseModel):
    id: UUID
    user: Optional[UserBrief] = None
    action: str
    details: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    created_at: Optional[datetime] = None


class TaskResponse(BaseModel):
    id: UUID
    title: str
    description: Optional[str] = None
    priority: str
    status: str
    due_date: datetime
    assigned_to: list[UserBrief] = Field(default_factory=list)
    created_by: Optional[UUID] = None
    attachments: list[str] = Field(default_factory=list)
    checklist: list[ChecklistItem] = Field(default_factory=list)
    progress: int = 0
    completed_count: int = 0
    labels: list[str] = Field(default_factory=list)
    reminder_sent: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TaskDetailResponse(TaskResponse):
    comments: list[TaskCommentResponse] = Field(default_factory=list)
    activity: list[TaskActivityResponse] = Field(default_factory=list)


class StatusSummary(BaseModel):
    all: int = 0
    pending_tasks: int = 0
    in_progress_tasks: int = 0
    completed_tasks: int = 0


class TaskListResponse(BaseModel):
    tasks: list[TaskResponse]
    total: int
    page: int
    limit: int
    status_summary: StatusSummary


class RecentTask(BaseModel):
    id: UUID
    title: str
    status: str
    priority: str
    due_date: datetime
    created_at: Optional[datetime] = None


class DashboardStatistics(BaseModel):
    total_tasks: int
    pending_tasks: int
    completed_tasks: int
    overdue_tasks: int


class DashboardCharts(BaseModel):
    task_distribution: dict[str, int]
    task_priority_levels: dict[str, int]


class DashboardResponse(BaseModel):
    statistics: DashboardStatistics
    charts: DashboardCharts
    recent_tasks: list[RecentTask]


class ProductivityStats(BaseModel):
    total_tasks: int
    completed_tasks: int
    in_progress_tasks: int
    pending_tasks: int
    overdue_tasks: int
    completion_rate: int


class MemberProductivity(ProductivityStats):
    user: UserBrief


class TeamProductivityResponse(BaseModel):
    team: ProductivityStats
    members: list[MemberProductivity]


class ReminderRunResponse(BaseModel):
    tasks_reminded: int
    notifications_created: int


# Notification schemas
class NotificationResponse(BaseModel):
    id: UUID
    type: str
    title: str
    message: str
    task_id: Optional[UUID] = None
    sender_id: Optional[UUID] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    pagination: Pagination
    unread_count: int
