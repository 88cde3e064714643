"""SQLAlchemy models."""
from sqlalchemy import (
    Boolean, Column, String, Integer, DateTime, Text,
    ForeignKey, CheckConstraint, Index, Table,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from .database import Base


USER_ROLES = ("admin", "member")
ACCOUNT_STATUSES = ("active", "pending-deletion", "deleted")
OTP_PURPOSES = ("registration", "password-reset", "account-deletion")
TASK_STATUSES = ("Pending", "In Progress", "Completed")
TASK_PRIORITIES = ("Low", "Medium", "High")
ACTIVITY_ACTIONS = (
    "created",
    "updated",
    "status_changed",
    "priority_changed",
    "assigned",
    "unassigned",
    "comment_added",
    "comment_deleted",
    "attachment_added",
    "label_added",
    "label_removed",
    "checklist_updated",
)
NOTIFICATION_TYPES = ("reminder", "mention", "task_assigned", "task_updated", "comment")


class User(Base):
    """User model. Organization membership is derived from the email domain."""
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    email = Column(String(254), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    profile_image_url = Column(Text, nullable=True)
    role = Column(String(20), nullable=False, default="member", index=True)
    is_email_verified = Column(Boolean, nullable=False, default=False)
    account_status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(role.in_(USER_ROLES), name="chk_user_role"),
        CheckConstraint(account_status.in_(ACCOUNT_STATUSES), name="chk_user_account_status"),
        Index("idx_users_email_role", "email", "role"),
    )

    # Relationships
    created_tasks = relationship("Task", foreign_keys="Task.creator_id", back_populates="creator")


class OtpRecord(Base):
    """One-time passcode issued for a single (email, purpose) pair."""
    __tablename__ = "otp_records"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(254), nullable=False)
    code = Column(String(12), nullable=False)
    purpose = Column(String(32), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    verified = Column(Boolean, nullable=False, default=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    # Registration stages the pending user here until the code is verified.
    payload = Column(JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(purpose.in_(OTP_PURPOSES), name="chk_otp_purpose"),
        CheckConstraint(attempts >= 0, name="chk_otp_attempts_non_negative"),
        Index("idx_otp_email_purpose_verified", "email", "purpose", "verified"),
    )


task_assignees = Table(
    "task_assignees",
    Base.metadata,
    Column("task_id", UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True),
)


class Task(Base):
    """Task model."""
    __tablename__ = "tasks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(String(20), nullable=False, default="Medium", index=True)
    status = Column(String(20), nullable=False, default="Pending", index=True)
    due_date = Column(DateTime(timezone=True), nullable=False, index=True)
    creator_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    attachments = Column(JSONB, nullable=False, default=list)
    # [{"text": str, "completed": bool}, ...] in display order
    checklist = Column(JSONB, nullable=False, default=list)
    progress = Column(Integer, nullable=False, default=0)
    labels = Column(JSONB, nullable=False, default=list)
    reminder_sent = Column(Boolean, nullable=False, default=False)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(TASK_STATUSES), name="chk_task_status"),
        CheckConstraint(priority.in_(TASK_PRIORITIES), name="chk_task_priority"),
        CheckConstraint((progress >= 0) & (progress <= 100), name="chk_task_progress_range"),
        Index("idx_tasks_status_due_date", "status", "due_date"),
        Index("idx_tasks_reminder_due_date", "reminder_sent", "due_date"),
    )

    # Relationships
    creator = relationship("User", foreign_keys=[creator_id], back_populates="created_tasks")
    assignees = relationship(
        "User",
        secondary=task_assignees,
        order_by="User.name",
        lazy="selectin",
    )
    comments = relationship(
        "TaskComment",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskComment.created_at",
    )
    activity = relationship(
        "TaskActivity",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskActivity.created_at",
    )

    @property
    def assignee_ids(self) -> list:
        return [user.id for user in self.assignees]


class TaskComment(Base):
    """Task comment model."""
    __tablename__ = "task_comments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    task_id = Column(UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    text = Column(Text, nullable=False)
    mentions = Column(JSONB, nullable=False, default=list)  # user ids as strings
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    task = relationship("Task", back_populates="comments")
    user = relationship("User")


class TaskActivity(Base):
    """Append-only activity log entry for a task."""
    __tablename__ = "task_activity"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    task_id = Column(UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(50), nullable=False)
    details = Column(Text, nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(action.in_(ACTIVITY_ACTIONS), name="chk_task_activity_action"),
    )

    # Relationships
    task = relationship("Task", back_populates="activity")
    user = relationship("User")


class Notification(Base):
    """In-app notification, one row per recipient."""
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    recipient_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(30), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    task_id = Column(UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True)
    sender_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(type.in_(NOTIFICATION_TYPES), name="chk_notification_type"),
        Index("idx_notifications_recipient_read_created", "recipient_id", "is_read", "created_at"),
    )

    # Relationships
    sender = relationship("User", foreign_keys=[sender_id])
    task = relationship("Task")
