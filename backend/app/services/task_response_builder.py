"""Task response serialization helpers with batched relation loading."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from ..models import Task, TaskActivity, TaskComment, User
from ..schemas import (
    ChecklistItem,
    TaskActivityResponse,
    TaskCommentResponse,
    TaskDetailResponse,
    TaskResponse,
    UserBrief,
)
from .task_progress import compute_progress


def _load_users(db: Session, user_ids: set[UUID]) -> dict[UUID, User]:
    if not user_ids:
        return {}
    users = db.query(User).filter(User.id.in_(user_ids)).all()
    return {user.id: user for user in users}


def _brief(user: User | None) -> UserBrief | None:
    return UserBrief.model_validate(user) if user else None


def task_to_response(task: Task) -> TaskResponse:
    completed, _total, _progress = compute_progress(task.checklist)
    return TaskResponse(
        id=task.id,
        title=task.title,
        description=task.description,
        priority=task.priority,
        status=task.status,
        due_date=task.due_date,
        assigned_to=[UserBrief.model_validate(user) for user in task.assignees],
        created_by=task.creator_id,
        attachments=list(task.attachments or []),
        checklist=[ChecklistItem(**item) for item in (task.checklist or [])],
        progress=task.progress or 0,
        completed_count=completed,
        labels=list(task.labels or []),
        reminder_sent=bool(task.reminder_sent),
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def tasks_to_response(tasks: list[Task]) -> list[TaskResponse]:
    # Assignees are selectin-loaded with the page, so no per-row queries here.
    return [task_to_response(task) for task in tasks]


def comments_to_response(db: Session, comments: list[TaskComment]) -> list[TaskCommentResponse]:
    users_by_id = _load_users(db, {comment.user_id for comment in comments if comment.user_id})
    return [
        TaskCommentResponse(
            id=comment.id,
            user=_brief(users_by_id.get(comment.user_id)),
            text=comment.text,
            mentions=[UUID(str(user_id)) for user_id in (comment.mentions or [])],
            created_at=comment.created_at,
        )
        for comment in comments
    ]


def activity_to_response(db: Session, entries: list[TaskActivity]) -> list[TaskActivityResponse]:
    users_by_id = _load_users(db, {entry.user_id for entry in entries if entry.user_id})
    return [
        TaskActivityResponse(
            id=entry.id,
            user=_brief(users_by_id.get(entry.user_id)),
            action=entry.action,
            details=entry.details,
            old_value=entry.old_value,
            new_value=entry.new_value,
            created_at=entry.created_at,
        )
        for entry in entries
    ]


def task_to_detail_response(
    db: Session,
    task: Task,
    comments: list[TaskComment],
    activity: list[TaskActivity],
) -> TaskDetailResponse:
    base = task_to_response(task)
    return TaskDetailResponse(
        **base.model_dump(),
        comments=comments_to_response(db, comments),
        activity=activity_to_response(db, activity),
    )
