"""Task lifecycle use-cases used by task router endpoints."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ..config import EngineConfig
from ..database import commit_or_raise
from ..domain_errors import DependencyFailure, ForbiddenError, NotFoundError, ValidationError
from ..models import Notification, Task, TaskActivity, TaskComment, User
from ..schemas import TaskCreate, TaskUpdate
from ..security import (
    admin_can_see_task,
    email_in_domain,
    ensure_admin_org,
    ensure_task_access,
    organization_domain,
)
from ..services.notifier import Notifier
from ..services.task_progress import (
    STATUS_COMPLETED,
    STATUS_PENDING,
    compute_progress,
    force_completed,
    normalize_checklist,
    normalize_task_status,
    reset_checklist,
    status_for_progress,
)
from .notifications import create_notification

logger = logging.getLogger(__name__)


def _get_task_or_404(*, db: Session, task_id: UUID) -> Task:
    task = db.query(Task).filter(Task.id == task_id).first()
    if not task:
        raise NotFoundError(code="TASK_NOT_FOUND", message="Task not found")
    return task


def load_task_for_user(*, db: Session, task_id: UUID, current_user: User, config: EngineConfig) -> Task:
    """Admin of the task's organization or an assignee; absent tasks are 404 first."""
    task = _get_task_or_404(db=db, task_id=task_id)
    ensure_task_access(task, current_user, config)
    return task


def load_task_for_admin(*, db: Session, task_id: UUID, current_user: User, config: EngineConfig) -> tuple[Task, str]:
    task = _get_task_or_404(db=db, task_id=task_id)
    domain = ensure_admin_org(current_user, config)
    if not admin_can_see_task(task, domain):
        raise ForbiddenError(code="TASK_ACCESS_DENIED", message="Unauthorized for this task")
    return task, domain


def _log_activity(
    *,
    db: Session,
    task: Task,
    actor: User,
    action: str,
    details: str | None = None,
    old_value: Any = None,
    new_value: Any = None,
) -> TaskActivity:
    entry = TaskActivity(
        id=uuid4(),
        task_id=task.id,
        user_id=actor.id,
        action=action,
        details=details,
        old_value=None if old_value is None else str(old_value),
        new_value=None if new_value is None else str(new_value),
    )
    db.add(entry)
    return entry


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _unique(values: Iterable[Any]) -> list[Any]:
    seen: set[Any] = set()
    ordered = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def _clean_labels(labels: Iterable[str] | None) -> list[str]:
    return _unique(label.strip() for label in (labels or []) if label and label.strip())


def _resolve_assignees(*, db: Session, assignee_ids: Iterable[UUID], domain: str) -> list[User]:
    """Load assignees, all of whom must belong to the admin's organization."""
    ids = _unique(assignee_ids)
    if not ids:
        raise ValidationError(code="ASSIGNEES_REQUIRED", message="At least one assignee is required")

    users_by_id = {user.id: user for user in db.query(User).filter(User.id.in_(ids)).all()}
    unknown = [str(user_id) for user_id in ids if user_id not in users_by_id]
    outside = [
        {"id": str(user.id), "name": user.name, "email": user.email}
        for user in users_by_id.values()
        if not email_in_domain(user.email, domain)
    ]
    if unknown or outside:
        raise ValidationError(
            code="ASSIGNEES_OUTSIDE_ORGANIZATION",
            message="One or more users do not belong to your organization",
            details={"invalid_users": outside, "unknown_user_ids": unknown},
        )
    return [users_by_id[user_id] for user_id in ids]


def _notify_assigned(*, db: Session, task: Task, users: Iterable[User], actor: User) -> None:
    for user in users:
        if user.id == actor.id:
            continue
        create_notification(
            db=db,
            recipient_id=user.id,
            type="task_assigned",
            title="New task assigned",
            message=f'{actor.name} assigned you "{task.title}"',
            task_id=task.id,
            sender_id=actor.id,
        )


def create_task_use_case(
    *,
    db: Session,
    current_user: User,
    payload: TaskCreate,
    config: EngineConfig,
) -> Task:
    """Create a task inside the admin's organization."""
    domain = ensure_admin_org(current_user, config)
    assignees = _resolve_assignees(db=db, assignee_ids=payload.assigned_to, domain=domain)

    checklist = normalize_checklist(payload.checklist)
    _completed, total, progress = compute_progress(checklist)
    task = Task(
        id=uuid4(),
        title=payload.title.strip(),
        description=payload.description,
        priority=payload.priority,
        status=status_for_progress(progress) if total else STATUS_PENDING,
        due_date=_as_utc(payload.due_date),
        creator_id=current_user.id,
        attachments=list(payload.attachments),
        checklist=checklist,
        progress=progress,
        labels=_clean_labels(payload.labels),
        reminder_sent=False,
    )
    task.assignees = assignees
    db.add(task)

    _log_activity(db=db, task=task, actor=current_user, action="created", details=f"Task created: {task.title}")
    _notify_assigned(db=db, task=task, users=assignees, actor=current_user)

    commit_or_raise(db, action="create task")
    db.refresh(task)
    logger.info("Task %s created by %s for %s assignees", task.id, current_user.email, len(assignees))
    return task


def _describe_update(
    changed: list[str],
    *,
    old_priority: str,
    new_priority: str,
    old_assignees: list[UUID],
    new_assignees: list[UUID],
    old_attachments: list[str],
    new_attachments: list[str],
) -> dict[str, Any]:
    if changed == ["priority"]:
        return {
            "action": "priority_changed",
            "details": f"Priority changed from {old_priority} to {new_priority}",
            "old_value": old_priority,
            "new_value": new_priority,
        }
    if changed == ["assigned_to"]:
        return {
            "action": "assigned",
            "details": "Assignees changed",
            "old_value": ",".join(str(i) for i in old_assignees),
            "new_value": ",".join(str(i) for i in new_assignees),
        }
    added = [a for a in new_attachments if a not in old_attachments]
    if changed == ["attachments"] and added and len(new_attachments) > len(old_attachments):
        return {
            "action": "attachment_added",
            "details": f"Added {len(added)} attachment(s)",
            "new_value": ", ".join(added),
        }
    return {"action": "updated", "details": f"Updated: {', '.join(changed)}"}


def update_task_use_case(
    *,
    db: Session,
    task_id: UUID,
    current_user: User,
    payload: TaskUpdate,
    config: EngineConfig,
) -> Task:
    """Edit task fields. Reassignment is admin-only and org-validated."""
    task = load_task_for_user(db=db, task_id=task_id, current_user=current_user, config=config)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("assigned_to") is not None and current_user.role != "admin":
        raise ForbiddenError(code="TASK_REASSIGN_FORBIDDEN", message="Only admins can reassign tasks")

    old_priority = task.priority
    old_assignees = list(task.assignee_ids)
    old_attachments = list(task.attachments or [])
    changed: list[str] = []
    added_users: list[User] = []

    for field in ("title", "description", "priority"):
        if field not in changes:
            continue
        value = changes[field]
        if value is None and field != "description":
            continue
        if field == "title":
            value = value.strip()
        if getattr(task, field) != value:
            setattr(task, field, value)
            changed.append(field)

    if changes.get("due_date") is not None:
        due_date = _as_utc(changes["due_date"])
        if task.due_date is None or _as_utc(task.due_date) != due_date:
            task.due_date = due_date
            task.reminder_sent = False
            task.reminder_sent_at = None
            changed.append("due_date")

    if changes.get("attachments") is not None and list(changes["attachments"]) != old_attachments:
        task.attachments = list(changes["attachments"])
        changed.append("attachments")

    if changes.get("assigned_to") is not None:
        domain = ensure_admin_org(current_user, config)
        users = _resolve_assignees(db=db, assignee_ids=changes["assigned_to"], domain=domain)
        if {user.id for user in users} != set(old_assignees):
            added_users = [user for user in users if user.id not in old_assignees]
            task.assignees = users
            changed.append("assigned_to")

    if not changed:
        return task

    entry = _describe_update(
        changed,
        old_priority=old_priority,
        new_priority=task.priority,
        old_assignees=old_assignees,
        new_assignees=list(task.assignee_ids),
        old_attachments=old_attachments,
        new_attachments=list(task.attachments or []),
    )
    _log_activity(db=db, task=task, actor=current_user, **entry)
    _notify_assigned(db=db, task=task, users=added_users, actor=current_user)

    commit_or_raise(db, action="update task")
    db.refresh(task)
    return task


def update_task_status_use_case(
    *,
    db: Session,
    task_id: UUID,
    current_user: User,
    status: str,
    config: EngineConfig,
) -> Task:
    """Set status directly; Completed forces the whole checklist done."""
    task = load_task_for_user(db=db, task_id=task_id, current_user=current_user, config=config)
    try:
        new_status = normalize_task_status(status)
    except ValueError as error:
        raise ValidationError(code="INVALID_TASK_STATUS", message=str(error)) from error

    old_status = task.status
    task.status = new_status
    if new_status == STATUS_COMPLETED:
        task.checklist = force_completed(task.checklist)
        task.progress = 100

    _log_activity(
        db=db,
        task=task,
        actor=current_user,
        action="status_changed",
        details=f"Status changed from {old_status} to {new_status}",
        old_value=old_status,
        new_value=new_status,
    )
    commit_or_raise(db, action="update task status")
    db.refresh(task)
    return task


def update_task_checklist_use_case(
    *,
    db: Session,
    task_id: UUID,
    current_user: User,
    checklist: Iterable[Any],
    config: EngineConfig,
) -> Task:
    """Replace the checklist; progress and status are always recomputed from it."""
    task = load_task_for_user(db=db, task_id=task_id, current_user=current_user, config=config)

    old_progress = task.progress or 0
    task.checklist = normalize_checklist(checklist)
    completed, total, progress = compute_progress(task.checklist)
    task.progress = progress
    task.status = status_for_progress(progress)

    _log_activity(
        db=db,
        task=task,
        actor=current_user,
        action="checklist_updated",
        details=f"{completed}/{total} checklist items completed",
        old_value=old_progress,
        new_value=progress,
    )
    commit_or_raise(db, action="update task checklist")
    db.refresh(task)
    return task


def _mentionable_users(
    *, db: Session, task: Task, author: User, mention_ids: list[UUID], config: EngineConfig
) -> list[User]:
    """Mentioned users who exist and belong to the task or the author's organization."""
    if not mention_ids:
        return []
    users = db.query(User).filter(User.id.in_(mention_ids)).all()
    author_domain = organization_domain(author.email, config)
    related = set(task.assignee_ids) | {task.creator_id}
    by_id = {
        user.id: user
        for user in users
        if user.id != author.id
        and (user.id in related or (author_domain and email_in_domain(user.email, author_domain)))
    }
    return [by_id[user_id] for user_id in mention_ids if user_id in by_id]


def add_comment_use_case(
    *,
    db: Session,
    task_id: UUID,
    current_user: User,
    text: str,
    mentions: Iterable[UUID] = (),
    config: EngineConfig,
    notifier: Notifier | None = None,
) -> TaskComment:
    """Append a comment; mentioned users are notified in-app and by email."""
    task = load_task_for_user(db=db, task_id=task_id, current_user=current_user, config=config)
    text = (text or "").strip()
    if not text:
        raise ValidationError(code="COMMENT_EMPTY", message="Comment text is required")

    mention_ids = _unique(mentions)
    comment = TaskComment(
        id=uuid4(),
        task_id=task.id,
        user_id=current_user.id,
        text=text,
        mentions=[str(user_id) for user_id in mention_ids],
    )
    db.add(comment)
    _log_activity(db=db, task=task, actor=current_user, action="comment_added", details=text[:200])

    mentioned = _mentionable_users(
        db=db, task=task, author=current_user, mention_ids=mention_ids, config=config
    )
    for user in mentioned:
        create_notification(
            db=db,
            recipient_id=user.id,
            type="mention",
            title="You were mentioned",
            message=f'{current_user.name} mentioned you in "{task.title}"',
            task_id=task.id,
            sender_id=current_user.id,
        )

    commit_or_raise(db, action="add comment")

    if notifier is not None:
        for user in mentioned:
            try:
                notifier.send_mention_notification(
                    email=user.email,
                    recipient_name=user.name,
                    mentioned_by=current_user.name,
                    task_title=task.title,
                    comment_text=text,
                    task_id=str(task.id),
                )
            except DependencyFailure:
                logger.warning("Mention email for %s on task %s was not queued", user.email, task.id)

    db.refresh(comment)
    return comment


def delete_comment_use_case(
    *,
    db: Session,
    task_id: UUID,
    comment_id: UUID,
    current_user: User,
    config: EngineConfig,
) -> None:
    """Remove a comment; only its author or an admin of the task's organization may."""
    task = load_task_for_user(db=db, task_id=task_id, current_user=current_user, config=config)
    comment = (
        db.query(TaskComment)
        .filter(TaskComment.id == comment_id, TaskComment.task_id == task.id)
        .first()
    )
    if comment is None:
        raise NotFoundError(code="COMMENT_NOT_FOUND", message="Comment not found")
    if comment.user_id != current_user.id and current_user.role != "admin":
        raise ForbiddenError(
            code="COMMENT_DELETE_FORBIDDEN",
            message="Only the author or an admin can delete this comment",
        )

    db.delete(comment)
    _log_activity(
        db=db,
        task=task,
        actor=current_user,
        action="comment_deleted",
        details=(comment.text or "")[:200],
    )
    commit_or_raise(db, action="delete comment")
    logger.info("Comment %s on task %s deleted by %s", comment_id, task.id, current_user.email)


def add_labels_use_case(
    *,
    db: Session,
    task_id: UUID,
    current_user: User,
    labels: Iterable[str],
    config: EngineConfig,
) -> Task:
    """Add labels (idempotent). Nothing new means no activity entry."""
    task, _domain = load_task_for_admin(db=db, task_id=task_id, current_user=current_user, config=config)

    existing = list(task.labels or [])
    added = [label for label in _clean_labels(labels) if label not in existing]
    if not added:
        return task

    task.labels = existing + added
    _log_activity(
        db=db,
        task=task,
        actor=current_user,
        action="label_added",
        details=f"Added labels: {', '.join(added)}",
        new_value=", ".join(added),
    )
    commit_or_raise(db, action="add labels")
    db.refresh(task)
    return task


def remove_label_use_case(
    *,
    db: Session,
    task_id: UUID,
    current_user: User,
    label: str,
    config: EngineConfig,
) -> Task:
    task, _domain = load_task_for_admin(db=db, task_id=task_id, current_user=current_user, config=config)

    label = (label or "").strip()
    existing = list(task.labels or [])
    if label not in existing:
        raise NotFoundError(code="LABEL_NOT_FOUND", message=f"Label '{label}' not found on task")

    task.labels = [item for item in existing if item != label]
    _log_activity(
        db=db,
        task=task,
        actor=current_user,
        action="label_removed",
        details=f"Removed label: {label}",
        old_value=label,
    )
    commit_or_raise(db, action="remove label")
    db.refresh(task)
    return task


def delete_task_use_case(*, db: Session, task_id: UUID, current_user: User, config: EngineConfig) -> None:
    task, _domain = load_task_for_admin(db=db, task_id=task_id, current_user=current_user, config=config)
    db.query(Notification).filter(Notification.task_id == task.id).delete(synchronize_session=False)
    db.delete(task)
    commit_or_raise(db, action="delete task")
    logger.info("Task %s deleted by %s", task_id, current_user.email)


def duplicate_task_use_case(*, db: Session, task_id: UUID, current_user: User, config: EngineConfig) -> Task:
    """Copy a task with its checklist reset; the copy starts Pending."""
    source, _domain = load_task_for_admin(db=db, task_id=task_id, current_user=current_user, config=config)

    copy = Task(
        id=uuid4(),
        title=f"{source.title} (Copy)",
        description=source.description,
        priority=source.priority,
        status=STATUS_PENDING,
        due_date=source.due_date,
        creator_id=current_user.id,
        attachments=list(source.attachments or []),
        checklist=reset_checklist(source.checklist),
        progress=0,
        labels=list(source.labels or []),
        reminder_sent=False,
    )
    copy.assignees = list(source.assignees)
    db.add(copy)
    _log_activity(
        db=db,
        task=copy,
        actor=current_user,
        action="created",
        details=f"Duplicated from task {source.id}",
    )
    commit_or_raise(db, action="duplicate task")
    db.refresh(copy)
    return copy
