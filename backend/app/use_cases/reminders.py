"""Due-date reminder use-cases (periodic job, admin trigger, single task)."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from ..config import EngineConfig
from ..database import commit_or_raise
from ..domain_errors import DependencyFailure, ValidationError
from ..models import Task, User
from ..security import apply_task_visibility_scope, ensure_admin_org
from ..services.notifier import Notifier
from ..services.task_progress import STATUS_COMPLETED
from .notifications import create_notification
from .task_transitions import load_task_for_admin

logger = logging.getLogger(__name__)


def due_soon_filter(query, *, now: datetime, window_hours: int):
    """Open tasks without a reminder, due within the window (or overdue by less than it)."""
    window = timedelta(hours=window_hours)
    return query.filter(
        Task.status != STATUS_COMPLETED,
        Task.reminder_sent.is_(False),
        Task.due_date <= now + window,
        Task.due_date >= now - window,
    )


def send_reminders_for_tasks(
    *,
    db: Session,
    tasks: list[Task],
    now: datetime,
    notifier: Notifier | None,
    sender: User | None = None,
) -> dict[str, int]:
    """Notify every assignee of each task and flag the tasks as reminded."""
    emails: list[tuple[User, Task]] = []
    notifications = 0
    for task in tasks:
        due = task.due_date.strftime("%Y-%m-%d %H:%M")
        for assignee in task.assignees:
            create_notification(
                db=db,
                recipient_id=assignee.id,
                type="reminder",
                title="Task due soon",
                message=f'"{task.title}" is due on {due} UTC',
                task_id=task.id,
                sender_id=sender.id if sender else None,
            )
            notifications += 1
            emails.append((assignee, task))
        task.reminder_sent = True
        task.reminder_sent_at = now

    if tasks:
        commit_or_raise(db, action="record reminders")

    if notifier is not None:
        for assignee, task in emails:
            try:
                notifier.send_due_date_reminder(
                    email=assignee.email,
                    recipient_name=assignee.name,
                    task_title=task.title,
                    due_date=task.due_date,
                    task_id=str(task.id),
                )
            except DependencyFailure:
                logger.warning("Reminder email for %s on task %s was not queued", assignee.email, task.id)

    return {"tasks_reminded": len(tasks), "notifications_created": notifications}


def run_due_date_reminders(
    *, db: Session, now: datetime, window_hours: int, notifier: Notifier | None
) -> dict[str, int]:
    tasks = due_soon_filter(db.query(Task), now=now, window_hours=window_hours).all()
    result = send_reminders_for_tasks(db=db, tasks=tasks, now=now, notifier=notifier)
    logger.info("Due-date reminders sent for %s tasks", result["tasks_reminded"])
    return result


def trigger_org_reminders_use_case(
    *,
    db: Session,
    current_user: User,
    config: EngineConfig,
    now: datetime,
    window_hours: int,
    notifier: Notifier | None,
) -> dict[str, int]:
    ensure_admin_org(current_user, config)
    query = apply_task_visibility_scope(db.query(Task), current_user, config)
    tasks = due_soon_filter(query, now=now, window_hours=window_hours).all()
    return send_reminders_for_tasks(db=db, tasks=tasks, now=now, notifier=notifier, sender=current_user)


def send_task_reminder_use_case(
    *,
    db: Session,
    task_id: UUID,
    current_user: User,
    config: EngineConfig,
    now: datetime,
    notifier: Notifier | None,
) -> dict[str, int]:
    """Explicit reminder for one task, regardless of an earlier reminder."""
    task, _domain = load_task_for_admin(db=db, task_id=task_id, current_user=current_user, config=config)
    if task.status == STATUS_COMPLETED:
        raise ValidationError(code="TASK_ALREADY_COMPLETED", message="Cannot send a reminder for a completed task")
    return send_reminders_for_tasks(db=db, tasks=[task], now=now, notifier=notifier, sender=current_user)
