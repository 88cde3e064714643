"""Read-side task use-cases: listing, search, dashboards, labels, history."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from ..config import EngineConfig
from ..domain_errors import ValidationError
from ..models import TASK_PRIORITIES, Task, TaskActivity, TaskComment, User
from ..security import apply_task_visibility_scope, ensure_admin_org
from ..services.task_progress import normalize_task_status, percentage
from .org_members import org_users_query, overdue_counts_by_user, task_counts_by_user
from .task_transitions import load_task_for_user

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
RECENT_TASKS_LIMIT = 10

_PRIORITY_RANK = case(
    (Task.priority == "High", 3),
    (Task.priority == "Medium", 2),
    (Task.priority == "Low", 1),
    else_=0,
)
SORT_COLUMNS = {
    "created_at": Task.created_at,
    "due_date": Task.due_date,
    "priority": _PRIORITY_RANK,
    "title": Task.title,
}


def _page_window(page: int, limit: int) -> tuple[int, int]:
    return max(1, page), min(MAX_PAGE_SIZE, max(1, limit))


def _visible_tasks(*, db: Session, current_user: User, config: EngineConfig):
    """Org-scoped query for admins (public domains refused), own assignments for members."""
    if current_user.role == "admin":
        ensure_admin_org(current_user, config)
    return apply_task_visibility_scope(db.query(Task), current_user, config)


def _own_assignments(*, db: Session, current_user: User):
    return db.query(Task).filter(Task.assignees.any(User.id == current_user.id))


def _status_filter(status: str | None) -> str | None:
    if not status:
        return None
    try:
        return normalize_task_status(status)
    except ValueError as error:
        raise ValidationError(code="INVALID_TASK_STATUS", message=str(error)) from error


def _status_counts(query) -> dict[str, int]:
    rows = query.with_entities(Task.status, func.count(Task.id)).group_by(Task.status).all()
    return {status: count for status, count in rows}


def _status_summary(query) -> dict[str, int]:
    counts = _status_counts(query)
    return {
        "all": sum(counts.values()),
        "pending_tasks": counts.get("Pending", 0),
        "in_progress_tasks": counts.get("In Progress", 0),
        "completed_tasks": counts.get("Completed", 0),
    }


def _like(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def list_tasks_use_case(
    *,
    db: Session,
    current_user: User,
    config: EngineConfig,
    status: str | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> dict[str, Any]:
    base = _visible_tasks(db=db, current_user=current_user, config=config)
    if sort_by not in SORT_COLUMNS:
        raise ValidationError(
            code="INVALID_SORT",
            message=f"Invalid sort field: {sort_by}. Must be one of {', '.join(SORT_COLUMNS)}",
        )
    page, limit = _page_window(page, limit)

    query = base
    wanted = _status_filter(status)
    if wanted:
        query = query.filter(Task.status == wanted)

    column = SORT_COLUMNS[sort_by]
    ordering = column.asc() if sort_order == "asc" else column.desc()
    total = query.count()
    tasks = query.order_by(ordering, Task.id).offset((page - 1) * limit).limit(limit).all()

    return {
        "tasks": tasks,
        "total": total,
        "page": page,
        "limit": limit,
        "status_summary": _status_summary(base),
    }


def search_tasks_use_case(
    *,
    db: Session,
    current_user: User,
    config: EngineConfig,
    q: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    assignee_id: UUID | None = None,
    due_from: datetime | None = None,
    due_to: datetime | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict[str, Any]:
    query = _visible_tasks(db=db, current_user=current_user, config=config)
    page, limit = _page_window(page, limit)
    wanted = _status_filter(status)

    term = (q or "").strip()
    if term:
        pattern = _like(term)
        query = query.filter(
            or_(Task.title.ilike(pattern, escape="\\"), Task.description.ilike(pattern, escape="\\"))
        )
    if priority:
        if priority not in TASK_PRIORITIES:
            raise ValidationError(code="INVALID_PRIORITY", message=f"Invalid priority: {priority}")
        query = query.filter(Task.priority == priority)
    if assignee_id:
        query = query.filter(Task.assignees.any(User.id == assignee_id))
    if due_from:
        query = query.filter(Task.due_date >= due_from)
    if due_to:
        query = query.filter(Task.due_date <= due_to)

    summary = _status_summary(query)
    if wanted:
        query = query.filter(Task.status == wanted)

    total = query.count()
    tasks = query.order_by(Task.created_at.desc(), Task.id).offset((page - 1) * limit).limit(limit).all()
    return {"tasks": tasks, "total": total, "page": page, "limit": limit, "status_summary": summary}


def get_task_use_case(*, db: Session, task_id: UUID, current_user: User, config: EngineConfig) -> Task:
    return load_task_for_user(db=db, task_id=task_id, current_user=current_user, config=config)


def _dashboard(query, now: datetime) -> dict[str, Any]:
    counts = _status_counts(query)
    priorities = dict(
        query.with_entities(Task.priority, func.count(Task.id)).group_by(Task.priority).all()
    )
    overdue = query.filter(Task.status != "Completed", Task.due_date < now).count()
    total = sum(counts.values())
    recent = query.order_by(Task.created_at.desc()).limit(RECENT_TASKS_LIMIT).all()
    return {
        "statistics": {
            "total_tasks": total,
            "pending_tasks": counts.get("Pending", 0),
            "completed_tasks": counts.get("Completed", 0),
            "overdue_tasks": overdue,
        },
        "charts": {
            "task_distribution": {
                "All": total,
                "Pending": counts.get("Pending", 0),
                "InProgress": counts.get("In Progress", 0),
                "Completed": counts.get("Completed", 0),
            },
            "task_priority_levels": {name: priorities.get(name, 0) for name in TASK_PRIORITIES},
        },
        "recent_tasks": recent,
    }


def admin_dashboard_use_case(
    *, db: Session, current_user: User, config: EngineConfig, now: datetime | None = None
) -> dict[str, Any]:
    ensure_admin_org(current_user, config)
    query = apply_task_visibility_scope(db.query(Task), current_user, config)
    return _dashboard(query, now or datetime.now(timezone.utc))


def user_dashboard_use_case(*, db: Session, current_user: User, now: datetime | None = None) -> dict[str, Any]:
    return _dashboard(_own_assignments(db=db, current_user=current_user), now or datetime.now(timezone.utc))


def _productivity(counts: dict[str, int], overdue: int) -> dict[str, int]:
    total = sum(counts.values())
    completed = counts.get("Completed", 0)
    return {
        "total_tasks": total,
        "completed_tasks": completed,
        "in_progress_tasks": counts.get("In Progress", 0),
        "pending_tasks": counts.get("Pending", 0),
        "overdue_tasks": overdue,
        "completion_rate": percentage(completed, total),
    }


def _query_productivity(query, now: datetime) -> dict[str, int]:
    overdue = query.filter(Task.status != "Completed", Task.due_date < now).count()
    return _productivity(_status_counts(query), overdue)


def productivity_stats_use_case(*, db: Session, current_user: User, now: datetime | None = None) -> dict[str, int]:
    """Completion statistics over the caller's own assignments."""
    return _query_productivity(_own_assignments(db=db, current_user=current_user), now or datetime.now(timezone.utc))


def team_productivity_use_case(
    *, db: Session, current_user: User, config: EngineConfig, now: datetime | None = None
) -> dict[str, Any]:
    """Per-member completion statistics for the admin's organization, best completion rate first.

    The team summary counts each organization task once, however many members share it.
    """
    domain = ensure_admin_org(current_user, config)
    now = now or datetime.now(timezone.utc)
    users = org_users_query(db, domain).filter(User.role == "member").order_by(User.name).all()
    ids = [user.id for user in users]
    counts = task_counts_by_user(db, ids)
    overdue = overdue_counts_by_user(db, ids, now)

    members = [{"user": user, **_productivity(counts.get(user.id, {}), overdue.get(user.id, 0))} for user in users]
    members.sort(key=lambda member: -member["completion_rate"])
    team = _query_productivity(apply_task_visibility_scope(db.query(Task), current_user, config), now)
    return {"team": team, "members": members}


def list_labels_use_case(*, db: Session, current_user: User, config: EngineConfig) -> list[str]:
    rows = _visible_tasks(db=db, current_user=current_user, config=config).with_entities(Task.labels).all()
    return sorted({label for (labels,) in rows for label in (labels or [])})


def task_activity_use_case(
    *, db: Session, task_id: UUID, current_user: User, config: EngineConfig
) -> list[TaskActivity]:
    task = load_task_for_user(db=db, task_id=task_id, current_user=current_user, config=config)
    return (
        db.query(TaskActivity)
        .filter(TaskActivity.task_id == task.id)
        .order_by(TaskActivity.created_at.asc())
        .all()
    )


def task_comments_use_case(
    *, db: Session, task_id: UUID, current_user: User, config: EngineConfig
) -> list[TaskComment]:
    task = load_task_for_user(db=db, task_id=task_id, current_user=current_user, config=config)
    return (
        db.query(TaskComment)
        .filter(TaskComment.task_id == task.id)
        .order_by(TaskComment.created_at.asc())
        .all()
    )
