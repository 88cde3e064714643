"""Organization member directory use-cases."""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import EngineConfig
from ..domain_errors import NotFoundError
from ..models import Task, User, task_assignees
from ..security import email_in_domain, ensure_admin_org, organization_domain


def task_counts_by_user(db: Session, user_ids: Iterable[UUID]) -> dict[UUID, dict[str, int]]:
    """Per-user task counts keyed by status, in one grouped query."""
    ids = list(user_ids)
    counts: dict[UUID, dict[str, int]] = defaultdict(dict)
    if not ids:
        return counts
    rows = (
        db.query(task_assignees.c.user_id, Task.status, func.count(Task.id))
        .join(Task, Task.id == task_assignees.c.task_id)
        .filter(task_assignees.c.user_id.in_(ids))
        .group_by(task_assignees.c.user_id, Task.status)
        .all()
    )
    for user_id, status, count in rows:
        counts[user_id][status] = count
    return counts


def overdue_counts_by_user(db: Session, user_ids: Iterable[UUID], now: datetime) -> dict[UUID, int]:
    """Per-user count of unfinished tasks already past their due date."""
    ids = list(user_ids)
    if not ids:
        return {}
    rows = (
        db.query(task_assignees.c.user_id, func.count(Task.id))
        .join(Task, Task.id == task_assignees.c.task_id)
        .filter(
            task_assignees.c.user_id.in_(ids),
            Task.status != "Completed",
            Task.due_date < now,
        )
        .group_by(task_assignees.c.user_id)
        .all()
    )
    return {user_id: count for user_id, count in rows}


def org_users_query(db: Session, domain: str):
    return db.query(User).filter(User.email.endswith(f"@{domain}", autoescape=True))


def list_org_members_use_case(*, db: Session, current_user: User, config: EngineConfig) -> list[dict[str, Any]]:
    """Members of the admin's organization with their task counts."""
    domain = ensure_admin_org(current_user, config)
    users = org_users_query(db, domain).filter(User.role == "member").order_by(User.name).all()
    counts = task_counts_by_user(db, [user.id for user in users])
    return [
        {
            "user": user,
            "pending_tasks": counts[user.id].get("Pending", 0),
            "in_progress_tasks": counts[user.id].get("In Progress", 0),
            "completed_tasks": counts[user.id].get("Completed", 0),
        }
        for user in users
    ]


def get_org_member_use_case(*, db: Session, user_id: UUID, current_user: User, config: EngineConfig) -> User:
    """Fetch a user of the caller's organization; other organizations look absent."""
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError(code="USER_NOT_FOUND", message="User not found")
    if user.id == current_user.id:
        return user
    domain = organization_domain(current_user.email, config)
    if domain is None or not email_in_domain(user.email, domain):
        raise NotFoundError(code="USER_NOT_FOUND", message="User not found")
    return user
