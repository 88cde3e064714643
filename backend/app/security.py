"""Security helpers (organization scoping and task access checks)."""

from __future__ import annotations

from typing import Any

from sqlalchemy import false

from .config import EngineConfig
from .domain_errors import ForbiddenError
from .models import Task, User


def get_org_domain(email: str | None) -> str:
    """Return the lowercased part of an email after '@' ('' when absent)."""
    if not email or "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].strip().lower()


def is_public_domain(domain: str, config: EngineConfig) -> bool:
    return domain.lower() in config.public_domains


def organization_domain(email: str | None, config: EngineConfig) -> str | None:
    """Organization of an email address; None for public or missing domains."""
    domain = get_org_domain(email)
    if not domain or is_public_domain(domain, config):
        return None
    return domain


def email_in_domain(email: str | None, domain: str) -> bool:
    return bool(email) and email.lower().endswith(f"@{domain.lower()}")


def ensure_admin_org(user: User, config: EngineConfig) -> str:
    """Return the admin's organization domain or raise Forbidden.

    Public-domain admins have no organization boundary and are denied every
    org-scoped operation.
    """
    if user.role != "admin":
        raise ForbiddenError(code="ADMIN_REQUIRED", message="Admin access required")
    domain = organization_domain(user.email, config)
    if domain is None:
        raise ForbiddenError(
            code="PUBLIC_DOMAIN_ADMIN",
            message="Admin access restricted for public domains.",
        )
    return domain


def is_task_assigned_to_user(task: Task, user: User) -> bool:
    """Check if a task is assigned to a user."""
    return any(assignee.id == user.id for assignee in task.assignees)


def admin_can_see_task(task: Task, domain: str) -> bool:
    """A task belongs to an organization when at least one assignee is in it."""
    return any(email_in_domain(assignee.email, domain) for assignee in task.assignees)


def can_view_task(task: Task, user: User, config: EngineConfig) -> bool:
    """Task visibility policy: admins are org-scoped, members see their assignments."""
    if user.role == "admin":
        domain = organization_domain(user.email, config)
        return domain is not None and admin_can_see_task(task, domain)
    return is_task_assigned_to_user(task, user)


def ensure_task_access(task: Task, user: User, config: EngineConfig) -> None:
    if not can_view_task(task, user, config):
        raise ForbiddenError(code="TASK_ACCESS_DENIED", message="Unauthorized for this task")


def apply_task_visibility_scope(query: Any, current_user: User, config: EngineConfig):
    """Apply the Task visibility policy to a SQLAlchemy query."""
    if current_user.role == "admin":
        domain = organization_domain(current_user.email, config)
        if domain is None:
            return query.filter(false())
        return query.filter(Task.assignees.any(User.email.endswith(f"@{domain}", autoescape=True)))
    return query.filter(Task.assignees.any(User.id == current_user.id))
