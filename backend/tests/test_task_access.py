from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest

from app.config import EngineConfig
from app.domain_errors import ForbiddenError
from app.models import Task
from app.security import (
    apply_task_visibility_scope,
    can_view_task,
    ensure_admin_org,
    ensure_task_access,
    get_org_domain,
    organization_domain,
)

CONFIG = EngineConfig(public_domains=frozenset({"gmail.com", "outlook.com"}))


class _RecordingQuery:
    def __init__(self) -> None:
        self.conditions = []

    def filter(self, *conditions):
        self.conditions.extend(conditions)
        return self


def _user(email: str, role: str = "member"):
    return SimpleNamespace(id=uuid4(), email=email, role=role, name=email.split("@")[0])


def _task(*assignees):
    return SimpleNamespace(id=uuid4(), assignees=list(assignees))


@pytest.mark.parametrize(
    ("email", "expected"),
    [
        ("Ann@Acme.TEST", "acme.test"),
        ("ann@sub.acme.test", "sub.acme.test"),
        ("no-at-sign", ""),
        ("", ""),
        (None, ""),
    ],
)
def test_org_domain_is_lowercased_suffix_after_at(email, expected) -> None:
    assert get_org_domain(email) == expected


def test_public_domains_have_no_organization() -> None:
    assert organization_domain("ann@acme.test", CONFIG) == "acme.test"
    assert organization_domain("ann@GMAIL.com", CONFIG) is None
    assert organization_domain("broken", CONFIG) is None


def test_admin_org_requires_admin_role_and_private_domain() -> None:
    assert ensure_admin_org(_user("ada@acme.test", role="admin"), CONFIG) == "acme.test"

    with pytest.raises(ForbiddenError) as member_exc:
        ensure_admin_org(_user("bob@acme.test"), CONFIG)
    with pytest.raises(ForbiddenError) as public_exc:
        ensure_admin_org(_user("pat@outlook.com", role="admin"), CONFIG)

    assert member_exc.value.code == "ADMIN_REQUIRED"
    assert public_exc.value.code == "PUBLIC_DOMAIN_ADMIN"
    assert public_exc.value.message == "Admin access restricted for public domains."


def test_member_sees_only_tasks_assigned_to_them() -> None:
    bob = _user("bob@acme.test")
    cara = _user("cara@acme.test")

    assert can_view_task(_task(bob, cara), bob, CONFIG)
    assert not can_view_task(_task(cara), bob, CONFIG)


def test_admin_sees_tasks_with_any_assignee_in_their_organization() -> None:
    admin = _user("ada@acme.test", role="admin")
    inside = _user("bob@acme.test")
    outside = _user("olga@other.test")
    lookalike = _user("eve@evilacme.test")

    assert can_view_task(_task(outside, inside), admin, CONFIG)
    assert not can_view_task(_task(outside), admin, CONFIG)
    assert not can_view_task(_task(lookalike), admin, CONFIG)


def test_public_domain_admin_sees_nothing() -> None:
    admin = _user("pat@gmail.com", role="admin")
    same_domain = _user("sam@gmail.com")

    assert not can_view_task(_task(same_domain), admin, CONFIG)
    with pytest.raises(ForbiddenError) as exc:
        ensure_task_access(_task(same_domain), admin, CONFIG)
    assert exc.value.code == "TASK_ACCESS_DENIED"


def test_visibility_scope_for_member_filters_on_own_assignment() -> None:
    query = _RecordingQuery()

    apply_task_visibility_scope(query, _user("bob@acme.test"), CONFIG)

    sql = str(query.conditions[0])
    assert "EXISTS" in sql
    assert "task_assignees" in sql
    assert "users.id" in sql


def test_visibility_scope_for_admin_filters_on_assignee_domain() -> None:
    query = _RecordingQuery()

    apply_task_visibility_scope(query, _user("ada@acme.test", role="admin"), CONFIG)

    sql = str(query.conditions[0])
    assert "EXISTS" in sql
    assert "users.email LIKE" in sql


def test_visibility_scope_for_public_domain_admin_matches_nothing() -> None:
    query = _RecordingQuery()

    apply_task_visibility_scope(query, _user("pat@gmail.com", role="admin"), CONFIG)

    assert str(query.conditions[0]).lower() in ("false", "0 = 1")


def test_task_model_exposes_assignee_ids() -> None:
    task = Task(id=uuid4(), title="t")
    assert task.assignee_ids == []
