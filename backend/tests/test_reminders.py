from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from app.config import EngineConfig
from app.domain_errors import DependencyFailure, ForbiddenError, ValidationError
from app.models import Notification, Task
from app.use_cases.reminders import (
    run_due_date_reminders,
    send_task_reminder_use_case,
    trigger_org_reminders_use_case,
)

CONFIG = EngineConfig(public_domains=frozenset({"gmail.com"}))
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class _QueryStub:
    def __init__(self, tasks):
        self._tasks = tasks

    def filter(self, *_args, **_kwargs):
        return self

    def first(self):
        return self._tasks[0] if self._tasks else None

    def all(self):
        return list(self._tasks)


class _SessionStub:
    def __init__(self, tasks=()):
        self.query_stub = _QueryStub(list(tasks))
        self.added = []
        self.commit_calls = 0

    def query(self, model):
        if model is Task:
            return self.query_stub
        raise AssertionError(f"Unexpected query model: {model}")

    def add(self, obj):
        self.added.append(obj)

    def commit(self):
        self.commit_calls += 1


class _NotifierStub:
    def __init__(self, *, fail=False):
        self.fail = fail
        self.sent = []

    def send_due_date_reminder(self, **kwargs):
        if self.fail:
            raise DependencyFailure(code="EMAIL_QUEUE_FAILED", message="queue down")
        self.sent.append(kwargs)


def _user(name: str, email: str, role: str = "member"):
    return SimpleNamespace(id=uuid4(), name=name, email=email, role=role)


def _task(*assignees, status="Pending"):
    return SimpleNamespace(
        id=uuid4(),
        title="Quarterly report",
        status=status,
        due_date=NOW + timedelta(hours=3),
        assignees=list(assignees),
        reminder_sent=False,
        reminder_sent_at=None,
    )


def test_periodic_run_notifies_every_assignee_and_flags_task() -> None:
    bob = _user("Bob", "bob@acme.test")
    cara = _user("Cara", "cara@acme.test")
    task = _task(bob, cara)
    db = _SessionStub([task])
    notifier = _NotifierStub()

    result = run_due_date_reminders(db=db, now=NOW, window_hours=24, notifier=notifier)

    assert result == {"tasks_reminded": 1, "notifications_created": 2}
    assert task.reminder_sent is True
    assert task.reminder_sent_at == NOW
    notifications = [item for item in db.added if isinstance(item, Notification)]
    assert {n.recipient_id for n in notifications} == {bob.id, cara.id}
    assert all(n.type == "reminder" and n.sender_id is None for n in notifications)
    assert [m["email"] for m in notifier.sent] == ["bob@acme.test", "cara@acme.test"]
    assert db.commit_calls == 1


def test_periodic_run_without_due_tasks_does_not_commit() -> None:
    db = _SessionStub([])

    result = run_due_date_reminders(db=db, now=NOW, window_hours=24, notifier=_NotifierStub())

    assert result == {"tasks_reminded": 0, "notifications_created": 0}
    assert db.commit_calls == 0


def test_email_queue_failure_keeps_in_app_reminders() -> None:
    task = _task(_user("Bob", "bob@acme.test"))
    db = _SessionStub([task])

    result = run_due_date_reminders(db=db, now=NOW, window_hours=24, notifier=_NotifierStub(fail=True))

    assert result["notifications_created"] == 1
    assert task.reminder_sent is True


def test_org_trigger_requires_private_domain_admin() -> None:
    with pytest.raises(ForbiddenError):
        trigger_org_reminders_use_case(
            db=_SessionStub(),
            current_user=_user("Pat", "pat@gmail.com", role="admin"),
            config=CONFIG,
            now=NOW,
            window_hours=24,
            notifier=None,
        )


def test_org_trigger_records_sender() -> None:
    admin = _user("Ada", "ada@acme.test", role="admin")
    task = _task(_user("Bob", "bob@acme.test"))
    db = _SessionStub([task])

    trigger_org_reminders_use_case(
        db=db, current_user=admin, config=CONFIG, now=NOW, window_hours=24, notifier=None
    )

    assert [n.sender_id for n in db.added] == [admin.id]


def test_single_task_reminder_refuses_completed_task() -> None:
    admin = _user("Ada", "ada@acme.test", role="admin")
    task = _task(_user("Bob", "bob@acme.test"), status="Completed")

    with pytest.raises(ValidationError) as exc:
        send_task_reminder_use_case(
            db=_SessionStub([task]), task_id=task.id, current_user=admin, config=CONFIG, now=NOW, notifier=None
        )

    assert exc.value.code == "TASK_ALREADY_COMPLETED"


def test_single_task_reminder_resends_even_if_already_reminded() -> None:
    admin = _user("Ada", "ada@acme.test", role="admin")
    task = _task(_user("Bob", "bob@acme.test"))
    task.reminder_sent = True
    db = _SessionStub([task])

    result = send_task_reminder_use_case(
        db=db, task_id=task.id, current_user=admin, config=CONFIG, now=NOW, notifier=None
    )

    assert result == {"tasks_reminded": 1, "notifications_created": 1}
