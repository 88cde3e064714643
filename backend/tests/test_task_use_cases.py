from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pydantic
import pytest

from app.config import EngineConfig
from app.domain_errors import DependencyFailure, DomainError, ForbiddenError, NotFoundError, ValidationError
from app.models import Notification, Task, TaskActivity, TaskComment, User
from app.schemas import ChecklistItem, TaskCreate, TaskUpdate
from app.use_cases.task_queries import task_activity_use_case
from app.use_cases.task_transitions import (
    add_comment_use_case,
    add_labels_use_case,
    create_task_use_case,
    delete_comment_use_case,
    delete_task_use_case,
    duplicate_task_use_case,
    remove_label_use_case,
    update_task_checklist_use_case,
    update_task_status_use_case,
    update_task_use_case,
)

CONFIG = EngineConfig(public_domains=frozenset({"gmail.com"}))
DUE = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


class _QueryStub:
    def __init__(self, *, first_result=None, all_result=None):
        self._first_result = first_result
        self._all_result = all_result or []
        self.deleted = False
        self.ordering = ()

    def filter(self, *_args, **_kwargs):
        return self

    def order_by(self, *clauses):
        self.ordering = clauses
        return self

    def first(self):
        return self._first_result

    def all(self):
        return list(self._all_result)

    def delete(self, **_kwargs):
        self.deleted = True
        return 0


class _SessionStub:
    def __init__(self, *, task=None, users=(), comment=None):
        self._task = task
        self._comment = comment
        self._users = list(users)
        self.activity_query = _QueryStub()
        self.added = []
        self.deleted = []
        self.commit_calls = 0

    def query(self, model):
        if model is Task:
            return _QueryStub(first_result=self._task)
        if model is User:
            return _QueryStub(all_result=self._users)
        if model is Notification:
            return _QueryStub()
        if model is TaskComment:
            return _QueryStub(first_result=self._comment)
        if model is TaskActivity:
            self.activity_query = _QueryStub(all_result=self.of_type(TaskActivity))
            return self.activity_query
        raise AssertionError(f"Unexpected query model: {model}")

    def add(self, obj):
        self.added.append(obj)

    def delete(self, obj):
        self.deleted.append(obj)

    def commit(self):
        self.commit_calls += 1

    def rollback(self):
        pass

    def refresh(self, _obj):
        pass

    def of_type(self, cls):
        return [item for item in self.added if isinstance(item, cls)]


class _NotifierStub:
    def __init__(self, *, fail=False):
        self.fail = fail
        self.mentions = []

    def send_mention_notification(self, **kwargs):
        if self.fail:
            raise DependencyFailure(code="EMAIL_QUEUE_FAILED", message="queue down")
        self.mentions.append(kwargs)


def _user(name: str, email: str, role: str = "member") -> User:
    return User(id=uuid4(), name=name, email=email, role=role, account_status="active")


def _task(*, assignees, creator=None, checklist=None, labels=None, status="Pending", progress=0) -> Task:
    task = Task(
        id=uuid4(),
        title="Ship release",
        description="Cut and publish",
        priority="Medium",
        status=status,
        due_date=DUE,
        creator_id=creator.id if creator else None,
        attachments=[],
        checklist=checklist or [],
        progress=progress,
        labels=labels or [],
        reminder_sent=False,
    )
    task.assignees = list(assignees)
    return task


@pytest.fixture()
def org():
    admin = _user("Ada Admin", "ada@acme.test", role="admin")
    bob = _user("Bob", "bob@acme.test")
    cara = _user("Cara", "cara@acme.test")
    outsider = _user("Olga", "olga@other.test")
    return {"admin": admin, "bob": bob, "cara": cara, "outsider": outsider}


def _create_payload(assignees, **overrides) -> TaskCreate:
    values = dict(
        title="  Ship release ",
        description="Cut and publish",
        priority="High",
        due_date=DUE,
        assigned_to=[user.id for user in assignees],
    )
    values.update(overrides)
    return TaskCreate(**values)


def test_create_task_logs_one_entry_and_notifies_assignees(org) -> None:
    db = _SessionStub(users=[org["bob"], org["cara"]])

    task = create_task_use_case(
        db=db,
        current_user=org["admin"],
        payload=_create_payload([org["bob"], org["cara"]]),
        config=CONFIG,
    )

    assert task.title == "Ship release"
    assert task.status == "Pending"
    assert task.progress == 0
    assert task.creator_id == org["admin"].id
    assert {user.id for user in task.assignees} == {org["bob"].id, org["cara"].id}
    activity = db.of_type(TaskActivity)
    assert [entry.action for entry in activity] == ["created"]
    assert {n.recipient_id for n in db.of_type(Notification)} == {org["bob"].id, org["cara"].id}
    assert db.commit_calls == 1


def test_create_task_derives_progress_from_initial_checklist(org) -> None:
    db = _SessionStub(users=[org["bob"]])
    payload = _create_payload(
        [org["bob"]],
        checklist=[ChecklistItem(text="a", completed=True), ChecklistItem(text="b")],
    )

    task = create_task_use_case(db=db, current_user=org["admin"], payload=payload, config=CONFIG)

    assert task.progress == 50
    assert task.status == "In Progress"
    assert task.checklist == [{"text": "a", "completed": True}, {"text": "b", "completed": False}]


def test_create_task_rejects_assignee_outside_organization(org) -> None:
    db = _SessionStub(users=[org["bob"], org["outsider"]])

    with pytest.raises(ValidationError) as exc:
        create_task_use_case(
            db=db,
            current_user=org["admin"],
            payload=_create_payload([org["bob"], org["outsider"]]),
            config=CONFIG,
        )

    assert exc.value.code == "ASSIGNEES_OUTSIDE_ORGANIZATION"
    assert exc.value.details["invalid_users"][0]["email"] == "olga@other.test"
    assert db.added == []
    assert db.commit_calls == 0


def test_create_task_rejects_unknown_assignee(org) -> None:
    db = _SessionStub(users=[])
    ghost_id = uuid4()

    with pytest.raises(ValidationError) as exc:
        create_task_use_case(
            db=db,
            current_user=org["admin"],
            payload=_create_payload([], assigned_to=[ghost_id]),
            config=CONFIG,
        )

    assert exc.value.details["unknown_user_ids"] == [str(ghost_id)]


def test_create_task_payload_requires_assignee_and_due_date() -> None:
    with pytest.raises(pydantic.ValidationError):
        TaskCreate(title="t", description="d", due_date=DUE, assigned_to=[])
    with pytest.raises(pydantic.ValidationError):
        TaskCreate(title="t", description="d", assigned_to=[uuid4()])


def test_members_and_public_domain_admins_cannot_create(org) -> None:
    public_admin = _user("Pat", "pat@gmail.com", role="admin")

    with pytest.raises(ForbiddenError) as member_exc:
        create_task_use_case(
            db=_SessionStub(users=[org["cara"]]),
            current_user=org["bob"],
            payload=_create_payload([org["cara"]]),
            config=CONFIG,
        )
    with pytest.raises(ForbiddenError) as public_exc:
        create_task_use_case(
            db=_SessionStub(users=[org["cara"]]),
            current_user=public_admin,
            payload=_create_payload([org["cara"]]),
            config=CONFIG,
        )

    assert member_exc.value.code == "ADMIN_REQUIRED"
    assert public_exc.value.code == "PUBLIC_DOMAIN_ADMIN"


def test_missing_task_is_not_found_before_access_check(org) -> None:
    db = _SessionStub(task=None)

    with pytest.raises(NotFoundError) as exc:
        update_task_status_use_case(
            db=db, task_id=uuid4(), current_user=org["outsider"], status="Completed", config=CONFIG
        )

    assert exc.value.code == "TASK_NOT_FOUND"


def test_unassigned_member_is_forbidden(org) -> None:
    task = _task(assignees=[org["bob"]])
    db = _SessionStub(task=task)

    with pytest.raises(ForbiddenError) as exc:
        update_task_status_use_case(db=db, task_id=task.id, current_user=org["cara"], status="Completed", config=CONFIG)

    assert exc.value.code == "TASK_ACCESS_DENIED"
    assert task.status == "Pending"
    assert db.commit_calls == 0


def test_completing_task_forces_checklist_done(org) -> None:
    task = _task(
        assignees=[org["bob"]],
        checklist=[{"text": "a", "completed": False}, {"text": "b", "completed": True}],
        status="In Progress",
        progress=50,
    )
    db = _SessionStub(task=task)

    update_task_status_use_case(db=db, task_id=task.id, current_user=org["bob"], status="completed", config=CONFIG)

    assert task.status == "Completed"
    assert task.progress == 100
    assert all(item["completed"] for item in task.checklist)
    activity = db.of_type(TaskActivity)
    assert len(activity) == 1
    assert (activity[0].old_value, activity[0].new_value) == ("In Progress", "Completed")


def test_setting_pending_keeps_checklist(org) -> None:
    checklist = [{"text": "a", "completed": True}, {"text": "b", "completed": False}]
    task = _task(assignees=[org["bob"]], checklist=checklist, status="In Progress", progress=50)
    db = _SessionStub(task=task)

    update_task_status_use_case(db=db, task_id=task.id, current_user=org["admin"], status="Pending", config=CONFIG)

    assert task.status == "Pending"
    assert task.checklist == checklist
    assert task.progress == 50


def test_invalid_status_is_rejected(org) -> None:
    task = _task(assignees=[org["bob"]])

    with pytest.raises(ValidationError) as exc:
        update_task_status_use_case(
            db=_SessionStub(task=task), task_id=task.id, current_user=org["bob"], status="Done", config=CONFIG
        )

    assert exc.value.code == "INVALID_TASK_STATUS"


@pytest.mark.parametrize(
    ("completed_flags", "progress", "status"),
    [
        ([], 0, "Pending"),
        ([False, False], 0, "Pending"),
        ([True, False, False], 33, "In Progress"),
        ([True, True, False], 67, "In Progress"),
        ([True, False, False, False], 25, "In Progress"),
        ([True, True, True], 100, "Completed"),
    ],
)
def test_checklist_update_recomputes_progress_and_status(org, completed_flags, progress, status) -> None:
    task = _task(assignees=[org["bob"]], status="Completed", progress=100)
    db = _SessionStub(task=task)
    checklist = [ChecklistItem(text=f"item {i}", completed=flag) for i, flag in enumerate(completed_flags)]

    update_task_checklist_use_case(db=db, task_id=task.id, current_user=org["bob"], checklist=checklist, config=CONFIG)

    assert task.progress == progress
    assert task.status == status
    assert [entry.action for entry in db.of_type(TaskActivity)] == ["checklist_updated"]


def test_member_cannot_reassign(org) -> None:
    task = _task(assignees=[org["bob"]])
    db = _SessionStub(task=task, users=[org["cara"]])

    with pytest.raises(ForbiddenError) as exc:
        update_task_use_case(
            db=db,
            task_id=task.id,
            current_user=org["bob"],
            payload=TaskUpdate(assigned_to=[org["cara"].id]),
            config=CONFIG,
        )

    assert exc.value.code == "TASK_REASSIGN_FORBIDDEN"


def test_priority_only_update_logs_priority_change(org) -> None:
    task = _task(assignees=[org["bob"]])
    db = _SessionStub(task=task)

    update_task_use_case(
        db=db, task_id=task.id, current_user=org["bob"], payload=TaskUpdate(priority="High"), config=CONFIG
    )

    activity = db.of_type(TaskActivity)
    assert [(e.action, e.old_value, e.new_value) for e in activity] == [("priority_changed", "Medium", "High")]


def test_reassignment_logs_once_and_notifies_new_assignee(org) -> None:
    task = _task(assignees=[org["bob"]])
    db = _SessionStub(task=task, users=[org["bob"], org["cara"]])

    update_task_use_case(
        db=db,
        task_id=task.id,
        current_user=org["admin"],
        payload=TaskUpdate(assigned_to=[org["bob"].id, org["cara"].id]),
        config=CONFIG,
    )

    assert {user.id for user in task.assignees} == {org["bob"].id, org["cara"].id}
    assert [entry.action for entry in db.of_type(TaskActivity)] == ["assigned"]
    assert [n.recipient_id for n in db.of_type(Notification)] == [org["cara"].id]


def test_multi_field_update_logs_single_generic_entry_and_resets_reminder(org) -> None:
    task = _task(assignees=[org["bob"]])
    task.reminder_sent = True
    db = _SessionStub(task=task)

    update_task_use_case(
        db=db,
        task_id=task.id,
        current_user=org["admin"],
        payload=TaskUpdate(title="New title", due_date=DUE + timedelta(days=2)),
        config=CONFIG,
    )

    activity = db.of_type(TaskActivity)
    assert len(activity) == 1
    assert activity[0].action == "updated"
    assert task.reminder_sent is False


def test_update_without_changes_writes_nothing(org) -> None:
    task = _task(assignees=[org["bob"]])
    db = _SessionStub(task=task)

    update_task_use_case(
        db=db, task_id=task.id, current_user=org["bob"], payload=TaskUpdate(priority="Medium"), config=CONFIG
    )

    assert db.added == []
    assert db.commit_calls == 0


def test_labels_are_idempotent(org) -> None:
    task = _task(assignees=[org["bob"]], labels=["backend"])
    db = _SessionStub(task=task)

    add_labels_use_case(
        db=db, task_id=task.id, current_user=org["admin"], labels=["backend", " ui ", "ui"], config=CONFIG
    )
    add_labels_use_case(db=db, task_id=task.id, current_user=org["admin"], labels=["ui"], config=CONFIG)

    assert task.labels == ["backend", "ui"]
    assert [entry.action for entry in db.of_type(TaskActivity)] == ["label_added"]
    assert db.commit_calls == 1


def test_removing_absent_label_is_not_found(org) -> None:
    task = _task(assignees=[org["bob"]], labels=["backend"])

    with pytest.raises(NotFoundError) as exc:
        remove_label_use_case(
            db=_SessionStub(task=task), task_id=task.id, current_user=org["admin"], label="ui", config=CONFIG
        )

    assert exc.value.code == "LABEL_NOT_FOUND"


def test_label_management_is_admin_only(org) -> None:
    task = _task(assignees=[org["bob"]])

    with pytest.raises(DomainError) as exc:
        add_labels_use_case(
            db=_SessionStub(task=task), task_id=task.id, current_user=org["bob"], labels=["x"], config=CONFIG
        )

    assert exc.value.http_status == 403


def test_admin_of_other_organization_cannot_delete(org) -> None:
    foreign_admin = _user("Fred", "fred@other.test", role="admin")
    task = _task(assignees=[org["bob"]])
    db = _SessionStub(task=task)

    with pytest.raises(ForbiddenError):
        delete_task_use_case(db=db, task_id=task.id, current_user=foreign_admin, config=CONFIG)

    assert db.deleted == []


def test_delete_task_removes_row(org) -> None:
    task = _task(assignees=[org["bob"]])
    db = _SessionStub(task=task)

    delete_task_use_case(db=db, task_id=task.id, current_user=org["admin"], config=CONFIG)

    assert db.deleted == [task]
    assert db.commit_calls == 1


def test_duplicate_resets_checklist_and_status(org) -> None:
    source = _task(
        assignees=[org["bob"]],
        checklist=[{"text": "a", "completed": True}],
        labels=["backend"],
        status="Completed",
        progress=100,
    )
    db = _SessionStub(task=source)

    copy = duplicate_task_use_case(db=db, task_id=source.id, current_user=org["admin"], config=CONFIG)

    assert copy.id != source.id
    assert copy.title == "Ship release (Copy)"
    assert copy.status == "Pending"
    assert copy.progress == 0
    assert copy.checklist == [{"text": "a", "completed": False}]
    assert copy.labels == ["backend"]
    assert [user.id for user in copy.assignees] == [org["bob"].id]


def test_comment_mentions_notify_related_users_only(org) -> None:
    task = _task(assignees=[org["bob"]], creator=org["admin"])
    db = _SessionStub(task=task, users=[org["admin"], org["bob"], org["outsider"]])
    notifier = _NotifierStub()

    comment = add_comment_use_case(
        db=db,
        task_id=task.id,
        current_user=org["bob"],
        text="  Ready for review ",
        mentions=[org["admin"].id, org["bob"].id, org["outsider"].id],
        config=CONFIG,
        notifier=notifier,
    )

    assert comment.text == "Ready for review"
    assert len(db.of_type(TaskComment)) == 1
    assert [entry.action for entry in db.of_type(TaskActivity)] == ["comment_added"]
    assert [n.recipient_id for n in db.of_type(Notification)] == [org["admin"].id]
    assert [m["email"] for m in notifier.mentions] == ["ada@acme.test"]


def test_comment_survives_mention_email_queue_failure(org) -> None:
    task = _task(assignees=[org["bob"]], creator=org["admin"])
    db = _SessionStub(task=task, users=[org["admin"]])

    comment = add_comment_use_case(
        db=db,
        task_id=task.id,
        current_user=org["bob"],
        text="ping",
        mentions=[org["admin"].id],
        config=CONFIG,
        notifier=_NotifierStub(fail=True),
    )

    assert comment.text == "ping"
    assert db.commit_calls == 1


def test_empty_comment_is_rejected(org) -> None:
    task = _task(assignees=[org["bob"]])

    with pytest.raises(ValidationError) as exc:
        add_comment_use_case(
            db=_SessionStub(task=task), task_id=task.id, current_user=org["bob"], text="   ", config=CONFIG
        )

    assert exc.value.code == "COMMENT_EMPTY"


def _comment(task: Task, author: User) -> TaskComment:
    return TaskComment(id=uuid4(), task_id=task.id, user_id=author.id, text="Looks done", mentions=[])


@pytest.mark.parametrize("deleter", ["cara", "admin"])
def test_comment_author_or_admin_can_delete(org, deleter) -> None:
    task = _task(assignees=[org["bob"], org["cara"]])
    comment = _comment(task, org["cara"])
    db = _SessionStub(task=task, comment=comment)

    delete_comment_use_case(
        db=db, task_id=task.id, comment_id=comment.id, current_user=org[deleter], config=CONFIG
    )

    assert db.deleted == [comment]
    activity = db.of_type(TaskActivity)
    assert [(entry.action, entry.user_id, entry.details) for entry in activity] == [
        ("comment_deleted", org[deleter].id, "Looks done")
    ]
    assert db.commit_calls == 1


def test_other_assignee_cannot_delete_comment(org) -> None:
    task = _task(assignees=[org["bob"], org["cara"]])
    comment = _comment(task, org["cara"])
    db = _SessionStub(task=task, comment=comment)

    with pytest.raises(ForbiddenError) as exc:
        delete_comment_use_case(
            db=db, task_id=task.id, comment_id=comment.id, current_user=org["bob"], config=CONFIG
        )

    assert exc.value.code == "COMMENT_DELETE_FORBIDDEN"
    assert db.deleted == []
    assert db.added == []
    assert db.commit_calls == 0


def test_deleting_missing_comment_is_not_found(org) -> None:
    task = _task(assignees=[org["bob"]])

    with pytest.raises(NotFoundError) as exc:
        delete_comment_use_case(
            db=_SessionStub(task=task), task_id=task.id, comment_id=uuid4(), current_user=org["bob"], config=CONFIG
        )

    assert exc.value.code == "COMMENT_NOT_FOUND"


def test_comment_on_unreachable_task_cannot_be_deleted(org) -> None:
    task = _task(assignees=[org["bob"]])
    comment = _comment(task, org["outsider"])
    db = _SessionStub(task=task, comment=comment)

    with pytest.raises(ForbiddenError):
        delete_comment_use_case(
            db=db, task_id=task.id, comment_id=comment.id, current_user=org["outsider"], config=CONFIG
        )

    assert db.deleted == []


def test_activity_log_keeps_every_mutation_in_order_with_its_actor(org) -> None:
    admin, bob, cara = org["admin"], org["bob"], org["cara"]
    db = _SessionStub(users=[bob, cara])
    task = create_task_use_case(db=db, current_user=admin, payload=_create_payload([bob, cara]), config=CONFIG)
    db._task = task

    update_task_checklist_use_case(
        db=db, task_id=task.id, current_user=bob, checklist=[{"text": "a", "completed": True}, {"text": "b"}], config=CONFIG
    )
    early = [(entry.action, entry.user_id, entry.details) for entry in db.of_type(TaskActivity)]
    add_comment_use_case(db=db, task_id=task.id, current_user=cara, text="on it", config=CONFIG)
    update_task_use_case(db=db, task_id=task.id, current_user=bob, payload=TaskUpdate(priority="Low"), config=CONFIG)
    update_task_status_use_case(db=db, task_id=task.id, current_user=admin, status="Completed", config=CONFIG)
    add_labels_use_case(db=db, task_id=task.id, current_user=admin, labels=["release"], config=CONFIG)

    entries = task_activity_use_case(db=db, task_id=task.id, current_user=cara, config=CONFIG)

    assert [entry.action for entry in entries] == [
        "created",
        "checklist_updated",
        "comment_added",
        "priority_changed",
        "status_changed",
        "label_added",
    ]
    assert [entry.user_id for entry in entries] == [admin.id, bob.id, cara.id, bob.id, admin.id, admin.id]
    assert all(entry.task_id == task.id for entry in entries)
    assert [(entry.action, entry.user_id, entry.details) for entry in entries[:2]] == early
    assert [str(clause) for clause in db.activity_query.ordering] == ["task_activity.created_at ASC"]
