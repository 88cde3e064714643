from __future__ import annotations

import time
from datetime import timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi import HTTPException
from jose import jwt

from app.auth import (
    ROLE_PERMISSIONS,
    PermissionChecker,
    check_permission,
    create_access_token,
    create_user_token,
    decode_token,
)
from app.config import settings


@pytest.mark.parametrize(
    ("role", "expected"),
    [
        (
            "admin",
            {
                "canCreateTasks": True,
                "canDeleteTasks": True,
                "canReassignTasks": True,
                "canManageLabels": True,
                "canViewOrgDashboard": True,
                "canViewMembers": True,
                "canSendReminders": True,
                "canExportReports": True,
            },
        ),
        (
            "member",
            {
                "canCreateTasks": False,
                "canDeleteTasks": False,
                "canReassignTasks": False,
                "canManageLabels": False,
                "canViewOrgDashboard": False,
                "canViewMembers": False,
                "canSendReminders": False,
                "canExportReports": False,
            },
        ),
    ],
)
def test_role_permissions_matrix_is_stable(role: str, expected: dict[str, bool]) -> None:
    assert ROLE_PERMISSIONS[role] == expected
    user = SimpleNamespace(role=role)
    assert {key: check_permission(user, key) for key in expected} == expected


def test_roles_share_the_same_permission_keys() -> None:
    assert set(ROLE_PERMISSIONS["admin"]) == set(ROLE_PERMISSIONS["member"])


def test_unknown_role_and_unknown_permission_are_denied() -> None:
    assert check_permission(SimpleNamespace(role="owner"), "canCreateTasks") is False
    assert check_permission(SimpleNamespace(role="admin"), "canLaunchRockets") is False


def test_permission_checker_raises_forbidden_for_member() -> None:
    checker = PermissionChecker("canExportReports")
    admin = SimpleNamespace(role="admin")

    assert checker(current_user=admin) is admin
    with pytest.raises(HTTPException) as exc:
        checker(current_user=SimpleNamespace(role="member"))
    assert exc.value.status_code == 403


def test_user_token_round_trips_subject_and_role() -> None:
    user = SimpleNamespace(id=uuid4(), role="admin")

    payload = decode_token(create_user_token(user))

    assert payload["sub"] == str(user.id)
    assert payload["role"] == "admin"
    assert payload["type"] == "access"


def test_expired_token_is_rejected_after_leeway() -> None:
    token = create_access_token({"sub": str(uuid4())}, expires_delta=timedelta(seconds=-120))

    with pytest.raises(HTTPException) as exc:
        decode_token(token)
    assert exc.value.status_code == 401


def test_token_issued_in_future_is_rejected() -> None:
    now = int(time.time())
    token = jwt.encode(
        {"sub": str(uuid4()), "exp": now + 3600, "iat": now + 3600, "type": "access"},
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )

    with pytest.raises(HTTPException):
        decode_token(token)


def test_token_signed_with_other_key_is_rejected() -> None:
    token = jwt.encode({"sub": str(uuid4()), "exp": int(time.time()) + 60}, "not-the-key", algorithm="HS256")

    with pytest.raises(HTTPException):
        decode_token(token)
