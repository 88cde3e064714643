"""Registration, password reset, account deletion and profile use-cases."""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy import exists, or_
from sqlalchemy.orm import Session

from ..auth import hash_password, verify_password
from ..config import EngineConfig
from ..database import commit_or_raise
from ..domain_errors import (
    ConflictError,
    ForbiddenError,
    InvalidCredentials,
    InvalidInviteToken,
    NotFoundError,
)
from ..models import Notification, OtpRecord, Task, User
from ..security import organization_domain
from .otp_verification import (
    OtpHooks,
    OtpIssueResult,
    RegistrationPayload,
    consume_otp_records,
    issue_otp_use_case,
    load_staged_payload,
    verify_otp_use_case,
)

logger = logging.getLogger(__name__)

PUBLIC_DOMAIN_MESSAGE = (
    "Registration is only allowed for private organization email addresses. "
    "Public email domains (Gmail, Yahoo, Outlook, etc.) are not permitted."
)


@dataclass(frozen=True)
class AccountHooks:
    otp: OtpHooks = field(default_factory=OtpHooks)
    hash_password: Callable[[str], str] = hash_password
    verify_password: Callable[[str, str], bool] = verify_password


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _ensure_private_domain(email: str, config: EngineConfig) -> None:
    if organization_domain(email, config) is None:
        raise ForbiddenError(code="PUBLIC_EMAIL_DOMAIN", message=PUBLIC_DOMAIN_MESSAGE)


def _email_conflict() -> ConflictError:
    return ConflictError(code="EMAIL_EXISTS", message="User already exists with this email")


def _ensure_email_available(db: Session, email: str, *, exclude_user_id=None) -> None:
    query = db.query(User).filter(User.email == email)
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    if query.first() is not None:
        raise _email_conflict()


def resolve_registration_role(admin_invite_token: str | None, config: EngineConfig) -> str:
    """Empty token registers a member; a matching token registers an admin."""
    token = (admin_invite_token or "").strip()
    if not token:
        return "member"
    expected = config.admin_invite_token or ""
    if not expected or not hmac.compare_digest(token.encode(), expected.encode()):
        raise InvalidInviteToken()
    return "admin"


def _check_new_registration(
    db: Session, *, email: str, admin_invite_token: str | None, config: EngineConfig
) -> str:
    _ensure_private_domain(email, config)
    _ensure_email_available(db, email)
    return resolve_registration_role(admin_invite_token, config)


def _get_user_or_404(db: Session, user_id) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError(code="USER_NOT_FOUND", message="User not found")
    return user


def register_user_use_case(
    *,
    db: Session,
    name: str,
    email: str,
    password: str,
    profile_image_url: str | None = None,
    admin_invite_token: str | None = None,
    config: EngineConfig,
    hooks: AccountHooks | None = None,
) -> User:
    """Direct registration without email verification."""
    hooks = hooks or AccountHooks()
    email = _normalize_email(email)
    role = _check_new_registration(db, email=email, admin_invite_token=admin_invite_token, config=config)

    user = User(
        name=name.strip(),
        email=email,
        password_hash=hooks.hash_password(password),
        profile_image_url=profile_image_url,
        role=role,
        is_email_verified=False,
        account_status="active",
    )
    db.add(user)
    commit_or_raise(db, action="register user", conflict=_email_conflict())
    db.refresh(user)
    logger.info("Registered %s %s", role, email)
    return user


def request_registration_otp_use_case(
    *,
    db: Session,
    name: str,
    email: str,
    password: str,
    profile_image_url: str | None = None,
    admin_invite_token: str | None = None,
    config: EngineConfig,
    hooks: AccountHooks,
) -> OtpIssueResult:
    """Stage the pending user on a registration OTP and send the code."""
    email = _normalize_email(email)
    role = _check_new_registration(db, email=email, admin_invite_token=admin_invite_token, config=config)
    payload = RegistrationPayload(
        name=name.strip(),
        email=email,
        password_hash=hooks.hash_password(password),
        profile_image_url=profile_image_url,
        role=role,
    )
    return issue_otp_use_case(
        db=db,
        email=email,
        purpose="registration",
        payload=payload,
        recipient_name=payload.name,
        config=config,
        hooks=hooks.otp,
    )


def verify_registration_otp_use_case(
    *,
    db: Session,
    email: str,
    otp: str,
    hooks: AccountHooks | None = None,
) -> User:
    """Materialize the staged user once the registration code checks out."""
    hooks = hooks or AccountHooks()
    email = _normalize_email(email)
    record = verify_otp_use_case(db=db, email=email, purpose="registration", submitted_code=otp, hooks=hooks.otp)
    staged = load_staged_payload(record)
    if not isinstance(staged, RegistrationPayload):
        raise NotFoundError(code="OTP_NOT_FOUND", message="No OTP found. Please request a new OTP.")

    user = User(
        name=staged.name,
        email=staged.email,
        password_hash=staged.password_hash,
        profile_image_url=staged.profile_image_url,
        role=staged.role,
        is_email_verified=True,
        account_status="active",
    )
    db.add(user)
    consume_otp_records(db=db, email=email, purpose="registration")
    commit_or_raise(db, action="create verified user", conflict=_email_conflict())
    db.refresh(user)
    logger.info("Registered verified %s %s", user.role, email)
    return user


def request_password_reset_use_case(
    *,
    db: Session,
    email: str,
    config: EngineConfig,
    hooks: AccountHooks,
) -> OtpIssueResult:
    email = _normalize_email(email)
    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise NotFoundError(code="USER_NOT_FOUND", message="No account found with this email address")
    return issue_otp_use_case(
        db=db,
        email=email,
        purpose="password-reset",
        recipient_name=user.name,
        config=config,
        hooks=hooks.otp,
    )


def reset_password_use_case(
    *,
    db: Session,
    email: str,
    otp: str,
    new_password: str,
    hooks: AccountHooks | None = None,
) -> User:
    hooks = hooks or AccountHooks()
    email = _normalize_email(email)
    verify_otp_use_case(db=db, email=email, purpose="password-reset", submitted_code=otp, hooks=hooks.otp)

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise NotFoundError(code="USER_NOT_FOUND", message="User not found")

    user.password_hash = hooks.hash_password(new_password)
    consume_otp_records(db=db, email=email, purpose="password-reset")
    commit_or_raise(db, action="reset password")
    logger.info("Password reset for %s", email)
    return user


def request_account_deletion_use_case(
    *,
    db: Session,
    current_user: User,
    config: EngineConfig,
    hooks: AccountHooks,
) -> OtpIssueResult:
    user = _get_user_or_404(db, current_user.id)
    result = issue_otp_use_case(
        db=db,
        email=user.email,
        purpose="account-deletion",
        recipient_name=user.name,
        config=config,
        hooks=hooks.otp,
    )
    user.account_status = "pending-deletion"
    commit_or_raise(db, action="mark account for deletion")
    return result


def release_unconfirmed_deletions(*, db: Session) -> int:
    """Return pending-deletion accounts to active once their deletion OTP is gone."""
    open_request = exists().where(
        OtpRecord.email == User.email,
        OtpRecord.purpose == "account-deletion",
    )
    released = (
        db.query(User)
        .filter(User.account_status == "pending-deletion", ~open_request)
        .update({User.account_status: "active"}, synchronize_session=False)
    )
    commit_or_raise(db, action="release unconfirmed account deletions")
    if released:
        logger.info("Released %s unconfirmed account deletion requests", released)
    return released


def confirm_account_deletion_use_case(
    *,
    db: Session,
    current_user: User,
    otp: str,
    hooks: AccountHooks | None = None,
) -> None:
    """Delete the account and every task it created or is assigned to."""
    hooks = hooks or AccountHooks()
    user = _get_user_or_404(db, current_user.id)
    verify_otp_use_case(db=db, email=user.email, purpose="account-deletion", submitted_code=otp, hooks=hooks.otp)

    task_ids = [
        row[0]
        for row in db.query(Task.id)
        .filter(or_(Task.creator_id == user.id, Task.assignees.any(User.id == user.id)))
        .all()
    ]
    if task_ids:
        db.query(Notification).filter(Notification.task_id.in_(task_ids)).delete(synchronize_session=False)
        db.query(Task).filter(Task.id.in_(task_ids)).delete(synchronize_session=False)
    db.query(Notification).filter(Notification.recipient_id == user.id).delete(synchronize_session=False)
    consume_otp_records(db=db, email=user.email)
    db.query(User).filter(User.id == user.id).delete(synchronize_session=False)
    commit_or_raise(db, action="delete account")
    logger.info("Deleted account %s with %s tasks", user.email, len(task_ids))


def update_profile_use_case(
    *,
    db: Session,
    current_user: User,
    name: str | None = None,
    email: str | None = None,
    password: str | None = None,
    profile_image_url: str | None = None,
    config: EngineConfig,
    hooks: AccountHooks | None = None,
) -> User:
    hooks = hooks or AccountHooks()
    user = _get_user_or_404(db, current_user.id)

    if name is not None:
        user.name = name.strip()
    if email is not None:
        email = _normalize_email(email)
        if email != user.email:
            _ensure_private_domain(email, config)
            _ensure_email_available(db, email, exclude_user_id=user.id)
            user.email = email
            user.is_email_verified = False
    if password:
        user.password_hash = hooks.hash_password(password)
    if profile_image_url is not None:
        user.profile_image_url = profile_image_url or None

    commit_or_raise(db, action="update profile", conflict=_email_conflict())
    db.refresh(user)
    return user


def authenticate_user_use_case(
    *,
    db: Session,
    email: str,
    password: str,
    hooks: AccountHooks | None = None,
) -> User:
    hooks = hooks or AccountHooks()
    user = db.query(User).filter(User.email == _normalize_email(email)).first()
    if user is None or user.account_status == "deleted":
        raise InvalidCredentials()
    if not hooks.verify_password(password, user.password_hash):
        raise InvalidCredentials()
    return user
