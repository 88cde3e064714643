"""One-time passcode issuance and verification."""
from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Literal, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..config import EngineConfig
from ..database import commit_or_raise
from ..domain_errors import InvalidOtpCode, NotFoundError, OtpExpiredOrExhausted, ValidationError
from ..models import OTP_PURPOSES, OtpRecord

logger = logging.getLogger(__name__)

OTP_NOT_FOUND_MESSAGE = "No OTP found. Please request a new OTP."
DELIVERY_WARNING = "OTP was generated but the email could not be sent. Please request a new OTP."


class RegistrationPayload(BaseModel):
    """Pending user staged on a registration OTP until the code is verified."""

    name: str
    email: str
    password_hash: str
    profile_image_url: Optional[str] = None
    role: Literal["admin", "member"] = "member"


# Only registration stages data; other purposes carry no payload.
STAGED_PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    "registration": RegistrationPayload,
}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def generate_otp_code(length: int = 6) -> str:
    """Uniformly random fixed-width numeric code (no leading zero)."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(10**length - low))


@dataclass(frozen=True)
class OtpHooks:
    """Collaborators injected into the OTP engine."""

    now_utc: Callable[[], datetime] = now_utc
    generate_code: Callable[[int], str] = generate_otp_code
    # deliver(email=..., purpose=..., code=..., name=...)
    deliver: Callable[..., None] | None = None


@dataclass(frozen=True)
class OtpIssueResult:
    email: str
    delivery_warning: str | None = None


def _required(name: str, hook: object):
    if hook is None:
        raise RuntimeError(f"Missing OTP hook: {name}")
    return hook


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_otp_usable(record: OtpRecord, now: datetime) -> bool:
    """Valid iff not expired, attempts below the limit, and not yet verified."""
    return (
        _as_utc(now) < _as_utc(record.expires_at)
        and record.attempts < record.max_attempts
        and not record.verified
    )


def load_staged_payload(record: OtpRecord) -> BaseModel | None:
    model = STAGED_PAYLOAD_MODELS.get(record.purpose)
    if model is None or record.payload is None:
        return None
    return model.model_validate(record.payload)


def _check_payload(purpose: str, payload: BaseModel | None) -> None:
    expected = STAGED_PAYLOAD_MODELS.get(purpose)
    if expected is None and payload is not None:
        raise ValidationError(message=f"OTP purpose '{purpose}' does not accept a payload")
    if expected is not None and not isinstance(payload, expected):
        raise ValidationError(message=f"OTP purpose '{purpose}' requires a {expected.__name__}")


def consume_otp_records(*, db: Session, email: str, purpose: str | None = None) -> int:
    """Delete OTP records for an email (one purpose, or all). Caller commits."""
    query = db.query(OtpRecord).filter(OtpRecord.email == email.strip().lower())
    if purpose is not None:
        query = query.filter(OtpRecord.purpose == purpose)
    return query.delete(synchronize_session=False)


def issue_otp_use_case(
    *,
    db: Session,
    email: str,
    purpose: str,
    payload: BaseModel | None = None,
    recipient_name: str,
    config: EngineConfig,
    hooks: OtpHooks,
) -> OtpIssueResult:
    if purpose not in OTP_PURPOSES:
        raise ValidationError(message=f"Unknown OTP purpose: {purpose}")
    _check_payload(purpose, payload)
    deliver = _required("deliver", hooks.deliver)

    email = email.strip().lower()
    now = hooks.now_utc()
    code = hooks.generate_code(config.otp_length)

    consume_otp_records(db=db, email=email, purpose=purpose)
    db.add(
        OtpRecord(
            email=email,
            code=code,
            purpose=purpose,
            expires_at=now + timedelta(minutes=config.otp_ttl_minutes),
            verified=False,
            attempts=0,
            max_attempts=config.otp_max_attempts,
            payload=payload.model_dump() if payload is not None else None,
        )
    )
    commit_or_raise(db, action="store OTP")
    logger.info("Issued %s OTP for %s", purpose, email)

    warning = None
    try:
        deliver(email=email, purpose=purpose, code=code, name=recipient_name)
    except Exception:
        # The stored record stays valid; the caller can ask for a resend.
        logger.exception("OTP email delivery failed for %s (%s)", email, purpose)
        warning = DELIVERY_WARNING

    return OtpIssueResult(email=email, delivery_warning=warning)


def verify_otp_use_case(
    *,
    db: Session,
    email: str,
    purpose: str,
    submitted_code: str,
    hooks: OtpHooks | None = None,
) -> OtpRecord:
    """Check a submitted code; on success the record is marked verified and returned.

    The purpose-specific side effect and deletion of the record belong to the caller.
    """
    hooks = hooks or OtpHooks()
    email = email.strip().lower()

    record = (
        db.query(OtpRecord)
        .filter(
            OtpRecord.email == email,
            OtpRecord.purpose == purpose,
            OtpRecord.verified.is_(False),
        )
        .order_by(OtpRecord.created_at.desc())
        .first()
    )
    if record is None:
        raise NotFoundError(code="OTP_NOT_FOUND", message=OTP_NOT_FOUND_MESSAGE)

    now = hooks.now_utc()
    if not is_otp_usable(record, now):
        raise OtpExpiredOrExhausted()

    matches = hmac.compare_digest(record.code.encode(), (submitted_code or "").strip().encode())
    # The UPDATE repeats the usability check; a row used up since the read matches nothing.
    values = {OtpRecord.verified: True} if matches else {OtpRecord.attempts: OtpRecord.attempts + 1}
    updated = _usable_record_query(db, record_id=record.id, now=now).update(values, synchronize_session=False)
    if not updated:
        db.rollback()
        raise OtpExpiredOrExhausted()

    if not matches:
        commit_or_raise(db, action="record OTP attempt")
        db.refresh(record)
        remaining = max(0, record.max_attempts - record.attempts)
        logger.info("Invalid %s OTP for %s, %s attempts remaining", purpose, email, remaining)
        raise InvalidOtpCode(
            message=f"Invalid OTP. {remaining} attempts remaining.",
            details={"remaining_attempts": remaining},
        )

    commit_or_raise(db, action="verify OTP")
    db.refresh(record)
    logger.info("Verified %s OTP for %s", purpose, email)
    return record


def _usable_record_query(db: Session, *, record_id, now: datetime):
    return db.query(OtpRecord).filter(
        OtpRecord.id == record_id,
        OtpRecord.verified.is_(False),
        OtpRecord.attempts < OtpRecord.max_attempts,
        OtpRecord.expires_at > now,
    )


def purge_expired_otp_records(*, db: Session, now: datetime, retention_seconds: int) -> int:
    """Drop records past expiry or older than the retention window."""
    cutoff = now - timedelta(seconds=retention_seconds)
    removed = (
        db.query(OtpRecord)
        .filter((OtpRecord.expires_at < now) | (OtpRecord.created_at < cutoff))
        .delete(synchronize_session=False)
    )
    commit_or_raise(db, action="purge OTP records")
    return removed
