"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(eq=False)
class ValidationError(DomainError):
    """Malformed or rule-violating input."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400
    message: str = "Validation failed"


@dataclass(eq=False)
class NotFoundError(DomainError):
    code: str = "NOT_FOUND"
    http_status: int = 404
    message: str = "Not found"


@dataclass(eq=False)
class ForbiddenError(DomainError):
    """Entity exists but the caller lacks rights on it."""

    code: str = "FORBIDDEN"
    http_status: int = 403
    message: str = "Access denied"


@dataclass(eq=False)
class ConflictError(DomainError):
    code: str = "CONFLICT"
    http_status: int = 409
    message: str = "Conflict"


@dataclass(eq=False)
class UnauthorizedError(DomainError):
    code: str = "UNAUTHORIZED"
    http_status: int = 401
    message: str = "Unauthorized"


@dataclass(eq=False)
class OtpExpiredOrExhausted(DomainError):
    """OTP is past expiry, out of attempts, or already verified."""

    code: str = "OTP_EXPIRED"
    http_status: int = 400
    message: str = "OTP has expired or maximum attempts reached. Please request a new OTP."


@dataclass(eq=False)
class InvalidOtpCode(DomainError):
    code: str = "OTP_INVALID"
    http_status: int = 400
    message: str = "Invalid OTP"

    @property
    def remaining_attempts(self) -> int:
        return int((self.details or {}).get("remaining_attempts", 0))


@dataclass(eq=False)
class DependencyFailure(DomainError):
    """Storage or delivery collaborator failed unexpectedly."""

    code: str = "DEPENDENCY_FAILURE"
    http_status: int = 503
    message: str = "Service temporarily unavailable"


@dataclass(eq=False)
class InvalidCredentials(UnauthorizedError):
    code: str = "INVALID_CREDENTIALS"
    message: str = "Invalid email or password"


@dataclass(eq=False)
class InvalidInviteToken(UnauthorizedError):
    code: str = "INVALID_ADMIN_INVITE_TOKEN"
    message: str = "Invalid admin invite token. Please enter the correct token to register as admin."
