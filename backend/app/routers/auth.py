"""Auth endpoints: registration, login, profile and OTP-gated account flows."""
import ipaddress
import logging

import redis
from redis.exceptions import RedisError
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from ..auth import create_user_token, get_current_user
from ..config import EngineConfig, get_engine_config, settings
from ..database import get_db
from ..models import User
from ..schemas import (
    ConfirmDeleteAccountRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    OtpSentResponse,
    ProfileUpdateRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserResponse,
    VerifyOtpRequest,
)
from ..services.notifier import get_notifier
from ..use_cases.account_flows import (
    AccountHooks,
    authenticate_user_use_case,
    confirm_account_deletion_use_case,
    register_user_use_case,
    request_account_deletion_use_case,
    request_password_reset_use_case,
    request_registration_otp_use_case,
    reset_password_use_case,
    update_profile_use_case,
    verify_registration_otp_use_case,
)
from ..use_cases.otp_verification import OtpHooks, OtpIssueResult

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


_redis_client = None


def get_account_hooks() -> AccountHooks:
    """Account-flow collaborators; OTP codes are delivered by email."""
    return AccountHooks(otp=OtpHooks(deliver=get_notifier().deliver_otp))


def _get_redis():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def _get_client_ip(request: Request) -> str:
    if settings.TRUST_PROXY_HEADERS:
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            try:
                ipaddress.ip_address(real_ip)
                return real_ip
            except ValueError:
                pass

        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For may contain a list: client, proxy1, proxy2
            candidate = forwarded.split(",")[0].strip()
            try:
                ipaddress.ip_address(candidate)
                return candidate
            except ValueError:
                pass

    if request.client:
        return request.client.host
    return "unknown"


def _set_no_store(response: Response) -> None:
    # Tokens and OTP outcomes must not be cached by intermediaries.
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"


def _incr_with_ttl(key: str, ttl_seconds: int) -> tuple[int, int]:
    """
    Increment a Redis counter and ensure it has an expiry.
    Returns (value, ttl_remaining_seconds).
    """
    r = _get_redis()
    value = r.incr(key)
    if value == 1:
        r.expire(key, ttl_seconds)
    ttl = r.ttl(key)
    if ttl is None or ttl < 0:
        ttl = ttl_seconds
    return int(value), int(ttl)


def _too_many(detail: str, ttl: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=detail,
        headers={"Retry-After": str(ttl)},
    )


def _enforce_otp_send_limits(*, request: Request, email: str) -> None:
    ip = _get_client_ip(request)
    try:
        attempts, ttl = _incr_with_ttl(f"auth:rl:otp:ip:{ip}", 60)
        if attempts > settings.OTP_SEND_IP_LIMIT_PER_MINUTE:
            raise _too_many("Too many OTP requests. Try again later.", ttl)

        sends, ttl = _incr_with_ttl(f"auth:rl:otp:email:{email.lower()}", 3600)
        if sends > settings.OTP_SEND_LIMIT_PER_HOUR:
            raise _too_many("Too many OTP requests for this email. Try again later.", ttl)
    except RedisError:
        # Fail open if Redis is down so users can still verify their email.
        logger.exception("Redis error during OTP rate limiting (fail-open)")


def _enforce_login_rate_limits(*, request: Request) -> None:
    ip = _get_client_ip(request)
    try:
        attempts, ttl = _incr_with_ttl(f"auth:rl:login:ip:{ip}", 60)
        if attempts > settings.LOGIN_IP_LIMIT_PER_MINUTE:
            raise _too_many("Too many login attempts. Try again later.", ttl)
    except RedisError:
        logger.exception("Redis error during login rate limiting (fail-open)")


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_user_token(user),
        expires_in=int(settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES) * 60,
        user=UserResponse.model_validate(user),
    )


def _otp_sent(result: OtpIssueResult, message: str) -> OtpSentResponse:
    return OtpSentResponse(message=message, email=result.email, warning=result.delivery_warning)


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(
    data: RegisterRequest,
    response: Response,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
    hooks: AccountHooks = Depends(get_account_hooks),
):
    """Register without email verification."""
    _set_no_store(response)
    user = register_user_use_case(
        db=db,
        name=data.name,
        email=data.email,
        password=data.password,
        profile_image_url=data.profile_image_url,
        admin_invite_token=data.admin_invite_token,
        config=config,
        hooks=hooks,
    )
    return _token_response(user)


@router.post("/login", response_model=TokenResponse)
def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    hooks: AccountHooks = Depends(get_account_hooks),
):
    """Login with email and password."""
    _set_no_store(response)
    _enforce_login_rate_limits(request=request)
    user = authenticate_user_use_case(db=db, email=data.email, password=data.password, hooks=hooks)
    logger.info("User %s logged in", user.email)
    return _token_response(user)


@router.get("/profile", response_model=UserResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    """Get current user profile."""
    return current_user


@router.put("/profile", response_model=UserResponse)
def update_profile(
    data: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
    hooks: AccountHooks = Depends(get_account_hooks),
):
    """Update name, email, password or profile image."""
    return update_profile_use_case(
        db=db,
        current_user=current_user,
        name=data.name,
        email=data.email,
        password=data.password,
        profile_image_url=data.profile_image_url,
        config=config,
        hooks=hooks,
    )


@router.post("/send-registration-otp", response_model=OtpSentResponse)
def send_registration_otp(
    data: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
    hooks: AccountHooks = Depends(get_account_hooks),
):
    """Stage a registration and email a verification code."""
    _enforce_otp_send_limits(request=request, email=data.email)
    result = request_registration_otp_use_case(
        db=db,
        name=data.name,
        email=data.email,
        password=data.password,
        profile_image_url=data.profile_image_url,
        admin_invite_token=data.admin_invite_token,
        config=config,
        hooks=hooks,
    )
    return _otp_sent(result, "OTP sent to your email. Please verify to complete registration.")


@router.post("/verify-registration-otp", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def verify_registration_otp(
    data: VerifyOtpRequest,
    response: Response,
    db: Session = Depends(get_db),
    hooks: AccountHooks = Depends(get_account_hooks),
):
    """Verify the code and create the staged account."""
    _set_no_store(response)
    user = verify_registration_otp_use_case(db=db, email=data.email, otp=data.otp, hooks=hooks)
    return _token_response(user)


@router.post("/forgot-password", response_model=OtpSentResponse)
def forgot_password(
    data: ForgotPasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
    hooks: AccountHooks = Depends(get_account_hooks),
):
    """Email a password reset code."""
    _enforce_otp_send_limits(request=request, email=data.email)
    result = request_password_reset_use_case(db=db, email=data.email, config=config, hooks=hooks)
    return _otp_sent(result, "Password reset OTP sent to your email.")


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    data: ResetPasswordRequest,
    response: Response,
    db: Session = Depends(get_db),
    hooks: AccountHooks = Depends(get_account_hooks),
):
    """Reset the password with a valid code."""
    _set_no_store(response)
    reset_password_use_case(db=db, email=data.email, otp=data.otp, new_password=data.new_password, hooks=hooks)
    return MessageResponse(message="Password reset successful. You can now login with your new password.")


@router.post("/delete-account-request", response_model=OtpSentResponse)
def delete_account_request(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
    hooks: AccountHooks = Depends(get_account_hooks),
):
    """Email an account deletion code to the current user."""
    _enforce_otp_send_limits(request=request, email=current_user.email)
    result = request_account_deletion_use_case(db=db, current_user=current_user, config=config, hooks=hooks)
    return _otp_sent(result, "Account deletion OTP sent to your email.")


@router.post("/confirm-delete-account", response_model=MessageResponse)
def confirm_delete_account(
    data: ConfirmDeleteAccountRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    hooks: AccountHooks = Depends(get_account_hooks),
):
    """Delete the account and its tasks once the code checks out."""
    confirm_account_deletion_use_case(db=db, current_user=current_user, otp=data.otp, hooks=hooks)
    return MessageResponse(message="Your account has been permanently deleted.")
