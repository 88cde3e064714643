"""Email rendering and SMTP delivery."""

from __future__ import annotations

import html
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    text: str
    html: str


def _wrap_html(heading: str, paragraphs: list[str], highlight: str | None = None) -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    box = ""
    if highlight:
        box = (
            '<div style="border:2px dashed #667eea;padding:20px;text-align:center;margin:20px 0;">'
            f'<span style="font-size:32px;font-weight:bold;letter-spacing:5px;">{html.escape(highlight)}</span>'
            "</div>"
        )
    return (
        "<!DOCTYPE html><html><body style=\"font-family:Arial,sans-serif;color:#333;\">"
        f"<h2>{html.escape(heading)}</h2>{box}{body}"
        f"<p style=\"color:#666;font-size:12px;\">This is an automated email from {html.escape(settings.EMAIL_FROM_NAME)}. "
        "Please do not reply.</p></body></html>"
    )


def _otp_email(*, subject: str, name: str, intro: str, code: str, outro: str) -> RenderedEmail:
    ttl = settings.OTP_TTL_MINUTES
    text = (
        f"Hello {name},\n\n{intro}\n\n    {code}\n\n"
        f"This OTP is valid for {ttl} minutes.\n{outro}\n"
    )
    page = _wrap_html(
        f"Hello {name},",
        [
            html.escape(intro),
            f"<strong>This OTP is valid for {ttl} minutes.</strong>",
            html.escape(outro),
        ],
        highlight=code,
    )
    return RenderedEmail(subject=subject, text=text, html=page)


def render_registration_otp(code: str, name: str) -> RenderedEmail:
    return _otp_email(
        subject="Verify Your Email - Task Manager",
        name=name,
        intro="Thank you for registering. To complete your registration, please use the following OTP:",
        code=code,
        outro="If you didn't request this registration, please ignore this email.",
    )


def render_password_reset_otp(code: str, name: str) -> RenderedEmail:
    return _otp_email(
        subject="Password Reset Request - Task Manager",
        name=name,
        intro="We received a request to reset your password. Use the following OTP to continue:",
        code=code,
        outro="If you didn't request a password reset, you can safely ignore this email.",
    )


def render_account_deletion_otp(code: str, name: str) -> RenderedEmail:
    return _otp_email(
        subject="Confirm Account Deletion - Task Manager",
        name=name,
        intro=(
            "We received a request to permanently delete your account. "
            "Use the following OTP to confirm. This action cannot be undone."
        ),
        code=code,
        outro="If you didn't request this, please secure your account by changing your password.",
    )


def _task_link(task_id: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/tasks/{task_id}"


def render_mention(
    *, recipient_name: str, mentioned_by: str, task_title: str, comment_text: str, task_id: str
) -> RenderedEmail:
    link = _task_link(task_id)
    text = (
        f"Hello {recipient_name},\n\n{mentioned_by} mentioned you in a comment on \"{task_title}\":\n\n"
        f"    {comment_text}\n\nOpen the task: {link}\n"
    )
    page = _wrap_html(
        f"Hello {recipient_name},",
        [
            f"{html.escape(mentioned_by)} mentioned you in a comment on <strong>{html.escape(task_title)}</strong>:",
            f"<em>{html.escape(comment_text)}</em>",
            f'<a href="{html.escape(link)}">Open the task</a>',
        ],
    )
    return RenderedEmail(subject=f"You were mentioned in: {task_title}", text=text, html=page)


def render_due_date_reminder(
    *, recipient_name: str, task_title: str, due_date: datetime, task_id: str
) -> RenderedEmail:
    due = due_date.strftime("%Y-%m-%d %H:%M UTC")
    link = _task_link(task_id)
    text = (
        f"Hello {recipient_name},\n\nThe task \"{task_title}\" is due on {due}.\n\n"
        f"Open the task: {link}\n"
    )
    page = _wrap_html(
        f"Hello {recipient_name},",
        [
            f"The task <strong>{html.escape(task_title)}</strong> is due on {html.escape(due)}.",
            f'<a href="{html.escape(link)}">Open the task</a>',
        ],
    )
    return RenderedEmail(subject=f"Reminder: \"{task_title}\" is due soon", text=text, html=page)


def send_smtp_message(to_address: str, subject: str, text: str, html_body: str | None = None) -> tuple[bool, str | None]:
    """Send one message over SMTP. Returns (sent, error)."""
    if not settings.SMTP_HOST:
        return False, "SMTP_HOST not configured"

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = formataddr((settings.EMAIL_FROM_NAME, settings.EMAIL_FROM_ADDRESS))
    message["To"] = to_address
    message.set_content(text)
    if html_body:
        message.add_alternative(html_body, subtype="html")

    try:
        with smtplib.SMTP(host=settings.SMTP_HOST, port=settings.SMTP_PORT, timeout=15) as smtp:
            smtp.ehlo()
            if settings.SMTP_USE_TLS:
                smtp.starttls()
                smtp.ehlo()
            if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        return False, f"{type(exc).__name__}: {exc}"
    return True, None
