"""Outbound email notifications, queued on Celery."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from ..domain_errors import DependencyFailure
from .mailer import (
    RenderedEmail,
    render_account_deletion_otp,
    render_due_date_reminder,
    render_mention,
    render_password_reset_otp,
    render_registration_otp,
)

logger = logging.getLogger(__name__)

EmailEnqueuer = Callable[[str, str, str, str], None]


def _enqueue_with_celery(to_address: str, subject: str, text: str, html_body: str) -> None:
    from ..celery_app import send_email

    send_email.delay(to_address, subject, text, html_body)


class Notifier:
    """Fire-and-forget email sender.

    Rendering happens in-process; SMTP delivery happens in the worker. A
    failure to enqueue raises DependencyFailure so callers can decide whether
    it is fatal for their operation.
    """

    def __init__(self, enqueue: EmailEnqueuer | None = None):
        self._enqueue = enqueue or _enqueue_with_celery

    def _send(self, to_address: str, email: RenderedEmail, *, kind: str) -> None:
        try:
            self._enqueue(to_address, email.subject, email.text, email.html)
        except Exception as exc:
            logger.exception("Failed to queue %s email for %s", kind, to_address)
            raise DependencyFailure(
                code="EMAIL_QUEUE_FAILED",
                message="Failed to send email. Please try again later.",
                details={"kind": kind},
            ) from exc
        logger.info("Queued %s email for %s", kind, to_address)

    def send_registration_otp(self, email: str, code: str, name: str) -> None:
        self._send(email, render_registration_otp(code, name or "User"), kind="registration-otp")

    def send_password_reset_otp(self, email: str, code: str, name: str) -> None:
        self._send(email, render_password_reset_otp(code, name or "User"), kind="password-reset-otp")

    def send_account_deletion_otp(self, email: str, code: str, name: str) -> None:
        self._send(email, render_account_deletion_otp(code, name or "User"), kind="account-deletion-otp")

    def send_mention_notification(
        self,
        *,
        email: str,
        recipient_name: str,
        mentioned_by: str,
        task_title: str,
        comment_text: str,
        task_id: str,
    ) -> None:
        rendered = render_mention(
            recipient_name=recipient_name,
            mentioned_by=mentioned_by,
            task_title=task_title,
            comment_text=comment_text,
            task_id=task_id,
        )
        self._send(email, rendered, kind="mention")

    def send_due_date_reminder(
        self,
        *,
        email: str,
        recipient_name: str,
        task_title: str,
        due_date: datetime,
        task_id: str,
    ) -> None:
        rendered = render_due_date_reminder(
            recipient_name=recipient_name,
            task_title=task_title,
            due_date=due_date,
            task_id=task_id,
        )
        self._send(email, rendered, kind="due-date-reminder")

    def deliver_otp(self, *, email: str, purpose: str, code: str, name: str) -> None:
        """Dispatch an OTP email by purpose."""
        senders = {
            "registration": self.send_registration_otp,
            "password-reset": self.send_password_reset_otp,
            "account-deletion": self.send_account_deletion_otp,
        }
        sender = senders.get(purpose)
        if sender is None:
            raise ValueError(f"Unknown OTP purpose: {purpose}")
        sender(email, code, name)


def get_notifier() -> Notifier:
    return Notifier()
