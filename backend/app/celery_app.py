"""
Celery worker: email delivery and periodic housekeeping (OTP purge, notification
retention, due-date reminders).
"""
from celery import Celery
from datetime import datetime, timezone
import logging
from .config import settings
from .database import SessionLocal
from .services.mailer import send_smtp_message

logger = logging.getLogger(__name__)

celery_app = Celery(
    "task_manager",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)

MAX_EMAIL_RETRIES = 3


@celery_app.task(name="send_email", bind=True, max_retries=MAX_EMAIL_RETRIES)
def send_email(self, to_address: str, subject: str, text: str, html_body: str | None = None):
    """Deliver one email over SMTP, retrying transient failures with backoff."""
    sent, error = send_smtp_message(to_address, subject, text, html_body)
    if sent:
        logger.info("Sent email '%s' to %s", subject, to_address)
        return {"sent": True}

    if error == "SMTP_HOST not configured":
        logger.warning("SMTP is not configured; dropped email '%s' to %s", subject, to_address)
        return {"sent": False, "error": error}

    if self.request.retries >= MAX_EMAIL_RETRIES:
        logger.error("Failed after %s attempts: email '%s' to %s: %s", MAX_EMAIL_RETRIES, subject, to_address, error)
        return {"sent": False, "error": error}

    backoff_seconds = 2 ** self.request.retries * 60  # 1min, 2min, 4min
    logger.warning("Retry %s/%s in %ss for email to %s: %s",
                   self.request.retries + 1, MAX_EMAIL_RETRIES, backoff_seconds, to_address, error)
    raise self.retry(countdown=backoff_seconds)


@celery_app.task(name="purge_expired_otps")
def purge_expired_otps():
    """Remove OTP records past expiry or past the retention window."""
    from .use_cases.account_flows import release_unconfirmed_deletions
    from .use_cases.otp_verification import purge_expired_otp_records

    db = SessionLocal()
    try:
        removed = purge_expired_otp_records(
            db=db,
            now=datetime.now(timezone.utc),
            retention_seconds=settings.OTP_RETENTION_SECONDS,
        )
        released = release_unconfirmed_deletions(db=db)
        logger.info("Purged %s OTP records", removed)
        return {"removed": removed, "released": released}
    finally:
        db.close()


@celery_app.task(name="purge_old_notifications")
def purge_old_notifications():
    from .use_cases.notifications import purge_old_notifications as purge

    db = SessionLocal()
    try:
        removed = purge(
            db=db,
            now=datetime.now(timezone.utc),
            retention_days=settings.NOTIFICATION_RETENTION_DAYS,
        )
        logger.info("Purged %s notifications", removed)
        return {"removed": removed}
    finally:
        db.close()


@celery_app.task(name="send_due_date_reminders")
def send_due_date_reminders():
    from .services.notifier import get_notifier
    from .use_cases.reminders import run_due_date_reminders

    db = SessionLocal()
    try:
        return run_due_date_reminders(
            db=db,
            now=datetime.now(timezone.utc),
            window_hours=settings.REMINDER_WINDOW_HOURS,
            notifier=get_notifier(),
        )
    finally:
        db.close()


# Schedule periodic processing
celery_app.conf.beat_schedule = {
    'purge-otps-every-minute': {
        'task': 'purge_expired_otps',
        'schedule': 60.0,
    },
    'purge-notifications-daily': {
        'task': 'purge_old_notifications',
        'schedule': 24 * 60 * 60.0,
    },
    'due-date-reminders-hourly': {
        'task': 'send_due_date_reminders',
        'schedule': 60 * 60.0,
    },
}
