"""In-app notification use-cases."""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ..database import commit_or_raise
from ..domain_errors import NotFoundError
from ..models import Notification, User

MAX_PAGE_SIZE = 50


def create_notification(
    *,
    db: Session,
    recipient_id: UUID,
    type: str,
    title: str,
    message: str,
    task_id: UUID | None = None,
    sender_id: UUID | None = None,
) -> Notification:
    """Stage a notification row; the caller commits with its own change."""
    notification = Notification(
        id=uuid4(),
        recipient_id=recipient_id,
        type=type,
        title=title,
        message=message,
        task_id=task_id,
        sender_id=sender_id,
        is_read=False,
    )
    db.add(notification)
    return notification


def _get_own_notification_or_404(*, db: Session, notification_id: UUID, current_user: User) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.recipient_id == current_user.id,
    ).first()
    if notification is None:
        raise NotFoundError(code="NOTIFICATION_NOT_FOUND", message="Notification not found")
    return notification


def unread_count_use_case(*, db: Session, current_user: User) -> int:
    return db.query(Notification).filter(
        Notification.recipient_id == current_user.id,
        Notification.is_read.is_(False),
    ).count()


def list_notifications_use_case(
    *,
    db: Session,
    current_user: User,
    page: int = 1,
    limit: int = 20,
    unread_only: bool = False,
) -> dict:
    page = max(1, page)
    limit = min(MAX_PAGE_SIZE, max(1, limit))

    query = db.query(Notification).filter(Notification.recipient_id == current_user.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))

    total = query.count()
    notifications = (
        query.order_by(Notification.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "notifications": notifications,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
        "unread_count": unread_count_use_case(db=db, current_user=current_user),
    }


def mark_notification_read_use_case(*, db: Session, notification_id: UUID, current_user: User) -> Notification:
    notification = _get_own_notification_or_404(db=db, notification_id=notification_id, current_user=current_user)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        commit_or_raise(db, action="mark notification as read")
    return notification


def mark_all_notifications_read_use_case(*, db: Session, current_user: User) -> int:
    updated = db.query(Notification).filter(
        Notification.recipient_id == current_user.id,
        Notification.is_read.is_(False),
    ).update(
        {Notification.is_read: True, Notification.read_at: datetime.now(timezone.utc)},
        synchronize_session=False,
    )
    commit_or_raise(db, action="mark notifications as read")
    return updated


def delete_notification_use_case(*, db: Session, notification_id: UUID, current_user: User) -> None:
    notification = _get_own_notification_or_404(db=db, notification_id=notification_id, current_user=current_user)
    db.delete(notification)
    commit_or_raise(db, action="delete notification")


def clear_notifications_use_case(*, db: Session, current_user: User) -> int:
    removed = db.query(Notification).filter(
        Notification.recipient_id == current_user.id,
    ).delete(synchronize_session=False)
    commit_or_raise(db, action="clear notifications")
    return removed


def purge_old_notifications(*, db: Session, now: datetime, retention_days: int) -> int:
    removed = db.query(Notification).filter(
        Notification.created_at < now - timedelta(days=retention_days),
    ).delete(synchronize_session=False)
    commit_or_raise(db, action="purge notifications")
    return removed
