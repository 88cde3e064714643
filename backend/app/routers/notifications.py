"""Notification endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import MessageResponse, NotificationListResponse, NotificationResponse
from ..use_cases.notifications import (
    MAX_PAGE_SIZE,
    clear_notifications_use_case,
    delete_notification_use_case,
    list_notifications_use_case,
    mark_all_notifications_read_use_case,
    mark_notification_read_use_case,
    unread_count_use_case,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
def get_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    unread_only: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get notifications for the current user, newest first."""
    result = list_notifications_use_case(
        db=db, current_user=current_user, page=page, limit=limit, unread_only=unread_only
    )
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in result["notifications"]],
        pagination=result["pagination"],
        unread_count=result["unread_count"],
    )


@router.get("/unread-count")
def get_unread_count(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get unread notification count."""
    return {"unread_count": unread_count_use_case(db=db, current_user=current_user)}


@router.put("/read-all", response_model=MessageResponse)
def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark every notification as read."""
    updated = mark_all_notifications_read_use_case(db=db, current_user=current_user)
    return MessageResponse(message=f"{updated} notifications marked as read")


@router.put("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark one notification as read."""
    notification = mark_notification_read_use_case(db=db, notification_id=notification_id, current_user=current_user)
    return NotificationResponse.model_validate(notification)


@router.delete("/clear-all", response_model=MessageResponse)
def clear_all(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete every notification of the current user."""
    removed = clear_notifications_use_case(db=db, current_user=current_user)
    return MessageResponse(message=f"{removed} notifications cleared")


@router.delete("/{notification_id}", response_model=MessageResponse)
def delete_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete one notification."""
    delete_notification_use_case(db=db, notification_id=notification_id, current_user=current_user)
    return MessageResponse(message="Notification deleted")
