"""Notification endpoints: inbox and Web Push subscriptions."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.dependencies import CurrentUser
from app.core.exceptions import ServiceUnavailableError
from app.schemas.common import MessageResponse, PaginatedResponse
from app.schemas.notification import (
    DeactivateRequest,
    NotificationFilter,
    NotificationMarkRead,
    NotificationResponse,
    NotificationStats,
    PushSubscriptionCreate,
    UnsubscribeRequest,
    VapidKeyResponse,
)
from app.services.notification import NotificationService

router = APIRouter()


@router.get("", response_model=PaginatedResponse[NotificationResponse])
def list_notifications(
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
    is_read: bool | None = None,
    notification_type: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    """
    List notifications for the current user.
    """
    service = NotificationService(db)
    filters = NotificationFilter(
        is_read=is_read,
        notification_type=notification_type,
    )
    notifications, total = service.list_notifications(
        user_id=current_user.id,
        filters=filters,
        page=page,
        page_size=page_size,
    )

    return PaginatedResponse(
        items=notifications,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.get("/stats", response_model=NotificationStats)
def get_notification_stats(
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Get notification statistics (total, read, unread counts).
    """
    service = NotificationService(db)
    return service.get_stats(current_user.id)


@router.post("/mark-read", response_model=MessageResponse)
def mark_notifications_read(
    request: NotificationMarkRead,
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Mark specific notifications as read.
    """
    service = NotificationService(db)
    count = service.mark_as_read(request.notification_ids, current_user.id)
    return MessageResponse(message=f"Marked {count} notifications as read")


@router.post("/mark-all-read", response_model=MessageResponse)
def mark_all_notifications_read(
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Mark all notifications as read.
    """
    service = NotificationService(db)
    count = service.mark_all_as_read(current_user.id)
    return MessageResponse(message=f"Marked {count} notifications as read")


@router.get("/push/vapid-public-key", response_model=VapidKeyResponse)
def get_vapid_public_key():
    """Public key the browser needs to create a push subscription."""
    if not settings.VAPID_PUBLIC_KEY:
        raise ServiceUnavailableError("Push notifications are not configured")
    return VapidKeyResponse(public_key=settings.VAPID_PUBLIC_KEY)


@router.post("/push/subscribe", response_model=MessageResponse, status_code=201)
def subscribe(
    request: PushSubscriptionCreate,
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Register this browser for push notifications.
    Replaces any earlier subscription of the user.
    """
    service = NotificationService(db)
    service.store_subscription(current_user, request)
    return MessageResponse(message="Subscribed to push notifications")


@router.post("/push/unsubscribe", response_model=MessageResponse)
def unsubscribe(
    request: UnsubscribeRequest,
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
):
    service = NotificationService(db)
    count = service.remove_subscription(current_user, request.endpoint)
    return MessageResponse(message=f"Removed {count} subscriptions")


@router.post("/push/deactivate", response_model=MessageResponse)
def deactivate(
    request: DeactivateRequest,
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Deactivate push subscriptions on logout.
    """
    service = NotificationService(db)
    count = service.deactivate_subscriptions(current_user, request.endpoint)
    return MessageResponse(message=f"Deactivated {count} subscriptions")


@router.delete("/{notification_id}", response_model=MessageResponse)
def delete_notification(
    notification_id: int,
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Delete a notification.
    """
    service = NotificationService(db)
    service.delete_notification(notification_id, current_user.id)
    return MessageResponse(message="Notification deleted successfully")
