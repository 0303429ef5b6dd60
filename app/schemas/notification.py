"""Notification schemas."""

from datetime import datetime

from pydantic import Field

from app.schemas.common import BaseSchema


class NotificationResponse(BaseSchema):
    """Notification response schema."""

    id: int
    user_id: int
    title: str
    message: str
    notification_type: str
    is_read: bool
    read_at: datetime | None
    action_url: str | None
    created_at: datetime


class NotificationFilter(BaseSchema):
    """Notification filtering options."""

    is_read: bool | None = None
    notification_type: str | None = None


class NotificationMarkRead(BaseSchema):
    """Mark notifications as read."""

    notification_ids: list[int]


class NotificationStats(BaseSchema):
    """Notification statistics."""

    total: int
    unread: int
    read: int


class PushSubscriptionKeys(BaseSchema):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class PushSubscriptionCreate(BaseSchema):
    """Browser PushSubscription as serialised by the client."""

    endpoint: str = Field(..., min_length=1)
    keys: PushSubscriptionKeys


class UnsubscribeRequest(BaseSchema):
    endpoint: str = Field(..., min_length=1)


class DeactivateRequest(BaseSchema):
    """Deactivate on logout; all of the user's subscriptions when no endpoint."""

    endpoint: str | None = None


class VapidKeyResponse(BaseSchema):
    public_key: str


class NotificationDelivery(BaseSchema):
    """What the notification gateway attempted. Used for logging only."""

    attempted: bool
    pushed: int = 0
    stored: bool = False
