"""Notification gateway: inbox storage plus Web Push delivery."""

import enum
import json
import logging
from datetime import datetime, timezone
from functools import lru_cache

from pywebpush import WebPushException, webpush
from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.models.marksheet import Marksheet
from app.models.notification import Notification, PushSubscription, SubscriptionStatus
from app.models.user import User
from app.schemas.notification import (
    NotificationDelivery,
    NotificationFilter,
    NotificationResponse,
    NotificationStats,
    PushSubscriptionCreate,
)

logger = logging.getLogger(__name__)


class PushOutcome(str, enum.Enum):
    SENT = "sent"
    GONE = "gone"  # endpoint no longer valid (404/410)
    FAILED = "failed"


class PushSender:
    """Sends Web Push messages signed with the VAPID key."""

    def __init__(
        self,
        private_key: str | None = None,
        claims_email: str | None = None,
    ):
        self.private_key = private_key if private_key is not None else settings.VAPID_PRIVATE_KEY
        self.claims_email = claims_email or settings.VAPID_CLAIMS_EMAIL

    @property
    def configured(self) -> bool:
        return bool(self.private_key)

    def send(self, subscription: PushSubscription, payload: dict) -> PushOutcome:
        try:
            webpush(
                subscription_info=subscription.to_subscription_info(),
                data=json.dumps(payload),
                vapid_private_key=self.private_key,
                vapid_claims={"sub": f"mailto:{self.claims_email}"},
            )
            return PushOutcome.SENT
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in (404, 410):
                return PushOutcome.GONE
            logger.warning(f"Push notification failed for subscription {subscription.id}: {e}")
            return PushOutcome.FAILED


@lru_cache
def get_push_sender() -> PushSender:
    return PushSender()


class NotificationService:
    """In-app notifications and push subscriptions."""

    def __init__(self, db: Session, push_sender: PushSender | None = None):
        self.db = db
        self.push_sender = push_sender or get_push_sender()

    # ------------------------------------------------------------------
    # Gateway
    # ------------------------------------------------------------------

    def notify_user(
        self,
        user: User | None,
        title: str,
        message: str,
        notification_type: str,
        action_url: str = "/",
    ) -> NotificationDelivery:
        """Store an inbox copy and push to the user's active subscriptions.

        Never raises: delivery problems are logged and reported in the
        returned NotificationDelivery.
        """
        if user is None or not user.is_active:
            return NotificationDelivery(attempted=False)

        delivery = NotificationDelivery(attempted=True)
        try:
            self.db.add(
                Notification(
                    user_id=user.id,
                    title=title,
                    message=message,
                    notification_type=notification_type,
                    action_url=action_url,
                )
            )
            self.db.flush()
            delivery.stored = True
        except Exception:
            logger.exception(f"Failed to store notification for user {user.id}")

        if not self.push_sender.configured:
            return delivery

        payload = {
            "title": title,
            "body": message,
            "icon": "/images/android-chrome-192x192.png",
            "badge": "/images/favicon-32x32.png",
            "tag": "msec-academics",
            "data": {"url": action_url},
        }
        try:
            for subscription in self.get_active_subscriptions(user.id):
                outcome = self.push_sender.send(subscription, payload)
                if outcome == PushOutcome.SENT:
                    delivery.pushed += 1
                elif outcome == PushOutcome.GONE:
                    self._expire(subscription, "endpoint_gone")
            self.db.flush()
        except Exception:
            logger.exception(f"Push delivery failed for user {user.id}")

        return delivery

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    def get_notification(self, notification_id: int, user_id: int) -> Notification:
        """Get notification by ID (must belong to user)."""
        result = self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if not notification:
            raise NotFoundError("Notification", str(notification_id))
        return notification

    def list_notifications(
        self,
        user_id: int,
        filters: NotificationFilter | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[NotificationResponse], int]:
        """List notifications for a user, newest first."""
        query = select(Notification).where(Notification.user_id == user_id)

        if filters:
            if filters.is_read is not None:
                query = query.where(Notification.is_read == filters.is_read)
            if filters.notification_type:
                query = query.where(Notification.notification_type == filters.notification_type)

        total = self.db.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar() or 0

        query = (
            query
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        notifications = self.db.execute(query).scalars().all()

        return [NotificationResponse.model_validate(n) for n in notifications], total

    def mark_as_read(self, notification_ids: list[int], user_id: int) -> int:
        """Mark notifications as read. Returns count of updated."""
        result = self.db.execute(
            update(Notification)
            .where(
                Notification.id.in_(notification_ids),
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        self.db.flush()
        return result.rowcount

    def mark_all_as_read(self, user_id: int) -> int:
        """Mark all notifications as read for a user."""
        result = self.db.execute(
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        self.db.flush()
        return result.rowcount

    def get_stats(self, user_id: int) -> NotificationStats:
        """Get notification statistics for a user."""
        row = self.db.execute(
            select(
                func.count().label("total"),
                func.sum(case((Notification.is_read.is_(False), 1), else_=0)).label("unread"),
            ).where(Notification.user_id == user_id)
        ).one()

        total = row.total or 0
        unread = row.unread or 0
        return NotificationStats(total=total, unread=unread, read=total - unread)

    def delete_notification(self, notification_id: int, user_id: int) -> None:
        notification = self.get_notification(notification_id, user_id)
        self.db.delete(notification)
        self.db.flush()

    # ------------------------------------------------------------------
    # Push subscriptions
    # ------------------------------------------------------------------

    def get_active_subscriptions(self, user_id: int) -> list[PushSubscription]:
        result = self.db.execute(
            select(PushSubscription).where(
                PushSubscription.user_id == user_id,
                PushSubscription.status == SubscriptionStatus.ACTIVE,
            )
        )
        return list(result.scalars().all())

    def store_subscription(self, user: User, request: PushSubscriptionCreate) -> PushSubscription:
        """Register a subscription as the user's only active one.

        An endpoint belongs to whichever user subscribed with it last, so any
        other user's subscription for the same endpoint is expired first.
        """
        self._expire_where(
            PushSubscription.endpoint == request.endpoint,
            reason="endpoint_reassigned",
        )
        self._expire_where(
            PushSubscription.user_id == user.id,
            reason="new_subscription_created",
        )

        subscription = PushSubscription(
            user_id=user.id,
            endpoint=request.endpoint,
            p256dh=request.keys.p256dh,
            auth=request.keys.auth,
            status=SubscriptionStatus.ACTIVE,
        )
        self.db.add(subscription)
        self.db.flush()
        self.db.refresh(subscription)
        logger.info(f"Stored push subscription {subscription.id} for user {user.id}")
        return subscription

    def remove_subscription(self, user: User, endpoint: str) -> int:
        return self._expire_where(
            PushSubscription.user_id == user.id,
            PushSubscription.endpoint == endpoint,
            reason="user_unsubscribe",
        )

    def deactivate_subscriptions(self, user: User, endpoint: str | None = None) -> int:
        """Expire subscriptions on logout."""
        conditions = [PushSubscription.user_id == user.id]
        if endpoint:
            conditions.append(PushSubscription.endpoint == endpoint)
        return self._expire_where(*conditions, reason="user_logout")

    def _expire(self, subscription: PushSubscription, reason: str) -> None:
        subscription.status = SubscriptionStatus.EXPIRED
        subscription.deactivated_at = datetime.now(timezone.utc)
        subscription.deactivated_reason = reason

    def _expire_where(self, *conditions, reason: str) -> int:
        result = self.db.execute(
            update(PushSubscription)
            .where(PushSubscription.status == SubscriptionStatus.ACTIVE, *conditions)
            .values(
                status=SubscriptionStatus.EXPIRED,
                deactivated_at=datetime.now(timezone.utc),
                deactivated_reason=reason,
            )
        )
        self.db.flush()
        return result.rowcount


# Convenience functions for the dispatch lifecycle notifications

def notify_class_verified(service: NotificationService, hod: User | None, staff: User, marksheet: Marksheet) -> None:
    """All of a staff member's marksheets for a (department, year) are verified."""
    service.notify_user(
        hod,
        title=f"Year {marksheet.year} marks verified",
        message=f"All marksheets for {marksheet.department} - Year {marksheet.year} have been verified by {staff.name}.",
        notification_type="class_verified",
        action_url="/approval-requests",
    )
    service.notify_user(
        staff,
        title=f"Verification complete for Year {marksheet.year}",
        message=f"You have verified all marksheets for {marksheet.department} - Year {marksheet.year}. You can now request dispatch.",
        notification_type="verification_complete",
        action_url="/dispatch-requests",
    )


def notify_dispatch_requested(service: NotificationService, hod: User | None, marksheet: Marksheet) -> None:
    service.notify_user(
        hod,
        title="New dispatch request",
        message=f"{marksheet.requested_by} requested dispatch for {marksheet.student_name} ({marksheet.reg_number}).",
        notification_type="dispatch_requested",
        action_url="/approval-requests",
    )


def notify_hod_response(service: NotificationService, marksheet: Marksheet) -> None:
    """Tell the owning staff member how the HOD responded."""
    response = marksheet.hod_response.value if marksheet.hod_response else ""
    if response == "approved":
        title = "Dispatch approved by HOD"
        message = f"Your dispatch request for {marksheet.student_name} has been approved."
    elif response == "rejected":
        title = "Dispatch rejected by HOD"
        message = (
            f"Your dispatch request for {marksheet.student_name} was rejected. "
            f"Comments: {marksheet.hod_comments or 'N/A'}."
        )
    else:
        when = marksheet.scheduled_dispatch_date.strftime("%d %b %Y %H:%M") if marksheet.scheduled_dispatch_date else "later"
        title = "Dispatch rescheduled by HOD"
        message = f"Your dispatch request for {marksheet.student_name} was rescheduled to {when}."

    service.notify_user(
        marksheet.staff,
        title=title,
        message=message,
        notification_type=f"dispatch_{response or 'rescheduled'}",
        action_url="/dispatch-requests",
    )


def notify_upcoming_dispatch(service: NotificationService, marksheet: Marksheet) -> NotificationDelivery:
    when = marksheet.scheduled_dispatch_date.strftime("%H:%M") if marksheet.scheduled_dispatch_date else "soon"
    return service.notify_user(
        marksheet.staff,
        title="Upcoming Dispatch",
        message=f"Your Year {marksheet.year} marksheet for {marksheet.student_name} is scheduled to be dispatched at {when}.",
        notification_type="dispatch_upcoming",
        action_url="/marksheets",
    )


def notify_dispatch_succeeded(service: NotificationService, marksheet: Marksheet) -> None:
    service.notify_user(
        marksheet.staff,
        title="Marksheet Dispatched",
        message=f"Marksheet for {marksheet.student_name} ({marksheet.reg_number}) has been sent via WhatsApp.",
        notification_type="dispatch_succeeded",
        action_url=f"/marksheets/{marksheet.id}",
    )


def notify_dispatch_failed(service: NotificationService, marksheet: Marksheet, error: str) -> None:
    service.notify_user(
        marksheet.staff,
        title="Dispatch Failed",
        message=f"Failed to send marksheet for {marksheet.student_name} ({marksheet.reg_number}): {error}",
        notification_type="dispatch_failed",
        action_url=f"/marksheets/{marksheet.id}",
    )


def notify_bulk_dispatch_complete(
    service: NotificationService,
    staff: User | None,
    successful: int,
    total: int,
) -> None:
    failed = total - successful
    success_rate = round(successful / total * 100) if total else 0
    message = f"Dispatched {successful} of {total} marksheets ({success_rate}% success rate)."
    if failed:
        message += f" {failed} failed."
    service.notify_user(
        staff,
        title="Bulk Dispatch Complete",
        message=message,
        notification_type="bulk_dispatch_complete",
        action_url="/dispatch-requests",
    )
