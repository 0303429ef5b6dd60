"""
Tests for the notification gateway and push subscriptions
"""
import pytest
from sqlalchemy import select

from app.core.exceptions import NotFoundError
from app.models.notification import Notification, PushSubscription, SubscriptionStatus
from app.schemas.notification import NotificationFilter, PushSubscriptionCreate
from app.services.notification import NotificationService, PushOutcome

from conftest import FakePushSender


def subscribe(service, user, endpoint="https://push.example/abc") -> PushSubscription:
    return service.store_subscription(
        user,
        PushSubscriptionCreate(endpoint=endpoint, keys={"p256dh": "BNcR-key", "auth": "tBHI-auth"}),
    )


class TestNotifyUser:

    def test_stores_and_pushes(self, notifications, push_sender, staff_user, db_session):
        subscribe(notifications, staff_user)

        delivery = notifications.notify_user(staff_user, "Dispatch Failed", "Could not send", "dispatch_failed", "/marksheets/1")

        assert delivery.attempted
        assert delivery.stored
        assert delivery.pushed == 1
        endpoint, payload = push_sender.sent[0]
        assert endpoint == "https://push.example/abc"
        assert payload["title"] == "Dispatch Failed"
        assert payload["data"]["url"] == "/marksheets/1"
        stored = db_session.execute(select(Notification)).scalar_one()
        assert stored.user_id == staff_user.id
        assert not stored.is_read

    def test_missing_recipient_is_skipped(self, notifications, db_session):
        delivery = notifications.notify_user(None, "t", "m", "dispatch_requested")

        assert not delivery.attempted
        assert db_session.execute(select(Notification)).first() is None

    def test_inactive_recipient_is_skipped(self, notifications, staff_user):
        staff_user.is_active = False

        assert not notifications.notify_user(staff_user, "t", "m", "x").attempted

    def test_gone_endpoint_is_expired(self, db_session, staff_user):
        service = NotificationService(db_session, push_sender=FakePushSender(outcome=PushOutcome.GONE))
        subscription = subscribe(service, staff_user)

        delivery = service.notify_user(staff_user, "t", "m", "x")

        assert delivery.pushed == 0
        assert delivery.stored
        assert subscription.status == SubscriptionStatus.EXPIRED
        assert subscription.deactivated_reason == "endpoint_gone"

    def test_push_errors_never_raise(self, db_session, staff_user):
        sender = FakePushSender()
        sender.error = RuntimeError("push service down")
        service = NotificationService(db_session, push_sender=sender)
        subscribe(service, staff_user)

        delivery = service.notify_user(staff_user, "t", "m", "x")

        assert delivery.stored
        assert delivery.pushed == 0

    def test_unconfigured_push_still_stores(self, db_session, staff_user):
        sender = FakePushSender(configured=False)
        service = NotificationService(db_session, push_sender=sender)
        subscribe(service, staff_user)

        delivery = service.notify_user(staff_user, "t", "m", "x")

        assert delivery.stored
        assert sender.sent == []


class TestSubscriptions:

    def test_new_subscription_replaces_previous(self, notifications, staff_user):
        old = subscribe(notifications, staff_user, "https://push.example/old")
        new = subscribe(notifications, staff_user, "https://push.example/new")

        active = notifications.get_active_subscriptions(staff_user.id)
        assert [s.id for s in active] == [new.id]
        notifications.db.refresh(old)
        assert old.status == SubscriptionStatus.EXPIRED

    def test_endpoint_moves_to_latest_user(self, notifications, staff_user, hod_user):
        subscribe(notifications, staff_user, "https://push.example/shared")
        subscribe(notifications, hod_user, "https://push.example/shared")

        assert notifications.get_active_subscriptions(staff_user.id) == []
        assert len(notifications.get_active_subscriptions(hod_user.id)) == 1

    def test_unsubscribe_and_logout(self, notifications, staff_user):
        subscribe(notifications, staff_user, "https://push.example/a")

        assert notifications.remove_subscription(staff_user, "https://push.example/unknown") == 0
        assert notifications.remove_subscription(staff_user, "https://push.example/a") == 1

        subscribe(notifications, staff_user, "https://push.example/b")
        assert notifications.deactivate_subscriptions(staff_user) == 1
        assert notifications.get_active_subscriptions(staff_user.id) == []


class TestInbox:

    def test_read_tracking_and_stats(self, notifications, staff_user):
        for i in range(3):
            notifications.notify_user(staff_user, f"t{i}", "m", "dispatch_succeeded")
        items, total = notifications.list_notifications(staff_user.id)
        assert total == 3

        assert notifications.mark_as_read([items[0].id], staff_user.id) == 1
        stats = notifications.get_stats(staff_user.id)
        assert (stats.total, stats.read, stats.unread) == (3, 1, 2)

        unread, unread_total = notifications.list_notifications(staff_user.id, NotificationFilter(is_read=False))
        assert unread_total == 2

        assert notifications.mark_all_as_read(staff_user.id) == 2
        assert notifications.get_stats(staff_user.id).unread == 0

    def test_cannot_touch_other_users_notifications(self, notifications, staff_user, hod_user):
        notifications.notify_user(staff_user, "t", "m", "x")
        items, _ = notifications.list_notifications(staff_user.id)

        with pytest.raises(NotFoundError):
            notifications.delete_notification(items[0].id, hod_user.id)

        notifications.delete_notification(items[0].id, staff_user.id)
        assert notifications.list_notifications(staff_user.id)[1] == 0
