"""
Unit tests for NotificationStore and NotificationHelpers.
"""

import asyncio

import pytest

from servicefinder_sync.models import NotificationDraft, NotificationType
from servicefinder_sync.notification_helpers import NotificationHelpers
from servicefinder_sync.notification_store import NotificationStore


def draft(notification_type=NotificationType.NEW_BOOKING_REQUEST, message="hello"):
    return NotificationDraft(type=notification_type, title="Title", message=message)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestAdd:
    """Tests for adding notifications."""

    def test_add_assigns_id_and_prepends(self, notification_store):
        first = notification_store.add(draft(message="first"))
        second = notification_store.add(draft(message="second"))

        assert [n.message for n in notification_store.notifications] == ["second", "first"]
        assert first.id != second.id
        assert first.id.startswith("ntf_")
        assert first.is_read is False
        assert first.created_at.tzinfo is not None

    def test_unread_count(self, notification_store):
        notification_store.add(draft())
        notification_store.add(draft())

        assert notification_store.unread_count == 2
        assert len(notification_store) == 2

    def test_listeners_are_notified(self, notification_store):
        received = []
        unsubscribe = notification_store.subscribe(received.append)

        added = notification_store.add(draft())
        unsubscribe()
        notification_store.add(draft())

        assert received == [added]

    def test_failing_listener_does_not_block_add(self, notification_store, caplog):
        def broken(_):
            raise RuntimeError("boom")

        notification_store.subscribe(broken)

        notification_store.add(draft())

        assert len(notification_store) == 1
        assert "boom" in caplog.text


class TestReadState:
    """Tests for read/unread state and removal."""

    def test_mark_as_read(self, notification_store):
        a = notification_store.add(draft())
        notification_store.add(draft())

        notification_store.mark_as_read(a.id)

        assert notification_store.get(a.id).is_read is True
        assert notification_store.unread_count == 1

    def test_mark_all_as_read(self, notification_store):
        notification_store.add(draft())
        notification_store.add(draft())

        notification_store.mark_all_as_read()

        assert notification_store.unread_count == 0

    def test_unknown_id_is_ignored(self, notification_store):
        notification_store.add(draft())

        notification_store.mark_as_read("ntf_missing")
        notification_store.remove("ntf_missing")

        assert len(notification_store) == 1

    def test_remove_is_idempotent(self, notification_store):
        a = notification_store.add(draft())

        notification_store.remove(a.id)
        notification_store.remove(a.id)

        assert notification_store.notifications == []

    def test_clear_all(self, notification_store):
        notification_store.add(draft(NotificationType.BOOKING_CONFIRMATION))
        notification_store.add(draft())

        notification_store.clear_all()

        assert notification_store.notifications == []
        assert notification_store._deadlines == {}


class TestAutoExpiry:
    """Tests for transient notification expiry."""

    def test_transient_types_expire_on_clock(self):
        clock = FakeClock()
        store = NotificationStore(auto_expire_seconds=10, clock=clock)
        transient = store.add(draft(NotificationType.BOOKING_CONFIRMATION))
        persistent = store.add(draft(NotificationType.NEW_BOOKING_REQUEST))

        clock.now += 9.9
        assert store.get(transient.id) is not None

        clock.now += 0.2
        assert [n.id for n in store.notifications] == [persistent.id]

    def test_provider_response_expires(self):
        clock = FakeClock()
        store = NotificationStore(auto_expire_seconds=10, clock=clock)
        store.add(draft(NotificationType.PROVIDER_RESPONSE))

        clock.now += 10

        assert store.notifications == []

    def test_removed_before_expiry(self):
        clock = FakeClock()
        store = NotificationStore(auto_expire_seconds=10, clock=clock)
        transient = store.add(draft(NotificationType.BOOKING_CONFIRMATION))

        store.remove(transient.id)
        clock.now += 20

        assert store.notifications == []
        assert store._deadlines == {}

    @pytest.mark.asyncio
    async def test_expiry_timer_on_event_loop(self):
        store = NotificationStore(auto_expire_seconds=0.05)
        store.add(draft(NotificationType.BOOKING_CONFIRMATION))

        await asyncio.sleep(0.15)

        assert store._notifications == []
        assert store._timers == {}


class TestNotificationHelpers:
    """Tests for role-aware notification shortcuts."""

    def test_booking_confirmed_for_provider(self, notification_store, provider_session):
        helpers = NotificationHelpers(notification_store, provider_session)

        notification = helpers.notify_booking_confirmed("5", "Deep Clean")

        assert notification.type == NotificationType.BOOKING_CONFIRMED
        assert notification.action_url == "/provider/bookings"

    def test_booking_confirmed_for_customer(self, notification_store, customer_session):
        helpers = NotificationHelpers(notification_store, customer_session)

        notification = helpers.notify_booking_confirmed("5", "Deep Clean", "Sparkle Cleaning")

        assert notification.type == NotificationType.BOOKING_CONFIRMATION
        assert notification.message == 'Sparkle Cleaning confirmed your booking for "Deep Clean"'
        assert notification.action_url == "/customer/bookings"

    def test_default_titles(self, notification_store, provider_session):
        helpers = NotificationHelpers(notification_store, provider_session)

        review = helpers.notify_new_customer_review("9", "Deep Clean", "Ada", 5)
        request = helpers.notify_new_booking_request("1", "Deep Clean", "Ada")

        assert review.title == "New Customer Review"
        assert request.title == "New Booking Request"
        assert review.related_id == "9"

    def test_cancelled_links_to_role_bookings(self, notification_store, customer_session):
        helpers = NotificationHelpers(notification_store, customer_session)

        notification = helpers.notify_booking_cancelled("5", "Deep Clean", "Provider")

        assert notification.action_url == "/customer/bookings"
        assert notification.type == NotificationType.BOOKING_CANCELLED

    def test_explicit_title_wins(self, notification_store, customer_session):
        helpers = NotificationHelpers(notification_store, customer_session)

        notification = helpers.create(NotificationType.PROFILE_UPDATED, "Saved", title="Done")

        assert notification.title == "Done"
