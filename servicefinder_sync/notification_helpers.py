"""
Role-aware shortcuts for notifications raised by user actions.
"""

from typing import Optional

from servicefinder_sync.models import (
    NOTIFICATION_DEFAULT_TITLES,
    Notification,
    NotificationDraft,
    NotificationType,
    Session,
)
from servicefinder_sync.notification_store import NotificationStore
from servicefinder_sync.synthesizer import (
    CUSTOMER_BOOKINGS_URL,
    PROVIDER_BOOKINGS_URL,
    PROVIDER_RATINGS_URL,
)


class NotificationHelpers:
    """Builds and adds notifications worded for the session's role."""

    def __init__(self, store: NotificationStore, session: Session):
        self._store = store
        self._session = session

    @property
    def _bookings_url(self) -> str:
        return PROVIDER_BOOKINGS_URL if self._session.is_provider else CUSTOMER_BOOKINGS_URL

    def create(
        self,
        notification_type: NotificationType,
        message: str,
        title: Optional[str] = None,
        action_url: Optional[str] = None,
        related_id: Optional[str] = None,
    ) -> Notification:
        return self._store.add(
            NotificationDraft(
                type=notification_type,
                title=title or NOTIFICATION_DEFAULT_TITLES[notification_type],
                message=message,
                action_url=action_url,
                related_id=related_id,
            )
        )

    def notify_new_booking_request(
        self, booking_id: str, service_name: str, customer_name: str
    ) -> Notification:
        return self.create(
            NotificationType.NEW_BOOKING_REQUEST,
            f'{customer_name} has requested to book "{service_name}"',
            action_url=PROVIDER_BOOKINGS_URL,
            related_id=booking_id,
        )

    def notify_booking_created(self, booking_id: str, service_name: str) -> Notification:
        """Confirmation shown to a customer right after booking."""
        return self.create(
            NotificationType.BOOKING_CONFIRMATION,
            f'Your booking request for "{service_name}" was sent',
            title="Booking Requested",
            action_url=CUSTOMER_BOOKINGS_URL,
            related_id=booking_id,
        )

    def notify_booking_confirmed(
        self,
        booking_id: str,
        service_name: str,
        provider_name: Optional[str] = None,
    ) -> Notification:
        if self._session.is_provider:
            return self.create(
                NotificationType.BOOKING_CONFIRMED,
                f'You confirmed the booking for "{service_name}"',
                action_url=PROVIDER_BOOKINGS_URL,
                related_id=booking_id,
            )
        return self.create(
            NotificationType.BOOKING_CONFIRMATION,
            f'{provider_name or "Service provider"} confirmed your booking for "{service_name}"',
            action_url=CUSTOMER_BOOKINGS_URL,
            related_id=booking_id,
        )

    def notify_booking_cancelled(
        self, booking_id: str, service_name: str, cancelled_by: str
    ) -> Notification:
        return self.create(
            NotificationType.BOOKING_CANCELLED,
            f'{cancelled_by} cancelled the booking for "{service_name}"',
            action_url=self._bookings_url,
            related_id=booking_id,
        )

    def notify_provider_response(
        self, booking_id: str, service_name: str, response: str
    ) -> Notification:
        return self.create(
            NotificationType.PROVIDER_RESPONSE,
            f'Service provider responded to your "{service_name}" booking: {response}',
            action_url=CUSTOMER_BOOKINGS_URL,
            related_id=booking_id,
        )

    def notify_service_completion_request(
        self, booking_id: str, service_name: str
    ) -> Notification:
        return self.create(
            NotificationType.SERVICE_COMPLETION_REQUEST,
            f'Please confirm completion of "{service_name}" service',
            action_url=CUSTOMER_BOOKINGS_URL,
            related_id=booking_id,
        )

    def notify_new_customer_review(
        self, rating_id: str, service_name: str, customer_name: str, rating: int
    ) -> Notification:
        return self.create(
            NotificationType.NEW_CUSTOMER_REVIEW,
            f'{customer_name} left a {rating}-star review for "{service_name}"',
            action_url=PROVIDER_RATINGS_URL,
            related_id=rating_id,
        )
