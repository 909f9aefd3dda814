"""
Booking mutations initiated by the signed-in user.

Each action calls the API, then:
- patches and invalidates the cached views through the CacheSyncBridge
- records the resulting status in the de-duplication state, so the
  session's own pollers do not announce the user's own action back

API errors propagate to the caller.
"""

import logging
from typing import Any, Dict, Optional

from servicefinder_sync.cache.sync_bridge import CacheSyncBridge
from servicefinder_sync.dedup_store import DedupStateStore
from servicefinder_sync.models import BookingCreateRequest, BookingStatus, PollCategory, Session
from servicefinder_sync.notification_helpers import NotificationHelpers

logger = logging.getLogger(__name__)


class BookingActions:
    """Booking mutations with cache and de-duplication bookkeeping."""

    def __init__(
        self,
        api_client,
        bridge: CacheSyncBridge,
        dedup_store: DedupStateStore,
        helpers: NotificationHelpers,
        session: Session,
    ):
        self._api_client = api_client
        self._bridge = bridge
        self._dedup_store = dedup_store
        self._helpers = helpers
        self._session = session

    @property
    def _status_category(self) -> Optional[PollCategory]:
        if self._session.is_provider:
            return PollCategory.PROVIDER_STATUS_CHANGES
        if self._session.is_customer:
            return PollCategory.CUSTOMER_STATUS_CHANGES
        return None

    def _record_status(self, booking_id: int, status: BookingStatus) -> None:
        category = self._status_category
        if category is None:
            return
        self._dedup_store.record_booking_status(
            self._session.user_id, category, booking_id, status
        )

    async def create_booking(
        self,
        request: BookingCreateRequest,
        provider_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Book a service.

        Args:
            request: Booking details
            provider_id: Provider owning the booked slot, when known

        Returns:
            The created booking as returned by the server
        """
        booking = await self._api_client.create_booking(request)

        if provider_id is not None and request.availability_id is not None:
            self._bridge.sync_booking_created(provider_id, request.availability_id)
        else:
            self._bridge.sync_availability(provider_id)

        booking_id = booking.get("id")
        if isinstance(booking_id, int):
            if self._session.is_provider:
                self._dedup_store.record_booking_seen(
                    self._session.user_id, PollCategory.PROVIDER_NEW_BOOKINGS, booking_id
                )
            try:
                status = BookingStatus(booking.get("status") or BookingStatus.PENDING)
            except ValueError:
                status = BookingStatus.PENDING
            self._record_status(booking_id, status)

            service_name = (booking.get("service") or {}).get("name") or "your service"
            self._helpers.notify_booking_created(str(booking_id), service_name)

        logger.info(f"Created booking {booking_id} for service {request.service_id}")
        return booking

    async def cancel_booking(
        self,
        booking_id: int,
        reason: str,
        provider_id: Optional[int] = None,
        availability_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Cancel a booking and release its slot.

        Args:
            booking_id: Booking to cancel
            reason: Free-text cancellation reason
            provider_id: Provider owning the slot, when known
            availability_id: Slot the booking held, when known
        """
        booking = await self._api_client.cancel_booking(booking_id, reason)

        if provider_id is not None and availability_id is not None:
            self._bridge.sync_booking_cancelled(provider_id, availability_id)
        else:
            self._bridge.sync_availability(provider_id)

        self._record_status(booking_id, BookingStatus.CANCELLED)
        logger.info(f"Cancelled booking {booking_id}")
        return booking

    async def confirm_booking(self, booking_id: int) -> Dict[str, Any]:
        """Confirm a pending booking (provider)."""
        booking = await self._api_client.confirm_booking(booking_id)
        self._after_transition(booking_id, BookingStatus.CONFIRMED)
        return booking

    async def start_service(self, booking_id: int) -> Dict[str, Any]:
        """Mark a confirmed booking as in progress (provider)."""
        booking = await self._api_client.start_service(booking_id)
        self._after_transition(booking_id, BookingStatus.IN_PROGRESS)
        return booking

    async def complete_service(self, booking_id: int) -> Dict[str, Any]:
        """Mark a booking as completed (provider)."""
        booking = await self._api_client.complete_service(booking_id)
        self._after_transition(booking_id, BookingStatus.COMPLETED)
        return booking

    def _after_transition(self, booking_id: int, status: BookingStatus) -> None:
        self._record_status(booking_id, status)
        self._bridge.sync_availability()
        logger.info(f"Booking {booking_id} is now {status.value}")
