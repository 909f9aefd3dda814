"""
Optimistic cache synchronization after booking mutations.

When the user books or cancels a slot, the provider's cached availability
is patched immediately and every view that depends on availability or
bookings is marked stale, so it is re-fetched on its next read instead
of waiting for a poll.
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel

from servicefinder_sync.cache import (
    AVAILABILITY_SEARCH,
    CUSTOMER_BOOKINGS,
    PROVIDER_AVAILABILITY,
    PROVIDER_BOOKINGS,
    QueryCache,
)

logger = logging.getLogger(__name__)


def _slot_id(slot: Any) -> Any:
    if isinstance(slot, BaseModel):
        return getattr(slot, "id", None)
    if isinstance(slot, dict):
        return slot.get("id")
    return None


def _with_booked(slot: Any, is_booked: bool) -> Any:
    if isinstance(slot, BaseModel):
        return slot.model_copy(update={"is_booked": is_booked})
    # Raw payloads keep the key spelling they arrived with
    key = "is_booked" if "is_booked" in slot and "isBooked" not in slot else "isBooked"
    return {**slot, key: is_booked}


def patch_slot(data: Any, availability_id: int, is_booked: bool) -> Any:
    """
    Return ``data`` with the slot ``availability_id`` set to ``is_booked``.

    Anything that is not a list is returned unchanged.
    """
    if not isinstance(data, list):
        return data
    return [
        _with_booked(slot, is_booked) if _slot_id(slot) == availability_id else slot
        for slot in data
    ]


class CacheSyncBridge:
    """
    Propagates local booking mutations into the query cache.

    Args:
        cache: The session's QueryCache
    """

    def __init__(self, cache: QueryCache):
        self.cache = cache

    def sync_availability(self, provider_id: Optional[int] = None) -> None:
        """
        Mark availability and booking views stale.

        The availability prefix covers every provider's view, ``provider_id``'s
        included; ``provider_id`` is only logged.
        """
        self.cache.invalidate((PROVIDER_AVAILABILITY,))
        self.cache.invalidate((AVAILABILITY_SEARCH,))
        self.cache.invalidate((CUSTOMER_BOOKINGS,))
        self.cache.invalidate((PROVIDER_BOOKINGS,))
        logger.debug("Availability views invalidated (provider: %s)", provider_id)

    def _set_slot_booked(self, provider_id: int, availability_id: int, is_booked: bool) -> None:
        patched = self.cache.update(
            (PROVIDER_AVAILABILITY, provider_id),
            lambda data: patch_slot(data, availability_id, is_booked),
        )
        if patched:
            logger.debug(
                "Patched slot %s of provider %s: is_booked=%s",
                availability_id,
                provider_id,
                is_booked,
            )

    def sync_booking_created(self, provider_id: int, availability_id: int) -> None:
        """Show the booked slot as taken, then invalidate dependent views."""
        self._set_slot_booked(provider_id, availability_id, True)
        self.sync_availability(provider_id)

    def sync_booking_cancelled(self, provider_id: int, availability_id: int) -> None:
        """Show the released slot as free, then invalidate dependent views."""
        self._set_slot_booked(provider_id, availability_id, False)
        self.sync_availability(provider_id)
