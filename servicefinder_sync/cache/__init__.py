"""
Client-side query cache.

Holds the last fetched data of the views the client shows, keyed by a
tuple ``(resource_type, *scope_params)``:
- ("provider-availability", provider_id): a provider's availability slots
- ("availability-search", ...): availability search results
- ("customer-bookings", ...) / ("provider-bookings", ...): booking lists

Entries are marked stale by prefix invalidation and re-fetched on the
next ``get_or_fetch``. See ``sync_bridge`` for the mutation hooks that
patch and invalidate these entries.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

PROVIDER_AVAILABILITY = "provider-availability"
AVAILABILITY_SEARCH = "availability-search"
CUSTOMER_BOOKINGS = "customer-bookings"
PROVIDER_BOOKINGS = "provider-bookings"

QueryKey = Tuple[Hashable, ...]


# ============================================================================
# CachedEntry
# ============================================================================


class CachedEntry(BaseModel):
    """Last fetched data of one query key."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    data: Any = Field(None, description="Fetched data (list of entities or payload)")
    stale: bool = Field(False, description="Set by invalidation, cleared by set()")
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the data was last written",
    )


# ============================================================================
# QueryCache
# ============================================================================


def _as_key(key: Any) -> QueryKey:
    return key if isinstance(key, tuple) else (key,)


class QueryCache:
    """
    In-memory cache of query results with prefix invalidation.

    Usage:
        >>> cache = QueryCache()
        >>> cache.set(("provider-availability", 7), slots)
        >>> cache.invalidate(("provider-availability",))
        >>> cache.is_stale(("provider-availability", 7))
        True
    """

    def __init__(self):
        self._entries: Dict[QueryKey, CachedEntry] = {}
        # Bumped by every write that a concurrent fetch result must not undo
        self._generations: Dict[QueryKey, int] = {}

    def _bump(self, key: QueryKey) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    def __contains__(self, key: Any) -> bool:
        return _as_key(key) in self._entries

    def keys(self) -> List[QueryKey]:
        return list(self._entries)

    def get(self, key: Any) -> Optional[Any]:
        """Get the cached data of a key, stale or not (None when absent)."""
        entry = self._entries.get(_as_key(key))
        return entry.data if entry is not None else None

    def entry(self, key: Any) -> Optional[CachedEntry]:
        return self._entries.get(_as_key(key))

    def set(self, key: Any, data: Any) -> None:
        """Store fresh data for a key."""
        self._entries[_as_key(key)] = CachedEntry(data=data)

    def update(self, key: Any, fn: Callable[[Any], Any]) -> bool:
        """
        Replace the data of a cached key with ``fn(data)``.

        The staleness flag is left unchanged.

        Returns:
            True if the key was cached and updated, False otherwise
        """
        key = _as_key(key)
        entry = self._entries.get(key)
        if entry is None:
            return False
        self._bump(key)
        self._entries[key] = entry.model_copy(
            update={"data": fn(entry.data), "updated_at": datetime.now(timezone.utc)}
        )
        return True

    def invalidate(self, prefix: Any) -> int:
        """
        Mark every key starting with ``prefix`` stale.

        Args:
            prefix: Key prefix, e.g. ("provider-availability",) or
                ("provider-availability", 7)

        Returns:
            Number of entries marked stale
        """
        prefix = _as_key(prefix)
        for key in set(self._entries) | set(self._generations):
            if key[: len(prefix)] == prefix:
                self._bump(key)

        count = 0
        for key, entry in self._entries.items():
            if key[: len(prefix)] == prefix and not entry.stale:
                entry.stale = True
                count += 1
        logger.debug("Invalidated %d cache entries under %s", count, prefix)
        return count

    def is_stale(self, key: Any) -> bool:
        """True if the key is stale or not cached at all."""
        entry = self._entries.get(_as_key(key))
        return entry is None or entry.stale

    def remove(self, key: Any) -> None:
        key = _as_key(key)
        self._bump(key)
        self._entries.pop(key, None)

    def clear(self) -> None:
        for key in set(self._entries) | set(self._generations):
            self._bump(key)
        self._entries.clear()

    async def get_or_fetch(self, key: Any, fetcher: Callable[[], Awaitable[Any]]) -> Any:
        """
        Get cached data, fetching it when missing or stale.

        If the key is invalidated, patched or removed while the fetch is in
        flight, the result predates that write: an existing entry is kept
        as it is (still stale, so the next read re-fetches) and a missing
        one is stored stale.

        Errors raised by ``fetcher`` propagate and leave the entry as it was.
        """
        key = _as_key(key)
        if not self.is_stale(key):
            return self._entries[key].data

        generation = self._generations.setdefault(key, 0)
        data = await fetcher()
        if self._generations.get(key, 0) == generation:
            self.set(key, data)
            return data

        logger.debug("Discarding outdated fetch of %s", key)
        entry = self._entries.get(key)
        if entry is None:
            self._entries[key] = CachedEntry(data=data, stale=True)
            return data
        return entry.data


__all__ = [
    "PROVIDER_AVAILABILITY",
    "AVAILABILITY_SEARCH",
    "CUSTOMER_BOOKINGS",
    "PROVIDER_BOOKINGS",
    "QueryKey",
    "CachedEntry",
    "QueryCache",
]
