"""
Persisted de-duplication state for the pollers.

Each poll category owns a fixed set of storage keys, scoped by user id.
A poller only ever writes the keys its category owns, so pollers for
different categories never overwrite one another.

Storage layout (one JSON array per key):
    notified-bookings-{user_id}          [id, ...]
    provider-last-statuses-{user_id}     [[id, status], ...]
    provider-notified-ratings-{user_id}  [id, ...]
    customer-last-statuses-{user_id}     [[id, status], ...]
    customer-last-notes-{user_id}        [[id, notes | null], ...]

Reads never raise: absent keys, unparseable JSON and malformed entries
load as empty. Writes are best effort: failures are logged and dropped.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from servicefinder_sync.models import BookingStatus, PollCategory
from servicefinder_sync.storage import KeyValueStorage

logger = logging.getLogger(__name__)


# ============================================================================
# DedupState
# ============================================================================


@dataclass
class DedupState:
    """
    Previously observed ids and statuses of one poll category.

    Attributes:
        seen_booking_ids: Bookings already announced as new
        last_status_by_booking_id: Last observed status per booking
        seen_rating_ids: Ratings already announced
        last_notes_by_booking_id: Last observed provider notes per booking
    """

    seen_booking_ids: Set[int] = field(default_factory=set)
    last_status_by_booking_id: Dict[int, BookingStatus] = field(default_factory=dict)
    seen_rating_ids: Set[int] = field(default_factory=set)
    last_notes_by_booking_id: Dict[int, Optional[str]] = field(default_factory=dict)

    def copy(self) -> "DedupState":
        return DedupState(
            seen_booking_ids=set(self.seen_booking_ids),
            last_status_by_booking_id=dict(self.last_status_by_booking_id),
            seen_rating_ids=set(self.seen_rating_ids),
            last_notes_by_booking_id=dict(self.last_notes_by_booking_id),
        )

    def is_empty(self) -> bool:
        return not (
            self.seen_booking_ids
            or self.last_status_by_booking_id
            or self.seen_rating_ids
            or self.last_notes_by_booking_id
        )


# ============================================================================
# Key layout
# ============================================================================

# field name -> key template, per category
CATEGORY_KEYS: Dict[PollCategory, Dict[str, str]] = {
    PollCategory.PROVIDER_NEW_BOOKINGS: {
        "seen_booking_ids": "notified-bookings-{user_id}",
    },
    PollCategory.PROVIDER_STATUS_CHANGES: {
        "last_status_by_booking_id": "provider-last-statuses-{user_id}",
    },
    PollCategory.PROVIDER_NEW_RATINGS: {
        "seen_rating_ids": "provider-notified-ratings-{user_id}",
    },
    PollCategory.CUSTOMER_STATUS_CHANGES: {
        "last_status_by_booking_id": "customer-last-statuses-{user_id}",
        "last_notes_by_booking_id": "customer-last-notes-{user_id}",
    },
}

PROVIDER_CATEGORIES = (
    PollCategory.PROVIDER_NEW_BOOKINGS,
    PollCategory.PROVIDER_STATUS_CHANGES,
    PollCategory.PROVIDER_NEW_RATINGS,
)

_ID_SET_FIELDS = frozenset(["seen_booking_ids", "seen_rating_ids"])


def storage_keys(user_id: int, category: PollCategory) -> Dict[str, str]:
    """Get the field -> storage key mapping of a category for a user."""
    return {
        field_name: template.format(user_id=user_id)
        for field_name, template in CATEGORY_KEYS[category].items()
    }


# ============================================================================
# (De)serialization
# ============================================================================


def _coerce_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return None


def _parse_array(raw: Optional[str], key: str) -> List[Any]:
    if raw is None:
        return []
    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.warning("Ignoring corrupt state entry %s: %s", key, e)
        return []
    if not isinstance(data, list):
        logger.warning("Ignoring state entry %s: expected a JSON array", key)
        return []
    return data


def _parse_id_set(entries: Iterable[Any]) -> Set[int]:
    ids = set()
    for entry in entries:
        entity_id = _coerce_id(entry)
        if entity_id is not None:
            ids.add(entity_id)
    return ids


def _parse_pairs(entries: Iterable[Any]) -> List[Tuple[int, Any]]:
    pairs = []
    for entry in entries:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            continue
        entity_id = _coerce_id(entry[0])
        if entity_id is not None:
            pairs.append((entity_id, entry[1]))
    return pairs


def _parse_statuses(entries: Iterable[Any]) -> Dict[int, BookingStatus]:
    statuses = {}
    for entity_id, value in _parse_pairs(entries):
        try:
            statuses[entity_id] = BookingStatus(value)
        except ValueError:
            continue
    return statuses


def _parse_notes(entries: Iterable[Any]) -> Dict[int, Optional[str]]:
    return {
        entity_id: value
        for entity_id, value in _parse_pairs(entries)
        if value is None or isinstance(value, str)
    }


def _decode_field(field_name: str, raw: Optional[str], key: str) -> Any:
    entries = _parse_array(raw, key)
    if field_name in _ID_SET_FIELDS:
        return _parse_id_set(entries)
    if field_name == "last_status_by_booking_id":
        return _parse_statuses(entries)
    return _parse_notes(entries)


def _encode_field(field_name: str, value: Any) -> str:
    if field_name in _ID_SET_FIELDS:
        return json.dumps(sorted(value))
    if field_name == "last_status_by_booking_id":
        return json.dumps([[k, BookingStatus(v).value] for k, v in sorted(value.items())])
    return json.dumps([[k, v] for k, v in sorted(value.items())])


# ============================================================================
# DedupStateStore
# ============================================================================


class DedupStateStore:
    """
    Loads, caches and persists DedupState per (user, category).

    The store keeps the live state of every category it has loaded, so a
    local mutation recorded here is seen by the category's poller on its
    next tick.

    Usage:
        >>> store = DedupStateStore(MemoryStorage())
        >>> state = store.load(42, PollCategory.PROVIDER_NEW_BOOKINGS)
        >>> store.save(42, state, PollCategory.PROVIDER_NEW_BOOKINGS)
    """

    def __init__(self, storage: KeyValueStorage):
        self._storage = storage
        self._live: Dict[Tuple[int, PollCategory], DedupState] = {}

    def load(self, user_id: int, category: Optional[PollCategory] = None) -> DedupState:
        """
        Read a category's state from storage, replacing any cached copy.

        Args:
            user_id: Owner of the state
            category: Poll category to load. When omitted, the three provider
                collections are loaded and returned merged into one state.

        Returns:
            The loaded state (empty collections where nothing usable is stored)
        """
        if category is None:
            merged = DedupState()
            for provider_category in PROVIDER_CATEGORIES:
                loaded = self.load(user_id, provider_category)
                for field_name in CATEGORY_KEYS[provider_category]:
                    setattr(merged, field_name, getattr(loaded, field_name))
            return merged

        state = DedupState()
        for field_name, key in storage_keys(user_id, category).items():
            try:
                raw = self._storage.get(key)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Failed to read state entry %s: %s", key, e)
                raw = None
            setattr(state, field_name, _decode_field(field_name, raw, key))

        self._live[(user_id, category)] = state
        logger.debug(
            "Loaded %s state for user %s (%d bookings, %d statuses, %d ratings)",
            category.value,
            user_id,
            len(state.seen_booking_ids),
            len(state.last_status_by_booking_id),
            len(state.seen_rating_ids),
        )
        return state

    def current(self, user_id: int, category: PollCategory) -> DedupState:
        """Get the live state of a category, loading it on first use."""
        state = self._live.get((user_id, category))
        if state is None:
            state = self.load(user_id, category)
        return state

    def save(
        self,
        user_id: int,
        state: DedupState,
        category: Optional[PollCategory] = None,
    ) -> None:
        """
        Make `state` the live state of a category and persist its keys.

        Only the keys owned by `category` are written. Without a category,
        each provider category gets its own slice of `state`. Storage
        failures are logged and swallowed.
        """
        if category is None:
            for provider_category in PROVIDER_CATEGORIES:
                live = self.current(user_id, provider_category).copy()
                source = state.copy()
                for field_name in CATEGORY_KEYS[provider_category]:
                    setattr(live, field_name, getattr(source, field_name))
                self.save(user_id, live, provider_category)
            return

        self._live[(user_id, category)] = state
        for field_name, key in storage_keys(user_id, category).items():
            try:
                self._storage.set(key, _encode_field(field_name, getattr(state, field_name)))
            except (OSError, TypeError, ValueError) as e:
                logger.warning("Failed to persist state entry %s: %s", key, e)

    def record_booking_status(
        self,
        user_id: int,
        category: PollCategory,
        booking_id: int,
        status: BookingStatus,
    ) -> None:
        """
        Record a status the user caused locally so it is not announced back.
        """
        state = self.current(user_id, category).copy()
        state.last_status_by_booking_id[booking_id] = BookingStatus(status)
        self.save(user_id, state, category)

    def record_booking_seen(
        self,
        user_id: int,
        category: PollCategory,
        booking_id: int,
    ) -> None:
        """Record a booking id as already announced."""
        state = self.current(user_id, category).copy()
        state.seen_booking_ids.add(booking_id)
        self.save(user_id, state, category)

    def clear(self, user_id: int) -> int:
        """
        Delete every persisted key of a user and drop the cached state.

        Returns:
            Number of storage keys removed (or attempted)
        """
        removed = 0
        for category in PollCategory:
            self._live.pop((user_id, category), None)
            for key in storage_keys(user_id, category).values():
                try:
                    self._storage.remove(key)
                    removed += 1
                except OSError as e:
                    logger.warning("Failed to remove state entry %s: %s", key, e)
        return removed
