"""
In-memory notification store.

Holds the notifications of one session, newest first, with read/unread
state. Transient notification types expire a fixed delay after they are
added. One store is created per active session and injected into the
pollers and the booking actions.
"""

import asyncio
import itertools
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, List, Optional

from servicefinder_sync.config import DEFAULT_NOTIFICATION_EXPIRY
from servicefinder_sync.models import Notification, NotificationDraft, NotificationType

logger = logging.getLogger(__name__)

AUTO_EXPIRE_TYPES: FrozenSet[NotificationType] = frozenset(
    [NotificationType.BOOKING_CONFIRMATION, NotificationType.PROVIDER_RESPONSE]
)

Listener = Callable[[Notification], None]


class NotificationStore:
    """
    Ordered notification list with read state and auto-expiry.

    Expiry is scheduled on the running event loop when there is one, and
    also enforced on every read against `clock`, so a store used outside
    a loop still drops expired entries.

    Attributes:
        auto_expire_seconds: Lifetime of AUTO_EXPIRE_TYPES notifications
    """

    def __init__(
        self,
        auto_expire_seconds: float = DEFAULT_NOTIFICATION_EXPIRY,
        auto_expire_types: FrozenSet[NotificationType] = AUTO_EXPIRE_TYPES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.auto_expire_seconds = auto_expire_seconds
        self._auto_expire_types = auto_expire_types
        self._clock = clock
        self._notifications: List[Notification] = []
        self._deadlines: Dict[str, float] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._listeners: List[Listener] = []
        self._sequence = itertools.count(1)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @property
    def notifications(self) -> List[Notification]:
        """Current notifications, newest first."""
        self._purge_expired()
        return list(self._notifications)

    @property
    def unread_count(self) -> int:
        """Number of notifications not yet marked as read."""
        return sum(1 for n in self.notifications if not n.is_read)

    def get(self, notification_id: str) -> Optional[Notification]:
        for notification in self.notifications:
            if notification.id == notification_id:
                return notification
        return None

    def __len__(self) -> int:
        return len(self.notifications)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _next_id(self) -> str:
        return f"ntf_{int(time.time() * 1000)}_{next(self._sequence)}"

    def add(self, draft: NotificationDraft) -> Notification:
        """
        Add a notification.

        Assigns the id and timestamp, prepends it and, for transient types,
        schedules its removal.

        Args:
            draft: Notification content

        Returns:
            The stored notification
        """
        notification = Notification(
            **draft.model_dump(),
            id=self._next_id(),
            is_read=False,
            created_at=datetime.now(timezone.utc),
        )
        self._notifications.insert(0, notification)
        logger.debug("Added notification %s (%s)", notification.id, notification.type.value)

        if notification.type in self._auto_expire_types:
            self._schedule_expiry(notification.id)

        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}", exc_info=True)

        return notification

    def mark_as_read(self, notification_id: str) -> None:
        """Mark one notification as read. Unknown ids are ignored."""
        self._notifications = [
            n.model_copy(update={"is_read": True}) if n.id == notification_id else n
            for n in self._notifications
        ]

    def mark_all_as_read(self) -> None:
        """Mark every notification as read."""
        self._notifications = [
            n if n.is_read else n.model_copy(update={"is_read": True})
            for n in self._notifications
        ]

    def remove(self, notification_id: str) -> None:
        """Remove one notification. Unknown ids are ignored."""
        self._notifications = [n for n in self._notifications if n.id != notification_id]
        self._cancel_expiry(notification_id)

    def clear_all(self) -> None:
        """Remove every notification."""
        self._notifications = []
        for notification_id in list(self._deadlines):
            self._cancel_expiry(notification_id)

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Call `listener` with every notification added from now on.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -------------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------------

    def _schedule_expiry(self, notification_id: str) -> None:
        self._deadlines[notification_id] = self._clock() + self.auto_expire_seconds
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timers[notification_id] = loop.call_later(
            self.auto_expire_seconds, self._expire, notification_id
        )

    def _expire(self, notification_id: str) -> None:
        self._timers.pop(notification_id, None)
        if notification_id in self._deadlines:
            logger.debug("Notification %s expired", notification_id)
            self.remove(notification_id)

    def _cancel_expiry(self, notification_id: str) -> None:
        self._deadlines.pop(notification_id, None)
        timer = self._timers.pop(notification_id, None)
        if timer is not None:
            timer.cancel()

    def _purge_expired(self) -> None:
        if not self._deadlines:
            return
        now = self._clock()
        for notification_id, deadline in list(self._deadlines.items()):
            if deadline <= now:
                self.remove(notification_id)
