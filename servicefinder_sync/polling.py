"""
Snapshot polling for the signed-in session.

Implements the per-category polling loop that:
- Seeds de-duplication state from the first snapshot after start
- Re-fetches its collection at a fixed interval
- Turns differences into notifications and persists its cursor
- Swallows fetch failures and retries on the next tick

and the scheduler that starts and stops the pollers matching the role
of the active session.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from servicefinder_sync.api_client import ApiError
from servicefinder_sync.config import (
    DEFAULT_BOOKING_POLL_INTERVAL,
    DEFAULT_CANCELLED_BY,
    DEFAULT_RATING_POLL_INTERVAL,
)
from servicefinder_sync.dedup_store import DedupStateStore
from servicefinder_sync.models import BookingStatus, Page, PollCategory, Role, Session
from servicefinder_sync.notification_store import NotificationStore
from servicefinder_sync.synthesizer import CategoryPolicy, policy_for, synthesize


logger = logging.getLogger("servicefinder.sync.polling")

MAX_QUIET_FAILURES = 5  # consecutive failures logged as warnings before errors
STOP_TIMEOUT = 5.0  # seconds to wait for in-flight ticks on close

Fetcher = Callable[[], Awaitable[Page]]


# ============================================================================
# CategoryPoller
# ============================================================================


class CategoryPoller:
    """
    Polling loop of one {user, category} pair.

    Ticks run back to back: the interval wait starts only after a tick has
    finished, so a slow fetch never overlaps the next tick.

    Attributes:
        category: Poll category this loop serves
        user_id: Owner of the de-duplication state
        interval: Seconds between ticks
    """

    def __init__(
        self,
        category: PollCategory,
        user_id: int,
        fetcher: Fetcher,
        dedup_store: DedupStateStore,
        notifications: NotificationStore,
        policy: CategoryPolicy,
        interval: float,
    ):
        """
        Initialize the poller.

        Args:
            category: Poll category this loop serves
            user_id: Owner of the de-duplication state
            fetcher: Coroutine function returning the category's snapshot
            dedup_store: Persisted de-duplication state
            notifications: Store receiving synthesized notifications
            policy: Detections to run on each snapshot
            interval: Seconds between ticks
        """
        self.category = category
        self.user_id = user_id
        self.interval = interval
        self._fetcher = fetcher
        self._dedup_store = dedup_store
        self._notifications = notifications
        self._policy = policy
        self._shutdown_event = asyncio.Event()
        self._disposed = False
        self._seeded = False
        self._consecutive_failures = 0
        self._task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the loop as a task on the running event loop."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(
            self.run(), name=f"poller:{self.category.value}:{self.user_id}"
        )

    def stop(self) -> None:
        """
        Stop polling.

        A fetch already in flight is allowed to finish, but its result is
        discarded.
        """
        if not self._disposed:
            logger.debug(f"Stopping {self.category.value} poller for user {self.user_id}")
        self._disposed = True
        self._shutdown_event.set()

    async def wait_stopped(self) -> None:
        """Wait for the loop task to exit."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    @property
    def is_running(self) -> bool:
        """Check if the loop has been started and not stopped."""
        return self._task is not None and not self._disposed and not self._task.done()

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Run ticks until stopped."""
        logger.info(
            f"Starting {self.category.value} poller for user {self.user_id} "
            f"(interval: {self.interval}s)"
        )
        self._dedup_store.load(self.user_id, self.category)

        try:
            while not self._disposed:
                if await self.poll_once(is_first_run=not self._seeded):
                    self._seeded = True
                await self._wait_for_next_poll()
        except asyncio.CancelledError:
            logger.info(f"{self.category.value} poller cancelled")
            raise

        logger.info(f"{self.category.value} poller stopped")

    async def poll_once(self, is_first_run: bool = False) -> bool:
        """
        Run one tick: fetch, synthesize, notify, persist.

        Args:
            is_first_run: Seed the state from this snapshot without notifying

        Returns:
            True if the snapshot was applied, False if the tick was aborted
        """
        try:
            snapshot = await self._fetcher()
        except ApiError as e:
            self._record_failure(e)
            return False
        except Exception as e:
            self._consecutive_failures += 1
            logger.error(
                f"Unexpected error fetching {self.category.value} snapshot: {e}",
                exc_info=True,
            )
            return False

        if self._disposed:
            logger.debug(f"Discarding {self.category.value} snapshot: poller stopped")
            return False

        previous_state = self._dedup_store.current(self.user_id, self.category)
        result = synthesize(previous_state, snapshot, is_first_run, self._policy)

        for event in result.events:
            self._notifications.add(event)
        self._dedup_store.save(self.user_id, result.next_state, self.category)

        if self._consecutive_failures:
            logger.info(f"{self.category.value} polling recovered")
        self._consecutive_failures = 0

        if is_first_run:
            logger.debug(f"Seeded {self.category.value} state from first snapshot")
        elif result.events:
            logger.info(f"{self.category.value}: {len(result.events)} new notification(s)")
        return True

    def _record_failure(self, error: ApiError) -> None:
        self._consecutive_failures += 1
        message = (
            f"Failed to fetch {self.category.value} snapshot: {error} "
            f"(consecutive failures: {self._consecutive_failures})"
        )
        if self._consecutive_failures >= MAX_QUIET_FAILURES:
            logger.error(message)
        else:
            logger.warning(message)

    async def _wait_for_next_poll(self) -> None:
        """Wait for the next poll interval or a stop request."""
        try:
            await asyncio.wait_for(
                self._shutdown_event.wait(),
                timeout=self.interval,
            )
        except asyncio.TimeoutError:
            pass


# ============================================================================
# PollScheduler
# ============================================================================


@dataclass(frozen=True)
class PollerSpec:
    """Static description of a poller: who it serves and how often."""

    category: PollCategory
    role: Role
    uses_rating_interval: bool = False


POLLER_SPECS: List[PollerSpec] = [
    PollerSpec(PollCategory.PROVIDER_NEW_BOOKINGS, Role.SERVICE_PROVIDER),
    PollerSpec(PollCategory.PROVIDER_STATUS_CHANGES, Role.SERVICE_PROVIDER),
    PollerSpec(PollCategory.PROVIDER_NEW_RATINGS, Role.SERVICE_PROVIDER, uses_rating_interval=True),
    PollerSpec(PollCategory.CUSTOMER_STATUS_CHANGES, Role.CUSTOMER),
]


class PollScheduler:
    """
    Runs the pollers matching the active session's role.

    Provider sessions get the new-bookings, status-changes and new-ratings
    pollers; customer sessions get the customer status-changes poller;
    other roles get none.
    """

    def __init__(
        self,
        api_client,
        dedup_store: DedupStateStore,
        notifications: NotificationStore,
        booking_interval: float = DEFAULT_BOOKING_POLL_INTERVAL,
        rating_interval: float = DEFAULT_RATING_POLL_INTERVAL,
        default_cancelled_by: str = DEFAULT_CANCELLED_BY,
    ):
        """
        Initialize the scheduler.

        Args:
            api_client: Snapshot source (MarketplaceApiClient or compatible)
            dedup_store: Persisted de-duplication state
            notifications: Store receiving synthesized notifications
            booking_interval: Seconds between booking polls
            rating_interval: Seconds between rating polls
            default_cancelled_by: Attribution of cancellations without a
                cancelledBy field
        """
        self._api_client = api_client
        self._dedup_store = dedup_store
        self._notifications = notifications
        self._booking_interval = booking_interval
        self._rating_interval = rating_interval
        self._default_cancelled_by = default_cancelled_by
        self._session: Optional[Session] = None
        self._pollers: Dict[PollCategory, CategoryPoller] = {}
        self._stopping: List[CategoryPoller] = []

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def pollers(self) -> Dict[PollCategory, CategoryPoller]:
        return dict(self._pollers)

    @property
    def active_categories(self) -> List[PollCategory]:
        return [c for c, p in self._pollers.items() if not p.is_disposed]

    def _fetcher_for(self, category: PollCategory) -> Fetcher:
        if category == PollCategory.PROVIDER_NEW_BOOKINGS:
            return lambda: self._api_client.fetch_provider_bookings(status=BookingStatus.PENDING)
        if category == PollCategory.PROVIDER_STATUS_CHANGES:
            return lambda: self._api_client.fetch_provider_bookings()
        if category == PollCategory.PROVIDER_NEW_RATINGS:
            return lambda: self._api_client.fetch_provider_ratings()
        return lambda: self._api_client.fetch_customer_bookings()

    def _build_poller(self, spec: PollerSpec, session: Session) -> CategoryPoller:
        interval = self._rating_interval if spec.uses_rating_interval else self._booking_interval
        return CategoryPoller(
            category=spec.category,
            user_id=session.user_id,
            fetcher=self._fetcher_for(spec.category),
            dedup_store=self._dedup_store,
            notifications=self._notifications,
            policy=policy_for(spec.category, self._default_cancelled_by),
            interval=interval,
        )

    def activate(self, session: Session) -> None:
        """
        Make `session` the active session.

        Pollers of a previous session are stopped. Activating the session
        that is already active is a no-op.
        """
        current = self._session
        if (
            current is not None
            and current.user_id == session.user_id
            and current.role == session.role
            and self.active_categories
        ):
            return

        self.deactivate()
        self._session = session

        for spec in POLLER_SPECS:
            if spec.role != session.role:
                continue
            poller = self._build_poller(spec, session)
            self._pollers[spec.category] = poller
            poller.start()

        logger.info(
            f"Activated session for user {session.user_id} ({session.role.value}): "
            f"{len(self._pollers)} poller(s)"
        )

    def deactivate(self) -> None:
        """Stop every poller (logout or role change)."""
        self._stopping = [p for p in self._stopping if p._task is not None and not p._task.done()]
        for poller in self._pollers.values():
            poller.stop()
            self._stopping.append(poller)
        self._pollers = {}
        if self._session is not None:
            logger.info(f"Deactivated session for user {self._session.user_id}")
        self._session = None

    async def aclose(self, timeout: float = STOP_TIMEOUT) -> None:
        """
        Stop every poller and wait for their loops to exit.

        Loops still blocked in a fetch after `timeout` are cancelled.
        """
        self.deactivate()
        stopping, self._stopping = self._stopping, []
        tasks = [p._task for p in stopping if p._task is not None and not p._task.done()]
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
