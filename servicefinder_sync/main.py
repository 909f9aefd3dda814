"""
Session runner.

Wires the per-session services (API client, de-duplication state,
notification store, query cache, pollers) together and runs the pollers
until SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal
import sys
from dataclasses import dataclass
from typing import Callable, Optional

from servicefinder_sync import __version__
from servicefinder_sync.api_client import MarketplaceApiClient
from servicefinder_sync.booking_actions import BookingActions
from servicefinder_sync.cache import QueryCache
from servicefinder_sync.cache.sync_bridge import CacheSyncBridge
from servicefinder_sync.config import ClientConfig, ConfigValidationError, get_state_dir
from servicefinder_sync.dedup_store import DedupStateStore
from servicefinder_sync.models import Notification, Role, Session
from servicefinder_sync.notification_helpers import NotificationHelpers
from servicefinder_sync.notification_store import NotificationStore
from servicefinder_sync.polling import PollScheduler
from servicefinder_sync.storage import JsonFileStorage, KeyValueStorage


# ============================================================================
# Logging Setup
# ============================================================================


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Setup logging for the sync client.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured logger
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger("servicefinder.sync")


# ============================================================================
# Session Context
# ============================================================================


@dataclass
class SessionContext:
    """Services scoped to one signed-in session."""

    session: Session
    api_client: MarketplaceApiClient
    dedup_store: DedupStateStore
    notifications: NotificationStore
    cache: QueryCache
    bridge: CacheSyncBridge
    helpers: NotificationHelpers
    actions: BookingActions
    scheduler: PollScheduler

    async def close(self) -> None:
        await self.scheduler.aclose()
        await self.api_client.close()


def build_session_context(
    config: ClientConfig,
    session: Session,
    storage: Optional[KeyValueStorage] = None,
    api_client: Optional[MarketplaceApiClient] = None,
) -> SessionContext:
    """
    Create the services of a session from the client configuration.

    Args:
        config: Client configuration
        session: Signed-in user
        storage: Backing store for de-duplication state (defaults to
            JSON files in the platform data directory)
        api_client: API client to use instead of one built from config
    """
    if api_client is None:
        api_client = MarketplaceApiClient(
            server_url=config.server_url,
            api_token=config.api_token,
            page_size=config.page_size,
        )
    if storage is None:
        storage = JsonFileStorage(get_state_dir())

    dedup_store = DedupStateStore(storage)
    notifications = NotificationStore(auto_expire_seconds=config.notification_expiry_seconds)
    cache = QueryCache()
    bridge = CacheSyncBridge(cache)
    helpers = NotificationHelpers(notifications, session)

    return SessionContext(
        session=session,
        api_client=api_client,
        dedup_store=dedup_store,
        notifications=notifications,
        cache=cache,
        bridge=bridge,
        helpers=helpers,
        actions=BookingActions(api_client, bridge, dedup_store, helpers, session),
        scheduler=PollScheduler(
            api_client,
            dedup_store,
            notifications,
            booking_interval=config.booking_poll_interval_seconds,
            rating_interval=config.rating_poll_interval_seconds,
            default_cancelled_by=config.default_cancelled_by,
        ),
    )


# ============================================================================
# Session Runner
# ============================================================================


class SessionRunner:
    """
    Runs the pollers of one session until shutdown.

    Attributes:
        config: Client configuration
        session: Signed-in user
        logger: Logger instance
    """

    def __init__(
        self,
        config: ClientConfig,
        session: Session,
        on_notification: Optional[Callable[[Notification], None]] = None,
        storage: Optional[KeyValueStorage] = None,
    ):
        """
        Initialize the session runner.

        Args:
            config: Client configuration
            session: Signed-in user
            on_notification: Called with every notification added
            storage: Backing store for de-duplication state
        """
        self.config = config
        self.session = session
        self.logger = setup_logging(config.log_level)
        self._on_notification = on_notification
        self._storage = storage
        self._shutdown_event = asyncio.Event()
        self._context: Optional[SessionContext] = None

    @property
    def context(self) -> Optional[SessionContext]:
        return self._context

    async def run(self) -> int:
        """
        Run the pollers until shutdown is requested.

        Returns:
            Exit code (0 for success, non-zero for error)
        """
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)

        if not self.config.is_configured:
            self.logger.error("Client is not configured with a server URL.")
            return 1

        try:
            self.config.validate()
        except ConfigValidationError as e:
            self.logger.error(f"Invalid configuration: {e}")
            return 1

        if self.session.role == Role.ADMIN:
            self.logger.warning("Admin sessions have no pollers; nothing to watch")

        self.logger.info(f"Starting ServiceFinder Sync v{__version__}")
        self.logger.info(f"Server: {self.config.server_url}")
        self.logger.info(f"User: {self.session.user_id} ({self.session.role.value})")

        self._context = build_session_context(self.config, self.session, storage=self._storage)
        unsubscribe = None
        if self._on_notification is not None:
            unsubscribe = self._context.notifications.subscribe(self._on_notification)

        try:
            self._context.scheduler.activate(self.session)
            await self._shutdown_event.wait()
            self.logger.info("Shutdown requested")
            return 0
        except asyncio.CancelledError:
            self.logger.info("Session cancelled")
            return 0
        finally:
            if unsubscribe is not None:
                unsubscribe()
            await self._context.close()
            self.logger.info("Session stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the session."""
        self._shutdown_event.set()


# ============================================================================
# Main Entry Point
# ============================================================================


def run_session(
    session: Session,
    config: Optional[ClientConfig] = None,
    on_notification: Optional[Callable[[Notification], None]] = None,
) -> int:
    """
    Run the pollers of a session until SIGINT/SIGTERM.

    Returns:
        Exit code
    """
    config = config or ClientConfig()
    runner = SessionRunner(config, session, on_notification=on_notification)
    return asyncio.run(runner.run())


if __name__ == "__main__":
    config = ClientConfig()
    if not config.has_session:
        print("No session configured (user_id and role are required)", file=sys.stderr)
        sys.exit(1)
    sys.exit(run_session(Session(user_id=config.user_id, role=Role(config.role)), config))
