"""
Service Finder Sync - background notification and cache client.

This package keeps a marketplace client's local view in step with the
server without a push channel. It polls booking and rating collections,
turns the differences into one-shot notifications, and patches cached
views after local booking mutations.

Key modules:
- main: Session runner and logging setup
- config: Client configuration management
- api_client: HTTP client for the marketplace REST API
- synthesizer: Snapshot diffing into domain events
- dedup_store: Persisted de-duplication cursors
- notification_store: In-memory notification list
- polling: Per-category pollers and the role-aware scheduler
- cache: Query cache and the cache synchronization bridge
- booking_actions: Local booking mutations
"""

import os
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

DISTRIBUTION_NAME = "servicefinder-sync"


def _get_installed_version() -> Optional[str]:
    """Get the version of the installed distribution, if any."""
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return None


def _get_version() -> str:
    """
    Get version with priority: SERVICEFINDER_SYNC_VERSION env var > package metadata > fallback.
    """
    env_version = os.environ.get("SERVICEFINDER_SYNC_VERSION")
    if env_version:
        return env_version

    installed = _get_installed_version()
    if installed:
        return installed

    return "0.0.0+unknown"


__version__ = _get_version()
