"""
Pytest configuration and fixtures for ServiceFinder Sync tests.

This module provides shared fixtures for testing the sync client,
including temporary configuration files, in-memory stores, sessions and
sample marketplace payloads.
"""

import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Generator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml

from servicefinder_sync.dedup_store import DedupStateStore
from servicefinder_sync.models import Page, Role, Session
from servicefinder_sync.notification_store import NotificationStore
from servicefinder_sync.storage import MemoryStorage


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def temp_config_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for client configuration files.

    Yields:
        Path to temporary configuration directory
    """
    with tempfile.TemporaryDirectory(prefix="servicefinder_sync_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def client_config_dict() -> dict:
    """
    Create a sample client configuration.

    Returns:
        Dictionary with client configuration
    """
    return {
        "server_url": "http://localhost:8080",
        "api_token": "tok_test_1234567890abcdef",
        "user_id": 42,
        "role": "SERVICE_PROVIDER",
        "booking_poll_interval_seconds": 10,
        "rating_poll_interval_seconds": 15,
        "log_level": "DEBUG",
    }


@pytest.fixture
def client_config_file(temp_config_dir: Path, client_config_dict: dict) -> Path:
    """
    Create a temporary client configuration file.

    Returns:
        Path to the configuration file
    """
    config_path = temp_config_dir / "client-config.yaml"
    with open(config_path, "w") as f:
        yaml.dump(client_config_dict, f)
    return config_path


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def clean_environment(monkeypatch) -> None:
    """
    Clean environment variables that might affect tests.

    Removes ServiceFinder-related environment variables to ensure
    test isolation.
    """
    env_vars_to_remove = [
        "SERVICEFINDER_SERVER_URL",
        "SERVICEFINDER_API_TOKEN",
        "SERVICEFINDER_LOG_LEVEL",
        "SERVICEFINDER_CONFIG_PATH",
        "SERVICEFINDER_DATA_DIR",
    ]
    for var in env_vars_to_remove:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def mock_server_url() -> str:
    """Get the mock server URL for testing."""
    return "http://localhost:8080"


@pytest.fixture
def mock_api_token() -> str:
    """Get a mock bearer token for testing."""
    return "tok_test_1234567890abcdef"


# ============================================================================
# Session and Store Fixtures
# ============================================================================


@pytest.fixture
def provider_session() -> Session:
    return Session(user_id=7, role=Role.SERVICE_PROVIDER, display_name="Sparkle Cleaning")


@pytest.fixture
def customer_session() -> Session:
    return Session(user_id=42, role=Role.CUSTOMER, display_name="Ada Lovelace")


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def dedup_store(memory_storage: MemoryStorage) -> DedupStateStore:
    """Create a de-duplication store over in-memory storage."""
    return DedupStateStore(memory_storage)


@pytest.fixture
def notification_store() -> NotificationStore:
    return NotificationStore()


# ============================================================================
# Payload Fixtures
# ============================================================================


@pytest.fixture
def make_booking() -> Callable[..., Dict[str, Any]]:
    """
    Get a factory for camelCase booking payloads as the API returns them.

    Returns:
        Function (booking_id, status="PENDING", **overrides) -> dict
    """

    def _make(booking_id: int, status: str = "PENDING", **overrides: Any) -> Dict[str, Any]:
        booking = {
            "id": booking_id,
            "status": status,
            "scheduledDateTime": "2024-06-01T10:00:00",
            "customer": {"id": 42, "name": "Ada Lovelace"},
            "serviceProvider": {"id": 7, "businessName": "Sparkle Cleaning"},
            "service": {"id": 3, "name": "Deep Clean"},
        }
        booking.update(overrides)
        return booking

    return _make


@pytest.fixture
def make_rating() -> Callable[..., Dict[str, Any]]:
    """
    Get a factory for camelCase rating payloads.

    Returns:
        Function (rating_id, stars=5, **overrides) -> dict
    """

    def _make(rating_id: int, stars: int = 5, **overrides: Any) -> Dict[str, Any]:
        rating = {
            "id": rating_id,
            "rating": stars,
            "review": "Great job",
            "customer": {"id": 42, "fullName": "Ada Lovelace"},
            "booking": {"id": 100 + rating_id, "serviceName": "Deep Clean"},
        }
        rating.update(overrides)
        return rating

    return _make


def page_of(*entities: Dict[str, Any], total: Optional[int] = None) -> Page:
    """Wrap entity payloads in a single Page."""
    return Page(
        content=list(entities),
        total_elements=total if total is not None else len(entities),
        total_pages=1,
        number=0,
        size=10,
    )


# ============================================================================
# API Client Fixtures
# ============================================================================


@pytest.fixture
def mock_api_client():
    """Create a mock marketplace API client returning empty pages."""
    client = MagicMock()
    client.fetch_provider_bookings = AsyncMock(return_value=page_of())
    client.fetch_customer_bookings = AsyncMock(return_value=page_of())
    client.fetch_provider_ratings = AsyncMock(return_value=page_of())
    client.fetch_provider_availability = AsyncMock(return_value=[])
    client.create_booking = AsyncMock(return_value={"id": 500, "status": "PENDING"})
    client.cancel_booking = AsyncMock(return_value={"id": 500, "status": "CANCELLED"})
    client.confirm_booking = AsyncMock(return_value={"id": 500, "status": "CONFIRMED"})
    client.start_service = AsyncMock(return_value={"id": 500, "status": "IN_PROGRESS"})
    client.complete_service = AsyncMock(return_value={"id": 500, "status": "COMPLETED"})
    client.close = AsyncMock()
    return client
