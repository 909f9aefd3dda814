"""
Marketplace API client.

Provides the HTTP client the pollers fetch snapshots with and the
booking mutations that local user actions trigger. Handles
authentication and maps transport and status errors to a small
exception hierarchy.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from servicefinder_sync import __version__
from servicefinder_sync.config import DEFAULT_PAGE_SIZE
from servicefinder_sync.models import (
    AvailabilitySlot,
    BookingCreateRequest,
    BookingStatus,
    Page,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

API_BASE_PATH = "/api"
DEFAULT_TIMEOUT = 30.0  # seconds
USER_AGENT = f"ServiceFinder-Sync/{__version__}"


# ============================================================================
# Exceptions
# ============================================================================


class ApiError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectionError(ApiError):
    """Raised when connection to server fails."""

    pass


class AuthenticationError(ApiError):
    """Raised when the API token is missing, invalid or expired."""

    pass


class BookingConflictError(ApiError):
    """Raised when the requested slot is no longer available."""

    pass


# ============================================================================
# MarketplaceApiClient Class
# ============================================================================


class MarketplaceApiClient:
    """
    HTTP client for the marketplace REST API.

    Attributes:
        server_url: Base URL of the marketplace server
        page_size: Page size used for snapshot fetches
    """

    def __init__(
        self,
        server_url: str,
        api_token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        """
        Initialize the API client.

        Args:
            server_url: Base URL of the marketplace server
            api_token: Bearer token of the signed-in user
            timeout: Request timeout in seconds
            page_size: Page size used for snapshot fetches

        Raises:
            ValueError: If server_url is empty
        """
        if not server_url:
            raise ValueError("server_url is required")

        self._server_url = server_url.rstrip("/")
        self.page_size = page_size

        headers = {
            "User-Agent": USER_AGENT,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"

        self._client = httpx.AsyncClient(
            base_url=self._server_url,
            headers=headers,
            timeout=timeout,
        )

    @property
    def server_url(self) -> str:
        """Get the server URL."""
        return self._server_url

    # -------------------------------------------------------------------------
    # Transport helpers
    # -------------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send a request, mapping transport failures to ConnectionError."""
        try:
            return await self._client.request(
                method,
                f"{API_BASE_PATH}{path}",
                params=params,
                json=json,
            )
        except httpx.ConnectError as e:
            raise ConnectionError(f"Failed to connect to server: {e}")
        except httpx.TimeoutException as e:
            raise ConnectionError(f"Connection timed out: {e}")

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return ""
        if isinstance(body, dict):
            return str(body.get("message") or body.get("detail") or "")
        return ""

    def _check(self, response: httpx.Response, action: str) -> None:
        """
        Raise the exception matching a non-2xx response.

        Raises:
            AuthenticationError: On 401
            ApiError: On any other error status
        """
        if response.status_code < 300:
            return
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired API token", status_code=401)
        detail = self._detail(response)
        message = f"{action} failed with status {response.status_code}"
        if detail:
            message = f"{message}: {detail}"
        raise ApiError(message, status_code=response.status_code)

    def _parse_page(self, response: httpx.Response, action: str) -> Page:
        self._check(response, action)
        try:
            return Page.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ApiError(f"{action} returned an unreadable page: {e}")

    def _page_params(self, page: int, size: Optional[int]) -> Dict[str, Any]:
        return {"page": page, "size": size or self.page_size}

    # -------------------------------------------------------------------------
    # Snapshot fetchers
    # -------------------------------------------------------------------------

    async def fetch_provider_bookings(
        self,
        status: Optional[BookingStatus] = None,
        page: int = 0,
        size: Optional[int] = None,
    ) -> Page:
        """
        Fetch one page of the signed-in provider's bookings.

        Args:
            status: Only bookings in this status (all statuses if None)
            page: Zero-based page number
            size: Page size (client default if None)

        Returns:
            Page of raw booking dicts

        Raises:
            AuthenticationError: If the token is invalid
            ConnectionError: If connection to server fails
            ApiError: On any other failure
        """
        params = self._page_params(page, size)
        if status is not None:
            params["status"] = BookingStatus(status).value
        response = await self._send("GET", "/bookings/provider-bookings", params=params)
        return self._parse_page(response, "Fetch provider bookings")

    async def fetch_customer_bookings(
        self,
        page: int = 0,
        size: Optional[int] = None,
    ) -> Page:
        """
        Fetch one page of the signed-in customer's bookings.

        Returns:
            Page of raw booking dicts
        """
        response = await self._send(
            "GET", "/bookings/my-bookings", params=self._page_params(page, size)
        )
        return self._parse_page(response, "Fetch customer bookings")

    async def fetch_provider_ratings(
        self,
        page: int = 0,
        size: Optional[int] = None,
    ) -> Page:
        """
        Fetch one page of ratings left for the signed-in provider.

        Returns:
            Page of raw rating dicts
        """
        response = await self._send(
            "GET", "/ratings/provider-ratings", params=self._page_params(page, size)
        )
        return self._parse_page(response, "Fetch provider ratings")

    async def fetch_provider_availability(
        self,
        provider_id: int,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[AvailabilitySlot]:
        """
        Fetch the availability slots a provider has published.

        Slots that fail validation are dropped.

        Returns:
            List of availability slots
        """
        params: Dict[str, Any] = {}
        if start_date:
            params["startDate"] = start_date
        if end_date:
            params["endDate"] = end_date

        response = await self._send(
            "GET", f"/availability/provider/{provider_id}", params=params or None
        )
        self._check(response, "Fetch provider availability")

        payload = response.json()
        if isinstance(payload, dict):
            payload = payload.get("content")

        slots: List[AvailabilitySlot] = []
        for raw in payload or []:
            try:
                slots.append(AvailabilitySlot.model_validate(raw))
            except ValidationError as e:
                logger.debug("Skipping malformed availability slot: %s", e)
        return slots

    # -------------------------------------------------------------------------
    # Booking mutations
    # -------------------------------------------------------------------------

    async def create_booking(self, request: BookingCreateRequest) -> Dict[str, Any]:
        """
        Create a booking.

        Args:
            request: Booking details

        Returns:
            The created booking

        Raises:
            BookingConflictError: If the slot is no longer available (409)
            AuthenticationError: If the token is invalid
            ApiError: On any other failure
        """
        response = await self._send(
            "POST",
            "/bookings",
            json=request.model_dump(by_alias=True, exclude_none=True),
        )
        if response.status_code == 409:
            raise BookingConflictError(
                "This time slot is no longer available", status_code=409
            )
        self._check(response, "Create booking")
        return response.json()

    async def _transition(self, booking_id: int, action: str, label: str) -> Dict[str, Any]:
        response = await self._send("POST", f"/bookings/{booking_id}/{action}")
        self._check(response, label)
        return response.json()

    async def confirm_booking(self, booking_id: int) -> Dict[str, Any]:
        """Confirm a pending booking (provider)."""
        return await self._transition(booking_id, "confirm", "Confirm booking")

    async def start_service(self, booking_id: int) -> Dict[str, Any]:
        """Mark a confirmed booking as in progress (provider)."""
        return await self._transition(booking_id, "start", "Start service")

    async def complete_service(self, booking_id: int) -> Dict[str, Any]:
        """Mark a booking as completed (provider)."""
        return await self._transition(booking_id, "complete", "Complete service")

    async def cancel_booking(self, booking_id: int, reason: str) -> Dict[str, Any]:
        """
        Cancel a booking.

        Args:
            booking_id: Booking to cancel
            reason: Free-text cancellation reason

        Returns:
            The cancelled booking
        """
        response = await self._send(
            "POST", f"/bookings/{booking_id}/cancel", params={"reason": reason}
        )
        self._check(response, "Cancel booking")
        return response.json()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "MarketplaceApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
