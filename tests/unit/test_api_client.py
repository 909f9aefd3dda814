"""
Unit tests for the marketplace API client.

Tests snapshot fetches, booking mutations and error mapping.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from servicefinder_sync.api_client import (
    ApiError,
    AuthenticationError,
    BookingConflictError,
    ConnectionError as SyncConnectionError,
    MarketplaceApiClient,
)
from servicefinder_sync.models import BookingCreateRequest, BookingStatus, Page


def mock_response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    return response


def page_payload(*content):
    return {
        "content": list(content),
        "totalElements": len(content),
        "totalPages": 1,
        "number": 0,
        "size": 10,
    }


class TestMarketplaceApiClient:
    """Tests for MarketplaceApiClient construction."""

    @pytest.fixture
    def api_client(self, mock_server_url, mock_api_token):
        """Create an API client instance for testing."""
        return MarketplaceApiClient(server_url=mock_server_url, api_token=mock_api_token)

    def test_requires_server_url(self):
        with pytest.raises(ValueError):
            MarketplaceApiClient(server_url="")

    def test_strips_trailing_slash(self):
        client = MarketplaceApiClient(server_url="http://localhost:8080/")

        assert client.server_url == "http://localhost:8080"

    def test_bearer_header(self, api_client, mock_api_token):
        assert api_client._client.headers["Authorization"] == f"Bearer {mock_api_token}"
        assert api_client._client.headers["User-Agent"].startswith("ServiceFinder-Sync/")

    def test_no_token_no_header(self, mock_server_url):
        client = MarketplaceApiClient(server_url=mock_server_url)

        assert "Authorization" not in client._client.headers


class TestSnapshotFetches(TestMarketplaceApiClient):
    """Tests for the snapshot fetchers."""

    @pytest.mark.asyncio
    async def test_fetch_pending_provider_bookings(self, api_client):
        payload = page_payload({"id": 1, "status": "PENDING"})

        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(return_value=mock_response(200, payload))

            page = await api_client.fetch_provider_bookings(status=BookingStatus.PENDING)

        assert isinstance(page, Page)
        assert page.content == [{"id": 1, "status": "PENDING"}]
        assert page.total_elements == 1
        mock_client.request.assert_awaited_once_with(
            "GET",
            "/api/bookings/provider-bookings",
            params={"page": 0, "size": 10, "status": "PENDING"},
            json=None,
        )

    @pytest.mark.asyncio
    async def test_fetch_customer_bookings(self, api_client):
        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(return_value=mock_response(200, page_payload()))

            page = await api_client.fetch_customer_bookings(size=25)

        assert page.content == []
        call = mock_client.request.await_args
        assert call.args == ("GET", "/api/bookings/my-bookings")
        assert call.kwargs["params"] == {"page": 0, "size": 25}

    @pytest.mark.asyncio
    async def test_fetch_provider_ratings(self, api_client):
        payload = page_payload({"id": 3, "rating": 5})

        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(return_value=mock_response(200, payload))

            page = await api_client.fetch_provider_ratings()

        assert page.content[0]["rating"] == 5
        assert mock_client.request.await_args.args[1] == "/api/ratings/provider-ratings"

    @pytest.mark.asyncio
    async def test_unreadable_page_raises_api_error(self, api_client):
        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(return_value=mock_response(200, {"content": "nope"}))

            with pytest.raises(ApiError):
                await api_client.fetch_customer_bookings()

    @pytest.mark.asyncio
    async def test_page_with_non_object_entities_is_readable(self, api_client):
        payload = page_payload({"id": 1, "status": "PENDING"}, None, 5)

        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(return_value=mock_response(200, payload))

            page = await api_client.fetch_provider_bookings(status=BookingStatus.PENDING)

        assert page.content == [{"id": 1, "status": "PENDING"}, None, 5]

    @pytest.mark.asyncio
    async def test_fetch_availability_skips_malformed_slots(self, api_client):
        payload = [{"id": 1, "isBooked": True}, {"isBooked": False}, {"id": 3}]

        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(return_value=mock_response(200, payload))

            slots = await api_client.fetch_provider_availability(7, start_date="2024-06-01")

        assert [(s.id, s.is_booked) for s in slots] == [(1, True), (3, False)]
        call = mock_client.request.await_args
        assert call.args[1] == "/api/availability/provider/7"
        assert call.kwargs["params"] == {"startDate": "2024-06-01"}


class TestErrorMapping(TestMarketplaceApiClient):
    """Tests for transport and status error mapping."""

    @pytest.mark.asyncio
    async def test_connect_error(self, api_client):
        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(side_effect=httpx.ConnectError("refused"))

            with pytest.raises(SyncConnectionError) as exc_info:
                await api_client.fetch_customer_bookings()

        assert "Failed to connect" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self, api_client):
        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(side_effect=httpx.ReadTimeout("slow"))

            with pytest.raises(SyncConnectionError):
                await api_client.fetch_provider_ratings()

    @pytest.mark.asyncio
    async def test_unauthorized(self, api_client):
        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(return_value=mock_response(401))

            with pytest.raises(AuthenticationError) as exc_info:
                await api_client.fetch_provider_bookings()

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_server_error_carries_detail(self, api_client):
        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(
                return_value=mock_response(500, {"message": "Database unavailable"})
            )

            with pytest.raises(ApiError) as exc_info:
                await api_client.fetch_provider_bookings()

        assert exc_info.value.status_code == 500
        assert "Database unavailable" in str(exc_info.value)


class TestBookingMutations(TestMarketplaceApiClient):
    """Tests for booking mutations."""

    @pytest.mark.asyncio
    async def test_create_booking_sends_camel_case(self, api_client):
        request = BookingCreateRequest(
            service_id=3,
            scheduled_date_time="2024-06-01T10:00:00",
            customer_address="1 Main St",
            availability_id=12,
        )

        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(return_value=mock_response(201, {"id": 500}))

            result = await api_client.create_booking(request)

        assert result == {"id": 500}
        assert mock_client.request.await_args.kwargs["json"] == {
            "serviceId": 3,
            "scheduledDateTime": "2024-06-01T10:00:00",
            "customerAddress": "1 Main St",
            "availabilityId": 12,
        }

    @pytest.mark.asyncio
    async def test_create_booking_conflict(self, api_client):
        request = BookingCreateRequest(
            service_id=3, scheduled_date_time="2024-06-01T10:00:00", customer_address="x"
        )

        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(return_value=mock_response(409))

            with pytest.raises(BookingConflictError) as exc_info:
                await api_client.create_booking(request)

        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,action",
        [
            ("confirm_booking", "confirm"),
            ("start_service", "start"),
            ("complete_service", "complete"),
        ],
    )
    async def test_transitions(self, api_client, method, action):
        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(return_value=mock_response(200, {"id": 5}))

            await getattr(api_client, method)(5)

        assert mock_client.request.await_args.args == ("POST", f"/api/bookings/5/{action}")

    @pytest.mark.asyncio
    async def test_cancel_sends_reason(self, api_client):
        with patch.object(api_client, "_client") as mock_client:
            mock_client.request = AsyncMock(return_value=mock_response(200, {"id": 5}))

            await api_client.cancel_booking(5, "Changed plans")

        call = mock_client.request.await_args
        assert call.args == ("POST", "/api/bookings/5/cancel")
        assert call.kwargs["params"] == {"reason": "Changed plans"}

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, mock_server_url):
        client = MarketplaceApiClient(server_url=mock_server_url)

        with patch.object(client, "_client") as mock_client:
            mock_client.aclose = AsyncMock()
            async with client:
                pass

        mock_client.aclose.assert_awaited_once()
