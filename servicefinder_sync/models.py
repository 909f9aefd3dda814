"""
Pydantic models for marketplace entities and notifications.

Wire entities (bookings, ratings, availability slots, pages) mirror the
camelCase JSON of the marketplace REST API and accept snake_case names
as well. Only the fields the client acts on are required; everything
else the server sends is kept as-is.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# ============================================================================
# Enumerations
# ============================================================================


class Role(str, Enum):
    """Role of the signed-in user."""

    CUSTOMER = "CUSTOMER"
    SERVICE_PROVIDER = "SERVICE_PROVIDER"
    ADMIN = "ADMIN"


class BookingStatus(str, Enum):
    """Booking lifecycle status."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class NotificationType(str, Enum):
    """Kinds of user-facing notifications."""

    # Service providers
    NEW_BOOKING_REQUEST = "NEW_BOOKING_REQUEST"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    NEW_CUSTOMER_REVIEW = "NEW_CUSTOMER_REVIEW"
    SERVICE_CREATED = "SERVICE_CREATED"
    SERVICE_UPDATED = "SERVICE_UPDATED"
    # Customers / shared
    BOOKING_CONFIRMATION = "BOOKING_CONFIRMATION"
    BOOKING_STARTED = "BOOKING_STARTED"
    BOOKING_COMPLETED = "BOOKING_COMPLETED"
    PROVIDER_RESPONSE = "PROVIDER_RESPONSE"
    SERVICE_COMPLETION_REQUEST = "SERVICE_COMPLETION_REQUEST"
    PROFILE_UPDATED = "PROFILE_UPDATED"


class PollCategory(str, Enum):
    """Independent polling streams, each with its own persisted cursor."""

    PROVIDER_NEW_BOOKINGS = "provider-new-bookings"
    PROVIDER_STATUS_CHANGES = "provider-status-changes"
    PROVIDER_NEW_RATINGS = "provider-new-ratings"
    CUSTOMER_STATUS_CHANGES = "customer-status-changes"


NOTIFICATION_DEFAULT_TITLES: Dict[NotificationType, str] = {
    NotificationType.NEW_BOOKING_REQUEST: "New Booking Request",
    NotificationType.BOOKING_CONFIRMED: "Booking Confirmed",
    NotificationType.BOOKING_CANCELLED: "Booking Cancelled",
    NotificationType.NEW_CUSTOMER_REVIEW: "New Customer Review",
    NotificationType.BOOKING_CONFIRMATION: "Booking Confirmed",
    NotificationType.BOOKING_STARTED: "Service Started",
    NotificationType.BOOKING_COMPLETED: "Service Completed",
    NotificationType.PROVIDER_RESPONSE: "Provider Response",
    NotificationType.SERVICE_COMPLETION_REQUEST: "Service Completion",
    NotificationType.SERVICE_CREATED: "Service Created",
    NotificationType.SERVICE_UPDATED: "Service Updated",
    NotificationType.PROFILE_UPDATED: "Profile Updated",
}


# ============================================================================
# Wire Entities
# ============================================================================


class WireModel(BaseModel):
    """Base for API payloads: camelCase aliases, unknown fields kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class CustomerRef(WireModel):
    id: Optional[int] = None
    name: Optional[str] = None
    full_name: Optional[str] = None


class ProviderRef(WireModel):
    id: Optional[int] = None
    business_name: Optional[str] = None
    contact_name: Optional[str] = None


class ServiceRef(WireModel):
    id: Optional[int] = None
    name: Optional[str] = None


class RatingBookingRef(WireModel):
    id: Optional[int] = None
    service_name: Optional[str] = None


class Booking(WireModel):
    """A booking as listed by the bookings endpoints."""

    id: int
    status: BookingStatus
    notes: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    scheduled_date_time: Optional[str] = None
    customer: Optional[CustomerRef] = None
    service_provider: Optional[ProviderRef] = None
    service: Optional[ServiceRef] = None

    @property
    def customer_name(self) -> str:
        return (self.customer and self.customer.name) or "Customer"

    @property
    def provider_name(self) -> str:
        return (self.service_provider and self.service_provider.business_name) or "Provider"

    def service_name(self, default: str) -> str:
        return (self.service and self.service.name) or default


class Rating(WireModel):
    """A customer review of a provider."""

    id: int
    rating: int
    review: Optional[str] = None
    customer: Optional[CustomerRef] = None
    service_provider: Optional[ProviderRef] = None
    booking: Optional[RatingBookingRef] = None

    @property
    def customer_name(self) -> str:
        if self.customer:
            return self.customer.full_name or self.customer.name or "Customer"
        return "Customer"

    @property
    def service_name(self) -> str:
        if self.booking and self.booking.service_name:
            return self.booking.service_name
        if self.service_provider:
            return (
                self.service_provider.business_name
                or self.service_provider.contact_name
                or "your service"
            )
        return "your service"


class AvailabilitySlot(WireModel):
    """A bookable time slot published by a provider."""

    id: int
    is_booked: bool = False
    provider_id: Optional[int] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class Page(WireModel):
    """
    One page of a paginated collection.

    ``content`` keeps the raw entities, whatever their shape, so that each
    entity can be validated on its own and a malformed one skipped. A
    missing or null ``content`` is an empty page.
    """

    content: List[Any] = Field(default_factory=list)
    total_elements: Optional[int] = None
    total_pages: Optional[int] = None
    number: Optional[int] = None
    size: Optional[int] = None

    @field_validator("content", mode="before")
    @classmethod
    def null_content_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class BookingCreateRequest(WireModel):
    """Payload of POST /bookings."""

    service_id: int
    scheduled_date_time: str
    customer_address: str
    notes: Optional[str] = None
    customer_latitude: Optional[float] = None
    customer_longitude: Optional[float] = None
    availability_id: Optional[int] = None


# ============================================================================
# Session
# ============================================================================


class Session(BaseModel):
    """The signed-in user the pollers run for."""

    user_id: int
    role: Role
    display_name: Optional[str] = None

    @property
    def is_provider(self) -> bool:
        return self.role == Role.SERVICE_PROVIDER

    @property
    def is_customer(self) -> bool:
        return self.role == Role.CUSTOMER


# ============================================================================
# Notifications
# ============================================================================


class NotificationDraft(BaseModel):
    """A notification before the store assigns its id and timestamp."""

    type: NotificationType
    title: str
    message: str
    related_id: Optional[str] = None
    action_url: Optional[str] = None


class Notification(NotificationDraft):
    """A notification held by the NotificationStore."""

    id: str
    is_read: bool = False
    created_at: datetime


__all__ = [
    "Role",
    "BookingStatus",
    "NotificationType",
    "PollCategory",
    "NOTIFICATION_DEFAULT_TITLES",
    "WireModel",
    "CustomerRef",
    "ProviderRef",
    "ServiceRef",
    "RatingBookingRef",
    "Booking",
    "Rating",
    "AvailabilitySlot",
    "Page",
    "BookingCreateRequest",
    "Session",
    "NotificationDraft",
    "Notification",
]
