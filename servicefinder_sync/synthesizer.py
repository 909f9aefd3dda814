"""
Event synthesis from collection snapshots.

Compares a freshly fetched page of bookings or ratings against the
de-duplication state of a poll category and derives the notifications
the user has not seen yet. The synthesizer never performs I/O and never
mutates the state it is given; it returns the next state instead.

Detections, selected per category by a CategoryPolicy:
- New bookings: ids not yet in seen_booking_ids
- Status transitions: status differs from last_status_by_booking_id
- Provider notes: notes differ from last_notes_by_booking_id
- New ratings: ids not yet in seen_rating_ids

The first snapshot after a poller starts only seeds the state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, ValidationError

from servicefinder_sync.config import DEFAULT_CANCELLED_BY
from servicefinder_sync.dedup_store import DedupState
from servicefinder_sync.models import (
    NOTIFICATION_DEFAULT_TITLES,
    Booking,
    BookingStatus,
    NotificationDraft,
    NotificationType,
    Page,
    PollCategory,
    Rating,
    Role,
)

logger = logging.getLogger(__name__)

NOTES_PREVIEW_LENGTH = 140

PROVIDER_BOOKINGS_URL = "/provider/bookings"
PROVIDER_RATINGS_URL = "/provider/ratings"
CUSTOMER_BOOKINGS_URL = "/customer/bookings"

CUSTOMER_STATUS_EVENTS: Dict[BookingStatus, NotificationType] = {
    BookingStatus.CONFIRMED: NotificationType.BOOKING_CONFIRMATION,
    BookingStatus.IN_PROGRESS: NotificationType.BOOKING_STARTED,
    BookingStatus.COMPLETED: NotificationType.BOOKING_COMPLETED,
    BookingStatus.CANCELLED: NotificationType.BOOKING_CANCELLED,
}

PROVIDER_STATUS_EVENTS: Dict[BookingStatus, NotificationType] = {
    BookingStatus.CANCELLED: NotificationType.BOOKING_CANCELLED,
}


# ============================================================================
# Policy and result
# ============================================================================


@dataclass(frozen=True)
class CategoryPolicy:
    """
    Which detections a poll category runs and how it words them.

    Attributes:
        audience: Role the notifications are written for
        detect_new_bookings: Announce booking ids not seen before
        detect_status_changes: Track statuses and announce mapped transitions
        status_events: Status reached -> notification type (unmapped: silent)
        detect_note_changes: Announce provider note changes
        detect_new_ratings: Announce rating ids not seen before
        notify_cancellations_by: Only announce cancellations attributed to
            this party (None announces every cancellation)
        default_cancelled_by: Party a cancellation is attributed to when the
            booking does not name one
        action_url: Where the notification links to
    """

    audience: Role
    detect_new_bookings: bool = False
    detect_status_changes: bool = False
    status_events: Mapping[BookingStatus, NotificationType] = field(default_factory=dict)
    detect_note_changes: bool = False
    detect_new_ratings: bool = False
    notify_cancellations_by: Optional[str] = None
    default_cancelled_by: str = DEFAULT_CANCELLED_BY
    action_url: Optional[str] = None

    def __post_init__(self) -> None:
        booking_detections = (
            self.detect_new_bookings or self.detect_status_changes or self.detect_note_changes
        )
        if self.detect_new_ratings and booking_detections:
            raise ValueError("A policy cannot mix rating and booking detections")
        if self.detect_note_changes and not self.detect_status_changes:
            raise ValueError("Note detection requires status tracking")

    @property
    def entity_model(self) -> Type[BaseModel]:
        return Rating if self.detect_new_ratings else Booking


def policy_for(
    category: PollCategory,
    default_cancelled_by: str = DEFAULT_CANCELLED_BY,
) -> CategoryPolicy:
    """
    Get the built-in policy of a poll category.

    Args:
        category: Poll category
        default_cancelled_by: Attribution of cancellations without a
            cancelledBy field ("customer" or "provider")
    """
    if category == PollCategory.PROVIDER_NEW_BOOKINGS:
        return CategoryPolicy(
            audience=Role.SERVICE_PROVIDER,
            detect_new_bookings=True,
            action_url=PROVIDER_BOOKINGS_URL,
        )
    if category == PollCategory.PROVIDER_STATUS_CHANGES:
        return CategoryPolicy(
            audience=Role.SERVICE_PROVIDER,
            detect_status_changes=True,
            status_events=PROVIDER_STATUS_EVENTS,
            notify_cancellations_by="customer",
            default_cancelled_by=default_cancelled_by,
            action_url=PROVIDER_BOOKINGS_URL,
        )
    if category == PollCategory.PROVIDER_NEW_RATINGS:
        return CategoryPolicy(
            audience=Role.SERVICE_PROVIDER,
            detect_new_ratings=True,
            action_url=PROVIDER_RATINGS_URL,
        )
    if category == PollCategory.CUSTOMER_STATUS_CHANGES:
        return CategoryPolicy(
            audience=Role.CUSTOMER,
            detect_status_changes=True,
            status_events=CUSTOMER_STATUS_EVENTS,
            detect_note_changes=True,
            default_cancelled_by=default_cancelled_by,
            action_url=CUSTOMER_BOOKINGS_URL,
        )
    raise ValueError(f"Unknown poll category: {category}")


@dataclass
class SynthesisResult:
    """Events derived from one snapshot and the state to keep afterwards."""

    events: List[NotificationDraft]
    next_state: DedupState
    skipped: int = 0


Snapshot = Union[Page, Iterable[Union[Mapping[str, Any], BaseModel]]]


# ============================================================================
# Message wording
# ============================================================================


def _format_when(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return moment.strftime("%Y-%m-%d %H:%M")


def _normalize_notes(notes: Optional[str]) -> Optional[str]:
    if notes is None:
        return None
    notes = notes.strip()
    return notes or None


def _draft(
    event_type: NotificationType,
    message: str,
    related_id: int,
    policy: CategoryPolicy,
    title: Optional[str] = None,
) -> NotificationDraft:
    return NotificationDraft(
        type=event_type,
        title=title or NOTIFICATION_DEFAULT_TITLES[event_type],
        message=message,
        related_id=str(related_id),
        action_url=policy.action_url,
    )


def _new_booking_event(booking: Booking, policy: CategoryPolicy) -> NotificationDraft:
    message = f'{booking.customer_name} requested "{booking.service_name("a service")}"'
    when = _format_when(booking.scheduled_date_time)
    if when:
        message = f"{message} for {when}"
    return _draft(NotificationType.NEW_BOOKING_REQUEST, message, booking.id, policy)


def _status_event(
    event_type: NotificationType,
    booking: Booking,
    policy: CategoryPolicy,
) -> NotificationDraft:
    if policy.audience == Role.SERVICE_PROVIDER:
        service = booking.service_name("a service")
        messages = {
            NotificationType.BOOKING_CANCELLED: (
                f'{booking.customer_name} cancelled their booking for "{service}"'
            ),
        }
        message = messages.get(event_type, f'Booking for "{service}" is now {booking.status.value}')
    else:
        service = booking.service_name("your service")
        provider = booking.provider_name
        messages = {
            NotificationType.BOOKING_CONFIRMATION: (
                f'{provider} confirmed your booking for "{service}"'
            ),
            NotificationType.BOOKING_STARTED: f'{provider} has started "{service}"',
            NotificationType.BOOKING_COMPLETED: f'{provider} marked "{service}" as completed',
            NotificationType.BOOKING_CANCELLED: (
                f'{provider} cancelled your booking for "{service}"'
            ),
        }
        message = messages.get(event_type, f'Your booking for "{service}" is now {booking.status.value}')
    return _draft(event_type, message, booking.id, policy)


def _notes_event(booking: Booking, notes: Optional[str], policy: CategoryPolicy) -> NotificationDraft:
    provider = booking.provider_name
    preview = (notes or "")[:NOTES_PREVIEW_LENGTH]
    message = f"{provider}: {preview}" if preview else f"{provider} updated booking details"
    return _draft(
        NotificationType.PROVIDER_RESPONSE,
        message,
        booking.id,
        policy,
        title="Booking Update from Provider",
    )


def _rating_event(rating: Rating, policy: CategoryPolicy) -> NotificationDraft:
    message = f'{rating.customer_name} rated {rating.rating}★ for "{rating.service_name}"'
    return _draft(NotificationType.NEW_CUSTOMER_REVIEW, message, rating.id, policy)


def attributed_canceller(booking: Booking, policy: CategoryPolicy) -> str:
    """
    Who a cancellation is attributed to.

    Uses the booking's cancelledBy field when present and non-empty,
    otherwise the policy's default. The value is compared as sent, so
    "CUSTOMER" is not "customer". This is a heuristic: a missing field
    says nothing about who actually cancelled.
    """
    return booking.cancelled_by or policy.default_cancelled_by


def _announces_transition(booking: Booking, policy: CategoryPolicy) -> bool:
    if booking.status != BookingStatus.CANCELLED or policy.notify_cancellations_by is None:
        return True
    return attributed_canceller(booking, policy) == policy.notify_cancellations_by


# ============================================================================
# Synthesis
# ============================================================================


def _entities(snapshot: Snapshot) -> Iterable[Any]:
    if isinstance(snapshot, Page):
        return snapshot.content
    return snapshot


def _parse_entities(snapshot: Snapshot, model: Type[BaseModel]) -> Tuple[List[Any], int]:
    parsed = []
    skipped = 0
    for raw in _entities(snapshot):
        if isinstance(raw, model):
            parsed.append(raw)
            continue
        if not isinstance(raw, (Mapping, BaseModel)):
            skipped += 1
            logger.debug("Skipping non-object %s entity: %r", model.__name__, raw)
            continue
        try:
            source = raw.model_dump(by_alias=True) if isinstance(raw, BaseModel) else raw
            parsed.append(model.model_validate(source))
        except ValidationError as e:
            skipped += 1
            logger.debug("Skipping malformed %s entity: %s", model.__name__, e)
    return parsed, skipped


def synthesize(
    previous_state: DedupState,
    snapshot: Snapshot,
    is_first_run: bool,
    policy: CategoryPolicy,
) -> SynthesisResult:
    """
    Derive notifications from a snapshot.

    Args:
        previous_state: State observed so far (not modified)
        snapshot: Page or iterable of raw entity dicts / models
        is_first_run: True for the first snapshot after a poller starts;
            the state is seeded from it and no events are produced
        policy: Detections to run

    Returns:
        SynthesisResult with the events in snapshot order and the next state
    """
    state = previous_state.copy()
    events: List[NotificationDraft] = []
    entities, skipped = _parse_entities(snapshot, policy.entity_model)

    if policy.detect_new_ratings:
        for rating in entities:
            if rating.id in state.seen_rating_ids:
                continue
            state.seen_rating_ids.add(rating.id)
            if not is_first_run:
                events.append(_rating_event(rating, policy))
        return SynthesisResult(events=events, next_state=state, skipped=skipped)

    for booking in entities:
        if policy.detect_new_bookings and booking.id not in state.seen_booking_ids:
            state.seen_booking_ids.add(booking.id)
            if not is_first_run:
                events.append(_new_booking_event(booking, policy))

        if not policy.detect_status_changes:
            continue

        notes = _normalize_notes(booking.notes)
        previous_status = state.last_status_by_booking_id.get(booking.id)

        if is_first_run or previous_status is None:
            state.last_status_by_booking_id[booking.id] = booking.status
            if policy.detect_note_changes:
                state.last_notes_by_booking_id[booking.id] = notes
            continue

        if previous_status != booking.status:
            event_type = policy.status_events.get(booking.status)
            if event_type is not None and _announces_transition(booking, policy):
                events.append(_status_event(event_type, booking, policy))
            state.last_status_by_booking_id[booking.id] = booking.status

        if policy.detect_note_changes:
            if booking.id not in state.last_notes_by_booking_id:
                state.last_notes_by_booking_id[booking.id] = notes
            elif state.last_notes_by_booking_id[booking.id] != notes:
                events.append(_notes_event(booking, notes, policy))
                state.last_notes_by_booking_id[booking.id] = notes

    if skipped:
        logger.debug("Skipped %d malformed entities", skipped)
    return SynthesisResult(events=events, next_state=state, skipped=skipped)
