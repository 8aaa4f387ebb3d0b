from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta

from booksync.models.enums import BookingStatus


class ReviewAction(enum.StrEnum):
    approve = "approve"
    reject = "reject"
    sync_succeeded = "sync_succeeded"
    cancel = "cancel"


class InvalidTransition(Exception):
    def __init__(self, *, current: BookingStatus, action: ReviewAction) -> None:
        super().__init__(f"Cannot {action.value} a booking in status {current.value}")
        self.current = current
        self.action = action


@dataclass(frozen=True)
class InitialDecision:
    status: BookingStatus
    sync_now: bool


# Statuses whose calendar write is allowed (or has already happened).
SYNCABLE_STATUSES = frozenset({BookingStatus.pending, BookingStatus.approved, BookingStatus.auto_synced})
# Bookings that still occupy a slot on the owner's calendar.
LIVE_STATUSES = frozenset(
    {BookingStatus.pending, BookingStatus.auto_synced, BookingStatus.needs_review, BookingStatus.approved}
)

_TRANSITIONS: dict[tuple[BookingStatus, ReviewAction], BookingStatus] = {
    (BookingStatus.needs_review, ReviewAction.approve): BookingStatus.approved,
    (BookingStatus.needs_review, ReviewAction.reject): BookingStatus.rejected,
    (BookingStatus.pending, ReviewAction.sync_succeeded): BookingStatus.auto_synced,
    (BookingStatus.approved, ReviewAction.sync_succeeded): BookingStatus.auto_synced,
    (BookingStatus.auto_synced, ReviewAction.sync_succeeded): BookingStatus.auto_synced,
    (BookingStatus.pending, ReviewAction.cancel): BookingStatus.cancelled,
    (BookingStatus.needs_review, ReviewAction.cancel): BookingStatus.cancelled,
    (BookingStatus.approved, ReviewAction.cancel): BookingStatus.cancelled,
    (BookingStatus.auto_synced, ReviewAction.cancel): BookingStatus.cancelled,
}


def decide_initial_status(confidence: float, *, threshold: float) -> InitialDecision:
    """High-confidence bookings go straight to the calendar; the rest wait for a human."""
    if confidence >= threshold:
        return InitialDecision(status=BookingStatus.pending, sync_now=True)
    return InitialDecision(status=BookingStatus.needs_review, sync_now=False)


def apply_review_action(current: BookingStatus, action: ReviewAction) -> BookingStatus:
    nxt = _TRANSITIONS.get((current, action))
    if nxt is None:
        raise InvalidTransition(current=current, action=action)
    return nxt


def validate_appointment_time(appointment_time: datetime, *, now: datetime) -> None:
    if appointment_time < now:
        raise ValueError("appointment_time must not be in the past")


def overlaps(
    start: datetime,
    duration_minutes: int,
    other_start: datetime,
    other_duration_minutes: int,
) -> bool:
    end = start + timedelta(minutes=duration_minutes)
    other_end = other_start + timedelta(minutes=other_duration_minutes)
    return start < other_end and other_start < end


def overlap_reason(*, other_customer_name: str, other_start: datetime) -> str:
    return f"Overlaps with {other_customer_name} at {other_start.isoformat()}"
