from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from booksync.models.enums import BookingStatus
from booksync.services.bookings.policy import (
    InvalidTransition,
    ReviewAction,
    apply_review_action,
    decide_initial_status,
    overlaps,
    validate_appointment_time,
)


def test_threshold_is_inclusive() -> None:
    at = decide_initial_status(0.8, threshold=0.8)
    assert at.status == BookingStatus.pending
    assert at.sync_now is True

    below = decide_initial_status(0.7999, threshold=0.8)
    assert below.status == BookingStatus.needs_review
    assert below.sync_now is False


def test_review_transitions() -> None:
    assert apply_review_action(BookingStatus.needs_review, ReviewAction.approve) == BookingStatus.approved
    assert apply_review_action(BookingStatus.needs_review, ReviewAction.reject) == BookingStatus.rejected
    assert apply_review_action(BookingStatus.approved, ReviewAction.sync_succeeded) == BookingStatus.auto_synced
    assert apply_review_action(BookingStatus.pending, ReviewAction.sync_succeeded) == BookingStatus.auto_synced


@pytest.mark.parametrize(
    ("current", "action"),
    [
        (BookingStatus.rejected, ReviewAction.approve),
        (BookingStatus.rejected, ReviewAction.sync_succeeded),
        (BookingStatus.auto_synced, ReviewAction.approve),
        (BookingStatus.pending, ReviewAction.reject),
        (BookingStatus.needs_review, ReviewAction.sync_succeeded),
        (BookingStatus.cancelled, ReviewAction.cancel),
    ],
)
def test_invalid_transitions_raise(current: BookingStatus, action: ReviewAction) -> None:
    with pytest.raises(InvalidTransition):
        apply_review_action(current, action)


def test_past_appointment_time_is_rejected() -> None:
    now = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
    validate_appointment_time(now + timedelta(minutes=1), now=now)
    with pytest.raises(ValueError):
        validate_appointment_time(now - timedelta(minutes=1), now=now)


def test_overlap_is_half_open() -> None:
    start = datetime(2026, 11, 1, 14, 0, tzinfo=UTC)
    assert overlaps(start, 60, start + timedelta(minutes=30), 60)
    assert not overlaps(start, 60, start + timedelta(minutes=60), 60)
    assert not overlaps(start, 60, start - timedelta(minutes=60), 60)
