from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from booksync.models.bookings import Booking
from booksync.services.bookings.policy import SYNCABLE_STATUSES
from booksync.services.bookings.reconciler import sync_booking
from booksync.services.calendar.sync import CalendarSyncAdapter
from booksync.worker.errors import PermanentJobError


class CalendarSyncFailed(RuntimeError):
    pass


def booking_sync(*, session: Session, payload: dict, adapter: CalendarSyncAdapter) -> None:
    booking_id = payload.get("booking_id")
    if not booking_id:
        raise PermanentJobError("booking_sync payload missing booking_id")

    booking = (
        session.execute(select(Booking).where(Booking.id == UUID(str(booking_id))).with_for_update())
        .scalars()
        .first()
    )
    if booking is None:
        return
    # Rejected/cancelled while queued, or still awaiting review.
    if booking.status not in SYNCABLE_STATUSES:
        return

    attempt = sync_booking(session=session, booking=booking, adapter=adapter)
    if attempt.error is None:
        return
    if attempt.reconnect_required:
        raise PermanentJobError(f"Calendar reconnect required: {attempt.error}")
    raise CalendarSyncFailed(attempt.error)
