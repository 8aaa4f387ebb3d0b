from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from booksync.core.config import get_settings
from booksync.core.deps import get_calendar_adapter, require_owner
from booksync.db.session import get_session
from booksync.models.enums import BookingStatus
from booksync.models.identity import Owner
from booksync.schemas.bookings import (
    ApproveBookingRequest,
    BookingActionResponse,
    BookingOut,
    ManualBookingRequest,
    RejectBookingRequest,
)
from booksync.services.bookings.reconciler import (
    ReviewEdits,
    SyncAttempt,
    approve_booking,
    cancel_booking,
    create_manual_booking,
    get_booking_for_owner,
    list_bookings,
    mark_no_show,
    reject_booking,
    schedule_retry,
    sync_booking,
)
from booksync.services.calendar.sync import CalendarSyncAdapter

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _sync_response(*, session: Session, attempt: SyncAttempt) -> BookingActionResponse:
    if attempt.error is not None and not attempt.reconnect_required:
        schedule_retry(session=session, booking=attempt.booking)
    session.commit()
    return BookingActionResponse(
        booking=BookingOut.model_validate(attempt.booking),
        synced=attempt.error is None,
        sync_error=attempt.error,
        reconnect_required=attempt.reconnect_required,
    )


@router.get("", response_model=list[BookingOut])
def bookings_list(
    status_filter: BookingStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
) -> list[BookingOut]:
    return list_bookings(session=session, owner_id=owner.id, status_filter=status_filter, limit=limit)


@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
def bookings_create_manual(
    payload: ManualBookingRequest,
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
) -> BookingOut:
    booking = create_manual_booking(
        session=session,
        owner_id=owner.id,
        customer_name=payload.customer_name,
        service=payload.service,
        appointment_time=payload.appointment_time,
        duration_minutes=payload.duration_minutes,
        settings=get_settings(),
    )
    session.commit()
    return booking


@router.post("/approve", response_model=BookingActionResponse)
def bookings_approve(
    payload: ApproveBookingRequest,
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
    adapter: CalendarSyncAdapter = Depends(get_calendar_adapter),
) -> BookingActionResponse:
    booking = approve_booking(
        session=session,
        owner_id=owner.id,
        booking_id=payload.booking_id,
        edits=ReviewEdits(
            customer_name=payload.customer_name,
            service=payload.service,
            appointment_time=payload.appointment_time,
        ),
    )
    # The approval stands even if the calendar write below fails.
    session.commit()

    attempt = sync_booking(session=session, booking=booking, adapter=adapter)
    return _sync_response(session=session, attempt=attempt)


@router.post("/reject", response_model=BookingOut)
def bookings_reject(
    payload: RejectBookingRequest,
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
) -> BookingOut:
    booking = reject_booking(session=session, owner_id=owner.id, booking_id=payload.booking_id)
    session.commit()
    return booking


@router.post("/{booking_id}/sync", response_model=BookingActionResponse)
def bookings_sync(
    booking_id: UUID,
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
    adapter: CalendarSyncAdapter = Depends(get_calendar_adapter),
) -> BookingActionResponse:
    booking = get_booking_for_owner(session=session, owner_id=owner.id, booking_id=booking_id, for_update=True)
    attempt = sync_booking(session=session, booking=booking, adapter=adapter)
    return _sync_response(session=session, attempt=attempt)


@router.post("/{booking_id}/no-show", response_model=BookingOut)
def bookings_no_show(
    booking_id: UUID,
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
) -> BookingOut:
    booking = mark_no_show(session=session, owner_id=owner.id, booking_id=booking_id)
    session.commit()
    return booking


@router.delete("/{booking_id}", response_model=BookingOut)
def bookings_cancel(
    booking_id: UUID,
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
    adapter: CalendarSyncAdapter = Depends(get_calendar_adapter),
) -> BookingOut:
    booking = cancel_booking(session=session, owner_id=owner.id, booking_id=booking_id, adapter=adapter)
    session.commit()
    return booking
