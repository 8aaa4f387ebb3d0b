from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from booksync.core.config import Settings
from booksync.core.metrics import observe_booking_created, observe_extraction_outcome
from booksync.models.bookings import Booking
from booksync.models.enums import BookingSource, BookingStatus, JobType
from booksync.models.messages import RawMessage
from booksync.services import clients
from booksync.services.audit import log_event
from booksync.services.bookings.policy import (
    LIVE_STATUSES,
    SYNCABLE_STATUSES,
    InvalidTransition,
    ReviewAction,
    apply_review_action,
    decide_initial_status,
    overlap_reason,
    validate_appointment_time,
)
from booksync.services.calendar.sync import CalendarSyncAdapter, SyncError
from booksync.services.extraction.extractor import extract, resolve_appointment_time
from booksync.services.extraction.types import ExtractionMiss
from booksync.services.ingest.dedupe import (
    DuplicateMessage,
    attach_booking,
    claim_fingerprint,
    compute_fingerprint,
)
from booksync.services.ingest.store import load_message_for_processing, mark_processed
from booksync.worker.queue import enqueue_job

logger = logging.getLogger("booksync.pipeline")

MANUAL_SENDER = "manual"


class ProcessOutcome(enum.StrEnum):
    booking_created = "booking_created"
    extraction_miss = "extraction_miss"
    duplicate = "duplicate"
    already_processed = "already_processed"
    missing = "missing"


@dataclass(frozen=True)
class ProcessResult:
    outcome: ProcessOutcome
    booking_id: UUID | None = None


@dataclass(frozen=True)
class ReviewEdits:
    customer_name: str | None = None
    service: str | None = None
    appointment_time: datetime | None = None


@dataclass(frozen=True)
class SyncAttempt:
    booking: Booking
    error: str | None = None
    reconnect_required: bool = False


def _existing_booking_id(*, session: Session, raw_message_id: UUID) -> UUID | None:
    row = session.execute(
        text("SELECT id FROM bookings WHERE raw_message_id = :id"),
        {"id": str(raw_message_id)},
    ).fetchone()
    return UUID(str(row[0])) if row is not None else None


def find_overlap_reasons(
    *,
    session: Session,
    owner_id: UUID,
    start: datetime,
    duration_minutes: int,
    exclude_booking_id: UUID | None = None,
) -> list[str]:
    """Review notes for other live bookings sharing the [start, start + duration) slot."""
    end = start + timedelta(minutes=duration_minutes)
    rows = (
        session.execute(
            text(
                """
            SELECT id, customer_name, appointment_time
            FROM bookings
            WHERE owner_id = :owner_id
              AND status = ANY(CAST(:statuses AS booking_status[]))
              AND appointment_time < :end
              AND appointment_time + make_interval(mins => duration_minutes) > :start
              AND (CAST(:exclude AS uuid) IS NULL OR id <> CAST(:exclude AS uuid))
            ORDER BY appointment_time ASC
            """
            ),
            {
                "owner_id": str(owner_id),
                "statuses": [s.value for s in LIVE_STATUSES],
                "start": start,
                "end": end,
                "exclude": str(exclude_booking_id) if exclude_booking_id else None,
            },
        )
        .mappings()
        .all()
    )
    return [
        overlap_reason(other_customer_name=r["customer_name"], other_start=r["appointment_time"])
        for r in rows
    ]


def _enqueue_sync(*, session: Session, booking: Booking) -> None:
    enqueue_job(
        session=session,
        job_type=JobType.booking_sync,
        owner_id=booking.owner_id,
        payload={"booking_id": str(booking.id)},
        dedupe_key=f"booking_sync:{booking.id}",
    )


def process_message(
    *,
    session: Session,
    message_id: UUID,
    settings: Settings,
    now: datetime | None = None,
) -> ProcessResult:
    """Turn one stored message into at most one booking.

    Safe to run any number of times for the same message. An extraction miss
    leaves the message unprocessed; a fingerprint duplicate marks it processed
    without creating anything.
    """
    msg = load_message_for_processing(session=session, message_id=message_id)
    if msg is None:
        return ProcessResult(outcome=ProcessOutcome.missing)

    existing = _existing_booking_id(session=session, raw_message_id=message_id)
    if existing is not None:
        mark_processed(session=session, message_id=message_id)
        return ProcessResult(outcome=ProcessOutcome.already_processed, booking_id=existing)
    if msg["processed"]:
        return ProcessResult(outcome=ProcessOutcome.already_processed)

    owner_id = UUID(str(msg["owner_id"]))
    try:
        result = extract(msg["text"])
    except ExtractionMiss as e:
        log_event(
            session=session,
            owner_id=owner_id,
            event_type="messages.extraction_miss",
            event_data={"raw_message_id": str(message_id), "missing": list(e.missing)},
        )
        observe_extraction_outcome(ProcessOutcome.extraction_miss.value)
        logger.info("extraction miss message_id=%s missing=%s", message_id, ",".join(e.missing))
        return ProcessResult(outcome=ProcessOutcome.extraction_miss)

    fingerprint = compute_fingerprint(msg["text"])
    try:
        claim_fingerprint(session=session, owner_id=owner_id, fingerprint=fingerprint, raw_message_id=message_id)
    except DuplicateMessage as e:
        mark_processed(session=session, message_id=message_id)
        log_event(
            session=session,
            owner_id=owner_id,
            event_type="messages.duplicate",
            event_data={
                "raw_message_id": str(message_id),
                "existing_message_id": str(e.existing_message_id) if e.existing_message_id else None,
            },
        )
        observe_extraction_outcome(ProcessOutcome.duplicate.value)
        logger.info("duplicate booking message message_id=%s", message_id)
        return ProcessResult(outcome=ProcessOutcome.duplicate)

    now = now or datetime.now(UTC)
    # Dates resolve against arrival time, not processing time.
    received_at = msg["received_at"]
    appointment_time = resolve_appointment_time(result, now=received_at, tz=ZoneInfo(settings.CALENDAR_TIMEZONE))
    client_id = clients.resolve(
        session=session,
        owner_id=owner_id,
        extracted_name=result.customer_name,
        seen_at=received_at,
    )

    decision = decide_initial_status(result.aggregate_confidence, threshold=settings.AUTO_SYNC_CONFIDENCE_THRESHOLD)
    booking = Booking(
        owner_id=owner_id,
        raw_message_id=message_id,
        client_id=client_id,
        source=BookingSource.sms,
        customer_name=clients.clean_name(result.customer_name),
        service=result.service or settings.DEFAULT_SERVICE_LABEL,
        appointment_time=appointment_time,
        duration_minutes=settings.DEFAULT_DURATION_MINUTES,
        confidence=result.aggregate_confidence,
        status=decision.status,
        review_reasons=find_overlap_reasons(
            session=session,
            owner_id=owner_id,
            start=appointment_time,
            duration_minutes=settings.DEFAULT_DURATION_MINUTES,
        ),
        created_at=now,
        updated_at=now,
    )
    session.add(booking)
    session.flush()

    attach_booking(session=session, owner_id=owner_id, fingerprint=fingerprint, booking_id=booking.id)
    clients.record_booking(session=session, client_id=client_id, at=received_at)
    mark_processed(session=session, message_id=message_id)
    if decision.sync_now:
        _enqueue_sync(session=session, booking=booking)

    log_event(
        session=session,
        owner_id=owner_id,
        event_type="bookings.created",
        event_data={
            "booking_id": str(booking.id),
            "raw_message_id": str(message_id),
            "status": booking.status.value,
            "confidence": booking.confidence,
            "matched_rules": result.matched_rules,
        },
    )
    observe_extraction_outcome(ProcessOutcome.booking_created.value)
    observe_booking_created(status=booking.status.value)
    logger.info(
        "booking created booking_id=%s status=%s confidence=%.2f",
        booking.id,
        booking.status.value,
        booking.confidence,
    )
    return ProcessResult(outcome=ProcessOutcome.booking_created, booking_id=booking.id)


def create_manual_booking(
    *,
    session: Session,
    owner_id: UUID,
    customer_name: str,
    service: str | None,
    appointment_time: datetime,
    duration_minutes: int | None,
    settings: Settings,
    now: datetime | None = None,
) -> Booking:
    """Quick-book: a booking typed in by the owner, backed by a synthetic message."""
    now = now or datetime.now(UTC)
    try:
        validate_appointment_time(appointment_time, now=now)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    name = clients.clean_name(customer_name)
    if not name:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="customer_name is required")
    label = (service or "").strip() or settings.DEFAULT_SERVICE_LABEL
    duration = duration_minutes or settings.DEFAULT_DURATION_MINUTES

    msg = RawMessage(
        owner_id=owner_id,
        text=f"Manual booking: {name}, {label} at {appointment_time.isoformat()}",
        sender=MANUAL_SENDER,
        received_at=now,
        processed=True,
    )
    session.add(msg)
    session.flush()

    client_id = clients.resolve(session=session, owner_id=owner_id, extracted_name=name, seen_at=now)
    booking = Booking(
        owner_id=owner_id,
        raw_message_id=msg.id,
        client_id=client_id,
        source=BookingSource.manual,
        customer_name=name,
        service=label,
        appointment_time=appointment_time,
        duration_minutes=duration,
        confidence=1.0,
        status=BookingStatus.pending,
        review_reasons=find_overlap_reasons(
            session=session,
            owner_id=owner_id,
            start=appointment_time,
            duration_minutes=duration,
        ),
        created_at=now,
        updated_at=now,
    )
    session.add(booking)
    session.flush()

    clients.record_booking(session=session, client_id=client_id, at=now)
    _enqueue_sync(session=session, booking=booking)
    log_event(
        session=session,
        owner_id=owner_id,
        event_type="bookings.created",
        event_data={"booking_id": str(booking.id), "source": BookingSource.manual.value},
    )
    observe_booking_created(status=booking.status.value)
    return booking


def get_booking_for_owner(
    *,
    session: Session,
    owner_id: UUID,
    booking_id: UUID,
    for_update: bool = False,
) -> Booking:
    stmt = select(Booking).where(Booking.id == booking_id, Booking.owner_id == owner_id)
    if for_update:
        stmt = stmt.with_for_update()
    booking = session.execute(stmt).scalars().first()
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


def _transition(booking: Booking, action: ReviewAction) -> BookingStatus:
    try:
        return apply_review_action(booking.status, action)
    except InvalidTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e


def list_bookings(
    *,
    session: Session,
    owner_id: UUID,
    status_filter: BookingStatus | None = None,
    limit: int = 100,
) -> list[Booking]:
    stmt = select(Booking).where(Booking.owner_id == owner_id)
    if status_filter is not None:
        stmt = stmt.where(Booking.status == status_filter)
    stmt = stmt.order_by(Booking.appointment_time.desc(), Booking.id.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


def approve_booking(
    *,
    session: Session,
    owner_id: UUID,
    booking_id: UUID,
    edits: ReviewEdits,
    now: datetime | None = None,
) -> Booking:
    now = now or datetime.now(UTC)
    booking = get_booking_for_owner(session=session, owner_id=owner_id, booking_id=booking_id, for_update=True)
    new_status = _transition(booking, ReviewAction.approve)

    changed: dict[str, str] = {}
    if edits.appointment_time is not None and edits.appointment_time != booking.appointment_time:
        try:
            validate_appointment_time(edits.appointment_time, now=now)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
        booking.appointment_time = edits.appointment_time
        changed["appointment_time"] = edits.appointment_time.isoformat()

    if edits.service is not None and edits.service.strip() and edits.service.strip() != booking.service:
        booking.service = edits.service.strip()
        changed["service"] = booking.service

    if edits.customer_name is not None:
        name = clients.clean_name(edits.customer_name)
        if name and name != booking.customer_name:
            client_id = clients.resolve(session=session, owner_id=owner_id, extracted_name=name, seen_at=now)
            if client_id != booking.client_id:
                clients.record_booking(session=session, client_id=client_id, at=now)
                booking.client_id = client_id
            booking.customer_name = name
            changed["customer_name"] = name

    # Overlaps are re-checked before any calendar write.
    booking.review_reasons = find_overlap_reasons(
        session=session,
        owner_id=owner_id,
        start=booking.appointment_time,
        duration_minutes=booking.duration_minutes,
        exclude_booking_id=booking.id,
    )
    booking.status = new_status
    booking.updated_at = now
    session.add(booking)
    session.flush()

    log_event(
        session=session,
        owner_id=owner_id,
        event_type="bookings.approved",
        event_data={"booking_id": str(booking.id), "changes": changed},
    )
    return booking


def reject_booking(*, session: Session, owner_id: UUID, booking_id: UUID, now: datetime | None = None) -> Booking:
    booking = get_booking_for_owner(session=session, owner_id=owner_id, booking_id=booking_id, for_update=True)
    booking.status = _transition(booking, ReviewAction.reject)
    booking.updated_at = now or datetime.now(UTC)
    session.add(booking)
    session.flush()

    log_event(
        session=session,
        owner_id=owner_id,
        event_type="bookings.rejected",
        event_data={"booking_id": str(booking.id)},
    )
    return booking


def sync_booking(
    *,
    session: Session,
    booking: Booking,
    adapter: CalendarSyncAdapter,
    now: datetime | None = None,
) -> SyncAttempt:
    """Write the booking to the calendar. A failure is recorded on the booking, never raised."""
    if booking.status not in SYNCABLE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Booking in status {booking.status.value} cannot be synced",
        )

    now = now or datetime.now(UTC)
    try:
        event_id = adapter.sync(session=session, booking=booking)
    except SyncError as e:
        booking.last_sync_error = str(e)
        booking.updated_at = now
        session.add(booking)
        session.flush()
        log_event(
            session=session,
            owner_id=booking.owner_id,
            event_type="bookings.sync_failed",
            event_data={
                "booking_id": str(booking.id),
                "error": str(e),
                "reconnect_required": e.reconnect_required,
            },
        )
        logger.warning("calendar sync failed booking_id=%s error=%s", booking.id, e)
        return SyncAttempt(booking=booking, error=str(e), reconnect_required=e.reconnect_required)

    booking.external_event_id = event_id
    booking.status = apply_review_action(booking.status, ReviewAction.sync_succeeded)
    booking.synced_at = now
    booking.last_sync_error = None
    booking.updated_at = now
    session.add(booking)
    session.flush()
    logger.info("booking synced booking_id=%s event_id=%s", booking.id, event_id)
    return SyncAttempt(booking=booking)


def schedule_retry(*, session: Session, booking: Booking) -> None:
    _enqueue_sync(session=session, booking=booking)


def cancel_booking(
    *,
    session: Session,
    owner_id: UUID,
    booking_id: UUID,
    adapter: CalendarSyncAdapter,
    now: datetime | None = None,
) -> Booking:
    booking = get_booking_for_owner(session=session, owner_id=owner_id, booking_id=booking_id, for_update=True)
    new_status = _transition(booking, ReviewAction.cancel)

    try:
        adapter.delete(session=session, booking=booking)
    except SyncError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    booking.external_event_id = None
    booking.status = new_status
    booking.updated_at = now or datetime.now(UTC)
    session.add(booking)
    session.flush()

    clients.record_cancellation(session=session, client_id=booking.client_id)
    log_event(
        session=session,
        owner_id=owner_id,
        event_type="bookings.cancelled",
        event_data={"booking_id": str(booking.id)},
    )
    return booking


def mark_no_show(*, session: Session, owner_id: UUID, booking_id: UUID) -> Booking:
    booking = get_booking_for_owner(session=session, owner_id=owner_id, booking_id=booking_id)
    if booking.status in (BookingStatus.rejected, BookingStatus.cancelled):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Booking in status {booking.status.value} cannot be marked as a no-show",
        )
    clients.record_no_show(session=session, client_id=booking.client_id)
    log_event(
        session=session,
        owner_id=owner_id,
        event_type="bookings.no_show",
        event_data={"booking_id": str(booking.id)},
    )
    return booking
