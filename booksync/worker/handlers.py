from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from booksync.core.config import Settings
from booksync.models.enums import JobType
from booksync.services.calendar.sync import CalendarSyncAdapter
from booksync.worker.jobs.booking_sync import booking_sync
from booksync.worker.jobs.message_process import message_process


@dataclass(frozen=True)
class JobContext:
    settings: Settings
    calendar: CalendarSyncAdapter


def handle_job(
    *,
    session: Session,
    job_id: UUID,
    job_type: JobType,
    payload: dict,
    context: JobContext,
) -> None:
    _ = job_id
    if job_type == JobType.message_process:
        message_process(session=session, payload=payload, settings=context.settings)
        return
    if job_type == JobType.booking_sync:
        booking_sync(session=session, payload=payload, adapter=context.calendar)
        return

    raise NotImplementedError(f"Job type not implemented: {job_type.value}")
