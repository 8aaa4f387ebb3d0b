from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from booksync.core.config import Settings
from booksync.services.bookings.reconciler import process_message
from booksync.worker.errors import PermanentJobError


def message_process(*, session: Session, payload: dict, settings: Settings) -> None:
    raw_message_id = payload.get("raw_message_id")
    if not raw_message_id:
        raise PermanentJobError("message_process payload missing raw_message_id")

    process_message(session=session, message_id=UUID(str(raw_message_id)), settings=settings)
