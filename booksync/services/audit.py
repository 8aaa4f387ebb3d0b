from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from booksync.core.middleware import request_id_ctx
from booksync.models.audit import AuditEvent

logger = logging.getLogger("booksync.audit")


def log_event(*, session: Session, owner_id: UUID, event_type: str, event_data: dict) -> AuditEvent:
    """Append an audit row for the owner.

    Events recorded while serving an API request carry that request's id, so a
    booking's history can be matched against the access log. Worker events have none.
    """
    data = dict(event_data)
    request_id = request_id_ctx.get()
    if request_id is not None:
        data.setdefault("request_id", request_id)

    evt = AuditEvent(owner_id=owner_id, event_type=event_type, event_data=data)
    session.add(evt)
    session.flush()
    logger.debug("audit event owner_id=%s type=%s", owner_id, event_type)
    return evt
