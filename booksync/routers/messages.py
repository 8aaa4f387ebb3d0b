from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from booksync.core.deps import require_owner
from booksync.db.session import get_session
from booksync.models.identity import Owner
from booksync.schemas.messages import MessageListResponse, MessageOut
from booksync.services.ingest.store import list_messages

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("", response_model=MessageListResponse)
def messages_list(
    limit: int = Query(default=50, ge=1, le=500),
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
) -> MessageListResponse:
    rows = list_messages(session=session, owner_id=owner.id, limit=limit)
    return MessageListResponse(messages=[MessageOut(**r) for r in rows])
