from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class MessageOut(BaseModel):
    id: UUID
    text: str
    sender: str
    received_at: datetime
    processed: bool
    booking_id: UUID | None


class MessageListResponse(BaseModel):
    messages: list[MessageOut]
