from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ClientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    canonical_name: str
    aliases: list[str]
    booking_count: int
    cancellation_count: int
    no_show_count: int
    first_seen: datetime
    last_seen: datetime


class ClientListResponse(BaseModel):
    clients: list[ClientOut]
