from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel


class SmsWebhookResponse(BaseModel):
    success: bool
    message_id: UUID
    duplicate: bool = False


class SmsWebhookStatusResponse(BaseModel):
    status: str
    user: str
    total_messages: int
    processed_messages: int
    pending_messages: int


class BatchItemResult(BaseModel):
    index: int
    success: bool
    message_id: UUID | None = None
    duplicate: bool = False
    error: str | None = None


class BatchIngestResponse(BaseModel):
    success: bool
    total: int
    stored: int
    duplicates: int
    failed: int
    results: list[BatchItemResult]
