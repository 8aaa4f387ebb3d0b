from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    raw_message_id: UUID
    client_id: UUID
    source: str
    customer_name: str
    service: str
    appointment_time: datetime
    duration_minutes: int
    confidence: float
    status: str
    review_reasons: list[str]
    external_event_id: str | None
    synced_at: datetime | None
    last_sync_error: str | None
    created_at: datetime
    updated_at: datetime


class BookingActionResponse(BaseModel):
    booking: BookingOut
    synced: bool = False
    sync_error: str | None = None
    reconnect_required: bool = False


def _require_aware(v: datetime | None) -> datetime | None:
    if v is not None and v.tzinfo is None:
        raise ValueError("appointment_time must include a timezone offset")
    return v


class ApproveBookingRequest(BaseModel):
    booking_id: UUID
    customer_name: str | None = Field(default=None, max_length=200)
    service: str | None = Field(default=None, max_length=200)
    appointment_time: datetime | None = None

    @field_validator("appointment_time")
    @classmethod
    def _validate_appointment_time(cls, v: datetime | None) -> datetime | None:
        return _require_aware(v)


class RejectBookingRequest(BaseModel):
    booking_id: UUID


class ManualBookingRequest(BaseModel):
    customer_name: str = Field(min_length=1, max_length=200)
    service: str | None = Field(default=None, max_length=200)
    appointment_time: datetime
    duration_minutes: int | None = Field(default=None, ge=5, le=24 * 60)

    @field_validator("appointment_time")
    @classmethod
    def _validate_appointment_time(cls, v: datetime | None) -> datetime | None:
        return _require_aware(v)
