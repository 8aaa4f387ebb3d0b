from __future__ import annotations

import enum


class AuthMethod(enum.StrEnum):
    web = "web"
    ios = "ios"


class BookingStatus(enum.StrEnum):
    pending = "pending"
    auto_synced = "auto_synced"
    needs_review = "needs_review"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class BookingSource(enum.StrEnum):
    sms = "sms"
    manual = "manual"


class JobStatus(enum.StrEnum):
    queued = "queued"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"


class JobType(enum.StrEnum):
    message_process = "message_process"
    booking_sync = "booking_sync"
