from __future__ import annotations

from booksync.models.audit import AuditEvent  # noqa: F401
from booksync.models.base import Base as Base  # noqa: F401
from booksync.models.bookings import Booking, Client  # noqa: F401
from booksync.models.enums import (  # noqa: F401
    AuthMethod,
    BookingSource,
    BookingStatus,
    JobStatus,
    JobType,
)
from booksync.models.identity import CredentialRecord, Owner  # noqa: F401
from booksync.models.messages import MessageFingerprint, RawMessage  # noqa: F401
