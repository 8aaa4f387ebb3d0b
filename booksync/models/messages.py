from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Text
from sqlalchemy import text as sql_text
from sqlalchemy.orm import Mapped, mapped_column

from booksync.models.base import Base


class RawMessage(Base):
    __tablename__ = "raw_messages"

    id: Mapped[UUID] = mapped_column(primary_key=True, server_default=sql_text("gen_random_uuid()"))
    owner_id: Mapped[UUID] = mapped_column(ForeignKey("owners.id", ondelete="CASCADE"), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    sender: Mapped[str] = mapped_column(Text, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=sql_text("now()"))
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sql_text("false"))


class MessageFingerprint(Base):
    __tablename__ = "message_fingerprints"

    owner_id: Mapped[UUID] = mapped_column(ForeignKey("owners.id", ondelete="CASCADE"), primary_key=True)
    fingerprint: Mapped[str] = mapped_column(Text, primary_key=True)
    raw_message_id: Mapped[UUID] = mapped_column(
        ForeignKey("raw_messages.id", ondelete="CASCADE"), nullable=False
    )
    booking_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=sql_text("now()"))
