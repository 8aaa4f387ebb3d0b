from __future__ import annotations

import hashlib
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from booksync.services.ingest.normalize import normalize_for_fingerprint


class DuplicateMessage(Exception):
    """The fingerprint was already claimed by an earlier message for this owner."""

    def __init__(self, *, fingerprint: str, existing_message_id: UUID | None) -> None:
        super().__init__(f"Fingerprint already recorded: {fingerprint[:16]}")
        self.fingerprint = fingerprint
        self.existing_message_id = existing_message_id


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compute_fingerprint(raw_text: str) -> str:
    return sha256_hex(normalize_for_fingerprint(raw_text).encode("utf-8"))


def is_duplicate(*, session: Session, owner_id: UUID, fingerprint: str) -> bool:
    row = session.execute(
        text(
            """
            SELECT 1
            FROM message_fingerprints
            WHERE owner_id = :owner_id
              AND fingerprint = :fingerprint
            """
        ),
        {"owner_id": str(owner_id), "fingerprint": fingerprint},
    ).fetchone()
    return row is not None


def claim_fingerprint(
    *,
    session: Session,
    owner_id: UUID,
    fingerprint: str,
    raw_message_id: UUID,
) -> None:
    """Record the fingerprint as seen, or raise DuplicateMessage.

    The primary key on (owner_id, fingerprint) makes this the single point of
    exactly-once: a concurrent claim waits on the index until the first
    transaction commits, then sees the conflict. Callers create the booking in
    the same transaction.
    """
    row = session.execute(
        text(
            """
            INSERT INTO message_fingerprints (owner_id, fingerprint, raw_message_id, created_at)
            VALUES (:owner_id, :fingerprint, :raw_message_id, now())
            ON CONFLICT DO NOTHING
            RETURNING fingerprint
            """
        ),
        {
            "owner_id": str(owner_id),
            "fingerprint": fingerprint,
            "raw_message_id": str(raw_message_id),
        },
    ).fetchone()
    if row is not None:
        return

    existing = (
        session.execute(
            text(
                """
            SELECT raw_message_id
            FROM message_fingerprints
            WHERE owner_id = :owner_id
              AND fingerprint = :fingerprint
            """
            ),
            {"owner_id": str(owner_id), "fingerprint": fingerprint},
        )
        .mappings()
        .fetchone()
    )
    existing_id = UUID(str(existing["raw_message_id"])) if existing is not None else None
    if existing_id == raw_message_id:
        # Re-processing the message that owns the claim is not a duplicate.
        return
    raise DuplicateMessage(fingerprint=fingerprint, existing_message_id=existing_id)


def attach_booking(*, session: Session, owner_id: UUID, fingerprint: str, booking_id: UUID) -> None:
    session.execute(
        text(
            """
            UPDATE message_fingerprints
            SET booking_id = :booking_id
            WHERE owner_id = :owner_id
              AND fingerprint = :fingerprint
            """
        ),
        {"owner_id": str(owner_id), "fingerprint": fingerprint, "booking_id": str(booking_id)},
    )
