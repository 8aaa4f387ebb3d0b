from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from booksync.core.metrics import observe_message_ingested
from booksync.models.enums import JobType
from booksync.worker.queue import enqueue_job

logger = logging.getLogger("booksync.pipeline")


@dataclass(frozen=True)
class IngestResult:
    message_id: UUID
    duplicate: bool


@dataclass(frozen=True)
class MessageStats:
    total: int
    processed: int
    pending: int


def ingest_message(
    *,
    session: Session,
    owner_id: UUID,
    raw_text: str,
    sender: str,
    retry_window_seconds: int,
) -> IngestResult:
    """Durably record an inbound message before any parsing happens.

    Byte-identical text from the same owner inside the retry window is a transport
    retry: the earlier row is returned with ``duplicate=True`` and nothing is queued.
    Database errors propagate; the caller must surface them.
    """
    # Serialise the window check + insert for this (owner, text) pair.
    session.execute(
        text("SELECT pg_advisory_xact_lock(hashtextextended(:key, 0))"),
        {"key": f"raw_messages:{owner_id}:{raw_text}"},
    )

    existing = (
        session.execute(
            text(
                """
            SELECT id
            FROM raw_messages
            WHERE owner_id = :owner_id
              AND text = :text
              AND received_at >= now() - (:window * interval '1 second')
            ORDER BY received_at DESC
            LIMIT 1
            """
            ),
            {"owner_id": str(owner_id), "text": raw_text, "window": retry_window_seconds},
        )
        .mappings()
        .fetchone()
    )
    if existing is not None:
        message_id = UUID(str(existing["id"]))
        logger.info("raw message duplicate within retry window message_id=%s", message_id)
        observe_message_ingested(duplicate=True)
        return IngestResult(message_id=message_id, duplicate=True)

    row = (
        session.execute(
            text(
                """
            INSERT INTO raw_messages (owner_id, text, sender, received_at, processed)
            VALUES (:owner_id, :text, :sender, now(), false)
            RETURNING id
            """
            ),
            {"owner_id": str(owner_id), "text": raw_text, "sender": sender},
        )
        .mappings()
        .fetchone()
    )
    assert row is not None
    message_id = UUID(str(row["id"]))

    enqueue_job(
        session=session,
        job_type=JobType.message_process,
        owner_id=owner_id,
        payload={"raw_message_id": str(message_id)},
        dedupe_key=f"message_process:{message_id}",
    )
    observe_message_ingested(duplicate=False)
    logger.info("raw message stored message_id=%s sender=%s", message_id, sender)
    return IngestResult(message_id=message_id, duplicate=False)


def mark_processed(*, session: Session, message_id: UUID) -> None:
    session.execute(
        text("UPDATE raw_messages SET processed = true WHERE id = :id AND processed = false"),
        {"id": str(message_id)},
    )


def load_message_for_processing(*, session: Session, message_id: UUID) -> dict | None:
    row = (
        session.execute(
            text(
                """
            SELECT id, owner_id, text, sender, received_at, processed
            FROM raw_messages
            WHERE id = :id
            FOR UPDATE
            """
            ),
            {"id": str(message_id)},
        )
        .mappings()
        .fetchone()
    )
    return dict(row) if row is not None else None


def message_stats(*, session: Session, owner_id: UUID) -> MessageStats:
    row = (
        session.execute(
            text(
                """
            SELECT count(*) AS total,
                   count(*) FILTER (WHERE processed) AS processed
            FROM raw_messages
            WHERE owner_id = :owner_id
            """
            ),
            {"owner_id": str(owner_id)},
        )
        .mappings()
        .one()
    )
    total = int(row["total"])
    processed = int(row["processed"])
    return MessageStats(total=total, processed=processed, pending=total - processed)


def list_messages(*, session: Session, owner_id: UUID, limit: int) -> list[dict]:
    rows = (
        session.execute(
            text(
                """
            SELECT m.id, m.text, m.sender, m.received_at, m.processed, b.id AS booking_id
            FROM raw_messages m
            LEFT JOIN bookings b ON b.raw_message_id = m.id
            WHERE m.owner_id = :owner_id
            ORDER BY m.received_at DESC
            LIMIT :limit
            """
            ),
            {"owner_id": str(owner_id), "limit": limit},
        )
        .mappings()
        .all()
    )
    return [dict(r) for r in rows]
