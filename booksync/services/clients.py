from __future__ import annotations

import logging
import re
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from booksync.models.bookings import Client

logger = logging.getLogger("booksync.pipeline")

_WHITESPACE_RE = re.compile(r"\s+")


def clean_name(name: str) -> str:
    return _WHITESPACE_RE.sub(" ", name).strip()


def _tokens(name: str) -> list[str]:
    return [t for t in re.split(r"[\s.\-']+", name.casefold()) if t]


def _is_token_subsequence(short: list[str], long: list[str]) -> bool:
    it = iter(long)
    return all(any(tok == candidate for candidate in it) for tok in short)


def names_partially_match(a: str, b: str) -> bool:
    """Near-miss test: case-insensitive substring, or the shorter name's tokens in
    order inside the longer one ("Jane Smith" vs "Jane Marie Smith")."""
    left = clean_name(a).casefold()
    right = clean_name(b).casefold()
    if not left or not right:
        return False
    short, long = (left, right) if len(left) <= len(right) else (right, left)
    if short in long:
        return True
    short_tokens = _tokens(short)
    long_tokens = _tokens(long)
    if len(short_tokens) < 2:
        return False
    return _is_token_subsequence(short_tokens, long_tokens)


def _known_names(client: Client) -> list[str]:
    return [client.canonical_name, *(client.aliases or [])]


def _find_exact(*, session: Session, owner_id: UUID, name: str) -> Client | None:
    row = session.execute(
        text(
            """
            SELECT id
            FROM clients
            WHERE owner_id = :owner_id
              AND (
                lower(canonical_name) = lower(:name)
                OR EXISTS (SELECT 1 FROM unnest(aliases) AS a(alias) WHERE lower(a.alias) = lower(:name))
              )
            ORDER BY booking_count DESC, first_seen ASC
            LIMIT 1
            """
        ),
        {"owner_id": str(owner_id), "name": name},
    ).fetchone()
    if row is None:
        return None
    return session.get(Client, UUID(str(row[0])))


def _find_partial(*, session: Session, owner_id: UUID, name: str) -> Client | None:
    candidates = (
        session.execute(
            select(Client)
            .where(Client.owner_id == owner_id)
            .order_by(Client.booking_count.desc(), Client.first_seen.asc())
        )
        .scalars()
        .all()
    )
    for client in candidates:
        if any(names_partially_match(name, known) for known in _known_names(client)):
            return client
    return None


def _add_alias(*, session: Session, client_id: UUID, alias: str) -> None:
    session.execute(
        text(
            """
            UPDATE clients
            SET aliases = array_append(aliases, :alias)
            WHERE id = :id
              AND lower(canonical_name) <> lower(:alias)
              AND NOT EXISTS (SELECT 1 FROM unnest(aliases) AS a(alias) WHERE lower(a.alias) = lower(:alias))
            """
        ),
        {"id": str(client_id), "alias": alias},
    )


def _create(*, session: Session, owner_id: UUID, name: str, seen_at: datetime) -> UUID:
    row = session.execute(
        text(
            """
            INSERT INTO clients (owner_id, canonical_name, aliases, first_seen, last_seen)
            VALUES (:owner_id, :name, '{}', :seen_at, :seen_at)
            ON CONFLICT (owner_id, lower(canonical_name)) DO NOTHING
            RETURNING id
            """
        ),
        {"owner_id": str(owner_id), "name": name, "seen_at": seen_at},
    ).fetchone()
    if row is not None:
        return UUID(str(row[0]))

    # Lost a creation race; the winner's row is now visible.
    existing = session.execute(
        text(
            """
            SELECT id FROM clients
            WHERE owner_id = :owner_id AND lower(canonical_name) = lower(:name)
            """
        ),
        {"owner_id": str(owner_id), "name": name},
    ).fetchone()
    assert existing is not None
    return UUID(str(existing[0]))


def resolve(*, session: Session, owner_id: UUID, extracted_name: str, seen_at: datetime) -> UUID:
    """Map an extracted customer name to a client id, creating the client if needed.

    Exact (case-insensitive) hits on the canonical name or an alias win. A near
    miss reuses the best existing client and remembers the new spelling as an
    alias. Anything else becomes a new client.
    """
    name = clean_name(extracted_name)
    if not name:
        raise ValueError("extracted_name must not be blank")

    exact = _find_exact(session=session, owner_id=owner_id, name=name)
    if exact is not None:
        return exact.id

    partial = _find_partial(session=session, owner_id=owner_id, name=name)
    if partial is not None:
        _add_alias(session=session, client_id=partial.id, alias=name)
        session.expire(partial)
        logger.info("client near-match client_id=%s alias=%r", partial.id, name)
        return partial.id

    client_id = _create(session=session, owner_id=owner_id, name=name, seen_at=seen_at)
    logger.info("client created client_id=%s", client_id)
    return client_id


def record_booking(*, session: Session, client_id: UUID, at: datetime) -> None:
    session.execute(
        text(
            """
            UPDATE clients
            SET booking_count = booking_count + 1,
                last_seen = GREATEST(last_seen, :at)
            WHERE id = :id
            """
        ),
        {"id": str(client_id), "at": at},
    )


def record_cancellation(*, session: Session, client_id: UUID) -> None:
    session.execute(
        text("UPDATE clients SET cancellation_count = cancellation_count + 1 WHERE id = :id"),
        {"id": str(client_id)},
    )


def record_no_show(*, session: Session, client_id: UUID) -> None:
    session.execute(
        text("UPDATE clients SET no_show_count = no_show_count + 1 WHERE id = :id"),
        {"id": str(client_id)},
    )


def list_clients(*, session: Session, owner_id: UUID, limit: int = 200) -> list[Client]:
    return list(
        session.execute(
            select(Client)
            .where(Client.owner_id == owner_id)
            .order_by(Client.last_seen.desc(), Client.canonical_name.asc())
            .limit(limit)
        )
        .scalars()
        .all()
    )
