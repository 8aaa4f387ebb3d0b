from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from uuid import UUID

import httpx
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.orm import Session

from booksync.core.config import get_settings
from booksync.core.crypto import Vault
from booksync.core.http import get_http_client
from booksync.main import create_app
from booksync.models.enums import AuthMethod
from booksync.services.bookings.reconciler import process_message
from booksync.services.ingest.store import ingest_message
from booksync.services.owners import register_owner, store_credentials

LOW_CONFIDENCE = "Alex Kim booked an appointment for Jan 5 at 3pm"


def _calendar_ok(request: httpx.Request) -> httpx.Response:
    if request.method == "DELETE":
        return httpx.Response(204)
    return httpx.Response(200, json={"id": "evt-1"})


def _client(vault: Vault, handler=_calendar_ok) -> TestClient:
    app = create_app(vault=vault)
    http_client = httpx.Client(transport=httpx.MockTransport(handler), timeout=10.0)

    def override_http_client() -> Generator[httpx.Client, None, None]:
        yield http_client

    app.dependency_overrides[get_http_client] = override_http_client
    return TestClient(app)


def _connect_calendar(session: Session, vault: Vault, owner_id: UUID) -> None:
    store_credentials(
        session=session,
        vault=vault,
        owner_id=owner_id,
        access_token="access-1",
        refresh_token="refresh-1",
        expires_in=3600,
        auth_method=AuthMethod.web,
    )
    session.commit()


def _needs_review_booking(session: Session, owner_id: UUID) -> str:
    ingested = ingest_message(
        session=session,
        owner_id=owner_id,
        raw_text=LOW_CONFIDENCE,
        sender="StyleSeat",
        retry_window_seconds=300,
    )
    result = process_message(session=session, message_id=ingested.message_id, settings=get_settings())
    session.commit()
    assert result.booking_id is not None
    return str(result.booking_id)


def _sync_jobs(session: Session, booking_id: str) -> int:
    return session.execute(
        text("SELECT count(*) FROM bg_jobs WHERE type = 'booking_sync' AND payload->>'booking_id' = :id"),
        {"id": booking_id},
    ).scalar_one()


def _future(days: int = 10) -> str:
    return (datetime.now(UTC).replace(microsecond=0) + timedelta(days=days)).isoformat()


def test_review_queue_lists_low_confidence_bookings(db_session: Session, owner, vault: Vault) -> None:
    booking_id = _needs_review_booking(db_session, owner.id)
    client = _client(vault)

    res = client.get(f"/bookings?user={owner.email}&status=needs_review")

    assert res.status_code == 200
    [item] = res.json()
    assert item["id"] == booking_id
    assert item["confidence"] == 0.7
    assert item["service"] == "Appointment"


def test_approve_with_edits_syncs_immediately(db_session: Session, owner, vault: Vault) -> None:
    _connect_calendar(db_session, vault, owner.id)
    booking_id = _needs_review_booking(db_session, owner.id)
    new_time = _future()
    client = _client(vault)

    res = client.post(
        f"/bookings/approve?user={owner.email}",
        json={
            "booking_id": booking_id,
            "customer_name": "Alex Kimura",
            "service": "Gel Manicure",
            "appointment_time": new_time,
        },
    )

    assert res.status_code == 200
    body = res.json()
    assert body["synced"] is True
    assert body["sync_error"] is None
    booking = body["booking"]
    assert booking["status"] == "auto_synced"
    assert booking["external_event_id"] == "evt-1"
    assert booking["customer_name"] == "Alex Kimura"
    assert booking["service"] == "Gel Manicure"
    assert datetime.fromisoformat(booking["appointment_time"]) == datetime.fromisoformat(new_time)


def test_approve_stands_when_calendar_is_down(db_session: Session, owner, vault: Vault) -> None:
    _connect_calendar(db_session, vault, owner.id)
    booking_id = _needs_review_booking(db_session, owner.id)
    client = _client(vault, lambda request: httpx.Response(503))

    res = client.post(f"/bookings/approve?user={owner.email}", json={"booking_id": booking_id})

    assert res.status_code == 200
    body = res.json()
    assert body["synced"] is False
    assert body["reconnect_required"] is False
    assert body["booking"]["status"] == "approved"
    assert "503" in body["booking"]["last_sync_error"]
    assert _sync_jobs(db_session, booking_id) == 1


def test_approve_without_calendar_asks_for_reconnect(db_session: Session, owner, vault: Vault) -> None:
    booking_id = _needs_review_booking(db_session, owner.id)
    client = _client(vault)

    res = client.post(f"/bookings/approve?user={owner.email}", json={"booking_id": booking_id})

    assert res.status_code == 200
    body = res.json()
    assert body["synced"] is False
    assert body["reconnect_required"] is True
    assert body["booking"]["status"] == "approved"
    assert _sync_jobs(db_session, booking_id) == 0


def test_approve_rejects_past_time(db_session: Session, owner, vault: Vault) -> None:
    booking_id = _needs_review_booking(db_session, owner.id)
    client = _client(vault)
    past = (datetime.now(UTC) - timedelta(days=1)).isoformat()

    res = client.post(
        f"/bookings/approve?user={owner.email}",
        json={"booking_id": booking_id, "appointment_time": past},
    )

    assert res.status_code == 422
    still = client.get(f"/bookings?user={owner.email}&status=needs_review").json()
    assert [b["id"] for b in still] == [booking_id]


def test_approve_rejects_naive_time(db_session: Session, owner, vault: Vault) -> None:
    booking_id = _needs_review_booking(db_session, owner.id)
    client = _client(vault)

    res = client.post(
        f"/bookings/approve?user={owner.email}",
        json={"booking_id": booking_id, "appointment_time": "2030-01-05T15:00:00"},
    )

    assert res.status_code == 422


def test_reject_then_approve_conflicts(db_session: Session, owner, vault: Vault) -> None:
    booking_id = _needs_review_booking(db_session, owner.id)
    client = _client(vault)

    res = client.post(f"/bookings/reject?user={owner.email}", json={"booking_id": booking_id})
    assert res.status_code == 200
    assert res.json()["status"] == "rejected"

    again = client.post(f"/bookings/approve?user={owner.email}", json={"booking_id": booking_id})
    assert again.status_code == 409


def test_bookings_are_scoped_to_their_owner(db_session: Session, owner, vault: Vault) -> None:
    booking_id = _needs_review_booking(db_session, owner.id)
    other, _ = register_owner(session=db_session, email=f"other-{owner.id.hex[:8]}@example.com", display_name=None)
    db_session.commit()
    client = _client(vault)

    res = client.post(f"/bookings/reject?user={other.email}", json={"booking_id": booking_id})

    assert res.status_code == 404


def test_manual_booking_sync_cancel_and_no_show(db_session: Session, owner, vault: Vault) -> None:
    _connect_calendar(db_session, vault, owner.id)
    client = _client(vault)

    created = client.post(
        f"/bookings?user={owner.email}",
        json={"customer_name": "Tasha Green", "service": "Silk Press", "appointment_time": _future(5)},
    )
    assert created.status_code == 201
    booking = created.json()
    assert booking["status"] == "pending"
    assert booking["source"] == "manual"
    assert booking["confidence"] == 1.0
    assert _sync_jobs(db_session, booking["id"]) == 1

    # Pending bookings are not reviewable.
    assert client.post(f"/bookings/approve?user={owner.email}", json={"booking_id": booking["id"]}).status_code == 409

    synced = client.post(f"/bookings/{booking['id']}/sync?user={owner.email}")
    assert synced.status_code == 200
    assert synced.json()["booking"]["status"] == "auto_synced"

    no_show = client.post(f"/bookings/{booking['id']}/no-show?user={owner.email}")
    assert no_show.status_code == 200

    cancelled = client.delete(f"/bookings/{booking['id']}?user={owner.email}")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert cancelled.json()["external_event_id"] is None

    assert client.post(f"/bookings/{booking['id']}/no-show?user={owner.email}").status_code == 409
    assert client.post(f"/bookings/{booking['id']}/sync?user={owner.email}").status_code == 409

    [tasha] = client.get(f"/clients?user={owner.email}").json()["clients"]
    assert tasha["canonical_name"] == "Tasha Green"
    assert tasha["booking_count"] == 1
    assert tasha["cancellation_count"] == 1
    assert tasha["no_show_count"] == 1


def test_manual_booking_in_the_past_is_rejected(db_session: Session, owner, vault: Vault) -> None:
    client = _client(vault)
    past = (datetime.now(UTC) - timedelta(hours=2)).isoformat()

    res = client.post(
        f"/bookings?user={owner.email}",
        json={"customer_name": "Tasha Green", "appointment_time": past},
    )

    assert res.status_code == 422


def test_approve_rechecks_overlaps_without_edits(db_session: Session, owner, vault: Vault) -> None:
    booking_id = _needs_review_booking(db_session, owner.id)
    client = _client(vault)
    [pending] = client.get(f"/bookings?user={owner.email}&status=needs_review").json()
    assert pending["review_reasons"] == []

    created = client.post(
        f"/bookings?user={owner.email}",
        json={"customer_name": "Tasha Green", "appointment_time": pending["appointment_time"]},
    )
    assert created.status_code == 201

    res = client.post(f"/bookings/approve?user={owner.email}", json={"booking_id": booking_id})

    assert res.status_code == 200
    [reason] = res.json()["booking"]["review_reasons"]
    assert reason.startswith("Overlaps with Tasha Green")
