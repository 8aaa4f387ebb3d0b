from __future__ import annotations

import os
import sys

import httpx

SAMPLE_SMS = "You just got booked! Smoke Test scheduled a Haircut with you on Dec 31 at 9:00 AM"


def _assert_ok(response: httpx.Response, *, label: str) -> None:
    if response.status_code >= 400:
        raise RuntimeError(f"{label} failed: HTTP {response.status_code} body={response.text}")


def main() -> None:
    base_url = os.environ.get("API_BASE_URL", "http://localhost:8000")
    email = os.environ.get("SMOKE_EMAIL", "smoke-owner@example.com")

    with httpx.Client(base_url=base_url, timeout=20.0) as client:
        health = client.get("/healthz")
        _assert_ok(health, label="GET /healthz")
        print("ok: GET /healthz")

        ready = client.get("/readyz")
        _assert_ok(ready, label="GET /readyz")
        print("ok: GET /readyz")

        register = client.post("/owners/register", json={"email": email, "display_name": "Smoke Owner"})
        _assert_ok(register, label="POST /owners/register")
        owner = register.json()
        print("ok: POST /owners/register")

        params = {"user": email}
        webhook = client.post("/sms-webhook", params=params, json={"message": SAMPLE_SMS})
        _assert_ok(webhook, label="POST /sms-webhook")
        print(f"ok: POST /sms-webhook duplicate={webhook.json()['duplicate']}")

        stats = client.get("/sms-webhook", params=params)
        _assert_ok(stats, label="GET /sms-webhook")
        print("ok: GET /sms-webhook")

        bookings = client.get("/bookings", params={**params, "status": "needs_review"})
        _assert_ok(bookings, label="GET /bookings")
        print("ok: GET /bookings")

        creds = client.get("/owners/credentials/status", params=params)
        _assert_ok(creds, label="GET /owners/credentials/status")
        print("ok: GET /owners/credentials/status")

        data = stats.json()
        print(
            f"smoke complete: owner={owner['email']} ({owner['id']}) "
            f"messages={data['total_messages']} pending={data['pending_messages']}"
        )


if __name__ == "__main__":
    try:
        main()
    except Exception as exc:  # noqa: BLE001
        print(f"smoke failed: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
