from __future__ import annotations

from fastapi.testclient import TestClient

from booksync.core.config import get_settings
from booksync.core.crypto import Vault
from booksync.main import create_app


def test_metrics_endpoint_exposes_http_metrics(test_database: str, vault: Vault) -> None:
    app = create_app(vault=vault)
    client = TestClient(app)

    assert client.get("/healthz").status_code == 200
    assert client.get("/readyz").status_code == 200

    res = client.get("/metrics")
    assert res.status_code == 200
    assert "text/plain" in (res.headers.get("content-type") or "")

    body = res.text
    assert "booksync_http_requests_total" in body
    assert "booksync_http_request_duration_seconds" in body
    assert "booksync_calendar_sync_total" in body
    assert 'path="/healthz"' in body


def test_metrics_endpoint_can_be_disabled(monkeypatch, vault: Vault) -> None:
    monkeypatch.setenv("ENABLE_PROMETHEUS_METRICS", "false")
    get_settings.cache_clear()
    try:
        app = create_app(vault=vault)
        client = TestClient(app)
        assert client.get("/metrics").status_code == 404
    finally:
        get_settings.cache_clear()


def test_rate_limit_is_keyed_per_owner(monkeypatch, vault: Vault) -> None:
    monkeypatch.setenv("RATE_LIMIT_REQUESTS_PER_MINUTE", "2")
    get_settings.cache_clear()
    try:
        client = TestClient(create_app(vault=vault))
        assert client.get("/healthz?user=a@example.com").status_code == 200
        assert client.get("/healthz?user=a@example.com").status_code == 200
        assert client.get("/healthz?user=a@example.com").status_code == 429
        # A different owner behind the same address is unaffected.
        assert client.get("/healthz?user=b@example.com").status_code == 200

        body = client.get("/metrics").text
        assert "booksync_http_rate_limited_total" in body
    finally:
        get_settings.cache_clear()
