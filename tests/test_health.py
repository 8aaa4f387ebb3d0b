from __future__ import annotations

from fastapi.testclient import TestClient

from booksync.core.crypto import Vault
from booksync.main import create_app


def test_healthz_ok(vault: Vault) -> None:
    app = create_app(vault=vault)
    client = TestClient(app)
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_readyz_checks_database(test_database: str, vault: Vault) -> None:
    client = TestClient(create_app(vault=vault))
    res = client.get("/readyz")
    assert res.status_code == 200
    assert res.json() == {"status": "ready"}


def test_readyz_without_vault_is_unavailable(test_database: str, vault: Vault) -> None:
    app = create_app(vault=vault)
    app.state.vault = None
    client = TestClient(app)
    assert client.get("/readyz").status_code == 503


def test_responses_carry_request_id_and_security_headers(vault: Vault) -> None:
    client = TestClient(create_app(vault=vault))

    res = client.get("/healthz", headers={"x-request-id": "req-123"})

    assert res.headers["x-request-id"] == "req-123"
    assert res.headers["x-content-type-options"] == "nosniff"
