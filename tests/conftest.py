from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import suppress
from pathlib import Path

import pytest
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from alembic import command
from booksync.core.crypto import Vault

TEST_ENCRYPTION_SECRET = "test-encryption-secret"


def _make_admin_url(url: URL) -> URL:
    # "postgres" is present in the official image and works for admin tasks.
    return url.set(database="postgres")


def _make_test_db_name() -> str:
    return f"booksync_test_{uuid.uuid4().hex}"


@pytest.fixture(scope="session", autouse=True)
def _test_settings() -> Generator[None, None, None]:
    os.environ.setdefault("APP_ENV", "test")
    os.environ["ENCRYPTION_SECRET"] = TEST_ENCRYPTION_SECRET
    os.environ["RATE_LIMIT_REQUESTS_PER_MINUTE"] = "0"
    os.environ.setdefault("GOOGLE_CLIENT_ID", "web-client-id")
    os.environ.setdefault("GOOGLE_CLIENT_SECRET", "web-client-secret")
    os.environ.setdefault("GOOGLE_IOS_CLIENT_ID", "ios-client-id")

    from booksync.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(scope="session")
def vault() -> Vault:
    return Vault.from_secret(secret=TEST_ENCRYPTION_SECRET)


@pytest.fixture(scope="session")
def test_database(_test_settings: None) -> Generator[str, None, None]:
    # Default points at the dev DB, but we always create an isolated database for tests.
    if "DATABASE_URL" in os.environ:
        base_url = os.environ["DATABASE_URL"]
    else:
        # Load repo-root `.env` (via Settings) so local dev can move Postgres off :5432.
        from booksync.core.config import get_settings

        base_url = get_settings().DATABASE_URL
    url = make_url(base_url)

    if url.host not in {"localhost", "127.0.0.1", None}:
        raise RuntimeError(
            "Refusing to run tests against a non-local DATABASE_URL host. "
            "Set DATABASE_URL to a local/dev Postgres instance."
        )

    db_name = _make_test_db_name()
    admin_engine = create_engine(
        _make_admin_url(url), isolation_level="AUTOCOMMIT", pool_pre_ping=True
    )

    try:
        with admin_engine.connect() as conn:
            conn.execute(text(f'CREATE DATABASE "{db_name}"'))
    except OperationalError:
        admin_engine.dispose()
        pytest.skip("PostgreSQL is not reachable; skipping database tests")

    test_url = url.set(database=db_name).render_as_string(hide_password=False)
    os.environ["DATABASE_URL"] = test_url

    # Clear cached settings/engines so imports inside the test session use the test DB.
    from booksync.core.config import get_settings
    from booksync.db.session import get_engine, get_sessionmaker

    get_settings.cache_clear()
    get_engine.cache_clear()
    get_sessionmaker.cache_clear()

    alembic_ini = Path(__file__).resolve().parents[1] / "alembic.ini"
    cfg = Config(str(alembic_ini))
    cfg.set_main_option("sqlalchemy.url", test_url)
    command.upgrade(cfg, "head")

    yield test_url

    # Ensure connection pools to the test DB are closed before dropping.
    with suppress(Exception):
        get_engine().dispose()
    get_engine.cache_clear()
    get_sessionmaker.cache_clear()
    get_settings.cache_clear()

    with admin_engine.connect() as conn:
        conn.execute(
            text(
                """
                SELECT pg_terminate_backend(pid)
                FROM pg_stat_activity
                WHERE datname = :db_name AND pid <> pg_backend_pid();
                """
            ),
            {"db_name": db_name},
        )
        conn.execute(text(f'DROP DATABASE IF EXISTS "{db_name}"'))

    admin_engine.dispose()


@pytest.fixture()
def db_session(test_database: str) -> Generator[Session, None, None]:
    from booksync.db.session import get_sessionmaker

    SessionLocal = get_sessionmaker()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def owner(db_session: Session):
    from booksync.services.owners import register_owner

    owner, _ = register_owner(
        session=db_session,
        email=f"stylist-{uuid.uuid4().hex[:10]}@example.com",
        display_name="Test Stylist",
    )
    db_session.commit()
    return owner
