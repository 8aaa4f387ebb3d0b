from __future__ import annotations

from collections.abc import Generator
from functools import lru_cache
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from booksync.core.config import Settings, get_settings


def engine_options(settings: Settings) -> dict[str, Any]:
    return {
        "pool_pre_ping": True,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        # Names the API and worker connections in pg_stat_activity.
        "connect_args": {"application_name": settings.DB_APPLICATION_NAME},
    }


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    settings = get_settings()
    return create_engine(settings.DATABASE_URL, **engine_options(settings))


@lru_cache(maxsize=1)
def get_sessionmaker() -> sessionmaker[Session]:
    # Loaded bookings and credentials stay usable after commit; the worker and
    # the calendar adapter keep working with them.
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


def get_session() -> Generator[Session, None, None]:
    with get_sessionmaker()() as session:
        yield session
