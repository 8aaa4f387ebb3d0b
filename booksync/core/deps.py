from __future__ import annotations

from collections.abc import Generator

import httpx
from fastapi import Depends, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booksync.core.config import get_settings
from booksync.core.crypto import Vault
from booksync.core.http import get_http_client
from booksync.db.session import get_session, get_sessionmaker
from booksync.models.identity import Owner
from booksync.services.calendar.sync import CalendarSyncAdapter


def get_vault(request: Request) -> Vault:
    vault = getattr(request.app.state, "vault", None)
    if vault is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Credential vault is not configured",
        )
    return vault


def require_owner(
    user: str = Query(..., min_length=3, max_length=320, description="Owner email"),
    session: Session = Depends(get_session),
) -> Owner:
    email = user.strip()
    if "@" not in email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid user parameter")

    try:
        owner = session.execute(select(Owner).where(Owner.email == email)).scalars().first()
    except SQLAlchemyError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Message store unavailable, retry later",
        ) from e
    if owner is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return owner


def get_calendar_adapter(
    vault: Vault = Depends(get_vault),
    http_client: httpx.Client = Depends(get_http_client),
) -> Generator[CalendarSyncAdapter, None, None]:
    yield CalendarSyncAdapter(
        vault=vault,
        http_client=http_client,
        session_factory=get_sessionmaker(),
        settings=get_settings(),
    )
