from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from booksync.core.crypto import Vault
from booksync.core.deps import get_vault, require_owner
from booksync.db.session import get_session
from booksync.models.identity import Owner
from booksync.schemas.owners import (
    CredentialStatusResponse,
    OwnerOut,
    RegisterOwnerRequest,
    StoreCredentialsRequest,
)
from booksync.services.owners import credential_status, register_owner, store_credentials

router = APIRouter(prefix="/owners", tags=["owners"])


@router.post("/register", response_model=OwnerOut)
def owners_register(
    payload: RegisterOwnerRequest,
    response: Response,
    session: Session = Depends(get_session),
) -> OwnerOut:
    owner, created = register_owner(session=session, email=payload.email, display_name=payload.display_name)
    session.commit()
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return owner


@router.put("/credentials", response_model=CredentialStatusResponse)
def owners_store_credentials(
    payload: StoreCredentialsRequest,
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
    vault: Vault = Depends(get_vault),
) -> CredentialStatusResponse:
    store_credentials(
        session=session,
        vault=vault,
        owner_id=owner.id,
        access_token=payload.access_token,
        refresh_token=payload.refresh_token,
        expires_in=payload.expires_in,
        auth_method=payload.auth_method,
    )
    session.commit()
    return _status_response(session=session, vault=vault, owner=owner)


@router.get("/credentials/status", response_model=CredentialStatusResponse)
def owners_credential_status(
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
    vault: Vault = Depends(get_vault),
) -> CredentialStatusResponse:
    return _status_response(session=session, vault=vault, owner=owner)


def _status_response(*, session: Session, vault: Vault, owner: Owner) -> CredentialStatusResponse:
    st = credential_status(session=session, vault=vault, owner_id=owner.id)
    return CredentialStatusResponse(
        connected=st.connected,
        auth_method=st.auth_method,
        has_refresh_token=st.has_refresh_token,
        readable=st.readable,
        access_token_expires_at=st.access_token_expires_at,
        reconnect_required=st.reconnect_required,
    )
