from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from booksync.core.crypto import CryptoError, Vault, looks_encrypted
from booksync.models.enums import AuthMethod
from booksync.models.identity import CredentialRecord, Owner
from booksync.services.audit import log_event


@dataclass(frozen=True)
class CredentialStatus:
    connected: bool
    auth_method: AuthMethod | None
    has_refresh_token: bool
    readable: bool
    access_token_expires_at: datetime | None

    @property
    def reconnect_required(self) -> bool:
        return not self.connected or not self.readable


def register_owner(*, session: Session, email: str, display_name: str | None) -> tuple[Owner, bool]:
    """Create the owner for ``email`` if missing. Returns (owner, created)."""
    row = session.execute(
        text(
            """
            INSERT INTO owners (email, display_name, created_at)
            VALUES (:email, :display_name, now())
            ON CONFLICT (email) DO NOTHING
            RETURNING id
            """
        ),
        {"email": email.strip(), "display_name": display_name},
    ).fetchone()
    created = row is not None

    owner = session.execute(select(Owner).where(Owner.email == email.strip())).scalars().one()
    if created:
        log_event(session=session, owner_id=owner.id, event_type="owners.registered", event_data={})
    return owner, created


def store_credentials(
    *,
    session: Session,
    vault: Vault,
    owner_id: UUID,
    access_token: str,
    refresh_token: str | None,
    expires_in: int | None,
    auth_method: AuthMethod,
    now: datetime | None = None,
) -> CredentialRecord:
    """Encrypt and upsert the owner's calendar tokens.

    A missing refresh token keeps the one already on file; Google only sends it
    on the first consent.
    """
    now = now or datetime.now(UTC)
    expires_at = now + timedelta(seconds=expires_in) if expires_in else None

    cred = session.execute(
        select(CredentialRecord).where(CredentialRecord.owner_id == owner_id).with_for_update()
    ).scalars().first()
    if cred is None:
        cred = CredentialRecord(
            owner_id=owner_id,
            access_token_ciphertext=vault.encrypt(access_token),
            refresh_token_ciphertext=vault.encrypt(refresh_token) if refresh_token else None,
            auth_method=auth_method,
            access_token_expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
    else:
        cred.access_token_ciphertext = vault.encrypt(access_token)
        if refresh_token:
            cred.refresh_token_ciphertext = vault.encrypt(refresh_token)
        cred.auth_method = auth_method
        cred.access_token_expires_at = expires_at
        cred.updated_at = now
    session.add(cred)
    session.flush()

    log_event(
        session=session,
        owner_id=owner_id,
        event_type="owners.credentials_stored",
        event_data={"auth_method": auth_method.value, "has_refresh_token": cred.refresh_token_ciphertext is not None},
    )
    return cred


def credential_status(*, session: Session, vault: Vault, owner_id: UUID) -> CredentialStatus:
    cred = session.get(CredentialRecord, owner_id)
    if cred is None:
        return CredentialStatus(
            connected=False,
            auth_method=None,
            has_refresh_token=False,
            readable=False,
            access_token_expires_at=None,
        )

    # Rows written outside the vault (plaintext imports) are never readable.
    blobs = [cred.access_token_ciphertext]
    if cred.refresh_token_ciphertext:
        blobs.append(cred.refresh_token_ciphertext)
    readable = all(looks_encrypted(blob) for blob in blobs)
    if readable:
        try:
            for blob in blobs:
                vault.decrypt(blob)
        except CryptoError:
            readable = False

    return CredentialStatus(
        connected=True,
        auth_method=cred.auth_method,
        has_refresh_token=cred.refresh_token_ciphertext is not None,
        readable=readable,
        access_token_expires_at=cred.access_token_expires_at,
    )
