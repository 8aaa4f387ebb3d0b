from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from booksync.core.config import Settings
from booksync.core.crypto import CryptoError, Vault
from booksync.core.metrics import observe_calendar_sync
from booksync.models.bookings import Booking
from booksync.models.enums import AuthMethod
from booksync.models.identity import CredentialRecord
from booksync.services.calendar.google import (
    GoogleCalendarApiError,
    GoogleCalendarClient,
    build_event_payload,
)
from booksync.services.google.oauth import GoogleOAuthError, refresh_access_token

logger = logging.getLogger("booksync.pipeline")

# Refresh a little before Google would start rejecting the token.
_EXPIRY_SKEW = timedelta(seconds=60)


class SyncError(RuntimeError):
    """Calendar write failed. The booking is untouched and the sync can be retried.

    ``reconnect_required`` means retrying is pointless until the owner reconnects
    their calendar (credentials missing, undecryptable or revoked).
    """

    def __init__(self, message: str, *, reconnect_required: bool = False) -> None:
        super().__init__(message)
        self.reconnect_required = reconnect_required


def event_title(*, service: str, client_name: str) -> str:
    return f"{service} - {client_name}"


class CalendarSyncAdapter:
    def __init__(
        self,
        *,
        vault: Vault,
        http_client: httpx.Client,
        session_factory: Callable[[], Session],
        settings: Settings,
    ) -> None:
        self._vault = vault
        self._http = http_client
        self._session_factory = session_factory
        self._settings = settings

    def sync(self, *, session: Session, booking: Booking) -> str:
        """Create the booking's calendar event, or update it in place when it already has one."""
        event = build_event_payload(
            title=event_title(service=booking.service, client_name=booking.customer_name),
            start=booking.appointment_time.astimezone(ZoneInfo(self._settings.CALENDAR_TIMEZONE)),
            duration_minutes=booking.duration_minutes,
            timezone_name=self._settings.CALENDAR_TIMEZONE,
        )
        client = self._calendar_client(session=session, owner_id=booking.owner_id)

        try:
            if booking.external_event_id:
                try:
                    event_id = client.update_event(booking.external_event_id, event)
                except GoogleCalendarApiError as e:
                    if not e.gone:
                        raise
                    logger.info(
                        "calendar event missing upstream, recreating booking_id=%s event_id=%s",
                        booking.id,
                        booking.external_event_id,
                    )
                    event_id = client.insert_event(event)
            else:
                event_id = client.insert_event(event)
        except GoogleCalendarApiError as e:
            observe_calendar_sync(result="failed")
            raise SyncError(str(e), reconnect_required=e.status_code in (401, 403)) from e
        except httpx.HTTPError as e:
            observe_calendar_sync(result="failed")
            raise SyncError(f"Google Calendar request failed: {e.__class__.__name__}") from e

        observe_calendar_sync(result="synced")
        return event_id

    def delete(self, *, session: Session, booking: Booking) -> None:
        if not booking.external_event_id:
            return
        client = self._calendar_client(session=session, owner_id=booking.owner_id)
        try:
            client.delete_event(booking.external_event_id)
        except GoogleCalendarApiError as e:
            if e.gone:
                return
            raise SyncError(str(e), reconnect_required=e.status_code in (401, 403)) from e
        except httpx.HTTPError as e:
            raise SyncError(f"Google Calendar request failed: {e.__class__.__name__}") from e

    def _calendar_client(self, *, session: Session, owner_id: UUID) -> GoogleCalendarClient:
        cred = session.get(CredentialRecord, owner_id)
        if cred is None:
            observe_calendar_sync(result="reconnect_required")
            raise SyncError("No calendar credentials on file", reconnect_required=True)

        seen = {"ciphertext": cred.access_token_ciphertext}
        try:
            access_token = self._vault.decrypt(cred.access_token_ciphertext)
        except CryptoError as e:
            observe_calendar_sync(result="reconnect_required")
            raise SyncError("Stored calendar credentials are unreadable", reconnect_required=True) from e

        expires_at = cred.access_token_expires_at
        if expires_at is not None and expires_at <= datetime.now(UTC) + _EXPIRY_SKEW:
            access_token, seen["ciphertext"] = self._refresh(owner_id=owner_id, stale_ciphertext=seen["ciphertext"])

        def refresh(_rejected: str) -> str:
            token, seen["ciphertext"] = self._refresh(owner_id=owner_id, stale_ciphertext=seen["ciphertext"])
            return token

        return GoogleCalendarClient(
            self._http,
            access_token=access_token,
            refresh=refresh,
            calendar_id=self._settings.GOOGLE_CALENDAR_ID,
        )

    def _oauth_client(self, auth_method: AuthMethod) -> tuple[str, str | None]:
        if auth_method == AuthMethod.ios:
            return self._settings.GOOGLE_IOS_CLIENT_ID, None
        return self._settings.GOOGLE_CLIENT_ID, self._settings.GOOGLE_CLIENT_SECRET

    def _refresh(self, *, owner_id: UUID, stale_ciphertext: str) -> tuple[str, str]:
        """Rotate the owner's access token and commit it before returning.

        Runs in its own short transaction holding the credential row lock, so
        concurrent refreshes for one owner are serialised. A token already
        rotated by someone else is reused as is.
        """
        refresh_session = self._session_factory()
        try:
            cred = (
                refresh_session.execute(
                    select(CredentialRecord).where(CredentialRecord.owner_id == owner_id).with_for_update()
                )
                .scalars()
                .first()
            )
            if cred is None:
                raise SyncError("No calendar credentials on file", reconnect_required=True)

            now = datetime.now(UTC)
            rotated = cred.access_token_ciphertext != stale_ciphertext
            fresh = cred.access_token_expires_at is None or cred.access_token_expires_at > now + _EXPIRY_SKEW
            if rotated and fresh:
                token = self._vault.decrypt(cred.access_token_ciphertext)
                refresh_session.commit()
                return token, cred.access_token_ciphertext

            if not cred.refresh_token_ciphertext:
                raise SyncError("No refresh token on file", reconnect_required=True)
            refresh_token = self._vault.decrypt(cred.refresh_token_ciphertext)

            client_id, client_secret = self._oauth_client(cred.auth_method)
            if not client_id:
                raise SyncError("Google OAuth is not configured")

            token_response = refresh_access_token(
                self._http,
                refresh_token=refresh_token,
                client_id=client_id,
                client_secret=client_secret,
            )

            ciphertext = self._vault.encrypt(token_response.access_token)
            cred.access_token_ciphertext = ciphertext
            if token_response.refresh_token:
                cred.refresh_token_ciphertext = self._vault.encrypt(token_response.refresh_token)
            cred.access_token_expires_at = now + timedelta(seconds=max(1, token_response.expires_in))
            cred.updated_at = now
            refresh_session.add(cred)
            refresh_session.commit()
            logger.info("calendar access token refreshed owner_id=%s", owner_id)
            return token_response.access_token, ciphertext
        except CryptoError as e:
            refresh_session.rollback()
            observe_calendar_sync(result="reconnect_required")
            raise SyncError("Stored calendar credentials are unreadable", reconnect_required=True) from e
        except GoogleOAuthError as e:
            refresh_session.rollback()
            raise SyncError(str(e), reconnect_required=e.revoked) from e
        except httpx.HTTPError as e:
            refresh_session.rollback()
            raise SyncError(f"Google token refresh failed: {e.__class__.__name__}") from e
        except Exception:
            refresh_session.rollback()
            raise
        finally:
            refresh_session.close()
