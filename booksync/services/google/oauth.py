from __future__ import annotations

from dataclasses import dataclass

import httpx

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"


class GoogleOAuthError(RuntimeError):
    def __init__(self, *, status_code: int, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code

    @property
    def revoked(self) -> bool:
        # invalid_grant: the refresh token was revoked or expired; only a reconnect helps.
        return self.error_code == "invalid_grant"


@dataclass(frozen=True)
class GoogleTokenResponse:
    access_token: str
    expires_in: int
    refresh_token: str | None
    scope: str | None
    token_type: str | None


def refresh_access_token(
    client: httpx.Client,
    *,
    refresh_token: str,
    client_id: str,
    client_secret: str | None,
) -> GoogleTokenResponse:
    """Exchange a refresh token for a new access token.

    Installed-app (iOS) clients have no secret; the parameter is omitted for them.
    """
    data = {
        "refresh_token": refresh_token,
        "client_id": client_id,
        "grant_type": "refresh_token",
    }
    if client_secret:
        data["client_secret"] = client_secret

    res = client.post(
        GOOGLE_OAUTH_TOKEN_URL,
        data=data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )

    if res.status_code >= 400:
        # Avoid leaking raw upstream payload (might contain details we don't want to log/return).
        error_code = None
        try:
            error_code = res.json().get("error")
        except ValueError:
            pass
        raise GoogleOAuthError(
            status_code=res.status_code,
            message="Google access token refresh failed",
            error_code=error_code,
        )

    payload = res.json()
    return GoogleTokenResponse(
        access_token=payload["access_token"],
        expires_in=int(payload.get("expires_in") or 0),
        refresh_token=payload.get("refresh_token"),
        scope=payload.get("scope"),
        token_type=payload.get("token_type"),
    )
