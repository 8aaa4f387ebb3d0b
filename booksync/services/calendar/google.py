from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from urllib.parse import quote

import httpx

GOOGLE_CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"

# Receives the token that was rejected, returns a fresh one.
TokenRefresher = Callable[[str], str]


class GoogleCalendarApiError(RuntimeError):
    def __init__(self, *, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def gone(self) -> bool:
        return self.status_code in (404, 410)


def build_event_payload(
    *,
    title: str,
    start: datetime,
    duration_minutes: int,
    timezone_name: str,
    description: str | None = None,
) -> dict:
    end = start + timedelta(minutes=duration_minutes)
    payload: dict = {
        "summary": title,
        "start": {"dateTime": start.isoformat(), "timeZone": timezone_name},
        "end": {"dateTime": end.isoformat(), "timeZone": timezone_name},
    }
    if description:
        payload["description"] = description
    return payload


class GoogleCalendarClient:
    """Minimal Calendar v3 events client.

    A 401 triggers one call to ``refresh`` and a single retry with the new token.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        *,
        access_token: str,
        refresh: TokenRefresher | None = None,
        calendar_id: str = "primary",
    ) -> None:
        self._http = http_client
        self._access_token = access_token
        self._refresh = refresh
        self._events_url = f"{GOOGLE_CALENDAR_API_BASE}/calendars/{quote(calendar_id, safe='')}/events"

    def insert_event(self, event: dict) -> str:
        res = self._request("POST", self._events_url, json=event)
        return str(res.json()["id"])

    def update_event(self, event_id: str, event: dict) -> str:
        res = self._request("PUT", f"{self._events_url}/{quote(event_id, safe='')}", json=event)
        return str(res.json().get("id") or event_id)

    def delete_event(self, event_id: str) -> None:
        self._request("DELETE", f"{self._events_url}/{quote(event_id, safe='')}")

    def _send(self, method: str, url: str, json: dict | None) -> httpx.Response:
        return self._http.request(
            method,
            url,
            json=json,
            headers={"Authorization": f"Bearer {self._access_token}"},
        )

    def _request(self, method: str, url: str, *, json: dict | None = None) -> httpx.Response:
        res = self._send(method, url, json)
        if res.status_code == 401 and self._refresh is not None:
            self._access_token = self._refresh(self._access_token)
            res = self._send(method, url, json)

        if res.status_code >= 400:
            raise GoogleCalendarApiError(
                status_code=res.status_code,
                message=f"Google Calendar {method} failed with status {res.status_code}",
            )
        return res
