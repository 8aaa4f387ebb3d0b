from __future__ import annotations

from prometheus_client import Counter, Histogram

_HTTP_REQUESTS_TOTAL = Counter(
    "booksync_http_requests_total",
    "Total HTTP requests handled by the API.",
    labelnames=("method", "path", "status_code"),
)
_HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "booksync_http_request_duration_seconds",
    "HTTP request duration in seconds.",
    labelnames=("method", "path"),
)
_HTTP_RATE_LIMITED_TOTAL = Counter(
    "booksync_http_rate_limited_total",
    "Total HTTP requests blocked by rate limiting.",
    labelnames=("method", "path"),
)
_MESSAGES_INGESTED_TOTAL = Counter(
    "booksync_messages_ingested_total",
    "Inbound messages accepted by the message store.",
    labelnames=("duplicate",),
)
_EXTRACTION_OUTCOMES_TOTAL = Counter(
    "booksync_extraction_outcomes_total",
    "Message processing outcomes (booking created, extraction miss, duplicate fingerprint).",
    labelnames=("outcome",),
)
_BOOKINGS_CREATED_TOTAL = Counter(
    "booksync_bookings_created_total",
    "Bookings created, by initial status.",
    labelnames=("status",),
)
_CALENDAR_SYNC_TOTAL = Counter(
    "booksync_calendar_sync_total",
    "Calendar sync attempts, by result.",
    labelnames=("result",),
)


def observe_http_request(
    *,
    method: str,
    path: str,
    status_code: int,
    duration_ms: int,
    rate_limited: bool,
) -> None:
    safe_path = path or "unknown"
    safe_method = method or "UNKNOWN"

    _HTTP_REQUESTS_TOTAL.labels(
        method=safe_method,
        path=safe_path,
        status_code=str(status_code),
    ).inc()
    _HTTP_REQUEST_DURATION_SECONDS.labels(method=safe_method, path=safe_path).observe(
        max(0.0, duration_ms / 1000.0)
    )
    if rate_limited:
        _HTTP_RATE_LIMITED_TOTAL.labels(method=safe_method, path=safe_path).inc()


def observe_message_ingested(*, duplicate: bool) -> None:
    _MESSAGES_INGESTED_TOTAL.labels(duplicate="true" if duplicate else "false").inc()


def observe_extraction_outcome(outcome: str) -> None:
    _EXTRACTION_OUTCOMES_TOTAL.labels(outcome=outcome).inc()


def observe_booking_created(*, status: str) -> None:
    _BOOKINGS_CREATED_TOTAL.labels(status=status).inc()


def observe_calendar_sync(*, result: str) -> None:
    _CALENDAR_SYNC_TOTAL.labels(result=result).inc()
