from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from booksync.core.config import get_settings
from booksync.core.crypto import Vault
from booksync.core.metrics import observe_http_request
from booksync.core.middleware import (
    RateLimiter,
    apply_security_headers,
    build_request_id,
    log_request_completion,
    now_ts,
    rate_limit_key,
    rate_limit_response,
    request_id_ctx,
)
from booksync.core.otel import setup_otel
from booksync.routers.bookings import router as bookings_router
from booksync.routers.clients import router as clients_router
from booksync.routers.health import router as health_router
from booksync.routers.messages import router as messages_router
from booksync.routers.owners import router as owners_router
from booksync.routers.webhooks import router as webhooks_router


def create_app(*, vault: Vault | None = None) -> FastAPI:
    app = FastAPI(title="Booksync API")

    settings = get_settings()
    app.state.vault = vault or Vault.from_settings(settings)

    rate_limiter = (
        RateLimiter(max_requests=settings.RATE_LIMIT_REQUESTS_PER_MINUTE)
        if settings.RATE_LIMIT_REQUESTS_PER_MINUTE > 0
        else None
    )
    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers_and_request_context(request, call_next):  # type: ignore[no-untyped-def]
        request_id = build_request_id(request, header_name=settings.REQUEST_ID_HEADER)
        token = request_id_ctx.set(request_id)
        start_ts = now_ts()
        method = request.method
        path = request.url.path
        response = None
        blocked = False
        status_code = 500

        try:
            if rate_limiter is not None and path != settings.PROMETHEUS_METRICS_PATH:
                key = rate_limit_key(request)
                if not rate_limiter.allow(key, now_ts=now_ts()):
                    blocked = True
                    response = rate_limit_response()

            if response is None:
                response = await call_next(request)

            status_code = response.status_code
            response.headers[settings.REQUEST_ID_HEADER] = request_id
            apply_security_headers(response, settings=settings)
            return response
        finally:
            duration_ms = int((now_ts() - start_ts) * 1000)
            route = request.scope.get("route")
            route_path = getattr(route, "path", None) or path
            log_request_completion(
                request_id=request_id,
                method=method,
                path=path,
                status_code=status_code,
                duration_ms=duration_ms,
                rate_limited=blocked,
            )
            if settings.ENABLE_PROMETHEUS_METRICS:
                observe_http_request(
                    method=method,
                    path=route_path,
                    status_code=status_code,
                    duration_ms=duration_ms,
                    rate_limited=blocked,
                )
            request_id_ctx.reset(token)

    if settings.ENABLE_PROMETHEUS_METRICS:

        @app.get(settings.PROMETHEUS_METRICS_PATH, include_in_schema=False)
        def metrics() -> Response:
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    otel = setup_otel(app=app, settings=settings)
    app.state.otel_tracing_enabled = otel.enabled
    app.state.otel_tracing_reason = otel.reason
    if otel.shutdown is not None:
        app.add_event_handler("shutdown", otel.shutdown)

    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(bookings_router)
    app.include_router(clients_router)
    app.include_router(messages_router)
    app.include_router(owners_router)
    return app


app = create_app()
