from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booksync.core.config import get_settings
from booksync.core.deps import require_owner
from booksync.db.session import get_session
from booksync.models.identity import Owner
from booksync.schemas.webhooks import (
    BatchIngestResponse,
    BatchItemResult,
    SmsWebhookResponse,
    SmsWebhookStatusResponse,
)
from booksync.services.ingest.payload import IngestionError, parse_batch_body, parse_inbound_body
from booksync.services.ingest.store import ingest_message, message_stats

logger = logging.getLogger("booksync.api")

router = APIRouter(prefix="/sms-webhook", tags=["sms-webhook"])


def _store_unavailable(e: SQLAlchemyError) -> HTTPException:
    logger.error("message store unavailable: %s", e.__class__.__name__)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Message store unavailable, retry later",
    )


def _ingestion_error_response(e: IngestionError) -> JSONResponse:
    content: dict[str, object] = {"success": False, "error": str(e)}
    if e.hint:
        content["hint"] = e.hint
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)


@router.post("", response_model=SmsWebhookResponse)
async def sms_webhook(
    request: Request,
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
) -> SmsWebhookResponse | JSONResponse:
    settings = get_settings()
    raw_body = await request.body()
    try:
        inbound = parse_inbound_body(
            raw_body,
            default_sender=settings.DEFAULT_SENDER,
            min_fallback_length=settings.MIN_FALLBACK_TEXT_LENGTH,
        )
    except IngestionError as e:
        return _ingestion_error_response(e)

    try:
        result = ingest_message(
            session=session,
            owner_id=owner.id,
            raw_text=inbound.text,
            sender=inbound.sender,
            retry_window_seconds=settings.MESSAGE_RETRY_WINDOW_SECONDS,
        )
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise _store_unavailable(e) from e

    return SmsWebhookResponse(success=True, message_id=result.message_id, duplicate=result.duplicate)


@router.get("", response_model=SmsWebhookStatusResponse)
def sms_webhook_status(
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
) -> SmsWebhookStatusResponse:
    try:
        stats = message_stats(session=session, owner_id=owner.id)
    except SQLAlchemyError as e:
        raise _store_unavailable(e) from e
    return SmsWebhookStatusResponse(
        status="active",
        user=owner.email,
        total_messages=stats.total,
        processed_messages=stats.processed,
        pending_messages=stats.pending,
    )


@router.post("/batch", response_model=BatchIngestResponse)
async def sms_webhook_batch(
    request: Request,
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
) -> BatchIngestResponse | JSONResponse:
    settings = get_settings()
    raw_body = await request.body()
    try:
        items = parse_batch_body(
            raw_body,
            default_sender=settings.DEFAULT_SENDER,
            min_fallback_length=settings.MIN_FALLBACK_TEXT_LENGTH,
        )
    except IngestionError as e:
        return _ingestion_error_response(e)

    results: list[BatchItemResult] = []
    try:
        for index, item in enumerate(items):
            if isinstance(item, IngestionError):
                results.append(BatchItemResult(index=index, success=False, error=str(item)))
                continue
            stored = ingest_message(
                session=session,
                owner_id=owner.id,
                raw_text=item.text,
                sender=item.sender,
                retry_window_seconds=settings.MESSAGE_RETRY_WINDOW_SECONDS,
            )
            results.append(
                BatchItemResult(
                    index=index,
                    success=True,
                    message_id=stored.message_id,
                    duplicate=stored.duplicate,
                )
            )
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise _store_unavailable(e) from e

    stored_count = sum(1 for r in results if r.success and not r.duplicate)
    duplicates = sum(1 for r in results if r.duplicate)
    failed = sum(1 for r in results if not r.success)
    return BatchIngestResponse(
        success=failed == 0,
        total=len(results),
        stored=stored_count,
        duplicates=duplicates,
        failed=failed,
        results=results,
    )
