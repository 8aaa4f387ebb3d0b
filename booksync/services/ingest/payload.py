from __future__ import annotations

from dataclasses import dataclass

import orjson

from booksync.services.ingest.normalize import normalize_message_text

# Checked in order; the first string value found wins.
MESSAGE_FIELD_NAMES: tuple[str, ...] = ("message", "text", "content", "sms", "body", "msg")


class IngestionError(ValueError):
    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


@dataclass(frozen=True)
class InboundPayload:
    text: str
    sender: str


def parse_inbound_body(
    raw_body: bytes,
    *,
    default_sender: str,
    min_fallback_length: int = 5,
) -> InboundPayload:
    """Locate the message text in a best-effort webhook body.

    JSON objects are searched by the known field names, then for the first string
    value longer than ``min_fallback_length``. A body that is not JSON is the text.
    """
    body_text = raw_body.decode("utf-8", errors="replace")
    try:
        payload = orjson.loads(raw_body) if raw_body.strip() else None
    except orjson.JSONDecodeError:
        payload = body_text

    message: str | None = None
    sender: str | None = None
    if isinstance(payload, str):
        message = payload
    elif isinstance(payload, dict):
        message = _find_message_field(payload, min_fallback_length=min_fallback_length)
        raw_sender = payload.get("sender")
        if isinstance(raw_sender, str):
            sender = normalize_message_text(raw_sender)

    text = normalize_message_text(message)
    if not text:
        raise IngestionError("No message found", hint='Send JSON with a "message" field')

    return InboundPayload(text=text, sender=sender or default_sender)


def _find_message_field(payload: dict, *, min_fallback_length: int) -> str | None:
    for field in MESSAGE_FIELD_NAMES:
        value = payload.get(field)
        if isinstance(value, str) and value.strip():
            return value

    for key, value in payload.items():
        if key == "sender":
            continue
        if isinstance(value, str) and len(value) > min_fallback_length:
            return value
    return None


def parse_batch_body(
    raw_body: bytes,
    *,
    default_sender: str,
    min_fallback_length: int = 5,
) -> list[InboundPayload | IngestionError]:
    """Split a ``{"messages": [...]}`` body into per-item payloads.

    Items may be plain strings or objects shaped like a single webhook body. A
    bad item is returned as its IngestionError so the rest still go through.
    """
    try:
        payload = orjson.loads(raw_body)
    except orjson.JSONDecodeError as e:
        raise IngestionError("Batch body must be JSON", hint='Send {"messages": [...]}') from e

    items = payload.get("messages") if isinstance(payload, dict) else payload
    if not isinstance(items, list) or not items:
        raise IngestionError("No messages found", hint='Send {"messages": [...]}')

    out: list[InboundPayload | IngestionError] = []
    for item in items:
        if isinstance(item, str):
            text = normalize_message_text(item)
            if text:
                out.append(InboundPayload(text=text, sender=default_sender))
            else:
                out.append(IngestionError("No message found"))
        elif isinstance(item, dict):
            try:
                out.append(
                    parse_inbound_body(
                        orjson.dumps(item),
                        default_sender=default_sender,
                        min_fallback_length=min_fallback_length,
                    )
                )
            except IngestionError as e:
                out.append(e)
        else:
            out.append(IngestionError("Unsupported message item"))
    return out
