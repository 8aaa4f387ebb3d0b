from __future__ import annotations

import re

# Transport layers (iOS Shortcuts, JSON re-encoding) escape punctuation as "\!" or "\'".
_ESCAPED_PUNCT_RE = re.compile(r"\\([^\w\s\\])")
_WHITESPACE_RE = re.compile(r"\s+")


def collapse_escapes(value: str) -> str:
    return _ESCAPED_PUNCT_RE.sub(r"\1", value)


def normalize_message_text(value: str | None) -> str | None:
    if value is None:
        return None
    # Postgres text columns cannot hold NUL.
    s = value.replace("\x00", "").strip()
    return s or None


def normalize_for_fingerprint(value: str) -> str:
    s = collapse_escapes(value)
    s = _WHITESPACE_RE.sub(" ", s).strip()
    return s.casefold()
