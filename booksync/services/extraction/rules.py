from __future__ import annotations

import re
from dataclasses import dataclass

from booksync.services.extraction.types import CUSTOMER_NAME, DATE, SERVICE, TIME

FIELD_WEIGHTS: dict[str, float] = {
    CUSTOMER_NAME: 0.3,
    SERVICE: 0.3,
    DATE: 0.2,
    TIME: 0.2,
}


@dataclass(frozen=True)
class FieldRule:
    name: str
    pattern: re.Pattern[str]
    weight: float


_MONTH = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
_MONTH_DAY = _MONTH + r"\.?\s+\d{1,2}(?:st|nd|rd|th)?(?:,?\s+\d{4})?"
_CAP_NAME = r"([A-Z][A-Za-z'\-]*(?:[ \t]+[A-Z][A-Za-z'\-]*)*)"
# Up to three capitalised tokens.
_SHORT_CAP_NAME = r"([A-Z][A-Za-z'\-]*(?:[ \t]+[A-Z][A-Za-z'\-]*){0,2})"
_ANY_NAME = r"([A-Za-z][A-Za-z'\-]*(?:[ \t]+[A-Za-z][A-Za-z'\-]*)*?)"
_CLOCK = r"(\d{1,2}(?::\d{2})?\s*[ap]\.?\s?m\.?)(?![a-z])"
_LABEL_END = r"(?=\s*(?:[,;.\n]|$|\s+(?i:service|date|time|client|customer|on|at)\b))"


def _rule(field: str, name: str, pattern: str, flags: int = 0) -> FieldRule:
    return FieldRule(name=name, pattern=re.compile(pattern, flags), weight=FIELD_WEIGHTS[field])


# Ordered per field; the first rule that matches (and validates) wins. New platform
# formats go here, ahead of the generic fallbacks.
DEFAULT_RULES: dict[str, tuple[FieldRule, ...]] = {
    CUSTOMER_NAME: (
        _rule(CUSTOMER_NAME, "styleseat_booked", r"booked!\s+" + _ANY_NAME + r"\s+scheduled\b", re.I),
        _rule(CUSTOMER_NAME, "labelled", r"(?i:\b(?:client|customer|name))\s*:\s*" + _ANY_NAME + _LABEL_END),
        _rule(
            CUSTOMER_NAME,
            "name_then_verb",
            r"\b" + _SHORT_CAP_NAME + r"\s+(?i:has\s+|just\s+)?(?i:booked|scheduled|requested|reserved)\b",
        ),
        _rule(
            CUSTOMER_NAME,
            "appointment_with",
            r"(?i:\b(?:appointment|booking|session|request|visit))\s+(?i:with|for|from)\s+" + _CAP_NAME,
        ),
        _rule(CUSTOMER_NAME, "from_name_at", r"(?i:\b(?:from|with))\s+" + _CAP_NAME + r"\s+(?i:at|on|for)\b"),
    ),
    SERVICE: (
        _rule(SERVICE, "styleseat_scheduled", r"scheduled\s+an?\s+(.+?)\s+with\s+you\b", re.I),
        _rule(SERVICE, "labelled", r"(?i:\bservice)\s*:\s*([^\n,;]+?)" + _LABEL_END),
        _rule(
            SERVICE,
            "booked_a",
            r"\b(?:booked|scheduled|reserved|requested)\s+(?:an?\s+|your\s+)(.+?)\s+(?:with\s+you|for|on)\b",
            re.I,
        ),
    ),
    DATE: (
        _rule(DATE, "styleseat_on", r"with\s+you\s+on\s+(?:[a-z]+day,?\s+)?(" + _MONTH_DAY + r")\b", re.I),
        _rule(DATE, "month_day", r"\b(" + _MONTH_DAY + r")\b", re.I),
        _rule(DATE, "numeric", r"(?<![\d/])(\d{1,2}/\d{1,2}(?:/\d{2,4})?)(?![\d/])"),
    ),
    TIME: (
        _rule(TIME, "at_clock", r"\bat\s+" + _CLOCK, re.I),
        _rule(TIME, "bare_clock", r"\b" + _CLOCK, re.I),
    ),
}

# Greetings and headline words that precede a name in notification text.
NAME_LEAD_INS = frozenset(
    {
        "hey",
        "hi",
        "hello",
        "new",
        "booking",
        "appointment",
        "request",
        "alert",
        "reminder",
        "update",
        "congrats",
        "congratulations",
        "great",
        "news",
        "yay",
    }
)
