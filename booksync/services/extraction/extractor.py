from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from booksync.services.extraction.rules import DEFAULT_RULES, NAME_LEAD_INS, FieldRule
from booksync.services.extraction.types import (
    CUSTOMER_NAME,
    DATE,
    FIELDS,
    REQUIRED_FIELDS,
    SERVICE,
    TIME,
    ExtractionMiss,
    ExtractionResult,
)
from booksync.services.ingest.normalize import collapse_escapes

_CLOCK_PARTS_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*([ap])\.?\s?m\.?$", re.IGNORECASE)
_MONTH_DAY_PARTS_RE = re.compile(
    r"^(?P<month>[a-z]+)\.?\s+(?P<day>\d{1,2})(?:st|nd|rd|th)?(?:,?\s+(?P<year>\d{4}))?$",
    re.IGNORECASE,
)
_NUMERIC_DATE_PARTS_RE = re.compile(r"^(?P<month>\d{1,2})/(?P<day>\d{1,2})(?:/(?P<year>\d{2,4}))?$")
_WHITESPACE_RE = re.compile(r"\s+")

_MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

# Captures that name the booking rather than the service.
_GENERIC_SERVICE_WORDS = {"appointment", "booking", "session", "visit", "time", "slot"}
_MAX_SERVICE_LENGTH = 80


def parse_clock(value: str) -> time | None:
    """Parse a 12-hour clock reading such as ``2:00 PM``, ``2pm`` or ``10:30 a.m.``."""
    m = _CLOCK_PARTS_RE.match(value.strip())
    if m is None:
        return None
    hour = int(m.group(1))
    minute = int(m.group(2) or 0)
    if hour < 1 or hour > 12 or minute > 59:
        return None
    meridiem = m.group(3).lower()
    if meridiem == "a":
        hour = 0 if hour == 12 else hour
    else:
        hour = 12 if hour == 12 else hour + 12
    return time(hour=hour, minute=minute)


def parse_date_part(value: str) -> tuple[int, int, int | None] | None:
    """Split a date phrase into (month, day, year-or-None) without applying any calendar."""
    s = _WHITESPACE_RE.sub(" ", value.strip())
    m = _MONTH_DAY_PARTS_RE.match(s)
    if m is not None:
        month = _MONTHS.get(m.group("month")[:3].lower())
    else:
        m = _NUMERIC_DATE_PARTS_RE.match(s)
        if m is None:
            return None
        month = int(m.group("month"))
    if month is None or month < 1 or month > 12:
        return None

    day = int(m.group("day"))
    if day < 1 or day > 31:
        return None

    year_raw = m.group("year")
    year: int | None = None
    if year_raw:
        year = int(year_raw)
        if year < 100:
            year += 2000
    return month, day, year


def _drop_lead_ins(value: str) -> str:
    tokens = value.split(" ")
    while tokens and tokens[0].lower() in NAME_LEAD_INS:
        tokens.pop(0)
    return " ".join(tokens)


def _validate(field: str, value: str) -> str | None:
    value = _WHITESPACE_RE.sub(" ", value).strip()
    if field == TIME:
        # "p.m." keeps its closing dot.
        return value if value and parse_clock(value) is not None else None
    value = value.strip(" \t-:,.")
    if field == CUSTOMER_NAME:
        value = _drop_lead_ins(value)
    if not value:
        return None
    if field == DATE:
        return value if parse_date_part(value) is not None else None
    if field == SERVICE:
        if value.lower() in _GENERIC_SERVICE_WORDS or len(value) > _MAX_SERVICE_LENGTH:
            return None
    return value


def _first_match(field: str, text: str, rules: tuple[FieldRule, ...]) -> tuple[str, FieldRule] | None:
    for rule in rules:
        for m in rule.pattern.finditer(text):
            value = _validate(field, m.group(1))
            if value is not None:
                return value, rule
    return None


def extract(
    raw_text: str,
    *,
    rules: Mapping[str, tuple[FieldRule, ...]] = DEFAULT_RULES,
) -> ExtractionResult:
    """Pull customer, service, date and time out of a booking notification.

    Each field is scored with the weight of the rule that matched it; the
    aggregate is the sum. Raises ExtractionMiss when the customer name or the
    time of day cannot be found.
    """
    text = collapse_escapes(raw_text)

    values: dict[str, str | None] = {}
    confidence: dict[str, float] = {}
    matched_rules: dict[str, str] = {}
    for field in FIELDS:
        hit = _first_match(field, text, tuple(rules.get(field, ())))
        if hit is None:
            values[field] = None
            confidence[field] = 0.0
            continue
        value, rule = hit
        values[field] = value
        confidence[field] = rule.weight
        matched_rules[field] = rule.name

    missing = tuple(f for f in REQUIRED_FIELDS if not values.get(f))
    if missing:
        raise ExtractionMiss(missing)

    time_part = values[TIME]
    assert time_part is not None
    clock = parse_clock(time_part)
    assert clock is not None

    return ExtractionResult(
        customer_name=values[CUSTOMER_NAME] or "",
        service=values[SERVICE],
        date_part=values[DATE],
        time_part=time_part,
        time_24h=clock.strftime("%H:%M"),
        per_field_confidence=confidence,
        aggregate_confidence=round(sum(confidence.values()), 4),
        matched_rules=matched_rules,
    )


def resolve_appointment_date(date_part: str | None, *, today: date) -> date:
    """Date for a booking: today when absent; a year-less date already past rolls forward."""
    if not date_part:
        return today
    parts = parse_date_part(date_part)
    if parts is None:
        return today
    month, day, year = parts

    if year is not None:
        try:
            return date(year, month, day)
        except ValueError:
            return today

    # Booking platforms never announce past dates; Feb 29 waits for the next leap year.
    for candidate_year in range(today.year, today.year + 5):
        try:
            candidate = date(candidate_year, month, day)
        except ValueError:
            continue
        if candidate >= today:
            return candidate
    return today


def resolve_appointment_time(result: ExtractionResult, *, now: datetime, tz: ZoneInfo) -> datetime:
    local_now = now.astimezone(tz)
    appointment_date = resolve_appointment_date(result.date_part, today=local_now.date())
    clock = parse_clock(result.time_part)
    assert clock is not None
    return datetime.combine(appointment_date, clock, tzinfo=tz)
