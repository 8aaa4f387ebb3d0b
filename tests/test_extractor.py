from __future__ import annotations

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from booksync.services.extraction.extractor import (
    extract,
    parse_clock,
    parse_date_part,
    resolve_appointment_date,
    resolve_appointment_time,
)
from booksync.services.extraction.types import ExtractionMiss

NY = ZoneInfo("America/New_York")

STYLESEAT = "You just got booked! Jane Smith scheduled a Haircut with you on Jan 20 at 2:00 PM"


def test_styleseat_booking_extracts_every_field_at_full_confidence() -> None:
    result = extract(STYLESEAT)

    assert result.customer_name == "Jane Smith"
    assert result.service == "Haircut"
    assert result.date_part == "Jan 20"
    assert result.time_part == "2:00 PM"
    assert result.time_24h == "14:00"
    assert result.aggregate_confidence == 1.0
    assert result.per_field_confidence == {
        "customer_name": 0.3,
        "service": 0.3,
        "date": 0.2,
        "time": 0.2,
    }
    assert result.matched_rules["customer_name"] == "styleseat_booked"


def test_name_and_time_only_scores_half() -> None:
    result = extract("New appointment request from Sam at 10:00 AM")

    assert result.customer_name == "Sam"
    assert result.service is None
    assert result.date_part is None
    assert result.time_24h == "10:00"
    assert result.aggregate_confidence == 0.5
    assert result.per_field_confidence["service"] == 0.0
    assert result.per_field_confidence["date"] == 0.0


def test_missing_time_is_a_miss() -> None:
    with pytest.raises(ExtractionMiss) as exc:
        extract("You just got booked! Jane Smith scheduled a Haircut with you on Jan 20")
    assert exc.value.missing == ("time",)


def test_unrecognised_text_misses_name_and_time() -> None:
    with pytest.raises(ExtractionMiss) as exc:
        extract("Your verification code is 123456")
    assert set(exc.value.missing) == {"customer_name", "time"}


def test_escaped_punctuation_is_collapsed_before_matching() -> None:
    escaped = "You just got booked\\! Jane O\\'Neil scheduled a Color with you on Feb 3 at 1pm"
    result = extract(escaped)
    assert result.customer_name == "Jane O'Neil"
    assert result.service == "Color"
    assert result.time_24h == "13:00"


def test_labelled_format() -> None:
    result = extract("Client: Maria Lopez, Service: Braids, Date: 3/14, Time: 9:30am")
    assert result.customer_name == "Maria Lopez"
    assert result.service == "Braids"
    assert result.date_part == "3/14"
    assert result.time_24h == "09:30"
    assert result.aggregate_confidence == 1.0


def test_name_then_verb_format() -> None:
    result = extract("Tasha Green booked a Silk Press for March 3rd at 11 a.m.")
    assert result.customer_name == "Tasha Green"
    assert result.service == "Silk Press"
    assert result.date_part == "March 3rd"
    assert result.time_24h == "11:00"
    assert result.time_part == "11 a.m."


@pytest.mark.parametrize(
    "raw",
    [
        "Hey Jane Smith booked a Haircut for Jan 20 at 2pm",
        "New Booking Jane Smith booked a Haircut on Jan 20 at 2pm",
        "Hi Jane Smith has booked a Haircut on Jan 20 at 2pm",
    ],
)
def test_leading_words_are_not_part_of_the_name(raw: str) -> None:
    result = extract(raw)
    assert result.customer_name == "Jane Smith"
    assert result.matched_rules["customer_name"] == "name_then_verb"


def test_generic_service_word_is_not_a_service() -> None:
    result = extract("Alex Kim booked an appointment for Jan 5 at 3pm")
    assert result.customer_name == "Alex Kim"
    assert result.service is None
    assert result.aggregate_confidence == pytest.approx(0.7)


def test_invalid_clock_reading_does_not_match() -> None:
    with pytest.raises(ExtractionMiss):
        extract("Appointment with Sam at 13:00 PM")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2:00 PM", time(14, 0)),
        ("2:00pm", time(14, 0)),
        ("2PM", time(14, 0)),
        ("10:30 a.m.", time(10, 30)),
        ("12:15 AM", time(0, 15)),
        ("12 pm", time(12, 0)),
        ("11:59 p.m", time(23, 59)),
    ],
)
def test_parse_clock_normalises_to_24_hour(raw: str, expected: time) -> None:
    assert parse_clock(raw) == expected


@pytest.mark.parametrize("raw", ["0:30 PM", "13 PM", "10:60 AM", "10:00", "noon"])
def test_parse_clock_rejects_invalid(raw: str) -> None:
    assert parse_clock(raw) is None


def test_parse_date_part_forms() -> None:
    assert parse_date_part("Jan 20") == (1, 20, None)
    assert parse_date_part("September 2nd, 2027") == (9, 2, 2027)
    assert parse_date_part("3/14") == (3, 14, None)
    assert parse_date_part("3/14/27") == (3, 14, 2027)
    assert parse_date_part("13/40") is None


def test_yearless_date_in_the_past_rolls_forward_one_year() -> None:
    today = date(2026, 10, 19)
    assert resolve_appointment_date("Jan 20", today=today) == date(2027, 1, 20)
    assert resolve_appointment_date("Oct 19", today=today) == date(2026, 10, 19)
    assert resolve_appointment_date("Dec 1", today=today) == date(2026, 12, 1)


def test_missing_date_defaults_to_today() -> None:
    assert resolve_appointment_date(None, today=date(2026, 10, 19)) == date(2026, 10, 19)


def test_feb_29_waits_for_a_leap_year() -> None:
    assert resolve_appointment_date("Feb 29", today=date(2026, 10, 19)) == date(2028, 2, 29)


def test_resolve_appointment_time_is_timezone_aware() -> None:
    result = extract(STYLESEAT)
    now = datetime(2026, 10, 19, 15, 0, tzinfo=ZoneInfo("UTC"))

    appointment = resolve_appointment_time(result, now=now, tz=NY)

    assert appointment == datetime(2027, 1, 20, 14, 0, tzinfo=NY)
    assert appointment.utcoffset() is not None
