from __future__ import annotations

from dataclasses import dataclass, field

CUSTOMER_NAME = "customer_name"
SERVICE = "service"
DATE = "date"
TIME = "time"

FIELDS: tuple[str, ...] = (CUSTOMER_NAME, SERVICE, DATE, TIME)
REQUIRED_FIELDS: tuple[str, ...] = (CUSTOMER_NAME, TIME)


class ExtractionMiss(Exception):
    """A required field could not be found. A terminal outcome, not a failure."""

    def __init__(self, missing: tuple[str, ...]) -> None:
        super().__init__(f"Missing required fields: {', '.join(missing)}")
        self.missing = missing


@dataclass(frozen=True)
class ExtractionResult:
    customer_name: str
    service: str | None
    date_part: str | None
    time_part: str
    time_24h: str
    per_field_confidence: dict[str, float]
    aggregate_confidence: float
    matched_rules: dict[str, str] = field(default_factory=dict)
