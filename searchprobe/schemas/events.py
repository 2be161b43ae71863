"""Event payloads emitted by the scheduler for every principal in a round."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class OutcomeCategory(str, Enum):
    QUERY_OK = "QUERY OK"
    QUERY_NOK = "QUERY NOK"
    VALIDATE_OK = "VALIDATE OK"
    VALIDATE_NOK = "VALIDATE NOK"
    TEST_OK = "TEST OK"
    TEST_NOK = "TEST NOK"
    AUTH_REQUIRED = "AUTH REQUIRED"
    ERROR = "ERROR"


class ValidationStatus(str, Enum):
    NONE = ""
    FOUND = "FOUND"
    NOT_FOUND = "NOT FOUND"


@dataclass(frozen=True, slots=True)
class ProbeEvent:
    """Summary of one principal's probe within one round."""

    principal: str
    outcome: OutcomeCategory
    validation_status: ValidationStatus = ValidationStatus.NONE
    elapsed_ms: int = 0
    http_status: Optional[int] = None
    total_rows: int = 0
    row_count: int = 0
    correlation_id: Optional[str] = None
    internal_request_id: Optional[str] = None
    message: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = ["OutcomeCategory", "ProbeEvent", "ValidationStatus"]
