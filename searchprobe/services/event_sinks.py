"""Collaborator interfaces the scheduler reports to, and their default implementations."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from searchprobe.clients.search import ProbeResult
from searchprobe.schemas.events import OutcomeCategory, ProbeEvent, ValidationStatus

logger = logging.getLogger(__name__)


class ProbeEventSink(Protocol):
    def emit(self, event: ProbeEvent) -> None:
        ...


class ProbeRecordSink(Protocol):
    def append(self, event: ProbeEvent, result: Optional[ProbeResult] = None) -> None:
        ...


class LoggingEventSink:
    """Write one log line per event."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    def emit(self, event: ProbeEvent) -> None:
        level = logging.INFO
        if event.outcome in (OutcomeCategory.ERROR, OutcomeCategory.AUTH_REQUIRED):
            level = logging.WARNING
        parts = [f"[{event.principal}] {event.outcome.value}"]
        if event.http_status is not None:
            parts.append(
                f"HTTP {event.http_status} - {event.row_count} of {event.total_rows} results "
                f"({event.elapsed_ms}ms)"
            )
        if event.validation_status is not ValidationStatus.NONE:
            parts.append(f"validation: {event.validation_status.value}")
        if event.message:
            parts.append(event.message)
        self._log.log(
            level,
            " | ".join(parts),
            extra={
                "principal": event.principal,
                "correlation_id": event.correlation_id,
                "internal_request_id": event.internal_request_id,
            },
        )


__all__ = ["LoggingEventSink", "ProbeEventSink", "ProbeRecordSink"]
