"""Service layer exports."""

from .access_tokens import AccessTokenService
from .event_sinks import LoggingEventSink, ProbeEventSink, ProbeRecordSink
from .interactive_login import InteractiveLoginService
from .scheduler import ProbeScheduler, ResolveOutcome, RoundKind
from .scheduler_state import SchedulerPhase, SchedulerState, StartRejected, ValidationSession
from .token_cipher import TokenCipherService

__all__ = [
    "AccessTokenService",
    "InteractiveLoginService",
    "LoggingEventSink",
    "ProbeEventSink",
    "ProbeRecordSink",
    "ProbeScheduler",
    "ResolveOutcome",
    "RoundKind",
    "SchedulerPhase",
    "SchedulerState",
    "StartRejected",
    "TokenCipherService",
    "ValidationSession",
]
