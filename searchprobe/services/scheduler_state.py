"""
Scheduler state and its transitions.

The scheduler owns exactly one ``SchedulerState``; every change goes through
the functions below, which return a new state and never perform I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import FrozenSet, Iterable, Optional


class SchedulerPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    VALIDATION_COMPLETE = "validation_complete"
    STOPPED = "stopped"


class StartRejected(Exception):
    """Start was requested while its preconditions do not hold."""


@dataclass(frozen=True)
class ValidationSession:
    """Tracks whether a resolved item has become visible to every principal."""

    target_url: str
    target_item_key: str
    resolved_by: str
    found_by: FrozenSet[str] = field(default_factory=frozenset)
    active: bool = True


@dataclass(frozen=True)
class SchedulerState:
    phase: SchedulerPhase = SchedulerPhase.IDLE
    target_url: str = ""
    session: Optional[ValidationSession] = None

    @property
    def validating(self) -> bool:
        return self.session is not None and self.session.active


def start(state: SchedulerState, enabled_count: int) -> SchedulerState:
    if state.phase is not SchedulerPhase.IDLE:
        raise StartRejected(f"Scheduler is {state.phase.value}, not idle.")
    if enabled_count < 1:
        raise StartRejected("No enabled principals. Add and enable at least one.")
    if state.target_url and not state.validating:
        raise StartRejected("A target URL is configured; resolve it before starting.")
    return replace(state, phase=SchedulerPhase.RUNNING)


def stop(state: SchedulerState) -> SchedulerState:
    if state.phase is not SchedulerPhase.RUNNING:
        return state
    return replace(state, phase=SchedulerPhase.STOPPED)


def complete(state: SchedulerState) -> SchedulerState:
    return replace(state, phase=SchedulerPhase.VALIDATION_COMPLETE)


def settle(state: SchedulerState) -> SchedulerState:
    """Leave a terminal phase (stopped or validation complete) for idle."""
    if state.phase in (SchedulerPhase.STOPPED, SchedulerPhase.VALIDATION_COMPLETE):
        return replace(state, phase=SchedulerPhase.IDLE)
    return state


def edit_target(state: SchedulerState, target_url: str) -> SchedulerState:
    """Any edit of the target drops the session, even when the URL is unchanged."""
    return replace(state, target_url=target_url.strip(), session=None)


def resolve(state: SchedulerState, item_key: str, resolved_by: str) -> SchedulerState:
    session = ValidationSession(
        target_url=state.target_url,
        target_item_key=item_key,
        resolved_by=resolved_by,
    )
    return replace(state, session=session)


def reset(state: SchedulerState) -> SchedulerState:
    return replace(state, session=None)


def record_found(state: SchedulerState, principal: str) -> SchedulerState:
    if not state.validating or principal in state.session.found_by:
        return state
    session = replace(state.session, found_by=state.session.found_by | {principal})
    return replace(state, session=session)


def forget_principal(state: SchedulerState, principal: str) -> SchedulerState:
    if state.session is None or principal not in state.session.found_by:
        return state
    session = replace(state.session, found_by=state.session.found_by - {principal})
    return replace(state, session=session)


def round_completes_validation(
    state: SchedulerState, enabled: Iterable[str], found_this_round: Iterable[str]
) -> bool:
    """True when validation is active and every enabled principal found the item."""
    enabled = set(enabled)
    return state.validating and bool(enabled) and enabled <= set(found_this_round)


__all__ = [
    "SchedulerPhase",
    "SchedulerState",
    "StartRejected",
    "ValidationSession",
    "complete",
    "edit_target",
    "forget_principal",
    "record_found",
    "reset",
    "resolve",
    "round_completes_validation",
    "settle",
    "start",
    "stop",
]
