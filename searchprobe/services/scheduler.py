"""
Multi-principal probe scheduler.

One asyncio task drives rounds at a fixed interval. Each round walks the
enabled principals in order, acquires a token, runs the probe query,
evaluates page validation and reports an event per principal. Rounds,
one-off test rounds and target resolution share a lock, so two of them never
overlap and no principal ever has two probes in flight.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from searchprobe.clients.entra_auth import AuthenticationError, normalize_tenant
from searchprobe.clients.search import ProbeResult, ProbeTransportFailure, SearchProbeClient
from searchprobe.models.token import CredentialStatus, TokenRecord
from searchprobe.schemas.events import OutcomeCategory, ProbeEvent, ValidationStatus
from searchprobe.schemas.probe import ITEM_KEY_FIELD, Principal, ProbeQuery
from searchprobe.services import scheduler_state as transitions
from searchprobe.services.access_tokens import AccessTokenService
from searchprobe.services.event_sinks import LoggingEventSink, ProbeEventSink, ProbeRecordSink
from searchprobe.services.interactive_login import InteractiveLoginService
from searchprobe.services.scheduler_state import (
    SchedulerPhase,
    SchedulerState,
    ValidationSession,
)

logger = logging.getLogger(__name__)

ValidationCompleteHook = Callable[[ValidationSession], Any]


class RoundKind(str, Enum):
    SCHEDULED = "QUERY"
    TEST = "TEST"


@dataclass(frozen=True)
class ResolveOutcome:
    """Result of looking a target URL up in the index."""

    target_url: str
    item_key: Optional[str] = None
    resolved_by: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.item_key is not None


@dataclass
class RoundReport:
    events: List[ProbeEvent] = field(default_factory=list)
    found_by: List[str] = field(default_factory=list)
    completed_validation: bool = False


class ProbeScheduler:
    """Owns the principals, the validation session and the probe timer."""

    def __init__(
        self,
        *,
        query: ProbeQuery,
        token_service: AccessTokenService,
        search_client: SearchProbeClient,
        interval_seconds: float,
        principals: Iterable[Principal] = (),
        target_url: str = "",
        client_id: str = "",
        tenant_id: str = "",
        login_service: Optional[InteractiveLoginService] = None,
        event_sink: Optional[ProbeEventSink] = None,
        record_sink: Optional[ProbeRecordSink] = None,
        on_validation_complete: Optional[ValidationCompleteHook] = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("Probe interval must be positive")
        self._query = query
        self._tokens = token_service
        self._search = search_client
        self._interval = interval_seconds
        self._principals: List[Principal] = []
        for principal in principals:
            self.add_principal(principal)
        self._state = transitions.edit_target(SchedulerState(), target_url)
        self._client_id = client_id
        self._tenant_id = normalize_tenant(tenant_id)
        self._login = login_service
        self._events = event_sink or LoggingEventSink()
        self._records = record_sink
        self._on_validation_complete = on_validation_complete
        self._round_lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task] = None
        self._next_tick_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def phase(self) -> SchedulerPhase:
        return self._state.phase

    @property
    def session(self) -> Optional[ValidationSession]:
        return self._state.session

    @property
    def query(self) -> ProbeQuery:
        return self._query

    @property
    def principals(self) -> Tuple[Principal, ...]:
        return tuple(self._principals)

    @property
    def next_tick_at(self) -> Optional[datetime]:
        """When the armed timer fires next; ``None`` while idle."""
        return self._next_tick_at

    def principal_statuses(self) -> Dict[str, Tuple[CredentialStatus, Optional[datetime]]]:
        return {
            principal.name: self._tokens.credential_status(principal.credential_key)
            for principal in self._principals
        }

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------
    def _index_of(self, name: str) -> int:
        for index, principal in enumerate(self._principals):
            if principal.name == name:
                return index
        raise KeyError(f"Unknown principal {name!r}")

    def _enabled(self) -> List[Principal]:
        return [principal for principal in self._principals if principal.enabled]

    def add_principal(self, principal: Principal | str) -> Principal:
        if isinstance(principal, str):
            principal = Principal(name=principal)
        if any(existing.name == principal.name for existing in self._principals):
            raise ValueError(f"Principal {principal.name!r} already exists")
        self._principals.append(principal)
        logger.info("Principal added", extra={"principal": principal.name})
        return principal

    def remove_principal(self, name: str) -> None:
        del self._principals[self._index_of(name)]
        self._state = transitions.forget_principal(self._state, name)
        logger.info("Principal removed", extra={"principal": name})

    def set_enabled(self, name: str, enabled: bool) -> None:
        index = self._index_of(name)
        self._principals[index] = self._principals[index].model_copy(update={"enabled": enabled})

    def set_flagged(self, name: str, flagged: bool) -> None:
        index = self._index_of(name)
        self._principals[index] = self._principals[index].model_copy(update={"flagged": flagged})

    def rename_principal(self, name: str, new_name: str) -> Principal:
        """Rename a principal; its credential key follows the new name."""
        index = self._index_of(name)
        if new_name.strip() != name and any(p.name == new_name.strip() for p in self._principals):
            raise ValueError(f"Principal {new_name!r} already exists")
        current = self._principals[index]
        renamed = Principal(name=new_name, enabled=current.enabled, flagged=current.flagged)
        self._principals[index] = renamed
        self._state = transitions.forget_principal(self._state, name)
        logger.info("Principal renamed", extra={"principal": renamed.name, "previous": name})
        return renamed

    async def interactive_login(self, name: str, *, timeout: Optional[float] = None) -> TokenRecord:
        """Sign ``name`` in through the browser and store the resulting tokens."""
        if self._login is None:
            raise RuntimeError("Interactive login is not configured for this scheduler")
        principal = self._principals[self._index_of(name)]
        record = await self._login.login(
            client_id=self._client_id,
            tenant_id=self._tenant_id,
            resource_hint=self._query.site_url,
            login_hint=principal.name,
            timeout=timeout,
        )
        self._tokens.save(principal.credential_key, record)
        logger.info("Login successful; token cached", extra={"principal": name})
        return record

    # ------------------------------------------------------------------
    # Query and validation target
    # ------------------------------------------------------------------
    async def set_query(self, query: ProbeQuery) -> None:
        async with self._round_lock:
            self._query = query
            if self._state.session is not None:
                logger.info("Probe query changed; validation reset")
            self._state = transitions.reset(self._state)

    async def set_target_url(self, target_url: str) -> None:
        async with self._round_lock:
            was_validating = self._state.validating
            self._state = transitions.edit_target(self._state, target_url)
            if was_validating:
                logger.info("Target URL changed; resolve it again before starting")

    async def reset_validation(self) -> None:
        async with self._round_lock:
            self._state = transitions.reset(self._state)
            logger.info("Validation reset.")

    async def resolve(self, target_url: Optional[str] = None) -> ResolveOutcome:
        """Look the target URL up and, when found, open a validation session.

        An item that no principal can find yet is a normal outcome: the
        returned ``ResolveOutcome`` is simply unresolved.
        """
        async with self._round_lock:
            if target_url is not None:
                self._state = transitions.edit_target(self._state, target_url)
            url = self._state.target_url
            if not url:
                logger.warning("No target URL configured.")
                return ResolveOutcome(target_url="")

            lookup = ProbeQuery(
                site_url=self._query.site_url,
                query_text=f'path:"{url}"',
                select_properties=("Title", "Path", ITEM_KEY_FIELD),
                row_limit=1,
            )
            logger.info("Resolving target %s", url)
            for principal in self._enabled():
                try:
                    token = await self._tokens.get_valid_or_refreshed_access_token(
                        principal.credential_key, lookup.site_url
                    )
                except AuthenticationError as exc:
                    logger.warning("[%s] Token error: %s", principal.name, exc)
                    continue
                except Exception:
                    logger.exception("[%s] Unexpected token failure", principal.name)
                    continue
                if token is None:
                    continue
                try:
                    result = await self._search.execute(
                        token, lookup, principal=principal.name, query_kind="RESOLVE"
                    )
                except ProbeTransportFailure as exc:
                    logger.warning("[%s] Resolve error: %s", principal.name, exc)
                    continue
                except Exception:
                    logger.exception("[%s] Unexpected resolve failure", principal.name)
                    continue
                item_key = result.rows[0].get(ITEM_KEY_FIELD) if result.rows else None
                if item_key:
                    self._state = transitions.resolve(self._state, item_key, principal.name)
                    logger.info(
                        "Target resolved! %s: %s (via %s)", ITEM_KEY_FIELD, item_key, principal.name
                    )
                    return ResolveOutcome(target_url=url, item_key=item_key, resolved_by=principal.name)

            logger.info("Target not yet indexed for any principal.")
            return ResolveOutcome(target_url=url)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Arm the timer; raises ``StartRejected`` when preconditions fail."""
        self._state = transitions.start(self._state, len(self._enabled()))
        self._loop_task = asyncio.create_task(self._run(), name="probe-scheduler")
        logger.info("Scheduler started (every %gs).", self._interval)

    async def stop(self) -> None:
        if self._state.phase is not SchedulerPhase.RUNNING:
            return
        self._state = transitions.stop(self._state)
        task, self._loop_task = self._loop_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._next_tick_at = None
        self._state = transitions.settle(self._state)
        logger.info("Scheduler stopped.")

    async def run_once(self) -> List[ProbeEvent]:
        """Run a single test round now, independent of the timer."""
        async with self._round_lock:
            report = await self._run_round(RoundKind.TEST)
        return report.events

    async def _run(self) -> None:
        while self._state.phase is SchedulerPhase.RUNNING:
            self._next_tick_at = datetime.now(timezone.utc) + timedelta(seconds=self._interval)
            await asyncio.sleep(self._interval)
            async with self._round_lock:
                if self._state.phase is not SchedulerPhase.RUNNING:
                    break
                try:
                    report = await self._run_round(RoundKind.SCHEDULED)
                except Exception:
                    logger.exception("Probe round failed")
                    continue
            if report.completed_validation:
                await self._finish_validation()
        self._next_tick_at = None

    async def _finish_validation(self) -> None:
        session = self._state.session
        self._state = transitions.complete(self._state)
        self._next_tick_at = None
        self._loop_task = None
        logger.info(
            ">> VALIDATION COMPLETE: all enabled principals can retrieve %s (%s %s)",
            session.target_url,
            ITEM_KEY_FIELD,
            session.target_item_key,
        )
        if self._on_validation_complete is not None:
            try:
                outcome = self._on_validation_complete(session)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Validation-complete hook failed")
        self._state = transitions.settle(self._state)

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------
    async def _run_round(self, kind: RoundKind) -> RoundReport:
        report = RoundReport()
        enabled = self._enabled()
        if not enabled:
            logger.warning("No enabled principals. Skipping round.")
            return report

        session = self._state.session if self._state.validating else None
        item_key = session.target_item_key if session is not None else None
        query = self._query.with_property(ITEM_KEY_FIELD) if item_key else self._query

        for principal in enabled:
            event = await self._probe_principal(principal, query, kind, item_key)
            report.events.append(event)
            if event.validation_status is ValidationStatus.FOUND:
                report.found_by.append(principal.name)

        if item_key is not None:
            logger.info(
                "Validating - %d/%d principals found the target this round",
                len(report.found_by),
                len(enabled),
            )
        report.completed_validation = kind is RoundKind.SCHEDULED and (
            transitions.round_completes_validation(
                self._state, (p.name for p in enabled), report.found_by
            )
        )
        return report

    async def _probe_principal(
        self,
        principal: Principal,
        query: ProbeQuery,
        kind: RoundKind,
        item_key: Optional[str],
    ) -> ProbeEvent:
        name = principal.name
        not_found = ValidationStatus.NOT_FOUND if item_key else ValidationStatus.NONE

        logger.debug("[%s] Acquiring token...", name)
        try:
            token = await self._tokens.require_access_token(principal.credential_key, query.site_url)
        except AuthenticationError as exc:
            return self._publish_failure(name, OutcomeCategory.AUTH_REQUIRED, not_found, str(exc))
        except Exception as exc:
            logger.exception("[%s] Unexpected token failure", name)
            return self._publish_failure(name, OutcomeCategory.AUTH_REQUIRED, not_found, repr(exc))

        query_kind = kind.value if item_key is None or kind is RoundKind.TEST else "VALIDATE"
        try:
            result = await self._search.execute(token, query, principal=name, query_kind=query_kind)
        except ProbeTransportFailure as exc:
            return self._publish_failure(name, OutcomeCategory.ERROR, not_found, str(exc))
        except Exception as exc:
            logger.exception("[%s] Unexpected probe failure", name)
            return self._publish_failure(name, OutcomeCategory.ERROR, not_found, repr(exc))

        found = item_key is not None and any(
            row.get(ITEM_KEY_FIELD) == item_key for row in result.rows
        )
        if found:
            self._state = transitions.record_found(self._state, name)

        event = ProbeEvent(
            principal=name,
            outcome=_categorise(kind, result, item_key, found),
            validation_status=ValidationStatus.FOUND if found else not_found,
            elapsed_ms=result.elapsed_ms,
            http_status=result.http_status,
            total_rows=result.total_rows,
            row_count=result.row_count,
            correlation_id=result.correlation_id,
            internal_request_id=result.internal_request_id,
            message=result.error_message or result.parse_error or "",
        )
        self._publish(event, result)
        return event

    def _publish_failure(
        self,
        principal: str,
        outcome: OutcomeCategory,
        validation_status: ValidationStatus,
        message: str,
    ) -> ProbeEvent:
        event = ProbeEvent(
            principal=principal,
            outcome=outcome,
            validation_status=validation_status,
            message=message,
        )
        self._publish(event)
        return event

    def _publish(self, event: ProbeEvent, result: Optional[ProbeResult] = None) -> None:
        try:
            self._events.emit(event)
        except Exception:
            logger.exception("Event sink failed", extra={"principal": event.principal})
        if self._records is None:
            return
        try:
            self._records.append(event, result)
        except Exception:
            logger.exception("Probe record sink failed", extra={"principal": event.principal})


def _categorise(
    kind: RoundKind, result: ProbeResult, item_key: Optional[str], found: bool
) -> OutcomeCategory:
    if kind is RoundKind.TEST:
        return OutcomeCategory.TEST_OK if result.row_count > 0 else OutcomeCategory.TEST_NOK
    if item_key is not None:
        return OutcomeCategory.VALIDATE_OK if found else OutcomeCategory.VALIDATE_NOK
    return OutcomeCategory.QUERY_OK if result.row_count > 0 else OutcomeCategory.QUERY_NOK


__all__ = ["ProbeScheduler", "ResolveOutcome", "RoundKind", "RoundReport"]
