"""SharePoint search REST client used for freshness probes."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote_plus

import httpx

from searchprobe.schemas.probe import ProbeQuery

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "application/json;odata=verbose"


class ProbeTransportFailure(Exception):
    """The search request could not be sent or no response was received."""


class ProbeParseDegraded(Exception):
    """A response body did not have the expected envelope; rows are dropped."""


class ResultRow(Mapping):
    """Ordered field bag whose lookups ignore key case."""

    __slots__ = ("_cells",)

    def __init__(self, cells: Iterable[Tuple[str, str]] = ()) -> None:
        self._cells: Dict[str, Tuple[str, str]] = {}
        for key, value in cells:
            self._cells[key.casefold()] = (key, value)

    def __getitem__(self, key: str) -> str:
        return self._cells[key.casefold()][1]

    def __iter__(self) -> Iterator[str]:
        return (key for key, _ in self._cells.values())

    def __len__(self) -> int:
        return len(self._cells)

    def __repr__(self) -> str:
        return f"ResultRow({dict(self.items())!r})"


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of a single search request."""

    http_status: int
    elapsed_ms: int
    request_url: str
    total_rows: int = 0
    row_count: int = 0
    rows: Tuple[ResultRow, ...] = ()
    correlation_id: Optional[str] = None
    internal_request_id: Optional[str] = None
    query_identity_diagnostics: Optional[str] = None
    parse_error: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return 200 <= self.http_status < 300


@dataclass(frozen=True, slots=True)
class ProbeExchange:
    """Redacted request/response pair handed to an exchange recorder."""

    principal: Optional[str]
    query_kind: Optional[str]
    request_line: str
    request_headers: Dict[str, str]
    http_status: int
    reason_phrase: str
    response_headers: Dict[str, str]
    body: str
    elapsed_ms: int = 0


ExchangeRecorder = Callable[[ProbeExchange], None]


def build_search_url(query: ProbeQuery) -> str:
    """Render the query into the search endpoint URL.

    String parameters are single-quoted literals, so quotes inside the free
    text are doubled before URL encoding.
    """
    escaped = quote_plus(query.query_text.replace("'", "''"))
    props = ",".join(query.select_properties)
    url = (
        f"{query.site_url}/_api/search/query?querytext='{escaped}'"
        f"&selectproperties='{props}'&rowlimit={query.row_limit}"
        "&trimduplicates=false&Properties='QueryIdentityDiagnostics:true'"
    )
    if query.sort_list:
        url += f"&sortlist='{query.sort_list}'"
    return url


def _unwrap_braces(value: str) -> str:
    if value.startswith("{") and value.endswith("}"):
        return value.strip("{}")
    return value


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def parse_search_envelope(payload: Any) -> Tuple[int, int, List[ResultRow], Optional[str]]:
    """
    Walk the OData verbose envelope.

    Returns (total_rows, row_count, rows, query_identity_diagnostics) and
    raises ``ProbeParseDegraded`` when the structure is not as expected.
    """
    try:
        query = payload["d"]["query"]
        relevant = query["PrimaryQueryResult"]["RelevantResults"]
        total_rows = int(relevant["TotalRows"])
        row_count = int(relevant["RowCount"])
        rows: List[ResultRow] = []
        for row in relevant["Table"]["Rows"]["results"]:
            cells = row["Cells"]["results"]
            rows.append(
                ResultRow(
                    (_cell_text(cell["Key"]), _unwrap_braces(_cell_text(cell["Value"])))
                    for cell in cells
                )
            )
    except (KeyError, TypeError, ValueError) as exc:
        raise ProbeParseDegraded(f"Unexpected search response shape: {exc!r}") from exc

    diagnostics: Optional[str] = None
    properties = query.get("Properties") if isinstance(query, dict) else None
    if isinstance(properties, dict):
        for prop in properties.get("results") or []:
            if isinstance(prop, dict) and prop.get("Key") == "QueryIdentityDiagnostics":
                diagnostics = _cell_text(prop.get("Value"))
                break
    return total_rows, row_count, rows, diagnostics


def _odata_error_message(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error") or payload.get("odata.error")
    if not isinstance(error, dict):
        return None
    message = error.get("message")
    if isinstance(message, dict):
        message = message.get("value")
    return message if isinstance(message, str) else None


class SearchProbeClient:
    """Execute probe queries against the SharePoint search endpoint."""

    def __init__(
        self,
        *,
        timeout: float = 100.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        exchange_recorder: Optional[ExchangeRecorder] = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._recorder = exchange_recorder

    async def execute(
        self,
        access_token: str,
        query: ProbeQuery,
        *,
        principal: Optional[str] = None,
        query_kind: Optional[str] = None,
    ) -> ProbeResult:
        """Run ``query`` as the owner of ``access_token``.

        Only transport problems raise (``ProbeTransportFailure``); any HTTP
        status and any body produce a ``ProbeResult``.
        """
        url = build_search_url(query)
        headers = {"Authorization": f"Bearer {access_token}", "Accept": ACCEPT_HEADER}

        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise ProbeTransportFailure(f"Search request failed: {exc}") from exc
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        correlation_id = response.headers.get("SPRequestGuid") or response.headers.get("request-id")
        internal_request_id = response.headers.get("X-SearchInternalRequestId")

        self._record_exchange(response, url, principal, query_kind, elapsed_ms)

        try:
            payload = response.json()
        except ValueError:
            payload = None

        base = dict(
            http_status=response.status_code,
            elapsed_ms=elapsed_ms,
            request_url=url,
            correlation_id=correlation_id,
            internal_request_id=internal_request_id,
        )
        if not response.is_success:
            return ProbeResult(**base, error_message=_odata_error_message(payload))

        try:
            total_rows, row_count, rows, diagnostics = parse_search_envelope(payload)
        except ProbeParseDegraded as exc:
            logger.warning(
                "Search response could not be parsed",
                extra={"principal": principal, "status": response.status_code},
            )
            return ProbeResult(**base, parse_error=str(exc))

        return ProbeResult(
            **base,
            total_rows=total_rows,
            row_count=row_count,
            rows=tuple(rows),
            query_identity_diagnostics=diagnostics,
        )

    def _record_exchange(
        self,
        response: httpx.Response,
        url: str,
        principal: Optional[str],
        query_kind: Optional[str],
        elapsed_ms: int,
    ) -> None:
        if self._recorder is None:
            return
        try:
            self._recorder(
                ProbeExchange(
                    principal=principal,
                    query_kind=query_kind,
                    request_line=f"GET {url}",
                    request_headers={
                        "Accept": ACCEPT_HEADER,
                        "Authorization": "Bearer <redacted>",
                    },
                    http_status=response.status_code,
                    reason_phrase=response.reason_phrase,
                    response_headers=dict(response.headers),
                    body=response.text,
                    elapsed_ms=elapsed_ms,
                )
            )
        except Exception:
            logger.warning("Exchange recorder failed; continuing", exc_info=True)


__all__ = [
    "ExchangeRecorder",
    "ProbeExchange",
    "ProbeParseDegraded",
    "ProbeResult",
    "ProbeTransportFailure",
    "ResultRow",
    "SearchProbeClient",
    "build_search_url",
    "parse_search_envelope",
]
