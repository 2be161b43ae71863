try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from urllib.parse import unquote_plus

import httpx
import pytest

from searchprobe.clients.search import (
    ProbeTransportFailure,
    ResultRow,
    SearchProbeClient,
    build_search_url,
)
from searchprobe.schemas.probe import ProbeQuery

SITE = "https://contoso.sharepoint.com/sites/hr"


def _envelope(rows: list[dict], *, total: int | None = None) -> dict:
    return {
        "d": {
            "query": {
                "PrimaryQueryResult": {
                    "RelevantResults": {
                        "TotalRows": total if total is not None else len(rows),
                        "RowCount": len(rows),
                        "Table": {
                            "Rows": {
                                "results": [
                                    {
                                        "Cells": {
                                            "results": [
                                                {"Key": key, "Value": value, "ValueType": "Edm.String"}
                                                for key, value in row.items()
                                            ]
                                        }
                                    }
                                    for row in rows
                                ]
                            }
                        },
                    }
                },
                "Properties": {
                    "results": [
                        {"Key": "QueryIdentityDiagnostics", "Value": "diag-blob"},
                    ]
                },
            }
        }
    }


def _client(handler, **kwargs) -> SearchProbeClient:
    return SearchProbeClient(transport=httpx.MockTransport(handler), **kwargs)


def test_build_search_url_doubles_quotes_and_encodes() -> None:
    query = ProbeQuery(
        site_url=SITE + "/",
        query_text="title:O'Brien report",
        select_properties="Title, Path",
        row_limit=5,
        sort_list="LastModifiedTime:descending",
    )

    url = build_search_url(query)

    assert url.startswith(f"{SITE}/_api/search/query?querytext='")
    assert "O%27%27Brien" in url
    assert unquote_plus(url.split("querytext='")[1].split("'&")[0]) == "title:O''Brien report"
    assert "&selectproperties='Title,Path'" in url
    assert "&rowlimit=5" in url
    assert "&trimduplicates=false" in url
    assert "QueryIdentityDiagnostics:true" in url
    assert url.endswith("&sortlist='LastModifiedTime:descending'")


def test_result_row_lookup_ignores_case_and_keeps_order() -> None:
    row = ResultRow([("Title", "Doc"), ("WorkId", "42")])

    assert row["workid"] == "42"
    assert row.get("WORKID") == "42"
    assert list(row) == ["Title", "WorkId"]


@pytest.mark.asyncio
async def test_execute_parses_rows_and_correlation_headers() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(
            200,
            json=_envelope(
                [{"Title": "Quarterly", "WorkId": "{ABC}", "Path": f"{SITE}/a.aspx"}], total=17
            ),
            headers={"SPRequestGuid": "corr-1", "X-SearchInternalRequestId": "internal-1"},
        )

    result = await _client(handler).execute("token-1", ProbeQuery(site_url=SITE))

    assert captured[0].headers["Authorization"] == "Bearer token-1"
    assert captured[0].headers["Accept"] == "application/json;odata=verbose"
    assert result.http_status == 200
    assert result.succeeded
    assert result.total_rows == 17
    assert result.row_count == 1
    assert result.rows[0]["workid"] == "ABC"
    assert result.correlation_id == "corr-1"
    assert result.internal_request_id == "internal-1"
    assert result.query_identity_diagnostics == "diag-blob"
    assert result.elapsed_ms >= 0


@pytest.mark.asyncio
async def test_correlation_falls_back_to_request_id_header() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_envelope([]), headers={"request-id": "rid-9"})

    result = await _client(handler).execute("t", ProbeQuery(site_url=SITE))

    assert result.correlation_id == "rid-9"


@pytest.mark.asyncio
async def test_unexpected_envelope_degrades_to_empty_rows() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"value": []})

    result = await _client(handler).execute("t", ProbeQuery(site_url=SITE))

    assert result.http_status == 200
    assert result.rows == ()
    assert result.row_count == 0
    assert result.parse_error


@pytest.mark.asyncio
async def test_http_error_is_a_result_not_an_exception() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            403, json={"error": {"code": "-2147024891", "message": {"value": "Access denied."}}}
        )

    result = await _client(handler).execute("t", ProbeQuery(site_url=SITE))

    assert result.http_status == 403
    assert not result.succeeded
    assert result.rows == ()
    assert result.error_message == "Access denied."


@pytest.mark.asyncio
async def test_transport_failure_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(ProbeTransportFailure):
        await _client(handler).execute("t", ProbeQuery(site_url=SITE))


@pytest.mark.asyncio
async def test_exchange_recorder_is_redacted_and_failures_are_isolated() -> None:
    recorded = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_envelope([{"Title": "x"}]))

    def recorder(exchange) -> None:
        recorded.append(exchange)
        raise RuntimeError("disk full")

    result = await _client(handler, exchange_recorder=recorder).execute(
        "secret-token", ProbeQuery(site_url=SITE), principal="alice", query_kind="QUERY"
    )

    assert result.row_count == 1
    assert recorded[0].principal == "alice"
    assert recorded[0].request_headers["Authorization"] == "Bearer <redacted>"
    assert "secret-token" not in recorded[0].request_line
