"""SQLite-backed append-only store for probe records and raw exchanges."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from searchprobe.clients.search import ProbeExchange, ProbeResult
from searchprobe.schemas.events import ProbeEvent


class SQLiteProbeRecordStore:
    """Persist one row per (principal, round) plus optional request/response pairs."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS probe_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    recorded_at TEXT NOT NULL,
                    principal TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    validation_status TEXT NOT NULL,
                    http_status INTEGER,
                    elapsed_ms INTEGER NOT NULL,
                    total_rows INTEGER NOT NULL,
                    row_count INTEGER NOT NULL,
                    correlation_id TEXT,
                    internal_request_id TEXT,
                    query_identity_diagnostics TEXT,
                    message TEXT,
                    rows TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS probe_exchanges (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    recorded_at TEXT NOT NULL,
                    principal TEXT,
                    query_kind TEXT,
                    request TEXT NOT NULL,
                    http_status INTEGER NOT NULL,
                    response TEXT NOT NULL
                )
                """
            )

    def append(self, event: ProbeEvent, result: Optional[ProbeResult] = None) -> None:
        rows = [dict(row.items()) for row in result.rows] if result is not None else []
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO probe_records (
                    recorded_at, principal, outcome, validation_status, http_status,
                    elapsed_ms, total_rows, row_count, correlation_id,
                    internal_request_id, query_identity_diagnostics, message, rows
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.timestamp.isoformat(),
                    event.principal,
                    event.outcome.value,
                    event.validation_status.value,
                    event.http_status,
                    event.elapsed_ms,
                    event.total_rows,
                    event.row_count,
                    event.correlation_id,
                    event.internal_request_id,
                    result.query_identity_diagnostics if result is not None else None,
                    event.message,
                    json.dumps(rows),
                ),
            )

    def record_exchange(self, exchange: ProbeExchange) -> None:
        request = "\r\n".join(
            [exchange.request_line]
            + [f"{name}: {value}" for name, value in exchange.request_headers.items()]
        )
        response = "\r\n".join(
            [f"HTTP/1.1 {exchange.http_status} {exchange.reason_phrase}"]
            + [f"{name}: {value}" for name, value in exchange.response_headers.items()]
            + ["", exchange.body]
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO probe_exchanges (
                    recorded_at, principal, query_kind, request, http_status, response
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    datetime.now(timezone.utc).isoformat(),
                    exchange.principal,
                    exchange.query_kind,
                    request,
                    exchange.http_status,
                    response,
                ),
            )

    def list_records(self, *, principal: Optional[str] = None) -> List[Dict[str, Any]]:
        query = "SELECT * FROM probe_records"
        params: tuple = ()
        if principal is not None:
            query += " WHERE principal = ?"
            params = (principal,)
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()
        records = []
        for row in rows:
            record = dict(row)
            record["rows"] = json.loads(record["rows"])
            records.append(record)
        return records

    def list_exchanges(self) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM probe_exchanges ORDER BY id").fetchall()
        return [dict(row) for row in rows]


__all__ = ["SQLiteProbeRecordStore"]
