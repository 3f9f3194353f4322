"""SQLite activity ledger for processed posts, investigation reports and health events."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Literal

logger = logging.getLogger(__name__)

DDL = """
CREATE TABLE IF NOT EXISTS processing_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    request_id TEXT NOT NULL,
    status TEXT NOT NULL,
    author TEXT,
    source_url TEXT,
    document_url TEXT,
    videos_processed INTEGER NOT NULL DEFAULT 0,
    images_processed INTEGER NOT NULL DEFAULT 0,
    urls_resolved INTEGER NOT NULL DEFAULT 0,
    duration_ms REAL NOT NULL,
    error TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS ix_processing_runs_request ON processing_runs(request_id);

CREATE TABLE IF NOT EXISTS investigation_reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    request_id TEXT NOT NULL,
    page_url TEXT,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS health_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    component TEXT NOT NULL,
    outcome TEXT NOT NULL,
    detail TEXT,
    recorded_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""

RunStatus = Literal["success", "rejected", "failure"]
_COUNT_COLUMNS = (
    ("videosProcessed", "videos_processed"),
    ("imagesProcessed", "images_processed"),
    ("urlsResolved", "urls_resolved"),
)


class ActivityStore:
    """One SQLite connection per thread; async callers go through ``asyncio.to_thread``."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._per_thread = threading.local()
        self._opened: list[sqlite3.Connection] = []
        self._opened_lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with closing_connection(self.path) as bootstrap:
            bootstrap.executescript(DDL)
        logger.debug("Activity ledger ready at %s", self.path)

    @property
    def _connection(self) -> sqlite3.Connection:
        connection = getattr(self._per_thread, "connection", None)
        if connection is None:
            connection = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
            connection.row_factory = sqlite3.Row
            self._per_thread.connection = connection
            with self._opened_lock:
                self._opened.append(connection)
        return connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        connection = self._connection
        cursor = connection.cursor()
        cursor.execute("BEGIN")
        try:
            yield cursor
        except Exception:
            cursor.execute("ROLLBACK")
            logger.exception("Ledger write failed and was rolled back")
            raise
        else:
            cursor.execute("COMMIT")
        finally:
            cursor.close()

    def _query(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        return self._connection.execute(sql, params).fetchall()

    def record_run(
        self,
        *,
        request_id: str,
        status: RunStatus,
        duration_ms: float,
        author: str | None = None,
        source_url: str | None = None,
        document_url: str | None = None,
        counts: dict[str, int] | None = None,
        error: str | None = None,
    ) -> int:
        counts = counts or {}
        columns = {
            "request_id": request_id,
            "status": status,
            "author": author,
            "source_url": source_url,
            "document_url": document_url,
            "duration_ms": round(float(duration_ms), 2),
            "error": error,
        }
        for key, column in _COUNT_COLUMNS:
            columns[column] = int(counts.get(key, 0))
        names = ", ".join(columns)
        placeholders = ", ".join("?" for _ in columns)
        with self.transaction() as cursor:
            cursor.execute(f"INSERT INTO processing_runs ({names}) VALUES ({placeholders})", tuple(columns.values()))
            return int(cursor.lastrowid)

    def record_investigation(self, *, request_id: str, payload: Any, page_url: str | None = None) -> int:
        with self.transaction() as cursor:
            cursor.execute(
                "INSERT INTO investigation_reports (request_id, page_url, payload) VALUES (?, ?, ?)",
                (request_id, page_url, json.dumps(payload, default=str)),
            )
            return int(cursor.lastrowid)

    def record_health(self, *, component: str, status: str, detail: str | None = None) -> None:
        with self.transaction() as cursor:
            cursor.execute(
                "INSERT INTO health_events (component, outcome, detail) VALUES (?, ?, ?)",
                (component, status, detail),
            )

    def recent_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        rows = self._query("SELECT * FROM processing_runs ORDER BY id DESC LIMIT ?", (limit,))
        return [dict(row) for row in rows]

    def count_runs(self) -> int:
        [row] = self._query("SELECT COUNT(*) FROM processing_runs")
        return int(row[0])

    def get_investigation(self, report_id: int) -> dict[str, Any] | None:
        rows = self._query("SELECT * FROM investigation_reports WHERE id = ?", (report_id,))
        if not rows:
            return None
        report = dict(rows[0])
        report["payload"] = json.loads(report["payload"])
        return report

    def close(self) -> None:
        """Close every connection opened so far, including those of worker threads."""
        with self._opened_lock:
            opened, self._opened = self._opened, []
        for connection in opened:
            connection.close()
        self._per_thread = threading.local()


@contextmanager
def closing_connection(path: Path) -> Iterator[sqlite3.Connection]:
    connection = sqlite3.connect(path)
    try:
        yield connection
    finally:
        connection.close()
