# History Log - append-only SQLite record of every outbound HTTP exchange.
# Created: 2026-10-18

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from authprobe.history.models import HistoryEntry, serialize_headers

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 500

_SCHEMA = """
CREATE TABLE IF NOT EXISTS http_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    request_method TEXT NOT NULL,
    request_url TEXT NOT NULL,
    request_headers TEXT NOT NULL DEFAULT '{}',
    request_body TEXT NOT NULL DEFAULT '',
    response_status INTEGER NOT NULL DEFAULT 0,
    response_headers TEXT NOT NULL DEFAULT '{}',
    response_body TEXT NOT NULL DEFAULT '',
    duration_ms INTEGER NOT NULL DEFAULT 0,
    endpoint_type TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_http_history_created_at ON http_history (created_at);
CREATE INDEX IF NOT EXISTS idx_http_history_endpoint_type ON http_history (endpoint_type);
"""

_COLUMNS = (
    "id, request_method, request_url, request_headers, request_body, "
    "response_status, response_headers, response_body, "
    "duration_ms, endpoint_type, created_at"
)


def normalize_page(limit: int | None, offset: int | None) -> tuple[int, int]:
    if limit is None or limit <= 0:
        limit = DEFAULT_LIMIT
    limit = min(limit, MAX_LIMIT)
    if offset is None or offset < 0:
        offset = 0
    return limit, offset


def _row_to_entry(row: sqlite3.Row) -> HistoryEntry:
    return HistoryEntry(
        id=row["id"],
        request_method=row["request_method"],
        request_url=row["request_url"],
        request_headers=row["request_headers"],
        request_body=row["request_body"],
        response_status=row["response_status"],
        response_headers=row["response_headers"],
        response_body=row["response_body"],
        duration_ms=row["duration_ms"],
        endpoint_type=row["endpoint_type"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class HistoryLog:
    """Append-only request/response log backed by SQLite.

    There is no update or delete API. Listings are newest-first.
    Pass ``":memory:"`` for a throwaway log.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, entry: HistoryEntry) -> HistoryEntry:
        """Persist ``entry``, assigning its id and creation timestamp."""
        created_at = datetime.now(tz=UTC)
        with self._lock:
            cur = self._conn.execute(
                """
                INSERT INTO http_history (
                    request_method, request_url, request_headers, request_body,
                    response_status, response_headers, response_body,
                    duration_ms, endpoint_type, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.request_method,
                    entry.request_url,
                    entry.request_headers,
                    entry.request_body,
                    entry.response_status,
                    entry.response_headers,
                    entry.response_body,
                    entry.duration_ms,
                    entry.endpoint_type,
                    created_at.isoformat(),
                ),
            )
            self._conn.commit()
        entry.id = cur.lastrowid
        entry.created_at = created_at
        return entry

    def log_exchange(
        self,
        *,
        method: str,
        url: str,
        request_headers: Iterable[tuple[str, str]] | None,
        request_body: str,
        response_status: int,
        response_headers: Iterable[tuple[str, str]] | None,
        response_body: str,
        duration_ms: int,
        endpoint_type: str,
    ) -> HistoryEntry:
        """Serialize one exchange and append it."""
        entry = HistoryEntry(
            request_method=method,
            request_url=url,
            request_headers=serialize_headers(request_headers),
            request_body=request_body,
            response_status=response_status,
            response_headers=serialize_headers(response_headers),
            response_body=response_body,
            duration_ms=duration_ms,
            endpoint_type=endpoint_type,
        )
        return self.append(entry)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(self, limit: int | None = DEFAULT_LIMIT, offset: int | None = 0) -> list[HistoryEntry]:
        limit, offset = normalize_page(limit, offset)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM http_history "
                "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def list_by_tag(
        self, tag: str, limit: int | None = DEFAULT_LIMIT, offset: int | None = 0
    ) -> list[HistoryEntry]:
        limit, offset = normalize_page(limit, offset)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM http_history WHERE endpoint_type = ? "
                "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (tag, limit, offset),
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def get(self, entry_id: int) -> HistoryEntry | None:
        """Return the entry, or None when no such id exists."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM http_history WHERE id = ?", (entry_id,)
            ).fetchone()
        if row is None:
            return None
        return _row_to_entry(row)

    def count(self, tag: str | None = None) -> int:
        with self._lock:
            if tag is None:
                row = self._conn.execute("SELECT COUNT(*) FROM http_history").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM http_history WHERE endpoint_type = ?", (tag,)
                ).fetchone()
        return row[0]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.debug("Closed history log at %s", self.db_path)
