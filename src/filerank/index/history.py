"""Append-only log of file selections, keyed by destination site."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List
from urllib.parse import urlparse

from filerank.errors import StorageError
from filerank.index.storage import connect, storage_errors
from filerank.models import HistoryEntry

LOGGER = logging.getLogger(__name__)

MAX_CONTEXT_CHARS = 200

_HISTORY_COLUMNS = (
    "id, document_id, document_name, document_type, site, page_url, page_title, "
    "context, timestamp"
)


def site_from_url(url: str | None) -> str:
    """Return the lower-cased host of ``url``; bare hosts pass through."""
    if not url:
        return ""
    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"//{candidate}"
    try:
        host = urlparse(candidate).hostname
    except ValueError:
        return ""
    return host or ""


class UsageHistoryStore:
    """History entries stored next to the documents, on their own connection.

    Writes come from a background executor, so every statement runs under a
    lock.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = connect(self.db_path)
        self._lock = threading.Lock()
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StorageError(f"History write failed: {exc}") from exc

    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_id TEXT NOT NULL,
                    document_name TEXT NOT NULL DEFAULT '',
                    document_type TEXT NOT NULL DEFAULT '',
                    site TEXT NOT NULL,
                    page_url TEXT NOT NULL DEFAULT '',
                    page_title TEXT NOT NULL DEFAULT '',
                    context TEXT NOT NULL DEFAULT '',
                    timestamp REAL NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_history_site ON history(site)")

    def append(self, entry: HistoryEntry) -> int:
        """Store ``entry`` and return its sequence id."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO history(
                    document_id, document_name, document_type, site, page_url,
                    page_title, context, timestamp
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.document_id,
                    entry.document_name,
                    entry.document_type,
                    entry.site.lower(),
                    entry.page_url,
                    entry.page_title,
                    entry.context[:MAX_CONTEXT_CHARS],
                    entry.timestamp,
                ),
            )
        LOGGER.debug("Recorded selection of %s on %s", entry.document_id, entry.site)
        return int(cursor.lastrowid)

    def by_site(self, site: str) -> List[HistoryEntry]:
        if not site:
            return []
        return self._select(
            f"SELECT {_HISTORY_COLUMNS} FROM history WHERE site = ? ORDER BY id",
            (site.lower(),),
        )

    def all(self, limit: int | None = None) -> List[HistoryEntry]:
        """Most recent entries first."""
        if limit is None:
            return self._select(f"SELECT {_HISTORY_COLUMNS} FROM history ORDER BY id DESC", ())
        return self._select(
            f"SELECT {_HISTORY_COLUMNS} FROM history ORDER BY id DESC LIMIT ?", (limit,)
        )

    def count(self) -> int:
        with self._lock, storage_errors("count history"):
            return int(self._conn.execute("SELECT COUNT(*) FROM history").fetchone()[0])

    def prune(self, older_than: float) -> int:
        """Drop entries with a timestamp before ``older_than`` (epoch seconds)."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM history WHERE timestamp < ?", (older_than,))
        return cursor.rowcount

    def _select(self, sql: str, params: tuple) -> List[HistoryEntry]:
        with self._lock, storage_errors("read history"):
            rows = self._conn.execute(sql, params).fetchall()
        return [
            HistoryEntry(
                id=row["id"],
                document_id=row["document_id"],
                document_name=row["document_name"],
                document_type=row["document_type"],
                site=row["site"],
                page_url=row["page_url"],
                page_title=row["page_title"],
                context=row["context"],
                timestamp=float(row["timestamp"]),
            )
            for row in rows
        ]
