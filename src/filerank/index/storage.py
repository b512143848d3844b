"""SQLite document store with brute-force cosine search."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict, fields
from pathlib import Path
from typing import Iterable, Iterator, List

import numpy as np

from filerank.embedding.vocabulary import VocabularyModel, VocabularySnapshot
from filerank.errors import ModelMismatchError, StorageError
from filerank.models import DocumentRecord, RescanConfig
from filerank.utils.files import matches_accept
from filerank.utils.vectors import from_sparse, pack_array, to_sparse, unpack_array

LOGGER = logging.getLogger(__name__)

_RESCAN_KEY = "rescan"

_DOCUMENT_COLUMNS = (
    "id, name, path, type, size, mtime, dimension, vector_indices, vector_values, "
    "embedding, model_version, text_preview"
)


def connect(db_path: Path) -> sqlite3.Connection:
    """Open a WAL-mode connection usable from worker threads."""
    try:
        conn = sqlite3.connect(Path(db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
    except sqlite3.Error as exc:
        raise StorageError(f"Cannot open database {db_path}: {exc}") from exc
    return conn


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise StorageError(f"Failed to {action}: {exc}") from exc


class SQLiteDocumentStore:
    """Persistence layer for document records, the vocabulary and settings.

    Vectors are kept in sparse form (non-zero indices and values plus the
    full dimension) and searched without densifying.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = connect(self.db_path)
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except sqlite3.Error as exc:
            self._rollback()
            raise StorageError(f"Transaction failed: {exc}") from exc
        except Exception:
            self._rollback()
            raise

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except sqlite3.Error as exc:  # pragma: no cover - connection already gone
            LOGGER.error("Rollback failed: %s", exc)

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    path TEXT NOT NULL,
                    type TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    mtime REAL NOT NULL,
                    dimension INTEGER NOT NULL,
                    vector_indices BLOB,
                    vector_values BLOB,
                    embedding BLOB,
                    model_version TEXT NOT NULL DEFAULT '',
                    text_preview TEXT NOT NULL DEFAULT '',
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS documents_updated
                AFTER UPDATE ON documents
                BEGIN
                    UPDATE documents SET updated_at = CURRENT_TIMESTAMP WHERE seq = NEW.seq;
                END;
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS vocabulary (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    version TEXT NOT NULL,
                    snapshot TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    # -- documents -----------------------------------------------------------

    def _write_record(self, conn: sqlite3.Connection, record: DocumentRecord) -> None:
        indices, values = to_sparse(record.vector)
        embedding = (
            sqlite3.Binary(pack_array(record.embedding, "float32"))
            if record.embedding is not None
            else None
        )
        conn.execute(
            """
            INSERT INTO documents(
                id, name, path, type, size, mtime, dimension, vector_indices,
                vector_values, embedding, model_version, text_preview
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                path = excluded.path,
                type = excluded.type,
                size = excluded.size,
                mtime = excluded.mtime,
                dimension = excluded.dimension,
                vector_indices = excluded.vector_indices,
                vector_values = excluded.vector_values,
                embedding = excluded.embedding,
                model_version = excluded.model_version,
                text_preview = excluded.text_preview
            """,
            (
                record.id,
                record.name,
                record.path,
                record.type,
                record.size,
                record.mtime,
                int(np.asarray(record.vector).shape[0]),
                sqlite3.Binary(pack_array(indices, "int32")),
                sqlite3.Binary(pack_array(values, "float32")),
                embedding,
                record.model_version,
                record.text_preview,
            ),
        )

    def upsert(self, record: DocumentRecord) -> None:
        with self.transaction() as conn:
            self._write_record(conn, record)

    def upsert_many(self, records: Iterable[DocumentRecord]) -> int:
        written = 0
        with self.transaction() as conn:
            for record in records:
                self._write_record(conn, record)
                written += 1
        return written

    def delete(self, document_id: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return cursor.rowcount > 0

    def delete_many(self, document_ids: Iterable[str]) -> int:
        removed = 0
        with self.transaction() as conn:
            for document_id in document_ids:
                removed += conn.execute(
                    "DELETE FROM documents WHERE id = ?", (document_id,)
                ).rowcount
        return removed

    def clear(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM documents")

    def count(self) -> int:
        with storage_errors("count documents"):
            return int(self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0])

    def get(self, document_id: str) -> DocumentRecord | None:
        with storage_errors(f"read document {document_id}"):
            row = self._conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        return _row_to_record(row) if row else None

    def get_all(self) -> List[DocumentRecord]:
        with storage_errors("read documents"):
            rows = self._conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents ORDER BY seq"
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def model_versions(self) -> set[str]:
        """Distinct vocabulary versions referenced by stored vectors."""
        with storage_errors("read model versions"):
            rows = self._conn.execute("SELECT DISTINCT model_version FROM documents").fetchall()
        return {row[0] for row in rows}

    def search(
        self,
        query: np.ndarray,
        *,
        top_n: int = 10,
        type_filter: str | None = None,
        model_version: str | None = None,
    ) -> List[tuple[DocumentRecord, float]]:
        """Rank stored documents by cosine similarity to ``query``.

        Non-positive scores are dropped. Equal scores keep enumeration order.
        Raises :class:`ModelMismatchError` when a candidate vector was built
        by a different vocabulary than ``model_version`` or has a different
        dimension than ``query``.
        """
        query = np.asarray(query, dtype="float32")
        if query.size == 0 or top_n <= 0:
            return []
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return []

        with storage_errors("search documents"):
            rows = self._conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents ORDER BY seq"
            ).fetchall()

        scored: list[tuple[float, sqlite3.Row]] = []
        for row in rows:
            if not matches_accept(row["type"], row["name"], type_filter):
                continue
            if model_version is not None and row["model_version"] != model_version:
                raise ModelMismatchError(row["id"], model_version, row["model_version"])
            if row["dimension"] != query.shape[0]:
                raise ModelMismatchError(
                    row["id"], f"dim={query.shape[0]}", f"dim={row['dimension']}"
                )
            indices = unpack_array(row["vector_indices"], "int32")
            values = unpack_array(row["vector_values"], "float32")
            norm = float(np.linalg.norm(values)) * query_norm
            score = float(query[indices] @ values) / norm if norm > 0 else 0.0
            if score > 0:
                scored.append((score, row))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [(_row_to_record(row), score) for score, row in scored[:top_n]]

    # -- vocabulary ----------------------------------------------------------

    def save_vocabulary(self, model: VocabularyModel) -> None:
        payload = json.dumps(model.export().to_dict(), ensure_ascii=False)
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO vocabulary(id, version, snapshot) VALUES (1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    version = excluded.version,
                    snapshot = excluded.snapshot,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (model.version, payload),
            )

    def load_vocabulary(self) -> VocabularyModel | None:
        with storage_errors("read vocabulary"):
            row = self._conn.execute(
                "SELECT version, snapshot FROM vocabulary WHERE id = 1"
            ).fetchone()
        if row is None:
            return None
        model = VocabularyModel.from_snapshot(VocabularySnapshot.from_dict(json.loads(row["snapshot"])))
        if model.version != row["version"]:
            LOGGER.warning(
                "Stored vocabulary version %s does not match its content (%s)",
                row["version"],
                model.version,
            )
        return model

    def vocabulary_version(self) -> str | None:
        with storage_errors("read vocabulary version"):
            row = self._conn.execute("SELECT version FROM vocabulary WHERE id = 1").fetchone()
        return row[0] if row else None

    # -- settings ------------------------------------------------------------

    def get_rescan_config(self) -> RescanConfig:
        with storage_errors("read rescan configuration"):
            row = self._conn.execute(
                "SELECT value FROM settings WHERE key = ?", (_RESCAN_KEY,)
            ).fetchone()
        if row is None:
            return RescanConfig()
        data = json.loads(row["value"])
        known = {f.name: data[f.name] for f in fields(RescanConfig) if f.name in data}
        return RescanConfig(**known)

    def save_rescan_config(self, config: RescanConfig) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO settings(key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (_RESCAN_KEY, json.dumps(asdict(config))),
            )


def _row_to_record(row: sqlite3.Row) -> DocumentRecord:
    vector = from_sparse(
        unpack_array(row["vector_indices"], "int32"),
        unpack_array(row["vector_values"], "float32"),
        int(row["dimension"]),
    )
    embedding = unpack_array(row["embedding"], "float32").copy() if row["embedding"] else None
    return DocumentRecord(
        id=row["id"],
        name=row["name"],
        path=row["path"],
        type=row["type"],
        size=int(row["size"]),
        mtime=float(row["mtime"]),
        vector=vector,
        text_preview=row["text_preview"],
        model_version=row["model_version"],
        embedding=embedding,
    )
