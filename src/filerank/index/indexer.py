"""Change-aware indexing pipeline."""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from filerank.embedding.encoder import SecondaryScorer
from filerank.embedding.vocabulary import VocabularyModel, vectorize
from filerank.index.storage import SQLiteDocumentStore
from filerank.ingestion.extract import DEFAULT_MAX_CHARS, extract_text
from filerank.models import DocumentRecord, FileEntry
from filerank.utils.files import iter_files
from filerank.utils.text import tokenize

LOGGER = logging.getLogger(__name__)

ProgressCb = Callable[[str, int, int], None]


@dataclass(slots=True)
class IndexStats:
    added_or_modified: int = 0
    unchanged: int = 0
    deleted: int = 0
    total_indexed: int = 0
    status: str = "ok"
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in ("ok", "noop")

    def as_dict(self) -> dict:
        return dataclasses.asdict(self)


@dataclass(slots=True)
class _Partition:
    changed: list[FileEntry]
    unchanged: list[FileEntry]
    deleted: list[str]


def partition(entries: Sequence[FileEntry], existing: dict[str, DocumentRecord]) -> _Partition:
    """Split enumerated files into changed-or-new, unchanged and deleted ids."""
    changed: list[FileEntry] = []
    unchanged: list[FileEntry] = []
    for entry in entries:
        record = existing.get(entry.id)
        if record is not None and record.fingerprint == entry.fingerprint:
            unchanged.append(entry)
        else:
            changed.append(entry)
    current = {entry.id for entry in entries}
    deleted = [document_id for document_id in existing if document_id not in current]
    return _Partition(changed=changed, unchanged=unchanged, deleted=deleted)


class Indexer:
    """Keeps the document store in sync with a folder.

    Any change to the corpus rebuilds the vocabulary from scratch and
    re-vectorizes every document, since index assignment is only valid within
    a single vocabulary. ``model`` is the last vocabulary whose vectors were
    fully written and whose snapshot was persisted.
    """

    def __init__(
        self,
        store: SQLiteDocumentStore,
        *,
        model: VocabularyModel | None = None,
        secondary: SecondaryScorer | None = None,
        max_text_chars: int = DEFAULT_MAX_CHARS,
        preview_chars: int = 4096,
        batch_size: int = 32,
    ) -> None:
        self.store = store
        self.model = model or VocabularyModel.empty()
        self.secondary = secondary
        self.max_text_chars = max_text_chars
        self.preview_chars = preview_chars
        self.batch_size = max(1, batch_size)

    def index(
        self,
        root: Path,
        *,
        full: bool = False,
        progress: ProgressCb | None = None,
        cancel: threading.Event | None = None,
    ) -> IndexStats:
        """Reconcile the store with the files currently under ``root``."""
        stats = IndexStats()
        try:
            entries = list(iter_files(Path(root)))
        except OSError as exc:
            LOGGER.error("Cannot enumerate %s: %s", root, exc)
            stats.status = "failed"
            stats.reason = str(exc)
            return stats

        existing = {record.id: record for record in self.store.get_all()}
        if full:
            current = {entry.id for entry in entries}
            stats.deleted = sum(1 for document_id in existing if document_id not in current)
            self.store.clear()
            existing = {}

        parts = partition(entries, existing)
        stats.added_or_modified = len(parts.changed)
        stats.unchanged = len(parts.unchanged)

        if parts.deleted:
            stats.deleted = self.store.delete_many(parts.deleted)
            LOGGER.info("Removed %d deleted files from the index", stats.deleted)

        if not full and not parts.changed and not parts.deleted:
            LOGGER.info("No changes detected, %d files up to date", stats.unchanged)
            stats.status = "noop"
            stats.total_indexed = self.store.count()
            return stats

        texts = self._extract(parts.changed, progress, cancel)
        if texts is None:
            return self._cancelled(stats)

        changed_texts = {entry.id: text for entry, text in zip(parts.changed, texts)}
        corpus = dict(changed_texts)
        for entry in parts.unchanged:
            corpus[entry.id] = existing[entry.id].text_preview
        tokens = {document_id: tokenize(text) for document_id, text in corpus.items()}

        # Vocabulary over changed and unchanged documents alike.
        model = VocabularyModel.build(tokens[entry.id] for entry in entries)
        LOGGER.info("Built vocabulary of %d terms over %d documents", len(model), len(entries))

        embeddings = self._embed(parts.changed, texts)

        records: list[DocumentRecord] = []
        for entry in entries:
            vector = vectorize(tokens[entry.id], model)
            previous = existing.get(entry.id)
            if entry.id in changed_texts:
                records.append(
                    DocumentRecord(
                        id=entry.id,
                        name=entry.name,
                        path=entry.id,
                        type=entry.type,
                        size=entry.size,
                        mtime=entry.mtime,
                        vector=vector,
                        text_preview=changed_texts[entry.id][: self.preview_chars],
                        model_version=model.version,
                        embedding=embeddings.get(entry.id),
                    )
                )
            else:
                records.append(
                    dataclasses.replace(previous, vector=vector, model_version=model.version)
                )

        total = len(records)
        for start in range(0, total, self.batch_size):
            if cancel is not None and cancel.is_set():
                return self._cancelled(stats)
            self.store.upsert_many(records[start : start + self.batch_size])
            if progress is not None:
                progress("vectorize", min(start + self.batch_size, total), total)

        # Persist the snapshot only once every vector matches it.
        self.store.save_vocabulary(model)
        self.model = model
        stats.total_indexed = self.store.count()
        LOGGER.info(
            "Indexed %s: %d new/modified, %d unchanged, %d deleted, %d total",
            root,
            stats.added_or_modified,
            stats.unchanged,
            stats.deleted,
            stats.total_indexed,
        )
        return stats

    def _extract(
        self,
        entries: Sequence[FileEntry],
        progress: ProgressCb | None,
        cancel: threading.Event | None,
    ) -> list[str] | None:
        texts: list[str] = []
        total = len(entries)
        for start in range(0, total, self.batch_size):
            if cancel is not None and cancel.is_set():
                return None
            for entry in entries[start : start + self.batch_size]:
                LOGGER.debug("Extracting text from %s", entry.path)
                texts.append(
                    extract_text(
                        entry.path, entry.type, label=entry.id, max_chars=self.max_text_chars
                    )
                )
            if progress is not None:
                progress("extract", len(texts), total)
        return texts

    def _embed(self, entries: Sequence[FileEntry], texts: Sequence[str]) -> dict:
        if self.secondary is None or not entries:
            return {}
        vectors = self.secondary.embed_many(texts)
        return {entry.id: vector for entry, vector in zip(entries, vectors) if vector is not None}

    def _cancelled(self, stats: IndexStats) -> IndexStats:
        LOGGER.warning("Indexing cancelled, vocabulary snapshot not saved")
        stats.status = "cancelled"
        stats.reason = "cancelled"
        stats.total_indexed = self.store.count()
        return stats
