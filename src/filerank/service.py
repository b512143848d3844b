"""Indexing and ranking facade shared by the CLI, the web API and the scheduler."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from filerank.config import AppConfig
from filerank.embedding.encoder import EmbeddingConfig, EmbeddingModel, SecondaryScorer
from filerank.embedding.vocabulary import VocabularyModel
from filerank.errors import ModelMismatchError
from filerank.index.history import UsageHistoryStore, site_from_url
from filerank.index.indexer import Indexer, IndexStats, ProgressCb
from filerank.index.search import (
    REASON_MODEL_MISMATCH,
    ContentFusion,
    RankResponse,
    Ranker,
    prefer_secondary,
    primary_only,
)
from filerank.index.storage import SQLiteDocumentStore
from filerank.models import DocumentRecord, HistoryEntry, RescanConfig

LOGGER = logging.getLogger(__name__)


class IndexService:
    """Owns the current vocabulary and serializes indexing against ranking.

    A single re-entrant lock doubles as the "indexing in progress" flag: a rank
    query issued during a pass waits for it, so a query vector is never
    compared against documents vectorized under another vocabulary.
    History writes run on a background worker and never block ranking.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        base_dir: Path | None = None,
        secondary: SecondaryScorer | None = None,
        fusion: ContentFusion | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.db_path = self.config.resolve_db_path(base_dir)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        if secondary is None and self.config.secondary_model:
            secondary = SecondaryScorer(
                EmbeddingModel(EmbeddingConfig(model_name=self.config.secondary_model))
            )
        if fusion is None:
            fusion = prefer_secondary if secondary is not None else primary_only

        self.store = SQLiteDocumentStore(self.db_path)
        self.history = UsageHistoryStore(self.db_path)
        self._lock = threading.RLock()
        self._indexing = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="filerank-history")

        self.indexer = Indexer(
            self.store,
            model=self._load_model(),
            secondary=secondary,
            max_text_chars=self.config.max_text_chars,
            preview_chars=self.config.preview_chars,
            batch_size=self.config.batch_size,
        )
        self.ranker = Ranker(
            self.store,
            self.history,
            secondary=secondary,
            fusion=fusion,
            candidate_pool=self.config.candidate_pool,
        )

    def __enter__(self) -> IndexService:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.history.close()
        self.store.close()

    def _load_model(self) -> VocabularyModel:
        model = self.store.load_vocabulary()
        if model is None:
            return VocabularyModel.empty()
        LOGGER.info("Vocabulary loaded: %d terms", len(model))
        stale = self.store.model_versions() - {model.version}
        if stale:
            LOGGER.warning(
                "Stored vectors reference other vocabularies (%s); next rank triggers a rebuild",
                ", ".join(sorted(stale)),
            )
        return model

    @property
    def model(self) -> VocabularyModel:
        return self.indexer.model

    @property
    def indexing(self) -> bool:
        return self._indexing.is_set()

    def count(self) -> int:
        with self._lock:
            return self.store.count()

    def documents(self) -> list[DocumentRecord]:
        with self._lock:
            return self.store.get_all()

    def index_begin(
        self,
        root: Path,
        *,
        full: bool = False,
        progress: ProgressCb | None = None,
        cancel: threading.Event | None = None,
    ) -> IndexStats:
        """Run one indexing pass over ``root`` and remember it for rescans."""
        root = Path(root).expanduser().resolve()
        with self._lock:
            self._indexing.set()
            try:
                stats = self.indexer.index(root, full=full, progress=progress, cancel=cancel)
            finally:
                self._indexing.clear()
            if stats.ok:
                config = self.store.get_rescan_config()
                self.store.save_rescan_config(
                    dataclasses.replace(config, last_scan_timestamp=time.time(), root=str(root))
                )
        return stats

    def rank(
        self,
        context: str,
        site: str | None = None,
        type_filter: str | None = None,
        top_n: int | None = None,
    ) -> RankResponse:
        top_n = top_n or self.config.top_n
        with self._lock:
            if self.store.vocabulary_version() not in (None, self.model.version):
                self._reload_snapshot()
            try:
                return self.ranker.rank(
                    context, self.model, site=site, type_filter=type_filter, top_n=top_n
                )
            except ModelMismatchError as exc:
                LOGGER.warning("%s", exc)

            if not self._reload_snapshot() and not self._rebuild():
                return RankResponse(reason=REASON_MODEL_MISMATCH)
            try:
                return self.ranker.rank(
                    context, self.model, site=site, type_filter=type_filter, top_n=top_n
                )
            except ModelMismatchError as exc:
                LOGGER.error("Index still inconsistent after rebuild: %s", exc)
                return RankResponse(reason=REASON_MODEL_MISMATCH)

    def _reload_snapshot(self) -> bool:
        """Adopt a snapshot committed by another process when it covers every vector."""
        model = self.store.load_vocabulary()
        if model is None or model.version == self.model.version:
            return False
        if not self.store.model_versions() <= {model.version}:
            return False
        LOGGER.info("Reloaded vocabulary %s committed to %s", model.version, self.db_path)
        self.indexer.model = model
        return True

    def _rebuild(self) -> bool:
        root = self.store.get_rescan_config().root
        if not root:
            LOGGER.error("Vocabulary mismatch but no indexed folder is known; rescan required")
            return False
        LOGGER.info("Rebuilding index of %s from scratch", root)
        return self.index_begin(Path(root), full=True).ok

    def record_selection(
        self,
        document_id: str,
        page_url: str,
        *,
        page_title: str = "",
        context: str = "",
        document_name: str = "",
        document_type: str = "",
        timestamp: float | None = None,
    ) -> Future:
        """Queue a history entry; failures are logged, never raised to the caller."""
        entry = HistoryEntry(
            document_id=document_id,
            site=site_from_url(page_url),
            timestamp=time.time() if timestamp is None else timestamp,
            page_url=page_url,
            page_title=page_title,
            context=context,
            document_name=document_name,
            document_type=document_type,
        )
        future = self._executor.submit(self.history.append, entry)
        future.add_done_callback(_log_history_failure)
        return future

    def rescan_config(self) -> RescanConfig:
        with self._lock:
            return self.store.get_rescan_config()

    def update_rescan_config(self, **changes) -> RescanConfig:
        with self._lock:
            config = dataclasses.replace(self.store.get_rescan_config(), **changes)
            self.store.save_rescan_config(config)
        return config


def _log_history_failure(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        LOGGER.error("Failed to record selection: %s", exc)
