"""Multi-signal ranking of indexed files for a query context.

Content similarity, per-site usage history and path/filename overlap are fused
with fixed weights. Documents without history for the site split the history
weight between content and path instead of scoring zero on it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np

from filerank.embedding.encoder import SecondaryScorer
from filerank.embedding.vocabulary import VocabularyModel, vectorize
from filerank.index.history import UsageHistoryStore, site_from_url
from filerank.index.storage import SQLiteDocumentStore
from filerank.models import DocumentRecord
from filerank.utils.text import normalize_path, tokenize
from filerank.utils.vectors import cosine_similarity

LOGGER = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60
HISTORY_WINDOW_DAYS = 90.0
HISTORY_FLOOR = 0.1

WEIGHTS_WITH_HISTORY = (0.50, 0.35, 0.15)
WEIGHTS_WITHOUT_HISTORY = (0.75, 0.25)

REASON_OK = "ok"
REASON_EMPTY_QUERY = "empty_query"
REASON_EMPTY_VOCABULARY = "empty_vocabulary"
REASON_NO_CANDIDATES = "no_candidates"
REASON_MODEL_MISMATCH = "model_mismatch"

ContentFusion = Callable[[float, Optional[float]], float]


def primary_only(primary: float, secondary: float | None) -> float:
    return primary


def prefer_secondary(primary: float, secondary: float | None) -> float:
    """Use the dense-embedding similarity whenever one is available."""
    return primary if secondary is None else secondary


FUSIONS: Dict[str, ContentFusion] = {
    "primary_only": primary_only,
    "prefer_secondary": prefer_secondary,
}


def history_boost(last_used: float, now: float) -> float:
    """Recency boost in [0.1, 1], reaching the floor after 90 days."""
    days = max(0.0, (now - last_used) / SECONDS_PER_DAY)
    return max(HISTORY_FLOOR, 1.0 - days / HISTORY_WINDOW_DAYS)


def path_score(path: str, query_tokens: set[str]) -> float:
    """Fraction of path tokens that also occur in the query."""
    tokens = tokenize(normalize_path(path))
    if not tokens or not query_tokens:
        return 0.0
    matches = sum(1 for token in tokens if token in query_tokens)
    return matches / len(tokens)


def fuse(content: float, boost: float | None, path: float) -> float:
    if boost is None:
        w_content, w_path = WEIGHTS_WITHOUT_HISTORY
        return w_content * content + w_path * path
    w_content, w_history, w_path = WEIGHTS_WITH_HISTORY
    return w_content * content + w_history * boost + w_path * path


@dataclass(slots=True)
class RankedResult:
    document: DocumentRecord
    score: float
    history_count: int = 0

    def as_dict(self) -> dict:
        return {
            "id": self.document.id,
            "name": self.document.name,
            "path": self.document.path,
            "type": self.document.type,
            "score": self.score,
            "history_count": self.history_count,
        }


@dataclass(slots=True)
class RankResponse:
    results: List[RankedResult] = field(default_factory=list)
    reason: str = REASON_OK


@dataclass(slots=True)
class _Usage:
    count: int
    last_used: float


class Ranker:
    """High-level API to rank stored documents against a query context."""

    def __init__(
        self,
        store: SQLiteDocumentStore,
        history: UsageHistoryStore | None = None,
        *,
        secondary: SecondaryScorer | None = None,
        fusion: ContentFusion = primary_only,
        candidate_pool: int = 15,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.history = history
        self.secondary = secondary
        self.fusion = fusion
        self.candidate_pool = candidate_pool
        self.clock = clock

    def rank(
        self,
        context: str,
        model: VocabularyModel,
        *,
        site: str | None = None,
        type_filter: str | None = None,
        top_n: int = 5,
    ) -> RankResponse:
        """Rank documents for ``context``.

        Raises :class:`~filerank.errors.ModelMismatchError` when stored vectors
        were not produced by ``model``.
        """
        if len(model) == 0:
            return RankResponse(reason=REASON_EMPTY_VOCABULARY)

        query_tokens = tokenize(context)
        query = vectorize(query_tokens, model)
        if query.size == 0 or not np.any(query):
            LOGGER.debug("Query shares no terms with the vocabulary")
            return RankResponse(reason=REASON_EMPTY_QUERY)

        candidates = self.store.search(
            query,
            top_n=max(self.candidate_pool, top_n),
            type_filter=type_filter,
            model_version=model.version,
        )
        if not candidates:
            return RankResponse(reason=REASON_NO_CANDIDATES)

        usage = self._usage(site)
        query_embedding = self._query_embedding(context)
        token_set = set(query_tokens)
        now = self.clock()

        ranked: list[RankedResult] = []
        for record, similarity in candidates:
            secondary = None
            if query_embedding is not None and record.embedding is not None:
                secondary = cosine_similarity(query_embedding, record.embedding)
            content = self.fusion(similarity, secondary)

            used = usage.get(record.id)
            boost = history_boost(used.last_used, now) if used else None
            score = fuse(content, boost, path_score(record.path, token_set))
            ranked.append(RankedResult(record, score, used.count if used else 0))

        ranked.sort(key=lambda result: result.score, reverse=True)
        top = [result for result in ranked if result.score > 0][:top_n]
        LOGGER.debug(
            "Ranked %s",
            ", ".join(f"{result.document.name} ({result.score:.3f})" for result in top),
        )
        if not top:
            return RankResponse(reason=REASON_NO_CANDIDATES)
        return RankResponse(results=top)

    def _usage(self, site: str | None) -> dict[str, _Usage]:
        host = site_from_url(site)
        if self.history is None or not host:
            return {}
        usage: dict[str, _Usage] = {}
        for entry in self.history.by_site(host):
            current = usage.get(entry.document_id)
            if current is None:
                usage[entry.document_id] = _Usage(1, entry.timestamp)
            else:
                current.count += 1
                current.last_used = max(current.last_used, entry.timestamp)
        return usage

    def _query_embedding(self, context: str) -> np.ndarray | None:
        if self.secondary is None or self.fusion is primary_only:
            return None
        return self.secondary.embed_query(context)
