"""Tests for multi-signal ranking."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from filerank.embedding.vocabulary import VocabularyModel
from filerank.errors import ModelMismatchError
from filerank.index.history import UsageHistoryStore
from filerank.index.indexer import Indexer
from filerank.index.search import (
    REASON_EMPTY_QUERY,
    REASON_EMPTY_VOCABULARY,
    REASON_NO_CANDIDATES,
    REASON_OK,
    SECONDS_PER_DAY,
    RankedResult,
    Ranker,
    fuse,
    history_boost,
    path_score,
    prefer_secondary,
    primary_only,
)
from filerank.index.storage import SQLiteDocumentStore
from filerank.models import HistoryEntry

NOW = 1_750_000_000.0

TWIN_REPORTS = {
    "a/report.txt": "quarterly report",
    "b/report.txt": "quarterly report",
}


def _index(root, store: SQLiteDocumentStore, secondary=None) -> VocabularyModel:
    indexer = Indexer(store, secondary=secondary)
    indexer.index(root)
    return indexer.model


class TestHistoryBoost:
    """Tests for history_boost."""

    def test_fresh_use(self) -> None:
        """A selection made just now gives the full boost."""
        assert history_boost(NOW, NOW) == pytest.approx(1.0)

    def test_linear_decay(self) -> None:
        """Halfway through the window the boost is halved."""
        assert history_boost(NOW - 45 * SECONDS_PER_DAY, NOW) == pytest.approx(0.5)

    def test_floor(self) -> None:
        """Old selections keep a small positive boost."""
        assert history_boost(NOW - 365 * SECONDS_PER_DAY, NOW) == pytest.approx(0.1)

    def test_future_timestamp(self) -> None:
        """Clock skew never pushes the boost above 1."""
        assert history_boost(NOW + SECONDS_PER_DAY, NOW) == pytest.approx(1.0)

    def test_monotonic(self) -> None:
        """Older uses never score higher."""
        boosts = [history_boost(NOW - days * SECONDS_PER_DAY, NOW) for days in range(0, 120, 5)]
        assert boosts == sorted(boosts, reverse=True)
        assert all(0.1 <= boost <= 1.0 for boost in boosts)


class TestPathScore:
    """Tests for path_score."""

    def test_fraction_of_matching_tokens(self) -> None:
        """Score is matched path tokens over all path tokens."""
        assert path_score("resume/CV.pdf", {"resume"}) == pytest.approx(1 / 3)
        assert path_score("resume/CV.pdf", {"resume", "cv", "pdf"}) == pytest.approx(1.0)

    def test_no_overlap(self) -> None:
        """Unrelated queries score 0."""
        assert path_score("taxes/2023.pdf", {"resume"}) == 0.0

    def test_empty_inputs(self) -> None:
        """Empty paths or queries score 0."""
        assert path_score("", {"resume"}) == 0.0
        assert path_score("resume.pdf", set()) == 0.0


class TestFuse:
    """Tests for score fusion."""

    def test_weights_without_history(self) -> None:
        """History weight is redistributed to content and path."""
        assert fuse(1.0, None, 1.0) == pytest.approx(1.0)
        assert fuse(0.5, None, 0.0) == pytest.approx(0.375)
        assert fuse(0.0, None, 1.0) == pytest.approx(0.25)

    def test_weights_with_history(self) -> None:
        """Content, history and path weigh 0.5, 0.35 and 0.15."""
        assert fuse(1.0, 1.0, 1.0) == pytest.approx(1.0)
        assert fuse(0.0, 1.0, 0.0) == pytest.approx(0.35)
        assert fuse(0.0, 0.0, 1.0) == pytest.approx(0.15)

    def test_content_fusion_strategies(self) -> None:
        """primary_only ignores dense scores; prefer_secondary uses them when present."""
        assert primary_only(0.2, 0.9) == 0.2
        assert prefer_secondary(0.2, 0.9) == 0.9
        assert prefer_secondary(0.2, None) == 0.2


class TestRanker:
    """Tests for Ranker."""

    @patch("filerank.ingestion.extract.fitz")
    def test_folder_name_matches_query(
        self, mock_fitz: MagicMock, make_tree, temp_db: SQLiteDocumentStore
    ) -> None:
        """A file inside a 'resume' folder wins a resume query."""
        mock_fitz.open.side_effect = RuntimeError("not a real pdf")
        root = make_tree(
            {
                "resume/CV.pdf": b"%PDF-1.4",
                "taxes/return.txt": "income tax return",
                "photos/cat.png": b"\x89PNG",
            }
        )
        model = _index(root, temp_db)

        response = Ranker(temp_db, clock=lambda: NOW).rank("Please upload your resume", model)

        assert response.reason == REASON_OK
        assert response.results[0].document.id == "resume/CV.pdf"

    def test_empty_vocabulary(self, temp_db: SQLiteDocumentStore) -> None:
        """Nothing indexed means nothing to rank."""
        response = Ranker(temp_db).rank("anything", VocabularyModel.empty())
        assert response.results == []
        assert response.reason == REASON_EMPTY_VOCABULARY

    def test_out_of_vocabulary_query(self, make_tree, temp_db: SQLiteDocumentStore) -> None:
        """A query sharing no terms with the corpus returns nothing."""
        model = _index(make_tree(TWIN_REPORTS), temp_db)

        response = Ranker(temp_db).rank("zebra xylophone", model)

        assert response.results == []
        assert response.reason == REASON_EMPTY_QUERY

    def test_type_filter_without_match(self, make_tree, temp_db: SQLiteDocumentStore) -> None:
        """Filtering out every candidate reports no candidates."""
        model = _index(make_tree(TWIN_REPORTS), temp_db)

        response = Ranker(temp_db).rank("quarterly report", model, type_filter="image/*")

        assert response.results == []
        assert response.reason == REASON_NO_CANDIDATES

    def test_equal_content_scores_equally(self, make_tree, temp_db: SQLiteDocumentStore) -> None:
        """Identical content in sibling folders scores the same."""
        model = _index(make_tree(TWIN_REPORTS), temp_db)

        response = Ranker(temp_db).rank("quarterly report", model)

        assert {result.document.id for result in response.results} == {
            "a/report.txt",
            "b/report.txt",
        }
        assert response.results[0].score == pytest.approx(response.results[1].score)

    def test_top_n_truncates(self, make_tree, temp_db: SQLiteDocumentStore) -> None:
        """At most top_n results are returned."""
        model = _index(make_tree(TWIN_REPORTS), temp_db)
        response = Ranker(temp_db).rank("quarterly report", model, top_n=1)
        assert len(response.results) == 1

    def test_history_on_site_promotes_document(
        self,
        make_tree,
        temp_db: SQLiteDocumentStore,
        history_store: UsageHistoryStore,
    ) -> None:
        """A previous selection on the same site outranks an equal match."""
        model = _index(make_tree(TWIN_REPORTS), temp_db)
        history_store.append(
            HistoryEntry(document_id="b/report.txt", site="mail.example.com", timestamp=NOW)
        )
        ranker = Ranker(temp_db, history_store, clock=lambda: NOW)

        response = ranker.rank(
            "quarterly report", model, site="https://mail.example.com/compose"
        )

        assert response.results[0].document.id == "b/report.txt"
        assert response.results[0].history_count == 1
        assert response.results[1].history_count == 0

    def test_history_is_per_site(
        self,
        make_tree,
        temp_db: SQLiteDocumentStore,
        history_store: UsageHistoryStore,
    ) -> None:
        """Selections on other sites have no effect."""
        model = _index(make_tree(TWIN_REPORTS), temp_db)
        history_store.append(
            HistoryEntry(document_id="b/report.txt", site="mail.example.com", timestamp=NOW)
        )
        ranker = Ranker(temp_db, history_store, clock=lambda: NOW)

        response = ranker.rank("quarterly report", model, site="other.org")

        assert response.results[0].score == pytest.approx(response.results[1].score)
        assert all(result.history_count == 0 for result in response.results)

    def test_results_sorted_and_positive(self, make_tree, temp_db: SQLiteDocumentStore) -> None:
        """Scores are strictly positive and non-increasing."""
        root = make_tree(
            {
                "invoice.txt": "invoice march consulting",
                "report.txt": "quarterly report march",
                "other.txt": "holiday photos",
            }
        )
        model = _index(root, temp_db)

        response = Ranker(temp_db).rank("march invoice", model)
        scores = [result.score for result in response.results]

        assert response.results[0].document.id == "invoice.txt"
        assert scores == sorted(scores, reverse=True)
        assert all(score > 0 for score in scores)
        assert "other.txt" not in [result.document.id for result in response.results]

    def test_prefer_secondary_uses_dense_similarity(
        self, make_tree, temp_db: SQLiteDocumentStore
    ) -> None:
        """Dense embeddings replace TF-IDF similarity when preferred."""
        secondary = MagicMock()
        secondary.embed_many.side_effect = lambda texts: [
            np.array([1.0, 0.0] if text.startswith("b ") else [0.0, 1.0], dtype="float32")
            for text in texts
        ]
        secondary.embed_query.return_value = np.array([1.0, 0.0], dtype="float32")
        model = _index(make_tree(TWIN_REPORTS), temp_db, secondary=secondary)

        response = Ranker(temp_db, secondary=secondary, fusion=prefer_secondary).rank(
            "quarterly report", model
        )

        assert response.results[0].document.id == "b/report.txt"
        secondary.embed_query.assert_called_once_with("quarterly report")

    def test_primary_only_skips_query_embedding(
        self, make_tree, temp_db: SQLiteDocumentStore
    ) -> None:
        """The dense model is not queried when its score is unused."""
        secondary = MagicMock()
        secondary.embed_many.side_effect = lambda texts: [None for _ in texts]
        model = _index(make_tree(TWIN_REPORTS), temp_db, secondary=secondary)

        Ranker(temp_db, secondary=secondary, fusion=primary_only).rank("quarterly report", model)

        secondary.embed_query.assert_not_called()

    def test_stale_vectors_raise(self, make_tree, temp_db: SQLiteDocumentStore) -> None:
        """Ranking against another vocabulary is refused."""
        _index(make_tree(TWIN_REPORTS), temp_db)
        other = VocabularyModel.build([["quarterly", "report"]])

        with pytest.raises(ModelMismatchError):
            Ranker(temp_db).rank("quarterly report", other)


class TestRankedResult:
    """Tests for RankedResult."""

    def test_as_dict(self, make_tree, temp_db: SQLiteDocumentStore) -> None:
        """Results serialize without the vector."""
        _index(make_tree(TWIN_REPORTS), temp_db)
        record = temp_db.get("a/report.txt")

        data = RankedResult(record, 0.5, history_count=2).as_dict()

        assert data == {
            "id": "a/report.txt",
            "name": "report.txt",
            "path": "a/report.txt",
            "type": "text/plain",
            "score": 0.5,
            "history_count": 2,
        }
