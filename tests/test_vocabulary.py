"""Tests for the TF-IDF vocabulary."""

from __future__ import annotations

import math

import numpy as np
import pytest

from filerank.embedding.vocabulary import (
    VocabularyModel,
    VocabularySnapshot,
    idf_weight,
    vectorize,
)


class TestIdfWeight:
    """Tests for idf_weight."""

    def test_term_in_every_document(self) -> None:
        """A term present everywhere still has weight 1."""
        assert idf_weight(3, 3) == pytest.approx(1.0)

    def test_rare_terms_weigh_more(self) -> None:
        """Lower document frequency gives a higher weight."""
        assert idf_weight(1, 10) > idf_weight(5, 10) > 0

    def test_always_positive(self) -> None:
        """No corpus size or document frequency yields a non-positive weight."""
        for corpus_size in range(0, 20):
            for document_frequency in range(0, corpus_size + 1):
                assert idf_weight(document_frequency, corpus_size) > 0


class TestVocabularyModel:
    """Tests for VocabularyModel."""

    def test_build_indexes_terms_in_discovery_order(self) -> None:
        """Indices follow first appearance across documents."""
        model = VocabularyModel.build([["tax", "return"], ["tax", "invoice"]])
        assert model.terms == ("tax", "return", "invoice")
        assert model.index_of("invoice") == 2
        assert model.index_of("missing") is None

    def test_build_computes_smoothed_idf(self) -> None:
        """idf = ln((N + 1) / (df + 1)) + 1."""
        model = VocabularyModel.build([["tax", "return"], ["tax", "invoice"]])
        assert model.idf("tax") == pytest.approx(1.0)
        assert model.idf("return") == pytest.approx(math.log(3 / 2) + 1)
        assert model.idf("missing") is None

    def test_document_frequency_counts_once_per_document(self) -> None:
        """Repeated terms in one document do not inflate df."""
        model = VocabularyModel.build([["a", "a", "a"], ["b"]])
        assert model.idf("a") == pytest.approx(model.idf("b"))

    def test_empty_model(self) -> None:
        """The empty model has no terms but a valid version."""
        model = VocabularyModel.empty()
        assert len(model) == 0
        assert len(model.version) == 16
        assert "x" not in model

    def test_build_from_empty_corpus(self) -> None:
        """An empty corpus yields an empty model."""
        assert len(VocabularyModel.build([])) == 0

    def test_version_depends_on_content(self) -> None:
        """Same corpus, same version; different corpus, different version."""
        first = VocabularyModel.build([["a", "b"]])
        second = VocabularyModel.build([["a", "b"]])
        third = VocabularyModel.build([["b", "a"]])
        assert first.version == second.version
        assert first.version != third.version

    def test_snapshot_restores_same_model(self) -> None:
        """Exported snapshots rebuild an identical model."""
        model = VocabularyModel.build([["alpha", "beta"], ["beta", "gamma"]])
        data = model.export().to_dict()
        restored = VocabularyModel.from_snapshot(VocabularySnapshot.from_dict(data))
        assert restored.terms == model.terms
        assert restored.version == model.version

    def test_length_mismatch_rejected(self) -> None:
        """Terms and weights must line up."""
        with pytest.raises(ValueError):
            VocabularyModel(["a", "b"], [1.0])

    def test_duplicate_terms_rejected(self) -> None:
        """Every term owns exactly one index."""
        with pytest.raises(ValueError):
            VocabularyModel(["a", "a"], [1.0, 1.0])

    def test_contains(self) -> None:
        """Membership reflects the term list."""
        model = VocabularyModel.build([["report"]])
        assert "report" in model
        assert "invoice" not in model


class TestVectorize:
    """Tests for vectorize."""

    def test_vector_is_unit_length_float32(self) -> None:
        """Output is L2-normalized float32 with one slot per term."""
        model = VocabularyModel.build([["tax", "return"], ["invoice"]])
        vector = vectorize(["tax", "return", "return"], model)
        assert vector.dtype == np.float32
        assert vector.shape == (3,)
        assert float(np.linalg.norm(vector)) == pytest.approx(1.0, abs=1e-6)

    def test_term_frequency_normalized_by_max(self) -> None:
        """Weights are (tf / max tf) * idf before normalization."""
        model = VocabularyModel.build([["a", "b"], ["a"]])
        vector = vectorize(["a", "a", "b"], model)
        expected_ratio = (1.0 * model.idf("a")) / (0.5 * model.idf("b"))
        assert vector[0] / vector[1] == pytest.approx(expected_ratio, rel=1e-5)

    def test_unknown_terms_give_zero_vector(self) -> None:
        """Tokens outside the vocabulary are ignored."""
        model = VocabularyModel.build([["a", "b"]])
        vector = vectorize(["zzz"], model)
        assert vector.shape == (2,)
        assert not np.any(vector)

    def test_empty_tokens(self) -> None:
        """No tokens gives an all-zero vector."""
        model = VocabularyModel.build([["a"]])
        assert not np.any(vectorize([], model))

    def test_restored_snapshot_vectorizes_identically(self) -> None:
        """A model restored from its snapshot produces bit-identical vectors."""
        corpus = [["invoice", "march", "invoice"], ["简", "历", "简历"], ["march", "report"]]
        model = VocabularyModel.build(corpus)
        restored = VocabularyModel.from_snapshot(
            VocabularySnapshot.from_dict(model.export().to_dict())
        )

        for tokens in corpus:
            original = vectorize(tokens, model)
            assert len(original) == len(model)
            assert np.array_equal(original, vectorize(tokens, restored))

    def test_empty_model_gives_zero_length_vector(self) -> None:
        """Nothing to project onto without a vocabulary."""
        assert vectorize(["a"], VocabularyModel.empty()).shape == (0,)
