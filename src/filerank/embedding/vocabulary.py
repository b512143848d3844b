"""TF-IDF vocabulary and vectorizer.

A :class:`VocabularyModel` assigns every corpus term a dense index and an
inverse-document-frequency weight. Index assignment is only meaningful inside
one model instance, so a model is never updated in place: a changed corpus
means building a new model and re-vectorizing every document against it.
"""

from __future__ import annotations

import hashlib
import json
import math
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np


def idf_weight(document_frequency: int, corpus_size: int) -> float:
    """Smoothed inverse document frequency, always > 0."""
    return math.log((corpus_size + 1) / (document_frequency + 1)) + 1.0


@dataclass(frozen=True, slots=True)
class VocabularySnapshot:
    """Portable form of a model: ``terms[i]`` owns index ``i`` and ``idf[i]``."""

    terms: list[str]
    idf: list[float]

    def to_dict(self) -> dict:
        return {"terms": list(self.terms), "idf": list(self.idf)}

    @classmethod
    def from_dict(cls, data: dict) -> VocabularySnapshot:
        return cls(terms=list(data.get("terms", [])), idf=[float(w) for w in data.get("idf", [])])


class VocabularyModel:
    """Immutable term index plus idf weights."""

    __slots__ = ("_terms", "_idf", "_index", "_version")

    def __init__(self, terms: Sequence[str], idf: Sequence[float]) -> None:
        if len(terms) != len(idf):
            raise ValueError("Terms and idf length mismatch")
        self._terms = tuple(terms)
        self._idf = tuple(float(w) for w in idf)
        self._index = {term: i for i, term in enumerate(self._terms)}
        if len(self._index) != len(self._terms):
            raise ValueError("Duplicate terms in vocabulary")
        self._version = _compute_version(self._terms, self._idf)

    @classmethod
    def empty(cls) -> VocabularyModel:
        return cls((), ())

    @classmethod
    def build(cls, corpus: Iterable[Sequence[str]]) -> VocabularyModel:
        """Build a model from tokenized documents.

        Document frequency counts each term at most once per document. Terms
        are indexed in the order they are first seen.
        """
        document_frequency: dict[str, int] = {}
        corpus_size = 0
        for tokens in corpus:
            corpus_size += 1
            for term in dict.fromkeys(tokens):
                document_frequency[term] = document_frequency.get(term, 0) + 1

        terms = list(document_frequency)
        idf = [idf_weight(document_frequency[term], corpus_size) for term in terms]
        return cls(terms, idf)

    @classmethod
    def from_snapshot(cls, snapshot: VocabularySnapshot) -> VocabularyModel:
        return cls(snapshot.terms, snapshot.idf)

    def export(self) -> VocabularySnapshot:
        return VocabularySnapshot(terms=list(self._terms), idf=list(self._idf))

    @property
    def version(self) -> str:
        """Content hash identifying this exact index assignment and weighting."""
        return self._version

    @property
    def terms(self) -> tuple[str, ...]:
        return self._terms

    def __len__(self) -> int:
        return len(self._terms)

    def __contains__(self, term: object) -> bool:
        return term in self._index

    def index_of(self, term: str) -> int | None:
        return self._index.get(term)

    def idf(self, term: str) -> float | None:
        index = self._index.get(term)
        return None if index is None else self._idf[index]

    def idf_at(self, index: int) -> float:
        return self._idf[index]


def _compute_version(terms: Sequence[str], idf: Sequence[float]) -> str:
    payload = json.dumps([list(terms), list(idf)], ensure_ascii=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("ascii")).hexdigest()[:16]


def vectorize(tokens: Sequence[str], model: VocabularyModel) -> np.ndarray:
    """Return the L2-normalized float32 TF-IDF vector of ``tokens``.

    Terms missing from the model are dropped. A token list sharing no term
    with the model gives an all-zero vector; an empty model gives a
    zero-length one.
    """
    dimension = len(model)
    if dimension == 0:
        return np.zeros(0, dtype="float32")

    vector = np.zeros(dimension, dtype="float64")
    counts = Counter(tokens)
    max_tf = max(max(counts.values(), default=1), 1)
    for term, count in counts.items():
        index = model.index_of(term)
        if index is not None:
            vector[index] = (count / max_tf) * model.idf_at(index)

    norm = float(np.linalg.norm(vector))
    if norm > 0:
        vector /= norm
    return vector.astype("float32")
