"""Optional dense-embedding scorer backed by sentence-transformers.

The TF-IDF vectors are always the primary signal. When a model name is
configured, documents and queries additionally get a dense embedding whose
similarity can be fused into the content score. Every failure on this path is
logged and reported as "no signal" so ranking falls back to TF-IDF alone.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Literal, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

logger = logging.getLogger(__name__)

ProgressCb = Callable[[int, int], None]


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 10
    pause_seconds: float = 0.2
    max_chars: int = 8000
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] = "torch"
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer`, loaded on first use.

    A non-torch backend that fails to load falls back to PyTorch.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._model: SentenceTransformer | None = None

    def _load_model(self) -> SentenceTransformer:
        return SentenceTransformer(
            self.config.model_name,
            backend=self.config.backend,
            device=self.config.device,
        )

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            try:
                self._model = self._load_model()
            except Exception as e:
                if self.config.backend == "torch":
                    raise
                logger.warning(
                    f"Failed to load model with backend '{self.config.backend}': {e}. "
                    "Falling back to PyTorch."
                )
                self.config.backend = "torch"
                self._model = self._load_model()
            logger.info(
                "Loaded embedding model %s (backend: %s)",
                self.config.model_name,
                self.config.backend,
            )
        return self._model

    @property
    def dimension(self) -> int:
        return int(self.model.get_sentence_embedding_dimension())

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = [text[: self.config.max_chars] for text in texts]
        embeddings = self.model.encode(
            sentences,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    def embed_query(self, text: str) -> np.ndarray:
        return self.embed([text])[0]


class SecondaryScorer:
    """Batched, paced access to an embedding model that never raises."""

    def __init__(
        self,
        model: EmbeddingModel,
        *,
        batch_size: int | None = None,
        pause_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.model = model
        self.batch_size = max(1, batch_size or model.config.batch_size)
        self.pause_seconds = model.config.pause_seconds if pause_seconds is None else pause_seconds
        self._sleep = sleep

    def embed_many(
        self, texts: Sequence[str], progress: ProgressCb | None = None
    ) -> list[np.ndarray | None]:
        """Embed ``texts`` batch by batch; a failed batch yields ``None`` entries."""
        results: list[np.ndarray | None] = []
        total = len(texts)
        for start in range(0, total, self.batch_size):
            batch = list(texts[start : start + self.batch_size])
            try:
                vectors = self.model.embed(batch)
                results.extend(np.asarray(vector, dtype="float32") for vector in vectors)
            except Exception as exc:
                logger.warning(
                    "Secondary embedding failed for batch %d-%d: %s",
                    start,
                    start + len(batch),
                    exc,
                )
                results.extend([None] * len(batch))
            done = min(start + self.batch_size, total)
            if progress is not None:
                progress(done, total)
            if done < total and self.pause_seconds > 0:
                self._sleep(self.pause_seconds)
        return results

    def embed_query(self, text: str) -> np.ndarray | None:
        try:
            return np.asarray(self.model.embed_query(text), dtype="float32")
        except Exception as exc:
            logger.warning("Secondary query embedding unavailable: %s", exc)
            return None
