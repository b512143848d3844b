"""Vector math and (de)serialization helpers."""

from __future__ import annotations

import numpy as np


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity; 0.0 when either vector has zero norm."""
    a = np.asarray(a, dtype="float64")
    b = np.asarray(b, dtype="float64")
    if a.shape != b.shape or a.size == 0:
        return 0.0
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


def to_sparse(vector: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Split a dense vector into int32 indices and float32 values of non-zeros."""
    dense = np.asarray(vector, dtype="float32")
    indices = np.flatnonzero(dense).astype("int32")
    return indices, dense[indices]


def from_sparse(indices: np.ndarray, values: np.ndarray, dimension: int) -> np.ndarray:
    dense = np.zeros(dimension, dtype="float32")
    dense[indices] = values
    return dense


def pack_array(array: np.ndarray, dtype: str) -> bytes:
    return np.asarray(array, dtype=dtype).tobytes()


def unpack_array(blob: bytes | None, dtype: str) -> np.ndarray:
    if not blob:
        return np.zeros(0, dtype=dtype)
    return np.frombuffer(blob, dtype=dtype)
