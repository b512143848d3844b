"""Core filerank data models."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np


@dataclass(slots=True)
class FileEntry:
    """A file observed while enumerating an indexed folder."""

    id: str
    path: Path
    name: str
    type: str
    size: int
    mtime: float

    @property
    def fingerprint(self) -> tuple[int, float]:
        return (self.size, self.mtime)


@dataclass(slots=True)
class DocumentRecord:
    """Indexed file paired with its TF-IDF vector.

    ``size`` and ``mtime`` are the fingerprint of the file version that
    ``vector`` was derived from; ``model_version`` names the vocabulary that
    produced it.
    """

    id: str
    name: str
    path: str
    type: str
    size: int
    mtime: float
    vector: np.ndarray
    text_preview: str = ""
    model_version: str = ""
    embedding: np.ndarray | None = None

    @property
    def fingerprint(self) -> tuple[int, float]:
        return (self.size, self.mtime)


@dataclass(slots=True)
class HistoryEntry:
    """A confirmed file selection on some site. Never mutated once stored."""

    document_id: str
    site: str
    timestamp: float
    page_url: str = ""
    page_title: str = ""
    context: str = ""
    document_name: str = ""
    document_type: str = ""
    id: int | None = None


@dataclass(slots=True)
class RescanConfig:
    auto_rescan_enabled: bool = True
    rescan_interval_minutes: int = 30
    last_scan_timestamp: float = 0.0
    root: str | None = None

