"""Shared fixtures for filerank tests."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import pytest

from filerank.index.history import UsageHistoryStore
from filerank.index.storage import SQLiteDocumentStore


def write_file(root: Path, relative: str, content: str | bytes, mtime: float | None = None) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def make_tree(tmp_path: Path) -> Callable[[dict], Path]:
    """Create a folder of files from a ``{relative_path: content}`` mapping."""
    root = tmp_path / "files"
    root.mkdir()

    def _make(files: dict) -> Path:
        for relative, content in files.items():
            write_file(root, relative, content, mtime=1_700_000_000.0)
        return root

    return _make


@pytest.fixture
def temp_db(tmp_path: Path):
    store = SQLiteDocumentStore(tmp_path / "test.db")
    yield store
    store.close()


@pytest.fixture
def history_store(tmp_path: Path):
    store = UsageHistoryStore(tmp_path / "test.db")
    yield store
    store.close()
