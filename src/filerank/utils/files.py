"""Utility helpers for enumerating and classifying files."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Iterator

from filerank.models import FileEntry

LOGGER = logging.getLogger(__name__)

DEFAULT_TYPE = "application/octet-stream"

_KNOWN_TYPES = {
    "pdf": "application/pdf",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "txt": "text/plain",
    "csv": "text/csv",
    "md": "text/markdown",
}


def file_extension(name: str) -> str:
    _, dot, ext = name.rpartition(".")
    return ext.lower() if dot else ""


def guess_type(name: str) -> str:
    """Map a file name to a MIME-like type classifier."""
    known = _KNOWN_TYPES.get(file_extension(name))
    if known:
        return known
    guessed, _ = mimetypes.guess_type(name, strict=False)
    return guessed or DEFAULT_TYPE


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


def iter_files(root: Path) -> Iterator[FileEntry]:
    """Yield every non-hidden file under ``root``, ordered by relative path.

    Only ``stat()`` is used, file contents are never read here.
    """
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"Folder not found: {root}")

    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if any(_is_hidden(part) for part in relative.parts):
            continue
        try:
            if not path.is_file():
                continue
            stat = path.stat()
        except OSError as exc:
            LOGGER.warning("Skipping unreadable file %s: %s", path, exc)
            continue
        yield FileEntry(
            id=relative.as_posix(),
            path=path,
            name=path.name,
            type=guess_type(path.name),
            size=stat.st_size,
            mtime=stat.st_mtime,
        )


def matches_accept(file_type: str, name: str, accept: str | None) -> bool:
    """Check a file against an HTML ``accept``-style filter.

    ``accept`` is a comma-separated list of ``.ext``, ``type/*`` or exact MIME
    types. An empty filter accepts everything.
    """
    if not accept or not accept.strip():
        return True

    file_type = (file_type or "").lower()
    lowered_name = name.lower()
    for raw in accept.split(","):
        token = raw.strip().lower()
        if not token:
            continue
        if token.startswith("."):
            if lowered_name.endswith(token):
                return True
        elif token.endswith("/*"):
            if file_type.startswith(token[:-1]):
                return True
        elif token == file_type:
            return True
    return False
