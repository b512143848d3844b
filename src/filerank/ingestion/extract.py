"""Best-effort text surrogates for indexed files.

PDF text comes from PyMuPDF (fitz); plain-text formats are read directly.
Everything else is represented by its file name plus a coarse type keyword.
Extraction never raises: the file name is always available as a fallback.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import fitz  # PyMuPDF

from filerank.utils.files import file_extension
from filerank.utils.text import normalize_path, normalize_whitespace

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 2000

TEXT_EXTENSIONS = frozenset(
    {
        "txt", "md", "csv", "json", "xml", "html", "htm",
        "js", "ts", "py", "java", "c", "cpp", "css",
        "log", "yaml", "yml", "toml", "ini", "rtf",
    }
)

_TYPE_KEYWORDS = (
    ("image/", "image"),
    ("audio/", "audio"),
    ("video/", "video"),
    ("spreadsheet", "spreadsheet"),
    ("ms-excel", "spreadsheet"),
    ("presentation", "presentation"),
    ("powerpoint", "presentation"),
    ("wordprocessing", "document"),
    ("msword", "document"),
    ("zip", "archive"),
    ("tar", "archive"),
)


def type_keyword(file_type: str) -> str:
    lowered = (file_type or "").lower()
    for needle, keyword in _TYPE_KEYWORDS:
        if needle in lowered:
            return keyword
    return ""


def iter_pdf_text(path: Path) -> Iterator[str]:
    """Yield normalized text of a PDF page by page."""
    try:
        doc = fitz.open(path)
    except Exception as exc:
        LOGGER.warning("Failed to open PDF %s: %s", path, exc)
        return

    try:
        for index in range(len(doc)):
            try:
                text = doc[index].get_text() or ""
            except Exception as exc:
                LOGGER.warning("Failed to read page %s in %s: %s", index, path, exc)
                continue
            normalized = normalize_whitespace([text])
            if normalized:
                yield normalized
    finally:
        doc.close()


def _read_pdf(path: Path, max_chars: int) -> str:
    parts: list[str] = []
    collected = 0
    for part in iter_pdf_text(path):
        parts.append(part)
        collected += len(part) + 1
        if collected >= max_chars:
            break
    return " ".join(parts)[:max_chars]


def _read_text(path: Path, max_chars: int) -> str:
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        return handle.read(max_chars)


def extract_text(
    path: Path,
    file_type: str = "",
    *,
    label: str | None = None,
    max_chars: int = DEFAULT_MAX_CHARS,
) -> str:
    """Return ``label`` (default: the file name) followed by up to ``max_chars`` of text.

    Separators in the label become spaces, so folder and file names index as words.
    """
    path = Path(path)
    name = normalize_path(label or path.name)
    fallback = " ".join(part for part in (name, type_keyword(file_type)) if part)
    ext = file_extension(path.name)

    try:
        if ext in TEXT_EXTENSIONS:
            body = _read_text(path, max_chars)
        elif ext == "pdf" or file_type == "application/pdf":
            body = _read_pdf(path, max_chars)
        else:
            return fallback
    except (OSError, ValueError) as exc:
        LOGGER.warning("Falling back to file name for %s: %s", path, exc)
        return fallback

    body = body.strip()
    return f"{name} {body}" if body else fallback
