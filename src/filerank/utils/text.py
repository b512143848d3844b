"""Text helpers: tokenization and whitespace cleanup."""

from __future__ import annotations

import re
from typing import Iterable

_WORD_RE = re.compile(r"[a-z0-9]+")
_CJK_RE = re.compile(r"[\u4e00-\u9fff\u3400-\u4dbf]")
_PATH_SEPARATORS_RE = re.compile(r"[/\\._-]")


def tokenize(text: str) -> list[str]:
    """Split text into lower-case terms.

    Emits ASCII alphanumeric runs first, then every CJK character, then every
    adjacent pair of CJK characters as a bigram. CJK scripts carry no
    whitespace, so the bigrams stand in for word boundaries.
    """
    normalized = text.lower().strip()
    if not normalized:
        return []

    tokens = _WORD_RE.findall(normalized)
    cjk = _CJK_RE.findall(normalized)
    tokens.extend(cjk)
    tokens.extend(cjk[i] + cjk[i + 1] for i in range(len(cjk) - 1))
    return tokens


def normalize_path(path: str) -> str:
    """Replace path and filename separators with spaces."""
    return _PATH_SEPARATORS_RE.sub(" ", path)


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())
