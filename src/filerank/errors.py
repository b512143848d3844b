"""Exceptions raised by filerank."""

from __future__ import annotations


class FileRankError(Exception):
    """Base class for filerank errors."""


class StorageError(FileRankError):
    """The persistent store is unavailable or a read/write failed."""


class ModelMismatchError(FileRankError):
    """A stored vector was not produced by the current vocabulary."""

    def __init__(self, document_id: str, expected: str, found: str) -> None:
        super().__init__(
            f"Vector for {document_id!r} belongs to vocabulary {found or '<none>'}, "
            f"expected {expected or '<none>'}"
        )
        self.document_id = document_id
        self.expected = expected
        self.found = found
