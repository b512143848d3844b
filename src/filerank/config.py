"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


def _get_default_db_path() -> Path:
    """Prefer a local data/ database when running from a checkout."""
    local_db = Path("data/filerank.db")
    if local_db.exists():
        return local_db
    return Path.home() / "Documents" / "FileRank" / "filerank.db"


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    # Name of a sentence-transformers model; None disables secondary embeddings.
    secondary_model: str | None = None
    max_text_chars: int = 2000
    preview_chars: int = 4096
    top_n: int = 5
    candidate_pool: int = 15
    batch_size: int = 32

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
