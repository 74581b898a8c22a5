"""
Indexing Configuration - Centralized settings for the indexing engine.

Uses environment variables with sensible defaults. All paths are resolved
to absolute paths for reliability.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Set


def _default_workers() -> int:
    return os.cpu_count() or 4


@dataclass
class IndexerConfig:
    """
    Configuration for the indexing engine.

    The index directory defaults to ~/.filescope/index.
    Budgets bound the work done per file during bulk indexing; they never
    apply to deep extraction.
    """

    # --- Paths ---
    index_dir: Path = field(default_factory=lambda: Path.home() / ".filescope" / "index")

    # --- Concurrency Limits ---
    max_workers: int = field(default_factory=_default_workers)
    commit_batch_size: int = 0      # 0 = single commit per run
    scanner_concurrency: int = 60   # Parallel stat operations

    # --- Change Detection ---
    verify_every: int = 0           # Force full hashing every Nth run (0 = never)
    hash_chunk_size: int = 65536

    # --- Extraction Budgets ---
    header_bytes: int = 512
    magic_header_bytes: int = 16
    preview_chars: int = 500
    max_file_size: int = 100 * 1024 * 1024   # Larger files get metadata only
    text_max_bytes: int = 1024 * 1024        # Text read ceiling (truncate above)
    json_max_bytes: int = 16 * 1024 * 1024
    json_max_depth: int = 20
    json_array_sample: int = 3
    json_max_paths: int = 1000
    xml_max_depth: int = 20
    csv_sample_rows: int = 100
    excel_sample_rows: int = 100
    pdf_max_pages: int = 50
    sample_chars: int = 100

    # --- Skip Patterns ---
    skip_dirs: Set[str] = field(default_factory=lambda: {
        # Version control
        ".git", ".svn", ".hg",
        # Dependencies
        "node_modules", "__pycache__", ".venv", "venv",
        # Cache
        ".cache", ".pytest_cache",
    })

    skip_files: Set[str] = field(default_factory=lambda: {
        ".DS_Store", "Thumbs.db", "desktop.ini",
    })

    def __post_init__(self):
        """Ensure paths are absolute and the index directory exists."""
        self.index_dir = Path(self.index_dir).expanduser().resolve()
        self.index_dir.mkdir(parents=True, exist_ok=True)

    @property
    def db_path(self) -> Path:
        return self.index_dir / "index.db"

    @property
    def cache_path(self) -> Path:
        return self.index_dir / "change_cache.json"

    @property
    def lock_path(self) -> Path:
        return self.index_dir / "writer.lock"

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """
        Create config from environment variables.

        Supported env vars:
            FILESCOPE_INDEX_DIR: Directory holding the index and change cache
            FILESCOPE_MAX_WORKERS: Size of the extraction worker pool
            FILESCOPE_COMMIT_BATCH_SIZE: Documents per commit (0 = one commit)
            FILESCOPE_TEXT_MAX_BYTES: Text extraction ceiling
            FILESCOPE_VERIFY_EVERY: Force full hashing every Nth run
        """
        config = cls()

        if index_dir := os.environ.get("FILESCOPE_INDEX_DIR"):
            config.index_dir = Path(index_dir)

        if workers := os.environ.get("FILESCOPE_MAX_WORKERS"):
            config.max_workers = int(workers)

        if batch := os.environ.get("FILESCOPE_COMMIT_BATCH_SIZE"):
            config.commit_batch_size = int(batch)

        if text_max := os.environ.get("FILESCOPE_TEXT_MAX_BYTES"):
            config.text_max_bytes = int(text_max)

        if verify := os.environ.get("FILESCOPE_VERIFY_EVERY"):
            config.verify_every = int(verify)

        config.__post_init__()
        return config


# Singleton default config
_default_config: IndexerConfig | None = None


def get_config() -> IndexerConfig:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = IndexerConfig.from_env()
    return _default_config


def set_config(config: IndexerConfig) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config
