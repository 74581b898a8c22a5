"""
LevelDB extractor - store catalog from the directory listing.

The detector hands over a store's CURRENT file; the summary describes
the directory around it. Only file names and sizes are read, never the
table or log records.
"""

import logging
import os
from pathlib import Path
from typing import List

from ..errors import ExtractionError
from ..models import FileCategory
from ..summaries import LevelDbSummary
from .base import BaseExtractor


logger = logging.getLogger(__name__)


INDEXEDDB_SUFFIX = ".indexeddb.leveldb"

# Average size of one key/value record, used for the key count estimate
BYTES_PER_RECORD = 100

_TABLE_SUFFIXES = (".ldb", ".sst")


def store_origin(store_dir: Path) -> str | None:
    """'https_example.com_0.indexeddb.leveldb' -> 'https_example.com_0'"""
    name = store_dir.name
    if name.endswith(INDEXEDDB_SUFFIX) and len(name) > len(INDEXEDDB_SUFFIX):
        return name[: -len(INDEXEDDB_SUFFIX)]
    return None


class LevelDbExtractor(BaseExtractor):
    """Summarizes LevelDB and Chrome IndexedDB stores."""

    @property
    def name(self) -> str:
        return "leveldb"

    def extract_summary(self, path: Path, category: FileCategory) -> LevelDbSummary:
        store_dir = path.parent
        summary = LevelDbSummary(origin=store_origin(store_dir))

        with open(path, "r", encoding="utf-8", errors="replace") as f:
            summary.manifest = f.readline(256).strip()

        try:
            entries = self._files(store_dir)
        except OSError as e:
            logger.debug(f"LevelDB directory listing failed for {store_dir}: {e}")
            summary.error = f"leveldb: {e}"
            return summary

        data_bytes = 0
        for entry in entries:
            size = entry.stat().st_size
            summary.approximate_size += size
            if entry.name.endswith(_TABLE_SUFFIXES):
                summary.table_files += 1
                data_bytes += size
            elif entry.name.endswith(".log"):
                summary.log_files += 1
                data_bytes += size

        summary.key_count = data_bytes // BYTES_PER_RECORD
        if summary.manifest and not (store_dir / summary.manifest).exists():
            summary.error = f"leveldb: {summary.manifest} missing from {store_dir}"
        return summary

    def extract_deep(self, path: Path) -> str:
        """Every file of the store with its size."""
        store_dir = Path(path).parent
        try:
            entries = self._files(store_dir)
            lines = [f"-- store: {store_dir}"]
            lines.extend(f"{entry.name}\t{entry.stat().st_size}" for entry in entries)
        except OSError as e:
            raise ExtractionError(path, f"leveldb: {e}") from e
        return "\n".join(lines)

    def _files(self, store_dir: Path) -> List[os.DirEntry]:
        with os.scandir(store_dir) as it:
            entries = [entry for entry in it if entry.is_file(follow_symlinks=False)]
        return sorted(entries, key=lambda entry: entry.name)
