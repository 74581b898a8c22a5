"""
Change Detector - Two-tier staleness check for incremental indexing.

Tier 1 compares (size, mtime) against the cached FileState and costs a
dictionary lookup. Only when that differs do we pay for tier 2, a full
xxHash64 of the file bytes. The cache is loaded and saved as one JSON
blob at run boundaries and is owned by a single indexing run.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Optional

import xxhash

from .errors import ChangeDetectorIOError, handle_error
from .models import FileInfo, FileState


logger = logging.getLogger(__name__)


CACHE_FORMAT_VERSION = 1


class ChangeKind(Enum):
    """Outcome of the change gate for one file."""
    NEW = "new"                 # Not in cache: index it
    UNCHANGED = "unchanged"     # Fingerprint equal: skip, no hash computed
    TOUCHED = "touched"         # Fingerprint differs, content equal: skip
    MODIFIED = "modified"       # Content differs: index it


@dataclass(frozen=True)
class ChangeCheck:
    """Result of `ChangeDetector.check`."""
    kind: ChangeKind
    path: Path
    hash: Optional[str] = None          # Set whenever a hash was computed
    state: Optional[FileState] = None   # The FileState to record after indexing

    @property
    def needs_indexing(self) -> bool:
        return self.kind in (ChangeKind.NEW, ChangeKind.MODIFIED)


def hash_file(path: Path, chunk_size: int = 65536) -> str:
    """
    Compute the xxHash64 of the file bytes.

    Reads in chunks so memory stays flat for large files.
    """
    hasher = xxhash.xxh64()
    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)
    return hasher.hexdigest()


class ChangeDetector:
    """
    Per-run change cache.

    `check` may be called from worker threads; cache mutations are
    serialized by an internal lock. NEW/MODIFIED files are only written
    to the cache through `record`, after they were indexed successfully.
    """

    def __init__(self, cache_path: Path, chunk_size: int = 65536):
        self.cache_path = Path(cache_path)
        self.chunk_size = chunk_size
        self.run_count = 0
        self.hash_count = 0
        self._cache: Dict[str, FileState] = {}
        self._lock = threading.Lock()

    # --- Persistence ---

    def load(self) -> bool:
        """
        Load the cache blob.

        All or nothing: a missing file yields an empty cache, a corrupt
        one is logged and also yields an empty cache (full reindex).

        Returns:
            True if a cache was loaded
        """
        self._cache = {}
        self.run_count = 0
        if not self.cache_path.exists():
            logger.info("No change cache found, every file will be treated as new")
            return False

        try:
            raw = json.loads(self.cache_path.read_text(encoding="utf-8"))
            if raw.get("version") != CACHE_FORMAT_VERSION:
                raise ValueError(f"unsupported cache version {raw.get('version')!r}")
            entries = {
                path: FileState.from_dict(state)
                for path, state in raw["files"].items()
            }
            run_count = int(raw.get("run_count", 0))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            handle_error(ChangeDetectorIOError(f"{self.cache_path}: {e}"), self.cache_path, "cache_load")
            return False

        self._cache = entries
        self.run_count = run_count
        logger.info(f"Loaded change cache: {len(entries)} files")
        return True

    def save(self) -> None:
        """
        Persist the cache atomically (temp file + rename).

        Raises:
            ChangeDetectorIOError: if the blob cannot be written
        """
        with self._lock:
            payload = {
                "version": CACHE_FORMAT_VERSION,
                "run_count": self.run_count,
                "files": {path: state.to_dict() for path, state in self._cache.items()},
            }

        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".change_cache.", suffix=".tmp", dir=str(self.cache_path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f)
                os.replace(tmp_name, self.cache_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise ChangeDetectorIOError(f"Cannot write change cache {self.cache_path}: {e}") from e

        logger.debug(f"Saved change cache: {len(payload['files'])} files")

    # --- Gate ---

    def check(self, info: FileInfo, force_hash: bool = False) -> ChangeCheck:
        """
        Run the two-tier gate for one file.

        Args:
            info: Fresh stat information for the file
            force_hash: Skip the fast path and always hash (verification runs)

        Raises:
            OSError: if the file has to be hashed and cannot be read
        """
        key = str(info.path)
        with self._lock:
            cached = self._cache.get(key)

        if cached is not None and not force_hash:
            if (cached.size, cached.mtime_ns) == info.fingerprint:
                return ChangeCheck(ChangeKind.UNCHANGED, info.path, hash=cached.hash, state=cached)

        content_hash = self._hash(info.path)
        state = FileState(path=key, size=info.size, mtime_ns=info.mtime_ns, hash=content_hash)

        if cached is None:
            return ChangeCheck(ChangeKind.NEW, info.path, hash=content_hash, state=state)

        if content_hash == cached.hash:
            if (cached.size, cached.mtime_ns) == info.fingerprint:
                return ChangeCheck(ChangeKind.UNCHANGED, info.path, hash=content_hash, state=cached)
            # Same bytes, new mtime: refresh the fingerprint, skip extraction
            with self._lock:
                self._cache[key] = state
            return ChangeCheck(ChangeKind.TOUCHED, info.path, hash=content_hash, state=state)

        return ChangeCheck(ChangeKind.MODIFIED, info.path, hash=content_hash, state=state)

    def record(self, state: FileState) -> None:
        """Store the fingerprint of a successfully (re)indexed file."""
        with self._lock:
            self._cache[state.path] = state

    def forget(self, paths: Iterable[str]) -> None:
        """Drop deleted or out-of-scope paths."""
        with self._lock:
            for path in paths:
                self._cache.pop(path, None)

    def get(self, path: str) -> Optional[FileState]:
        with self._lock:
            return self._cache.get(path)

    def paths(self) -> set:
        with self._lock:
            return set(self._cache)

    def __len__(self) -> int:
        return len(self._cache)

    def _hash(self, path: Path) -> str:
        digest = hash_file(path, self.chunk_size)
        with self._lock:
            self.hash_count += 1
        return digest
