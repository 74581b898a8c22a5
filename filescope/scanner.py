"""
Scanner - File system traversal for the indexer.

Default implementation of the file enumeration the indexer needs. The
surrounding application may bypass it by handing the indexer its own
list of files. Uses asyncio with a semaphore so stat() calls on slow
file systems don't overwhelm the disk.
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import AsyncGenerator, List, Optional, Set

from .config import get_config, IndexerConfig
from .errors import handle_error
from .models import FileError, FileInfo, ScanResult


logger = logging.getLogger(__name__)


class Scanner:
    """
    Recursive directory scanner.

    Yields FileInfo objects for each regular file found, skipping hidden
    directories, configured skip patterns and the index directory itself.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self._semaphore: asyncio.Semaphore | None = None
        self._errors: List[FileError] = []
        self._skipped = 0
        self._excluded: Set[Path] = {self.config.index_dir}

    async def scan(self, root: Path) -> ScanResult:
        """
        Scan a directory tree and return all found files.

        Args:
            root: Directory to scan

        Returns:
            ScanResult with list of FileInfo, per-path errors and statistics
        """
        self._semaphore = asyncio.Semaphore(self.config.scanner_concurrency)
        self._errors = []
        self._skipped = 0

        start_time = time.monotonic()
        files: List[FileInfo] = []

        async for file_info in self.scan_iter(root):
            files.append(file_info)

        duration = time.monotonic() - start_time
        logger.info(f"Scanned {len(files)} files in {duration:.1f}s")

        return ScanResult(
            files=files,
            errors=list(self._errors),
            skipped_count=self._skipped,
            duration_seconds=duration,
        )

    async def scan_iter(self, root: Path) -> AsyncGenerator[FileInfo, None]:
        """
        Iterate over files under `root`.

        Streaming interface that yields files as they're found.
        """
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.config.scanner_concurrency)

        root = Path(root)
        if not root.is_dir():
            logger.warning(f"Root directory not found: {root}")
            return

        async for file_info in self._scan_directory(root):
            yield file_info

    async def _scan_directory(self, directory: Path) -> AsyncGenerator[FileInfo, None]:
        # os.scandir returns DirEntry objects with cached type information
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            self._record_error(e, directory, "scan_directory")
            return

        subdirs: List[Path] = []

        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if self._should_skip_dir(entry):
                        self._skipped += 1
                        continue
                    subdirs.append(Path(entry.path))

                elif entry.is_file(follow_symlinks=False):
                    if entry.name in self.config.skip_files:
                        self._skipped += 1
                        continue

                    async with self._semaphore:
                        file_info = await self._get_file_info(entry)
                        if file_info:
                            yield file_info

            except OSError as e:
                self._record_error(e, Path(entry.path), "scan_entry")
                continue

        for subdir in subdirs:
            async for file_info in self._scan_directory(subdir):
                yield file_info

    async def _get_file_info(self, entry: os.DirEntry) -> Optional[FileInfo]:
        try:
            stat = entry.stat(follow_symlinks=False)
            return FileInfo.from_path(Path(entry.path), stat)
        except OSError as e:
            self._record_error(e, Path(entry.path), "stat")
            return None

    def _should_skip_dir(self, entry: os.DirEntry) -> bool:
        if entry.name.startswith("."):
            return True
        if entry.name in self.config.skip_dirs:
            return True
        return Path(entry.path).resolve() in self._excluded

    def _record_error(self, error: Exception, path: Path, context: str) -> None:
        handle_error(error, path, context)
        self._errors.append(FileError(path=str(path), error=str(error)))


async def scan_directory(
    root: Path,
    config: IndexerConfig | None = None,
) -> ScanResult:
    """
    Convenience function to scan a directory.

    Usage:
        result = await scan_directory(Path.home() / "evidence")
        for file in result.files:
            print(file.path)
    """
    scanner = Scanner(config)
    return await scanner.scan(root)
