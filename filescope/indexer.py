"""
Master Indexer - Main entry point for building the index.

One run walks a directory tree through the change gate so that only new
or modified files pay for extraction:
- Phase 1: Scan (stat only)
- Phase 2: Change gate (size/mtime, then xxHash) + detect + extract summary,
  in a thread pool
- Phase 3: Commit buffered documents and deletions in one transaction
- Phase 4: Persist the change cache

Per-file failures are recorded and never abort a run. Only store
failures do, and then nothing of the run is visible to readers.
"""

import asyncio
import logging
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Union

from .change_detector import ChangeDetector, ChangeKind
from .config import get_config, IndexerConfig
from .detector import detect_file
from .errors import (
    ChangeDetectorIOError, ErrorAction, ExtractionError, IndexingError, ProcessingResult,
    handle_error,
)
from .extractors import ExtractorRegistry, fallback_preview
from .models import (
    DocumentMetadata, FileError, FileInfo, IndexedDocument, IndexPhase,
    IndexProgress, IndexStats,
)
from .scanner import Scanner
from .store import IndexStore, IndexWriter, path_prefix


logger = logging.getLogger(__name__)


GATHER_BATCH_SIZE = 500


class MasterIndexer:
    """
    Drives one indexing run at a time.

    Usage:
        indexer = MasterIndexer(config)
        stats = await indexer.index_directory(Path("~/evidence").expanduser())
        print(stats)
    """

    def __init__(
        self,
        config: IndexerConfig | None = None,
        store: IndexStore | None = None,
        registry: ExtractorRegistry | None = None,
    ):
        self.config = config or get_config()
        self.store = store or IndexStore(self.config)
        self.registry = registry or ExtractorRegistry(self.config)
        self._scanner = Scanner(self.config)
        self._executor: ThreadPoolExecutor | None = None

        self._cancel_event = threading.Event()
        self._state_lock = threading.Lock()
        self._progress = IndexProgress()
        self._running_root: Optional[str] = None
        self._pending_paths: Set[str] = set()
        self.hash_count = 0     # Content hashes computed by the last run

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.max_workers,
                thread_name_prefix="indexer"
            )
        return self._executor

    # --- Observation / control ---

    @property
    def progress(self) -> IndexProgress:
        with self._state_lock:
            return self._progress

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._running_root is not None

    def is_indexing(self, path: Union[str, Path]) -> bool:
        """True while `path` is part of the active run and not yet processed."""
        key = str(path)
        with self._state_lock:
            if self._running_root is None:
                return False
            if self._progress.phase == IndexPhase.SCANNING:
                return key.startswith(path_prefix(self._running_root))
            return key in self._pending_paths

    def cancel(self) -> None:
        """
        Request cancellation of the active run.

        Files not yet started are skipped, in-flight files finish, and
        what was processed is still committed.
        """
        logger.info("Cancellation requested")
        self._cancel_event.set()

    def _set_progress(self, **changes) -> None:
        with self._state_lock:
            self._progress = replace(self._progress, **changes)

    def _file_done(self, info: FileInfo) -> None:
        with self._state_lock:
            self._pending_paths.discard(str(info.path))
            self._progress = replace(
                self._progress,
                files_processed=self._progress.files_processed + 1,
                bytes_processed=self._progress.bytes_processed + info.size,
            )

    # --- Run ---

    async def index_directory(
        self,
        root: Path,
        files: Optional[Sequence[Union[FileInfo, Path]]] = None,
    ) -> IndexStats:
        """
        Index (or incrementally re-index) everything under `root`.

        Args:
            root: Directory to index
            files: Pre-enumerated files under root (skips the scanner)

        Returns:
            Statistics about the run

        Raises:
            IndexBusyError: another run holds the index writer
            IndexWriteError: the commit failed, or a worker hit the store;
                uncommitted work is discarded
            IndexingError: root is not a directory
        """
        root = Path(root).expanduser().resolve()
        if not root.is_dir():
            raise IndexingError(f"Not a directory: {root}")

        start_time = time.monotonic()
        self._cancel_event.clear()

        writer = self.store.writer()
        with self._state_lock:
            self._running_root = str(root)
            self._pending_paths = set()
            self._progress = IndexProgress(phase=IndexPhase.SCANNING, current_file=str(root))

        completed = False
        try:
            stats = await self._run(root, files, writer, start_time)
            completed = True
            return stats
        finally:
            writer.close()
            with self._state_lock:
                self._running_root = None
                self._pending_paths = set()
                self._progress = replace(
                    self._progress,
                    phase=IndexPhase.COMPLETE if completed else IndexPhase.IDLE,
                    current_file="",
                )

    async def _run(
        self,
        root: Path,
        files: Optional[Sequence[Union[FileInfo, Path]]],
        writer: IndexWriter,
        start_time: float,
    ) -> IndexStats:
        errors: List[FileError] = []

        # ═══════════════════════════════════════════════════════════════════
        # PHASE 1: SCAN
        # ═══════════════════════════════════════════════════════════════════
        phase_start = time.monotonic()
        logger.info(f"Phase 1/4: Scanning {root}...")

        if files is None:
            scan_result = await self._scanner.scan(root)
            file_list = scan_result.files
            errors.extend(scan_result.errors)
        else:
            file_list = self._file_infos(files, errors)

        # Directories we could not list keep their documents
        unlisted = [path_prefix(e.path) for e in errors]

        logger.info(
            f"Phase 1 complete: {len(file_list)} files in {time.monotonic() - phase_start:.1f}s"
        )

        # ═══════════════════════════════════════════════════════════════════
        # PHASE 2: CHANGE GATE + EXTRACT
        # ═══════════════════════════════════════════════════════════════════
        phase_start = time.monotonic()
        logger.info(f"Phase 2/4: Checking and extracting {len(file_list)} files...")

        detector = ChangeDetector(self.config.cache_path, self.config.hash_chunk_size)
        detector.load()
        detector.run_count += 1
        verify = self.config.verify_every
        force_hash = verify > 0 and detector.run_count % verify == 0
        if force_hash:
            logger.info(f"Run {detector.run_count}: verifying every file by content hash")

        committed_paths = set(writer.paths_under(root))

        with self._state_lock:
            self._pending_paths = {str(info.path) for info in file_list}
            self._progress = replace(
                self._progress,
                phase=IndexPhase.EXTRACTING,
                files_total=len(file_list),
            )

        loop = asyncio.get_running_loop()
        executor = self._get_executor()
        batch_size = self.config.commit_batch_size or GATHER_BATCH_SIZE

        indexed = 0
        skipped = 0
        by_category: Counter = Counter()
        states = []

        for i in range(0, len(file_list), batch_size):
            batch = file_list[i:i + batch_size]

            tasks = [
                loop.run_in_executor(
                    executor,
                    self._process_file,
                    info,
                    detector,
                    force_hash,
                    str(info.path) not in committed_paths,
                )
                for info in batch
            ]
            results = await asyncio.gather(*tasks, return_exceptions=True)

            for info, result in zip(batch, results):
                if isinstance(result, BaseException):
                    errors.append(FileError(path=str(info.path), error=str(result)))
                elif result.skipped:
                    continue
                elif not result.success:
                    if result.action_taken == ErrorAction.ABORT:
                        # Nothing from this batch is committed
                        raise result.error
                    errors.append(FileError(path=str(result.path), error=str(result.error)))
                elif result.value is None:
                    skipped += 1
                else:
                    document, state, extracted = result.value
                    writer.add_document(document)
                    states.append(state)
                    if not extracted:
                        skipped += 1
                        continue
                    indexed += 1
                    by_category[document.metadata.category.value] += 1
                    if document.error:
                        errors.append(FileError(path=document.path, error=document.error))

            if self.config.commit_batch_size and writer.pending_count:
                self._set_progress(phase=IndexPhase.COMMITTING)
                writer.commit()
                for state in states:
                    detector.record(state)
                states = []
                self._set_progress(phase=IndexPhase.EXTRACTING)

        cancelled = self._cancel_event.is_set()
        logger.info(
            f"Phase 2 complete: {indexed} indexed, {skipped} unchanged, "
            f"{len(errors)} errors in {time.monotonic() - phase_start:.1f}s"
        )

        # ═══════════════════════════════════════════════════════════════════
        # PHASE 3: COMMIT
        # ═══════════════════════════════════════════════════════════════════
        phase_start = time.monotonic()
        logger.info("Phase 3/4: Committing index...")
        self._set_progress(phase=IndexPhase.COMMITTING, current_file="")

        seen = {str(info.path) for info in file_list}
        removed = sorted(
            path for path in committed_paths
            if path not in seen and not any(path.startswith(p) for p in unlisted)
        )
        for path in removed:
            writer.delete_document(path)

        # IndexWriteError propagates: the cache is not saved for a failed commit
        applied = writer.commit()
        for state in states:
            detector.record(state)

        logger.info(
            f"Phase 3 complete: {applied} mutations ({len(removed)} removed) "
            f"in {time.monotonic() - phase_start:.1f}s"
        )

        # ═══════════════════════════════════════════════════════════════════
        # PHASE 4: CHANGE CACHE
        # ═══════════════════════════════════════════════════════════════════
        prefix = path_prefix(root)
        stale = [
            path for path in detector.paths()
            if path.startswith(prefix) and path not in seen
            and not any(path.startswith(p) for p in unlisted)
        ]
        detector.forget(stale)

        try:
            detector.save()
        except ChangeDetectorIOError as e:
            # Next run re-hashes instead of trusting a stale cache
            handle_error(e, self.config.cache_path, "cache_save")

        self.hash_count = detector.hash_count

        stats = IndexStats(
            total_files=len(file_list),
            total_size=sum(info.size for info in file_list),
            indexed_files=indexed,
            skipped_files=skipped,
            removed_files=len(removed),
            duration_ms=int((time.monotonic() - start_time) * 1000),
            by_category=dict(by_category),
            errors=tuple(errors),
            cancelled=cancelled,
        )
        logger.info(f"Indexing complete: {stats}")
        return stats

    def _file_infos(
        self,
        files: Iterable[Union[FileInfo, Path]],
        errors: List[FileError],
    ) -> List[FileInfo]:
        """Normalize a caller-provided file list, stat'ing bare paths."""
        infos: List[FileInfo] = []
        for item in files:
            if isinstance(item, FileInfo):
                infos.append(item)
                continue
            path = Path(item).expanduser().resolve()
            try:
                infos.append(FileInfo.from_path(path))
            except OSError as e:
                handle_error(e, path, "stat")
                errors.append(FileError(path=str(path), error=str(e)))
        return infos

    def _process_file(
        self,
        info: FileInfo,
        detector: ChangeDetector,
        force_hash: bool,
        missing_from_index: bool,
    ) -> ProcessingResult:
        """
        Change gate + detection + summary for one file (runs in thread pool).

        Returns ok(None) for unchanged files and ok((document, state, extracted))
        for files whose stored document has to be written. Touched files are
        written with refreshed metadata but not re-extracted.
        """
        if self._cancel_event.is_set():
            return ProcessingResult.cancelled(info.path)

        self._set_progress(current_file=str(info.path))
        try:
            check = detector.check(info, force_hash=force_hash)
            if not check.needs_indexing and not missing_from_index:
                if check.kind == ChangeKind.TOUCHED:
                    document = self._touched_document(info)
                    if document is not None:
                        return ProcessingResult.ok(info.path, (document, check.state, False))
                return ProcessingResult.ok(info.path)

            document = self._build_document(info, check.hash)
            return ProcessingResult.ok(info.path, (document, check.state, True))

        except Exception as e:
            # Per-file boundary: only ABORT-policy errors end the run
            action = handle_error(e, info.path, "index_file")
            return ProcessingResult.failed(info.path, e, action)
        finally:
            self._file_done(info)

    def _build_document(self, info: FileInfo, content_hash: str) -> IndexedDocument:
        detected = detect_file(info.path, self.config.header_bytes, self.config.magic_header_bytes)

        summary = None
        if info.size <= self.config.max_file_size:
            summary = self.registry.extract_summary(info.path, detected.category, detected.mime_type)
        else:
            logger.debug(f"{info.path} exceeds max_file_size, metadata only")

        error = summary.error if summary is not None else None
        if error:
            handle_error(ExtractionError(info.path, error), info.path, "extract_summary")

        preview = (summary.preview() if summary is not None else "") or fallback_preview(detected.mime_type)
        return IndexedDocument(
            metadata=DocumentMetadata.build(info, content_hash, detected),
            summary=summary,
            preview=preview[: self.config.preview_chars],
            error=error,
        )

    def _touched_document(self, info: FileInfo) -> Optional[IndexedDocument]:
        """The committed document with the new mtime. Content is identical."""
        document = self.store.get_document(str(info.path))
        if document is None:
            return None
        metadata = replace(
            document.metadata,
            modified=datetime.fromtimestamp(info.mtime_ns / 1e9, tz=timezone.utc),
        )
        return replace(document, metadata=metadata)

    def close(self):
        """Shutdown the thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None


def main():
    """CLI entry point."""
    import argparse
    import json

    from .service import IndexService

    parser = argparse.ArgumentParser(description="Structured file indexer and search")
    parser.add_argument("--index-dir", help="Index directory (default: $FILESCOPE_INDEX_DIR or ~/.filescope/index)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    sub = parser.add_subparsers(dest="command", required=True)

    p_index = sub.add_parser("index", help="Index a directory")
    p_index.add_argument("root", help="Directory to index")

    p_search = sub.add_parser("search", help="Search the index")
    p_search.add_argument("text", help="Search text")
    p_search.add_argument("--category", help="Restrict to a file category (e.g. database)")
    p_search.add_argument(
        "--structured",
        choices=["sql_table", "json_path", "column_name", "sheet_name"],
        help="Match a structural name instead of full text",
    )
    p_search.add_argument("--limit", type=int, default=20)

    p_status = sub.add_parser("status", help="Index status of a file")
    p_status.add_argument("path")

    p_deep = sub.add_parser("deep", help="Full extraction of a file, bypassing the index")
    p_deep.add_argument("path")

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s"
    )

    config = IndexerConfig(index_dir=Path(args.index_dir)) if args.index_dir else IndexerConfig.from_env()
    service = IndexService(config)

    try:
        if args.command == "index":
            stats = asyncio.run(service.index_directory(Path(args.root)))
            print(f"\n{stats}")
            for error in stats.errors:
                print(f"  ! {error.path}: {error.error}")

        elif args.command == "search":
            text_query = {"text": args.text, "limit": args.limit}
            if args.structured:
                text_query.update(type="structured", kind=args.structured)
            else:
                text_query.update(type="fulltext")
            query = text_query
            if args.category:
                query = {"type": "combined", "metadata": {"category": args.category}, "fulltext": text_query}
            for result in service.search_index(query):
                location = f"  [{result.location}]" if result.location else ""
                print(f"{result.score:8.3f}  {result.path}{location}")

        elif args.command == "status":
            status = service.get_index_status(Path(args.path).expanduser().resolve())
            print(json.dumps({
                "path": status.path,
                "status": status.status.value,
                "indexed": status.indexed,
                "indexed_at": status.indexed_at.isoformat() if status.indexed_at else None,
            }, indent=2))

        elif args.command == "deep":
            path = Path(args.path).expanduser().resolve()
            detected = detect_file(path, config.header_bytes, config.magic_header_bytes)
            print(service.extract_deep(path, detected.category, detected.mime_type))

    except IndexingError as e:
        parser.exit(1, f"error: {e}\n")
    finally:
        service.close()


if __name__ == "__main__":
    main()
