"""
Index Service - The surface the application talks to.

Wires one MasterIndexer and one QueryPlanner to a shared store and
extractor registry. Indexing can be awaited directly or started on a
background thread while the caller polls `progress`.
"""

import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Union

from .config import get_config, IndexerConfig
from .errors import IndexBusyError, QueryError
from .extractors import ExtractorRegistry
from .indexer import MasterIndexer
from .models import FileCategory, IndexProgress, IndexStats, IndexStatus, SearchResult, StatusKind
from .query import Query, QueryPlanner, parse_query
from .store import IndexStore


logger = logging.getLogger(__name__)


# modified is stored as float seconds
_MTIME_TOLERANCE = 1e-5


class IndexService:
    """
    Facade over indexing and querying.

    Usage:
        service = IndexService(config)
        future = service.start_indexing(Path("/data"))
        while not future.done():
            print(service.progress)
        results = service.search_index({"type": "fulltext", "text": "password"})
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self.store = IndexStore(self.config)
        self.registry = ExtractorRegistry(self.config)
        self.indexer = MasterIndexer(self.config, self.store, self.registry)
        self.planner = QueryPlanner(self.config, self.store, self.registry)
        self._background: ThreadPoolExecutor | None = None
        self._future: Optional[Future] = None

    # --- Indexing ---

    async def index_directory(self, root: Path, files=None) -> IndexStats:
        return await self.indexer.index_directory(root, files)

    def start_indexing(self, root: Path) -> "Future[IndexStats]":
        """
        Run `index_directory` on a background thread and return at once.

        Raises:
            IndexBusyError: a run started by this service is still active
        """
        if self._future is not None and not self._future.done():
            raise IndexBusyError("An indexing run is already in progress")

        if self._background is None:
            self._background = ThreadPoolExecutor(max_workers=1, thread_name_prefix="index-run")

        self._future = self._background.submit(self._run_blocking, Path(root))
        return self._future

    def _run_blocking(self, root: Path) -> IndexStats:
        return asyncio.run(self.indexer.index_directory(root))

    @property
    def progress(self) -> IndexProgress:
        return self.indexer.progress

    def cancel(self) -> None:
        self.indexer.cancel()

    # --- Queries ---

    def search_index(self, query: Union[Query, dict]) -> List[SearchResult]:
        """
        Execute a typed query or its JSON form.

        Raises:
            QueryError: malformed query or no index
        """
        if isinstance(query, dict):
            query = parse_query(query)
        return self.planner.execute(query)

    def get_index_status(self, path: Union[str, Path]) -> IndexStatus:
        """
        Where a file stands relative to the index.

        indexing     part of the active run and not processed yet
        not_indexed  no document for the path
        error        indexed, but extraction failed
        outdated     size or mtime differ from the indexed document, or file gone
        indexed      up to date
        """
        path = Path(path).expanduser().resolve()
        key = str(path)

        try:
            document = self.store.get_document(key)
        except QueryError:
            document = None

        indexed_at = document.metadata.indexed_at if document else None

        if self.indexer.is_indexing(key):
            return IndexStatus(key, document is not None, StatusKind.INDEXING, indexed_at)
        if document is None:
            return IndexStatus(key, False, StatusKind.NOT_INDEXED)
        if document.error:
            return IndexStatus(key, True, StatusKind.ERROR, indexed_at)

        try:
            stat = path.stat()
        except OSError:
            return IndexStatus(key, True, StatusKind.OUTDATED, indexed_at)

        metadata = document.metadata
        if stat.st_size != metadata.size or abs(stat.st_mtime_ns / 1e9 - metadata.modified.timestamp()) > _MTIME_TOLERANCE:
            return IndexStatus(key, True, StatusKind.OUTDATED, indexed_at)
        return IndexStatus(key, True, StatusKind.INDEXED, indexed_at)

    def extract_deep(self, path: Union[str, Path], category: Union[FileCategory, str], mime_type: str) -> str:
        """Unbounded extraction straight from the file. Never served from the index."""
        return self.planner.extract_deep(path, category, mime_type)

    def close(self) -> None:
        self.indexer.close()
        if self._background is not None:
            self._background.shutdown(wait=True)
            self._background = None
