"""
Filescope - Structured file indexing and federated search.

Modules:
    - config: Centralized configuration
    - detector: File type detection from magic bytes and extension
    - extractors: Bounded per-type summaries (SQLite, LevelDB, JSON, CSV, Excel, XML, text, documents)
    - change_detector: size/mtime + xxHash change gate with a persistent cache
    - scanner: Directory traversal
    - store: SQLite/FTS5 index, single writer, read-only snapshot readers
    - query: Typed queries, filter-then-score planning, deep extraction
    - indexer: MasterIndexer run driver + CLI
    - service: Application-facing facade

Flow:
    Scan → Change gate → Detect → Extract summary → Commit (one transaction)

Usage:
    from filescope import IndexService

    service = IndexService()
    stats = await service.index_directory(Path("/data"))
    results = service.search_index({"type": "fulltext", "text": "password"})
"""

from .indexer import MasterIndexer
from .query import QueryPlanner
from .service import IndexService

__all__ = ["IndexService", "MasterIndexer", "QueryPlanner"]
