"""
Data Models - Type definitions for the indexing pipeline.

These dataclasses represent the data flowing through the pipeline stages,
ensuring type safety and clear interfaces between modules.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .summaries import StructuredSummary


class FileCategory(Enum):
    """High-level file categories. Determines which extractor runs."""
    DATABASE = "database"
    STRUCTURED_DATA = "structured_data"
    DOCUMENT = "document"
    TEXT = "text"
    MEDIA = "media"
    ARCHIVE = "archive"
    BINARY = "binary"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: "str | FileCategory") -> "FileCategory":
        """Accept enum members, values ("structured_data") or names ("StructuredData")."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for member in cls:
            if key in {member.value, member.value.replace("_", "")}:
                return member
        raise ValueError(f"Unknown file category: {value!r}")


@dataclass(frozen=True)
class DetectedType:
    """Output of the file type detector."""
    mime_type: str
    category: FileCategory
    magic_header: str           # Hex of the first (up to) 16 bytes


@dataclass
class FileInfo:
    """
    Basic file information from the scanner.

    This is the lightest-weight representation, containing only
    what we get from stat() without reading file content.
    """
    path: Path
    name: str
    extension: str
    size: int
    mtime_ns: int
    created: Optional[float] = None

    @classmethod
    def from_path(cls, path: Path, stat=None) -> "FileInfo":
        """Create FileInfo from a path and (optionally) its stat result."""
        stat = stat if stat is not None else path.stat()
        created = getattr(stat, "st_birthtime", None)
        return cls(
            path=path,
            name=path.name,
            extension=path.suffix.lower(),
            size=stat.st_size,
            mtime_ns=stat.st_mtime_ns,
            created=created,
        )

    @property
    def fingerprint(self) -> Tuple[int, int]:
        return self.size, self.mtime_ns


@dataclass
class FileState:
    """Change detector cache entry: the fingerprint of a file at last index."""
    path: str
    size: int
    mtime_ns: int
    hash: str

    def to_dict(self) -> dict:
        return {"path": self.path, "size": self.size, "mtime_ns": self.mtime_ns, "hash": self.hash}

    @classmethod
    def from_dict(cls, data: dict) -> "FileState":
        return cls(
            path=str(data["path"]),
            size=int(data["size"]),
            mtime_ns=int(data["mtime_ns"]),
            hash=str(data["hash"]),
        )


def _ts(value: Optional[datetime]) -> Optional[float]:
    return value.timestamp() if value is not None else None


def _dt(value: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value is not None else None


@dataclass
class DocumentMetadata:
    """
    Core metadata stored for every indexed file.

    Kept small: every field is a fast, filterable column in the store.
    """
    path: str
    size: int
    modified: datetime
    hash: str
    mime_type: str
    category: FileCategory
    magic_header: str
    created: Optional[datetime] = None
    extension: Optional[str] = None
    indexed: bool = True
    indexed_at: Optional[datetime] = None

    @classmethod
    def build(
        cls,
        info: FileInfo,
        content_hash: str,
        detected: DetectedType,
    ) -> "DocumentMetadata":
        return cls(
            path=str(info.path),
            size=info.size,
            modified=datetime.fromtimestamp(info.mtime_ns / 1e9, tz=timezone.utc),
            created=_dt(info.created),
            hash=content_hash,
            mime_type=detected.mime_type,
            category=detected.category,
            magic_header=detected.magic_header,
            extension=info.extension.lstrip(".") or None,
            indexed=True,
            indexed_at=datetime.now(timezone.utc),
        )

    def to_row(self) -> dict:
        return {
            "path": self.path,
            "size": self.size,
            "modified": _ts(self.modified),
            "created": _ts(self.created),
            "hash": self.hash,
            "mime_type": self.mime_type,
            "category": self.category.value,
            "magic_header": self.magic_header,
            "extension": self.extension,
            "indexed": int(self.indexed),
            "indexed_at": _ts(self.indexed_at),
        }

    @classmethod
    def from_row(cls, row) -> "DocumentMetadata":
        return cls(
            path=row["path"],
            size=row["size"],
            modified=_dt(row["modified"]),
            created=_dt(row["created"]),
            hash=row["hash"],
            mime_type=row["mime_type"],
            category=FileCategory(row["category"]),
            magic_header=row["magic_header"],
            extension=row["extension"],
            indexed=bool(row["indexed"]),
            indexed_at=_dt(row["indexed_at"]),
        )


@dataclass
class IndexedDocument:
    """
    One document as handed to the store: metadata + bounded summary.

    `error` is set when extraction failed and the summary is partial.
    """
    metadata: DocumentMetadata
    summary: Optional[StructuredSummary] = None
    preview: str = ""
    error: Optional[str] = None

    @property
    def path(self) -> str:
        return self.metadata.path


@dataclass(frozen=True)
class FileError:
    """A per-file failure recorded during an indexing run."""
    path: str
    error: str


@dataclass
class ScanResult:
    """Result of scanning a directory tree."""
    files: List[FileInfo]
    errors: List[FileError]
    skipped_count: int
    duration_seconds: float


@dataclass(frozen=True)
class IndexStats:
    """Statistics from an indexing run. Immutable once produced."""
    total_files: int = 0
    total_size: int = 0
    indexed_files: int = 0
    skipped_files: int = 0
    removed_files: int = 0
    duration_ms: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)
    errors: Tuple[FileError, ...] = ()
    cancelled: bool = False

    def __str__(self) -> str:
        return (
            f"Indexed {self.indexed_files}/{self.total_files} files "
            f"({self.skipped_files} unchanged, "
            f"{self.removed_files} removed, "
            f"{len(self.errors)} errors) "
            f"in {self.duration_ms}ms"
            + (" [cancelled]" if self.cancelled else "")
        )


class IndexPhase(Enum):
    """Lifecycle of a MasterIndexer run."""
    IDLE = "idle"
    SCANNING = "scanning"
    EXTRACTING = "extracting"
    COMMITTING = "committing"
    COMPLETE = "complete"


@dataclass(frozen=True)
class IndexProgress:
    """Snapshot of a running indexer, polled by the application."""
    phase: IndexPhase = IndexPhase.IDLE
    files_total: int = 0
    files_processed: int = 0
    bytes_processed: int = 0
    current_file: str = ""


class StatusKind(Enum):
    NOT_INDEXED = "not_indexed"
    INDEXING = "indexing"
    INDEXED = "indexed"
    ERROR = "error"
    OUTDATED = "outdated"


@dataclass(frozen=True)
class IndexStatus:
    path: str
    indexed: bool
    status: StatusKind
    indexed_at: Optional[datetime] = None


@dataclass(frozen=True)
class SearchResult:
    """
    A single query hit.

    Results sort by descending score, then ascending path.
    """
    path: str
    category: FileCategory
    score: float
    mime_type: str = ""
    snippet: Optional[str] = None
    location: Optional[str] = None

    @property
    def sort_key(self) -> Tuple[float, str]:
        return -self.score, self.path


def sort_results(results: List[SearchResult]) -> List[SearchResult]:
    """Deterministic ordering: score desc, ties by lexicographic path."""
    return sorted(results, key=lambda r: r.sort_key)
