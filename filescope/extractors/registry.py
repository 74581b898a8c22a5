"""
Extractor Registry - closed mapping from detected type to extractor.

The set of extractors is fixed: lookups go through ExtractorKind, keyed
by (category, mime type). Categories with no extractor (media, archives,
binaries, unknown) get no summary at all.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from ..config import IndexerConfig, get_config
from ..detector import MIME_CSV, MIME_JSON, MIME_LEVELDB, MIME_SQLITE, MIME_XLSX, MIME_XML
from ..errors import QueryError
from ..models import FileCategory
from ..summaries import StructuredSummary
from .base import BaseExtractor
from .csv_extractor import CsvExtractor
from .document_extractor import DocumentExtractor
from .excel_extractor import ExcelExtractor
from .json_extractor import JsonExtractor
from .leveldb_extractor import LevelDbExtractor
from .sqlite_extractor import SqliteExtractor
from .text_extractor import TextExtractor
from .xml_extractor import XmlExtractor


logger = logging.getLogger(__name__)


class ExtractorKind(Enum):
    SQLITE = "sqlite"
    JSON = "json"
    CSV = "csv"
    EXCEL = "excel"
    XML = "xml"
    TEXT = "text"
    DOCUMENT = "document"
    LEVELDB = "leveldb"


_DATABASE_BY_MIME = {
    MIME_SQLITE: ExtractorKind.SQLITE,
    MIME_LEVELDB: ExtractorKind.LEVELDB,
}

_STRUCTURED_BY_MIME = {
    MIME_JSON: ExtractorKind.JSON,
    MIME_CSV: ExtractorKind.CSV,
    MIME_XML: ExtractorKind.XML,
}

_EXTRACTOR_CLASSES = {
    ExtractorKind.SQLITE: SqliteExtractor,
    ExtractorKind.JSON: JsonExtractor,
    ExtractorKind.CSV: CsvExtractor,
    ExtractorKind.EXCEL: ExcelExtractor,
    ExtractorKind.XML: XmlExtractor,
    ExtractorKind.TEXT: TextExtractor,
    ExtractorKind.DOCUMENT: DocumentExtractor,
    ExtractorKind.LEVELDB: LevelDbExtractor,
}


def kind_for(category: FileCategory, mime_type: str) -> Optional[ExtractorKind]:
    """Pick the extractor for a detected type, or None if there is none."""
    if category == FileCategory.DATABASE:
        return _DATABASE_BY_MIME.get(mime_type)
    if category == FileCategory.STRUCTURED_DATA:
        return _STRUCTURED_BY_MIME.get(mime_type)
    if category == FileCategory.DOCUMENT:
        return ExtractorKind.EXCEL if mime_type == MIME_XLSX else ExtractorKind.DOCUMENT
    if category == FileCategory.TEXT:
        return ExtractorKind.TEXT
    return None


def fallback_preview(mime_type: str) -> str:
    return f"{mime_type} file"


class ExtractorRegistry:
    """
    Holds one instance of every extractor, created lazily.

    Extractors are stateless apart from their config, so a single
    registry is shared by all worker threads.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self._extractors: Dict[ExtractorKind, BaseExtractor] = {}

    def get(self, kind: ExtractorKind) -> BaseExtractor:
        extractor = self._extractors.get(kind)
        if extractor is None:
            extractor = _EXTRACTOR_CLASSES[kind](self.config)
            self._extractors[kind] = extractor
        return extractor

    def lookup(self, category: FileCategory, mime_type: str) -> Optional[BaseExtractor]:
        kind = kind_for(category, mime_type)
        return self.get(kind) if kind is not None else None

    def extract_summary(
        self,
        path: Path,
        category: FileCategory,
        mime_type: str,
    ) -> Optional[StructuredSummary]:
        """
        Bounded summary for bulk indexing.

        Returns None for categories with no extractor. I/O errors
        (permission denied, file vanished) propagate to the caller.
        """
        extractor = self.lookup(category, mime_type)
        if extractor is None:
            return None
        return extractor.extract_summary(path, category)

    def extract_deep(self, path: Path, category: FileCategory, mime_type: str) -> str:
        """
        Full extraction on demand.

        Raises:
            QueryError: no extractor for this category / mime type
            ExtractionError: the file cannot be read or parsed
        """
        extractor = self.lookup(category, mime_type)
        if extractor is None:
            raise QueryError(f"No deep extractor for {category.value} ({mime_type})")
        logger.debug(f"Deep extraction of {path} with {extractor.name}")
        return extractor.extract_deep(Path(path))
