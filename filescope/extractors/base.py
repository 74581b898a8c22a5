"""
Base class for all content extractors.
Each extractor handles one kind of structured content (SQLite, JSON, CSV, ...).
"""

from abc import ABC, abstractmethod
from pathlib import Path

from ..config import IndexerConfig, get_config
from ..models import FileCategory
from ..summaries import StructuredSummary


class BaseExtractor(ABC):
    """
    Base class for all content extractors.

    Two entry points with very different cost profiles:
    - extract_summary: bounded, runs during bulk indexing, never raises
      for malformed input (the summary's error flag is set instead)
    - extract_deep: unbounded, only on demand, raises ExtractionError
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()

    @property
    @abstractmethod
    def name(self) -> str:
        """Short extractor name (e.g. 'sqlite', 'json')."""
        pass

    @abstractmethod
    def extract_summary(self, path: Path, category: FileCategory) -> StructuredSummary:
        """
        Produce a bounded structural summary of the file.

        Args:
            path: Full path to the file
            category: Category assigned by the detector

        Returns:
            A summary; on parse failure, the partial summary with `error` set
        """
        pass

    @abstractmethod
    def extract_deep(self, path: Path) -> str:
        """
        Produce the full structural dump of the file as text.

        Cost may be proportional to file size.

        Raises:
            ExtractionError: if the file cannot be read or parsed
        """
        pass
