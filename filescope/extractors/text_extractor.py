"""
Text extractor for plain text and source files.
"""

import logging
from pathlib import Path

from ..errors import ExtractionError
from ..models import FileCategory
from ..summaries import TextSummary
from .base import BaseExtractor


logger = logging.getLogger(__name__)


class TextExtractor(BaseExtractor):
    """Reads text up to the configured ceiling; larger files are truncated, not skipped."""

    @property
    def name(self) -> str:
        return "text"

    def extract_summary(self, path: Path, category: FileCategory) -> TextSummary:
        limit = self.config.text_max_bytes
        with open(path, "rb") as f:
            raw = f.read(limit + 1)

        truncated = len(raw) > limit
        content = raw[:limit].decode("utf-8", errors="replace")
        if truncated:
            logger.debug(f"Truncated {path} at {limit} bytes")

        return TextSummary(
            content=content,
            line_count=content.count("\n") + (1 if content and not content.endswith("\n") else 0),
            word_count=len(content.split()),
            char_count=len(content),
            truncated=truncated,
        )

    def extract_deep(self, path: Path) -> str:
        try:
            return Path(path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ExtractionError(path, f"text: {e}") from e
