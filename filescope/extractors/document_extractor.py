"""
Document extractor - text of PDF and Word files.

PDFs go through pypdf, capped at the first N pages during bulk
indexing. Word files go through python-docx.
"""

import logging
import zipfile
from pathlib import Path
from typing import List

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..errors import ExtractionError
from ..models import FileCategory
from ..summaries import DocumentSummary
from .base import BaseExtractor


logger = logging.getLogger(__name__)


_DOCUMENT_ERRORS = (
    OSError, ValueError, KeyError, zipfile.BadZipFile, PackageNotFoundError, PdfReadError,
)


def _is_pdf(path: Path) -> bool:
    with open(path, "rb") as f:
        return f.read(4) == b"%PDF"


class DocumentExtractor(BaseExtractor):
    """Extracts plain text from PDF and DOCX documents."""

    @property
    def name(self) -> str:
        return "document"

    def extract_summary(self, path: Path, category: FileCategory) -> DocumentSummary:
        try:
            if _is_pdf(path):
                return self._pdf_summary(path)
            return self._docx_summary(path)
        except _DOCUMENT_ERRORS as e:
            logger.debug(f"Document extraction failed for {path.name}: {e}")
            return DocumentSummary(error=f"document: {e}")

    def extract_deep(self, path: Path) -> str:
        try:
            if _is_pdf(path):
                reader = PdfReader(str(path))
                return "\n".join(page.extract_text() or "" for page in reader.pages)
            doc = Document(str(path))
            return "\n".join(p.text for p in doc.paragraphs)
        except _DOCUMENT_ERRORS as e:
            raise ExtractionError(path, f"document: {e}") from e

    def _pdf_summary(self, path: Path) -> DocumentSummary:
        reader = PdfReader(str(path))
        page_count = len(reader.pages)
        max_pages = self.config.pdf_max_pages

        text_parts: List[str] = []
        for page in reader.pages[:max_pages]:
            if text := page.extract_text():
                text_parts.append(text)

        content, clipped = self._clip("\n".join(text_parts))
        return DocumentSummary(
            content=content,
            page_count=page_count,
            truncated=clipped or page_count > max_pages,
        )

    def _docx_summary(self, path: Path) -> DocumentSummary:
        doc = Document(str(path))
        paragraphs = [p.text for p in doc.paragraphs if p.text]
        content, clipped = self._clip("\n".join(paragraphs))
        return DocumentSummary(
            content=content,
            paragraph_count=len(paragraphs),
            truncated=clipped,
        )

    def _clip(self, text: str):
        limit = self.config.text_max_bytes
        if len(text) <= limit:
            return text, False
        return text[:limit], True
