"""
Extractors - one per structured content kind.

    - sqlite: catalog-only database summaries
    - json: bounded key-path enumeration
    - csv: delimiter, headers, sampled schema, streamed row count
    - excel: per-sheet headers and schema (openpyxl)
    - xml: streaming root / namespace / depth scan
    - text: plain text up to a byte ceiling
    - document: PDF (pypdf) and Word (python-docx) text
    - leveldb: LevelDB / Chrome IndexedDB store catalogs
"""

from .base import BaseExtractor
from .registry import ExtractorKind, ExtractorRegistry, fallback_preview, kind_for

__all__ = [
    "BaseExtractor",
    "ExtractorKind",
    "ExtractorRegistry",
    "fallback_preview",
    "kind_for",
]
