"""
Excel extractor - per-sheet headers, row counts and inferred schema.

Workbooks are opened in openpyxl's read-only streaming mode with cached
formula values, so memory stays bounded on large sheets.
"""

import logging
import zipfile
from pathlib import Path
from typing import List

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import ExtractionError
from ..models import FileCategory
from ..summaries import ExcelSummary, SheetInfo
from .base import BaseExtractor
from .csv_extractor import infer_schema


logger = logging.getLogger(__name__)


_WORKBOOK_ERRORS = (OSError, KeyError, ValueError, zipfile.BadZipFile, InvalidFileException)


def _cell_text(value) -> str:
    return "" if value is None else str(value)


class ExcelExtractor(BaseExtractor):
    """Summarizes .xlsx workbooks sheet by sheet."""

    @property
    def name(self) -> str:
        return "excel"

    def extract_summary(self, path: Path, category: FileCategory) -> ExcelSummary:
        summary = ExcelSummary()
        try:
            workbook = load_workbook(path, read_only=True, data_only=True)
        except _WORKBOOK_ERRORS as e:
            logger.debug(f"Cannot open workbook {path}: {e}")
            summary.error = f"excel: {e}"
            return summary

        try:
            for sheet in workbook.worksheets:
                summary.sheets.append(self._sheet_info(sheet))
        except _WORKBOOK_ERRORS as e:
            summary.error = f"excel: {e}"
        finally:
            workbook.close()

        summary.total_rows = sum(s.row_count for s in summary.sheets)
        return summary

    def extract_deep(self, path: Path) -> str:
        """Every sheet, every row, tab-separated."""
        try:
            workbook = load_workbook(path, read_only=True, data_only=True)
        except _WORKBOOK_ERRORS as e:
            raise ExtractionError(path, f"excel: {e}") from e

        lines: List[str] = []
        try:
            for sheet in workbook.worksheets:
                lines.append(f"-- sheet: {sheet.title}")
                for row in sheet.iter_rows(values_only=True):
                    lines.append("\t".join(_cell_text(v) for v in row))
                lines.append("")
        except _WORKBOOK_ERRORS as e:
            raise ExtractionError(path, f"excel: {e}") from e
        finally:
            workbook.close()
        return "\n".join(lines)

    def _sheet_info(self, sheet) -> SheetInfo:
        info = SheetInfo(name=sheet.title)
        rows = sheet.iter_rows(values_only=True)

        header_row = next(rows, None)
        if header_row is None:
            return info
        info.headers = [_cell_text(v).strip() for v in header_row]

        sample = []
        for row in rows:
            # Read-only sheets pad trailing empty rows
            if all(v is None for v in row):
                continue
            if len(sample) < self.config.excel_sample_rows:
                sample.append(row)
            info.row_count += 1

        info.inferred_schema = infer_schema(info.headers, sample)
        return info
