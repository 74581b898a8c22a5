"""
CSV extractor - headers, delimiter, inferred schema and row count.

The schema is inferred from a fixed sample of rows; the row count is
the true count, obtained by streaming the rest of the file without
keeping it.
"""

import csv
import io
import logging
from pathlib import Path
from typing import Iterable, List, Sequence

from ..errors import ExtractionError
from ..models import FileCategory
from ..summaries import ColumnSchema, CsvSummary
from .base import BaseExtractor


logger = logging.getLogger(__name__)


DELIMITERS = (",", "\t", "|", ";")


def detect_delimiter(first_line: str) -> str:
    """Most frequent candidate in the first line; ties go to the earlier candidate."""
    best, best_count = ",", 0
    for delimiter in DELIMITERS:
        count = first_line.count(delimiter)
        if count > best_count:
            best, best_count = delimiter, count
    return best


def infer_type(values: Iterable[str]) -> str:
    """Narrowest of integer / number / string that fits every non-empty value."""
    kind = "integer"
    seen = False
    for value in values:
        value = value.strip()
        if not value:
            continue
        seen = True
        if kind == "integer":
            try:
                int(value)
                continue
            except ValueError:
                kind = "number"
        if kind == "number":
            try:
                float(value)
                continue
            except ValueError:
                return "string"
    return kind if seen else "string"


def infer_schema(headers: Sequence[str], rows: List[Sequence]) -> List[ColumnSchema]:
    schema = []
    for i, name in enumerate(headers):
        column = ["" if i >= len(row) or row[i] is None else str(row[i]) for row in rows]
        schema.append(ColumnSchema(
            name=name,
            data_type=infer_type(column),
            nullable=any(not v.strip() for v in column) or not rows,
        ))
    return schema


class CsvExtractor(BaseExtractor):
    """Summarizes delimited text files."""

    @property
    def name(self) -> str:
        return "csv"

    def extract_summary(self, path: Path, category: FileCategory) -> CsvSummary:
        summary = CsvSummary()
        with open(path, "r", encoding="utf-8", errors="replace", newline="") as f:
            first_line = f.readline()
            if not first_line:
                return summary
            summary.delimiter = detect_delimiter(first_line)
            f.seek(0)

            reader = csv.reader(f, delimiter=summary.delimiter)
            sample: List[List[str]] = []
            try:
                summary.headers = [h.strip() for h in next(reader, [])]
                for row in reader:
                    if len(sample) < self.config.csv_sample_rows:
                        sample.append(row)
                    summary.row_count += 1
            except csv.Error as e:
                logger.debug(f"CSV parse failed for {path} near row {summary.row_count}: {e}")
                summary.error = f"csv: {e}"

        summary.sampled_rows = len(sample)
        summary.inferred_schema = infer_schema(summary.headers, sample)
        return summary

    def extract_deep(self, path: Path) -> str:
        """Every row, normalized to tab-separated output."""
        try:
            with open(path, "r", encoding="utf-8", errors="replace", newline="") as f:
                delimiter = detect_delimiter(f.readline())
                f.seek(0)
                out = io.StringIO()
                writer = csv.writer(out, delimiter="\t", lineterminator="\n")
                for row in csv.reader(f, delimiter=delimiter):
                    writer.writerow(row)
            return out.getvalue()
        except (OSError, csv.Error) as e:
            raise ExtractionError(path, f"csv: {e}") from e
