"""
SQLite extractor - catalog-only summaries of database files.

The summary reads sqlite_master, PRAGMA metadata and per-table row
counts. It never reads row data, so its cost does not depend on the
size of the tables.
"""

import logging
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import List

from ..errors import ExtractionError
from ..models import FileCategory
from ..summaries import ColumnInfo, SqliteSummary, TableInfo
from .base import BaseExtractor


logger = logging.getLogger(__name__)


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def open_readonly(path: Path) -> sqlite3.Connection:
    """Open a database file read-only without creating journals."""
    uri = f"{Path(path).resolve().as_uri()}?mode=ro"
    conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


class SqliteExtractor(BaseExtractor):
    """Summarizes SQLite databases from their catalog."""

    @property
    def name(self) -> str:
        return "sqlite"

    def extract_summary(self, path: Path, category: FileCategory) -> SqliteSummary:
        summary = SqliteSummary()
        try:
            with closing(open_readonly(path)) as conn:
                summary.version = conn.execute("SELECT sqlite_version()").fetchone()[0]
                summary.page_size = conn.execute("PRAGMA page_size").fetchone()[0]
                for table_name in self._table_names(conn):
                    # Tables are appended one by one so a failure keeps the rest
                    summary.tables.append(self._table_info(conn, table_name))
        except sqlite3.Error as e:
            logger.debug(f"SQLite catalog read failed for {path}: {e}")
            summary.error = f"sqlite: {e}"

        summary.total_rows = sum(t.row_count for t in summary.tables)
        return summary

    def extract_deep(self, path: Path) -> str:
        """Full schema dump followed by every row of every table."""
        lines: List[str] = []
        try:
            with closing(open_readonly(path)) as conn:
                schema = conn.execute(
                    "SELECT type, name, sql FROM sqlite_master "
                    "WHERE name NOT LIKE 'sqlite_%' ORDER BY type DESC, name"
                ).fetchall()

                for row in schema:
                    if row["type"] == "table":
                        lines.append(f"-- table: {row['name']}")
                    else:
                        lines.append(f"-- {row['type']}: {row['name']}")
                    if row["sql"]:
                        lines.append(f"{row['sql']};")
                lines.append("")

                for table_name in self._table_names(conn):
                    cursor = conn.execute(f"SELECT * FROM {quote_identifier(table_name)}")
                    columns = [d[0] for d in cursor.description]
                    lines.append(f"-- rows: {table_name}")
                    lines.append("\t".join(columns))
                    for record in cursor:
                        lines.append("\t".join(self._render(value) for value in record))
                    lines.append("")
        except sqlite3.Error as e:
            raise ExtractionError(path, f"sqlite: {e}") from e

        return "\n".join(lines)

    def _table_names(self, conn: sqlite3.Connection) -> List[str]:
        rows = conn.execute(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
        return [row[0] for row in rows]

    def _table_info(self, conn: sqlite3.Connection, table_name: str) -> TableInfo:
        quoted = quote_identifier(table_name)
        columns = [
            ColumnInfo(
                name=row["name"],
                data_type=row["type"] or "",
                nullable=not row["notnull"],
                primary_key=bool(row["pk"]),
            )
            for row in conn.execute(f"PRAGMA table_info({quoted})")
        ]
        indexes = [row["name"] for row in conn.execute(f"PRAGMA index_list({quoted})")]

        try:
            row_count = conn.execute(f"SELECT COUNT(*) FROM {quoted}").fetchone()[0]
        except sqlite3.Error as e:
            # Virtual tables whose module isn't loaded can't be counted
            logger.debug(f"Cannot count rows of {table_name}: {e}")
            row_count = 0

        return TableInfo(name=table_name, columns=columns, row_count=row_count, indexes=indexes)

    @staticmethod
    def _render(value) -> str:
        if value is None:
            return "NULL"
        if isinstance(value, bytes):
            return "0x" + value.hex()
        return str(value)
