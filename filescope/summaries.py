"""
Structured Summaries - Bounded per-category extraction results.

One dataclass per extractor kind. Every summary is bounded by the
extraction budgets (depth, sampled rows, byte ceilings) and never grows
with the size of the underlying file. Summaries round-trip through a
plain dict with a "type" discriminator so the store can persist them
as JSON.
"""

import re
from dataclasses import asdict, dataclass, field
from typing import ClassVar, Dict, List, Optional


PREVIEW_CHARS = 500


_ARRAY_INDEX = re.compile(r"\[\d+\]")


def _clip(text: str, limit: int = PREVIEW_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def strip_indices(json_path: str) -> str:
    """'$.users[0].name' -> '$.users.name'"""
    return _ARRAY_INDEX.sub("", json_path)


@dataclass
class StructuredSummary:
    """
    Base class for all summaries.

    `error` is the error flag: when set, the summary holds only the
    structure recovered before the failure.
    """

    kind: ClassVar[str] = "none"

    error: Optional[str] = field(default=None, kw_only=True)

    def preview(self) -> str:
        return ""

    def full_text(self) -> Optional[str]:
        """Text fed to the analyzed full-text field (None = nothing)."""
        return None

    def tokens(self) -> Dict[str, str]:
        """Structured token fields: tables, columns, paths, sheets, fields."""
        return {}

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.kind
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "StructuredSummary":
        data = {k: v for k, v in data.items() if k != "type"}
        return cls(**data)


# --- SQLite ---------------------------------------------------------------

@dataclass
class ColumnInfo:
    name: str
    data_type: str
    nullable: bool
    primary_key: bool


@dataclass
class TableInfo:
    name: str
    columns: List[ColumnInfo] = field(default_factory=list)
    row_count: int = 0
    indexes: List[str] = field(default_factory=list)


@dataclass
class SqliteSummary(StructuredSummary):
    kind: ClassVar[str] = "sqlite"

    tables: List[TableInfo] = field(default_factory=list)
    total_rows: int = 0
    page_size: int = 0
    version: str = "unknown"

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]

    def preview(self) -> str:
        return _clip(
            f"SQLite database: {len(self.tables)} tables, {self.total_rows} total rows. "
            f"Tables: {', '.join(self.table_names)}"
        )

    def tokens(self) -> Dict[str, str]:
        columns = [f"{t.name}.{c.name}" for t in self.tables for c in t.columns]
        return {
            "tables": " ".join(self.table_names),
            "columns": " ".join(columns),
            "fields": f"sqlite {self.version}",
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SqliteSummary":
        tables = [
            TableInfo(
                name=t["name"],
                columns=[ColumnInfo(**c) for c in t.get("columns", [])],
                row_count=t.get("row_count", 0),
                indexes=list(t.get("indexes", [])),
            )
            for t in data.get("tables", [])
        ]
        return cls(
            tables=tables,
            total_rows=data.get("total_rows", 0),
            page_size=data.get("page_size", 0),
            version=data.get("version", "unknown"),
            error=data.get("error"),
        )


# --- JSON -----------------------------------------------------------------

@dataclass
class JsonPath:
    path: str                   # e.g. "$.users[0].name"
    value_type: str             # string | number | boolean | null | object | array
    sample: Optional[str] = None


@dataclass
class JsonSummary(StructuredSummary):
    kind: ClassVar[str] = "json"

    paths: List[JsonPath] = field(default_factory=list)
    depth: int = 0
    object_count: int = 0
    array_count: int = 0
    truncated: bool = False
    excerpt: str = ""
    # Raw document text, capped at text_max_bytes
    content: str = ""

    def preview(self) -> str:
        return _clip(self.excerpt)

    def full_text(self) -> Optional[str]:
        return self.content or None

    def tokens(self) -> Dict[str, str]:
        # "$.users[0].name" and "$.users[1].name" index as one key path
        keys = dict.fromkeys(strip_indices(p.path) for p in self.paths)
        return {
            "paths": " ".join(keys),
            "fields": "json",
        }

    @classmethod
    def from_dict(cls, data: dict) -> "JsonSummary":
        return cls(
            paths=[JsonPath(**p) for p in data.get("paths", [])],
            depth=data.get("depth", 0),
            object_count=data.get("object_count", 0),
            array_count=data.get("array_count", 0),
            truncated=data.get("truncated", False),
            excerpt=data.get("excerpt", ""),
            content=data.get("content", ""),
            error=data.get("error"),
        )


# --- CSV / Excel ----------------------------------------------------------

@dataclass
class ColumnSchema:
    name: str
    data_type: str = "string"   # integer | number | string
    nullable: bool = True


@dataclass
class CsvSummary(StructuredSummary):
    kind: ClassVar[str] = "csv"

    headers: List[str] = field(default_factory=list)
    delimiter: str = ","
    inferred_schema: List[ColumnSchema] = field(default_factory=list)
    row_count: int = 0
    sampled_rows: int = 0

    def preview(self) -> str:
        return _clip(
            f"CSV file: {len(self.headers)} columns, {self.row_count} rows. "
            f"Headers: {', '.join(self.headers)}"
        )

    def tokens(self) -> Dict[str, str]:
        return {"columns": " ".join(self.headers), "fields": "csv"}

    @classmethod
    def from_dict(cls, data: dict) -> "CsvSummary":
        return cls(
            headers=list(data.get("headers", [])),
            delimiter=data.get("delimiter", ","),
            inferred_schema=[ColumnSchema(**c) for c in data.get("inferred_schema", [])],
            row_count=data.get("row_count", 0),
            sampled_rows=data.get("sampled_rows", 0),
            error=data.get("error"),
        )


@dataclass
class SheetInfo:
    name: str
    headers: List[str] = field(default_factory=list)
    row_count: int = 0
    inferred_schema: List[ColumnSchema] = field(default_factory=list)


@dataclass
class ExcelSummary(StructuredSummary):
    kind: ClassVar[str] = "excel"

    sheets: List[SheetInfo] = field(default_factory=list)
    total_rows: int = 0

    def preview(self) -> str:
        names = ", ".join(s.name for s in self.sheets)
        return _clip(
            f"Excel workbook: {len(self.sheets)} sheets, {self.total_rows} total rows. "
            f"Sheets: {names}"
        )

    def tokens(self) -> Dict[str, str]:
        columns = [f"{s.name}.{h}" for s in self.sheets for h in s.headers if h]
        return {
            "sheets": " ".join(s.name for s in self.sheets),
            "columns": " ".join(columns),
            "fields": "excel",
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExcelSummary":
        sheets = [
            SheetInfo(
                name=s["name"],
                headers=list(s.get("headers", [])),
                row_count=s.get("row_count", 0),
                inferred_schema=[ColumnSchema(**c) for c in s.get("inferred_schema", [])],
            )
            for s in data.get("sheets", [])
        ]
        return cls(sheets=sheets, total_rows=data.get("total_rows", 0), error=data.get("error"))


# --- XML ------------------------------------------------------------------

@dataclass
class XmlSummary(StructuredSummary):
    kind: ClassVar[str] = "xml"

    root: str = ""
    namespaces: List[str] = field(default_factory=list)
    element_count: int = 0
    depth: int = 0
    truncated: bool = False
    excerpt: str = ""
    # Element text in document order, capped at text_max_bytes
    content: str = ""

    def preview(self) -> str:
        return _clip(self.excerpt) or f"XML document <{self.root}>"

    def full_text(self) -> Optional[str]:
        return self.content or self.excerpt or None

    def tokens(self) -> Dict[str, str]:
        return {"fields": " ".join(["xml", self.root, *self.namespaces]).strip()}


# --- Text / documents -----------------------------------------------------

@dataclass
class TextSummary(StructuredSummary):
    kind: ClassVar[str] = "text"

    content: str = ""
    line_count: int = 0
    word_count: int = 0
    char_count: int = 0
    truncated: bool = False

    def preview(self) -> str:
        return _clip(self.content)

    def full_text(self) -> Optional[str]:
        return self.content or None

    def tokens(self) -> Dict[str, str]:
        return {"fields": "text"}


@dataclass
class DocumentSummary(StructuredSummary):
    kind: ClassVar[str] = "document"

    content: str = ""
    page_count: Optional[int] = None
    paragraph_count: Optional[int] = None
    truncated: bool = False

    def preview(self) -> str:
        return _clip(self.content)

    def full_text(self) -> Optional[str]:
        return self.content or None

    def tokens(self) -> Dict[str, str]:
        return {"fields": "document"}


# --- LevelDB / IndexedDB --------------------------------------------------

@dataclass
class LevelDbSummary(StructuredSummary):
    """
    Catalog of a LevelDB store directory, read from file names and sizes.

    Records are never decoded, so `key_count` is an estimate. Chrome
    keeps each origin's IndexedDB databases in one store named
    `<origin>.indexeddb.leveldb`; for those `origin` is set.
    """

    kind: ClassVar[str] = "leveldb"

    manifest: str = ""
    table_files: int = 0
    log_files: int = 0
    approximate_size: int = 0
    key_count: int = 0
    origin: Optional[str] = None

    @property
    def store_type(self) -> str:
        return "indexeddb" if self.origin is not None else "leveldb"

    def preview(self) -> str:
        if self.origin is not None:
            head = f"Chrome IndexedDB store for {self.origin}"
        else:
            head = "LevelDB store"
        return _clip(
            f"{head}: ~{self.key_count} keys, ~{self.approximate_size} bytes "
            f"in {self.table_files} table files and {self.log_files} logs"
        )

    def tokens(self) -> Dict[str, str]:
        fields = ["leveldb"] if self.origin is None else ["indexeddb", "leveldb"]
        return {"fields": " ".join(fields)}


_SUMMARY_TYPES: Dict[str, type] = {
    cls.kind: cls
    for cls in (
        SqliteSummary, JsonSummary, CsvSummary, ExcelSummary,
        XmlSummary, TextSummary, DocumentSummary, LevelDbSummary,
    )
}


def summary_from_dict(data: Optional[dict]) -> Optional[StructuredSummary]:
    """Rebuild a summary from its stored dict form."""
    if not data:
        return None
    cls = _SUMMARY_TYPES.get(data.get("type", ""))
    if cls is None:
        raise ValueError(f"Unknown summary type: {data.get('type')!r}")
    return cls.from_dict(data)
