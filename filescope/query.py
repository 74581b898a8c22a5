"""
Query Planner - Typed queries over the index.

Cheap filters always run first: a combined query resolves its metadata
predicate against the B-tree indexed columns, then scores text only
within that candidate set. Structured queries are matched in the FTS
token columns and then confirmed against the stored summary, which also
yields the location of the hit (table:users, $.a.b, column:x, sheet:S).
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .config import get_config, IndexerConfig
from .errors import ExtractionError, QueryError
from .extractors import ExtractorRegistry
from .models import FileCategory, IndexedDocument, SearchResult, sort_results
from .store import IndexReader, IndexStore, TEXT_FIELDS
from .summaries import CsvSummary, ExcelSummary, JsonSummary, SqliteSummary, strip_indices


logger = logging.getLogger(__name__)


DEFAULT_LIMIT = 100
_TERM = re.compile(r"\w+", re.UNICODE)


class StructuredKind(Enum):
    SQL_TABLE = "sql_table"
    JSON_PATH = "json_path"
    COLUMN_NAME = "column_name"
    SHEET_NAME = "sheet_name"


# FTS column searched for each structured kind
_KIND_COLUMNS = {
    StructuredKind.SQL_TABLE: "tables",
    StructuredKind.JSON_PATH: "paths",
    StructuredKind.COLUMN_NAME: "columns",
    StructuredKind.SHEET_NAME: "sheets",
}


@dataclass(frozen=True)
class FullTextQuery:
    text: str
    limit: int = DEFAULT_LIMIT


@dataclass(frozen=True)
class MetadataQuery:
    category: Optional[FileCategory] = None
    mime_type: Optional[str] = None
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    extension: Optional[str] = None
    limit: Optional[int] = None


@dataclass(frozen=True)
class StructuredQuery:
    kind: StructuredKind
    text: str
    limit: int = DEFAULT_LIMIT


@dataclass(frozen=True)
class CombinedQuery:
    """Metadata filter, then text scoring within its candidates. The text query's limit applies."""
    metadata: MetadataQuery
    fulltext: Union[FullTextQuery, StructuredQuery]


Query = Union[FullTextQuery, MetadataQuery, StructuredQuery, CombinedQuery]


# --- Parsing --------------------------------------------------------------

def _parse_int(data: dict, key: str, default: Any = None) -> Optional[int]:
    value = data.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool):
        raise QueryError(f"'{key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise QueryError(f"'{key}' must be an integer, got {value!r}") from e


def _parse_text(data: dict) -> str:
    text = data.get("text")
    if not isinstance(text, str):
        raise QueryError("'text' must be a string")
    return text


def parse_query(data: dict) -> Query:
    """
    Build a query from its JSON form.

    Examples:
        {"type": "fulltext", "text": "password", "limit": 10}
        {"type": "metadata", "category": "database", "min_size": 1024}
        {"type": "structured", "kind": "sql_table", "text": "users"}
        {"type": "combined", "metadata": {...}, "fulltext": {"type": "fulltext", ...}}

    Raises:
        QueryError: unknown type or malformed fields
    """
    if not isinstance(data, dict):
        raise QueryError(f"Query must be an object, got {type(data).__name__}")

    query_type = str(data.get("type", "")).lower()

    if query_type == "fulltext":
        return FullTextQuery(text=_parse_text(data), limit=_parse_int(data, "limit", DEFAULT_LIMIT))

    if query_type == "metadata":
        category = data.get("category")
        if category is not None:
            try:
                category = FileCategory.parse(category)
            except ValueError as e:
                raise QueryError(str(e)) from e
        return MetadataQuery(
            category=category,
            mime_type=data.get("mime_type", data.get("mime")),
            min_size=_parse_int(data, "min_size"),
            max_size=_parse_int(data, "max_size"),
            extension=data.get("extension"),
            limit=_parse_int(data, "limit"),
        )

    if query_type == "structured":
        try:
            kind = StructuredKind(str(data.get("kind", "")).lower())
        except ValueError as e:
            raise QueryError(f"Unknown structured kind: {data.get('kind')!r}") from e
        return StructuredQuery(kind=kind, text=_parse_text(data), limit=_parse_int(data, "limit", DEFAULT_LIMIT))

    if query_type == "combined":
        metadata = parse_query({**(data.get("metadata") or {}), "type": "metadata"})
        inner_data = data.get("fulltext") or data.get("query")
        if not isinstance(inner_data, dict):
            raise QueryError("Combined query needs a 'fulltext' object")
        inner = parse_query({"type": "fulltext", **inner_data})
        if not isinstance(inner, (FullTextQuery, StructuredQuery)):
            raise QueryError("Combined query text part must be fulltext or structured")
        return CombinedQuery(metadata=metadata, fulltext=inner)

    raise QueryError(f"Unknown query type: {data.get('type')!r}")


# --- Validation -----------------------------------------------------------

def _terms(text: str) -> List[str]:
    return _TERM.findall(text)


def _check_limit(limit: Optional[int], allow_none: bool = False) -> None:
    if limit is None and allow_none:
        return
    if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
        raise QueryError(f"limit must be a positive integer, got {limit!r}")


def validate_query(query: Query) -> None:
    """Raise QueryError for malformed queries."""
    if isinstance(query, (FullTextQuery, StructuredQuery)):
        if not query.text or not query.text.strip():
            raise QueryError("Query text is empty")
        if not _terms(query.text):
            raise QueryError(f"Query text has no searchable terms: {query.text!r}")
        _check_limit(query.limit)
        if isinstance(query, StructuredQuery) and not isinstance(query.kind, StructuredKind):
            raise QueryError(f"Unknown structured kind: {query.kind!r}")
    elif isinstance(query, MetadataQuery):
        for name in ("min_size", "max_size"):
            value = getattr(query, name)
            if value is not None and value < 0:
                raise QueryError(f"{name} must not be negative")
        if query.min_size is not None and query.max_size is not None and query.min_size > query.max_size:
            raise QueryError(f"min_size {query.min_size} exceeds max_size {query.max_size}")
        if query.category is not None and not isinstance(query.category, FileCategory):
            raise QueryError(f"category must be a FileCategory, got {query.category!r}")
        _check_limit(query.limit, allow_none=True)
    elif isinstance(query, CombinedQuery):
        if not isinstance(query.fulltext, (FullTextQuery, StructuredQuery)):
            raise QueryError("Combined query text part must be fulltext or structured")
        validate_query(query.metadata)
        validate_query(query.fulltext)
    else:
        raise QueryError(f"Unsupported query: {query!r}")


# --- Structured locations -------------------------------------------------

def _eq(a: str, b: str) -> bool:
    return a.casefold() == b.casefold()


def _locate_table(summary, needle: str) -> Optional[str]:
    if isinstance(summary, SqliteSummary):
        for table in summary.tables:
            if _eq(table.name, needle):
                return f"table:{table.name}"
    return None


def _locate_column(summary, needle: str) -> Optional[str]:
    if isinstance(summary, SqliteSummary):
        for table in summary.tables:
            for column in table.columns:
                if _eq(column.name, needle) or _eq(f"{table.name}.{column.name}", needle):
                    return f"column:{table.name}.{column.name}"
    elif isinstance(summary, CsvSummary):
        for header in summary.headers:
            if _eq(header, needle):
                return f"column:{header}"
    elif isinstance(summary, ExcelSummary):
        for sheet in summary.sheets:
            for header in sheet.headers:
                if header and (_eq(header, needle) or _eq(f"{sheet.name}.{header}", needle)):
                    return f"column:{sheet.name}.{header}"
    return None


def _locate_sheet(summary, needle: str) -> Optional[str]:
    if isinstance(summary, ExcelSummary):
        for sheet in summary.sheets:
            if _eq(sheet.name, needle):
                return f"sheet:{sheet.name}"
    return None


def _locate_json_path(summary, needle: str) -> Optional[str]:
    if not isinstance(summary, JsonSummary):
        return None
    needle = strip_indices(needle).casefold()
    if needle.startswith("$"):
        needle = needle[1:]
    needle = needle.lstrip(".")
    for entry in summary.paths:
        key = strip_indices(entry.path).casefold()
        key = key[2:] if key.startswith("$.") else key.lstrip("$")
        if key == needle or key.endswith("." + needle):
            return entry.path
    return None


_LOCATORS: Dict[StructuredKind, Callable[[Any, str], Optional[str]]] = {
    StructuredKind.SQL_TABLE: _locate_table,
    StructuredKind.COLUMN_NAME: _locate_column,
    StructuredKind.SHEET_NAME: _locate_sheet,
    StructuredKind.JSON_PATH: _locate_json_path,
}


# --- Planner --------------------------------------------------------------

def fts_expression(query: Union[FullTextQuery, StructuredQuery]) -> str:
    """
    FTS5 MATCH expression.

    Full text: each term quoted, OR-ed (any term matches, bm25 ranks
    coverage), restricted to the text columns. Structured: the terms as
    one phrase in the kind's column.
    """
    terms = _terms(query.text)
    if isinstance(query, StructuredQuery):
        phrase = " ".join(terms)
        return f'{_KIND_COLUMNS[query.kind]} : "{phrase}"'
    any_term = " OR ".join(f'"{term}"' for term in terms)
    return f"{{{' '.join(TEXT_FIELDS)}}} : ({any_term})"


class QueryPlanner:
    """
    Executes typed queries against a read-only snapshot of the index.

    Usage:
        planner = QueryPlanner(config)
        results = planner.execute(FullTextQuery("password"))
    """

    def __init__(
        self,
        config: IndexerConfig | None = None,
        store: IndexStore | None = None,
        registry: ExtractorRegistry | None = None,
    ):
        self.config = config or get_config()
        self.store = store or IndexStore(self.config)
        self.registry = registry or ExtractorRegistry(self.config)

    def execute(self, query: Query) -> List[SearchResult]:
        """
        Run a query. Results are ordered by score desc, then path asc.

        Raises:
            QueryError: malformed query or missing index
        """
        validate_query(query)

        with self.store.reader() as reader, reader.snapshot():
            if isinstance(query, MetadataQuery):
                results = self._metadata_results(reader, query)
            elif isinstance(query, CombinedQuery):
                candidates = self._metadata_ids(reader, query.metadata)
                if not candidates:
                    logger.debug("Metadata filter matched nothing, skipping text scoring")
                    return []
                results = self._text_results(reader, query.fulltext, candidates)
            else:
                results = self._text_results(reader, query, None)

        logger.debug(f"{type(query).__name__} returned {len(results)} results")
        return results

    def extract_deep(self, path: Path | str, category: FileCategory | str, mime_type: str) -> str:
        """
        Full, unbounded extraction straight from the file. Never cached.

        Raises:
            QueryError: no extractor for the category / mime type
            ExtractionError: file missing or unreadable
        """
        try:
            category = FileCategory.parse(category)
        except ValueError as e:
            raise QueryError(str(e)) from e

        path = Path(path)
        if not path.is_file():
            raise ExtractionError(path, "file not found")
        return self.registry.extract_deep(path, category, mime_type)

    # --- Metadata ---

    def _metadata_where(self, query: MetadataQuery):
        clauses: List[str] = []
        params: List[Any] = []
        if query.category is not None:
            clauses.append("category = ?")
            params.append(query.category.value)
        if query.mime_type:
            clauses.append("mime_type = ?")
            params.append(query.mime_type)
        if query.min_size is not None:
            clauses.append("size >= ?")
            params.append(query.min_size)
        if query.max_size is not None:
            clauses.append("size <= ?")
            params.append(query.max_size)
        if query.extension:
            clauses.append("extension = ?")
            params.append(query.extension.lower().lstrip("."))
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        return where, params

    def _metadata_ids(self, reader: IndexReader, query: MetadataQuery) -> List[int]:
        where, params = self._metadata_where(query)
        rows = reader.execute(f"SELECT id FROM documents{where}", params)
        return [row["id"] for row in rows]

    def _metadata_results(self, reader: IndexReader, query: MetadataQuery) -> List[SearchResult]:
        where, params = self._metadata_where(query)
        sql = f"SELECT path, category, mime_type, preview FROM documents{where} ORDER BY path"
        if query.limit is not None:
            sql += " LIMIT ?"
            params.append(query.limit)
        return [
            SearchResult(
                path=row["path"],
                category=FileCategory(row["category"]),
                mime_type=row["mime_type"],
                score=1.0,
                snippet=row["preview"] or None,
            )
            for row in reader.execute(sql, params)
        ]

    # --- Text / structured ---

    def _text_results(
        self,
        reader: IndexReader,
        query: Union[FullTextQuery, StructuredQuery],
        candidates: Optional[List[int]],
    ) -> List[SearchResult]:
        sql = (
            "SELECT documents_fts.rowid AS id, -bm25(documents_fts) AS score, "
            "snippet(documents_fts, -1, '', '', '...', 16) AS snippet "
            "FROM documents_fts WHERE documents_fts MATCH ?"
        )
        params: List[Any] = [fts_expression(query)]
        if candidates is not None:
            # FTS5 resolves MATCH from its own index first; the candidate
            # set only narrows the hits, so scoring never sees other rows
            sql += " AND documents_fts.rowid IN (SELECT value FROM json_each(?))"
            params.append(json.dumps(candidates))

        sql += " ORDER BY score DESC, documents_fts.path ASC"
        structured = isinstance(query, StructuredQuery)
        if not structured:
            # Structured hits are confirmed below, so they can't be cut in SQL
            sql += " LIMIT ?"
            params.append(query.limit)

        hits = reader.execute(sql, params)
        documents = reader.get_documents([hit["id"] for hit in hits])

        results: List[SearchResult] = []
        for hit in hits:
            document = documents.get(hit["id"])
            if document is None:
                continue
            location = None
            if structured:
                location = self._locate(query, document)
                if location is None:
                    continue
            results.append(SearchResult(
                path=document.path,
                category=document.metadata.category,
                mime_type=document.metadata.mime_type,
                score=float(hit["score"]),
                snippet=hit["snippet"] or None,
                location=location,
            ))

        return sort_results(results)[: query.limit]

    def _locate(self, query: StructuredQuery, document: IndexedDocument) -> Optional[str]:
        if document.summary is None:
            return None
        return _LOCATORS[query.kind](document.summary, query.text.strip())
