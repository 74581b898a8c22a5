"""
Index Store - Persistent document index with atomic batch commits.

SQLite in WAL mode holds two tables:
- documents: fast, filterable metadata columns (B-tree indexed) plus the
  stored summary and preview
- documents_fts: an FTS5 table, rowid = documents.id, with the analyzed
  text fields (path, preview, content) and the structured token fields
  (tables, columns, paths, sheets, fields)

Exactly one IndexWriter may be open at a time. Its mutations are
buffered and applied in a single transaction on commit(), so readers
see either the previous state or the new one in full. Readers open the
database read-only and memory-mapped.
"""

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .config import get_config, IndexerConfig
from .errors import IndexBusyError, IndexWriteError, QueryError
from .models import DocumentMetadata, IndexedDocument
from .summaries import summary_from_dict


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1
MMAP_SIZE = 256 * 1024 * 1024

TOKEN_FIELDS = ("tables", "columns", "paths", "sheets", "fields")
FTS_FIELDS = ("path", "preview", "content") + TOKEN_FIELDS
# Searched by full-text queries; "fields" holds format tags only
TEXT_FIELDS = tuple(f for f in FTS_FIELDS if f != "fields")

_SCHEMA = f"""
    CREATE TABLE IF NOT EXISTS documents (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT NOT NULL UNIQUE,
        size INTEGER NOT NULL,
        modified REAL NOT NULL,
        created REAL,
        hash TEXT NOT NULL,
        mime_type TEXT NOT NULL,
        category TEXT NOT NULL,
        magic_header TEXT NOT NULL,
        extension TEXT,
        indexed INTEGER NOT NULL DEFAULT 1,
        indexed_at REAL,
        summary TEXT,
        preview TEXT NOT NULL DEFAULT '',
        error TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_documents_size ON documents(size);
    CREATE INDEX IF NOT EXISTS idx_documents_modified ON documents(modified);
    CREATE INDEX IF NOT EXISTS idx_documents_hash ON documents(hash);
    CREATE INDEX IF NOT EXISTS idx_documents_mime ON documents(mime_type);
    CREATE INDEX IF NOT EXISTS idx_documents_category ON documents(category);
    CREATE INDEX IF NOT EXISTS idx_documents_extension ON documents(extension);

    CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
        {", ".join(FTS_FIELDS)},
        tokenize = 'unicode61'
    );
"""

_METADATA_COLUMNS = (
    "path", "size", "modified", "created", "hash", "mime_type", "category",
    "magic_header", "extension", "indexed", "indexed_at",
)

# In-process half of the writer lock, one per database file
_process_locks: Dict[str, threading.Lock] = {}
_process_locks_guard = threading.Lock()


def _process_lock(db_path: Path) -> threading.Lock:
    with _process_locks_guard:
        return _process_locks.setdefault(str(db_path), threading.Lock())


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def row_to_document(row: sqlite3.Row) -> IndexedDocument:
    summary = summary_from_dict(json.loads(row["summary"])) if row["summary"] else None
    return IndexedDocument(
        metadata=DocumentMetadata.from_row(row),
        summary=summary,
        preview=row["preview"],
        error=row["error"],
    )


def path_prefix(root: Path | str) -> str:
    """Prefix matching every path strictly below `root`."""
    root = str(root)
    return root if root.endswith(os.sep) else root + os.sep


class IndexStore:
    """
    Entry point to the on-disk index.

    Usage:
        store = IndexStore(config)
        with store.writer() as writer:
            writer.add_document(doc)
            writer.commit()

        with store.reader() as reader:
            doc = reader.get_document("/data/users.db")
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()

    @property
    def db_path(self) -> Path:
        return self.config.db_path

    def exists(self) -> bool:
        return self.db_path.exists()

    def writer(self) -> "IndexWriter":
        """
        Open the single writer.

        Raises:
            IndexBusyError: another writer (thread or process) holds the index
            IndexWriteError: the database cannot be opened or is too new
        """
        return IndexWriter(self)

    def reader(self) -> "IndexReader":
        """
        Open a read-only snapshot reader.

        Raises:
            QueryError: no index exists yet
        """
        return IndexReader(self)

    # --- Convenience reads ---

    def get_document(self, path: str) -> Optional[IndexedDocument]:
        with self.reader() as reader:
            return reader.get_document(path)

    def document_count(self) -> int:
        with self.reader() as reader:
            return reader.document_count()


class IndexWriter:
    """
    Exclusive, buffered writer.

    Holds the in-process lock and the writer.lock file for its whole
    lifetime. Nothing reaches the database before commit().
    """

    def __init__(self, store: IndexStore):
        self.store = store
        self._pending: Dict[str, Optional[IndexedDocument]] = {}
        self._conn: Optional[sqlite3.Connection] = None
        self._thread_lock = _process_lock(store.db_path)
        self._lock_path = store.config.lock_path
        self._closed = False

        if not self._thread_lock.acquire(blocking=False):
            raise IndexBusyError(f"Index {store.db_path} is already open for writing")
        try:
            self._acquire_lock_file()
        except BaseException:
            self._thread_lock.release()
            raise

        try:
            self._conn = self._connect()
        except BaseException:
            self._release()
            raise

    # --- Locking ---

    def _acquire_lock_file(self) -> None:
        for _attempt in range(2):
            try:
                fd = os.open(self._lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self._steal_stale_lock():
                    continue
                raise IndexBusyError(f"Index {self.store.db_path} is locked by {self._lock_path}")
            except OSError as e:
                raise IndexWriteError(f"Cannot create writer lock {self._lock_path}: {e}") from e

            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
            return

        raise IndexBusyError(f"Index {self.store.db_path} is locked by {self._lock_path}")

    def _steal_stale_lock(self) -> bool:
        """Remove a lock file left behind by a dead process."""
        try:
            pid = int(self._lock_path.read_text().strip() or 0)
        except (OSError, ValueError):
            pid = 0

        # Our own pid means a writer in this process died without closing;
        # the in-process lock already rules out a live one.
        if pid and pid != os.getpid() and _pid_alive(pid):
            return False

        logger.warning(f"Removing stale writer lock {self._lock_path} (pid {pid or 'unknown'})")
        self._lock_path.unlink(missing_ok=True)
        return True

    def _release(self) -> None:
        try:
            if self._lock_path.read_text().strip() == str(os.getpid()):
                self._lock_path.unlink()
        except OSError as e:
            logger.debug(f"Writer lock cleanup failed: {e}")
        finally:
            self._thread_lock.release()

    # --- Connection ---

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                str(self.store.db_path),
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA busy_timeout = 5000")
            self._init_schema(conn)
        except sqlite3.Error as e:
            raise IndexWriteError(f"Cannot open index {self.store.db_path}: {e}") from e
        return conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        if version > SCHEMA_VERSION:
            conn.close()
            raise IndexWriteError(
                f"Index schema version {version} is newer than supported ({SCHEMA_VERSION})"
            )
        if version < SCHEMA_VERSION:
            conn.executescript(_SCHEMA)
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            logger.info(f"Initialized index schema v{SCHEMA_VERSION} at {self.store.db_path}")

    # --- Buffered mutations ---

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def add_document(self, document: IndexedDocument) -> None:
        """Buffer an insert-or-replace keyed by path."""
        self._check_open()
        self._pending[document.path] = document

    def delete_document(self, path: str) -> None:
        """Buffer a delete."""
        self._check_open()
        self._pending[str(path)] = None

    def commit(self) -> int:
        """
        Apply every buffered mutation in one transaction.

        The buffer is emptied whether or not the commit succeeds.

        Returns:
            Number of mutations applied

        Raises:
            IndexWriteError: the transaction failed and was rolled back
        """
        self._check_open()
        pending, self._pending = self._pending, {}
        if not pending:
            return 0

        conn = self._conn
        try:
            conn.execute("BEGIN IMMEDIATE")
            for path, document in pending.items():
                if document is None:
                    self._delete(path)
                else:
                    self._upsert(document)
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise IndexWriteError(f"Commit of {len(pending)} documents failed: {e}") from e

        logger.debug(f"Committed {len(pending)} index mutations")
        return len(pending)

    def _upsert(self, document: IndexedDocument) -> None:
        row = document.metadata.to_row()
        row["summary"] = json.dumps(document.summary.to_dict()) if document.summary else None
        row["preview"] = document.preview
        row["error"] = document.error

        columns = list(row)
        existing = self._conn.execute(
            "SELECT id FROM documents WHERE path = ?", (document.path,)
        ).fetchone()

        if existing is None:
            cursor = self._conn.execute(
                f"INSERT INTO documents ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                [row[c] for c in columns],
            )
            doc_id = cursor.lastrowid
        else:
            doc_id = existing["id"]
            self._conn.execute(
                f"UPDATE documents SET {', '.join(f'{c} = ?' for c in columns)} WHERE id = ?",
                [row[c] for c in columns] + [doc_id],
            )
            self._conn.execute("DELETE FROM documents_fts WHERE rowid = ?", (doc_id,))

        tokens = document.summary.tokens() if document.summary else {}
        content = (document.summary.full_text() if document.summary else None) or ""
        self._conn.execute(
            f"INSERT INTO documents_fts (rowid, {', '.join(FTS_FIELDS)}) "
            f"VALUES (?, {', '.join('?' for _ in FTS_FIELDS)})",
            [doc_id, document.path, document.preview, content]
            + [tokens.get(field, "") for field in TOKEN_FIELDS],
        )

    def _delete(self, path: str) -> None:
        existing = self._conn.execute("SELECT id FROM documents WHERE path = ?", (path,)).fetchone()
        if existing is None:
            return
        self._conn.execute("DELETE FROM documents_fts WHERE rowid = ?", (existing["id"],))
        self._conn.execute("DELETE FROM documents WHERE id = ?", (existing["id"],))

    # --- Committed-state reads used by the indexer ---

    def paths_under(self, root: Path | str) -> List[str]:
        """Committed document paths strictly below `root`."""
        self._check_open()
        prefix = path_prefix(root)
        rows = self._conn.execute(
            "SELECT path FROM documents WHERE substr(path, 1, ?) = ? ORDER BY path",
            (len(prefix), prefix),
        ).fetchall()
        return [row["path"] for row in rows]

    # --- Lifecycle ---

    def close(self) -> None:
        """Release the writer. Uncommitted mutations are discarded."""
        if self._closed:
            return
        self._closed = True
        if self._pending:
            logger.warning(f"Discarding {len(self._pending)} uncommitted index mutations")
            self._pending = {}
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        self._release()

    def _check_open(self) -> None:
        if self._closed:
            raise IndexWriteError("Index writer is closed")

    def __enter__(self) -> "IndexWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class IndexReader:
    """
    Read-only, memory-mapped view of the last committed state.

    Multi-step plans should run inside `snapshot()` so every statement
    sees the same committed state.
    """

    def __init__(self, store: IndexStore):
        self.store = store
        if not store.exists():
            raise QueryError(f"No index at {store.db_path}")

        uri = f"{store.db_path.resolve().as_uri()}?mode=ro"
        try:
            self._conn = sqlite3.connect(uri, uri=True, isolation_level=None, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute(f"PRAGMA mmap_size = {MMAP_SIZE}")
            version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        except sqlite3.Error as e:
            raise QueryError(f"Cannot open index {store.db_path}: {e}") from e

        if version != SCHEMA_VERSION:
            self._conn.close()
            raise QueryError(f"Index {store.db_path} has schema version {version}, expected {SCHEMA_VERSION}")

    @contextmanager
    def snapshot(self) -> Iterator["IndexReader"]:
        """Run the enclosed reads in a single read transaction."""
        if self._conn.in_transaction:
            yield self
            return
        self._conn.execute("BEGIN")
        try:
            yield self
        finally:
            self._conn.execute("COMMIT")

    def execute(self, sql: str, params=()) -> List[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise QueryError(f"Query failed: {e}") from e

    def get_document(self, path: str) -> Optional[IndexedDocument]:
        rows = self.execute("SELECT * FROM documents WHERE path = ?", (str(path),))
        return row_to_document(rows[0]) if rows else None

    def get_documents(self, ids: List[int]) -> Dict[int, IndexedDocument]:
        if not ids:
            return {}
        rows = self.execute(
            "SELECT * FROM documents WHERE id IN (SELECT value FROM json_each(?))",
            (json.dumps(ids),),
        )
        return {row["id"]: row_to_document(row) for row in rows}

    def iter_paths(self, prefix: Optional[str] = None) -> Iterator[str]:
        if prefix is None:
            rows = self.execute("SELECT path FROM documents ORDER BY path")
        else:
            rows = self.execute(
                "SELECT path FROM documents WHERE substr(path, 1, ?) = ? ORDER BY path",
                (len(prefix), prefix),
            )
        for row in rows:
            yield row["path"]

    def document_count(self) -> int:
        return self.execute("SELECT COUNT(*) FROM documents")[0][0]

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "IndexReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
