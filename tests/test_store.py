"""
Store Tests - Verify the index database and its single-writer discipline.

Tests:
- Buffered writes become visible only on commit
- A failed commit rolls back completely
- Writer exclusivity (in-process and via the lock file)
- Schema versioning and read-only access
"""

import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pytest

from filescope.errors import IndexBusyError, IndexWriteError, QueryError
from filescope.models import DocumentMetadata, FileCategory, IndexedDocument
from filescope.store import IndexStore, IndexWriter, path_prefix
from filescope.summaries import ColumnInfo, SqliteSummary, TableInfo


def make_document(path: str, category=FileCategory.TEXT, summary=None, preview="", error=None) -> IndexedDocument:
    metadata = DocumentMetadata(
        path=path,
        size=42,
        modified=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        hash="deadbeefdeadbeef",
        mime_type="text/plain",
        category=category,
        magic_header="68656c6c6f",
        extension="txt",
        indexed_at=datetime.now(timezone.utc),
    )
    return IndexedDocument(metadata=metadata, summary=summary, preview=preview, error=error)


class TestWriterReader:

    @pytest.fixture
    def store(self, test_config) -> IndexStore:
        return IndexStore(test_config)

    def test_commit_makes_documents_visible(self, store):
        """Readers see nothing before commit and everything after."""
        with store.writer() as writer:
            writer.add_document(make_document("/data/a.txt", preview="alpha"))
            writer.add_document(make_document("/data/b.txt", preview="beta"))

            with store.reader() as reader:
                assert reader.document_count() == 0

            assert writer.commit() == 2

            with store.reader() as reader:
                assert reader.document_count() == 2

    def test_document_round_trip(self, store):
        """Metadata and summary come back as they went in."""
        summary = SqliteSummary(
            tables=[TableInfo(name="users", columns=[ColumnInfo("id", "INTEGER", False, True)], row_count=3)],
            total_rows=3,
            page_size=4096,
            version="3.45.0",
        )
        document = make_document("/data/app.db", FileCategory.DATABASE, summary=summary, preview="db")

        with store.writer() as writer:
            writer.add_document(document)
            writer.commit()

        stored = store.get_document("/data/app.db")

        assert stored.metadata == document.metadata
        assert stored.summary == summary
        assert stored.preview == "db"
        assert stored.error is None

    def test_replace_and_delete(self, store):
        with store.writer() as writer:
            writer.add_document(make_document("/data/a.txt", preview="first"))
            writer.commit()
            writer.add_document(make_document("/data/a.txt", preview="second"))
            writer.commit()

            assert store.get_document("/data/a.txt").preview == "second"
            assert store.document_count() == 1

            writer.delete_document("/data/a.txt")
            writer.commit()

        assert store.get_document("/data/a.txt") is None

    def test_failed_commit_rolls_back(self, store, monkeypatch):
        """A failure mid-batch leaves the previously committed state intact."""
        with store.writer() as writer:
            writer.add_document(make_document("/data/keep.txt"))
            writer.commit()

            original = IndexWriter._upsert
            calls = []

            def flaky(self, document):
                calls.append(document.path)
                if len(calls) == 2:
                    raise sqlite3.OperationalError("disk I/O error")
                return original(self, document)

            monkeypatch.setattr(IndexWriter, "_upsert", flaky)
            writer.add_document(make_document("/data/new1.txt"))
            writer.add_document(make_document("/data/new2.txt"))

            with pytest.raises(IndexWriteError):
                writer.commit()

            assert writer.pending_count == 0

        with store.reader() as reader:
            assert list(reader.iter_paths()) == ["/data/keep.txt"]

    def test_close_discards_uncommitted(self, store):
        with store.writer() as writer:
            writer.add_document(make_document("/data/a.txt"))

        with store.reader() as reader:
            assert reader.document_count() == 0

    def test_paths_under_is_prefix_safe(self, store):
        """'/data/a' does not own '/data/ab/...'."""
        with store.writer() as writer:
            for path in ("/data/a/x.txt", "/data/a/sub/y.txt", "/data/ab/z.txt"):
                writer.add_document(make_document(path))
            writer.commit()

            assert writer.paths_under("/data/a") == ["/data/a/sub/y.txt", "/data/a/x.txt"]

        with store.reader() as reader:
            assert list(reader.iter_paths(path_prefix("/data/ab"))) == ["/data/ab/z.txt"]

    def test_snapshot_reads(self, store):
        with store.writer() as writer:
            writer.add_document(make_document("/data/a.txt"))
            writer.commit()

        with store.reader() as reader, reader.snapshot():
            assert reader.document_count() == 1
            assert reader.get_document("/data/a.txt") is not None


class TestWriterExclusivity:

    def test_second_writer_in_process_is_busy(self, test_config):
        store = IndexStore(test_config)
        with store.writer():
            with pytest.raises(IndexBusyError):
                store.writer()
            # Another store object on the same files is still excluded
            with pytest.raises(IndexBusyError):
                IndexStore(test_config).writer()

    def test_writer_released_on_close(self, test_config):
        store = IndexStore(test_config)
        store.writer().close()

        writer = store.writer()
        writer.close()
        assert not test_config.lock_path.exists()

    def test_lock_file_holds_pid(self, test_config):
        with IndexStore(test_config).writer():
            assert test_config.lock_path.read_text() == str(os.getpid())

    def test_live_foreign_lock_is_busy(self, test_config):
        """A lock file owned by a running process blocks the writer."""
        test_config.lock_path.write_text(str(os.getppid()))

        with pytest.raises(IndexBusyError):
            IndexStore(test_config).writer()

        assert test_config.lock_path.read_text() == str(os.getppid())

    def test_stale_lock_is_taken_over(self, test_config):
        """A lock file left by a dead process does not block forever."""
        test_config.lock_path.write_text("999999999")

        with IndexStore(test_config).writer() as writer:
            writer.add_document(make_document("/data/a.txt"))
            writer.commit()

        assert IndexStore(test_config).document_count() == 1

    def test_busy_is_a_write_error(self):
        assert issubclass(IndexBusyError, IndexWriteError)


class TestSchema:

    def test_reader_without_index_raises(self, test_config):
        with pytest.raises(QueryError):
            IndexStore(test_config).reader()

    def test_newer_schema_rejected(self, test_config):
        conn = sqlite3.connect(str(test_config.db_path))
        conn.execute("PRAGMA user_version = 99")
        conn.close()

        with pytest.raises(IndexWriteError):
            IndexStore(test_config).writer()

        # The failed open released the lock
        assert not test_config.lock_path.exists()

    def test_wal_mode(self, test_config):
        IndexStore(test_config).writer().close()

        conn = sqlite3.connect(str(test_config.db_path))
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        conn.close()
        assert mode == "wal"

    def test_reader_is_read_only(self, test_config):
        IndexStore(test_config).writer().close()

        with IndexStore(test_config).reader() as reader:
            with pytest.raises(QueryError):
                reader.execute("DELETE FROM documents")
