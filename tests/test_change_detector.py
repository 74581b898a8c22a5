"""
Change Detector Tests - Verify the two-tier change gate and its cache.

Tests:
- NEW / UNCHANGED / TOUCHED / MODIFIED transitions
- No hashing on the fast path
- Atomic save and load, corruption fallback
"""

import os
from pathlib import Path

import pytest
import xxhash

from filescope.change_detector import ChangeDetector, ChangeKind, hash_file
from filescope.models import FileInfo


def bump_mtime(path: Path, seconds: int = 10) -> None:
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + seconds * 1_000_000_000))


class TestHashFile:

    def test_matches_xxh64(self, temp_dir: Path):
        """hash_file is the xxHash64 of the raw bytes."""
        path = temp_dir / "blob.bin"
        data = os.urandom(200_000)
        path.write_bytes(data)

        assert hash_file(path, chunk_size=4096) == xxhash.xxh64(data).hexdigest()

    def test_missing_file_raises(self, temp_dir: Path):
        with pytest.raises(FileNotFoundError):
            hash_file(temp_dir / "nope")


class TestChangeGate:
    """Per-path state machine."""

    @pytest.fixture
    def detector(self, test_config):
        return ChangeDetector(test_config.cache_path)

    @pytest.fixture
    def tracked(self, temp_dir: Path) -> Path:
        path = temp_dir / "tracked.txt"
        path.write_text("version one")
        return path

    def test_new_file_is_hashed(self, detector, tracked):
        """A path not in the cache is NEW and gets a content hash."""
        check = detector.check(FileInfo.from_path(tracked))

        assert check.kind == ChangeKind.NEW
        assert check.needs_indexing
        assert check.hash == hash_file(tracked)
        assert detector.hash_count == 1

    def test_new_file_not_cached_until_recorded(self, detector, tracked):
        detector.check(FileInfo.from_path(tracked))
        assert detector.get(str(tracked)) is None

    def test_unchanged_skips_hashing(self, detector, tracked):
        """Equal (size, mtime) never reads the file."""
        first = detector.check(FileInfo.from_path(tracked))
        detector.record(first.state)
        detector.hash_count = 0

        check = detector.check(FileInfo.from_path(tracked))

        assert check.kind == ChangeKind.UNCHANGED
        assert not check.needs_indexing
        assert detector.hash_count == 0

    def test_touched_updates_cache(self, detector, tracked):
        """New mtime with identical bytes is TOUCHED and refreshes the fingerprint."""
        detector.record(detector.check(FileInfo.from_path(tracked)).state)
        bump_mtime(tracked)

        info = FileInfo.from_path(tracked)
        check = detector.check(info)

        assert check.kind == ChangeKind.TOUCHED
        assert not check.needs_indexing
        assert detector.get(str(tracked)).mtime_ns == info.mtime_ns

        # The refreshed fingerprint takes the fast path next time
        assert detector.check(FileInfo.from_path(tracked)).kind == ChangeKind.UNCHANGED

    def test_modified_content(self, detector, tracked):
        detector.record(detector.check(FileInfo.from_path(tracked)).state)
        tracked.write_text("version two, longer")

        check = detector.check(FileInfo.from_path(tracked))

        assert check.kind == ChangeKind.MODIFIED
        assert check.needs_indexing
        # Cache still holds the old state until the file is indexed
        assert detector.get(str(tracked)).hash != check.hash

    def test_force_hash_reads_unchanged_file(self, detector, tracked):
        """Verification runs hash even when the fingerprint matches."""
        detector.record(detector.check(FileInfo.from_path(tracked)).state)
        detector.hash_count = 0

        check = detector.check(FileInfo.from_path(tracked), force_hash=True)

        assert not check.needs_indexing
        assert detector.hash_count == 1

    def test_forget(self, detector, tracked):
        detector.record(detector.check(FileInfo.from_path(tracked)).state)
        detector.forget([str(tracked)])

        assert len(detector) == 0
        assert detector.check(FileInfo.from_path(tracked)).kind == ChangeKind.NEW


class TestCachePersistence:

    def test_save_and_load(self, test_config, temp_dir: Path):
        """The cache survives a save/load cycle, including the run counter."""
        path = temp_dir / "a.txt"
        path.write_text("hello")

        detector = ChangeDetector(test_config.cache_path)
        detector.record(detector.check(FileInfo.from_path(path)).state)
        detector.run_count = 7
        detector.save()

        reloaded = ChangeDetector(test_config.cache_path)
        assert reloaded.load()
        assert reloaded.run_count == 7
        assert reloaded.get(str(path)) == detector.get(str(path))
        assert reloaded.check(FileInfo.from_path(path)).kind == ChangeKind.UNCHANGED

    def test_save_leaves_no_temp_files(self, test_config):
        detector = ChangeDetector(test_config.cache_path)
        detector.save()

        leftovers = [p.name for p in test_config.index_dir.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_missing_cache_is_empty(self, test_config):
        detector = ChangeDetector(test_config.cache_path)

        assert not detector.load()
        assert len(detector) == 0

    def test_corrupt_cache_degrades_to_empty(self, test_config, caplog):
        """A corrupt blob is logged and treated as no cache at all."""
        test_config.cache_path.write_text("{not json")

        detector = ChangeDetector(test_config.cache_path)

        assert not detector.load()
        assert len(detector) == 0
        assert "Change cache unusable" in caplog.text

    def test_unknown_version_degrades_to_empty(self, test_config):
        test_config.cache_path.write_text('{"version": 99, "files": {}}')

        detector = ChangeDetector(test_config.cache_path)

        assert not detector.load()
        assert len(detector) == 0
