"""
Test Configuration - Shared fixtures for filescope tests.

Uses pytest fixtures to create isolated test environments: every test
gets its own index directory and data tree under a fresh temp dir.
"""

import shutil
import sqlite3
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from filescope.config import IndexerConfig, set_config


def make_sqlite_db(path: Path, users: int = 3) -> Path:
    """SQLite database with a users table (with a password column) and a sessions table."""
    conn = sqlite3.connect(str(path))
    conn.executescript("""
        CREATE TABLE users (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT,
            password TEXT
        );
        CREATE INDEX idx_users_email ON users(email);
        CREATE TABLE sessions (
            id INTEGER PRIMARY KEY,
            user_id INTEGER,
            token TEXT
        );
    """)
    conn.executemany(
        "INSERT INTO users (name, email, password) VALUES (?, ?, ?)",
        [(f"user{i}", f"user{i}@example.com", f"secret{i}") for i in range(users)],
    )
    conn.execute("INSERT INTO sessions (user_id, token) VALUES (1, 'tok-abc')")
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    tmp = tempfile.mkdtemp(prefix="filescope_test_")
    # Resolve to handle macOS /var -> /private/var symlink
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> IndexerConfig:
    """Create an isolated test configuration."""
    config = IndexerConfig(
        index_dir=temp_dir / "index",
        max_workers=4,
        scanner_concurrency=5,
    )
    set_config(config)
    return config


@pytest.fixture
def data_dir(temp_dir: Path) -> Path:
    """Directory tree to be indexed, separate from the index directory."""
    data = temp_dir / "data"
    data.mkdir()
    return data


@pytest.fixture
def scenario_files(data_dir: Path) -> dict[str, Path]:
    """A 10-byte JSON file, a SQLite DB with a users table and a text file."""
    files = {}

    json_file = data_dir / "small.json"
    json_file.write_bytes(b'{"a":1234}')
    files["json"] = json_file

    files["db"] = make_sqlite_db(data_dir / "app.db")

    txt = data_dir / "notes.txt"
    txt.write_text("Meeting notes.\nRemember to rotate the password every quarter.\n")
    files["txt"] = txt

    return files


@pytest.fixture
def sample_files(scenario_files: dict[str, Path], data_dir: Path) -> dict[str, Path]:
    """Scenario files plus CSV, XML, nested and skipped files."""
    files = dict(scenario_files)

    csv_file = data_dir / "people.csv"
    csv_file.write_text("id,name,email,score\n1,Ada,ada@example.com,9.5\n2,Bob,,7\n3,Cy,cy@example.com,8.25\n")
    files["csv"] = csv_file

    xml_file = data_dir / "feed.xml"
    xml_file.write_text(
        '<?xml version="1.0"?>\n'
        '<rss xmlns:dc="http://purl.org/dc/elements/1.1/">'
        "<channel><item><title>First post</title><dc:creator>Ada</dc:creator></item></channel>"
        "</rss>"
    )
    files["xml"] = xml_file

    nested_dir = data_dir / "subdir" / "nested"
    nested_dir.mkdir(parents=True)
    nested = nested_dir / "deep.txt"
    nested.write_text("A deeply nested file.")
    files["nested"] = nested

    # Hidden file inside a hidden directory (should be skipped)
    hidden_dir = data_dir / ".git"
    hidden_dir.mkdir()
    (hidden_dir / "HEAD").write_text("ref: refs/heads/main")
    files["hidden"] = hidden_dir / "HEAD"

    # Node modules dir (should be skipped)
    node_modules = data_dir / "node_modules"
    node_modules.mkdir()
    (node_modules / "package.json").write_text('{"name": "test"}')
    files["node_modules"] = node_modules / "package.json"

    return files
