"""
Detector Tests - Verify classification from leading bytes and filename.

Tests:
- Magic signatures win over extensions
- Extension fallback
- Content heuristics for unknown extensions
- Empty / unreadable input resolves to Unknown
"""

from pathlib import Path

import pytest

from filescope.detector import (
    MIME_CSV, MIME_DOCX, MIME_JSON, MIME_LEVELDB, MIME_OCTET, MIME_PDF, MIME_SQLITE,
    MIME_TEXT, MIME_XLSX, MIME_XML, MIME_ZIP, detect_file, detect_type,
)
from filescope.models import FileCategory


class TestMagicSignatures:
    """Signature matches at fixed offsets."""

    def test_sqlite_header(self):
        """SQLite magic classifies as a database."""
        detected = detect_type(b"SQLite format 3\x00" + b"\x00" * 84)

        assert detected.category == FileCategory.DATABASE
        assert detected.mime_type == MIME_SQLITE

    def test_json_object(self):
        """A leading brace classifies as JSON."""
        detected = detect_type(b'{"a":1}')

        assert detected.category == FileCategory.STRUCTURED_DATA
        assert detected.mime_type == MIME_JSON

    def test_json_array_after_whitespace(self):
        detected = detect_type(b'  \n[1, 2, 3]')
        assert detected.mime_type == MIME_JSON

    def test_xml_declaration(self):
        detected = detect_type(b'<?xml version="1.0"?><root/>')
        assert detected.category == FileCategory.STRUCTURED_DATA
        assert detected.mime_type == MIME_XML

    def test_pdf_beats_extension(self):
        """Magic bytes win over a misleading extension."""
        detected = detect_type(b"%PDF-1.7\n...", "report.txt")

        assert detected.category == FileCategory.DOCUMENT
        assert detected.mime_type == MIME_PDF

    def test_png(self):
        detected = detect_type(b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR")
        assert detected.category == FileCategory.MEDIA

    def test_elf_binary(self):
        detected = detect_type(b"\x7fELF\x02\x01\x01\x00")
        assert detected.category == FileCategory.BINARY

    def test_zip_with_xlsx_name_is_spreadsheet(self):
        """Office files are zip containers refined by name or markers."""
        detected = detect_type(b"PK\x03\x04" + b"\x00" * 26, "book.xlsx")

        assert detected.category == FileCategory.DOCUMENT
        assert detected.mime_type == MIME_XLSX

    def test_zip_with_word_marker(self):
        header = b"PK\x03\x04" + b"\x00" * 26 + b"[Content_Types].xml" + b"word/document.xml"
        assert detect_type(header, "unnamed").mime_type == MIME_DOCX

    def test_plain_zip_is_archive(self):
        detected = detect_type(b"PK\x03\x04" + b"\x00" * 26, "bundle.zip")

        assert detected.category == FileCategory.ARCHIVE
        assert detected.mime_type == MIME_ZIP


class TestFallbacks:
    """Extension and content heuristics."""

    def test_extension_fallback(self):
        detected = detect_type(b"id;name\n1;x\n", "table.csv")
        assert detected.mime_type == MIME_CSV
        assert detected.category == FileCategory.STRUCTURED_DATA

    def test_csv_heuristic_without_extension(self):
        """Consistent delimiters across lines look like CSV."""
        detected = detect_type(b"a,b,c\n1,2,3\n4,5,6\n", "export")

        assert detected.mime_type == MIME_CSV

    def test_leading_angle_bracket_is_xml(self):
        detected = detect_type(b"<root><child/></root>", "data")
        assert detected.mime_type == MIME_XML

    def test_printable_text(self):
        detected = detect_type(b"just some words on a single line\n", "README")

        assert detected.category == FileCategory.TEXT
        assert detected.mime_type == MIME_TEXT

    def test_heuristics_do_not_override_known_extension(self):
        """A known extension is trusted before content heuristics."""
        detected = detect_type(b"a,b,c\n1,2,3\n4,5,6\n", "notes.txt")
        assert detected.category == FileCategory.TEXT

    def test_binary_garbage_is_unknown(self):
        detected = detect_type(b"\x00\x01\x02\xff\xfe\x03", "blob")
        assert detected.category == FileCategory.UNKNOWN


class TestEdgeCases:
    """Never fails, always deterministic."""

    def test_empty_input_is_unknown(self):
        """Empty slice resolves to Unknown without raising."""
        detected = detect_type(b"")

        assert detected.category == FileCategory.UNKNOWN
        assert detected.mime_type == MIME_OCTET
        assert detected.magic_header == ""

    def test_magic_header_is_first_16_bytes_hex(self):
        header = bytes(range(32))
        assert detect_type(header).magic_header == bytes(range(16)).hex()

    def test_magic_header_length_is_configurable(self):
        header = bytes(range(32))
        assert detect_type(header, magic_bytes=4).magic_header == bytes(range(4)).hex()

    def test_truncated_signature(self):
        """A cut-off SQLite signature is not a database."""
        detected = detect_type(b"SQLite for")
        assert detected.category != FileCategory.DATABASE

    def test_deterministic(self):
        header = b'{"k": [1, 2]}'
        assert detect_type(header, "a.json") == detect_type(header, "a.json")

    def test_detect_file_missing_path(self, temp_dir: Path):
        """An unreadable header resolves to Unknown."""
        detected = detect_file(temp_dir / "does-not-exist.db")
        assert detected.category == FileCategory.UNKNOWN

    def test_detect_file_reads_header(self, scenario_files):
        assert detect_file(scenario_files["db"]).category == FileCategory.DATABASE
        assert detect_file(scenario_files["json"]).mime_type == MIME_JSON

    @pytest.mark.parametrize("name", ["x.db", "x.sqlite", "x.sqlite3"])
    def test_database_extensions(self, name):
        assert detect_type(b"not really sqlite", name).category == FileCategory.DATABASE


class TestLevelDb:
    """A LevelDB store is recognised by its CURRENT file."""

    def test_current_file(self):
        detected = detect_type(b"MANIFEST-000004\n", "CURRENT")

        assert detected.category == FileCategory.DATABASE
        assert detected.mime_type == MIME_LEVELDB

    def test_full_path_name(self):
        detected = detect_type(b"MANIFEST-000001\n", "/data/app.indexeddb.leveldb/CURRENT")
        assert detected.mime_type == MIME_LEVELDB

    def test_other_names_are_not_leveldb(self):
        """Same content under another name is just text."""
        detected = detect_type(b"MANIFEST-000004\n", "notes")
        assert detected.category == FileCategory.TEXT

    def test_current_file_with_other_content(self):
        assert detect_type(b"v2.1\n", "CURRENT").mime_type != MIME_LEVELDB
