"""
Detector - File type classification from leading bytes plus filename.

Magic signatures win over extensions. Anything unrecognised resolves
to Unknown.
`detect_type` is pure so it can be exercised directly on byte strings.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

from .errors import DetectionError, handle_error
from .models import DetectedType, FileCategory


logger = logging.getLogger(__name__)


HEADER_BYTES = 512
MAGIC_HEADER_BYTES = 16

MIME_SQLITE = "application/vnd.sqlite3"
MIME_JSON = "application/json"
MIME_XML = "application/xml"
MIME_CSV = "text/csv"
MIME_TEXT = "text/plain"
MIME_PDF = "application/pdf"
MIME_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_LEVELDB = "application/x-leveldb"
MIME_ZIP = "application/zip"
MIME_OCTET = "application/octet-stream"

_Match = Tuple[str, FileCategory]

# Fixed-offset signatures checked in order.
_SIGNATURES: Tuple[Tuple[bytes, _Match], ...] = (
    (b"SQLite format 3\x00", (MIME_SQLITE, FileCategory.DATABASE)),
    (b"%PDF", (MIME_PDF, FileCategory.DOCUMENT)),
    (b"PAR1", ("application/vnd.apache.parquet", FileCategory.STRUCTURED_DATA)),
    (b"\x89PNG\r\n\x1a\n", ("image/png", FileCategory.MEDIA)),
    (b"\xff\xd8\xff", ("image/jpeg", FileCategory.MEDIA)),
    (b"GIF87a", ("image/gif", FileCategory.MEDIA)),
    (b"GIF89a", ("image/gif", FileCategory.MEDIA)),
    (b"ID3", ("audio/mpeg", FileCategory.MEDIA)),
    (b"fLaC", ("audio/flac", FileCategory.MEDIA)),
    (b"\x1f\x8b", ("application/gzip", FileCategory.ARCHIVE)),
    (b"7z\xbc\xaf\x27\x1c", ("application/x-7z-compressed", FileCategory.ARCHIVE)),
    (b"Rar!\x1a\x07", ("application/vnd.rar", FileCategory.ARCHIVE)),
    (b"\x7fELF", ("application/x-executable", FileCategory.BINARY)),
    (b"\xfe\xed\xfa\xce", ("application/x-mach-binary", FileCategory.BINARY)),
    (b"\xfe\xed\xfa\xcf", ("application/x-mach-binary", FileCategory.BINARY)),
    (b"\xcf\xfa\xed\xfe", ("application/x-mach-binary", FileCategory.BINARY)),
    (b"\xca\xfe\xba\xbe", ("application/x-mach-binary", FileCategory.BINARY)),
    (b"MZ", ("application/x-dosexec", FileCategory.BINARY)),
)

_EXTENSIONS: Dict[str, _Match] = {
    # Databases
    ".db": (MIME_SQLITE, FileCategory.DATABASE),
    ".sqlite": (MIME_SQLITE, FileCategory.DATABASE),
    ".sqlite3": (MIME_SQLITE, FileCategory.DATABASE),
    # Structured data
    ".json": (MIME_JSON, FileCategory.STRUCTURED_DATA),
    ".xml": (MIME_XML, FileCategory.STRUCTURED_DATA),
    ".csv": (MIME_CSV, FileCategory.STRUCTURED_DATA),
    ".tsv": (MIME_CSV, FileCategory.STRUCTURED_DATA),
    ".parquet": ("application/vnd.apache.parquet", FileCategory.STRUCTURED_DATA),
    # Documents
    ".pdf": (MIME_PDF, FileCategory.DOCUMENT),
    ".xlsx": (MIME_XLSX, FileCategory.DOCUMENT),
    ".xlsm": (MIME_XLSX, FileCategory.DOCUMENT),
    ".docx": (MIME_DOCX, FileCategory.DOCUMENT),
    # Text
    ".txt": (MIME_TEXT, FileCategory.TEXT),
    ".md": ("text/markdown", FileCategory.TEXT),
    ".log": (MIME_TEXT, FileCategory.TEXT),
    ".ini": (MIME_TEXT, FileCategory.TEXT),
    ".cfg": (MIME_TEXT, FileCategory.TEXT),
    ".yaml": ("text/yaml", FileCategory.TEXT),
    ".yml": ("text/yaml", FileCategory.TEXT),
    ".html": ("text/html", FileCategory.TEXT),
    ".htm": ("text/html", FileCategory.TEXT),
    ".css": ("text/css", FileCategory.TEXT),
    ".py": ("text/x-python", FileCategory.TEXT),
    ".js": ("text/javascript", FileCategory.TEXT),
    ".ts": ("text/x-typescript", FileCategory.TEXT),
    ".sh": ("text/x-shellscript", FileCategory.TEXT),
    ".sql": ("text/x-sql", FileCategory.TEXT),
    ".rs": ("text/x-rust", FileCategory.TEXT),
    ".go": ("text/x-go", FileCategory.TEXT),
    ".java": ("text/x-java", FileCategory.TEXT),
    ".c": ("text/x-c", FileCategory.TEXT),
    ".h": ("text/x-c", FileCategory.TEXT),
    ".cpp": ("text/x-c++", FileCategory.TEXT),
    # Media
    ".png": ("image/png", FileCategory.MEDIA),
    ".jpg": ("image/jpeg", FileCategory.MEDIA),
    ".jpeg": ("image/jpeg", FileCategory.MEDIA),
    ".gif": ("image/gif", FileCategory.MEDIA),
    ".webp": ("image/webp", FileCategory.MEDIA),
    ".mp3": ("audio/mpeg", FileCategory.MEDIA),
    ".wav": ("audio/wav", FileCategory.MEDIA),
    ".mp4": ("video/mp4", FileCategory.MEDIA),
    ".mov": ("video/quicktime", FileCategory.MEDIA),
    # Archives
    ".zip": (MIME_ZIP, FileCategory.ARCHIVE),
    ".gz": ("application/gzip", FileCategory.ARCHIVE),
    ".tar": ("application/x-tar", FileCategory.ARCHIVE),
    ".7z": ("application/x-7z-compressed", FileCategory.ARCHIVE),
    ".rar": ("application/vnd.rar", FileCategory.ARCHIVE),
    # Binaries
    ".exe": ("application/x-dosexec", FileCategory.BINARY),
    ".dll": ("application/x-dosexec", FileCategory.BINARY),
    ".so": ("application/x-executable", FileCategory.BINARY),
    ".bin": (MIME_OCTET, FileCategory.BINARY),
}

_UNKNOWN: _Match = (MIME_OCTET, FileCategory.UNKNOWN)


def detect_type(header: bytes, filename: str = "", magic_bytes: int = MAGIC_HEADER_BYTES) -> DetectedType:
    """
    Classify a file from its leading bytes and name.

    Precedence: magic signature, then extension, then content
    heuristics (only when the extension is unknown), then Unknown.
    The first `magic_bytes` bytes are kept, hex-encoded, as the magic
    header. Empty or truncated input never raises.
    """
    header = bytes(header[:HEADER_BYTES]) if header else b""
    extension = Path(filename).suffix.lower() if filename else ""

    match = _match_magic(header, extension, Path(filename).name if filename else "")
    if match is None:
        match = _EXTENSIONS.get(extension)
    if match is None and header:
        match = _match_heuristics(header)
    if match is None:
        match = _UNKNOWN

    mime_type, category = match
    return DetectedType(
        mime_type=mime_type,
        category=category,
        magic_header=header[:magic_bytes].hex(),
    )


def detect_file(
    path: Path,
    header_bytes: int = HEADER_BYTES,
    magic_bytes: int = MAGIC_HEADER_BYTES,
) -> DetectedType:
    """
    Read the header of `path` and classify it.

    An unreadable header is a DetectionError, which is non-fatal: the
    file resolves to Unknown.
    """
    try:
        with open(path, "rb") as f:
            header = f.read(header_bytes)
    except OSError as e:
        handle_error(DetectionError(str(e)), path, "detect")
        return detect_type(b"", "", magic_bytes)
    return detect_type(header, path.name, magic_bytes)


def _match_magic(header: bytes, extension: str, filename: str = "") -> Optional[_Match]:
    if not header:
        return None

    if header.startswith(b"PK\x03\x04"):
        return _match_zip(header, extension)

    # A LevelDB store is a directory; its CURRENT file names the live manifest
    if filename == "CURRENT" and header.startswith(b"MANIFEST-"):
        return (MIME_LEVELDB, FileCategory.DATABASE)

    if len(header) >= 12 and header.startswith(b"RIFF") and header[8:12] == b"WEBP":
        return ("image/webp", FileCategory.MEDIA)

    for signature, match in _SIGNATURES:
        if header.startswith(signature):
            return match

    stripped = header.lstrip()
    if stripped.startswith(b"<?xml"):
        return (MIME_XML, FileCategory.STRUCTURED_DATA)
    if stripped[:1] in (b"{", b"["):
        return (MIME_JSON, FileCategory.STRUCTURED_DATA)

    return None


def _match_zip(header: bytes, extension: str) -> _Match:
    """ZIP container: tell Office Open XML apart from plain archives."""
    if b"[Content_Types].xml" in header or extension in {".xlsx", ".xlsm", ".docx"}:
        if b"xl/" in header or extension in {".xlsx", ".xlsm"}:
            return (MIME_XLSX, FileCategory.DOCUMENT)
        if b"word/" in header or extension == ".docx":
            return (MIME_DOCX, FileCategory.DOCUMENT)
    return (MIME_ZIP, FileCategory.ARCHIVE)


def _match_heuristics(header: bytes) -> Optional[_Match]:
    try:
        text = header.decode("utf-8")
    except UnicodeDecodeError:
        # A multi-byte character may be cut at the header boundary
        try:
            text = header[:-3].decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not text:
        return None

    if text.lstrip().startswith("<"):
        return (MIME_XML, FileCategory.STRUCTURED_DATA)
    if _looks_like_csv(text):
        return (MIME_CSV, FileCategory.STRUCTURED_DATA)
    if _is_text(text):
        return (MIME_TEXT, FileCategory.TEXT)
    return None


def _looks_like_csv(text: str) -> bool:
    """Consistent delimiter counts over the first few lines."""
    lines = text.splitlines()[:5]
    # The last line may be cut at the header boundary
    if len(lines) > 2:
        lines = lines[:-1]
    if len(lines) < 2:
        return False

    for delimiter in (",", "\t", ";", "|"):
        first = lines[0].count(delimiter)
        if first == 0:
            continue
        if all(abs(line.count(delimiter) - first) <= 1 and line.count(delimiter) > 0
               for line in lines[1:]):
            return True
    return False


def _is_text(text: str) -> bool:
    printable = sum(1 for ch in text if ch.isprintable() or ch in "\r\n\t")
    return printable / len(text) > 0.85
