"""
Error Handling - Centralized error policies and custom exceptions.

This module defines how different error types are handled throughout
the indexing pipeline. Per-file problems degrade gracefully; only
store-level failures abort a run.
"""

import logging
from enum import Enum, auto
from dataclasses import dataclass
from typing import Any, Optional
from pathlib import Path


logger = logging.getLogger(__name__)


class ErrorAction(Enum):
    """What to do when an error occurs."""
    SKIP = auto()           # Skip this item, record it, continue processing
    ABORT = auto()          # Stop the entire run


@dataclass
class ErrorPolicy:
    """Policy for handling a specific error type."""
    action: ErrorAction
    log_level: int
    message_template: str = "{file}: {error}"


class IndexingError(Exception):
    """Base exception for indexing errors."""
    pass


class DetectionError(IndexingError):
    """File header could not be read; the file resolves to Unknown."""
    pass


class ExtractionError(IndexingError):
    """A file could not be parsed by its extractor."""

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class IndexWriteError(IndexingError):
    """The index could not be written. Fatal to the current run."""
    pass


class IndexBusyError(IndexWriteError):
    """Another writer already holds the index."""
    pass


class ChangeDetectorIOError(IndexingError):
    """The change cache could not be read or written."""
    pass


class QueryError(IndexingError):
    """Malformed query or missing index."""
    pass


# Error type to policy mapping. Order matters: the first isinstance match wins.
ERROR_POLICIES: dict[type, ErrorPolicy] = {
    IndexWriteError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Index write failed: {error}"
    ),
    ExtractionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Extraction failed: {file} - {error}"
    ),
    DetectionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Cannot read header, treating as unknown: {file}"
    ),
    ChangeDetectorIOError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Change cache unusable, full reindex: {error}"
    ),
    PermissionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Permission denied: {file}"
    ),
    FileNotFoundError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="File not found (possibly deleted): {file}"
    ),
    IsADirectoryError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Expected file, got directory: {file}"
    ),
    UnicodeDecodeError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Cannot decode file (binary?): {file}"
    ),
    OSError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="OS error reading file: {file} - {error}"
    ),
}


def handle_error(
    error: Exception,
    file_path: Optional[Path] = None,
    context: str = ""
) -> ErrorAction:
    """
    Handle an error according to the defined policies.

    Args:
        error: The exception that occurred
        file_path: Path to the file being processed (if applicable)
        context: Additional context for logging

    Returns:
        The action to take (SKIP or ABORT)
    """
    policy = None
    for error_type, p in ERROR_POLICIES.items():
        if isinstance(error, error_type):
            policy = p
            break

    # Default policy for unknown errors
    if policy is None:
        policy = ErrorPolicy(
            action=ErrorAction.SKIP,
            log_level=logging.ERROR,
            message_template="Unexpected error: {file} - {error}"
        )

    file_str = str(file_path) if file_path else "<unknown>"
    message = policy.message_template.format(file=file_str, error=str(error))
    if context:
        message = f"[{context}] {message}"

    logger.log(policy.log_level, message)

    return policy.action


@dataclass
class ProcessingResult:
    """Result of processing a single file in a worker."""
    success: bool
    path: Optional[Path] = None
    value: Any = None
    error: Optional[Exception] = None
    action_taken: Optional[ErrorAction] = None
    skipped: bool = False

    @classmethod
    def ok(cls, path: Path, value: Any = None) -> "ProcessingResult":
        return cls(success=True, path=path, value=value)

    @classmethod
    def failed(cls, path: Path, error: Exception, action: ErrorAction) -> "ProcessingResult":
        return cls(success=False, path=path, error=error, action_taken=action)

    @classmethod
    def cancelled(cls, path: Path) -> "ProcessingResult":
        return cls(success=False, path=path, skipped=True)
