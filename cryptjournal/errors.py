"""
Error types and error logging for the journal.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence


class JournalError(Exception):
    """Base class for all journal failures."""


class NotFoundError(JournalError):
    """No record (or journal, or config entity) matches the reference."""


class AmbiguousReferenceError(JournalError):
    """An id prefix is too short, or matches more than one record."""

    def __init__(self, reference: str, candidates: Sequence[str] = (), message: str = ""):
        self.reference = reference
        self.candidates = list(candidates)
        if not message:
            shown = ", ".join(c[:12] for c in self.candidates[:5])
            message = f"ambiguous id prefix {reference!r} matches {len(self.candidates)} entries: {shown}"
        super().__init__(message)


class DecodeError(JournalError):
    """Record bytes could not be decoded."""


class UnsupportedVersionError(DecodeError):
    """The record's schema version is not recognized."""

    def __init__(self, version: Any):
        self.version = version
        super().__init__(f"unsupported entry version: {version!r}")


class InvalidRecordError(DecodeError):
    """The record decoded but lacks required fields."""


class EncryptionError(JournalError):
    """The encryption provider failed to produce or store ciphertext."""

    def __init__(self, location: str, message: str):
        self.location = location
        super().__init__(f"failed to encrypt {location}: {message}")


class DecryptionError(JournalError):
    """The encryption provider could not decrypt a stored file."""

    def __init__(self, location: str, message: str):
        self.location = location
        super().__init__(f"failed to decrypt {location}: {message}")


class IndexInconsistencyError(JournalError):
    """Record storage and the search index disagree; run a rebuild."""

    def __init__(self, record_id: str, message: str):
        self.record_id = record_id
        super().__init__(f"{message} (entry {record_id}); run 'journal rebuild' to repair the index")


class RecipientError(JournalError):
    """The recipient configuration is missing, invalid, or cannot change as requested."""


class ConfigError(JournalError):
    """The global journal configuration is unreadable or invalid."""


class RotationError(JournalError):
    """
    Re-encryption under a new recipient set did not commit.

    ``result`` is the ReEncryptResult with per-record failures. When
    ``rollback_failed`` is set the recipient configuration could not be
    restored and the store needs manual repair.
    """

    def __init__(self, message: str, result: Any = None, rollback_error: Optional[BaseException] = None):
        self.result = result
        self.rollback_error = rollback_error
        super().__init__(message)

    @property
    def rollback_failed(self) -> bool:
        return self.rollback_error is not None


def _error_log_path() -> Path:
    """Resolve error log path, respecting JOURNAL_CONFIG_DIR."""
    config_dir = os.environ.get("JOURNAL_CONFIG_DIR")
    if config_dir:
        return Path(config_dir) / "journal-errors.log"
    return Path.home() / ".journal" / "journal-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
