"""
Recipient rotation with rollback.

Changing who can read a journal means rewriting the recipient rules and
re-encrypting every record and the index. The rotation keeps going past
individual failures so the operator sees every record that did not make
it, then either commits (drops the backup of the old rules) or restores
the old rules. Records already rewritten stay readable by the identities
that can read them; re-running a rotation is safe.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Sequence

from .errors import RecipientError
from .recipients import RecipientDirectory, normalize_recipients

logger = logging.getLogger(__name__)


class RotationState(Enum):
    PENDING = "pending"
    BACKED_UP = "backed-up"
    RECIPIENTS_WRITTEN = "recipients-written"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"
    ROLLBACK_FAILED = "rollback-failed"
    ABORTED = "aborted"


@dataclass
class FileError:
    """A record file that could not be re-encrypted."""
    filepath: str
    error: BaseException


@dataclass
class ReEncryptResult:
    """Outcome of a rotation, kept inspectable after it finishes."""
    new_recipients: list[str] = field(default_factory=list)
    state: RotationState = RotationState.PENDING
    total_files: int = 0
    successful_files: int = 0
    failed_files: list[FileError] = field(default_factory=list)
    index_success: bool = False
    index_error: Optional[BaseException] = None
    error: Optional[BaseException] = None
    rollback_error: Optional[BaseException] = None
    backup_path: Optional[Path] = None

    @property
    def committed(self) -> bool:
        return self.state is RotationState.COMMITTED

    @property
    def rollback_failed(self) -> bool:
        return self.state is RotationState.ROLLBACK_FAILED

    def format_errors(self) -> str:
        """Human-readable summary of counts and failures."""
        lines = [
            f"Total files: {self.total_files}",
            f"Successful: {self.successful_files}",
            f"Failed: {len(self.failed_files)}",
        ]
        if self.error is not None:
            lines.append(f"Error: {self.error}")
        if self.index_success:
            lines.append("Index encryption: SUCCESS")
        else:
            lines.append(f"Index encryption: FAILED - {self.index_error}")
        if self.failed_files:
            lines.append("")
            lines.append("Failed files:")
            for fe in self.failed_files:
                lines.append(f"  - {fe.filepath}: {fe.error}")
        return "\n".join(lines) + "\n"


class RecipientRotation:
    """
    One rotation of a journal's recipients.

    Steps: back up the rules, write the new rules, list record files,
    re-encrypt each (collecting failures), re-encrypt the index, then
    commit or roll back the rules. run() returns the result instead of
    raising so partial outcomes stay available.

    Args:
        directory: Recipient directory of the journal
        new_recipients: Recipient set to rotate to
        list_entries: Returns storage-relative record locations
        reencrypt_entry: Re-encrypts one record location
        reencrypt_index: Re-encrypts and persists the index
    """

    def __init__(
        self,
        directory: RecipientDirectory,
        new_recipients: Sequence[str],
        list_entries: Callable[[], list[str]],
        reencrypt_entry: Callable[[str], None],
        reencrypt_index: Callable[[], None],
    ):
        self._directory = directory
        self._new_recipients = normalize_recipients(new_recipients)
        self._list_entries = list_entries
        self._reencrypt_entry = reencrypt_entry
        self._reencrypt_index = reencrypt_index

    def run(self) -> ReEncryptResult:
        result = ReEncryptResult(new_recipients=list(self._new_recipients))

        try:
            result.backup_path = self._directory.backup()
        except RecipientError as e:
            result.error = e
            result.state = RotationState.ABORTED
            logger.error("Rotation aborted, could not back up recipients: %s", e)
            return result
        result.state = RotationState.BACKED_UP

        try:
            self._directory.write(self._new_recipients)
        except RecipientError as e:
            result.error = e
            self._rollback(result)
            return result
        result.state = RotationState.RECIPIENTS_WRITTEN
        logger.info("Rotating to %d recipient(s)", len(self._new_recipients))

        try:
            files = self._list_entries()
        except Exception as e:
            result.error = e
            self._rollback(result)
            return result

        result.total_files = len(files)
        for filepath in files:
            try:
                self._reencrypt_entry(filepath)
            except Exception as e:
                logger.warning("Failed to re-encrypt %s: %s", filepath, e)
                result.failed_files.append(FileError(filepath=filepath, error=e))
            else:
                result.successful_files += 1

        try:
            self._reencrypt_index()
        except Exception as e:
            logger.warning("Failed to re-encrypt index: %s", e)
            result.index_error = e
            result.index_success = False
        else:
            result.index_success = True

        if result.failed_files or not result.index_success:
            self._rollback(result)
            return result

        result.state = RotationState.COMMITTED
        try:
            self._directory.discard_backup(result.backup_path)
        except RecipientError as e:
            logger.warning("Failed to remove backup file %s: %s", result.backup_path, e)
        logger.info("Rotation committed: %d file(s) re-encrypted", result.successful_files)
        return result

    def _rollback(self, result: ReEncryptResult) -> None:
        try:
            self._directory.restore(result.backup_path)
        except RecipientError as e:
            result.rollback_error = e
            result.state = RotationState.ROLLBACK_FAILED
            logger.critical(
                "Rotation failed AND rollback failed: %s. Old recipient rules kept at %s",
                e, result.backup_path,
            )
            return

        result.state = RotationState.ROLLED_BACK
        try:
            self._directory.discard_backup(result.backup_path)
        except RecipientError as e:
            logger.warning("Rolled back, but failed to remove backup file %s: %s", result.backup_path, e)
        logger.warning(
            "Rotation rolled back: %d of %d file(s) failed, index %s",
            len(result.failed_files), result.total_files,
            "ok" if result.index_success else "failed",
        )


def transactional_reencrypt(
    directory: RecipientDirectory,
    new_recipients: Sequence[str],
    list_entries: Callable[[], list[str]],
    reencrypt_entry: Callable[[str], None],
    reencrypt_index: Callable[[], None],
) -> ReEncryptResult:
    """Run a RecipientRotation and return its result."""
    return RecipientRotation(
        directory, new_recipients, list_entries, reencrypt_entry, reencrypt_index,
    ).run()
