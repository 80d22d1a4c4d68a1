"""
Encrypted file storage for a journal directory.

Layout::

    <journal>/
        .sops.yaml              recipient rules
        index.yaml              encrypted SearchIndex
        entries/YYYY/MM/<id>.yaml   one encrypted record per file

Every file is written to a temporary sibling first and moved into place,
so a failed write never leaves a truncated ciphertext behind.
"""

import logging
import os
from pathlib import Path, PurePosixPath

import yaml

from .errors import DecryptionError, EncryptionError, JournalError, NotFoundError
from .index import SearchIndex
from .providers.base import EncryptionProvider
from .recipients import RecipientDirectory
from .types import FILE_EXTENSION, Record, decode_record, encode_record

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.yaml"
ENTRIES_DIR = "entries"


class Storage:
    """
    Reads and writes encrypted records and the encrypted index.

    Each write encrypts for the recipients currently in the recipient
    directory, so a rotation only has to rewrite the rules and re-save.
    """

    def __init__(
        self,
        base_path: Path,
        provider: EncryptionProvider,
        recipients: RecipientDirectory | None = None,
    ):
        self._base_path = Path(base_path)
        self._provider = provider
        self._recipients = recipients or RecipientDirectory(self._base_path)

    @property
    def base_path(self) -> Path:
        return self._base_path

    @property
    def entries_path(self) -> Path:
        return self._base_path / ENTRIES_DIR

    @property
    def index_path(self) -> Path:
        return self._base_path / INDEX_FILENAME

    @property
    def recipients(self) -> RecipientDirectory:
        return self._recipients

    def initialize(self) -> None:
        """Create the entries directory; the recipient rules must already exist."""
        self.entries_path.mkdir(parents=True, exist_ok=True, mode=0o700)
        if not self._recipients.exists():
            raise JournalError(
                f"{self._recipients.path.name} not found in {self._base_path} - "
                "please initialize journal with recipients first"
            )

    # -------------------------------------------------------------------------
    # Low-level encrypted I/O
    # -------------------------------------------------------------------------

    def _location(self, path: Path) -> str:
        try:
            return path.relative_to(self._base_path).as_posix()
        except ValueError:
            return str(path)

    def _ensure_dir(self, directory: Path) -> None:
        """Create *directory* and any missing parents below the journal root, mode 0700."""
        missing = []
        while not directory.exists() and directory != self._base_path:
            missing.append(directory)
            directory = directory.parent
        for d in reversed(missing):
            d.mkdir(mode=0o700, exist_ok=True)

    def _write_encrypted(self, path: Path, plaintext: bytes) -> None:
        location = self._location(path)
        recipients = self._recipients.read()
        try:
            ciphertext = self._provider.encrypt(plaintext, recipients)
        except JournalError:
            raise
        except Exception as e:
            raise EncryptionError(location, str(e)) from e

        tmp = path.with_name(f".{path.name}.tmp")
        try:
            self._ensure_dir(path.parent)
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(ciphertext)
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise EncryptionError(location, f"failed to write encrypted file: {e}") from e

    def _read_decrypted(self, path: Path) -> bytes:
        location = self._location(path)
        try:
            ciphertext = path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"file not found: {location}") from e
        except OSError as e:
            raise DecryptionError(location, f"failed to read file: {e}") from e
        try:
            return self._provider.decrypt(ciphertext)
        except JournalError:
            raise
        except Exception as e:
            raise DecryptionError(location, str(e)) from e

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def record_path(self, filepath: str) -> Path:
        """Absolute path of a storage-relative record location."""
        rel = PurePosixPath(filepath)
        if rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"invalid entry location: {filepath!r}")
        return self.entries_path.joinpath(*rel.parts)

    def save_record(self, record: Record) -> None:
        """Encrypt and write a record at its stored location."""
        self._write_encrypted(self.record_path(record.filepath), encode_record(record))

    def load_record(self, filepath: str) -> Record:
        """Decrypt and decode the record stored at *filepath*."""
        return decode_record(self._read_decrypted(self.record_path(filepath)))

    def delete_record(self, filepath: str) -> bool:
        """Remove a record file. Returns False if it was already gone."""
        path = self.record_path(filepath)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise JournalError(f"failed to delete entry file {self._location(path)}: {e}") from e
        return True

    def reencrypt_record(self, filepath: str) -> None:
        """Decrypt a record file and write it back for the current recipients.

        The plaintext must decode as a record; its bytes are kept as they are.
        """
        path = self.record_path(filepath)
        plaintext = self._read_decrypted(path)
        decode_record(plaintext)
        self._write_encrypted(path, plaintext)

    def list_record_files(self) -> list[str]:
        """Storage-relative locations of every record file, sorted."""
        if not self.entries_path.is_dir():
            return []
        files = []
        for path in self.entries_path.rglob(f"*{FILE_EXTENSION}"):
            if path.is_file() and not path.name.startswith("."):
                files.append(path.relative_to(self.entries_path).as_posix())
        return sorted(files)

    # -------------------------------------------------------------------------
    # Index
    # -------------------------------------------------------------------------

    def save_index(self, index: SearchIndex) -> None:
        data = yaml.safe_dump(index.to_dict(), sort_keys=False, allow_unicode=True)
        self._write_encrypted(self.index_path, data.encode("utf-8"))

    def load_index(self) -> SearchIndex:
        """Load the index; a journal without an index file has an empty one."""
        if not self.index_path.exists():
            return SearchIndex()
        plaintext = self._read_decrypted(self.index_path)
        try:
            return SearchIndex.from_dict(yaml.safe_load(plaintext))
        except (yaml.YAMLError, ValueError, KeyError, TypeError) as e:
            raise JournalError(f"failed to parse index: {e}") from e
