"""
Core API for the encrypted journal.

A Journal keeps one encrypted file per entry plus an encrypted index,
and keeps the two consistent:
- add(): encrypt entry → update index → persist index
- get() / update() / delete(): resolve id or prefix through the index
- search_*(): index lookup → decrypt only the matching entries
- rotate_recipients(): re-encrypt everything for a new recipient set
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, NamedTuple, Optional, Sequence

from .config import DEFAULT_PROVIDER, JournalConfig
from .errors import (
    AmbiguousReferenceError,
    IndexInconsistencyError,
    JournalError,
    NotFoundError,
    RotationError,
)
from .index import SearchIndex
from .providers.base import EncryptionProvider, get_registry
from .recipients import SOPS_CONFIG_FILENAME, RecipientDirectory, normalize_recipients
from .storage import Storage
from .transaction import ReEncryptResult, RecipientRotation, RotationState
from .types import (
    MIN_PREFIX_LENGTH,
    IndexEntry,
    Record,
    new_record,
    normalize_tags,
    to_current,
)

logger = logging.getLogger(__name__)


class LoadFailure(NamedTuple):
    """An entry that could not be loaded during a multi-entry read."""
    id: str
    filepath: str
    error: Exception


class LoadResult(NamedTuple):
    """Entries that loaded, plus the ones that did not."""
    records: list[Record]
    failures: list[LoadFailure]


class RebuildResult(NamedTuple):
    """Outcome of rebuild_index()."""
    indexed: int
    skipped: list[LoadFailure]


def _create_provider(name: str, params: Optional[dict[str, Any]]) -> EncryptionProvider:
    return get_registry().create_encryption(name, params)


class Journal:
    """
    Encrypted journal - one encrypted file per entry, searchable by index.

    Example:
        j = Journal("~/journal")
        entry = j.add("Shipped the release", ["work"])
        j.search_by_tag("work").records

    Single writer: callers must not run mutating operations concurrently
    against the same journal directory.
    """

    def __init__(
        self,
        path: str | Path,
        provider: Optional[EncryptionProvider] = None,
        *,
        name: str = "",
        provider_name: str = DEFAULT_PROVIDER,
        provider_params: Optional[dict[str, Any]] = None,
        ops_log_dir: Optional[Path] = None,
    ) -> None:
        """
        Open an initialized journal.

        Args:
            path: Journal directory (contains .sops.yaml)
            provider: Injected encryption provider (skips registry lookup)
            name: Display name from the configuration
            provider_name: Registered provider to create when none is injected
            provider_params: Parameters for the created provider
            ops_log_dir: Directory for the persistent operations log, if any
        """
        self._path = Path(path).expanduser()
        self._name = name or self._path.name
        self._provider = provider or _create_provider(provider_name, provider_params)
        self._recipients = RecipientDirectory(self._path)
        self._storage = Storage(self._path, self._provider, self._recipients)

        self._ops_log_handler = None
        self._storage.initialize()
        self._index = self._storage.load_index()

        # Only a successfully opened journal owns an ops log handler
        if ops_log_dir is not None:
            from .logging_config import configure_ops_log
            self._ops_log_handler = configure_ops_log(ops_log_dir)

        if self._recipients.has_backup():
            logger.warning(
                "Found %s: a recipient rotation was interrupted. "
                "Check the recipients in %s, then remove the backup.",
                self._recipients.backup_path, SOPS_CONFIG_FILENAME,
            )

    @classmethod
    def from_config(cls, config: JournalConfig, *, ops_log_dir: Optional[Path] = None) -> "Journal":
        return cls(
            config.path,
            name=config.name,
            provider_name=config.provider,
            provider_params=config.params,
            ops_log_dir=ops_log_dir,
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def name(self) -> str:
        return self._name

    @property
    def index(self) -> SearchIndex:
        """The live index. Read it; mutate only through Journal methods."""
        return self._index

    # -------------------------------------------------------------------------
    # Id resolution
    # -------------------------------------------------------------------------

    def resolve_id(self, id_or_prefix: str) -> str:
        """
        Resolve a full id or a unique prefix to a stored id.

        An exact id always wins. Otherwise the prefix must be at least
        8 characters and match exactly one entry.

        Raises:
            AmbiguousReferenceError: Prefix too short, or matches several entries
            NotFoundError: No entry matches
        """
        ref = id_or_prefix.strip()
        if ref in self._index:
            return ref
        if len(ref) < MIN_PREFIX_LENGTH:
            raise AmbiguousReferenceError(
                ref,
                message=f"id prefix {ref!r} is too short; use at least {MIN_PREFIX_LENGTH} characters",
            )
        matches = self._index.find_by_prefix(ref)
        if not matches:
            raise NotFoundError(f"entry not found: {ref}")
        if len(matches) > 1:
            raise AmbiguousReferenceError(ref, matches)
        return matches[0]

    def _entry_for(self, id_or_prefix: str) -> IndexEntry:
        id = self.resolve_id(id_or_prefix)
        return self._index.lookup(id)

    # -------------------------------------------------------------------------
    # Single-entry operations
    # -------------------------------------------------------------------------

    def add(
        self,
        content: str,
        tags: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
    ) -> Record:
        """
        Create, encrypt and index a new entry.

        Raises:
            EncryptionError: The entry could not be written (index untouched)
            IndexInconsistencyError: The entry was written but the index was
                not saved; rebuild_index() repairs it
        """
        record = new_record(content, tags, now)
        while record.id in self._index:
            record = new_record(content, tags, record.created_at)

        self._storage.save_record(record)

        self._index.add(IndexEntry.from_record(record))
        try:
            self._storage.save_index(self._index)
        except JournalError as e:
            self._index.remove(record.id)
            logger.warning("Entry %s saved but index update failed: %s", record.id, e)
            raise IndexInconsistencyError(record.id, f"entry saved but index update failed: {e}") from e

        logger.info("Added entry %s (%s)", record.id, record.filepath)
        return record

    def get(self, id_or_prefix: str) -> Record:
        """Decrypt and return one entry."""
        entry = self._entry_for(id_or_prefix)
        return self._storage.load_record(entry.filepath)

    def update(
        self,
        id_or_prefix: str,
        content: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Record:
        """
        Replace an entry's content and/or tags.

        The id, creation time and storage location never change. None leaves
        a field as it is. The entry is rewritten at the current schema.
        """
        entry = self._entry_for(id_or_prefix)
        record = to_current(self._storage.load_record(entry.filepath))
        if content is not None:
            record.content = content
        if tags is not None:
            record.tags = normalize_tags(tags)
        record.filepath = entry.filepath

        self._storage.save_record(record)

        previous = self._index.remove(entry.id)
        self._index.add(IndexEntry.from_record(record))
        try:
            self._storage.save_index(self._index)
        except JournalError as e:
            self._index.add(previous)
            logger.warning("Entry %s updated but index update failed: %s", entry.id, e)
            raise IndexInconsistencyError(entry.id, f"entry updated but index update failed: {e}") from e

        logger.info("Updated entry %s", entry.id)
        return record

    def delete(self, id_or_prefix: str) -> IndexEntry:
        """
        Delete an entry file and its index entry.

        A file that is already gone is logged as an inconsistency and the
        stale index entry is still removed.
        """
        entry = self._entry_for(id_or_prefix)

        if not self._storage.delete_record(entry.filepath):
            logger.warning(
                "Entry file %s was already missing; removing stale index entry %s",
                entry.filepath, entry.id,
            )

        self._index.remove(entry.id)
        try:
            self._storage.save_index(self._index)
        except JournalError as e:
            self._index.add(entry)
            logger.warning("Entry %s deleted but index update failed: %s", entry.id, e)
            raise IndexInconsistencyError(entry.id, f"entry file deleted but index update failed: {e}") from e

        logger.info("Deleted entry %s", entry.id)
        return entry

    # -------------------------------------------------------------------------
    # Listing and search
    # -------------------------------------------------------------------------

    def list_all(self, descending: bool = True) -> list[IndexEntry]:
        """Index entries ordered by date (newest first). Nothing is decrypted."""
        return self._index.sorted_entries(descending=descending)

    def list_recent(self, count: int = 10) -> LoadResult:
        """Decrypt the *count* newest entries (all of them if count <= 0)."""
        entries = self.list_all()
        if count > 0:
            entries = entries[:count]
        return self._load_entries(entries)

    def search_by_date(self, day: date | datetime) -> LoadResult:
        return self._load_ids(self._index.find_by_date(day))

    def search_by_date_range(self, start: date | datetime, end: date | datetime) -> LoadResult:
        return self._load_ids(self._index.find_by_date_range(start, end))

    def search_by_tag(self, tag: str) -> LoadResult:
        return self._load_ids(self._index.find_by_tag(tag))

    def search_by_tags(self, tags: Sequence[str]) -> LoadResult:
        """Entries carrying all of *tags*."""
        return self._load_ids(self._index.find_by_all_tags(tags))

    def _load_ids(self, ids: Iterable[str]) -> LoadResult:
        entries = [e for e in (self._index.lookup(id) for id in ids) if e is not None]
        entries.sort(key=lambda e: (e.created_at, e.id), reverse=True)
        return self._load_entries(entries)

    def _load_entries(self, entries: Iterable[IndexEntry]) -> LoadResult:
        records: list[Record] = []
        failures: list[LoadFailure] = []
        for entry in entries:
            try:
                records.append(self._storage.load_record(entry.filepath))
            except (JournalError, ValueError) as e:
                logger.warning("Failed to load entry %s: %s", entry.id, e)
                failures.append(LoadFailure(entry.id, entry.filepath, e))
        return LoadResult(records, failures)

    # -------------------------------------------------------------------------
    # Index recovery
    # -------------------------------------------------------------------------

    def rebuild_index(self) -> RebuildResult:
        """
        Rebuild the index from every entry file on disk.

        Files that fail to decrypt or decode are skipped with a warning.
        The saved index is replaced only if the new one is written.
        """
        new_index = SearchIndex()
        skipped: list[LoadFailure] = []

        for filepath in self._storage.list_record_files():
            fallback_id = Path(filepath).stem
            try:
                record = self._storage.load_record(filepath)
            except (JournalError, ValueError) as e:
                logger.warning("Skipping %s during rebuild: %s", filepath, e)
                skipped.append(LoadFailure(fallback_id, filepath, e))
                continue

            if record.id in new_index:
                err = JournalError(f"duplicate entry id {record.id}")
                logger.warning("Skipping %s during rebuild: %s", filepath, err)
                skipped.append(LoadFailure(record.id, filepath, err))
                continue

            entry = IndexEntry.from_record(record)
            if entry.filepath != filepath:
                logger.debug("Entry %s stored at %s, recorded as %s", record.id, filepath, entry.filepath)
                entry.filepath = filepath
            new_index.add(entry)

        self._storage.save_index(new_index)
        self._index = new_index
        logger.info("Rebuilt index: %d entries, %d skipped", len(new_index), len(skipped))
        return RebuildResult(len(new_index), skipped)

    # -------------------------------------------------------------------------
    # Recipients
    # -------------------------------------------------------------------------

    def list_recipients(self) -> list[str]:
        return self._recipients.read()

    def rotate_recipients(self, new_recipients: Sequence[str]) -> ReEncryptResult:
        """
        Switch to *new_recipients* and re-encrypt every entry and the index.

        Either everything is re-encrypted and the new recipients are kept,
        or the old recipient rules are restored.

        Raises:
            RotationError: Not committed; ``result`` lists every failure and
                ``rollback_failed`` tells whether the old rules came back
        """
        rotation = RecipientRotation(
            self._recipients,
            normalize_recipients(new_recipients),
            list_entries=self._storage.list_record_files,
            reencrypt_entry=self._storage.reencrypt_record,
            reencrypt_index=lambda: self._storage.save_index(self._index),
        )
        result = rotation.run()
        if result.committed:
            return result

        if result.state is RotationState.ABORTED:
            raise RotationError(f"could not start re-encryption: {result.error}", result)
        if result.rollback_failed:
            raise RotationError(
                f"re-encryption failed AND rollback failed: {result.rollback_error}\n"
                f"Old recipient rules kept at {result.backup_path}\n"
                f"Original error:\n{result.format_errors()}",
                result,
                result.rollback_error,
            )
        raise RotationError(
            f"re-encryption failed, rolled back {SOPS_CONFIG_FILENAME}\n{result.format_errors()}",
            result,
        )

    def re_encrypt(self) -> ReEncryptResult:
        """Re-encrypt everything for the current recipients."""
        return self.rotate_recipients(self.list_recipients())

    def add_recipient(self, recipient: str) -> ReEncryptResult:
        return self.rotate_recipients(self._recipients.prepare_add_recipient(recipient))

    def remove_recipient(self, recipient: str) -> ReEncryptResult:
        return self.rotate_recipients(self._recipients.prepare_remove_recipient(recipient))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        if self._ops_log_handler is not None:
            logging.getLogger("cryptjournal").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def initialize_journal(
    path: str | Path,
    recipients: Sequence[str],
    provider: Optional[EncryptionProvider] = None,
    *,
    name: str = "",
    provider_name: str = DEFAULT_PROVIDER,
    provider_params: Optional[dict[str, Any]] = None,
) -> Journal:
    """
    Create a journal directory with recipient rules and an empty index.

    An existing index is kept, so re-initializing does not lose entries.
    """
    path = Path(path).expanduser()
    path.mkdir(parents=True, exist_ok=True, mode=0o700)
    RecipientDirectory(path).write(recipients)

    journal = Journal(
        path,
        provider,
        name=name,
        provider_name=provider_name,
        provider_params=provider_params,
    )
    if not journal._storage.index_path.exists():
        journal._storage.save_index(journal.index)
    logger.info("Initialized journal at %s", path)
    return journal
