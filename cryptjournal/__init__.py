"""
Encrypted, searchable journal.

Entries are stored one per file, encrypted for a set of age recipients,
with an encrypted index for lookups by id, day, and tag.

Quick start:
    from cryptjournal import Journal, initialize_journal

    j = initialize_journal("~/journal", ["age1..."])
    j.add("Shipped the release", ["work"])
    j.search_by_tag("work").records
"""

from .errors import (
    AmbiguousReferenceError,
    DecodeError,
    DecryptionError,
    EncryptionError,
    IndexInconsistencyError,
    JournalError,
    NotFoundError,
    RecipientError,
    RotationError,
    UnsupportedVersionError,
)
from .index import SearchIndex
from .journal import Journal, LoadFailure, LoadResult, RebuildResult, initialize_journal
from .transaction import ReEncryptResult
from .types import IndexEntry, Record, RecordV1

__all__ = [
    "AmbiguousReferenceError",
    "DecodeError",
    "DecryptionError",
    "EncryptionError",
    "IndexEntry",
    "IndexInconsistencyError",
    "Journal",
    "JournalError",
    "LoadFailure",
    "LoadResult",
    "NotFoundError",
    "RebuildResult",
    "RecipientError",
    "Record",
    "RecordV1",
    "ReEncryptResult",
    "RotationError",
    "SearchIndex",
    "UnsupportedVersionError",
    "initialize_journal",
]
