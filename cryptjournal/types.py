"""
Data types for the encrypted journal.

A record file holds one versioned entry. The ``version`` key is peeked
before the rest of the document is interpreted, so older files stay
readable when a new schema variant is introduced.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional, Union

import yaml

from .errors import DecodeError, InvalidRecordError, UnsupportedVersionError


# Schema version stamped by this producer on every encoded record
CURRENT_VERSION = 1

# Extension of record and index files (the plaintext is YAML)
FILE_EXTENSION = ".yaml"

# Minimum length of an id prefix accepted for lookups
MIN_PREFIX_LENGTH = 8


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_utc_timestamp(value: Any) -> datetime:
    """Coerce a stored timestamp to an aware UTC datetime.

    Accepts ISO-8601 strings (with or without ``Z``/offset suffix) and the
    ``datetime`` objects YAML produces for unquoted timestamps. Naive values
    are taken to be UTC.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"not a timestamp: {value!r}")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def date_key(value: Union[datetime, date]) -> str:
    """Day bucket (YYYY-MM-DD) for a timestamp, computed in UTC."""
    if isinstance(value, datetime):
        value = parse_utc_timestamp(value).date()
    return value.strftime("%Y-%m-%d")


def entry_path(created_at: datetime, id: str) -> str:
    """Storage-relative path of a record: ``YYYY/MM/<id>.yaml`` (UTC)."""
    dt = parse_utc_timestamp(created_at)
    return f"{dt.year:04d}/{dt.month:02d}/{id}{FILE_EXTENSION}"


def normalize_tags(tags) -> list[str]:
    """Strip whitespace, drop empties and duplicates, keep first-seen order."""
    result: list[str] = []
    for tag in tags or ():
        tag = str(tag).strip()
        if tag and tag not in result:
            result.append(tag)
    return result


# -----------------------------------------------------------------------------
# Record schema variants
# -----------------------------------------------------------------------------

@dataclass
class RecordV1:
    """
    A journal entry, schema version 1.

    Attributes:
        id: Unique identifier (a UUID string), immutable
        created_at: Creation time (aware UTC), immutable
        content: Entry text
        tags: Tags in insertion order, no duplicates
        filepath: Storage-relative location, fixed at creation
        version: Schema version read from disk; encoding ignores it
    """
    id: str
    created_at: datetime
    content: str = ""
    tags: list[str] = field(default_factory=list)
    filepath: str = ""
    version: int = 1

    SCHEMA_VERSION = 1

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "version": self.SCHEMA_VERSION,
            "id": self.id,
            "date": parse_utc_timestamp(self.created_at).isoformat(),
        }
        if self.tags:
            d["tags"] = list(self.tags)
        d["filepath"] = self.filepath
        d["content"] = self.content
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecordV1":
        if type(data.get("version")) is not int or data["version"] != cls.SCHEMA_VERSION:
            raise InvalidRecordError(f"invalid version for V1 record: {data.get('version')!r}")
        id = data.get("id")
        if not id or not isinstance(id, str):
            raise InvalidRecordError("entry ID is required")
        raw_date = data.get("date")
        if raw_date in (None, ""):
            raise InvalidRecordError(f"entry date is required: {id}")
        try:
            created_at = parse_utc_timestamp(raw_date)
        except ValueError as e:
            raise InvalidRecordError(f"entry date is invalid: {id}: {e}") from e
        tags = data.get("tags") or []
        if not isinstance(tags, list):
            raise InvalidRecordError(f"entry tags must be a list: {id}")
        content = data.get("content")
        return cls(
            id=id,
            created_at=created_at,
            content="" if content is None else str(content),
            tags=[str(t) for t in tags],
            filepath=data.get("filepath") or entry_path(created_at, id),
            version=cls.SCHEMA_VERSION,
        )


# Union of every schema variant the decoder understands
Record = RecordV1

_DECODERS = {
    RecordV1.SCHEMA_VERSION: RecordV1.from_dict,
}


def new_record(
    content: str,
    tags=None,
    now: Optional[datetime] = None,
    *,
    id: Optional[str] = None,
) -> RecordV1:
    """Create a record at the current schema with a fresh id and location."""
    id = id or str(uuid.uuid4())
    created_at = parse_utc_timestamp(now) if now is not None else utc_now()
    return RecordV1(
        id=id,
        created_at=created_at,
        content=content,
        tags=normalize_tags(tags),
        filepath=entry_path(created_at, id),
    )


def to_current(record: Record) -> RecordV1:
    """Return *record* as the current writer's schema variant.

    Used for read-modify-write of records produced by older schemas.
    """
    if isinstance(record, RecordV1):
        return record
    raise UnsupportedVersionError(getattr(record, "version", None))


def encode_record(record: Record) -> bytes:
    """Serialize a record to YAML bytes, stamped with its schema version."""
    return yaml.safe_dump(
        record.to_dict(),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    ).encode("utf-8")


def decode_record(data: Union[bytes, str]) -> Record:
    """
    Parse record bytes, dispatching on the ``version`` key.

    Raises:
        DecodeError: If the bytes are not a YAML mapping
        UnsupportedVersionError: If the version is not recognized
        InvalidRecordError: If required fields are missing after decoding
    """
    try:
        doc = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise DecodeError(f"failed to detect version: {e}") from e
    if not isinstance(doc, dict):
        raise DecodeError("record is not a YAML mapping")

    version = doc.get("version")
    decoder = _DECODERS.get(version) if type(version) is int else None
    if decoder is None:
        raise UnsupportedVersionError(version)
    return decoder(doc)


# -----------------------------------------------------------------------------
# Index projection
# -----------------------------------------------------------------------------

@dataclass
class IndexEntry:
    """Version-agnostic searchable attributes of a record (never content)."""
    id: str
    created_at: datetime
    tags: list[str] = field(default_factory=list)
    filepath: str = ""

    @classmethod
    def from_record(cls, record: Record) -> "IndexEntry":
        return cls(
            id=record.id,
            created_at=record.created_at,
            tags=list(record.tags),
            filepath=record.filepath,
        )

    @property
    def short_id(self) -> str:
        return self.id[:MIN_PREFIX_LENGTH]

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "date": parse_utc_timestamp(self.created_at).isoformat(),
        }
        if self.tags:
            d["tags"] = list(self.tags)
        d["filepath"] = self.filepath
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexEntry":
        return cls(
            id=data["id"],
            created_at=parse_utc_timestamp(data["date"]),
            tags=[str(t) for t in data.get("tags") or []],
            filepath=data.get("filepath", ""),
        )
