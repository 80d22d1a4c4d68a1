"""
In-memory search index over journal entries.

The index is the only thing consulted for lookups by id, day, or tag, so
searches never decrypt more records than they return. Only the primary
map (id -> IndexEntry) is persisted; the day and tag buckets are derived
from it and rebuilt on load.
"""

from datetime import date, datetime, timedelta
from typing import Any, Iterable, Iterator, Optional, Union

from .types import IndexEntry, date_key, parse_utc_timestamp

INDEX_VERSION = "1.0"

DateLike = Union[date, datetime]


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return parse_utc_timestamp(value).date()
    return value


class SearchIndex:
    """
    Primary map of entries plus derived day and tag buckets.

    All mutation goes through add() and remove(), which keep the buckets
    equal to the grouping of the primary map. Empty buckets are deleted.
    Not thread-safe: one writer at a time.
    """

    def __init__(self, entries: Iterable[IndexEntry] = ()):
        self._entries: dict[str, IndexEntry] = {}
        self._by_date: dict[str, set[str]] = {}
        self._by_tag: dict[str, set[str]] = {}
        for entry in entries:
            self.add(entry)

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def add(self, entry: IndexEntry) -> None:
        """Insert or replace the entry for ``entry.id``."""
        if entry.id in self._entries:
            self.remove(entry.id)

        self._entries[entry.id] = entry
        self._by_date.setdefault(date_key(entry.created_at), set()).add(entry.id)
        for tag in entry.tags:
            self._by_tag.setdefault(tag, set()).add(entry.id)

    def remove(self, id: str) -> Optional[IndexEntry]:
        """Remove an entry and every bucket association. No-op if absent."""
        entry = self._entries.pop(id, None)
        if entry is None:
            return None

        self._discard(self._by_date, date_key(entry.created_at), id)
        for tag in entry.tags:
            self._discard(self._by_tag, tag, id)
        return entry

    @staticmethod
    def _discard(buckets: dict[str, set[str]], key: str, id: str) -> None:
        ids = buckets.get(key)
        if ids is None:
            return
        ids.discard(id)
        if not ids:
            del buckets[key]

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def lookup(self, id: str) -> Optional[IndexEntry]:
        return self._entries.get(id)

    def find_by_date(self, day: DateLike) -> set[str]:
        return set(self._by_date.get(date_key(_as_date(day)), ()))

    def find_by_date_range(self, start: DateLike, end: DateLike) -> set[str]:
        """Ids created on any day in ``[start, end]``, inclusive."""
        first, last = _as_date(start), _as_date(end)
        result: set[str] = set()
        day = first
        while day <= last:
            result.update(self._by_date.get(date_key(day), ()))
            day += timedelta(days=1)
        return result

    def find_by_tag(self, tag: str) -> set[str]:
        return set(self._by_tag.get(tag, ()))

    def find_by_all_tags(self, tags: Iterable[str]) -> set[str]:
        """Ids carrying every tag. No tags means no results."""
        tags = list(tags)
        if not tags:
            return set()
        result = self.find_by_tag(tags[0])
        for tag in tags[1:]:
            if not result:
                break
            result &= self._by_tag.get(tag, set())
        return result

    def find_by_prefix(self, prefix: str) -> list[str]:
        """All ids starting with *prefix*, sorted."""
        return sorted(id for id in self._entries if id.startswith(prefix))

    def sorted_entries(self, descending: bool = True) -> list[IndexEntry]:
        """Entries ordered by creation time (newest first by default)."""
        return sorted(
            self._entries.values(),
            key=lambda e: (parse_utc_timestamp(e.created_at), e.id),
            reverse=descending,
        )

    def earliest_date(self) -> Optional[date]:
        if not self._by_date:
            return None
        return date.fromisoformat(min(self._by_date))

    def dates(self) -> dict[str, set[str]]:
        """Copy of the day buckets."""
        return {k: set(v) for k, v in self._by_date.items()}

    def tags(self) -> dict[str, set[str]]:
        """Copy of the tag buckets."""
        return {k: set(v) for k, v in self._by_tag.items()}

    def __contains__(self, id: object) -> bool:
        return id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[IndexEntry]:
        return iter(list(self._entries.values()))

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": INDEX_VERSION,
            "entries": {id: self._entries[id].to_dict() for id in sorted(self._entries)},
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "SearchIndex":
        """Build an index from its persisted form.

        Bucket maps stored by older writers (``by_date``, ``by_tag``) are
        ignored and recomputed.
        """
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("index document is not a mapping")
        entries = data.get("entries") or {}
        if not isinstance(entries, dict):
            raise ValueError("index 'entries' is not a mapping")
        index = cls()
        for id, raw in entries.items():
            raw = dict(raw or {})
            raw.setdefault("id", id)
            index.add(IndexEntry.from_dict(raw))
        return index
