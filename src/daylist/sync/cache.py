from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator

from daylist.sync.models import Collection, canonical_dumps, canonicalize

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CacheEntry:
    serialized: str
    collection: Collection


class ReconciliationCache:
    """Last known collection per record key.

    Entries live for the whole session; nothing is evicted until
    :meth:`clear` runs on teardown. Mutations read through this cache, so an
    in-flight fetch can never overwrite an edit that is still being made.
    """

    __slots__ = ("_entries",)

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> Iterator[str]:
        return iter(tuple(self._entries))

    def get(self, key: str) -> Collection | None:
        entry = self._entries.get(key)
        return entry.collection if entry is not None else None

    def get_serialized(self, key: str) -> str | None:
        entry = self._entries.get(key)
        return entry.serialized if entry is not None else None

    def put(self, key: str, collection: Collection) -> str:
        """Store ``collection`` and return its canonical serialization."""

        frozen = tuple(collection)
        serialized = canonical_dumps(frozen)
        self._entries[key] = CacheEntry(serialized=serialized, collection=frozen)
        return serialized

    def diff(self, key: str, incoming: Collection | str | bytes | None) -> bool:
        """Return ``True`` when ``incoming`` differs from the cached value.

        Raw values are canonicalized first, so whitespace or key order in
        the store's copy never counts as a change. A key with no entry is
        always changed.
        """

        if isinstance(incoming, tuple):
            candidate = canonical_dumps(incoming)
        else:
            candidate = canonicalize(incoming)
        entry = self._entries.get(key)
        if entry is None:
            return True
        return entry.serialized != candidate

    def clear(self) -> None:
        if self._entries:
            logger.debug("Clearing %d cached collections", len(self._entries))
        self._entries.clear()


__all__ = ["CacheEntry", "ReconciliationCache"]
