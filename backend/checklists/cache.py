from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Hashable, Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 64


@dataclass
class _Entry:
    value: Any
    tags: FrozenSet[str]
    stale: bool = False


class QueryCache:
    """Read cache whose entries are grouped by collection tags.

    A confirmed mutation can first ``patch`` the cached lists of a tag with a
    local reducer, so callers that ``peek`` see the change right away, and
    then ``invalidate`` the tag so the next ``fetch`` goes back to the store.

    At most ``max_entries`` are kept; the least recently stored one is evicted
    first. Entries that are still stale when their tag is invalidated again
    were never read back and are dropped.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: Dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None or entry.stale:
            return None
        return entry.value

    def peek(self, key: Hashable) -> Optional[Any]:
        entry = self._entries.get(key)
        return entry.value if entry else None

    def put(self, key: Hashable, value: Any, tags: Iterable[str]) -> None:
        self._entries.pop(key, None)
        self._entries[key] = _Entry(value=value, tags=frozenset(tags))
        while len(self._entries) > self.max_entries:
            del self._entries[next(iter(self._entries))]

    def fetch(self, key: Hashable, tags: Iterable[str], loader: Callable[[], Any]) -> Any:
        entry = self._entries.get(key)
        if entry is not None and not entry.stale:
            logger.debug("Cache hit for %r", key)
            return entry.value
        value = loader()
        self.put(key, value, tags)
        return value

    def patch(self, tag: str, reducer: Callable[[Any], Any]) -> int:
        patched = 0
        for entry in self._entries.values():
            if tag in entry.tags:
                entry.value = reducer(entry.value)
                patched += 1
        return patched

    def invalidate(self, tag: str) -> int:
        invalidated = 0
        for key, entry in list(self._entries.items()):
            if tag not in entry.tags:
                continue
            if entry.stale:
                del self._entries[key]
            else:
                entry.stale = True
                invalidated += 1
        logger.debug("Invalidated %d cache entries tagged %s", invalidated, tag)
        return invalidated

    def clear(self) -> None:
        self._entries.clear()
