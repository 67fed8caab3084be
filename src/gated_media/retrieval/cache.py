"""
In-memory TTL cache for content fetched from the IPFS gateway.

Freshness is evaluated lazily on lookup: an entry is fresh while
``now - timestamp < ttl``. Stale entries stay in the map until they are
overwritten by a later fetch, swept by ``evict_expired``, or pushed out by the
LRU bound.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_MAX_ENTRIES = 256


@dataclass(frozen=True)
class CacheEntry:
    data: bytes
    content_type: Optional[str]
    timestamp: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.timestamp < ttl


class CacheStore:
    """Map from content identifier to a timestamped blob.

    Args:
        ttl: Seconds an entry stays fresh. Default 5 minutes.
        max_entries: LRU bound on the number of identifiers kept. None
            disables the bound.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: Optional[int] = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1 or None")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, cid: object) -> bool:
        return cid in self._entries

    def now(self) -> float:
        return self._clock()

    def get(self, cid: str, now: Optional[float] = None) -> Optional[CacheEntry]:
        """Return the entry for `cid` if present and fresh, else None."""
        entry = self._entries.get(cid)
        if entry is None:
            return None
        if now is None:
            now = self._clock()
        if not entry.is_fresh(now, self.ttl):
            return None
        self._entries.move_to_end(cid)
        return entry

    def put(self, cid: str, data: bytes, content_type: Optional[str], now: Optional[float] = None) -> CacheEntry:
        """Store (or overwrite) the blob for `cid` stamped with `now`."""
        if now is None:
            now = self._clock()
        entry = CacheEntry(data=bytes(data), content_type=content_type, timestamp=now)
        self._entries[cid] = entry
        self._entries.move_to_end(cid)
        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache LRU eviction cid=%s", evicted)
        return entry

    def evict_expired(self, now: Optional[float] = None) -> int:
        """Drop every stale entry. Returns the number removed."""
        if now is None:
            now = self._clock()
        stale = [cid for cid, e in self._entries.items() if not e.is_fresh(now, self.ttl)]
        for cid in stale:
            del self._entries[cid]
        if stale:
            logger.debug("Cache swept %d expired entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
