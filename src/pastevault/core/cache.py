"""
Bounded LRU cache for rendered paste output.

Entries are keyed by (paste id, render options) and indexed by paste id so
that deleting a paste drops every rendering of it in one step.
"""

import threading
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, Hashable, Iterable, Optional, Set, Tuple

import structlog

from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)

CacheKey = Tuple[int, Hashable]

DEFAULT_TOMBSTONE_LIMIT = 65536


class RenderCache:
    """
    Least-recently-used cache with per-paste invalidation.

    The lock is held only for dictionary bookkeeping, never while a value is
    being computed, so unrelated keys never wait on each other. It is a
    threading lock because invalidation arrives from the storage threads
    right after a paste's deletion commits.

    Invalidated ids are remembered (ids are never reused), and results for
    them are never stored: a render that read its paste before the deletion
    returns to its caller but leaves nothing behind. The remembered set is
    bounded; ids with a computation in flight are never forgotten.
    """

    def __init__(
        self,
        capacity: int,
        metrics: Optional[MetricsCollector] = None,
        tombstone_limit: int = DEFAULT_TOMBSTONE_LIMIT,
    ) -> None:
        self.capacity = capacity
        self.metrics = metrics
        self.tombstone_limit = tombstone_limit
        self._entries: "OrderedDict[CacheKey, str]" = OrderedDict()
        self._keys_by_id: Dict[int, Set[CacheKey]] = {}
        self._pending: Dict[int, int] = {}
        self._tombstones: "OrderedDict[int, None]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    async def get_or_compute(
        self,
        paste_id: int,
        options: Hashable,
        compute: Callable[[], Awaitable[str]],
    ) -> str:
        if self.capacity <= 0:
            self._miss()
            return await compute()

        key = (paste_id, options)
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                self._entries.move_to_end(key)
            else:
                self._pending[paste_id] = self._pending.get(paste_id, 0) + 1

        if cached is not None:
            if self.metrics:
                self.metrics.record_cache_hit()
            return cached

        self._miss()
        try:
            value = await compute()
        except BaseException:
            with self._lock:
                self._finish(paste_id)
            raise

        with self._lock:
            if paste_id in self._tombstones:
                logger.debug("Discarding render of invalidated paste", paste_id=paste_id)
            else:
                self._store(key, value)
            self._finish(paste_id)
            size = len(self._entries)

        if self.metrics:
            self.metrics.set_cache_size(size)
        return value

    def invalidate(self, paste_id: int) -> int:
        """Drop every entry for a destroyed paste. Returns how many were removed."""
        return self.invalidate_many([paste_id])

    def invalidate_many(self, paste_ids: Iterable[int]) -> int:
        removed = 0
        with self._lock:
            for paste_id in paste_ids:
                removed += self._drop(paste_id)
            size = len(self._entries)

        if self.metrics:
            self.metrics.set_cache_size(size)
        return removed

    def _miss(self) -> None:
        if self.metrics:
            self.metrics.record_cache_miss()

    # The helpers below expect self._lock to be held.

    def _store(self, key: CacheKey, value: str) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        self._keys_by_id.setdefault(key[0], set()).add(key)

        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            keys = self._keys_by_id.get(evicted[0])
            if keys is not None:
                keys.discard(evicted)
                if not keys:
                    del self._keys_by_id[evicted[0]]

    def _drop(self, paste_id: int) -> int:
        keys = self._keys_by_id.pop(paste_id, set())
        for key in keys:
            self._entries.pop(key, None)

        self._tombstones[paste_id] = None
        self._tombstones.move_to_end(paste_id)
        self._trim_tombstones()
        return len(keys)

    def _trim_tombstones(self) -> None:
        while len(self._tombstones) > self.tombstone_limit:
            for paste_id in self._tombstones:
                if paste_id not in self._pending:
                    break
            else:
                return
            del self._tombstones[paste_id]

    def _finish(self, paste_id: int) -> None:
        remaining = self._pending.get(paste_id, 0) - 1
        if remaining > 0:
            self._pending[paste_id] = remaining
        else:
            self._pending.pop(paste_id, None)
