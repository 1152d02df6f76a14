"""In-memory sliding window counting store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: a single lock makes prune-count-add indivisible.
"""

from __future__ import annotations

import bisect
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from app.adapters.rate_limit.base import AbstractCountingStore, StoreResult

logger = logging.getLogger(__name__)


@dataclass
class _WindowEntry:
    timestamps: list[float] = field(default_factory=list)
    expires_at: float = 0.0


class InMemoryCountingStore(AbstractCountingStore):
    """Counting store keeping each key's accepted timestamps in a sorted list.

    Key expiry mirrors Redis ``PEXPIRE``: it is measured on the store's own
    clock, never on the request timestamps, and an accepted request only ever
    pushes it later. Expired keys are dropped when touched and, every
    ``sweep_every`` accepted requests, in one pass over the whole store.

    Important:
        This store is per-process only. Use the Redis store when the API runs
        with multiple workers or replicas.
    """

    backend_name = "memory"

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sweep_every: int = 1024,
    ) -> None:
        if sweep_every < 1:
            raise ValueError("sweep_every must be >= 1")

        self._clock = clock
        self._sweep_every = sweep_every
        self._lock = threading.Lock()
        self._entries: dict[str, _WindowEntry] = {}
        self._accepted_since_sweep = 0

    def prune_count_add(
        self,
        key: str,
        *,
        cutoff: float,
        limit: int,
        now: float,
        ttl_seconds: float,
    ) -> StoreResult:
        with self._lock:
            store_now = self._clock()
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at < store_now:
                del self._entries[key]
                entry = None

            if entry is None:
                entry = _WindowEntry()

            # Timestamps stay sorted, so expired ones form a prefix.
            expired = bisect.bisect_left(entry.timestamps, cutoff)
            if expired:
                del entry.timestamps[:expired]

            count = len(entry.timestamps)
            if count < limit:
                bisect.insort(entry.timestamps, now)
                entry.expires_at = max(entry.expires_at, store_now + ttl_seconds)
                self._entries[key] = entry
                self._after_accept_locked(store_now)
                return StoreResult(allowed=True, count=count + 1, oldest=entry.timestamps[0])

            oldest = entry.timestamps[0] if entry.timestamps else None
            return StoreResult(allowed=False, count=count, oldest=oldest)

    def ping(self) -> None:
        return None

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _after_accept_locked(self, store_now: float) -> None:
        self._accepted_since_sweep += 1
        if self._accepted_since_sweep < self._sweep_every:
            return

        self._accepted_since_sweep = 0
        expired_keys = [k for k, e in self._entries.items() if e.expires_at < store_now]
        for k in expired_keys:
            del self._entries[k]

        if expired_keys:
            logger.debug(
                "store.sweep",
                extra={"evicted": len(expired_keys), "size": len(self._entries)},
            )
