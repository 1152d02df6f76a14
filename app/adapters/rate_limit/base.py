"""Counting store interfaces.

The limiter depends on this abstraction (not a concrete backend) so the same
decision logic runs against Redis in production and an in-process store in
development and tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class StoreResult:
    """Outcome of one atomic prune-count-add.

    Attributes:
        allowed: Whether a new entry was recorded.
        count: Entries inside the window after the operation.
        oldest: Oldest retained timestamp, or None when the window is empty.
    """

    allowed: bool
    count: int
    oldest: float | None


class AbstractCountingStore(ABC):
    """Interface for shared sliding window counting stores."""

    backend_name: str = "abstract"

    @abstractmethod
    def prune_count_add(
        self,
        key: str,
        *,
        cutoff: float,
        limit: int,
        now: float,
        ttl_seconds: float,
    ) -> StoreResult:
        """Atomically prune, count and conditionally record one request.

        Removes entries older than ``cutoff``, counts the survivors and, if
        fewer than ``limit`` remain, records ``now`` and refreshes the key's
        expiry to ``ttl_seconds``. The whole step must be indivisible with
        respect to other callers on the same key.

        Args:
            key: Fully qualified store key.
            cutoff: Entries with a timestamp strictly below this are expired.
            limit: Maximum entries allowed inside the window.
            now: Timestamp to record when allowed.
            ttl_seconds: Key expiry after the last accepted request.

        Returns:
            StoreResult describing the decision.

        Raises:
            StoreUnavailableError: If the store cannot be reached or the atomic
                operation cannot be guaranteed.
        """
        raise NotImplementedError

    @abstractmethod
    def ping(self) -> None:
        """Check connectivity.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    def reset(self, key: str) -> None:
        """Drop every recorded entry for ``key``."""
        raise NotImplementedError
