"""Counting store adapters for the sliding window rate limiter.

The limiter talks to an abstract store so a single process can run against an
in-memory store while deployed replicas share one Redis instance.
"""

from app.adapters.rate_limit.base import AbstractCountingStore, StoreResult
from app.adapters.rate_limit.factory import create_counting_store
from app.adapters.rate_limit.in_memory import InMemoryCountingStore
from app.adapters.rate_limit.redis_store import RedisCountingStore

__all__ = [
    "AbstractCountingStore",
    "InMemoryCountingStore",
    "RedisCountingStore",
    "StoreResult",
    "create_counting_store",
]
