"""Redis-backed sliding window counting store.

Each key is a sorted set of accepted request timestamps (score = timestamp).
Pruning, counting and the conditional insert run inside one Lua script, so
Redis executes them as a single indivisible step no matter how many API
processes share the instance.
"""

from __future__ import annotations

import logging
import math
import uuid

import redis

from app.adapters.rate_limit.base import AbstractCountingStore, StoreResult
from app.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


# KEYS[1] = window key
# ARGV = cutoff, limit, now, ttl_ms, member
PRUNE_COUNT_ADD_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[2])

redis.call('ZREMRANGEBYSCORE', key, '-inf', '(' .. ARGV[1])
local count = redis.call('ZCARD', key)
local allowed = 0
if count < limit then
    redis.call('ZADD', key, ARGV[3], ARGV[5])
    redis.call('PEXPIRE', key, tonumber(ARGV[4]))
    count = count + 1
    allowed = 1
end

local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if oldest[2] then
    return {allowed, count, oldest[2]}
end
return {allowed, count}
"""


class RedisCountingStore(AbstractCountingStore):
    """Counting store shared by every API process through one Redis instance.

    Args:
        client: Preconfigured redis client. Built from ``url`` when omitted.
        url: Redis connection URL.
        timeout_seconds: Connect and read timeout for each round-trip. A
            timeout surfaces as StoreUnavailableError.
    """

    backend_name = "redis"

    def __init__(
        self,
        *,
        client: redis.Redis | None = None,
        url: str = "redis://localhost:6379/1",
        timeout_seconds: float = 0.5,
    ) -> None:
        if client is None:
            client = redis.Redis.from_url(
                url,
                socket_timeout=timeout_seconds,
                socket_connect_timeout=timeout_seconds,
                decode_responses=True,
            )
        self._client = client
        self._script = client.register_script(PRUNE_COUNT_ADD_SCRIPT)

    def prune_count_add(
        self,
        key: str,
        *,
        cutoff: float,
        limit: int,
        now: float,
        ttl_seconds: float,
    ) -> StoreResult:
        ttl_ms = max(1, math.ceil(ttl_seconds * 1000))
        # Same-instant requests must stay distinct set members.
        member = f"{now!r}:{uuid.uuid4().hex}"

        try:
            reply = self._script(
                keys=[key],
                args=[repr(float(cutoff)), limit, repr(float(now)), ttl_ms, member],
            )
        except redis.exceptions.RedisError as exc:
            raise self._unavailable("prune_count_add", exc) from exc

        allowed, count = int(reply[0]), int(reply[1])
        oldest = float(reply[2]) if len(reply) > 2 else None
        return StoreResult(allowed=bool(allowed), count=count, oldest=oldest)

    def ping(self) -> None:
        try:
            self._client.ping()
        except redis.exceptions.RedisError as exc:
            raise self._unavailable("ping", exc) from exc

    def reset(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.exceptions.RedisError as exc:
            raise self._unavailable("reset", exc) from exc

    def _unavailable(self, operation: str, exc: Exception) -> StoreUnavailableError:
        logger.error(
            "store.unavailable",
            extra={
                "backend": self.backend_name,
                "operation": operation,
                "error_type": type(exc).__name__,
            },
        )
        return StoreUnavailableError(
            code="rate_limit_store_unavailable",
            message="Rate limit counting store is unavailable",
            details={
                "backend": self.backend_name,
                "operation": operation,
                "error_type": type(exc).__name__,
            },
        )
