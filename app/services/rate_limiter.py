"""Sliding window rate limiting decisions.

The limiter itself holds no mutable state: every decision is one atomic
prune-count-add against the injected counting store, so any number of threads
or processes can share the same store safely.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import numbers
import time
from dataclasses import dataclass
from typing import Callable, Union

from app.adapters.rate_limit.base import AbstractCountingStore
from app.core.errors import InvalidArgumentError, StoreUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_RESOURCE = "global"


@dataclass(frozen=True)
class RateLimitKey:
    """Caller identity scoped to a resource.

    Attributes:
        identity: Who is being limited (API key, IP, user id...).
        resource: What is being limited (route, operation...).
    """

    identity: str
    resource: str = DEFAULT_RESOURCE

    def store_key(self, prefix: str) -> str:
        return f"{prefix}:{self.resource}:{self.identity}"


@dataclass(frozen=True)
class Allowed:
    """The request was admitted and recorded."""

    limit: int
    remaining: int
    count: int

    allowed = True


@dataclass(frozen=True)
class Denied:
    """The request was rejected; nothing was recorded."""

    limit: int
    retry_after_seconds: float

    allowed = False
    remaining = 0


RateLimitDecision = Union[Allowed, Denied]


def hash_identity(identity: str) -> str:
    """Hash an identity for logging without exposing it."""
    return hashlib.sha256(identity.encode()).hexdigest()[:16]


class SlidingWindowRateLimiter:
    """Admit or deny requests so no caller exceeds ``limit`` per trailing window.

    Args:
        store: Shared counting store providing the atomic primitive.
        clock: Time source used when callers do not pass ``now``.
        key_prefix: Namespace for store keys.
        timeout_seconds: Upper bound for ``check_and_record_async``.
    """

    def __init__(
        self,
        store: AbstractCountingStore,
        *,
        clock: Callable[[], float] = time.time,
        key_prefix: str = "ratelimit",
        timeout_seconds: float = 0.5,
    ) -> None:
        self._store = store
        self._clock = clock
        self._key_prefix = key_prefix
        self._timeout_seconds = timeout_seconds

    @property
    def store(self) -> AbstractCountingStore:
        return self._store

    def check_and_record(
        self,
        key: RateLimitKey | str,
        limit: int,
        window_seconds: float,
        now: float | None = None,
    ) -> RateLimitDecision:
        """Decide whether one request for ``key`` fits in the trailing window.

        Expired timestamps are pruned, survivors counted and, when fewer than
        ``limit`` remain, ``now`` is recorded. All of it happens in a single
        atomic store operation; a denial records nothing.

        Args:
            key: RateLimitKey, or a bare identity string for the global resource.
            limit: Maximum admitted requests per window (positive integer).
            window_seconds: Trailing window length in seconds (positive).
            now: Current time in seconds; defaults to the limiter's clock.

        Returns:
            Allowed or Denied.

        Raises:
            InvalidArgumentError: If key, limit or window_seconds is invalid.
            StoreUnavailableError: If the counting store cannot decide. Never
                converted into Allowed or Denied here.
        """
        rate_key = _validate(key, limit, window_seconds)
        if now is None:
            now = self._clock()

        result = self._store.prune_count_add(
            rate_key.store_key(self._key_prefix),
            cutoff=now - window_seconds,
            limit=limit,
            now=now,
            ttl_seconds=window_seconds,
        )

        if result.allowed:
            decision: RateLimitDecision = Allowed(
                limit=limit,
                remaining=max(0, limit - result.count),
                count=result.count,
            )
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "resource": rate_key.resource,
                    "identity_hash": hash_identity(rate_key.identity),
                    "limit": limit,
                    "remaining": decision.remaining,
                },
            )
            return decision

        oldest = result.oldest if result.oldest is not None else now
        retry_after = max(0.0, oldest + window_seconds - now)
        logger.info(
            "rate_limit.denied",
            extra={
                "resource": rate_key.resource,
                "identity_hash": hash_identity(rate_key.identity),
                "limit": limit,
                "window_s": window_seconds,
                "retry_after_s": round(retry_after, 3),
            },
        )
        return Denied(limit=limit, retry_after_seconds=retry_after)

    async def check_and_record_async(
        self,
        key: RateLimitKey | str,
        limit: int,
        window_seconds: float,
        now: float | None = None,
    ) -> RateLimitDecision:
        """Async variant of check_and_record bounded by the store timeout.

        The blocking store round-trip runs in the default executor. Waiting
        longer than ``timeout_seconds`` raises StoreUnavailableError; the
        outcome of the abandoned call is unknown, so it is neither an allow
        nor a deny.
        """
        _validate(key, limit, window_seconds)
        loop = asyncio.get_running_loop()

        try:
            return await asyncio.wait_for(
                loop.run_in_executor(
                    None, self.check_and_record, key, limit, window_seconds, now
                ),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                "store.timeout",
                extra={
                    "backend": self._store.backend_name,
                    "timeout_seconds": self._timeout_seconds,
                },
            )
            raise StoreUnavailableError(
                code="rate_limit_store_timeout",
                message="Rate limit counting store did not answer in time",
                details={
                    "backend": self._store.backend_name,
                    "operation": "prune_count_add",
                    "error_type": "TimeoutError",
                },
            ) from exc


def _validate(key: RateLimitKey | str, limit: int, window_seconds: float) -> RateLimitKey:
    """Normalize the key and reject caller misuse before touching the store."""

    rate_key = key if isinstance(key, RateLimitKey) else RateLimitKey(identity=key)

    if not isinstance(rate_key.identity, str) or not rate_key.identity:
        raise InvalidArgumentError(
            code="invalid_rate_limit_key",
            message="key must be a non-empty string",
            details={"field": "key"},
        )
    if not isinstance(rate_key.resource, str) or not rate_key.resource:
        raise InvalidArgumentError(
            code="invalid_rate_limit_key",
            message="resource must be a non-empty string",
            details={"field": "resource"},
        )
    if isinstance(limit, bool) or not isinstance(limit, numbers.Integral) or limit <= 0:
        raise InvalidArgumentError(
            code="invalid_rate_limit_limit",
            message="limit must be a positive integer",
            details={"field": "limit", "min_value": 1, "actual_value": limit},
        )
    if (
        isinstance(window_seconds, bool)
        or not isinstance(window_seconds, numbers.Real)
        or not math.isfinite(window_seconds)
        or window_seconds <= 0
    ):
        raise InvalidArgumentError(
            code="invalid_rate_limit_window",
            message="window_seconds must be a positive number",
            details={"field": "window_seconds", "actual_value": window_seconds},
        )

    return rate_key
