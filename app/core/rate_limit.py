"""Rate limiting dependency for FastAPI routes.

This module wires the sliding window limiter into the HTTP layer.

Strategy:
- Per-caller trailing window quota (RATE_LIMIT_REQUESTS per RATE_LIMIT_WINDOW_SECONDS),
  counted separately for every route path.
- Caller is the X-API-Key when present, otherwise the client IP.
- When the counting store is unavailable the outcome follows
  RATE_LIMIT_FAILURE_POLICY: ``closed`` rejects with 503, ``open`` admits.
"""

from __future__ import annotations

import logging
import math
from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from app.adapters.rate_limit.factory import create_counting_store
from app.core.config import settings
from app.core.errors import StoreUnavailableError
from app.services.rate_limiter import (
    Denied,
    RateLimitKey,
    SlidingWindowRateLimiter,
    hash_identity,
)

logger = logging.getLogger(__name__)


# Route quotas and caller-supplied decision keys live in disjoint namespaces
# so a decision request can never write into a route quota.
ROUTE_NAMESPACE = "route"
CHECK_NAMESPACE = "check"

_limiter: SlidingWindowRateLimiter | None = None
_limiter_config: tuple | None = None


def get_rate_limiter() -> SlidingWindowRateLimiter:
    """Return the process-wide limiter.

    The counting store is built once and reused so the in-memory backend keeps
    state across requests and the Redis backend keeps its connection pool. A
    change of store-related settings (primarily in tests) rebuilds it.
    """

    global _limiter, _limiter_config

    cfg = settings.rate_limit
    config = (
        cfg.backend,
        cfg.redis_url,
        cfg.store_timeout_seconds,
        cfg.key_prefix,
    )

    if _limiter is None or _limiter_config != config:
        _limiter = SlidingWindowRateLimiter(
            create_counting_store(cfg),
            key_prefix=cfg.key_prefix,
            timeout_seconds=cfg.store_timeout_seconds,
        )
        _limiter_config = config

    return _limiter


def reset_rate_limiter() -> None:
    """Forget the cached limiter so the next call rebuilds it."""

    global _limiter, _limiter_config
    _limiter = None
    _limiter_config = None


def _build_rate_limit_key(request: Request, x_api_key: str | None) -> RateLimitKey:
    if x_api_key:
        identity = f"api_key:{x_api_key}"
    else:
        client_host = request.client.host if request.client else "unknown"
        identity = f"ip:{client_host}"
    return RateLimitKey(identity=identity, resource=f"{ROUTE_NAMESPACE}:{request.url.path}")


def _throttled_headers(decision: Denied, retry_after: int) -> dict[str, str]:
    if not settings.rate_limit.include_headers:
        return {}
    return {
        "Retry-After": str(retry_after),
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": "0",
    }


async def enforce_rate_limit(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency enforcing the per-caller quota.

    Records one request for the caller on the current route. Over quota raises
    HTTP 429. A store outage is resolved here, explicitly, by the configured
    failure policy.

    Raises:
        HTTPException: 429 when the quota is exhausted, 503 when the store is
            unavailable and the failure policy is ``closed``.
    """

    cfg = settings.rate_limit
    if not cfg.enabled:
        return

    limiter = get_rate_limiter()
    key = _build_rate_limit_key(request, x_api_key)
    key_type = "api_key" if x_api_key else "ip"
    identity_hash = hash_identity(key.identity)

    try:
        decision = await limiter.check_and_record_async(
            key, cfg.requests, cfg.window_seconds
        )
    except StoreUnavailableError as exc:
        logger.warning(
            "rate_limit.store_unavailable",
            extra={
                "key_type": key_type,
                "key_hash": identity_hash,
                "policy": cfg.failure_policy,
                "error_code": exc.code,
            },
        )
        if cfg.failure_policy == "open":
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limiting is temporarily unavailable. Try again later.",
            headers={"Retry-After": "1"},
        ) from exc

    if decision.allowed:
        logger.info(
            "rate_limit.allowed",
            extra={
                "key_type": key_type,
                "key_hash": identity_hash,
                "route": request.url.path,
                "limit": decision.limit,
                "remaining": decision.remaining,
                "window_s": cfg.window_seconds,
            },
        )
        return

    retry_after = max(1, math.ceil(decision.retry_after_seconds))
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "key_type": key_type,
            "key_hash": identity_hash,
            "route": request.url.path,
            "limit": decision.limit,
            "window_s": cfg.window_seconds,
            "retry_after_s": retry_after,
        },
    )

    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Rate limit exceeded. Try again later.",
        headers=_throttled_headers(decision, retry_after) or None,
    )
