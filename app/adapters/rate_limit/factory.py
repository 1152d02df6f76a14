"""Factory for creating counting store instances."""

from app.adapters.rate_limit.base import AbstractCountingStore
from app.adapters.rate_limit.in_memory import InMemoryCountingStore
from app.adapters.rate_limit.redis_store import RedisCountingStore
from app.core.config import RateLimitSettings
from app.core.errors import ValidationAppError


def create_counting_store(rate_limit_settings: RateLimitSettings) -> AbstractCountingStore:
    """Instantiate the counting store selected by configuration.

    Args:
        rate_limit_settings: Resolved rate limit settings.

    Returns:
        AbstractCountingStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend name is not supported.
    """
    backend = rate_limit_settings.backend.lower()

    if backend == "memory":
        return InMemoryCountingStore()

    if backend == "redis":
        return RedisCountingStore(
            url=rate_limit_settings.redis_url,
            timeout_seconds=rate_limit_settings.store_timeout_seconds,
        )

    raise ValidationAppError(
        code="rate_limit_unknown_backend",
        message=(
            f"Unknown rate limit backend: '{backend}'. Supported backends: memory, redis"
        ),
    )
