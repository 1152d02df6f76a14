"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before anything imports ``app.core.config`` so
the global settings object is built from them.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")

os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "100")
os.environ.setdefault("RATE_LIMIT_WINDOW_SECONDS", "60")

import pytest  # noqa: E402

from app.core.rate_limit import reset_rate_limiter  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_rate_limiter():
    """Start every test with an empty process-wide limiter."""
    reset_rate_limiter()
    yield
    reset_rate_limiter()
