"""Application factory for the rate limit API.

Builds the FastAPI app in one place (logging, middleware, handlers, routers,
docs) so tests can create fresh instances.
"""

from __future__ import annotations

from fastapi import FastAPI

from app.api.routes import health_router, ratelimit_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Sliding Window Rate Limit API",
        description=(
            "Distributed sliding window rate limiter. Decides whether a caller "
            "may make one more request within a trailing time window, counting "
            "in a shared store so the quota holds across every API replica."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(ratelimit_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
