"""Request/response models for the rate limit decision endpoint."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from app.services.rate_limiter import DEFAULT_RESOURCE, RateLimitDecision


class RateLimitCheckRequest(BaseModel):
    """Ask for one admit/deny decision.

    Range checks on ``limit`` and ``window_seconds`` are done by the limiter so
    bad input is reported with the same error codes as in-process callers get.
    """

    identity: str = Field(
        ...,
        description="Caller identity being limited (user id, API key hash, IP...)",
        examples=["user:42"],
    )
    resource: str = Field(
        DEFAULT_RESOURCE,
        description="Resource or operation the quota applies to",
        examples=["POST /v1/orders"],
    )
    limit: int = Field(..., description="Maximum admitted requests per window", examples=[10])
    window_seconds: float = Field(..., description="Trailing window length in seconds", examples=[60])
    now: float | None = Field(
        None,
        description="Evaluation time in UNIX seconds; server clock when omitted",
    )


class RateLimitCheckResponse(BaseModel):
    """Decision for one request."""

    decision: Literal["allowed", "denied"]
    allowed: bool
    limit: int
    remaining: int = Field(..., description="Requests left in the current window")
    retry_after_seconds: float | None = Field(
        None,
        description="Seconds until the oldest counted request leaves the window (denied only)",
    )

    @classmethod
    def from_decision(cls, decision: RateLimitDecision) -> "RateLimitCheckResponse":
        if decision.allowed:
            return cls(
                decision="allowed",
                allowed=True,
                limit=decision.limit,
                remaining=decision.remaining,
            )
        return cls(
            decision="denied",
            allowed=False,
            limit=decision.limit,
            remaining=0,
            retry_after_seconds=round(decision.retry_after_seconds, 3),
        )


class ReadinessResponse(BaseModel):
    status: Literal["ready"]
    backend: str
