from fastapi import APIRouter, Depends

from app.core.auth import verify_api_key
from app.core.rate_limit import CHECK_NAMESPACE, enforce_rate_limit, get_rate_limiter
from app.schemas.ratelimit import RateLimitCheckRequest, RateLimitCheckResponse
from app.services.rate_limiter import RateLimitKey

router = APIRouter(tags=["Rate Limit"])


def _decision_key(body: RateLimitCheckRequest) -> RateLimitKey:
    # An empty resource is passed through so the limiter rejects it as usual.
    resource = f"{CHECK_NAMESPACE}:{body.resource}" if body.resource else body.resource
    return RateLimitKey(identity=body.identity, resource=resource)


@router.post(
    "/ratelimit/check",
    response_model=RateLimitCheckResponse,
    dependencies=[Depends(verify_api_key), Depends(enforce_rate_limit)],
)
async def check_rate_limit(body: RateLimitCheckRequest) -> RateLimitCheckResponse:
    """Record one request for ``identity`` on ``resource`` if it fits the quota.

    Both outcomes are returned with HTTP 200; the decision is in the body.
    Invalid quotas produce 400. When the counting store is unavailable the
    endpoint answers 503 and leaves the open/closed choice to the caller.
    Keys are kept apart from the per-route quotas this API applies to itself.
    """
    limiter = get_rate_limiter()
    decision = await limiter.check_and_record_async(
        _decision_key(body),
        body.limit,
        body.window_seconds,
        body.now,
    )
    return RateLimitCheckResponse.from_decision(decision)
