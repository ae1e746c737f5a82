"""Rate limiting configuration using slowapi.

Security: Limits how often a client can hit the OAuth callback, which
triggers a code exchange against the gateway on every request.

Requests are keyed by client IP. The callback runs before any session
exists, so there is no user identity to key on.

Usage in routers:
    from app.core.rate_limiting import limiter

    @router.get("/auth/callback")
    @limiter.limit(lambda: settings.rate_limit_oauth_callback)
    async def oauth_callback(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from app.core.config import settings

# Global limiter instance
# Configured with in-memory storage (suitable for single-instance deployment)
# For multi-instance, configure Redis storage via RATELIMIT_STORAGE_URL
limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Security: Returns 429 Too Many Requests with standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # Retry-After is the length of the limit window (e.g. 3600 for "20/hour").
    # Fallback to 60 seconds if the limit is not attached
    try:
        retry_after = str(int(exc.limit.limit.get_expiry()))
    except (AttributeError, TypeError, ValueError):
        retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": retry_after},
    )
