"""
Rate Limiting for CSI Portal API
================================
Implements rate limiting using slowapi, backed by Redis in deployments
(REDIS_URL=redis://...) and by in-process memory otherwise.

- Every route: RATE_LIMIT_PER_MINUTE per client (default 100/min)
- /auth/login: RATE_LIMIT_AUTH_PER_MINUTE (default 5/min, brute force protection)
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse

from csi_portal.core.config import settings
from csi_portal.core.logging_config import logger


def get_user_identifier(request: Request) -> str:
    """
    Get rate limit key based on user authentication.

    Priority:
    1. Authenticated user ID (set by the auth dependency)
    2. IP address (anonymous and public survey traffic)
    """
    user_id = getattr(request.state, 'user_id', None)
    if user_id:
        return f"user:{user_id}"

    return f"ip:{get_remote_address(request)}"


# Create limiter instance
limiter = Limiter(
    key_func=get_user_identifier,
    default_limits=[f"{settings.RATE_LIMIT_PER_MINUTE}/(1 minute)"],
    storage_uri=settings.REDIS_URL or "memory://",
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Return a JSON 429 with a Retry-After header"""
    retry_after = exc.detail.split(":")[-1].strip() if exc.detail else "60"

    logger.warning(
        f"[RateLimit] Exceeded for {get_user_identifier(request)}: {exc.detail}"
    )

    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": {
                "code": "RATE_LIMIT_EXCEEDED",
                "message": "Too many requests, please try again later.",
                "details": {
                    "limit": str(exc.detail),
                    "retry_after_seconds": int(retry_after) if retry_after.isdigit() else 60,
                },
            },
        },
        headers={"Retry-After": retry_after},
    )


def auth_rate_limit():
    """Rate limit for auth endpoints"""
    return limiter.limit(
        f"{settings.RATE_LIMIT_AUTH_PER_MINUTE}/(1 minute)",
        key_func=get_user_identifier,
    )
