"""
Rate limiting configuration and setup.

Uses slowapi. Money-moving submissions (withdrawal and deposit requests)
get the tighter HEAVY limit; everything else falls under the default.
"""

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from coinvault.core.config import settings

DEFAULT_RATE_LIMIT = settings.rate_limit_default
HEAVY_RATE_LIMIT = settings.rate_limit_heavy


def _account_or_address(request: Request) -> str:
    """Key by the gateway-supplied account id, falling back to the client IP."""
    account_id = request.headers.get("X-Account-Id")
    if account_id:
        return f"account:{account_id}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=_account_or_address,
    default_limits=[DEFAULT_RATE_LIMIT],
    enabled=settings.rate_limit_enabled,
)


async def rate_limit_exceeded_handler(
    _request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """Return a 429 in the same error envelope as the domain handlers."""
    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded", "detail": str(exc.detail)},
    )
