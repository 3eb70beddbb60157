"""Rate limiting for Pawtraits APIs.

Two layers share the ``limits`` storage backends:

* ``limiter`` (slowapi) for decorator-level per-route limits.
* ``PublicRateLimiter`` for the expensive public endpoints (AI image
  generation) that need an explicit check/record contract and a
  ``retry_after`` value in the response body.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from fastapi import Request, Response
from limits import RateLimitItemPerSecond
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Get client IP from request, handling proxies.

    Checks X-Forwarded-For first (first hop is the original client), then
    X-Real-IP, then falls back to the direct connection IP.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return get_remote_address(request) or "unknown"


def _get_user_or_ip(request: Request) -> str:
    """
    Rate limit by user ID if authenticated, otherwise by IP.
    """
    if hasattr(request.state, "user") and request.state.user:
        return f"user:{request.state.user.user_id}"
    return f"ip:{get_client_ip(request)}"


@lru_cache
def get_limiter() -> Limiter:
    """
    Create and return a cached slowapi Limiter instance.
    """
    settings = get_settings()

    return Limiter(
        key_func=_get_user_or_ip,
        default_limits=["100/minute"],
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        strategy="fixed-window",
        enabled=settings.RATE_LIMIT_ENABLED,
    )


limiter = get_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Custom handler for rate limit exceeded errors.

    Returns a JSON response with clear error message and retry-after header.
    """
    retry_after = exc.detail.split("per")[0].strip() if exc.detail else "1 minute"

    return JSONResponse(
        status_code=429,
        content={
            "detail": f"Rate limit exceeded. Try again in {retry_after}.",
            "code": "RATE_LIMIT_EXCEEDED",
        },
        headers={
            "Retry-After": str(getattr(exc, "retry_after", 60)),
            "X-RateLimit-Limit": str(getattr(exc, "limit", "unknown")),
        },
    )


# ---------------------------------------------------------------------------
# Fixed-window limiter for expensive public endpoints
# ---------------------------------------------------------------------------


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    reset_at: datetime
    retry_after_seconds: Optional[int] = None


class PublicRateLimiter:
    """Fixed-window counter keyed by client key (IP) + endpoint path.

    ``check_limit`` only reads the window. ``record_request`` is an atomic
    increment-and-compare in the counter store, so concurrent requests at the
    window boundary cannot push the count past ``max_requests``.
    """

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
        storage_uri: Optional[str] = None,
    ):
        settings = get_settings()
        self.max_requests = max_requests or settings.PUBLIC_RATE_LIMIT_MAX_REQUESTS
        self.window_seconds = (
            window_seconds or settings.PUBLIC_RATE_LIMIT_WINDOW_SECONDS
        )
        if self.max_requests <= 0 or self.window_seconds <= 0:
            raise ValueError("Rate limit and window must be positive")
        self._item = RateLimitItemPerSecond(self.max_requests, self.window_seconds)
        self._storage = storage_from_string(
            storage_uri or settings.PUBLIC_RATE_LIMIT_STORAGE_URI
        )
        self._strategy = FixedWindowRateLimiter(self._storage)

    async def _result(self, key: str, endpoint: str, allowed: bool) -> RateLimitResult:
        stats = await self._strategy.get_window_stats(self._item, key, endpoint)
        reset_at = datetime.fromtimestamp(stats.reset_time, tz=timezone.utc)
        retry_after = None
        if not allowed:
            now = datetime.now(timezone.utc)
            retry_after = max(1, int((reset_at - now).total_seconds() + 0.999))
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, stats.remaining),
            limit=self.max_requests,
            reset_at=reset_at,
            retry_after_seconds=retry_after,
        )

    async def check_limit(self, key: str, endpoint: str) -> RateLimitResult:
        """Report whether another request would be allowed, without consuming it."""
        allowed = await self._strategy.test(self._item, key, endpoint)
        return await self._result(key, endpoint, allowed)

    async def record_request(self, key: str, endpoint: str) -> RateLimitResult:
        """Consume one request from the window.

        Returns ``allowed=False`` when the window was already full.
        """
        allowed = await self._strategy.hit(self._item, key, endpoint)
        if not allowed:
            logger.warning(
                "Rate limit reached for %s on %s (%d per %ds)",
                key,
                endpoint,
                self.max_requests,
                self.window_seconds,
            )
        return await self._result(key, endpoint, allowed)

    async def reset(self, key: str, endpoint: str) -> None:
        await self._strategy.clear(self._item, key, endpoint)
