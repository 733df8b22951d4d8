"""Request rate limiting middleware for FastAPI."""

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from auth.client_ip import ClientIpResolver
from auth.rate_limiter import RateLimiter
from auth.exceptions import RateLimitedError
from api.base import error_response, ErrorCodes

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects requests from clients that have spent their token bucket.

    Runs in front of every route, before any business logic. Clients are
    keyed by ClientIpResolver, so X-Forwarded-For only counts when it was
    set by a trusted proxy.
    """

    EXEMPT_PATHS = [
        "/health",
    ]

    def __init__(
        self,
        app,
        rate_limiter: RateLimiter,
        enabled: bool = True,
        ip_resolver: ClientIpResolver | None = None,
    ):
        super().__init__(app)
        self._rate_limiter = rate_limiter
        self._enabled = enabled
        self._ip_resolver = ip_resolver or ClientIpResolver()

    def _is_exempt(self, path: str) -> bool:
        return any(path == exempt or path.startswith(exempt + "/") for exempt in self.EXEMPT_PATHS)

    def client_key(self, request: Request) -> str:
        """Identify the client for rate limiting."""
        return self._ip_resolver.resolve(request) or "unknown"

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        if not self._enabled or self._is_exempt(request.url.path):
            return await call_next(request)

        key = self.client_key(request)
        try:
            self._rate_limiter.check_rate_limit(key)
        except RateLimitedError as e:
            logger.warning(f"Rate limit exceeded for {key} on {request.url.path}")
            return JSONResponse(
                status_code=429,
                headers={"Retry-After": str(e.retry_after_seconds)},
                content=error_response(
                    ErrorCodes.RATE_LIMITED,
                    "Rate limit exceeded. Please try again later.",
                ).model_dump(mode="json"),
            )

        return await call_next(request)
