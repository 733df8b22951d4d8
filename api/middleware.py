"""Request-scoped middleware for API requests."""

import logging
from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _upstream_request_id(request: Request) -> str | None:
    """Request ID assigned by a fronting proxy, if it is a well-formed UUID."""
    value = request.headers.get(REQUEST_ID_HEADER)
    if not value:
        return None
    try:
        return str(UUID(value))
    except ValueError:
        logger.debug(f"Ignoring malformed {REQUEST_ID_HEADER}: {value!r}")
        return None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags every request with an ID, reusing the proxy's when it sent one."""

    async def dispatch(self, request: Request, call_next):
        request_id = _upstream_request_id(request) or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
