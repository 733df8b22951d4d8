"""HTTP routes for authentication."""

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from auth.client_ip import ClientIpResolver
from auth.service import AuthService
from auth.types import LoginRequest, RegisterRequest, VerifyOtpRequest
from auth.exceptions import (
    AccountLockedError,
    ConflictError,
    InvalidCredentialsError,
    UserNotFoundError,
)
from api.base import success_response, error_response, ErrorCodes


def _error(
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, details).model_dump(mode="json"),
    )


def create_auth_router(
    auth_service: AuthService,
    ip_resolver: ClientIpResolver | None = None,
) -> APIRouter:
    """Create auth router with injected service.

    Handlers are plain functions so FastAPI runs the blocking service calls
    on its worker thread pool.
    """
    ip_resolver = ip_resolver or ClientIpResolver()
    router = APIRouter(tags=["auth"])

    @router.post("/register", status_code=201)
    def register(request: Request, body: RegisterRequest):
        """Create an account. Returns an access token straight away."""
        try:
            result = auth_service.register(
                body,
                ip_address=ip_resolver.resolve_ip(request),
                user_agent=request.headers.get("User-Agent"),
            )
        except ConflictError as e:
            return _error(409, ErrorCodes.ALREADY_EXISTS, str(e), {"field": e.field})

        return success_response(result.model_dump(mode="json"))

    @router.post("/login")
    def login(request: Request, body: LoginRequest):
        """Password step.

        Returns mfa_required=True and no token; the passcode is emailed.
        """
        try:
            result = auth_service.login(
                body,
                ip_address=ip_resolver.resolve_ip(request),
                user_agent=request.headers.get("User-Agent"),
            )
        except UserNotFoundError:
            return _error(404, ErrorCodes.NOT_FOUND, "User not found")
        except AccountLockedError as e:
            locked_until = e.locked_until.isoformat() if e.locked_until else None
            return _error(
                423,
                ErrorCodes.ACCOUNT_LOCKED,
                str(e),
                {"locked_until": locked_until},
            )
        except InvalidCredentialsError:
            return _error(401, ErrorCodes.INVALID_CREDENTIALS, "Invalid username or password")

        return success_response(result.model_dump(mode="json"))

    @router.post("/verify-otp")
    def verify_otp(request: Request, body: VerifyOtpRequest):
        """Passcode step. Returns the access token on success."""
        try:
            result = auth_service.verify_otp(
                body,
                ip_address=ip_resolver.resolve_ip(request),
                user_agent=request.headers.get("User-Agent"),
            )
        except UserNotFoundError:
            return _error(404, ErrorCodes.NOT_FOUND, "User not found")
        except InvalidCredentialsError:
            return _error(401, ErrorCodes.INVALID_CREDENTIALS, "Invalid or expired OTP")

        return success_response(result.model_dump(mode="json"))

    return router
