"""Application wiring: secrets → clients → services → FastAPI."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.api import create_auth_router
from auth.client_ip import ClientIpResolver
from auth.config import AuthConfig
from auth.database import OtpDatabase, UserDatabase
from auth.lockout import AccountLockPolicy
from auth.notifications import EmailDispatcher
from auth.otp import OtpAttemptLimiter, OtpService
from auth.passwords import PasswordHasher
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger
from auth.security_middleware import RateLimitMiddleware
from auth.service import AuthService
from auth.tokens import TokenIssuer
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    get_database_url,
    get_email_config,
    get_jwt_secret,
    get_valkey_url,
)

logger = logging.getLogger(__name__)


class OtpCleanupWorker:
    """Periodically deletes expired passcodes, off the request path."""

    def __init__(self, otp_service: OtpService, interval: float):
        self._otp_service = otp_service
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop(), name="otp-cleanup")
        logger.info(f"OTP cleanup started (every {self._interval}s)")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("OTP cleanup stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await asyncio.to_thread(self._otp_service.cleanup_expired)
            except Exception:
                logger.exception("OTP cleanup failed, will retry")


def create_app(config: AuthConfig | None = None) -> FastAPI:
    """Build the application from Vault-provided secrets."""
    config = config or AuthConfig()

    postgres = PostgresClient(get_database_url())
    valkey = ValkeyClient(get_valkey_url())
    email_client = EmailGatewayClient(app_name=config.app_name, **get_email_config())

    security_logger = SecurityLogger(postgres)
    user_db = UserDatabase(postgres)
    dispatcher = EmailDispatcher(email_client, max_workers=config.email_worker_threads)
    otp_service = OtpService(
        config=config,
        otp_db=OtpDatabase(postgres),
        dispatcher=dispatcher,
        attempt_limiter=OtpAttemptLimiter(valkey, config),
        security_logger=security_logger,
    )
    auth_service = AuthService(
        config=config,
        user_db=user_db,
        lock_policy=AccountLockPolicy(config, user_db, security_logger),
        otp_service=otp_service,
        password_hasher=PasswordHasher(),
        token_issuer=TokenIssuer(get_jwt_secret(), config),
        dispatcher=dispatcher,
        security_logger=security_logger,
    )
    ip_resolver = ClientIpResolver(config.trusted_proxies)
    cleanup = OtpCleanupWorker(otp_service, config.otp_cleanup_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await cleanup.start()
        try:
            yield
        finally:
            await cleanup.stop()
            dispatcher.shutdown(wait=True)
            valkey.close()
            postgres.close()

    app = FastAPI(title=config.app_name, lifespan=lifespan)
    register_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        rate_limiter=RateLimiter.from_config(config),
        enabled=config.rate_limit_enabled,
        ip_resolver=ip_resolver,
    )
    app.add_middleware(RequestIDMiddleware)
    app.include_router(create_auth_router(auth_service, ip_resolver), prefix="/auth")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
