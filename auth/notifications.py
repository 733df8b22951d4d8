"""Fire-and-forget delivery of security emails.

Sends run on a small thread pool so a slow gateway never holds up a login
response. Delivery failures are logged here and go no further.
"""

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable

from clients.email_client import EmailGatewayClient, EmailGatewayError

logger = logging.getLogger(__name__)


class EmailDispatcher:
    """Queues passcode and welcome emails for background delivery."""

    def __init__(
        self,
        email_client: EmailGatewayClient,
        max_workers: int = 4,
        executor: Executor | None = None,
    ):
        self._email_client = email_client
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="email-dispatch",
        )

    def _deliver(self, description: str, send: Callable[..., None], *args) -> bool:
        try:
            send(*args)
        except EmailGatewayError as e:
            logger.error(f"Delivery failed for {description}: {e}")
            return False
        return True

    def _submit(self, description: str, send: Callable[..., None], *args) -> Future | None:
        try:
            return self._executor.submit(self._deliver, description, send, *args)
        except RuntimeError as e:
            # Executor already shut down
            logger.error(f"Could not queue {description}: {e}")
            return None

    def send_otp(self, email: str, code: str, username: str, ttl_minutes: int) -> Future | None:
        """Queue a login passcode email. The returned future resolves to True on delivery."""
        return self._submit(
            f"OTP email to {email}",
            self._email_client.send_otp,
            email,
            code,
            username,
            ttl_minutes,
        )

    def send_welcome(self, email: str, username: str) -> Future | None:
        """Queue a welcome email."""
        return self._submit(
            f"welcome email to {email}",
            self._email_client.send_welcome,
            email,
            username,
        )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
