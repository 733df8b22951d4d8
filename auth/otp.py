"""Email one-time passcodes for the second login factor.

A user has at most one live passcode: issuing a new one deletes the rest.
A passcode verifies once, before it expires, and only with the exact code.

Wrong submissions are counted per user in Valkey. When the count reaches
max_otp_attempts the outstanding passcode is deleted, so a 6-digit code
cannot be brute-forced within its lifetime; the user has to pass the
password step again to get a new one.
"""

import hmac
import logging
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.database import OtpDatabase
from auth.notifications import EmailDispatcher
from auth.otp_generator import generate_code
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.types import OtpChallenge, User
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class OtpAttemptLimiter:
    """Counts wrong passcode submissions per user.

    The counter window matches the passcode lifetime and starts at the
    first wrong guess.
    """

    KEY_PREFIX = "otp_attempts:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._max_attempts = config.max_otp_attempts
        self._window_seconds = config.otp_expiry_minutes * 60

    def _key(self, user_id: UUID) -> str:
        return f"{self.KEY_PREFIX}{user_id}"

    def record_failure(self, user_id: UUID) -> int:
        """Count a wrong guess. Returns the failure count in the current window."""
        key = self._key(user_id)
        count = self._valkey.incr(key)
        if count == 1:
            # First failure, set expiry
            self._valkey.expire(key, self._window_seconds)
        return count

    def is_exhausted(self, count: int) -> bool:
        return count >= self._max_attempts

    def reset(self, user_id: UUID) -> None:
        self._valkey.delete(self._key(user_id))


class OtpService:
    """Issues, delivers and verifies login passcodes."""

    def __init__(
        self,
        config: AuthConfig,
        otp_db: OtpDatabase,
        dispatcher: EmailDispatcher,
        attempt_limiter: OtpAttemptLimiter,
        security_logger: SecurityLogger,
    ):
        self._config = config
        self._otp_db = otp_db
        self._dispatcher = dispatcher
        self._attempt_limiter = attempt_limiter
        self._security_logger = security_logger

    def issue(self, user: User, now: datetime | None = None) -> str:
        """Replace any outstanding passcode with a new one and email it.

        The email is queued, not awaited; delivery problems are logged by
        the dispatcher and never reach the caller.

        Returns:
            The new code. Production callers discard it.
        """
        now = now or now_utc()

        self._otp_db.delete_all_for_user(user.id)

        code = generate_code(self._config.otp_length)
        challenge = OtpChallenge(
            id=uuid4(),
            user_id=user.id,
            code=code,
            created_at=now,
            expires_at=now + timedelta(minutes=self._config.otp_expiry_minutes),
            used=False,
        )
        self._otp_db.save(challenge)
        self._attempt_limiter.reset(user.id)

        self._dispatcher.send_otp(
            user.email,
            code,
            user.username,
            self._config.otp_expiry_minutes,
        )
        return code

    def verify(self, user_id: UUID, submitted_code: str, now: datetime | None = None) -> bool:
        """Consume the user's passcode if `submitted_code` matches.

        Expired, used, missing and mismatched passcodes all return False.
        Only a match mutates state.
        """
        now = now or now_utc()

        challenge = self._otp_db.find_latest_valid(user_id, now)
        if challenge is None:
            return False

        if challenge.used or now > challenge.expires_at:
            return False

        if not hmac.compare_digest(challenge.code.encode(), submitted_code.encode()):
            self._record_wrong_guess(user_id)
            return False

        # A concurrent verify may have consumed it first
        if not self._otp_db.mark_used(challenge.id, now):
            return False

        self._attempt_limiter.reset(user_id)
        return True

    def _record_wrong_guess(self, user_id: UUID) -> None:
        count = self._attempt_limiter.record_failure(user_id)
        if not self._attempt_limiter.is_exhausted(count):
            return

        self._otp_db.delete_all_for_user(user_id)
        self._attempt_limiter.reset(user_id)
        logger.warning(f"OTP burned for user {user_id} after {count} wrong attempts")
        self._security_logger.log(
            SecurityEvent.OTP_ATTEMPTS_EXHAUSTED,
            user_id=user_id,
            success=False,
            detail=f"Passcode invalidated after {count} wrong attempts",
        )

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Delete expired passcodes. Returns count deleted."""
        deleted = self._otp_db.delete_expired(now or now_utc())
        if deleted:
            logger.info(f"Removed {deleted} expired OTP challenges")
        return deleted
