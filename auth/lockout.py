"""Account lockout for brute force protection.

Failed password attempts are counted in a sliding window: a failure more
than failure_window_minutes after the previous one starts the count again.
Reaching max_failed_attempts locks the account for lock_duration_minutes.

Lock state is derived, not read: an account whose locked_until has passed is
open even if the stored flag still says locked. lock_status() and reconcile()
are pure; refresh(), record_failure() and record_success() persist through
UserDatabase.update_security_state, which applies the transition to the
row-locked current state.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import NamedTuple

from auth.config import AuthConfig
from auth.database import UserDatabase
from auth.exceptions import UserNotFoundError
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.types import User
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class LockState(Enum):
    OPEN = "open"
    LOCKED = "locked"


class LockStatus(NamedTuple):
    """Result of a lock check."""

    state: LockState
    locked_until: datetime | None = None

    @property
    def is_locked(self) -> bool:
        return self.state is LockState.LOCKED


def _is_reset(user: User) -> bool:
    return (
        user.failed_attempts == 0
        and user.last_failed_at is None
        and not user.locked
        and user.locked_until is None
    )


def _cleared(user: User) -> User:
    return user.model_copy(
        update={
            "failed_attempts": 0,
            "last_failed_at": None,
            "locked": False,
            "locked_until": None,
        }
    )


class AccountLockPolicy:
    """Sliding-window failure counting and timed lockout."""

    def __init__(
        self,
        config: AuthConfig,
        user_db: UserDatabase,
        security_logger: SecurityLogger,
    ):
        self._config = config
        self._user_db = user_db
        self._security_logger = security_logger
        self._window = timedelta(minutes=config.failure_window_minutes)
        self._lock_duration = timedelta(minutes=config.lock_duration_minutes)

    # -- pure -----------------------------------------------------------------

    def lock_status(self, user: User, now: datetime) -> LockStatus:
        """Authoritative lock state at `now`. No side effects."""
        if not user.locked:
            return LockStatus(LockState.OPEN)
        if user.locked_until is not None and now > user.locked_until:
            return LockStatus(LockState.OPEN)
        return LockStatus(LockState.LOCKED, user.locked_until)

    def is_usable(self, user: User, now: datetime) -> bool:
        return not self.lock_status(user, now).is_locked

    def reconcile(self, user: User, now: datetime) -> User:
        """State with an expired lock cleared; the same object if nothing changes."""
        if user.locked and not self.lock_status(user, now).is_locked:
            return _cleared(user)
        return user

    def apply_failure(self, user: User, now: datetime) -> User:
        """State after one more failed attempt at `now`."""
        attempts = user.failed_attempts
        if user.last_failed_at is not None and user.last_failed_at + self._window < now:
            attempts = 0
        attempts += 1

        update = {"failed_attempts": attempts, "last_failed_at": now}
        if attempts >= self._config.max_failed_attempts:
            update["locked"] = True
            update["locked_until"] = now + self._lock_duration
        return user.model_copy(update=update)

    # -- persisted --------------------------------------------------------------

    def refresh(self, user: User, now: datetime | None = None) -> User:
        """Persist the auto-unlock of an expired lock, if one is due.

        Call before branching on is_usable so the stored row agrees with the
        derived state.
        """
        now = now or now_utc()
        if self.reconcile(user, now) is user:
            return user

        def mutate(current: User) -> User | None:
            reconciled = self.reconcile(current, now)
            return None if reconciled is current else reconciled

        stored = self._user_db.update_security_state(user.id, mutate)
        if stored is None:
            raise UserNotFoundError("User not found")
        logger.info(f"Lock expired for user {user.username}, account reopened")
        return stored

    def record_failure(self, user: User, now: datetime | None = None) -> User:
        """Count a failed password attempt, locking the account at the threshold."""
        now = now or now_utc()

        stored = self._user_db.update_security_state(
            user.id, lambda current: self.apply_failure(current, now)
        )
        if stored is None:
            raise UserNotFoundError("User not found")

        if stored.locked and stored.failed_attempts >= self._config.max_failed_attempts:
            logger.warning(
                f"ACCOUNT LOCKED: {stored.username} until {stored.locked_until.isoformat()}"
            )
            self._security_logger.log(
                SecurityEvent.ACCOUNT_LOCKED,
                user_id=stored.id,
                username=stored.username,
                success=True,
                detail="Account locked due to too many failed login attempts",
            )
        return stored

    def record_success(self, user: User) -> User:
        """Clear failure and lock fields. Writes nothing if already clear."""
        if _is_reset(user):
            return user

        stored = self._user_db.update_security_state(
            user.id, lambda current: None if _is_reset(current) else _cleared(current)
        )
        if stored is None:
            raise UserNotFoundError("User not found")
        return stored
