"""Shared test fixtures for the account-security test suite.

Postgres and Valkey are replaced by in-memory stores that honour the same
contracts as UserDatabase, OtpDatabase and ValkeyClient, including the
per-row atomicity of update_security_state.
"""

import threading
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock
from uuid import UUID, uuid4

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from auth.config import AuthConfig
from auth.lockout import AccountLockPolicy
from auth.notifications import EmailDispatcher
from auth.otp import OtpAttemptLimiter, OtpService
from auth.passwords import PasswordHasher
from auth.security_logger import SecurityLogger
from auth.service import AuthService
from auth.tokens import TokenIssuer
from auth.types import OtpChallenge, Role, User


# =============================================================================
# CONSTANTS
# =============================================================================

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
TEST_PASSWORD = "Secret123!"
TEST_JWT_SECRET = "test-jwt-secret-with-at-least-32-bytes!"


# =============================================================================
# IN-MEMORY INFRASTRUCTURE
# =============================================================================


class InMemoryUserDatabase:
    """Dict-backed stand-in for UserDatabase."""

    def __init__(self):
        self._users: dict[UUID, User] = {}
        self._lock = threading.Lock()
        self.security_writes = 0

    def find_by_username_or_email(self, username_or_email: str) -> User | None:
        for user in self._users.values():
            if user.username == username_or_email or user.email == username_or_email.lower():
                return user
        return None

    def get_by_id(self, user_id: UUID) -> User | None:
        return self._users.get(user_id)

    def exists_by_username(self, username: str) -> bool:
        return any(u.username == username for u in self._users.values())

    def exists_by_email(self, email: str) -> bool:
        return any(u.email == email.lower() for u in self._users.values())

    def save(self, user: User) -> User:
        with self._lock:
            self._users[user.id] = user
        return user

    def delete(self, user: User) -> bool:
        with self._lock:
            return self._users.pop(user.id, None) is not None

    def update_security_state(self, user_id, mutate):
        with self._lock:
            current = self._users.get(user_id)
            if current is None:
                return None
            updated = mutate(current)
            if updated is None:
                return current
            self._users[user_id] = updated
            self.security_writes += 1
            return updated


class InMemoryOtpDatabase:
    """List-backed stand-in for OtpDatabase."""

    def __init__(self):
        self._challenges: list[OtpChallenge] = []
        self._lock = threading.Lock()

    def all_for_user(self, user_id: UUID) -> list[OtpChallenge]:
        return [c for c in self._challenges if c.user_id == user_id]

    def delete_all_for_user(self, user_id: UUID) -> int:
        with self._lock:
            before = len(self._challenges)
            self._challenges = [c for c in self._challenges if c.user_id != user_id]
            return before - len(self._challenges)

    def save(self, challenge: OtpChallenge) -> None:
        with self._lock:
            self._challenges.append(challenge)

    def find_latest_valid(self, user_id: UUID, now: datetime) -> OtpChallenge | None:
        candidates = [
            c for c in self.all_for_user(user_id)
            if not c.used and c.expires_at >= now
        ]
        return max(candidates, key=lambda c: c.created_at, default=None)

    def mark_used(self, challenge_id: UUID, used_at: datetime) -> bool:
        with self._lock:
            for i, challenge in enumerate(self._challenges):
                if challenge.id == challenge_id and not challenge.used:
                    self._challenges[i] = challenge.model_copy(update={"used": True})
                    return True
            return False

    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            before = len(self._challenges)
            self._challenges = [c for c in self._challenges if c.expires_at >= now]
            return before - len(self._challenges)


class FakeValkey:
    """Counter subset of ValkeyClient. TTLs are recorded, never enforced."""

    def __init__(self):
        self.values: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key: str) -> str | None:
        value = self.values.get(key)
        return None if value is None else str(value)

    def incr(self, key: str) -> int:
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    def expire(self, key: str, seconds: int) -> bool:
        if key not in self.values:
            return False
        self.ttls[key] = seconds
        return True

    def ttl(self, key: str) -> int:
        if key not in self.values:
            return -2
        return self.ttls.get(key, -1)

    def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.values.pop(key, None) is not None


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def config() -> AuthConfig:
    return AuthConfig()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def user_db() -> InMemoryUserDatabase:
    return InMemoryUserDatabase()


@pytest.fixture
def otp_db() -> InMemoryOtpDatabase:
    return InMemoryOtpDatabase()


@pytest.fixture
def valkey() -> FakeValkey:
    return FakeValkey()


@pytest.fixture
def security_logger():
    """Mock audit sink - assertions inspect log calls."""
    return Mock(spec=SecurityLogger)


@pytest.fixture
def dispatcher():
    """Mock email dispatcher - no emails queued in tests."""
    return Mock(spec=EmailDispatcher)


@pytest.fixture
def password_hasher() -> PasswordHasher:
    # Minimum bcrypt cost keeps the suite fast
    return PasswordHasher(rounds=4)


@pytest.fixture
def token_issuer(config) -> TokenIssuer:
    return TokenIssuer(TEST_JWT_SECRET, config)


@pytest.fixture
def make_user(user_db, password_hasher):
    """Create and store a user with a known password."""

    def _make(
        username: str = "alice",
        email: str = "a@x.com",
        password: str = TEST_PASSWORD,
        **fields,
    ) -> User:
        user = User(
            id=uuid4(),
            fullname=fields.pop("fullname", "Alice"),
            username=username,
            email=email,
            password_hash=password_hasher.hash(password),
            role=fields.pop("role", Role.VIEWER),
            created_at=NOW,
            **fields,
        )
        return user_db.save(user)

    return _make


@pytest.fixture
def lock_policy(config, user_db, security_logger) -> AccountLockPolicy:
    return AccountLockPolicy(config, user_db, security_logger)


@pytest.fixture
def attempt_limiter(valkey, config) -> OtpAttemptLimiter:
    return OtpAttemptLimiter(valkey, config)


@pytest.fixture
def otp_service(config, otp_db, dispatcher, attempt_limiter, security_logger) -> OtpService:
    return OtpService(
        config=config,
        otp_db=otp_db,
        dispatcher=dispatcher,
        attempt_limiter=attempt_limiter,
        security_logger=security_logger,
    )


@pytest.fixture
def auth_service(
    config,
    user_db,
    lock_policy,
    otp_service,
    password_hasher,
    token_issuer,
    dispatcher,
    security_logger,
) -> AuthService:
    """AuthService over in-memory stores with mocked email and audit."""
    return AuthService(
        config=config,
        user_db=user_db,
        lock_policy=lock_policy,
        otp_service=otp_service,
        password_hasher=password_hasher,
        token_issuer=token_issuer,
        dispatcher=dispatcher,
        security_logger=security_logger,
    )


@pytest.fixture
def sent_codes(dispatcher):
    """Codes handed to the dispatcher, oldest first."""

    def _codes() -> list[str]:
        return [call.args[1] for call in dispatcher.send_otp.call_args_list]

    return _codes


@pytest.fixture
def password() -> str:
    return TEST_PASSWORD


@pytest.fixture
def jwt_secret() -> str:
    return TEST_JWT_SECRET
