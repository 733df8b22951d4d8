"""Typed exceptions for auth failures."""

from datetime import datetime


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class UserNotFoundError(AuthError):
    """
    No user matches the given username or email.

    Note: Login responses must not reveal which identifier was wrong
    beyond this; password failures use InvalidCredentialsError.
    """


class ConflictError(AuthError):
    """A unique field is already taken during registration."""

    field: str = ""


class UsernameTakenError(ConflictError):
    """Username already exists."""

    field = "username"

    def __init__(self, message: str = "Username already exists"):
        super().__init__(message)


class EmailTakenError(ConflictError):
    """Email already exists."""

    field = "email"

    def __init__(self, message: str = "Email already exists"):
        super().__init__(message)


class InvalidCredentialsError(AuthError):
    """
    Password or one-time passcode rejected.

    Deliberately covers wrong, expired and already-used passcodes alike so
    callers cannot tell them apart.
    """


class AccountLockedError(AuthError):
    """Account is locked after too many failed attempts."""

    def __init__(self, locked_until: datetime | None):
        self.locked_until = locked_until
        if locked_until is None:
            message = "Account is locked due to too many failed login attempts."
        else:
            message = (
                "Account is locked due to too many failed login attempts. "
                f"Try again after {locked_until.isoformat()}"
            )
        super().__init__(message)


class RateLimitedError(AuthError):
    """Too many requests. Client should wait before retrying."""

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited. Retry after {retry_after_seconds} seconds.")
