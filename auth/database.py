"""Database operations for authentication.

Tables: users, otp_challenges. Both are read before any user is
authenticated. Lock-state writes go through update_security_state so the
read-decide-write sequence holds a row lock for its whole duration.
"""

from datetime import datetime
from typing import Any, Callable, Dict
from uuid import UUID

from clients.postgres_client import PostgresClient
from auth.types import OtpChallenge, Role, User
from utils.timezone import to_utc

_USER_COLUMNS = """id, fullname, username, email, password_hash, role,
                   failed_attempts, last_failed_at, locked, locked_until, created_at"""

_OTP_COLUMNS = "id, user_id, code, created_at, expires_at, used"


def _as_uuid(value: Any) -> UUID:
    return UUID(value) if isinstance(value, str) else value


def _row_to_user(row: Dict[str, Any]) -> User:
    return User(
        id=_as_uuid(row["id"]),
        fullname=row["fullname"],
        username=row["username"],
        email=row["email"],
        password_hash=row["password_hash"],
        role=Role(row["role"]),
        failed_attempts=row["failed_attempts"] or 0,
        last_failed_at=to_utc(row["last_failed_at"]),
        locked=row["locked"],
        locked_until=to_utc(row["locked_until"]),
        created_at=to_utc(row["created_at"]),
    )


def _row_to_challenge(row: Dict[str, Any]) -> OtpChallenge:
    return OtpChallenge(
        id=_as_uuid(row["id"]),
        user_id=_as_uuid(row["user_id"]),
        code=row["code"],
        created_at=to_utc(row["created_at"]),
        expires_at=to_utc(row["expires_at"]),
        used=row["used"],
    )


class UserDatabase:
    """User persistence, including the account-security columns."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def find_by_username_or_email(self, username_or_email: str) -> User | None:
        """Find user by exact username or case-insensitive email."""
        row = self._db.execute_single(
            f"""SELECT {_USER_COLUMNS}
                FROM users
                WHERE username = %s OR email = lower(%s)
                LIMIT 1""",
            (username_or_email, username_or_email),
        )
        return _row_to_user(row) if row else None

    def get_by_id(self, user_id: UUID) -> User | None:
        """Find user by ID."""
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
            (str(user_id),),
        )
        return _row_to_user(row) if row else None

    def exists_by_username(self, username: str) -> bool:
        row = self._db.execute_single(
            "SELECT 1 AS found FROM users WHERE username = %s",
            (username,),
        )
        return row is not None

    def exists_by_email(self, email: str) -> bool:
        row = self._db.execute_single(
            "SELECT 1 AS found FROM users WHERE email = lower(%s)",
            (email,),
        )
        return row is not None

    def save(self, user: User) -> User:
        """Insert the user, or overwrite every column if the ID exists."""
        rows = self._db.execute_returning(
            f"""INSERT INTO users ({_USER_COLUMNS})
                VALUES (%s, %s, %s, lower(%s), %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    fullname = EXCLUDED.fullname,
                    username = EXCLUDED.username,
                    email = EXCLUDED.email,
                    password_hash = EXCLUDED.password_hash,
                    role = EXCLUDED.role,
                    failed_attempts = EXCLUDED.failed_attempts,
                    last_failed_at = EXCLUDED.last_failed_at,
                    locked = EXCLUDED.locked,
                    locked_until = EXCLUDED.locked_until
                RETURNING {_USER_COLUMNS}""",
            (
                str(user.id),
                user.fullname,
                user.username,
                user.email,
                user.password_hash,
                user.role.value,
                user.failed_attempts,
                user.last_failed_at,
                user.locked,
                user.locked_until,
                user.created_at,
            ),
        )
        return _row_to_user(rows[0])

    def delete(self, user: User) -> bool:
        """Delete user. Returns True if a row was removed."""
        rows = self._db.execute_returning(
            "DELETE FROM users WHERE id = %s RETURNING id",
            (str(user.id),),
        )
        return len(rows) > 0

    def update_security_state(
        self,
        user_id: UUID,
        mutate: Callable[[User], User | None],
    ) -> User | None:
        """Atomically read, transform and write a user's lock fields.

        The row is selected FOR UPDATE, so concurrent callers for the same
        user run one after another, each seeing the previous one's write.
        `mutate` receives the fresh row and returns the new state, or None
        to leave the row untouched.

        Returns:
            The stored state after the call, or None if the user is gone.
        """
        with self._db.transaction() as cur:
            cur.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s FOR UPDATE",
                (str(user_id),),
            )
            row = cur.fetchone()
            if row is None:
                return None

            current = _row_to_user(dict(row))
            updated = mutate(current)
            if updated is None:
                return current

            cur.execute(
                """UPDATE users
                   SET failed_attempts = %s, last_failed_at = %s,
                       locked = %s, locked_until = %s
                   WHERE id = %s""",
                (
                    updated.failed_attempts,
                    updated.last_failed_at,
                    updated.locked,
                    updated.locked_until,
                    str(user_id),
                ),
            )
            return updated


class OtpDatabase:
    """Storage for issued login passcodes."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def delete_all_for_user(self, user_id: UUID) -> int:
        """Delete every challenge for a user. Returns count deleted."""
        rows = self._db.execute_returning(
            "DELETE FROM otp_challenges WHERE user_id = %s RETURNING id",
            (str(user_id),),
        )
        return len(rows)

    def save(self, challenge: OtpChallenge) -> None:
        self._db.execute_returning(
            f"""INSERT INTO otp_challenges ({_OTP_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id""",
            (
                str(challenge.id),
                str(challenge.user_id),
                challenge.code,
                challenge.created_at,
                challenge.expires_at,
                challenge.used,
            ),
        )

    def find_latest_valid(self, user_id: UUID, now: datetime) -> OtpChallenge | None:
        """Newest unused, unexpired challenge for the user."""
        row = self._db.execute_single(
            f"""SELECT {_OTP_COLUMNS}
                FROM otp_challenges
                WHERE user_id = %s AND used = false AND expires_at >= %s
                ORDER BY created_at DESC
                LIMIT 1""",
            (str(user_id), now),
        )
        return _row_to_challenge(row) if row else None

    def find_by_user_and_code(self, user_id: UUID, code: str) -> OtpChallenge | None:
        """Newest unused challenge for the user with this exact code."""
        row = self._db.execute_single(
            f"""SELECT {_OTP_COLUMNS}
                FROM otp_challenges
                WHERE user_id = %s AND code = %s AND used = false
                ORDER BY created_at DESC
                LIMIT 1""",
            (str(user_id), code),
        )
        return _row_to_challenge(row) if row else None

    def mark_used(self, challenge_id: UUID, used_at: datetime) -> bool:
        """Flip used to true. Only the first caller for a challenge gets True."""
        rows = self._db.execute_returning(
            """UPDATE otp_challenges
               SET used = true, used_at = %s
               WHERE id = %s AND used = false
               RETURNING id""",
            (used_at, str(challenge_id)),
        )
        return len(rows) > 0

    def delete_expired(self, now: datetime) -> int:
        """Delete expired challenges. Returns count deleted."""
        rows = self._db.execute_returning(
            "DELETE FROM otp_challenges WHERE expires_at < %s RETURNING id",
            (now,),
        )
        return len(rows)
