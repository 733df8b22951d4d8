"""Password hashing and verification (bcrypt)."""

import bcrypt

# bcrypt only reads the first 72 bytes of its input
MAX_PASSWORD_BYTES = 72


def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


class PasswordHasher:
    """Hashes new passwords and checks submitted ones against stored hashes."""

    def __init__(self, rounds: int = 12):
        self._rounds = rounds

    def hash(self, password: str) -> str:
        """
        Raises:
            ValueError: If the password exceeds MAX_PASSWORD_BYTES once encoded.
        """
        if password_too_long(password):
            raise ValueError(f"password cannot be longer than {MAX_PASSWORD_BYTES} bytes")
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        """True if the password matches. Malformed hashes and over-long passwords never match."""
        if password_too_long(password):
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False
