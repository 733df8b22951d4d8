"""Numeric one-time passcode generation."""

import secrets

DEFAULT_OTP_LENGTH = 6


def generate_code(length: int = DEFAULT_OTP_LENGTH) -> str:
    """Return a string of exactly `length` random decimal digits.

    Leading zeros are allowed. Non-positive lengths fall back to 6.
    """
    if length <= 0:
        length = DEFAULT_OTP_LENGTH
    return "".join(str(secrets.randbelow(10)) for _ in range(length))
