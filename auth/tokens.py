"""Signed access tokens (HS256 JWT)."""

from datetime import timedelta

import jwt

from auth.config import AuthConfig
from auth.exceptions import InvalidCredentialsError
from auth.types import TokenClaims
from utils.timezone import now_utc

ALGORITHM = "HS256"


class TokenIssuer:
    """Issues and checks the bearer tokens handed out after login."""

    def __init__(self, secret: str, config: AuthConfig):
        if not secret:
            raise ValueError("secret is required")
        self._secret = secret
        self._config = config

    def issue(self, subject: str, claims: TokenClaims) -> str:
        """Sign a token for `subject` (the username) carrying the typed claims."""
        now = now_utc()
        payload = {
            "iss": self._config.token_issuer,
            "sub": subject,
            "iat": int(now.timestamp()),
            "nbf": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=self._config.token_expiry_minutes)).timestamp()),
            "user_id": str(claims.user_id),
            "email": claims.email,
            "role": claims.role.value,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def decode(self, token: str) -> TokenClaims:
        """Verify signature, issuer and expiry.

        Raises:
            InvalidCredentialsError: If the token is invalid or expired.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=self._config.token_issuer,
            )
        except jwt.PyJWTError as e:
            raise InvalidCredentialsError(f"Invalid token: {e}")

        return TokenClaims(
            user_id=payload["user_id"],
            email=payload["email"],
            role=payload["role"],
        )
