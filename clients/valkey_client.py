"""
Valkey (Redis-compatible) client for short-lived security counters.

Thin wrapper around redis-py. Connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        count = client.incr("otp_attempts:42")
        client.expire("otp_attempts:42", 300)
    """

    def __init__(self, url: str):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(url, decode_responses=True)
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def get(self, key: str) -> str | None:
        """
        Get value by key.

        Returns None if key doesn't exist (not an error).
        """
        return self._client.get(key)

    def delete(self, key: str) -> bool:
        """
        Delete key.

        Returns True if key existed and was deleted, False if key didn't exist.
        """
        return self._client.delete(key) > 0

    def incr(self, key: str) -> int:
        """
        Increment key by 1.

        Creates key with value 1 if it doesn't exist.
        Returns the new value.
        """
        return self._client.incr(key)

    def expire(self, key: str, seconds: int) -> bool:
        """Set key TTL. Returns False if key doesn't exist."""
        return bool(self._client.expire(key, seconds))

    def ttl(self, key: str) -> int:
        """
        Get remaining TTL in seconds.

        Returns:
            -2 if key doesn't exist
            -1 if key has no expiration
            Positive int: remaining seconds
        """
        return self._client.ttl(key)

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
