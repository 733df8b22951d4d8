"""Per-client request rate limiting.

Token bucket per client key, refilled lazily on access. Capacity equals the
per-minute request budget and the bucket drips back at capacity/60 tokens a
second, so there is no burst at a calendar-minute boundary.

Buckets live in process memory, owned by the RateLimiter instance. The key
store is bounded: once max_keys buckets exist the least recently used one is
dropped.
"""

import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable

from auth.config import AuthConfig
from auth.exceptions import RateLimitedError


@dataclass
class RateBucket:
    """Token count for one client key."""

    tokens: float
    last_refill_at: float
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class RateLimiter:
    """In-memory token bucket limiter keyed by client (usually source address)."""

    def __init__(
        self,
        capacity: int,
        refill_per_second: float | None = None,
        max_keys: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if max_keys < 1:
            raise ValueError("max_keys must be at least 1")

        self._capacity = float(capacity)
        self._refill_per_second = (
            refill_per_second if refill_per_second is not None else capacity / 60
        )
        if self._refill_per_second <= 0:
            raise ValueError("refill_per_second must be positive")

        self._max_keys = max_keys
        self._clock = clock
        self._buckets: OrderedDict[str, RateBucket] = OrderedDict()
        # Guards only the key store; token arithmetic uses the per-bucket lock
        self._registry_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: AuthConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> "RateLimiter":
        """Build a limiter using the configured per-minute budget."""
        return cls(
            capacity=config.rate_limit_requests_per_minute,
            max_keys=config.rate_limit_max_keys,
            clock=clock,
        )

    @property
    def capacity(self) -> int:
        return int(self._capacity)

    @property
    def tracked_keys(self) -> int:
        """Number of client buckets currently held."""
        return len(self._buckets)

    def _key(self, client_key: str) -> str:
        return client_key.strip().lower()

    def _bucket(self, client_key: str) -> RateBucket:
        """Fetch or create the bucket for a key, evicting the LRU bucket if full."""
        key = self._key(client_key)
        with self._registry_lock:
            bucket = self._buckets.get(key)
            if bucket is not None:
                self._buckets.move_to_end(key)
                return bucket

            bucket = RateBucket(tokens=self._capacity, last_refill_at=self._clock())
            self._buckets[key] = bucket
            while len(self._buckets) > self._max_keys:
                self._buckets.popitem(last=False)
            return bucket

    def _refill(self, bucket: RateBucket, now: float) -> None:
        """Credit tokens for elapsed time. Caller holds bucket.lock."""
        elapsed = max(0.0, now - bucket.last_refill_at)
        bucket.tokens = min(self._capacity, bucket.tokens + elapsed * self._refill_per_second)
        bucket.last_refill_at = now

    def _retry_after(self, bucket: RateBucket) -> int:
        """Whole seconds until the bucket holds one token again."""
        missing = max(0.0, 1.0 - bucket.tokens)
        return max(math.ceil(missing / self._refill_per_second), 1)

    def allow(self, client_key: str) -> bool:
        """Consume one token if available. Returns False when the client is over budget."""
        bucket = self._bucket(client_key)
        with bucket.lock:
            self._refill(bucket, self._clock())
            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return True
            return False

    def check_rate_limit(self, client_key: str) -> None:
        """Consume one token or raise.

        Raises:
            RateLimitedError: If the bucket is empty.
        """
        bucket = self._bucket(client_key)
        with bucket.lock:
            self._refill(bucket, self._clock())
            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return
            retry_after = self._retry_after(bucket)
        raise RateLimitedError(retry_after_seconds=retry_after)

    def get_remaining_tokens(self, client_key: str) -> int:
        """Whole requests the client may make right now, without consuming any."""
        key = self._key(client_key)
        with self._registry_lock:
            bucket = self._buckets.get(key)
        if bucket is None:
            return int(self._capacity)

        with bucket.lock:
            self._refill(bucket, self._clock())
            return int(bucket.tokens)

    def reset_rate_limit(self, client_key: str) -> None:
        """Forget a client's bucket; its next request starts with a full bucket."""
        with self._registry_lock:
            self._buckets.pop(self._key(client_key), None)
