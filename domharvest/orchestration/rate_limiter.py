"""Token-bucket rate limiter for navigation admission.

Buckets refill continuously from elapsed time, computed lazily on each
acquire, so no background timer is needed. Limits can be global, per target
domain, or both; a request must pass every configured gate.

Admission within one bucket is FIFO: asyncio.Lock wakes waiters in arrival
order and a waiter keeps the lock while it sleeps for its token.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

from ..core.config import LimitSpec, RateLimitConfig

logger = logging.getLogger(__name__)

GLOBAL_KEY = "*"


class TokenBucket:
    """A single token bucket."""

    def __init__(
        self,
        capacity: int,
        refill_rate: float,
        key: str = GLOBAL_KEY,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the bucket full.

        Args:
            capacity: Maximum number of stored tokens.
            refill_rate: Tokens added per second.
            key: Scope key (global or a domain).
            clock: Monotonic time source in seconds.
        """
        if capacity < 1 or refill_rate <= 0:
            raise ValueError("Token bucket needs capacity >= 1 and refill_rate > 0")

        self.capacity = capacity
        self.refill_rate = refill_rate
        self.key = key
        self._clock = clock
        self.tokens = float(capacity)
        self.last_refill = clock()
        self.total_acquired = 0
        self.total_waited = 0.0
        self._lock = asyncio.Lock()

    @classmethod
    def from_spec(cls, spec: LimitSpec, key: str = GLOBAL_KEY) -> "TokenBucket":
        return cls(capacity=spec.requests, refill_rate=spec.refill_rate, key=key)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill
        if elapsed > 0:
            self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self) -> float:
        """Wait for a token and consume it.

        Returns:
            Seconds spent waiting.
        """
        waited = 0.0
        async with self._lock:
            while True:
                self._refill()
                if self.tokens >= 1:
                    self.tokens -= 1
                    self.total_acquired += 1
                    self.total_waited += waited
                    return waited

                delay = (1 - self.tokens) / self.refill_rate
                logger.debug(f"Rate limit bucket {self.key} empty, waiting {delay:.3f}s")
                await asyncio.sleep(delay)
                waited += delay


class RateLimiter:
    """Global and per-domain admission control.

    Features:
    - Optional global bucket shared by every request
    - Optional per-domain buckets, created lazily per host
    - Buckets for different keys never block each other
    """

    def __init__(
        self,
        global_limit: Optional[LimitSpec] = None,
        per_domain: Optional[LimitSpec] = None,
    ):
        """Initialize the rate limiter.

        Args:
            global_limit: Limit applied to every request.
            per_domain: Limit applied per target host.
        """
        self._global_limit = global_limit
        self._per_domain = per_domain
        self._global_bucket = TokenBucket.from_spec(global_limit) if global_limit else None
        self._domain_buckets: dict[str, TokenBucket] = {}

    @classmethod
    def from_config(cls, config: "RateLimitConfig | dict[str, Any] | None") -> "RateLimiter":
        """Build from a RateLimitConfig or its dict form."""
        if config is None:
            return cls()
        if isinstance(config, dict):
            config = RateLimitConfig.from_dict(config)
        return cls(global_limit=config.global_limit, per_domain=config.per_domain)

    @property
    def enabled(self) -> bool:
        return self._global_bucket is not None or self._per_domain is not None

    @staticmethod
    def domain_key(url: str) -> str:
        """Scope key for a target URL (its lowercased host)."""
        host = urlsplit(url).hostname
        return host.lower() if host else url

    def _get_or_create_bucket(self, key: str) -> TokenBucket:
        """Get or create the bucket for a domain."""
        # No await between lookup and insert, so creation is atomic on the loop
        if key not in self._domain_buckets:
            self._domain_buckets[key] = TokenBucket.from_spec(self._per_domain, key=key)
        return self._domain_buckets[key]

    async def acquire(self, url: str) -> float:
        """Wait until the request for `url` passes every configured gate.

        Args:
            url: Target URL of the request.

        Returns:
            Total seconds spent waiting.
        """
        waited = 0.0
        if self._global_bucket is not None:
            waited += await self._global_bucket.acquire()
        if self._per_domain is not None:
            waited += await self._get_or_create_bucket(self.domain_key(url)).acquire()

        if waited > 0:
            logger.debug(f"Admitted {url} after {waited:.3f}s rate limit wait")
        return waited

    def get_status(self) -> dict[str, Any]:
        """Get current rate limiter status."""

        def bucket_status(bucket: TokenBucket) -> dict[str, Any]:
            return {
                "capacity": bucket.capacity,
                "refill_rate": bucket.refill_rate,
                "tokens": round(bucket.tokens, 3),
                "total_acquired": bucket.total_acquired,
                "total_waited": round(bucket.total_waited, 3),
            }

        return {
            "global": bucket_status(self._global_bucket) if self._global_bucket else None,
            "domains": {
                key: bucket_status(bucket) for key, bucket in self._domain_buckets.items()
            },
        }

    def reset(self) -> None:
        """Drop all bucket state."""
        if self._global_limit:
            self._global_bucket = TokenBucket.from_spec(self._global_limit)
        self._domain_buckets.clear()
