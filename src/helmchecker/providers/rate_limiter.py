"""Token bucket rate limiting for provider calls."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from helmchecker.providers.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class TokenBucket:
    """Token bucket with continuous refill.

    - The bucket starts full at ``capacity`` tokens
    - Tokens refill at ``refill_rate`` per second, never above capacity
    - A caller waits until enough tokens are available, then consumes them
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the bucket.

        Args:
            capacity: Maximum tokens in bucket (burst capacity)
            refill_rate: Tokens added per second
            clock: Monotonic time source

        Example:
            TokenBucket(60, 1.0) admits a burst of 60, then one per second
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if refill_rate <= 0:
            raise ValueError(f"refill_rate must be positive, got {refill_rate}")

        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self._clock = clock
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
            self._last_refill = now

    def _wait_time(self, tokens: float) -> float:
        """Seconds until ``tokens`` are available. Caller must hold _lock."""
        self._refill()
        if self._tokens >= tokens:
            return 0.0
        return (tokens - self._tokens) / self.refill_rate

    async def try_acquire(self, tokens: float = 1.0) -> bool:
        """Consume tokens if available right now, without waiting."""
        async with self._lock:
            if self._wait_time(tokens) > 0:
                return False
            self._tokens -= tokens
            return True

    async def wait_time(self, tokens: float = 1.0) -> float:
        """Seconds a caller would currently have to wait for ``tokens``."""
        async with self._lock:
            return self._wait_time(tokens)

    async def acquire(self, tokens: float = 1.0, timeout: float | None = None) -> None:
        """Wait for and consume tokens.

        Args:
            tokens: Number of tokens to consume
            timeout: Maximum seconds to wait (None = wait indefinitely)

        Raises:
            ValueError: If more tokens are requested than the bucket holds
            RateLimitExceededError: If the wait would exceed ``timeout``;
                nothing is consumed in that case
        """
        if tokens > self.capacity:
            raise ValueError(f"cannot acquire {tokens} tokens from a bucket of {self.capacity}")

        deadline = None if timeout is None else self._clock() + timeout
        while True:
            async with self._lock:
                wait = self._wait_time(tokens)
                if wait <= 0:
                    self._tokens -= tokens
                    return
                if deadline is not None and self._clock() + wait > deadline:
                    raise RateLimitExceededError(
                        None,
                        f"{self.capacity:g} tokens at {self.refill_rate:g}/s",
                        retry_after=wait,
                    )

            # Sleep outside the lock so other callers can make progress
            logger.debug(f"Rate limit wait {wait:.3f}s for {tokens:g} tokens")
            await asyncio.sleep(wait)

    @property
    def available(self) -> float:
        """Approximate tokens available now (unlocked read)."""
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        return min(self.capacity, self._tokens + elapsed * self.refill_rate)


class RateLimiter:
    """Per-provider admission control for network calls.

    Composes a requests-per-minute bucket with optional requests-per-hour
    and tokens-per-minute buckets and an optional concurrency cap. A value
    of 0 disables the corresponding limit.
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        requests_per_hour: int = 0,
        tokens_per_minute: int = 0,
        concurrent_requests: int = 0,
        provider: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.requests_per_minute = requests_per_minute
        self._rpm = (
            TokenBucket(requests_per_minute, requests_per_minute / 60.0, clock)
            if requests_per_minute > 0
            else None
        )
        self._rph = (
            TokenBucket(requests_per_hour, requests_per_hour / 3600.0, clock)
            if requests_per_hour > 0
            else None
        )
        self._tpm = (
            TokenBucket(tokens_per_minute, tokens_per_minute / 60.0, clock)
            if tokens_per_minute > 0
            else None
        )
        self._semaphore = (
            asyncio.Semaphore(concurrent_requests) if concurrent_requests > 0 else None
        )

    async def acquire(self, tokens: int = 0, timeout: float | None = None) -> None:
        """Wait until one request (and ``tokens`` model tokens) may start.

        Args:
            tokens: Estimated model tokens for the tokens-per-minute bucket;
                capped at that bucket's capacity
            timeout: Maximum seconds to wait per bucket

        Raises:
            RateLimitExceededError: If a limit cannot be satisfied within ``timeout``
        """
        try:
            if self._rpm is not None:
                await self._rpm.acquire(1, timeout)
            if self._rph is not None:
                await self._rph.acquire(1, timeout)
            if self._tpm is not None and tokens > 0:
                await self._tpm.acquire(min(float(tokens), self._tpm.capacity), timeout)
        except RateLimitExceededError as e:
            raise RateLimitExceededError(self.provider, e.limit, e.retry_after) from e

    async def acquire_slot(self, tokens: int = 0, timeout: float | None = None) -> None:
        """Acquire rate tokens and a concurrency slot.

        The slot stays held until ``release_slot`` is called; use ``slot()``
        when the work fits in one block.
        """
        await self.acquire(tokens, timeout)
        if self._semaphore is not None:
            await self._semaphore.acquire()

    def release_slot(self) -> None:
        if self._semaphore is not None:
            self._semaphore.release()

    @asynccontextmanager
    async def slot(self, tokens: int = 0, timeout: float | None = None) -> AsyncIterator[None]:
        """Acquire rate tokens and hold a concurrency slot for the block."""
        await self.acquire_slot(tokens, timeout)
        try:
            yield
        finally:
            self.release_slot()

    def get_status(self) -> dict[str, float]:
        """Approximate tokens remaining per configured bucket."""
        status: dict[str, float] = {}
        if self._rpm is not None:
            status["requests_per_minute"] = self._rpm.available
        if self._rph is not None:
            status["requests_per_hour"] = self._rph.available
        if self._tpm is not None:
            status["tokens_per_minute"] = self._tpm.available
        return status
