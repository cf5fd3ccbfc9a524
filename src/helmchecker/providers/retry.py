"""
Retry with exponential backoff for provider calls.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from helmchecker.providers.exceptions import (
    RateLimitExceededError,
    RetryExhaustedError,
    classify_error,
    is_retryable,
)
from helmchecker.providers.models import RequestOptions

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Backoff policy for a single backend invocation.

    The delay before retry ``k`` (0-based) is
    ``min(max_delay, initial_delay * multiplier ** k)``.
    """

    max_retries: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    multiplier: float = 2.0
    retryable_patterns: list[str] = field(default_factory=list)

    def delay_for(self, attempt: int, error: BaseException | None = None) -> float:
        """
        Delay before retry number ``attempt`` (0-based).

        A backend retry-after hint raises the delay, but never past max_delay.
        """
        delay = min(self.max_delay, self.initial_delay * self.multiplier**attempt)
        retry_after = getattr(error, "retry_after", None) if error is not None else None
        if isinstance(error, RateLimitExceededError) and retry_after:
            delay = max(delay, min(retry_after, self.max_delay))
        return delay

    def is_retryable(self, error: BaseException) -> bool:
        return is_retryable(error, self.retryable_patterns)

    def with_overrides(self, options: RequestOptions | None) -> "RetryPolicy":
        """Return a copy with per-request retry_count / retry_delay applied."""
        if options is None or (options.retry_count is None and options.retry_delay is None):
            return self
        return RetryPolicy(
            max_retries=self.max_retries if options.retry_count is None else options.retry_count,
            initial_delay=(
                self.initial_delay if options.retry_delay is None else options.retry_delay
            ),
            max_delay=self.max_delay,
            multiplier=self.multiplier,
            retryable_patterns=list(self.retryable_patterns),
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        provider: str | None = None,
        deadline: float | None = None,
        on_failure: Callable[[BaseException], None] | None = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds or retrying is pointless.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt.
            provider: Provider name for log messages and errors.
            deadline: ``time.monotonic()`` value after which no retry starts.
            on_failure: Called with each failed attempt's error.

        Returns:
            The operation's result.

        Raises:
            RetryExhaustedError: All attempts failed with retryable errors.
            ProviderError: A permanent error, raised as-is on first sight.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if on_failure is not None:
                    on_failure(e)

                if not self.is_retryable(e):
                    raise

                if attempt >= self.max_retries:
                    logger.warning(
                        f"Retries exhausted for {provider} after {attempt + 1} attempts: {e}"
                    )
                    raise RetryExhaustedError(e, attempt + 1, provider) from e

                delay = self.delay_for(attempt, e)
                if deadline is not None and time.monotonic() + delay > deadline:
                    logger.warning(f"Not retrying {provider}: backoff would pass the deadline")
                    raise RetryExhaustedError(e, attempt + 1, provider) from e

                logger.warning(
                    f"Attempt {attempt + 1} for {provider} failed with "
                    f"{classify_error(e).value}, retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)
                attempt += 1
