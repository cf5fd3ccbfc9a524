"""
Fallback chain for HelmChecker providers.

Tries an ordered list of providers until one succeeds.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from helmchecker.providers.base import Provider
from helmchecker.providers.exceptions import (
    AllProvidersFailedError,
    FailureType,
    MultipleProviderErrors,
    classify_error,
)
from helmchecker.providers.metrics import UsageMetrics
from helmchecker.providers.models import Request, Response, StreamChunk

logger = logging.getLogger(__name__)


@dataclass
class FallbackAttempt:
    """Record of a failed provider attempt."""

    provider: str
    error: Exception
    failure_type: FailureType


def attempt_summary(attempts: list[FallbackAttempt]) -> str:
    """
    Get a human-readable summary of fallback attempts.

    Returns:
        Summary string describing what providers were tried.
    """
    if not attempts:
        return "No fallback attempts"

    lines = []
    for attempt in attempts:
        lines.append(f"  - {attempt.provider}: {attempt.failure_type.value} ({attempt.error})")

    return "Fallback attempts:\n" + "\n".join(lines)


class ProviderChain(Provider):
    """
    Ordered fallback across providers.

    Each member is expected to carry its own caching, rate limiting and
    retry. The chain returns the first success unmodified and only fails
    once every member has failed.
    """

    def __init__(self, providers: list[Provider]):
        """
        Initialize the chain.

        Args:
            providers: Providers in the order they should be tried.
        """
        self.providers = list(providers)
        self.chain_metrics = UsageMetrics()

    @property
    def name(self) -> str:
        if not self.providers:
            return "empty-chain"
        return f"{self.providers[0].name}-chain"

    def _record_failure(
        self,
        attempts: list[FallbackAttempt],
        provider: Provider,
        error: Exception,
        request: Request,
    ) -> None:
        failure_type = classify_error(error)
        attempts.append(FallbackAttempt(provider.name, error, failure_type))
        self.chain_metrics.record_failure(provider.name, failure_type.value, request.type)
        logger.warning(f"Provider {provider.name} failed with {failure_type.value}: {error}")

    def _exhausted(self, attempts: list[FallbackAttempt]) -> AllProvidersFailedError:
        if not attempts:
            return AllProvidersFailedError("no providers configured in chain")
        logger.error(f"All providers failed.\n{attempt_summary(attempts)}")
        return AllProvidersFailedError(
            f"all {len(attempts)} providers failed; last error: {attempts[-1].error}",
            attempts,
        )

    async def analyze(self, request: Request) -> Response:
        """
        Try each provider in order and return the first success.

        Raises:
            AllProvidersFailedError: Every provider failed (or there are none).
        """
        attempts: list[FallbackAttempt] = []

        for index, provider in enumerate(self.providers):
            if index > 0:
                logger.info(f"Trying fallback provider: {provider.name}")
            try:
                response = await provider.analyze(request)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._record_failure(attempts, provider, e, request)
                continue

            self.chain_metrics.record_success(
                provider.name, response.tokens_used, response.duration, request.type
            )
            logger.debug(f"Provider {provider.name} succeeded")
            return response

        error = self._exhausted(attempts)
        raise error from (attempts[-1].error if attempts else None)

    async def analyze_stream(self, request: Request) -> AsyncIterator[StreamChunk]:
        """
        Start a stream on the first provider whose setup succeeds.

        Once a stream has started the chain does not switch providers;
        a mid-stream failure arrives as an error chunk.
        """
        attempts: list[FallbackAttempt] = []

        for provider in self.providers:
            try:
                stream = await provider.analyze_stream(request)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._record_failure(attempts, provider, e, request)
                continue

            logger.info(f"Streaming from provider: {provider.name}")
            return stream

        error = self._exhausted(attempts)
        raise error from (attempts[-1].error if attempts else None)

    async def validate(self) -> None:
        """
        Validate every member concurrently.

        Raises:
            MultipleProviderErrors: One or more members failed validation.
        """
        results = await asyncio.gather(
            *(provider.validate() for provider in self.providers),
            return_exceptions=True,
        )
        errors: list[Exception] = []
        for provider, result in zip(self.providers, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.warning(f"Validation failed for {provider.name}: {result}")
                errors.append(result)
        if errors:
            raise MultipleProviderErrors(errors)

    def get_metrics(self) -> UsageMetrics:
        """Freshly merged metrics of all members."""
        merged = UsageMetrics()
        for provider in self.providers:
            merged.merge(provider.get_metrics())
        return merged

    async def close(self) -> None:
        """
        Close every member, collecting errors rather than stopping early.

        Raises:
            MultipleProviderErrors: One or more members failed to close.
        """
        errors: list[Exception] = []
        for provider in self.providers:
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"Failed to close {provider.name}: {e}")
                errors.append(e)
        if errors:
            raise MultipleProviderErrors(errors)
