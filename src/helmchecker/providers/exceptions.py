"""
Provider exceptions for HelmChecker.

Defines the error taxonomy shared by every provider, decorator and chain,
plus the classification helpers used for metrics and retry decisions.
"""

import asyncio
import re
from collections.abc import Iterable
from enum import Enum

import httpx


class FailureType(Enum):
    """Classification of provider failures for metrics and retry decisions."""

    NOT_SUPPORTED = "not_supported"
    NOT_CONFIGURED = "not_configured"
    UNAVAILABLE = "unavailable"
    RATE_LIMIT = "rate_limit"
    INVALID_REQUEST = "invalid_request"
    INVALID_RESPONSE = "invalid_response"
    AUTH_ERROR = "auth_error"
    QUOTA_EXCEEDED = "quota_exceeded"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    CACHE_ERROR = "cache_error"
    INVALID_CONFIG = "invalid_config"
    ALL_FAILED = "all_failed"
    MULTIPLE_ERRORS = "multiple_errors"
    TOKEN_LIMIT = "token_limit"
    RETRY_EXHAUSTED = "retry_exhausted"
    UNKNOWN = "unknown"


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class ProviderNotSupportedError(ProviderError):
    """Unknown backend type tag."""

    def __init__(self, provider_type: str):
        super().__init__(f"provider type '{provider_type}' is not supported")
        self.provider_type = provider_type


class ProviderNotConfiguredError(ProviderError):
    """Provider is missing authentication or required settings."""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"provider '{provider}' is not configured: {reason}", provider)
        self.reason = reason


class ProviderUnavailableError(ProviderError):
    """Transient backend outage (5xx, connection failure)."""

    def __init__(self, provider: str, reason: str, status_code: int | None = None):
        super().__init__(f"provider '{provider}' is unavailable: {reason}", provider)
        self.reason = reason
        self.status_code = status_code


class RateLimitExceededError(ProviderError):
    """Rate limit exceeded, either locally or as signalled by the backend."""

    def __init__(
        self,
        provider: str | None,
        limit: str,
        retry_after: float | None = None,
    ):
        message = f"rate limit exceeded for provider '{provider}': {limit}"
        if retry_after is not None:
            message += f", retry after {retry_after:.2f}s"
        super().__init__(message, provider)
        self.limit = limit
        self.retry_after = retry_after


class InvalidRequestError(ProviderError):
    """Malformed caller input or a request the backend rejected."""

    def __init__(self, field: str, reason: str, provider: str | None = None):
        super().__init__(f"invalid request field '{field}': {reason}", provider)
        self.field = field
        self.reason = reason


class InvalidResponseError(ProviderError):
    """Backend returned unparseable or unexpected data."""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"invalid response from provider '{provider}': {reason}", provider)
        self.reason = reason


class AuthenticationFailedError(ProviderError):
    """Credentials were rejected or could not be obtained."""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"authentication failed for provider '{provider}': {reason}", provider)
        self.reason = reason


class QuotaExceededError(ProviderError):
    """Account quota exhausted."""

    def __init__(self, provider: str, resource: str):
        super().__init__(f"quota exceeded for provider '{provider}': {resource}", provider)
        self.resource = resource


class ProviderTimeoutError(ProviderError):
    """Request did not complete in time."""

    def __init__(self, provider: str | None, duration: float | None = None):
        after = f" after {duration:.2f}s" if duration is not None else ""
        super().__init__(f"request timeout for provider '{provider}'{after}", provider)
        self.duration = duration


class ContextCancelledError(ProviderError):
    """Request was cancelled because the provider was closed."""

    def __init__(self, provider: str | None):
        super().__init__(f"request canceled for provider '{provider}'", provider)


class CacheOperationError(ProviderError):
    """Cache operation failed (capacity or serialization issue)."""

    def __init__(self, operation: str, reason: str):
        super().__init__(f"cache operation '{operation}' failed: {reason}")
        self.operation = operation
        self.reason = reason


class InvalidConfigurationError(ProviderError):
    """Configuration is invalid."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"invalid configuration for '{field}': {reason}")
        self.field = field
        self.reason = reason


class TokenLimitExceededError(ProviderError):
    """Request exceeded the model's token limit."""

    def __init__(
        self,
        requested: int | None = None,
        limit: int | None = None,
        provider: str | None = None,
        reason: str | None = None,
    ):
        if requested is not None and limit is not None:
            message = f"token limit exceeded: requested {requested}, limit {limit}"
        else:
            message = f"token limit exceeded: {reason or 'request too large'}"
        super().__init__(message, provider)
        self.requested = requested
        self.limit = limit


class RetryExhaustedError(ProviderError):
    """All retry attempts failed with retryable errors."""

    def __init__(self, last_error: Exception, attempts: int, provider: str | None = None):
        super().__init__(
            f"retries exhausted after {attempts} attempts: {last_error}",
            provider or getattr(last_error, "provider", None),
        )
        self.last_error = last_error
        self.attempts = attempts


class MultipleProviderErrors(ProviderError):
    """Aggregate of errors from close/validate across several providers."""

    def __init__(self, errors: list[Exception]):
        joined = "; ".join(str(e) for e in errors)
        super().__init__(f"multiple provider errors: [{joined}]")
        self.errors = errors


class AllProvidersFailedError(ProviderError):
    """All providers in a fallback chain failed."""

    def __init__(self, message: str, attempts: list | None = None):
        super().__init__(message)
        # list[FallbackAttempt]; kept untyped to avoid importing fallback here
        self.attempts = attempts or []

    @property
    def errors(self) -> list[Exception]:
        """Every individual failure, in the order providers were tried."""
        return [attempt.error for attempt in self.attempts]

    @property
    def last_error(self) -> Exception | None:
        """The failure of the last provider tried."""
        return self.attempts[-1].error if self.attempts else None

    @property
    def failed_providers(self) -> list[str]:
        """Names of the providers that failed."""
        return [attempt.provider for attempt in self.attempts]


_FAILURE_TYPES: list[tuple[type[BaseException], FailureType]] = [
    (ProviderNotSupportedError, FailureType.NOT_SUPPORTED),
    (ProviderNotConfiguredError, FailureType.NOT_CONFIGURED),
    (ProviderUnavailableError, FailureType.UNAVAILABLE),
    (RateLimitExceededError, FailureType.RATE_LIMIT),
    (InvalidRequestError, FailureType.INVALID_REQUEST),
    (InvalidResponseError, FailureType.INVALID_RESPONSE),
    (AuthenticationFailedError, FailureType.AUTH_ERROR),
    (QuotaExceededError, FailureType.QUOTA_EXCEEDED),
    (ProviderTimeoutError, FailureType.TIMEOUT),
    (ContextCancelledError, FailureType.CANCELLED),
    (CacheOperationError, FailureType.CACHE_ERROR),
    (InvalidConfigurationError, FailureType.INVALID_CONFIG),
    (AllProvidersFailedError, FailureType.ALL_FAILED),
    (MultipleProviderErrors, FailureType.MULTIPLE_ERRORS),
    (TokenLimitExceededError, FailureType.TOKEN_LIMIT),
    (RetryExhaustedError, FailureType.RETRY_EXHAUSTED),
    (asyncio.CancelledError, FailureType.CANCELLED),
    (asyncio.TimeoutError, FailureType.TIMEOUT),
    (httpx.TimeoutException, FailureType.TIMEOUT),
    (httpx.TransportError, FailureType.UNAVAILABLE),
]

_RETRYABLE = (ProviderUnavailableError, ProviderTimeoutError, RateLimitExceededError)

_PERMANENT = (
    ProviderNotSupportedError,
    ProviderNotConfiguredError,
    InvalidRequestError,
    InvalidResponseError,
    AuthenticationFailedError,
    QuotaExceededError,
    InvalidConfigurationError,
    TokenLimitExceededError,
)


def classify_error(error: BaseException) -> FailureType:
    """
    Classify an exception into a failure type.

    The value of the returned enum is the label recorded in the
    error-type histogram of UsageMetrics.

    Args:
        error: The exception to classify.

    Returns:
        The failure type classification.
    """
    for exc_type, failure_type in _FAILURE_TYPES:
        if isinstance(error, exc_type):
            return failure_type
    return FailureType.UNKNOWN


def is_permanent(error: BaseException) -> bool:
    """Return True if retrying the error can never succeed."""
    return isinstance(error, _PERMANENT)


def is_retryable(error: BaseException, patterns: Iterable[str] = ()) -> bool:
    """
    Determine if an error should trigger a retry.

    Args:
        error: The exception raised by a backend call.
        patterns: Extra regular expressions; an otherwise unclassified error
            whose message matches one of them is retried too.

    Returns:
        True if the call may be retried.
    """
    if is_permanent(error):
        return False
    if isinstance(error, _RETRYABLE):
        return True
    message = str(error)
    return any(re.search(pattern, message, re.IGNORECASE) for pattern in patterns)
