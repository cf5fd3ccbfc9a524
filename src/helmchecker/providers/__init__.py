"""
HelmChecker Provider Layer.

Resilient access to AI chat backends with:
- Bounded LRU + TTL response caching
- Token bucket rate limiting
- Retry with exponential backoff
- Ordered fallback chains
- Usage and cost metrics
"""

from helmchecker.providers.auth import (
    BearerAuth,
    EnvTokenProvider,
    StaticTokenProvider,
    TokenError,
    TokenProvider,
)
from helmchecker.providers.backends import CopilotProvider, HTTPChatProvider, OpenAIProvider
from helmchecker.providers.base import Provider, ProviderRegistry
from helmchecker.providers.cache import (
    CachedProvider,
    CacheJanitor,
    CacheStats,
    MemoryCache,
    generate_cache_key,
)
from helmchecker.providers.cost import count_tokens, estimate_cost
from helmchecker.providers.exceptions import (
    AllProvidersFailedError,
    AuthenticationFailedError,
    CacheOperationError,
    ContextCancelledError,
    FailureType,
    InvalidConfigurationError,
    InvalidRequestError,
    InvalidResponseError,
    MultipleProviderErrors,
    ProviderError,
    ProviderNotConfiguredError,
    ProviderNotSupportedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    QuotaExceededError,
    RateLimitExceededError,
    RetryExhaustedError,
    TokenLimitExceededError,
    classify_error,
    is_permanent,
    is_retryable,
)
from helmchecker.providers.factory import build_provider, build_provider_chain, default_registry
from helmchecker.providers.fallback import FallbackAttempt, ProviderChain
from helmchecker.providers.metrics import MetricsSnapshot, ProviderMetrics, UsageMetrics
from helmchecker.providers.models import (
    AnalysisContext,
    AnalysisType,
    CommitInfo,
    HelmChartInfo,
    PatternInfo,
    RepositoryInfo,
    Request,
    RequestOptions,
    Response,
    ResponseFormat,
    StreamChunk,
    TokenUsage,
)
from helmchecker.providers.prompts import PromptBuilder, PromptTemplate
from helmchecker.providers.rate_limiter import RateLimiter, TokenBucket
from helmchecker.providers.retry import RetryPolicy

__all__ = [
    # Contract
    "Provider",
    "ProviderRegistry",
    # Models
    "AnalysisContext",
    "AnalysisType",
    "CommitInfo",
    "HelmChartInfo",
    "PatternInfo",
    "RepositoryInfo",
    "Request",
    "RequestOptions",
    "Response",
    "ResponseFormat",
    "StreamChunk",
    "TokenUsage",
    # Exceptions
    "ProviderError",
    "ProviderNotSupportedError",
    "ProviderNotConfiguredError",
    "ProviderUnavailableError",
    "RateLimitExceededError",
    "InvalidRequestError",
    "InvalidResponseError",
    "AuthenticationFailedError",
    "QuotaExceededError",
    "ProviderTimeoutError",
    "ContextCancelledError",
    "CacheOperationError",
    "InvalidConfigurationError",
    "AllProvidersFailedError",
    "MultipleProviderErrors",
    "TokenLimitExceededError",
    "RetryExhaustedError",
    "FailureType",
    "classify_error",
    "is_permanent",
    "is_retryable",
    # Resilience
    "MemoryCache",
    "CacheStats",
    "CacheJanitor",
    "CachedProvider",
    "generate_cache_key",
    "RateLimiter",
    "TokenBucket",
    "RetryPolicy",
    "ProviderChain",
    "FallbackAttempt",
    # Metrics and cost
    "UsageMetrics",
    "ProviderMetrics",
    "MetricsSnapshot",
    "estimate_cost",
    "count_tokens",
    # Backends
    "HTTPChatProvider",
    "OpenAIProvider",
    "CopilotProvider",
    "BearerAuth",
    "TokenProvider",
    "StaticTokenProvider",
    "EnvTokenProvider",
    "TokenError",
    # Prompts
    "PromptBuilder",
    "PromptTemplate",
    # Construction
    "default_registry",
    "build_provider",
    "build_provider_chain",
]
