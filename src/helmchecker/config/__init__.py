"""Configuration for HelmChecker AI providers."""

from helmchecker.config.schema import (
    AIConfig,
    AuthConfig,
    CacheConfig,
    CachingConfig,
    Config,
    ProviderConfig,
    RateLimitConfig,
    RateLimitingConfig,
    RetryConfig,
    parse_duration,
    parse_size,
)
from helmchecker.config.loader import (
    apply_defaults,
    apply_env_overrides,
    default_config,
    expand_env,
    load_config,
    load_config_from_string,
    validate_config,
)

__all__ = [
    "AIConfig",
    "AuthConfig",
    "CacheConfig",
    "CachingConfig",
    "Config",
    "ProviderConfig",
    "RateLimitConfig",
    "RateLimitingConfig",
    "RetryConfig",
    "parse_duration",
    "parse_size",
    "apply_defaults",
    "apply_env_overrides",
    "default_config",
    "expand_env",
    "load_config",
    "load_config_from_string",
    "validate_config",
]
