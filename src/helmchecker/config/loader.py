"""
Configuration loader for HelmChecker AI providers.

Loading order:
1. Raw YAML text with ${VAR} / $VAR interpolation
2. Environment variable overrides (AI_*)
3. Schema validation
4. Default values for anything left unset
5. Semantic validation (names, types, credentials)
"""

import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import ValidationError

from helmchecker.config.schema import (
    AIConfig,
    AuthConfig,
    CacheConfig,
    CachingConfig,
    Config,
    ProviderConfig,
    RateLimitingConfig,
    RetryConfig,
)
from helmchecker.providers.exceptions import InvalidConfigurationError

if TYPE_CHECKING:
    from helmchecker.providers.base import ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 3600.0
DEFAULT_CACHE_MAX_SIZE = 100 * 1024 * 1024
DEFAULT_REQUESTS_PER_MINUTE = 60
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0
DEFAULT_MULTIPLIER = 2.0

_ENV_VAR_RE = re.compile(r"\$\{([^}]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def expand_env(text: str) -> str:
    """Replace ${VAR} and $VAR with environment values; unset variables become empty."""

    def replace(match: re.Match[str]) -> str:
        name = match.group(1) if match.group(1) is not None else match.group(2)
        return os.environ.get(name, "")

    return _ENV_VAR_RE.sub(replace, text)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1")


def _env_int(name: str, value: str) -> int | None:
    try:
        return int(value.strip())
    except ValueError:
        logger.warning(f"Ignoring non-integer value for {name}")
        return None


def provider_env_prefix(name: str) -> str:
    """Environment prefix for a provider, e.g. ``AI_PROVIDER_OPENAI_PRIMARY_``."""
    return "AI_PROVIDER_" + name.upper().replace("-", "_") + "_"


def apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """
    Apply AI_* environment variable overrides to raw configuration.

    Global: AI_CACHE_ENABLED, AI_CACHE_TTL, AI_CACHE_MAX_SIZE, AI_RATE_LIMIT_RPM.
    Per provider: AI_PROVIDER_<NAME>_ENABLED, _PRIORITY, _TOKEN, _API_KEY.

    Args:
        data: Parsed YAML (modified in place).

    Returns:
        The same dictionary, with overrides applied.
    """
    ai = data.setdefault("ai", {}) or {}
    data["ai"] = ai
    env = os.environ

    caching = ai.get("caching") or {}
    if value := env.get("AI_CACHE_ENABLED"):
        caching["enabled"] = _env_bool(value)
    if value := env.get("AI_CACHE_TTL"):
        ttl = _env_int("AI_CACHE_TTL", value)
        if ttl is not None:
            caching["ttl"] = ttl
    if value := env.get("AI_CACHE_MAX_SIZE"):
        caching["max_size"] = value
    if caching:
        ai["caching"] = caching

    if value := env.get("AI_RATE_LIMIT_RPM"):
        rpm = _env_int("AI_RATE_LIMIT_RPM", value)
        if rpm is not None:
            ai["rate_limiting"] = ai.get("rate_limiting") or {}
            ai["rate_limiting"]["requests_per_minute"] = rpm

    for provider in ai.get("providers") or []:
        if not isinstance(provider, dict) or not provider.get("name"):
            continue
        prefix = provider_env_prefix(str(provider["name"]))

        if value := env.get(prefix + "ENABLED"):
            provider["enabled"] = _env_bool(value)
        if value := env.get(prefix + "PRIORITY"):
            priority = _env_int(prefix + "PRIORITY", value)
            if priority is not None:
                provider["priority"] = priority

        auth = provider.get("auth") or {}
        if value := env.get(prefix + "TOKEN"):
            auth["token"] = value
        if value := env.get(prefix + "API_KEY"):
            auth["api_key"] = value
        if auth:
            provider["auth"] = auth

    return data


def apply_defaults(config: Config) -> Config:
    """
    Fill unset (zero) values with defaults.

    Global caching and rate limiting get their own defaults first; every
    provider then inherits from them and gets the default retry policy.
    """
    ai = config.ai
    if not ai.caching.ttl:
        ai.caching.ttl = DEFAULT_CACHE_TTL
    if not ai.caching.max_size:
        ai.caching.max_size = DEFAULT_CACHE_MAX_SIZE
    if not ai.rate_limiting.requests_per_minute:
        ai.rate_limiting.requests_per_minute = DEFAULT_REQUESTS_PER_MINUTE

    for provider in ai.providers:
        retry = provider.retry
        if not retry.max_retries:
            retry.max_retries = DEFAULT_MAX_RETRIES
        if not retry.initial_delay:
            retry.initial_delay = DEFAULT_INITIAL_DELAY
        if not retry.max_delay:
            retry.max_delay = DEFAULT_MAX_DELAY
        if not retry.multiplier:
            retry.multiplier = DEFAULT_MULTIPLIER

        cache = provider.cache
        if not cache.ttl:
            cache.ttl = ai.caching.ttl
        if not cache.max_size:
            cache.max_size = ai.caching.max_size
        if not cache.enabled and ai.caching.enabled:
            cache.enabled = True

        limits = provider.rate_limits
        if not limits.requests_per_minute:
            limits.requests_per_minute = ai.rate_limiting.requests_per_minute
        if not limits.tokens_per_minute:
            limits.tokens_per_minute = ai.rate_limiting.tokens_per_minute

    return config


def _field_path(error: dict[str, Any]) -> str:
    parts: list[str] = []
    for loc in error.get("loc", ()):
        if isinstance(loc, int):
            parts[-1:] = [f"{parts[-1]}[{loc}]"] if parts else [f"[{loc}]"]
        else:
            parts.append(str(loc))
    return ".".join(parts) or "config"


def validate_config(config: Config, registry: "ProviderRegistry | None" = None) -> None:
    """
    Validate semantic constraints the schema cannot express.

    Args:
        config: Parsed configuration.
        registry: Registry of supported provider types; defaults to the
            built-in registry.

    Raises:
        InvalidConfigurationError: On the first violation found.
    """
    if registry is None:
        from helmchecker.providers.factory import default_registry

        registry = default_registry()

    providers = config.ai.providers
    if not providers:
        raise InvalidConfigurationError("ai.providers", "at least one provider must be configured")

    seen: set[str] = set()
    for i, provider in enumerate(providers):
        field = f"ai.providers[{i}]"
        if not provider.name:
            raise InvalidConfigurationError(f"{field}.name", "provider name is required")
        if provider.name in seen:
            raise InvalidConfigurationError(
                f"{field}.name", f"duplicate provider name: {provider.name}"
            )
        seen.add(provider.name)

        if not provider.type:
            raise InvalidConfigurationError(f"{field}.type", "provider type is required")
        if not registry.is_supported(provider.type):
            supported = ", ".join(registry.supported_types())
            raise InvalidConfigurationError(
                f"{field}.type",
                f"unsupported provider type: {provider.type} (supported: {supported})",
            )

        if not provider.auth.has_credentials():
            raise InvalidConfigurationError(
                f"{field}.auth", "at least one authentication method must be provided"
            )

        retry = provider.retry
        if retry.max_delay and retry.initial_delay > retry.max_delay:
            raise InvalidConfigurationError(
                f"{field}.retry.initial_delay", "initial_delay must not exceed max_delay"
            )


def load_config_from_string(
    text: str,
    registry: "ProviderRegistry | None" = None,
    skip_env: bool = False,
) -> Config:
    """
    Load configuration from YAML text.

    Args:
        text: YAML document with an ``ai:`` root.
        registry: Registry used to check provider types.
        skip_env: Skip AI_* environment overrides (interpolation still applies).

    Returns:
        Validated Config with defaults applied.

    Raises:
        InvalidConfigurationError: If the configuration is invalid.
    """
    try:
        data = yaml.safe_load(expand_env(text))
    except yaml.YAMLError as e:
        raise InvalidConfigurationError("yaml", f"failed to parse YAML: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidConfigurationError("yaml", "top level must be a mapping")

    if not skip_env:
        data = apply_env_overrides(data)

    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        raise InvalidConfigurationError(_field_path(first), first["msg"]) from e

    apply_defaults(config)
    validate_config(config, registry)
    return config


def load_config(
    path: Path | str,
    registry: "ProviderRegistry | None" = None,
    skip_env: bool = False,
) -> Config:
    """
    Load configuration from a YAML file.

    Raises:
        InvalidConfigurationError: If the file cannot be read or is invalid.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise InvalidConfigurationError("config_file", f"failed to read file: {e}") from e

    logger.debug(f"Loading configuration from {path}")
    return load_config_from_string(text, registry=registry, skip_env=skip_env)


def default_config() -> Config:
    """A starter configuration with one OpenAI provider."""
    return Config(
        ai=AIConfig(
            providers=[
                ProviderConfig(
                    name="openai-default",
                    type="openai",
                    enabled=True,
                    priority=1,
                    auth=AuthConfig(api_key="${OPENAI_API_KEY}"),
                    config={"model": "gpt-4-turbo", "temperature": 0.3, "max_tokens": 4096},
                    cache=CacheConfig(
                        enabled=True, ttl=DEFAULT_CACHE_TTL, max_size=DEFAULT_CACHE_MAX_SIZE
                    ),
                    retry=RetryConfig(
                        max_retries=DEFAULT_MAX_RETRIES,
                        initial_delay=DEFAULT_INITIAL_DELAY,
                        max_delay=DEFAULT_MAX_DELAY,
                        multiplier=DEFAULT_MULTIPLIER,
                    ),
                )
            ],
            caching=CachingConfig(enabled=True, ttl=DEFAULT_CACHE_TTL, max_size=DEFAULT_CACHE_MAX_SIZE),
            rate_limiting=RateLimitingConfig(
                requests_per_minute=DEFAULT_REQUESTS_PER_MINUTE, tokens_per_minute=100000
            ),
        )
    )
