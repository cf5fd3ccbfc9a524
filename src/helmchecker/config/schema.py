"""
Pydantic configuration schema for HelmChecker AI providers.

This module defines all configuration models with validation.
"""

import re
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

# =============================================================================
# Value parsers
# =============================================================================

_SIZE_UNITS = [
    ("TB", 1024**4),
    ("GB", 1024**3),
    ("MB", 1024**2),
    ("KB", 1024),
    ("B", 1),
]

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_size(value: str | int | float) -> int:
    """
    Parse a size such as ``"100MB"`` into bytes.

    Supports B, KB, MB, GB and TB with 1024 multipliers; a bare number is
    taken as bytes.

    Raises:
        ValueError: If the value cannot be parsed.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid size: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip().upper()
    if not text:
        raise ValueError("empty size string")

    for suffix, multiplier in _SIZE_UNITS:
        if text.endswith(suffix):
            number = text[: -len(suffix)].strip()
            try:
                return int(float(number) * multiplier)
            except ValueError:
                raise ValueError(f"invalid number in size: {value!r}") from None

    try:
        return int(text)
    except ValueError:
        raise ValueError(f"invalid size format: {value!r}") from None


def parse_duration(value: str | int | float) -> float:
    """
    Parse a duration into seconds.

    Accepts numbers (seconds) and strings such as ``"500ms"``, ``"30s"``,
    ``"2m"``, ``"1h"`` or ``"1m30s"``.

    Raises:
        ValueError: If the value cannot be parsed.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip().lower()
    if not text:
        raise ValueError("empty duration string")
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration format: {value!r}")
    return total


Duration = Annotated[float, BeforeValidator(parse_duration)]
Size = Annotated[int, BeforeValidator(parse_size)]


# =============================================================================
# Provider Configuration
# =============================================================================


class AuthConfig(BaseModel):
    """Provider credentials."""

    model_config = ConfigDict(extra="allow")

    type: str = ""
    token: str = Field(default="", repr=False)
    api_key: str = Field(default="", repr=False)
    username: str = ""
    password: str = Field(default="", repr=False)
    additional_auth: dict[str, str] = Field(default_factory=dict, repr=False)

    def has_credentials(self) -> bool:
        """True if at least one authentication method is provided."""
        return bool(
            self.token
            or self.api_key
            or (self.username and self.password)
            or self.additional_auth
        )


class RateLimitConfig(BaseModel):
    """Per-provider rate limits. 0 disables a limit."""

    requests_per_minute: int = Field(default=0, ge=0)
    requests_per_hour: int = Field(default=0, ge=0)
    tokens_per_minute: int = Field(default=0, ge=0)
    concurrent_requests: int = Field(default=0, ge=0)


class CacheConfig(BaseModel):
    """Per-provider response cache."""

    enabled: bool = False
    ttl: Duration = Field(default=0.0, ge=0)
    max_size: Size = Field(default=0, ge=0)
    eviction_policy: Literal["lru"] = "lru"


class RetryConfig(BaseModel):
    """Per-provider retry policy."""

    max_retries: int = Field(default=0, ge=0)
    initial_delay: Duration = Field(default=0.0, ge=0)
    max_delay: Duration = Field(default=0.0, ge=0)
    multiplier: float = Field(default=0.0, ge=0)
    retryable_errors: list[str] = Field(default_factory=list)


class ProviderConfig(BaseModel):
    """A single AI backend."""

    model_config = ConfigDict(extra="allow")

    name: str = ""
    type: str = ""
    enabled: bool = True
    priority: int = Field(default=0, ge=0)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    config: dict[str, Any] = Field(default_factory=dict)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    def setting(self, key: str, default: Any = None) -> Any:
        """Backend setting from ``config``, treating empty values as unset."""
        value = self.config.get(key)
        return default if value in (None, "") else value


# =============================================================================
# Global Configuration
# =============================================================================


class CachingConfig(BaseModel):
    """Defaults for every provider cache."""

    enabled: bool = False
    ttl: Duration = Field(default=0.0, ge=0)
    max_size: Size = Field(default=0, ge=0)


class RateLimitingConfig(BaseModel):
    """Defaults for every provider rate limiter."""

    requests_per_minute: int = Field(default=0, ge=0)
    tokens_per_minute: int = Field(default=0, ge=0)


class AIConfig(BaseModel):
    """AI provider configuration (the ``ai:`` section)."""

    model_config = ConfigDict(extra="allow")

    providers: list[ProviderConfig] = Field(default_factory=list)
    caching: CachingConfig = Field(default_factory=CachingConfig)
    rate_limiting: RateLimitingConfig = Field(default_factory=RateLimitingConfig)

    def enabled_providers(self) -> list[ProviderConfig]:
        """Enabled providers, lowest priority number first (stable)."""
        return sorted((p for p in self.providers if p.enabled), key=lambda p: p.priority)

    def get_provider(self, name: str) -> ProviderConfig | None:
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None

    def providers_by_type(self, provider_type: str) -> list[ProviderConfig]:
        return [p for p in self.providers if p.type == provider_type]


_REDACTED = "***"


class Config(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(extra="allow")

    ai: AIConfig = Field(default_factory=AIConfig)

    def to_yaml(self, redact: bool = True) -> str:
        """
        Serialize back to YAML.

        Args:
            redact: Replace credential values with a placeholder.
        """
        data = self.model_dump(mode="json")
        if redact:
            for provider in data["ai"]["providers"]:
                auth = provider.get("auth", {})
                for key in ("token", "api_key", "password"):
                    if auth.get(key):
                        auth[key] = _REDACTED
                auth["additional_auth"] = {k: _REDACTED for k in auth.get("additional_auth", {})}
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
