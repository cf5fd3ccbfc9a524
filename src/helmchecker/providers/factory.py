"""
Provider construction from configuration.

Builds one provider per enabled ProviderConfig, wraps it in a cache when
configured, and assembles the fallback chain in priority order.
"""

import logging

from helmchecker.config.schema import Config, ProviderConfig
from helmchecker.providers.backends.copilot import CopilotProvider
from helmchecker.providers.backends.openai import OpenAIProvider
from helmchecker.providers.base import Provider, ProviderRegistry
from helmchecker.providers.cache import (
    DEFAULT_MAX_SIZE,
    DEFAULT_TTL,
    CachedProvider,
    CacheJanitor,
    MemoryCache,
)
from helmchecker.providers.fallback import ProviderChain

logger = logging.getLogger(__name__)


def default_registry() -> ProviderRegistry:
    """Registry with the built-in backends (openai, copilot)."""
    registry = ProviderRegistry()
    registry.register("openai", OpenAIProvider)
    registry.register("copilot", CopilotProvider)
    return registry


def build_provider(
    config: ProviderConfig,
    registry: ProviderRegistry | None = None,
    cleanup_interval: float | None = 60.0,
) -> Provider:
    """
    Build one provider, cache-wrapped if its cache is enabled.

    Args:
        config: Provider configuration.
        registry: Type registry; defaults to the built-in one.
        cleanup_interval: Seconds between expired-entry sweeps; None disables
            the background sweeper.

    Raises:
        ProviderNotSupportedError: Unknown type.
        ProviderNotConfiguredError: Missing or malformed credentials.
    """
    registry = registry or default_registry()
    provider = registry.create(config)

    if not config.cache.enabled:
        return provider

    cache = MemoryCache(max_size=config.cache.max_size or DEFAULT_MAX_SIZE)
    janitor = None
    if cleanup_interval:
        janitor = CacheJanitor(cache, cleanup_interval)
        janitor.start()

    logger.debug(f"Caching enabled for {provider.name}")
    return CachedProvider(
        provider, cache, default_ttl=config.cache.ttl or DEFAULT_TTL, janitor=janitor
    )


def build_provider_chain(
    config: Config,
    registry: ProviderRegistry | None = None,
    cleanup_interval: float | None = 60.0,
) -> ProviderChain:
    """
    Build the fallback chain from every enabled provider.

    Providers are ordered by ascending priority; ties keep file order.
    If one provider fails to build, sweepers already started for earlier
    providers are stopped before the error is raised.
    """
    registry = registry or default_registry()
    providers: list[Provider] = []
    try:
        for provider_config in config.ai.enabled_providers():
            providers.append(build_provider(provider_config, registry, cleanup_interval))
    except Exception:
        for provider in providers:
            if isinstance(provider, CachedProvider) and provider.janitor is not None:
                provider.janitor.stop()
        raise

    logger.info(f"Provider chain: {', '.join(p.name for p in providers) or '(empty)'}")
    return ProviderChain(providers)
