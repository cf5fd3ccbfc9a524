"""
Provider contract and registry for HelmChecker.

Every backend adapter and every decorator (CachedProvider, ProviderChain)
implements Provider; ProviderRegistry maps a configuration type tag to the
factory that builds the matching adapter.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING

from helmchecker.providers.exceptions import ProviderNotSupportedError
from helmchecker.providers.metrics import UsageMetrics
from helmchecker.providers.models import Request, Response, StreamChunk

if TYPE_CHECKING:
    from helmchecker.config.schema import ProviderConfig

logger = logging.getLogger(__name__)


class Provider(ABC):
    """Capability contract for invoking one AI backend."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique provider name."""

    @abstractmethod
    async def analyze(self, request: Request) -> Response:
        """
        Run a request and return the complete response.

        Raises:
            ProviderError: Any error from the taxonomy in exceptions.
        """

    @abstractmethod
    async def analyze_stream(self, request: Request) -> AsyncIterator[StreamChunk]:
        """
        Start a streamed request.

        Setup failures raise from the awaited call. The returned iterator
        yields chunks until one with ``done`` or ``error`` set, then stops.
        Callers that stop before the terminal chunk should ``aclose()`` it
        when it provides that method.
        """

    @abstractmethod
    async def validate(self) -> None:
        """Lightweight health check; raises if the backend is unusable."""

    @abstractmethod
    def get_metrics(self) -> UsageMetrics:
        """Usage metrics for this provider."""

    @abstractmethod
    async def close(self) -> None:
        """Release resources. Safe to call more than once."""

    async def __aenter__(self) -> "Provider":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


ProviderFactory = Callable[["ProviderConfig"], Provider]


class ProviderRegistry:
    """Maps configuration type tags to provider factories."""

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, provider_type: str, factory: ProviderFactory) -> None:
        """
        Register a factory for a type tag, replacing any existing one.

        Args:
            provider_type: Tag used in ProviderConfig.type.
            factory: Callable building a Provider from its config.
        """
        if provider_type in self._factories:
            logger.debug(f"Replacing provider factory for '{provider_type}'")
        self._factories[provider_type] = factory

    def create(self, config: "ProviderConfig") -> Provider:
        """
        Build a provider from its configuration.

        Raises:
            ProviderNotSupportedError: If no factory is registered for config.type.
        """
        factory = self._factories.get(config.type)
        if factory is None:
            raise ProviderNotSupportedError(config.type)
        return factory(config)

    def supported_types(self) -> list[str]:
        """Registered type tags, sorted."""
        return sorted(self._factories)

    def is_supported(self, provider_type: str) -> bool:
        return provider_type in self._factories
