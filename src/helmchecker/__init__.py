"""
HelmChecker AI - resilient AI provider layer for HelmChecker

Caching, rate limiting, retry and fallback around chat-completion
backends used to analyse Helm charts and plan upgrades.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("helmchecker-ai")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = [
    "__version__",
]
