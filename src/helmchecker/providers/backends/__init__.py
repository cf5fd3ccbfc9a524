"""HTTP backend adapters."""

from helmchecker.providers.backends.base import HTTPChatProvider
from helmchecker.providers.backends.copilot import CopilotProvider
from helmchecker.providers.backends.openai import OpenAIProvider

__all__ = [
    "HTTPChatProvider",
    "OpenAIProvider",
    "CopilotProvider",
]
