"""OpenAI chat-completions backend."""

from typing import Any

from helmchecker.config.schema import ProviderConfig
from helmchecker.providers.auth import validate_openai_key
from helmchecker.providers.backends.base import HTTPChatProvider
from helmchecker.providers.cost import OPENAI_PRICING, estimate_cost
from helmchecker.providers.models import Request, ResponseFormat, TokenUsage


class OpenAIProvider(HTTPChatProvider):
    """Provider for the OpenAI API."""

    default_name = "openai"
    default_base_url = "https://api.openai.com/v1"
    default_model = "gpt-4o"

    def credential(self, config: ProviderConfig) -> str:
        return config.auth.api_key or config.auth.token

    def validate_credential(self, token: str) -> None:
        validate_openai_key(token)

    def extra_headers(self) -> dict[str, str]:
        organization = self.config.setting("organization")
        if organization:
            return {"OpenAI-Organization": str(organization)}
        return {}

    def extend_payload(self, request: Request, payload: dict[str, Any]) -> None:
        if request.options.response_format == ResponseFormat.JSON:
            payload["response_format"] = {"type": "json_object"}

    def estimate_cost(self, model: str, usage: TokenUsage) -> float:
        return estimate_cost(model, usage, OPENAI_PRICING)
