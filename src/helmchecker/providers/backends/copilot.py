"""GitHub Copilot chat backend."""

from helmchecker.config.schema import ProviderConfig
from helmchecker.providers.auth import validate_github_token
from helmchecker.providers.backends.base import HTTPChatProvider
from helmchecker.providers.cost import COPILOT_PRICING, DEFAULT_PRICING, estimate_cost
from helmchecker.providers.models import TokenUsage


class CopilotProvider(HTTPChatProvider):
    """Provider for the GitHub Copilot chat API."""

    default_name = "github-copilot"
    default_base_url = "https://api.githubcopilot.com"
    default_model = "gpt-4"

    def credential(self, config: ProviderConfig) -> str:
        return config.auth.token or config.auth.api_key

    def validate_credential(self, token: str) -> None:
        validate_github_token(token)

    def estimate_cost(self, model: str, usage: TokenUsage) -> float:
        return estimate_cost(
            model, usage, COPILOT_PRICING, default=DEFAULT_PRICING, substring_match=True
        )
