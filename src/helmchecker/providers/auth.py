"""
Authentication for HelmChecker HTTP backends.

Token providers supply a bearer credential; BearerAuth attaches it (plus the
standard JSON headers) to every outgoing httpx request.
"""

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Generator

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "HelmChecker/1.0"

GITHUB_TOKEN_PREFIXES = ("ghp_", "ghu_", "ghs_", "github_pat_")


class TokenError(Exception):
    """A credential is missing or malformed."""


def validate_github_token(token: str) -> None:
    """
    Check a GitHub token's shape.

    Known prefixes are accepted as-is; anything else must be at least
    10 characters long.

    Raises:
        TokenError: If the token is empty or too short.
    """
    if not token:
        raise TokenError("no token provided")
    if not token.startswith(GITHUB_TOKEN_PREFIXES) and len(token) < 10:
        raise TokenError("invalid GitHub token format")


def validate_openai_key(key: str) -> None:
    """
    Check an OpenAI API key's shape.

    Raises:
        TokenError: If the key is empty, or neither starts with ``sk-``
            nor is at least 20 characters long.
    """
    if not key:
        raise TokenError("no API key provided")
    if not key.startswith("sk-") and len(key) < 20:
        raise TokenError("invalid OpenAI API key format")


class TokenProvider(ABC):
    """Source of a bearer credential."""

    def __init__(self, validator: Callable[[str], None] | None = None):
        self._validator = validator

    @abstractmethod
    def get_token(self) -> str:
        """
        Return the credential.

        Raises:
            TokenError: If no credential is available.
        """

    def validate_token(self) -> None:
        """Check the credential's format without any network call."""
        token = self.get_token()
        if self._validator is not None:
            self._validator(token)


class StaticTokenProvider(TokenProvider):
    """Fixed credential taken from configuration."""

    def __init__(self, token: str, validator: Callable[[str], None] | None = None):
        super().__init__(validator)
        self._token = token

    def get_token(self) -> str:
        if not self._token:
            raise TokenError("no token provided")
        return self._token


class EnvTokenProvider(TokenProvider):
    """Credential read from an environment variable on every request."""

    def __init__(
        self,
        env_var: str = "GITHUB_TOKEN",
        validator: Callable[[str], None] | None = None,
    ):
        super().__init__(validator)
        self.env_var = env_var or "GITHUB_TOKEN"

    def get_token(self) -> str:
        token = os.environ.get(self.env_var, "")
        if not token:
            raise TokenError(f"no token provided: environment variable {self.env_var} not set")
        return token


class BearerAuth(httpx.Auth):
    """httpx auth flow adding bearer and JSON headers."""

    def __init__(self, token_provider: TokenProvider, extra_headers: dict[str, str] | None = None):
        self.token_provider = token_provider
        self.extra_headers = extra_headers or {}

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        token = self.token_provider.get_token()
        request.headers["Authorization"] = f"Bearer {token}"
        request.headers["Content-Type"] = "application/json"
        # Streaming requests set their own Accept header
        if request.headers.get("Accept", "*/*") == "*/*":
            request.headers["Accept"] = "application/json"
        request.headers["User-Agent"] = USER_AGENT
        for name, value in self.extra_headers.items():
            request.headers[name] = value
        yield request
