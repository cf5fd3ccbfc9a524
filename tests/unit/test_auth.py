"""Unit tests for backend authentication."""

import httpx
import pytest

from helmchecker.providers.auth import (
    USER_AGENT,
    BearerAuth,
    EnvTokenProvider,
    StaticTokenProvider,
    TokenError,
    validate_github_token,
    validate_openai_key,
)


class TestTokenValidation:
    """Tests for credential format checks."""

    @pytest.mark.parametrize(
        "token",
        ["ghp_abc", "ghu_abc", "ghs_abc", "github_pat_abc", "0123456789abcdef"],
    )
    def test_valid_github_tokens(self, token):
        validate_github_token(token)

    @pytest.mark.parametrize("token", ["", "short"])
    def test_invalid_github_tokens(self, token):
        with pytest.raises(TokenError):
            validate_github_token(token)

    @pytest.mark.parametrize("key", ["sk-x", "a" * 20])
    def test_valid_openai_keys(self, key):
        validate_openai_key(key)

    @pytest.mark.parametrize("key", ["", "not-a-key"])
    def test_invalid_openai_keys(self, key):
        with pytest.raises(TokenError):
            validate_openai_key(key)


class TestTokenProviders:
    """Tests for token providers."""

    def test_static_token(self):
        provider = StaticTokenProvider("ghp_abc", validate_github_token)
        assert provider.get_token() == "ghp_abc"
        provider.validate_token()

    def test_static_empty(self):
        with pytest.raises(TokenError):
            StaticTokenProvider("").get_token()

    def test_static_validator_applied(self):
        with pytest.raises(TokenError):
            StaticTokenProvider("abc", validate_github_token).validate_token()

    def test_env_token(self, monkeypatch):
        """Test that the environment is read on every call."""
        monkeypatch.setenv("HC_TEST_TOKEN", "ghp_first")
        provider = EnvTokenProvider("HC_TEST_TOKEN")
        assert provider.get_token() == "ghp_first"

        monkeypatch.setenv("HC_TEST_TOKEN", "ghp_second")
        assert provider.get_token() == "ghp_second"

    def test_env_token_missing(self, monkeypatch):
        monkeypatch.delenv("HC_TEST_TOKEN", raising=False)
        with pytest.raises(TokenError) as exc_info:
            EnvTokenProvider("HC_TEST_TOKEN").get_token()
        assert "HC_TEST_TOKEN" in str(exc_info.value)

    def test_env_default_variable(self):
        assert EnvTokenProvider("").env_var == "GITHUB_TOKEN"


class TestBearerAuth:
    """Tests for the httpx auth flow."""

    @pytest.mark.asyncio
    async def test_headers_applied(self):
        """Test bearer, JSON and extra headers on outgoing requests."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        auth = BearerAuth(StaticTokenProvider("sk-test"), {"X-Extra": "1"})
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler), auth=auth) as client:
            await client.post("https://example.test/chat", json={})
            await client.post(
                "https://example.test/chat", json={}, headers={"Accept": "text/event-stream"}
            )

        assert seen[0].headers["Authorization"] == "Bearer sk-test"
        assert seen[0].headers["Content-Type"] == "application/json"
        assert seen[0].headers["Accept"] == "application/json"
        assert seen[0].headers["User-Agent"] == USER_AGENT
        assert seen[0].headers["X-Extra"] == "1"
        assert seen[1].headers["Accept"] == "text/event-stream"

    @pytest.mark.asyncio
    async def test_missing_token_raises(self):
        auth = BearerAuth(StaticTokenProvider(""))
        transport = httpx.MockTransport(lambda request: httpx.Response(200))
        async with httpx.AsyncClient(transport=transport, auth=auth) as client:
            with pytest.raises(TokenError):
                await client.get("https://example.test/")
