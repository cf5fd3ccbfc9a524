"""
Pytest configuration and fixtures for helmchecker tests.
"""

import os
import tempfile
from collections.abc import AsyncIterator, Callable, Generator
from pathlib import Path

import pytest
from typer.testing import CliRunner

# Use LiteLLM's bundled pricing data instead of fetching it at import
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from helmchecker.providers.base import Provider
from helmchecker.providers.metrics import UsageMetrics
from helmchecker.providers.models import Request, Response, StreamChunk, TokenUsage


class FakeProvider(Provider):
    """In-memory provider with scripted outcomes and a call counter."""

    def __init__(
        self,
        name: str = "fake",
        outcomes: list[Response | Exception] | None = None,
        error: Exception | None = None,
        content: str = "ok",
    ):
        self._name = name
        self.outcomes = list(outcomes or [])
        self.error = error
        self.content = content
        self.calls = 0
        self.closed = False
        self.validate_error: Exception | None = None
        self.close_error: Exception | None = None
        self.metrics = UsageMetrics()

    @property
    def name(self) -> str:
        return self._name

    async def analyze(self, request: Request) -> Response:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return Response(
            id=request.id,
            content=self.content,
            provider=self._name,
            tokens_used=TokenUsage(prompt_tokens=10, completion_tokens=5),
        )

    async def analyze_stream(self, request: Request) -> AsyncIterator[StreamChunk]:
        self.calls += 1
        if self.error is not None:
            raise self.error

        async def chunks() -> AsyncIterator[StreamChunk]:
            yield StreamChunk(content=self.content)
            yield StreamChunk(done=True)

        return chunks()

    async def validate(self) -> None:
        if self.validate_error is not None:
            raise self.validate_error

    def get_metrics(self) -> UsageMetrics:
        return self.metrics

    async def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_provider() -> Callable[..., FakeProvider]:
    """Factory for scripted fake providers."""
    return FakeProvider


@pytest.fixture
def clock() -> FakeClock:
    """Provide a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove AI_* overrides that would leak into config tests."""
    for key in list(os.environ):
        if key.startswith("AI_CACHE_") or key.startswith("AI_RATE_LIMIT") or key.startswith(
            "AI_PROVIDER_"
        ):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def sample_config_yaml() -> str:
    """Provide a sample provider configuration."""
    return """
ai:
  providers:
    - name: openai-primary
      type: openai
      enabled: true
      priority: 1
      auth:
        api_key: "${TEST_OPENAI_API_KEY}"
      config:
        model: gpt-4o
        temperature: 0.3
        max_tokens: 4096
      rate_limits:
        requests_per_minute: 30
      cache:
        enabled: true
        ttl: 30m
        max_size: 50MB
      retry:
        max_retries: 2
        initial_delay: 500ms
        max_delay: 10s
        multiplier: 2
    - name: copilot-backup
      type: copilot
      enabled: true
      priority: 2
      auth:
        token: ghp_exampletoken123456
  caching:
    enabled: true
    ttl: 3600
    max_size: 100MB
  rate_limiting:
    requests_per_minute: 60
    tokens_per_minute: 100000
"""


@pytest.fixture
def config_file(temp_dir: Path, sample_config_yaml: str, clean_env: pytest.MonkeyPatch) -> Path:
    """Write the sample configuration to disk with its secret set."""
    clean_env.setenv("TEST_OPENAI_API_KEY", "sk-test-key-0123456789")
    path = temp_dir / "ai.yaml"
    path.write_text(sample_config_yaml, encoding="utf-8")
    return path
