"""Tests for the CLI application."""

from unittest.mock import patch

import pytest

from helmchecker.cli.app import app
from helmchecker.providers.exceptions import (
    AuthenticationFailedError,
    ProviderNotConfiguredError,
    ProviderUnavailableError,
)
from helmchecker.providers.fallback import ProviderChain


@pytest.fixture
def fake_chain():
    """Patch chain construction to use in-memory providers."""

    def install(*providers):
        chain = ProviderChain(list(providers))
        return patch("helmchecker.cli.app.build_provider_chain", return_value=chain), chain

    return install


class TestMainApp:
    """Tests for main CLI app."""

    def test_help(self, cli_runner):
        result = cli_runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "validate" in result.output
        assert "analyze" in result.output

    def test_version(self, cli_runner):
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "helmchecker-ai version" in result.output


class TestValidateCommand:
    """Tests for the validate command."""

    def test_valid_config(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["validate", str(config_file)])
        assert result.exit_code == 0
        assert "Configuration is valid (2 enabled provider(s))" in result.output

    def test_invalid_config(self, cli_runner, temp_dir, clean_env):
        path = temp_dir / "bad.yaml"
        path.write_text("ai:\n  providers: []\n", encoding="utf-8")
        result = cli_runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 1
        assert "at least one provider" in result.output

    def test_missing_file(self, cli_runner, temp_dir):
        result = cli_runner.invoke(app, ["validate", str(temp_dir / "nope.yaml")])
        assert result.exit_code == 1


class TestProvidersCommand:
    """Tests for the providers command."""

    def test_lists_providers(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["providers", str(config_file)])
        assert result.exit_code == 0
        assert "Fallback order" in result.output


class TestAnalyzeCommand:
    """Tests for the analyze command."""

    def test_markdown_answer(self, cli_runner, config_file, make_provider, fake_chain):
        """Test a successful analysis printed as Markdown."""
        patcher, chain = fake_chain(make_provider(name="fake", content="All charts current"))
        with patcher:
            result = cli_runner.invoke(app, ["analyze", str(config_file), "Any outdated charts?"])

        assert result.exit_code == 0
        assert "All charts current" in result.output
        assert "Answered by fake" in result.output
        assert chain.providers[0].closed is True

    def test_json_answer(self, cli_runner, config_file, make_provider, fake_chain):
        patcher, _ = fake_chain(make_provider(name="fake", content="ok"))
        with patcher:
            result = cli_runner.invoke(
                app, ["analyze", str(config_file), "q", "--json", "--type", "risk_assessment"]
            )
        assert result.exit_code == 0
        assert '"content": "ok"' in result.output
        assert '"provider": "fake"' in result.output

    def test_fallback_answer(self, cli_runner, config_file, make_provider, fake_chain):
        patcher, _ = fake_chain(
            make_provider(name="primary", error=ProviderUnavailableError("primary", "down")),
            make_provider(name="backup", content="from backup"),
        )
        with patcher:
            result = cli_runner.invoke(app, ["analyze", str(config_file), "q"])
        assert result.exit_code == 0
        assert "Answered by backup" in result.output

    def test_all_fail(self, cli_runner, config_file, make_provider, fake_chain):
        """Test that exhaustion lists every failed provider."""
        patcher, _ = fake_chain(
            make_provider(name="primary", error=ProviderUnavailableError("primary", "down")),
            make_provider(name="backup", error=AuthenticationFailedError("backup", "bad key")),
        )
        with patcher:
            result = cli_runner.invoke(app, ["analyze", str(config_file), "q"])
        assert result.exit_code == 1
        assert "All providers failed" in result.output
        assert "auth_error" in result.output

    def test_stream(self, cli_runner, config_file, make_provider, fake_chain):
        patcher, _ = fake_chain(make_provider(name="fake", content="streamed text"))
        with patcher:
            result = cli_runner.invoke(app, ["analyze", str(config_file), "q", "--stream"])
        assert result.exit_code == 0
        assert "streamed text" in result.output

    def test_build_failure(self, cli_runner, config_file):
        with patch(
            "helmchecker.cli.app.build_provider_chain",
            side_effect=ProviderNotConfiguredError("openai-primary", "no key"),
        ):
            result = cli_runner.invoke(app, ["analyze", str(config_file), "q"])
        assert result.exit_code == 1
        assert "not configured" in result.output
