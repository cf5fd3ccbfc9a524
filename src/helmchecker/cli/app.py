"""
Main Typer application for the helmchecker-ai CLI.

Usage:
    helmchecker-ai validate config.yaml
    helmchecker-ai providers config.yaml
    helmchecker-ai analyze config.yaml "Which charts are outdated?"
"""

import asyncio
import dataclasses
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.markdown import Markdown

from helmchecker import __version__
from helmchecker.cli.output import (
    console,
    print_error,
    print_info,
    print_metrics,
    print_providers,
    print_success,
    setup_logging,
)
from helmchecker.config.loader import load_config
from helmchecker.config.schema import Config
from helmchecker.providers.exceptions import (
    AllProvidersFailedError,
    InvalidConfigurationError,
    ProviderError,
)
from helmchecker.providers.factory import build_provider_chain
from helmchecker.providers.models import (
    AnalysisType,
    Request,
    RequestOptions,
    Response,
    ResponseFormat,
)

# Create the main Typer app
app = typer.Typer(
    name="helmchecker-ai",
    help="Resilient AI provider layer for HelmChecker.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

ConfigArg = Annotated[
    Path,
    typer.Argument(help="Path to the AI provider configuration (YAML)."),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        print_info(f"helmchecker-ai version [green]{__version__}[/green]")
        raise typer.Exit()


# noinspection PyUnusedLocal
@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
) -> None:
    """
    [bold blue]helmchecker-ai[/bold blue] - AI provider resilience layer

    Validate provider configuration and run analysis requests through the
    cached, rate-limited, retrying fallback chain.
    """
    setup_logging(verbose)


def _load(path: Path) -> Config:
    try:
        return load_config(path)
    except InvalidConfigurationError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command()
def validate(config_path: ConfigArg) -> None:
    """Load and validate a configuration file."""
    config = _load(config_path)
    print_providers(config.ai.providers, title="Configured providers")
    enabled = len(config.ai.enabled_providers())
    print_success(f"Configuration is valid ({enabled} enabled provider(s))")


@app.command()
def providers(config_path: ConfigArg) -> None:
    """List enabled providers in fallback order."""
    config = _load(config_path)
    enabled = config.ai.enabled_providers()
    if not enabled:
        print_info("No providers are enabled")
        return
    print_providers(enabled, title="Fallback order")


def _response_dict(response: Response) -> dict[str, Any]:
    return dataclasses.asdict(response)


async def _analyze(config: Config, request: Request, json_output: bool) -> bool:
    try:
        chain = build_provider_chain(config)
    except ProviderError as e:
        print_error(str(e))
        return False

    try:
        if request.options.stream:
            stream = await chain.analyze_stream(request)
            try:
                async for chunk in stream:
                    if chunk.error is not None:
                        console.print()
                        print_error(str(chunk.error))
                        return False
                    console.print(chunk.content, end="", markup=False, highlight=False)
                console.print()
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()
        else:
            response = await chain.analyze(request)
            if json_output:
                console.print_json(data=_response_dict(response))
            else:
                console.print(Markdown(response.content))
                source = "cache" if response.cached else response.provider
                print_info(f"Answered by {source} in {response.duration:.2f}s")

        if not json_output:
            print_metrics(chain.get_metrics().snapshot())
        return True

    except AllProvidersFailedError as e:
        print_error("All providers failed:")
        for attempt in e.attempts:
            print_error(f"  {attempt.provider}: {attempt.failure_type.value} ({attempt.error})")
        return False

    except ProviderError as e:
        print_error(str(e))
        return False

    finally:
        try:
            await chain.close()
        except ProviderError as e:
            print_error(f"Error while closing providers: {e}")


@app.command()
def analyze(
    config_path: ConfigArg,
    query: Annotated[str, typer.Argument(help="The question to ask.")],
    analysis_type: Annotated[
        AnalysisType,
        typer.Option("--type", "-t", help="Analysis type."),
    ] = AnalysisType.GENERAL,
    max_tokens: Annotated[
        int,
        typer.Option("--max-tokens", min=0, help="Maximum response tokens (0 = provider default)."),
    ] = 0,
    temperature: Annotated[
        float,
        typer.Option("--temperature", min=0.0, max=2.0, help="Sampling temperature."),
    ] = 0.0,
    stream: Annotated[
        bool,
        typer.Option("--stream", "-s", help="Stream the response."),
    ] = False,
    no_cache: Annotated[
        bool,
        typer.Option("--no-cache", help="Bypass the response cache."),
    ] = False,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", min=0.0, help="Overall timeout in seconds."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print the response as JSON."),
    ] = False,
) -> None:
    """Run an analysis request through the provider chain."""
    config = _load(config_path)
    request = Request(
        query=query,
        type=analysis_type,
        max_tokens=max_tokens,
        temperature=temperature,
        options=RequestOptions(
            stream=stream,
            use_cache=not no_cache,
            timeout=timeout or None,
            response_format=ResponseFormat.JSON if json_output else ResponseFormat.MARKDOWN,
        ),
    )

    if not asyncio.run(_analyze(config, request, json_output)):
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
