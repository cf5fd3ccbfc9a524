"""
Output formatting utilities for the CLI.

Provides consistent output formatting across all CLI commands.
"""

import logging
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from helmchecker.config.schema import ProviderConfig
from helmchecker.providers.metrics import MetricsSnapshot

# Global console instance
console = Console()
err_console = Console(stderr=True)


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message."""
    err_console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    err_console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]i[/blue] {message}")


def print_table(
    headers: list[str],
    rows: list[list[Any]],
    title: str | None = None,
) -> None:
    """Print a table."""
    table = Table(title=title)

    for header in headers:
        table.add_column(header)

    for row in rows:
        table.add_row(*[str(cell) for cell in row])

    console.print(table)


def setup_logging(verbose: bool) -> None:
    """Route library logging through rich; DEBUG when verbose, else WARNING."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=verbose, show_path=False)],
        force=True,
    )


def print_providers(providers: list[ProviderConfig], title: str | None = None) -> None:
    """Print a provider configuration table."""
    rows = []
    for provider in providers:
        limits = provider.rate_limits
        rows.append(
            [
                provider.priority,
                provider.name,
                provider.type,
                "yes" if provider.enabled else "no",
                provider.setting("model", "-"),
                f"{provider.cache.ttl:g}s" if provider.cache.enabled else "off",
                limits.requests_per_minute or "-",
                provider.retry.max_retries,
            ]
        )
    print_table(
        ["Priority", "Name", "Type", "Enabled", "Model", "Cache TTL", "RPM", "Retries"],
        rows,
        title=title,
    )


def print_metrics(snapshot: MetricsSnapshot) -> None:
    """Print a metrics summary."""
    print_table(
        ["Metric", "Value"],
        [
            ["Requests", snapshot.total_requests],
            ["Successful", snapshot.successful_requests],
            ["Failed", snapshot.failed_requests],
            ["Cached", snapshot.cached_responses],
            ["Success rate", f"{snapshot.success_rate:.1f}%"],
            ["Cache hit rate", f"{snapshot.cache_hit_rate:.1f}%"],
            ["Tokens", snapshot.total_tokens_used],
            ["Cost", f"${snapshot.total_cost:.4f}"],
            ["Avg latency", f"{snapshot.average_latency:.2f}s"],
        ],
        title="Usage",
    )
