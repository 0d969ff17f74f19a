"""
CLI interface for the AI service.

Database setup, configuration checks, usage statistics, cache maintenance
and one-off completions from the command line.
"""

import asyncio
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ai_service.config.loader import validate_ai_config
from ai_service.config.logging import setup_logging
from ai_service.config.settings import Settings, load_settings
from ai_service.containers import build_ai_config, build_ai_service, build_provider_registry
from ai_service.core.cache import ResponseCache
from ai_service.core.errors import AIServiceError, ProviderError, QuotaExceededError
from ai_service.core.types import CompletionRequest, FeatureType
from ai_service.core.usage import UsageLog
from ai_service.storage.repository import CacheRepository, UsageRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DB_OPTION_HELP = "SQLite database path (defaults to AI_DB_PATH)"


def _settings(db_path: Optional[str] = None, mock: bool = False) -> Settings:
    settings = load_settings()
    updates = {}
    if db_path:
        updates["AI_DB_PATH"] = db_path
    if mock:
        updates["AI_USE_MOCK"] = True
    return settings.model_copy(update=updates) if updates else settings


def _parse_feature(value: str) -> FeatureType:
    try:
        return FeatureType(value)
    except ValueError:
        valid = ", ".join(ft.value for ft in FeatureType)
        console.print(f"[red]Unknown feature:[/] {value}. Valid features: {valid}")
        sys.exit(EXIT_CODE_FAIL)


def _cache(settings: Settings) -> ResponseCache:
    initialize_schema(settings.AI_DB_PATH)
    return ResponseCache(CacheRepository(settings.AI_DB_PATH))


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """AI service CLI."""
    setup_logging(load_settings().LOG_LEVEL)
    if ctx.invoked_subcommand is None:
        console.print("AI Service - Use --help to see available commands")


@app.command()
def init(db_path: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP)):
    """Initialize the cache, quota and usage-log tables."""
    settings = _settings(db_path)
    try:
        initialize_schema(settings.AI_DB_PATH)
        console.print(f"[green]✓[/] Database initialized at {settings.AI_DB_PATH}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def validate(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML overrides to validate (defaults to AI_CONFIG_PATH)"
    )
):
    """Check the configuration against the providers that have credentials."""
    settings = _settings()
    if config_path:
        settings = settings.model_copy(update={"AI_CONFIG_PATH": config_path})

    try:
        config = build_ai_config(settings)
    except Exception as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    registry = build_provider_registry(settings)
    result = validate_ai_config(config, registry.list())
    asyncio.run(registry.aclose())

    for error in result.errors:
        console.print(f"[red]✗[/] {error}")
    for warning in result.warnings:
        console.print(f"[yellow]![/] {warning}")

    if not result.valid:
        sys.exit(EXIT_CODE_FAIL)
    console.print("[green]✓[/] Configuration is valid")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def stats(
    user: str = typer.Option(..., "--user", "-u", help="User whose usage to aggregate"),
    days: int = typer.Option(30, "--days", "-d", help="Lookback window in days"),
    db_path: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP)
):
    """Show a user's token, cost and cache statistics."""
    if days <= 0:
        console.print("[red]Error:[/] --days must be positive")
        sys.exit(EXIT_CODE_FAIL)

    settings = _settings(db_path)
    try:
        initialize_schema(settings.AI_DB_PATH)
        usage = asyncio.run(UsageLog(UsageRepository(settings.AI_DB_PATH)).stats(user, days))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if usage.total_requests == 0:
        console.print(f"\n[bold yellow]No AI usage recorded for {user} in the last {days} days[/]\n")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"AI usage for {user} (last {days} days)")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Requests", str(usage.total_requests))
    table.add_row("Tokens", f"{usage.total_tokens:,}")
    table.add_row("Cost", _format_cents(usage.total_cost_cents))
    table.add_row("Cache hit rate", f"{usage.cache_hit_rate:.2f}%")
    table.add_row("Avg tokens/request", f"{usage.average_tokens_per_request:,.1f}")
    console.print(table)

    if usage.requests_by_feature:
        console.print("\n[bold]Requests by feature[/bold]")
        for feature, count in sorted(usage.requests_by_feature.items()):
            console.print(f"  {feature}: {count}")
    if usage.tokens_by_provider:
        console.print("\n[bold]Tokens by provider[/bold]")
        for provider, tokens in sorted(usage.tokens_by_provider.items()):
            console.print(f"  {provider}: {tokens:,}")
    sys.exit(EXIT_CODE_PASS)


@app.command("cache-stats")
def cache_stats(db_path: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP)):
    """Count live and expired cache entries."""
    result = asyncio.run(_cache(_settings(db_path)).stats())
    console.print(f"Total entries:   {result.total_entries}")
    console.print(f"Live entries:    {result.live_entries}")
    console.print(f"Expired entries: {result.expired_entries}")
    sys.exit(EXIT_CODE_PASS)


@app.command("cache-clear")
def cache_clear(
    feature: Optional[str] = typer.Option(
        None,
        "--feature",
        "-f",
        help="Only clear entries for this feature"
    ),
    db_path: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP)
):
    """Delete cached responses, for one feature or all of them."""
    cache = _cache(_settings(db_path))
    if feature:
        removed = asyncio.run(cache.invalidate_feature(_parse_feature(feature)))
        console.print(f"[green]✓[/] Removed {removed} cached responses for {feature}")
    else:
        removed = asyncio.run(cache.clear_all())
        console.print(f"[green]✓[/] Removed {removed} cached responses")
    sys.exit(EXIT_CODE_PASS)


@app.command("cache-purge")
def cache_purge(db_path: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP)):
    """Physically delete expired cache entries."""
    removed = asyncio.run(_cache(_settings(db_path)).purge_expired())
    console.print(f"[green]✓[/] Purged {removed} expired cache entries")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def complete(
    prompt: str = typer.Option(..., "--prompt", "-p", help="Prompt text"),
    feature: str = typer.Option("chat", "--feature", "-f", help="Feature type issuing the request"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User to charge quota and usage to"),
    mock: bool = typer.Option(False, "--mock", help="Serve from the deterministic mock provider"),
    db_path: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP)
):
    """Run one completion through quota, cache and the configured provider."""
    feature_type = _parse_feature(feature)
    service = build_ai_service(_settings(db_path, mock=mock), user_id=user)

    async def _run():
        try:
            return await service.complete(CompletionRequest(prompt=prompt, feature_type=feature_type))
        finally:
            await service.aclose()

    try:
        response = asyncio.run(_run())
    except QuotaExceededError as e:
        console.print(f"[yellow]Quota exceeded:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except ProviderError as e:
        console.print(f"[red]Provider error ({e.code.value}):[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except (AIServiceError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(response.content)
    console.print(
        f"\n[dim]{response.provider.value}/{response.model.value} · "
        f"{response.tokens_used.total} tokens · {_format_cents(response.cost_cents)} · "
        f"{'cache hit' if response.cache_hit else 'cache miss'} · {response.execution_time_ms} ms[/]"
    )
    sys.exit(EXIT_CODE_PASS)


def _format_cents(cents: int) -> str:
    """Format integer cents as dollars."""
    return f"${cents / 100:,.2f}"


if __name__ == "__main__":
    app()
