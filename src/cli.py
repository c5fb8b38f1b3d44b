"""
Command-line interface for trend-discovery.

Provides commands to run a discovery pass, initialize the database,
and run diagnostic checks.

Usage:
    trend-discovery run              # One discovery run (accounts mode)
    trend-discovery run --dry-run    # In-memory run, prints the ranking
    trend-discovery init-db          # Initialize database
    trend-discovery health           # Check service health
"""

import asyncio
import json
import sys

import click
from pydantic import ValidationError

from src.config.settings import ConfigurationError, get_settings
from src.observability.logging import bind_context, clear_context, setup_logging
from src.observability.metrics import get_metrics

CONFIG_ERROR_EXIT_CODE = 2


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Trend Discovery - keyword discovery and trend scoring from Reddit."""
    try:
        setup_logging(level="DEBUG" if debug else None)
        settings = get_settings()
    except ValidationError as e:
        _config_error(str(e))

    if settings.tracing_enabled:
        from src.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


def _config_error(message: str) -> None:
    click.echo(click.style(f"Configuration error: {message}", fg="red"), err=True)
    sys.exit(CONFIG_ERROR_EXIT_CODE)


@main.command()
@click.option(
    "--mode",
    type=click.Choice(["accounts", "anon"]),
    default="accounts",
    show_default=True,
    help="Use stored account credentials or the static REDDIT_ACCESS_TOKEN",
)
@click.option("--subreddit", "subreddits", multiple=True, help="Subreddit to scan (can repeat)")
@click.option("--query", "queries", multiple=True, help="Search query (can repeat)")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="YAML file with extra subreddits/queries lists",
)
@click.option("--comments/--no-comments", default=None, help="Mine comment threads")
@click.option("--budget", type=int, default=None, help="Maximum HTTP requests for the run")
@click.option("--top", type=int, default=None, help="Keep only the top N phrases")
@click.option("--dry-run", is_flag=True, help="Use in-memory storage and print the ranking")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.option("--metrics/--no-metrics", default=False, help="Enable metrics server")
def run(
    mode: str,
    subreddits: tuple[str, ...],
    queries: tuple[str, ...],
    config_path: str | None,
    comments: bool | None,
    budget: int | None,
    top: int | None,
    dry_run: bool,
    as_json: bool,
    metrics: bool,
) -> None:
    """Run one keyword discovery pass.

    Example:
        trend-discovery run --mode anon --subreddit Etsy --query "gift ideas" --dry-run
    """
    from src.discovery.config import DiscoveryConfig
    from src.services.discovery_service import DiscoveryService

    overrides: dict[str, object] = {}
    if subreddits:
        overrides["subreddits"] = ",".join(subreddits)
    if queries:
        overrides["queries"] = ",".join(queries)
    if config_path is not None:
        overrides["config_path"] = config_path
    if comments is not None:
        overrides["include_comments"] = comments
    if budget is not None:
        overrides["request_budget"] = budget
    if top is not None:
        overrides["top_n"] = top

    try:
        config = DiscoveryConfig(**overrides)
    except ValidationError as e:
        _config_error(str(e))

    if metrics:
        get_metrics().start_server()

    async def execute():
        bind_context(command="run", mode=mode, dry_run=dry_run)
        try:
            return await _run_service()
        finally:
            clear_context()

    async def _run_service():
        if dry_run:
            from src.storage.memory import InMemoryTrendRepository

            service = DiscoveryService(
                trend_repository=InMemoryTrendRepository(config.source, config.market),
                config=config,
            )
            return await service.run(mode=mode)

        from src.storage.database import Database
        from src.storage.repository import PostgresCredentialRepository, PostgresTrendRepository

        async with Database() as db:
            service = DiscoveryService(
                trend_repository=PostgresTrendRepository(db, config.source, config.market),
                credential_repository=PostgresCredentialRepository(db),
                config=config,
            )
            return await service.run(mode=mode)

    try:
        result = asyncio.run(execute())
    except ConfigurationError as e:
        _config_error(str(e))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    stats = result.stats
    click.echo(f"\nDiscovery run ({result.mode}) at {result.run_at.isoformat()}")
    click.echo("-" * 60)
    click.echo(
        f"  requests: {stats.requests_used}  items: {stats.items_fetched}  "
        f"comments: {stats.comments_fetched}  units skipped: {stats.units_skipped}"
    )
    click.echo(
        f"  accounts: {stats.accounts_completed}/{stats.accounts_total}  "
        f"phrases ranked: {stats.phrases_ranked}  persisted: {stats.phrases_persisted}"
    )
    if stats.budget_exhausted:
        click.echo(click.style("  request budget exhausted", fg="yellow"))
    click.echo("-" * 60)

    shown = result.ranked if dry_run else result.ranked[:20]
    for i, ranked in enumerate(shown, 1):
        click.echo(f"  {i:3d}. {ranked.score:8.3f}  {ranked.phrase}  (n={ranked.count})")


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from src.storage.database import Database
    from src.storage.repository import PostgresTrendRepository

    async def execute():
        async with Database() as db:
            await PostgresTrendRepository(db).create_tables()
        click.echo("Database initialized successfully")

    asyncio.run(execute())


@main.command()
def health() -> None:
    """Check health of the database and Reddit configuration."""
    import structlog

    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}

        try:
            from src.storage.database import Database

            async with Database() as db:
                results["postgres"] = await db.health_check()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        settings = get_settings()
        results["reddit_client_configured"] = settings.reddit_configured
        results["reddit_anon_token_configured"] = settings.anon_configured

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))

        click.echo("-" * 40)

        if results["postgres"]:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
