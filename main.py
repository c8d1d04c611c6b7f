#!/usr/bin/env python3
"""
Curator's Desk - Content Ingestion Pipeline
===========================================

Command line interface for managing sources and running syncs.

Usage:
    python main.py --help                          # Show all commands
    python main.py check-config                    # Validate configuration
    python main.py init-db                         # Initialize database
    python main.py discover example.com            # Locate a site's feed
    python main.py add-source USER example.com     # Subscribe and sync once
    python main.py sync [--user USER]              # Run a batch sync
"""

import sys
import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from curatorsdesk.config.settings import get_settings
from curatorsdesk.database.connection import get_db_manager
from curatorsdesk.database.models import SourceType
from curatorsdesk.database.schema import DatabaseSchema
from curatorsdesk.ingestion.feed_discovery import FeedDiscovery
from curatorsdesk.ingestion.http_client import create_session
from curatorsdesk.processing.orchestrator import IngestionOrchestrator
from curatorsdesk.scheduler.sync_scheduler import SyncScheduler
from curatorsdesk.storage.sqlite_store import SQLiteContentStore
from curatorsdesk.utils.exceptions import CuratorsDeskError, get_user_friendly_message
from curatorsdesk.utils.logging import configure_application_logging

console = Console()
logger = logging.getLogger(__name__)


def _truncate(value, width: int) -> str:
    value = value or ""
    return value if len(value) <= width else value[: width - 3] + "..."


def _store() -> SQLiteContentStore:
    settings = get_settings()
    return SQLiteContentStore(
        get_db_manager(settings.database.path, pool_size=settings.database.pool_size)
    )


def _fail(error: Exception) -> None:
    console.print(f"[bold red]❌ {get_user_friendly_message(error)}[/bold red]")
    if isinstance(error, CuratorsDeskError) and error.error_code:
        console.print(f"[dim]{error}[/dim]")
    sys.exit(1)


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.pass_context
def cli(ctx, debug):
    """Curator's Desk - newsletter and feed ingestion."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    settings = get_settings()
    # Console output belongs to rich unless --debug is given
    configure_application_logging(
        settings.logging,
        level="DEBUG" if debug else settings.get_effective_log_level(),
        console=debug,
    )


@cli.command()
def check_config():
    """Validate configuration and environment variables."""
    console.print("[bold blue]🔧 Checking Curator's Desk Configuration[/bold blue]")

    try:
        settings = get_settings()
        settings.validate_configuration()
    except CuratorsDeskError as e:
        _fail(e)

    table = Table(title="Configuration Status")
    table.add_column("Component", style="cyan")
    table.add_column("Details")

    table.add_row("Database", f"Path: {settings.database.path}, pool: {settings.database.pool_size}")
    table.add_row(
        "Logging",
        f"Level: {settings.get_effective_log_level()}, file: {settings.logging.file_path or 'none'}",
    )
    table.add_row(
        "Fetch",
        f"Timeout: {settings.fetch.request_timeout}s, parallel sources: {settings.fetch.parallel_sources}",
    )
    table.add_row("Discovery", ", ".join(settings.discovery.well_known_paths))
    if settings.mailbox.fixture_path:
        mailbox = f"Fixture: {settings.mailbox.fixture_path}"
    elif settings.mailbox.access_token:
        mailbox = "Gmail API token configured"
    else:
        mailbox = "[yellow]No mailbox access; newsletter sources are skipped[/yellow]"
    table.add_row("Mailbox", mailbox)
    table.add_row("Scheduler", f"Every {settings.scheduler.sync_interval_minutes} min")

    console.print(table)
    console.print("[bold green]✅ Configuration is valid[/bold green]")


@cli.command()
def init_db():
    """Create database tables and verify the schema."""
    settings = get_settings()
    console.print(f"[bold blue]📊 Initializing database at {settings.database.path}[/bold blue]")

    schema = DatabaseSchema(settings.database.path)
    schema.create_tables()
    if not schema.verify_schema():
        console.print("[bold red]❌ Schema verification failed[/bold red]")
        sys.exit(1)

    info = get_db_manager(settings.database.path).get_database_info()
    console.print(f"  ✅ Database ready - {info['database_size_mb']:.2f}MB")


@cli.command()
@click.argument('site_url')
def discover(site_url):
    """Locate the feed for SITE_URL without subscribing."""

    async def run_discovery():
        async with create_session() as session:
            return await FeedDiscovery().discover(session, site_url)

    try:
        result = asyncio.run(run_discovery())
    except CuratorsDeskError as e:
        _fail(e)

    table = Table(title=f"Feed for {result.site_url}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Feed URL", result.feed_url)
    table.add_row("Format", result.feed_type.value)
    table.add_row("Found via", result.discovery_method.value)
    table.add_row("Title", result.title or "-")
    table.add_row("Description", _truncate(result.description, 80) or "-")
    console.print(table)


@cli.command()
@click.argument('user_id')
@click.argument('site_url')
@click.option('--feed-url', help='Use this feed URL instead of discovering one')
def add_source(user_id, site_url, feed_url):
    """Subscribe USER_ID to SITE_URL and run the first sync."""
    orchestrator = IngestionOrchestrator(_store())

    try:
        source, result = asyncio.run(orchestrator.add_feed_source(user_id, site_url, feed_url))
    except CuratorsDeskError as e:
        _fail(e)

    console.print(f"[bold green]✅ Added {source.title or source.feed_url}[/bold green]")
    console.print(f"  Source ID: {source.id}")
    console.print(f"  Feed: {source.feed_url} ({source.feed_type.value}, {source.discovery_method.value})")
    if result.error:
        console.print(f"  [yellow]⚠️ Initial sync failed: {result.error}[/yellow]")
    else:
        console.print(f"  Initial sync: {result.items_created} items")


@cli.command()
@click.argument('user_id')
@click.argument('address')
def add_mailbox(user_id, address):
    """Connect the newsletter mailbox ADDRESS for USER_ID."""
    try:
        source = IngestionOrchestrator(_store()).add_mailbox_source(user_id, address)
    except CuratorsDeskError as e:
        _fail(e)

    console.print(f"[bold green]✅ Mailbox {source.site_url} added ({source.id})[/bold green]")
    if not get_settings().has_mailbox_credentials():
        console.print("[yellow]⚠️ No mailbox access configured; sync will skip it[/yellow]")


@cli.command()
@click.argument('source_id')
def remove_source(source_id):
    """Deactivate SOURCE_ID. Stored content is kept."""
    try:
        IngestionOrchestrator(_store()).remove_source(source_id)
    except CuratorsDeskError as e:
        _fail(e)

    console.print(f"[bold green]✅ Source {source_id} removed[/bold green]")


@cli.command()
@click.option('--user', 'user_id', help='Only sync sources of this user')
def sync(user_id):
    """Run one batch sync over active sources."""
    console.print("[bold blue]🔄 Syncing sources...[/bold blue]")
    result = asyncio.run(SyncScheduler().run_once(user_id=user_id))
    console.print(SyncScheduler.format_summary(result))
    if not result["success"]:
        sys.exit(1)


@cli.command()
@click.argument('user_id')
def sources(user_id):
    """List the active sources of USER_ID."""
    active = _store().list_active_sources(user_id)
    if not active:
        console.print(f"[yellow]⚠️ No active sources for {user_id}[/yellow]")
        return

    table = Table(title=f"Sources for {user_id}")
    table.add_column("Status", style="green")
    table.add_column("ID", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Title")
    table.add_column("Feed / Mailbox", style="blue")
    table.add_column("Last Sync")
    table.add_column("Error", style="red")

    for source in active:
        if source.last_sync_status is None:
            status = "⚪"
        elif source.last_sync_error:
            status = "🔴"
        else:
            status = "🟢"
        table.add_row(
            status,
            source.id[:8],
            source.source_type.value,
            _truncate(source.title, 30),
            _truncate(source.feed_url or source.site_url, 40),
            source.last_synced_at.strftime("%Y-%m-%d %H:%M") if source.last_synced_at else "Never",
            _truncate(source.last_sync_error, 40),
        )

    console.print(table)


@cli.command()
@click.argument('user_id')
@click.option('--limit', default=20, show_default=True, help='Number of items to show')
def latest(user_id, limit):
    """Show the newest content for USER_ID."""
    store = _store()
    items = store.get_latest_content(user_id, limit=limit)
    if not items:
        console.print(f"[yellow]⚠️ No content for {user_id} yet[/yellow]")
        return

    table = Table(title=f"Latest for {user_id}")
    table.add_column("Published", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("URL", style="blue")

    for item in items:
        published = item.published_at.strftime("%Y-%m-%d")
        if item.published_at_estimated:
            published += "*"
        title = _truncate(item.title, 50) + (" ✏️" if item.is_edited else "")
        table.add_row(
            published,
            item.source_type.value,
            title,
            _truncate(item.author, 20),
            _truncate(item.url, 50),
        )

    console.print(table)


@cli.command()
def stats():
    """Show store statistics."""
    settings = get_settings()
    if not Path(settings.database.path).exists():
        console.print("[yellow]⚠️ Database not initialized; run init-db[/yellow]")
        sys.exit(1)

    info = get_db_manager(settings.database.path).get_database_info()
    store = _store()

    table = Table(title="Curator's Desk Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Database size", f"{info['database_size_mb']:.2f} MB")
    for table_name, count in info['table_counts'].items():
        table.add_row(f"{table_name} rows", str(count))
    table.add_row("Feed items", str(store.count_content(SourceType.RSS)))
    table.add_row("Newsletter posts", str(store.count_content(SourceType.NEWSLETTER)))

    console.print(table)


if __name__ == "__main__":
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 Curator's Desk interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        logger.exception("Unexpected error")
        console.print(f"\n[bold red]❌ Unexpected error: {e}[/bold red]")
        sys.exit(1)
