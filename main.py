#!/usr/bin/env python3
"""
Paper Trails - Feed Ingestion Pipeline
======================================

Command line entry point for ingestion runs and inspection.

Usage:
    python main.py --help                # Show all commands
    python main.py run                   # Run one ingestion pass
    python main.py run --json            # Also print the run report as JSON
    python main.py check-config          # Validate configuration
    python main.py show-catalog          # List feed sources and service classes
    python main.py show-skip-list        # Show hosts currently skipped
"""

import sys
import json
import signal
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from papertrails.catalog.catalog import PublicationCatalog
from papertrails.config.settings import get_settings
from papertrails.monitoring.run_report import RunReport
from papertrails.processing.pipeline import IngestionPipeline
from papertrails.recovery.backoff import BackoffController
from papertrails.utils.logging import configure_application_logging
from papertrails.utils.exceptions import PapertrailsError, RunLockedError

console = Console()
logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def _configure_logging(ctx, settings) -> None:
    configure_application_logging(
        log_level="DEBUG" if ctx.obj.get('debug') else settings.get_effective_log_level(),
        log_file=settings.logging.file_path,
        enable_console=settings.logging.console_logging,
        structured_logging=settings.logging.structured_logging or settings.is_ci(),
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
    )


def _load_settings_or_exit():
    try:
        return get_settings()
    except PapertrailsError as e:
        console.print(f"[bold red]❌ Configuration error: {e}[/bold red]")
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.pass_context
def cli(ctx, debug):
    """Paper Trails - polite feed ingestion into a deduplicated archive."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option('--json', 'as_json', is_flag=True, help='Print the run report as JSON')
@click.pass_context
def run(ctx, as_json):
    """Fetch every catalog source once and update the archive."""
    settings = _load_settings_or_exit()
    _configure_logging(ctx, settings)

    async def run_pipeline() -> RunReport:
        pipeline = IngestionPipeline(settings)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, pipeline.request_stop)
        try:
            return await pipeline.run()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

    console.print("[bold blue]📰 Starting Paper Trails ingestion[/bold blue]")

    try:
        report = asyncio.run(run_pipeline())
    except RunLockedError as e:
        console.print(f"[bold yellow]⏳ {e.user_message}[/bold yellow]")
        sys.exit(1)
    except PapertrailsError as e:
        console.print(f"[bold red]❌ Run aborted: {e.user_message}[/bold red]")
        sys.exit(1)

    _print_report(report)
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))

    sys.exit(EXIT_INTERRUPTED if report.interrupted else 0)


def _print_report(report: RunReport) -> None:
    table = Table(title="Ingestion Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Successful sources", str(report.successful))
    table.add_row("Failed sources", str(report.failed))
    table.add_row("Skipped sources", str(report.skipped))
    table.add_row("New articles", str(report.new_article_count))
    table.add_row("Archive size", str(report.archive_total))
    table.add_row("Display set", str(report.display_total))
    table.add_row("Duration", f"{report.duration_seconds:.1f}s")
    console.print(table)

    if report.per_source_failures:
        failures = Table(title="Source Failures")
        failures.add_column("Source", style="cyan")
        failures.add_column("Reason", style="red")
        for failure in report.per_source_failures:
            failures.add_row(failure["name"], failure["reason"])
        console.print(failures)

    if report.interrupted:
        console.print("[yellow]⏹️  Run interrupted; gathered articles were saved[/yellow]")
    else:
        console.print("[bold green]✅ Ingestion complete[/bold green]")


@cli.command()
def check_config():
    """Validate configuration and the feed catalog."""
    console.print("[bold blue]🔧 Checking Paper Trails Configuration[/bold blue]")
    settings = _load_settings_or_exit()

    table = Table(title="Configuration Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details")

    checks = [
        ("Catalog", _check_catalog_config),
        ("Throttle", _check_throttle_config),
        ("Retry", _check_retry_config),
        ("Archive", _check_archive_config),
        ("Logging", _check_logging_config),
    ]

    all_passed = True
    for name, check_func in checks:
        status, details = check_func(settings)
        table.add_row(name, "✅ Valid" if status else "❌ Invalid", details)
        all_passed = all_passed and status

    console.print(table)

    if all_passed:
        console.print("[bold green]✅ All configuration checks passed![/bold green]")
        sys.exit(0)
    console.print("[bold red]❌ Configuration validation failed[/bold red]")
    sys.exit(1)


@cli.command()
def show_catalog():
    """List catalog sources with their service class."""
    settings = _load_settings_or_exit()
    try:
        catalog = PublicationCatalog.load(settings.catalog.path, settings.throttle.service_classes)
    except PapertrailsError as e:
        console.print(f"[bold red]❌ {e.user_message}[/bold red]")
        sys.exit(1)

    table = Table(title=f"Feed Catalog ({len(catalog)} sources)")
    table.add_column("Name", style="cyan")
    table.add_column("Category")
    table.add_column("Host")
    table.add_column("Service class", style="magenta")
    for source in catalog:
        table.add_row(source.name, source.category, source.host, source.service_class or "-")
    console.print(table)


@cli.command()
def show_skip_list():
    """Show hosts on the skip list and when they become eligible again."""
    settings = _load_settings_or_exit()
    backoff = BackoffController.from_settings(settings.backoff)
    backoff.load_skip_list(settings.backoff.skip_list_path)

    entries = backoff.skip_entries()
    if not entries:
        console.print("[green]No hosts are currently skipped[/green]")
        return

    now = datetime.now(timezone.utc)
    table = Table(title="Skip List")
    table.add_column("Host", style="cyan")
    table.add_column("Reason", style="red")
    table.add_column("Until (UTC)")
    table.add_column("Remaining")
    for entry in entries:
        remaining = entry.until_datetime - now
        table.add_row(
            entry.host,
            entry.reason,
            entry.until_datetime.strftime("%Y-%m-%d %H:%M:%S"),
            f"{int(remaining.total_seconds() // 60)} min",
        )
    console.print(table)


def _check_catalog_config(settings) -> tuple[bool, str]:
    """Check that the catalog loads."""
    try:
        catalog = PublicationCatalog.load(settings.catalog.path, settings.throttle.service_classes)
    except PapertrailsError as e:
        return False, e.user_message
    classes = sum(1 for s in catalog if s.service_class)
    return True, f"{len(catalog)} sources, {classes} in service classes"


def _check_throttle_config(settings) -> tuple[bool, str]:
    """Check throttle configuration."""
    names = ", ".join(c.name for c in settings.throttle.service_classes) or "none"
    return True, f"Host spacing: {settings.throttle.host_min_interval}s, classes: {names}"


def _check_retry_config(settings) -> tuple[bool, str]:
    """Check retry and backoff configuration."""
    return True, (
        f"Attempts: {settings.retry.max_attempts}, "
        f"backoff {settings.backoff.base_delay}s..{settings.backoff.max_delay}s"
    )


def _check_archive_config(settings) -> tuple[bool, str]:
    """Check archive paths."""
    data_dir = Path(settings.archive.data_dir)
    if not data_dir.is_dir():
        return False, f"Data directory missing: {data_dir}"
    return True, f"{settings.archive.archive_path}, display limit {settings.archive.display_limit}"


def _check_logging_config(settings) -> tuple[bool, str]:
    """Check logging configuration."""
    return True, f"Level: {settings.logging.level.value}, file: {settings.logging.file_path or 'none'}"


if __name__ == "__main__":
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 Paper Trails interrupted by user[/yellow]")
        sys.exit(EXIT_INTERRUPTED)
