"""CLI entry point for Scriptorium."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from scriptorium import __version__
from scriptorium.config import ConfigError, Settings
from scriptorium.db.connection import Database
from scriptorium.db.migrations import MigrationError, MigrationRunner
from scriptorium.repository.service import RepositoryService
from scriptorium.repository.types import (
    ImportOptions,
    ImportProgress,
    VerificationResult,
)

console = Console()

LOG_LEVELS = ["debug", "info", "warning", "error"]


def _run_with_service(
    settings: Settings, action: Callable[[RepositoryService], Awaitable[Any]]
) -> Any:
    """Run an async action against an initialized service."""

    async def runner():
        service = RepositoryService(settings)
        await service.init()
        try:
            return await action(service)
        finally:
            await service.shutdown()

    try:
        return asyncio.run(runner())
    except MigrationError as e:
        console.print(f"[red]Database migration failed: {e}[/red]")
        sys.exit(1)


def _print_verification(result: VerificationResult) -> None:
    if result.valid:
        console.print("[green]✓ Valid[/green]")
    else:
        console.print("[red]✗ Invalid[/red]")

    for err in result.errors:
        location = f" [dim]{err.path}[/dim]" if err.path else ""
        console.print(f"  [red]ERROR[/red] {err.code}: {err.message}{location}")
    for warn in result.warnings:
        location = f" [dim]{warn.path}[/dim]" if warn.path else ""
        console.print(f"  [yellow]WARN[/yellow] {warn.code}: {warn.message}{location}")


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="YAML config file (default: ~/.scriptorium/config.yaml)",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="warning",
    help="Log level",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str):
    """Scriptorium - scripture repository discovery and import."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        ctx.obj = Settings.load(config_path)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_obj
def discover(settings: Settings):
    """List repositories published by the enabled sources."""

    async def action(service: RepositoryService):
        entries = await service.discover_repositories()
        return entries, dict(service.discovery.last_errors)

    entries, errors = _run_with_service(settings, action)

    for url, message in errors.items():
        console.print(f"[yellow]Source failed: {url}: {message}[/yellow]")

    if not entries:
        console.print("[yellow]No repositories found[/yellow]")
        return

    table = Table(title=f"Available Repositories ({len(entries)})")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Language")
    table.add_column("Verified")
    table.add_column("URL", style="dim")

    for entry in entries:
        table.add_row(
            entry.id,
            entry.name,
            entry.language,
            "[green]✓[/green]" if entry.verified else "",
            entry.url,
        )
    console.print(table)


@cli.command()
@click.argument("url")
@click.pass_obj
def validate(settings: Settings, url: str):
    """Validate the package manifest at URL or directory."""
    result = _run_with_service(
        settings, lambda service: service.validate_repository_url(url)
    )
    _print_verification(result)
    if not result.valid:
        sys.exit(1)


@cli.command()
@click.argument("path", type=click.Path(file_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_obj
def scan(settings: Settings, path: str, as_json: bool):
    """Find and validate packages under a local directory."""
    result = _run_with_service(settings, lambda service: service.scan_directory(path))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return

    table = Table(title=f"Packages under {path}")
    table.add_column("Path")
    table.add_column("ID", style="cyan")
    table.add_column("Version")
    table.add_column("Status")

    for candidate in result.repositories:
        info = candidate.manifest.get("repository") or {}
        status = (
            "[green]valid[/green]"
            if candidate.validation.valid
            else f"[red]{len(candidate.validation.errors)} errors[/red]"
        )
        table.add_row(
            candidate.path, str(info.get("id", "?")), str(info.get("version", "?")), status
        )
    console.print(table)

    for error in result.errors:
        console.print(f"[red]✗ {error}[/red]")


@cli.command("import")
@click.argument("url")
@click.option("--overwrite", is_flag=True, help="Replace an existing repository")
@click.option(
    "--no-checksums", is_flag=True, help="Skip checksum verification of downloads"
)
@click.option(
    "--translation",
    "translations",
    multiple=True,
    help="Translation id to import from a parent package (repeatable)",
)
@click.pass_obj
def import_cmd(
    settings: Settings,
    url: str,
    overwrite: bool,
    no_checksums: bool,
    translations: tuple[str, ...],
):
    """Import the package at URL or directory into the local store."""

    def show_progress(event: ImportProgress) -> None:
        console.print(
            f"[dim]{event.stage.value:<12}[/dim] {event.progress:3d}%  {event.message}"
        )

    options = ImportOptions(
        repository_url=url,
        validate_checksums=not no_checksums,
        overwrite_existing=overwrite,
        progress_callback=show_progress,
        selected_translations=list(translations) or None,
    )
    result = _run_with_service(settings, lambda service: service.import_repository(options))

    if result.success:
        lines = [
            f"[green]✓ Imported {result.repository_id}[/green]",
            f"Books: {result.books_imported}",
            f"Verses: {result.verses_imported}",
        ]
        if result.translations_imported:
            lines.append(f"Translations: {', '.join(result.translations_imported)}")
        lines.append(f"Duration: {result.duration_ms} ms")
        console.print(Panel("\n".join(lines), title="Import Complete"))
    else:
        console.print(f"[red]✗ Import failed: {result.repository_id or url}[/red]")
        for error in result.errors:
            console.print(f"  [red]{error}[/red]")

    for warning in result.warnings:
        console.print(f"  [yellow]{warning}[/yellow]")

    if not result.success:
        sys.exit(1)


@cli.command()
@click.pass_obj
def sources(settings: Settings):
    """Show configured index sources."""
    table = Table(title="Repository Sources")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Enabled")
    table.add_column("URL", style="dim")

    for source in settings.sources:
        table.add_row(
            source.name,
            source.type.value,
            "[green]yes[/green]" if source.enabled else "[dim]no[/dim]",
            source.url,
        )
    console.print(table)


@cli.command()
@click.pass_obj
def repositories(settings: Settings):
    """List imported repositories."""

    async def action(service: RepositoryService):
        return service.list_repositories()

    rows = _run_with_service(settings, action)
    if not rows:
        console.print("[yellow]No repositories imported[/yellow]")
        return

    table = Table(title="Imported Repositories")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Parent")
    table.add_column("Version")

    for row in rows:
        table.add_row(
            row["id"], row["name"], row["type"], row["parent_id"] or "", row["version"]
        )
    console.print(table)


@cli.command()
@click.argument("repository_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def delete(settings: Settings, repository_id: str, yes: bool):
    """Delete an imported repository (translations of a parent go too)."""
    if not yes:
        click.confirm(f"Delete repository '{repository_id}'?", abort=True)

    async def action(service: RepositoryService):
        return service.delete_repository(repository_id)

    if _run_with_service(settings, action):
        console.print(f"[green]✓ Deleted {repository_id}[/green]")
    else:
        console.print(f"[red]Repository not found: {repository_id}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("query")
@click.option("--repository", "-r", default=None, help="Restrict to one repository")
@click.pass_obj
def search(settings: Settings, query: str, repository: str | None):
    """Search imported verse text."""

    async def action(service: RepositoryService):
        return service.search_verses(query, repository)

    hits = _run_with_service(settings, action)
    if not hits:
        console.print(f"[yellow]No verses match '{query}'[/yellow]")
        return

    for hit in hits:
        console.print(
            f"[bold cyan]{hit['book_name']} {hit['chapter']}:{hit['verse']}[/bold cyan] "
            f"[dim]({hit['repository_id']})[/dim] {hit['text']}"
        )


@cli.command()
@click.pass_obj
def stats(settings: Settings):
    """Show store statistics."""

    async def action(service: RepositoryService):
        return service.get_stats()

    data = _run_with_service(settings, action)
    table = Table(title="Store Statistics")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for key in ("repositories", "books", "verses", "database_size"):
        table.add_row(key.replace("_", " ").title(), str(data[key]))
    console.print(table)
    console.print(f"[dim]Database: {settings.db_path}[/dim]")


@cli.command()
@click.option("--rollback", type=int, default=None, help="Roll back to this version")
@click.pass_obj
def migrate(settings: Settings, rollback: int | None):
    """Apply (or roll back) schema migrations."""
    db = Database(settings.db_path)
    try:
        runner = MigrationRunner(db.connect())
        if rollback is not None:
            count = runner.rollback(rollback)
            console.print(f"[green]✓ Rolled back {count} migrations[/green]")
        else:
            count = runner.run()
            console.print(f"[green]✓ Applied {count} migrations[/green]")
        console.print(f"[dim]Schema version: {runner.current_version()}[/dim]")
    except MigrationError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    finally:
        db.close()


@cli.command()
@click.option("--host", default=None, help="Bind host")
@click.option("--port", default=None, type=int, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None):
    """Start the HTTP API server."""
    import uvicorn

    from scriptorium.api.main import create_app

    settings: Settings = ctx.obj
    host = host or settings.host
    port = port or settings.port
    log_level = ctx.parent.params["log_level"] if ctx.parent else "warning"

    console.print("[bold blue]Starting Scriptorium API[/bold blue]")
    console.print(f"[dim]Binding to http://{host}:{port}/api/v1[/dim]")

    uvicorn.run(create_app(settings=settings), host=host, port=port, log_level=log_level)


if __name__ == "__main__":
    cli()
