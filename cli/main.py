"""
Main CLI entry point for docsync.

Provides the `docsync` command-line interface for folder management, scans,
ingestion requests, the worker loop and status queries.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from config.loader import ConfigurationLoader
from docsync import __version__
from docsync.errors import DocSyncError
from docsync.models.config import GlobalSettings, ServiceConfig
from docsync.models.files import ScanStats
from docsync.service import DocSyncService

console = Console()
logger = logging.getLogger("docsync.cli")


def setup_logging(settings: GlobalSettings) -> None:
    """Route log records through rich, plus a plain file handler if enabled"""
    handlers: list = [
        RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)
    ]

    log_file = settings.get_log_file()
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=settings.log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True
    )


def _build_service(config: ServiceConfig) -> DocSyncService:
    return DocSyncService(config)


def _run_with_service(
    ctx: click.Context,
    action: Callable[[DocSyncService], Awaitable[Any]],
    connect_vector_store: bool = False
) -> Any:
    """Start a service, run one async action against it and shut it down"""
    loader: ConfigurationLoader = ctx.obj["loader"]

    try:
        config = loader.load_config(ctx.obj["config_file"])
    except DocSyncError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        sys.exit(1)

    async def runner() -> Any:
        service = _build_service(config)
        await service.start(connect_vector_store=connect_vector_store)
        try:
            return await action(service)
        finally:
            await service.stop()

    try:
        return asyncio.run(runner())
    except DocSyncError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        sys.exit(1)


def _parse_metadata(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        metadata = json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"metadata must be JSON: {e}")
    if not isinstance(metadata, dict):
        raise click.BadParameter("metadata must be a JSON object")
    return metadata


def _print_scan_stats(results: Dict[str, ScanStats]) -> None:
    table = Table(title="Scan Results")
    table.add_column("Folder", style="cyan", no_wrap=True)
    table.add_column("Added", justify="right", style="green")
    table.add_column("Modified", justify="right", style="yellow")
    table.add_column("Unchanged", justify="right", style="dim")
    table.add_column("Deleted", justify="right", style="magenta")
    table.add_column("Errors", justify="right", style="red")

    for name, stats in results.items():
        table.add_row(
            name, str(stats.added), str(stats.modified), str(stats.unchanged),
            str(stats.deleted), str(stats.errors)
        )
    console.print(table)


@click.group()
@click.version_option(version=__version__, prog_name="docsync")
@click.option(
    '--config', 'config_file',
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help='JSON config file (default: $DOCSYNC_CONFIG_FILE or ./docsync.json)'
)
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], case_sensitive=False),
    default=None,
    help='Override DOCSYNC_LOG_LEVEL'
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[Path], log_level: Optional[str]):
    """
    docsync - keep a vector index in sync with document folders.
    """
    settings = GlobalSettings(log_level=log_level.upper()) if log_level else GlobalSettings()
    setup_logging(settings)

    ctx.ensure_object(dict)
    ctx.obj.setdefault("loader", ConfigurationLoader(settings))
    ctx.obj.setdefault("config_file", config_file)


# --- Folder management ---

@cli.group()
def folders():
    """Manage monitored folders."""


@folders.command("add")
@click.argument('path', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--name', '-n', required=True, help='Display name of the folder')
@click.option('--recursive/--no-recursive', default=True, help='Scan subdirectories')
@click.option('--pattern', '-p', default=None, help='Glob applied to file names, e.g. "*.pdf"')
@click.pass_context
def folders_add(ctx: click.Context, path: Path, name: str, recursive: bool, pattern: Optional[str]):
    """Start monitoring PATH."""
    folder = _run_with_service(
        ctx,
        lambda service: service.scan_engine.add_monitored_folder(path, name, recursive, pattern)
    )
    console.print(f"[green]✅ Monitoring '{folder.name}'[/green] [dim]({folder.id})[/dim]")


@folders.command("list")
@click.pass_context
def folders_list(ctx: click.Context):
    """List monitored folders."""
    result = _run_with_service(ctx, lambda service: service.scan_engine.list_monitored_folders())

    if not result:
        console.print("[yellow]No monitored folders. Add one with 'docsync folders add'.[/yellow]")
        return

    table = Table(title="Monitored Folders")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name", style="cyan")
    table.add_column("Path")
    table.add_column("Pattern", style="dim")
    table.add_column("Files", justify="right")
    table.add_column("Active")

    for folder in result:
        table.add_row(
            folder.id,
            folder.name,
            escape(folder.path),
            folder.scan_pattern or "*",
            str(folder.file_count),
            "[green]yes[/green]" if folder.is_active else "[red]no[/red]"
        )
    console.print(table)


@folders.command("activate")
@click.argument('folder_id')
@click.pass_context
def folders_activate(ctx: click.Context, folder_id: str):
    """Resume scanning a folder."""
    _run_with_service(ctx, lambda service: service.scan_engine.activate_folder(folder_id))
    console.print(f"[green]✅ Folder {folder_id} activated[/green]")


@folders.command("deactivate")
@click.argument('folder_id')
@click.pass_context
def folders_deactivate(ctx: click.Context, folder_id: str):
    """Stop scanning a folder; its files stay tracked."""
    _run_with_service(ctx, lambda service: service.scan_engine.deactivate_folder(folder_id))
    console.print(f"[yellow]Folder {folder_id} deactivated[/yellow]")


# --- Scanning and queueing ---

@cli.command()
@click.option('--folder', 'folder_id', default=None, help='Scan only this folder id')
@click.option('--default', 'default_only', is_flag=True, help='Scan only the configured watch folder')
@click.option('--enqueue', is_flag=True, help='Queue pending files after scanning')
@click.pass_context
def scan(ctx: click.Context, folder_id: Optional[str], default_only: bool, enqueue: bool):
    """Detect added, modified and deleted files."""

    async def action(service: DocSyncService) -> Dict[str, Any]:
        if folder_id or default_only:
            folder = (
                await service.metadata_store.require_folder(folder_id)
                if folder_id else await service.scan_engine.ensure_default_folder()
            )
            stats = await service.scan_engine.scan_folder(folder_id)
            results = {folder.name if folder else "default": stats}
        else:
            results = await service.scan_engine.scan_all_folders()

        queued = await service.ingestion.process_pending_files() if enqueue else 0
        return {"results": results, "queued": queued}

    outcome = _run_with_service(ctx, action, connect_vector_store=True)

    if not outcome["results"]:
        console.print("[yellow]No active folders to scan.[/yellow]")
    else:
        _print_scan_stats(outcome["results"])
    if enqueue:
        console.print(f"[blue]📥 Queued {outcome['queued']} file(s)[/blue]")


@cli.command("enqueue-pending")
@click.option('--limit', '-l', type=int, default=None, help='Maximum files to queue')
@click.pass_context
def enqueue_pending(ctx: click.Context, limit: Optional[int]):
    """Queue ingestion jobs for PENDING and MODIFIED files."""
    queued = _run_with_service(ctx, lambda service: service.ingestion.process_pending_files(limit))
    console.print(f"[blue]📥 Queued {queued} file(s)[/blue]")


@cli.command("ingest-text")
@click.argument('text')
@click.option('--metadata', '-m', default=None, help='JSON object stored with the document')
@click.pass_context
def ingest_text(ctx: click.Context, text: str, metadata: Optional[str]):
    """Queue TEXT for ingestion."""
    meta = _parse_metadata(metadata)
    job_id = _run_with_service(ctx, lambda service: service.ingestion.enqueue_text_ingestion(text, meta))
    console.print(f"[green]✅ Queued job {job_id}[/green]")


@cli.command("ingest-file")
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--type', 'file_type', default=None, help='File type (default: extension)')
@click.option('--metadata', '-m', default=None, help='JSON object stored with the document')
@click.option('--delete-after', is_flag=True, help='Delete the file once processing is finished')
@click.pass_context
def ingest_file(
    ctx: click.Context,
    path: Path,
    file_type: Optional[str],
    metadata: Optional[str],
    delete_after: bool
):
    """Queue the file at PATH for ingestion."""
    meta = _parse_metadata(metadata)
    resolved = path.resolve()
    job_id = _run_with_service(
        ctx,
        lambda service: service.ingestion.enqueue_file_ingestion(
            str(resolved),
            file_type or resolved.suffix,
            resolved.name,
            meta,
            delete_after_processing=delete_after
        )
    )
    console.print(f"[green]✅ Queued job {job_id}[/green]")


# --- Workers ---

@cli.command()
@click.option('--once', is_flag=True, help='Scan, process everything queued, then exit')
@click.option('--interval', type=float, default=60.0, show_default=True,
              help='Seconds between scans when running continuously')
@click.option('--no-scan', is_flag=True, help='Only process queued jobs')
@click.pass_context
def run(ctx: click.Context, once: bool, interval: float, no_scan: bool):
    """Run the worker pool (and periodic scans)."""

    async def action(service: DocSyncService) -> Dict[str, int]:
        await service.workers.start()
        try:
            while True:
                if not no_scan:
                    summary = await service.sync_once()
                    logger.info(f"Sync pass queued {summary['queued']} file(s)")
                if once:
                    await service.workers.drain()
                    break
                await asyncio.sleep(interval)
        finally:
            await service.workers.stop()
        return service.workers.get_stats()

    console.print("[blue]🚀 Starting workers...[/blue]")
    try:
        stats = _run_with_service(ctx, action, connect_vector_store=True)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        return

    console.print(
        f"[green]🎉 Done:[/green] {stats['completed']} completed, "
        f"{stats['failed']} failed, {stats['retried']} retried"
    )


# --- Status ---

@cli.command()
@click.pass_context
def status(ctx: click.Context):
    """Show file, job and vector counts."""
    result = _run_with_service(ctx, lambda service: service.get_status(include_vectors=True))

    files_table = Table(title="Tracked Files")
    files_table.add_column("Status", style="cyan")
    files_table.add_column("Count", justify="right")
    for name, count in result["files"].items():
        files_table.add_row(name, str(count))

    jobs_table = Table(title="Jobs")
    jobs_table.add_column("State", style="cyan")
    jobs_table.add_column("Count", justify="right")
    for name, count in result["jobs"].items():
        jobs_table.add_row(name, str(count))

    console.print(files_table)
    console.print(jobs_table)

    if result["vectors"] is None:
        console.print("[yellow]Vector store unreachable[/yellow]")
    else:
        console.print(f"Vectors stored: {result['vectors']}")


@cli.command()
@click.argument('job_id')
@click.option('--remove', is_flag=True, help='Remove the job if it is still waiting')
@click.pass_context
def job(ctx: click.Context, job_id: str, remove: bool):
    """Show or remove a job."""
    if remove:
        _run_with_service(ctx, lambda service: service.ingestion.remove_job(job_id))
        console.print(f"[yellow]Removed job {job_id}[/yellow]")
        return

    result = _run_with_service(ctx, lambda service: service.ingestion.get_job(job_id))
    if result is None:
        console.print(f"[red]❌ Job {job_id} not found[/red]")
        sys.exit(1)

    table = Table(title=f"Job {result.id}")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("Kind", result.payload.kind)
    table.add_row("State", result.state.value)
    table.add_row("Attempts", f"{result.attempts}/{result.max_attempts}")
    table.add_row("Progress", f"{result.progress}%")
    if result.is_file_job:
        table.add_row("File", result.payload.file_path)
    if result.result:
        table.add_row("Vector", result.result.id)
    if result.failed_reason:
        table.add_row("Error", f"[red]{result.failed_reason}[/red]")
    console.print(table)


@cli.command()
@click.argument('query')
@click.option('--limit', '-l', type=int, default=5, show_default=True)
@click.pass_context
def search(ctx: click.Context, query: str, limit: int):
    """Find stored documents similar to QUERY."""
    hits = _run_with_service(ctx, lambda service: service.search(query, limit), connect_vector_store=True)

    if not hits:
        console.print("[yellow]No results.[/yellow]")
        return

    table = Table(title=f"Results for '{query}'")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Source", style="cyan")
    table.add_column("Text")
    for hit in hits:
        source = hit.metadata.get("originalFilename") or hit.metadata.get("filename") or hit.id
        snippet = " ".join(hit.text.split())[:120]
        table.add_row(f"{hit.score:.3f}", escape(str(source)), escape(snippet))
    console.print(table)


if __name__ == "__main__":
    cli()
