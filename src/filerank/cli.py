"""Command line interface for filerank."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from filerank.config import AppConfig
from filerank.errors import FileRankError
from filerank.index.history import site_from_url
from filerank.scheduler import RescanScheduler
from filerank.service import IndexService
from filerank.web.app import app as web_app

console = Console()
app = typer.Typer(help="filerank - rank local files for an upload context")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _config(db: Path | None, secondary_model: str | None = None) -> AppConfig:
    return AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        secondary_model=secondary_model,
    )


def _open_service(config: AppConfig) -> IndexService:
    try:
        return IndexService(config, base_dir=Path.cwd())
    except FileRankError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


def _require_db(config: AppConfig) -> None:
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")


def _format_ts(timestamp: float) -> str:
    if timestamp <= 0:
        return "never"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")


@app.command()
def index(
    root: Path = typer.Argument(..., help="Folder to index.", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    full: bool = typer.Option(False, "--full", help="Discard the index and rebuild it"),
    secondary_model: Optional[str] = typer.Option(
        None, "--secondary-model", help="Sentence-transformer model for secondary embeddings"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index a folder, re-reading only new or modified files."""
    _setup_logging(verbose)
    config = _config(db, secondary_model)
    service = _open_service(config)

    def progress(stage: str, done: int, total: int) -> None:
        if done == total or done % 100 == 0:
            console.print(f"  {stage}: {done}/{total}")

    console.print(f"Indexing [bold]{root}[/bold] into [bold]{service.db_path}[/bold]...")
    try:
        stats = service.index_begin(root, full=full, progress=progress)
    except FileRankError as exc:
        console.print(f"[red]Indexing failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        service.close()

    if stats.status == "failed":
        console.print(f"[red]Indexing failed: {stats.reason}[/red]")
        raise typer.Exit(code=1)
    if stats.status == "noop":
        console.print(f"[green]No changes detected.[/green] {stats.unchanged} files up to date.")
        return
    console.print(
        f"Added/modified: {stats.added_or_modified}, unchanged: {stats.unchanged}, "
        f"deleted: {stats.deleted}, total: {stats.total_indexed}"
    )


@app.command()
def rank(
    context: str = typer.Argument(..., help="Text describing the wanted file"),
    site: Optional[str] = typer.Option(None, "--site", help="Page URL or host of the upload"),
    accept: Optional[str] = typer.Option(None, "--accept", help="Type filter, e.g. '.pdf,image/*'"),
    top_n: int = typer.Option(AppConfig().top_n, "--top-n", help="Number of results to display"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Rank indexed files for a query context."""
    _setup_logging(verbose)
    config = _config(db)
    _require_db(config)

    service = _open_service(config)
    try:
        response = service.rank(context, site=site, type_filter=accept, top_n=top_n)
    except FileRankError as exc:
        console.print(f"[red]Ranking failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        service.close()

    if not response.results:
        console.print(f"[yellow]No matching files found ({response.reason}).[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("File")
    table.add_column("Type")
    table.add_column("Uses")

    for result in response.results:
        table.add_row(
            f"{result.score:.4f}",
            result.document.path,
            result.document.type,
            str(result.history_count),
        )

    console.print(table)


@app.command()
def count(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Print the number of indexed files."""
    config = _config(db)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("0")
        return
    service = _open_service(config)
    try:
        console.print(str(service.count()))
    finally:
        service.close()


@app.command()
def track(
    document_id: str = typer.Argument(..., help="Indexed file id (path relative to the folder)"),
    url: str = typer.Option(..., "--url", help="Page URL the file was selected on"),
    title: str = typer.Option("", "--title", help="Page title"),
    context: str = typer.Option("", "--context", help="Upload context text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Record that a file was selected on a page."""
    config = _config(db)
    _require_db(config)
    service = _open_service(config)
    try:
        document = service.store.get(document_id)
        if document is None:
            console.print(f"[yellow]Warning: {document_id} is not indexed.[/yellow]")
        future = service.record_selection(
            document_id,
            url,
            page_title=title,
            context=context,
            document_name=document.name if document else "",
            document_type=document.type if document else "",
        )
    finally:
        service.close()

    if future.exception() is not None:
        console.print("[red]Failed to record selection.[/red]")
        raise typer.Exit(code=1)
    console.print(f"Recorded selection #{future.result()}.")


@app.command()
def history(
    site: Optional[str] = typer.Option(None, "--site", help="Only show this page URL or host"),
    limit: int = typer.Option(20, help="Maximum number of entries"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show recent file selections."""
    config = _config(db)
    _require_db(config)
    service = _open_service(config)
    try:
        if site:
            entries = list(reversed(service.history.by_site(site_from_url(site))))[:limit]
        else:
            entries = service.history.all(limit=limit)
    finally:
        service.close()

    if not entries:
        console.print("[yellow]No history yet.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("When")
    table.add_column("Site")
    table.add_column("File")
    table.add_column("Context")
    for entry in entries:
        table.add_row(
            _format_ts(entry.timestamp), entry.site, entry.document_id, entry.context[:60]
        )
    console.print(table)


@app.command()
def config(
    auto: Optional[bool] = typer.Option(None, "--auto/--no-auto", help="Enable auto-rescan"),
    interval: Optional[int] = typer.Option(
        None, "--interval", min=1, help="Rescan interval in minutes"
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show or change the rescan configuration."""
    app_config = _config(db)
    service = _open_service(app_config)
    try:
        changes = {}
        if auto is not None:
            changes["auto_rescan_enabled"] = auto
        if interval is not None:
            changes["rescan_interval_minutes"] = interval
        current = (
            service.update_rescan_config(**changes) if changes else service.rescan_config()
        )
    finally:
        service.close()

    console.print(f"Auto-rescan: {'on' if current.auto_rescan_enabled else 'off'}")
    console.print(f"Interval: {current.rescan_interval_minutes} min")
    console.print(f"Folder: {current.root or '-'}")
    console.print(f"Last scan: {_format_ts(current.last_scan_timestamp)}")


@app.command()
def schedule(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run periodic rescans in the foreground until interrupted."""
    _setup_logging(verbose)
    service = _open_service(_config(db))
    scheduler = RescanScheduler(service)
    scheduler.start()
    console.print("Rescan scheduler running, press Ctrl+C to stop.")
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
        service.close()


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Start the HTTP API."""
    import uvicorn

    resolved_db = _config(db).resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Warning: database not found, ranking returns no results.[/yellow]")

    web_app.state.db_path = resolved_db
    console.print(f"Starting API on http://{host}:{port} (database: {resolved_db})")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
