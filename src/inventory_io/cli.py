"""Command-line interface for the equipment inventory import/export pipeline."""

import asyncio
import json
import sys
from datetime import datetime, time, timedelta
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from .config import ImporterConfig, load_config
from .execution.progress import JobProgress, ProgressSink
from .models.history import ImportHistory, ImportStatus
from .models.import_row import CellType, EquipmentType
from .models.options import (
    DateRange,
    ExportFilters,
    ExportFormat,
    ExportOptions,
    HistoryQuery,
    MergeStrategy,
)
from .observability import configure_logging
from .service import InventoryService
from .utils.exceptions import ImporterError

app = typer.Typer(
    name="inventory-io",
    help="Equipment inventory CSV import/export",
    add_completion=False,
)

console = Console()
logger = structlog.get_logger(__name__)

VERSION = "0.1.0"

_STATUS_STYLES = {
    ImportStatus.PENDING: "yellow",
    ImportStatus.PROCESSING: "cyan",
    ImportStatus.COMPLETED: "green",
    ImportStatus.FAILED: "red",
    ImportStatus.ROLLED_BACK: "magenta",
}


class RichProgressSink(ProgressSink):
    """Drive a rich progress bar from job notifications."""

    def __init__(self, progress: Progress, task_id: TaskID) -> None:
        self.progress = progress
        self.task_id = task_id

    def notify(self, event: JobProgress) -> None:
        description = (
            f"[green]DONE: {event.status}" if event.finished else "[cyan]Importing rows..."
        )
        self.progress.update(
            self.task_id,
            total=event.total_rows,
            completed=event.processed_rows,
            description=description,
        )


def _load_config(config_file: Path | None) -> ImporterConfig:
    try:
        config = load_config(config_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]ERROR: {e}[/red]")
        raise typer.Exit(code=1) from e
    configure_logging(
        level=config.logging.level,
        json_logs=config.logging.format == "json",
        log_file=config.logging.file,
    )
    return config


def _end_of_day(value: datetime | None) -> datetime | None:
    """A bare date (midnight) given as an upper bound covers the whole day."""
    if value is None or value.time() != time.min:
        return value
    return value + timedelta(days=1) - timedelta(microseconds=1)


def _fail(message: str, error: Exception) -> typer.Exit:
    logger.error(message, error=str(error), error_type=type(error).__name__)
    console.print(f"\n[red]ERROR: {message}:[/red] {error}")
    return typer.Exit(code=1)


def _status_text(status: ImportStatus) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def _print_job(history: ImportHistory, show_errors: int = 20) -> None:
    table = Table(title=f"Import {history.id}")
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    table.add_row("Status", _status_text(history.status))
    table.add_row("File", history.filename)
    table.add_row("Actor", history.actor_id)
    table.add_row("Rows", f"{history.processed_rows}/{history.total_rows} processed")
    table.add_row("Successful", f"[green]{history.successful_rows}[/green]")
    table.add_row("Failed", f"[red]{history.failed_rows}[/red]")
    table.add_row(
        "Inserted / Updated / Replaced / Skipped",
        f"{history.inserted_rows} / {history.updated_rows} / "
        f"{history.replaced_rows} / {history.skipped_rows}",
    )
    table.add_row("Created entities", str(len(history.created_entity_ids)))
    table.add_row("Started", history.started_at.isoformat())
    if history.completed_at:
        table.add_row("Completed", history.completed_at.isoformat())
    if history.failure_reason:
        table.add_row("Failure reason", f"[red]{history.failure_reason}[/red]")
    if history.rolled_back_at:
        table.add_row("Rolled back", f"{history.rolled_back_at.isoformat()} by {history.rolled_back_by}")
    console.print(table)

    if history.errors and show_errors:
        errors = Table(title="Errors", header_style="bold red")
        errors.add_column("Row", justify="right")
        errors.add_column("Field")
        errors.add_column("Code")
        errors.add_column("Message")
        for error in history.errors[:show_errors]:
            errors.add_row(
                "-" if error.row is None else str(error.row), error.field, error.code, error.message
            )
        console.print(errors)
        if len(history.errors) > show_errors:
            console.print(f"[dim]... and {len(history.errors) - show_errors} more errors[/dim]")


@app.command()
def template(
    output_file: Path | None = typer.Option(
        None, "--output", "-o", help="Write the template here (default: stdout)"
    ),
) -> None:
    """
    Write a CSV import template with two sample rows.

    Examples:
        inventory-io template -o equipment.csv
    """
    from .core.preview import generate_template

    content = generate_template()
    if output_file is None:
        sys.stdout.write(content.decode("utf-8"))
        return
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_bytes(content)
    console.print(f"[green]Template written to {output_file}[/green]")


@app.command()
def preview(
    csv_file: Path = typer.Argument(..., help="CSV file to preview", exists=True),
    as_json: bool = typer.Option(False, "--json", help="Print the preview as JSON"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
) -> None:
    """
    Show the first rows of a file and their validation errors without importing.

    Examples:
        inventory-io preview equipment.csv
    """
    from .core.preview import build_preview

    _load_config(config_file)

    try:
        result = build_preview(csv_file.read_bytes())
    except ImporterError as e:
        raise _fail("Preview failed", e) from e

    if as_json:
        console.print_json(json.dumps(result.to_dict()))
        return

    console.print(f"\n[bold blue]Preview:[/bold blue] {csv_file} ({result.total_rows} rows)\n")
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right")
    for header in result.headers:
        table.add_column(header)
    for index, row in enumerate(result.rows, start=1):
        table.add_row(str(index), *[row.get(h) or "" for h in result.headers])
    console.print(table)

    if result.is_valid:
        console.print("\n[green]SUCCESS: No problems found in the previewed rows[/green]")
        return

    console.print(f"\n[red]Found {len(result.errors)} problem(s):[/red]")
    for error in result.errors:
        where = "Header" if error.row is None else f"Row {error.row}"
        console.print(f"  - {where} ({error.field}): {error.message}")
    raise typer.Exit(code=1)


@app.command("import")
def import_csv(
    csv_file: Path = typer.Argument(..., help="CSV file to import", exists=True),
    actor: str = typer.Option("cli", "--actor", "-a", help="Actor id recorded on the job"),
    create_missing: bool | None = typer.Option(
        None, "--create-missing/--no-create-missing", help="Create sites and cells that don't exist"
    ),
    merge_strategy: MergeStrategy | None = typer.Option(
        None, "--merge-strategy", "-m", help="What to do with duplicate IP addresses"
    ),
    validate_only: bool = typer.Option(
        False, "--validate-only", help="Report what would happen without writing"
    ),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
) -> None:
    """
    Import equipment from a CSV file.

    Examples:
        inventory-io import equipment.csv --create-missing
        inventory-io import equipment.csv -m update --actor alice
        inventory-io import equipment.csv --validate-only
    """
    config = _load_config(config_file)

    async def run_import() -> ImportHistory:
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            console=console,
        )
        with progress:
            task = progress.add_task("[cyan]Importing rows...", total=None)
            with InventoryService(config, progress_sink=RichProgressSink(progress, task)) as service:
                options = service.default_options(
                    actor,
                    create_missing=create_missing,
                    merge_strategy=merge_strategy,
                    validate_only=validate_only,
                )
                handle = await service.start_import(csv_file.read_bytes(), csv_file.name, options)
                if handle.is_background:
                    progress.console.print(
                        f"Job [cyan]{handle.job_id}[/cyan] running in the background"
                    )
                await handle.wait()
                return service.get_job(handle.job_id)

    mode = "VALIDATE ONLY" if validate_only else "LIVE"
    console.print(
        Panel.fit(
            f"[bold blue]Equipment Import[/bold blue]\n\nFile: {csv_file}\nMode: [yellow]{mode}[/yellow]",
            border_style="blue",
        )
    )

    try:
        history = asyncio.run(run_import())
    except ImporterError as e:
        raise _fail("Import failed", e) from e

    _print_job(history)
    if history.status != ImportStatus.COMPLETED:
        raise typer.Exit(code=1)
    if history.failed_rows:
        console.print(f"\n[yellow]WARNING: {history.failed_rows} row(s) failed[/yellow]")


@app.command()
def export(
    output_file: Path | None = typer.Option(
        None, "--output", "-o", help="Output file (default: stdout)"
    ),
    fmt: ExportFormat = typer.Option(ExportFormat.CSV, "--format", "-f", help="csv or json"),
    site_ids: list[str] | None = typer.Option(None, "--site-id", help="Site id (repeatable)"),
    cell_ids: list[str] | None = typer.Option(None, "--cell-id", help="Cell id (repeatable)"),
    equipment_ids: list[str] | None = typer.Option(
        None, "--equipment-id", help="Equipment id (repeatable)"
    ),
    cell_types: list[CellType] | None = typer.Option(None, "--cell-type", help="Cell type"),
    equipment_types: list[EquipmentType] | None = typer.Option(
        None, "--equipment-type", help="Equipment type"
    ),
    ip_range: str | None = typer.Option(None, "--ip-range", help="CIDR, e.g. 192.168.1.0/24"),
    tags: list[str] | None = typer.Option(None, "--tag", help="Tag (repeatable, any matches)"),
    start: datetime | None = typer.Option(None, "--from", help="Created/updated on or after"),
    end: datetime | None = typer.Option(None, "--to", help="Created/updated on or before"),
    include_hierarchy: bool = typer.Option(
        True, "--hierarchy/--no-hierarchy", help="Include site/cell/equipment ids and path"
    ),
    include_tags: bool = typer.Option(True, "--tags/--no-tags", help="Include the tags column"),
    include_audit: bool = typer.Option(False, "--audit", help="Include audit columns"),
    allow_formulas: bool = typer.Option(
        False, "--allow-formulas", help="Write formula-like cells without escaping"
    ),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
) -> None:
    """
    Export equipment as CSV or JSON.

    Examples:
        inventory-io export -o inventory.csv
        inventory-io export --ip-range 192.168.1.0/24 --format json -o plc.json
        inventory-io export --cell-type production --tag critical
    """
    config = _load_config(config_file)
    if allow_formulas:
        config.export.allow_formulas = True

    if (start is None) != (end is None):
        console.print("[red]ERROR: --from and --to must be given together[/red]")
        raise typer.Exit(code=1)

    try:
        filters = ExportFilters(
            site_ids=site_ids,
            cell_ids=cell_ids,
            equipment_ids=equipment_ids,
            cell_types=cell_types,
            equipment_types=equipment_types,
            ip_range=ip_range,
            tags=tags,
            date_range=DateRange(start=start, end=_end_of_day(end)) if start and end else None,
        )
    except ValueError as e:
        raise _fail("Invalid filters", e) from e

    options = ExportOptions(
        format=fmt,
        include_hierarchy=include_hierarchy,
        include_tags=include_tags,
        include_audit_info=include_audit,
    )

    try:
        with InventoryService(config) as service:
            stream = service.open_export(filters, options)
            if output_file is None:
                for chunk in stream.chunks:
                    sys.stdout.write(chunk.decode("utf-8"))
                return
            output_file.parent.mkdir(parents=True, exist_ok=True)
            with open(output_file, "wb") as f:
                for chunk in stream.chunks:
                    f.write(chunk)
            count = service.exporter.exported_count
    except ImporterError as e:
        raise _fail("Export failed", e) from e

    console.print(f"[green]Exported {count} record(s) to {output_file}[/green]")


@app.command()
def history(
    page: int = typer.Option(1, "--page", help="Page number"),
    page_size: int = typer.Option(20, "--page-size", help="Jobs per page (max 100)"),
    status: ImportStatus | None = typer.Option(None, "--status", help="Only jobs in this status"),
    actor: str | None = typer.Option(None, "--actor", help="Only jobs started by this actor"),
    start: datetime | None = typer.Option(None, "--from", help="Started on or after"),
    end: datetime | None = typer.Option(None, "--to", help="Started on or before"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
) -> None:
    """
    List import jobs, newest first.

    Examples:
        inventory-io history
        inventory-io history --status failed --page 2
        inventory-io history --from 2024-01-01 --to 2024-01-31
    """
    config = _load_config(config_file)
    try:
        query = HistoryQuery(
            page=page,
            page_size=page_size,
            status=status,
            actor_id=actor,
            start_date=start,
            end_date=_end_of_day(end),
        )
    except ValueError as e:
        raise _fail("Invalid query", e) from e

    with InventoryService(config) as service:
        result = service.history(query)

    if not result.items:
        console.print("[yellow]No import jobs found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Job ID", style="cyan")
    table.add_column("Started")
    table.add_column("File")
    table.add_column("Actor")
    table.add_column("Status")
    table.add_column("Rows", justify="right")
    table.add_column("Success", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")

    for job in result.items:
        table.add_row(
            job.id,
            job.started_at.isoformat()[:19],
            job.filename,
            job.actor_id,
            _status_text(job.status),
            str(job.total_rows),
            str(job.successful_rows),
            str(job.failed_rows),
        )

    console.print(table)
    console.print(
        f"\n[dim]Page {result.page}/{max(result.total_pages, 1)} ({result.total} jobs). "
        "To see details: inventory-io status <job_id>[/dim]"
    )


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Import job id"),
    errors: int = typer.Option(20, "--errors", help="Number of errors to show"),
    as_json: bool = typer.Option(False, "--json", help="Print the full record as JSON"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
) -> None:
    """
    Show one import job with its counters and errors.

    Examples:
        inventory-io status 3f1c...
    """
    config = _load_config(config_file)
    try:
        with InventoryService(config) as service:
            job = service.get_job(job_id)
    except ImporterError as e:
        raise _fail("Status failed", e) from e

    if as_json:
        console.print_json(json.dumps(job.to_dict()))
        return
    _print_job(job, show_errors=errors)


@app.command()
def rollback(
    job_id: str = typer.Argument(..., help="Import job to roll back"),
    actor: str = typer.Option("cli", "--actor", "-a", help="Actor id recorded on the rollback"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be deleted"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
) -> None:
    """
    Delete the sites, cells and equipment a completed import created.

    Updated or replaced equipment keeps its new values.

    Examples:
        inventory-io rollback 3f1c... --dry-run
        inventory-io rollback 3f1c... --yes
    """
    config = _load_config(config_file)
    console.print("\n[bold red]Rollback Import[/bold red]\n")

    try:
        with InventoryService(config) as service:
            manifest = service.rollback_manifest(job_id)
            console.print(
                f"Job {job_id} ({manifest['status']}): "
                f"{manifest['total_deletes']} entities to delete {manifest['deletes_by_type']}"
            )
            if manifest["not_reverted"]:
                console.print(
                    f"[yellow]{manifest['not_reverted']} updated/replaced entities "
                    "will keep their imported values[/yellow]"
                )
            if dry_run:
                return

            if not yes and not typer.confirm("This will DELETE the entities listed above. Continue?"):
                raise typer.Abort()

            result = service.rollback(job_id, actor)
    except ImporterError as e:
        raise _fail("Rollback failed", e) from e

    if result.already_rolled_back:
        console.print(f"[yellow]Job {job_id} was already rolled back[/yellow]")
        return

    console.print(f"[green]SUCCESS: Deleted {result.deleted_count} entities[/green]")
    if result.retained:
        console.print(
            f"[yellow]Retained {len(result.retained)} entities still used by other data:[/yellow]"
        )
        for entity_id in result.retained:
            console.print(f"  - {entity_id}")
    if result.missing:
        console.print(f"[dim]{len(result.missing)} entities were already gone[/dim]")


@app.command()
def cancel(
    job_id: str = typer.Argument(..., help="Running import job"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
) -> None:
    """Ask a running import to stop before its next row."""
    config = _load_config(config_file)
    try:
        with InventoryService(config) as service:
            flagged = service.cancel(job_id)
    except ImporterError as e:
        raise _fail("Cancel failed", e) from e

    if flagged:
        console.print(f"[green]Cancellation requested for {job_id}[/green]")
    else:
        console.print(f"[yellow]Job {job_id} is not running[/yellow]")


@app.command()
def version() -> None:
    """Show version information and features."""
    console.print(
        Panel.fit(
            "[bold]Equipment Inventory Import/Export[/bold]\n\n"
            f"Version: [cyan]{VERSION}[/cyan]\n"
            "Python: 3.11+\n\n"
            "[bold]Core Features:[/bold]\n"
            "- CSV validation with per-field errors\n"
            "- Site/cell resolution with optional auto-create\n"
            "- Duplicate IP detection with skip/update/replace\n"
            "- Background jobs with progress and cancellation\n"
            "- Import history ledger and rollback\n"
            "- Filtered CSV/JSON export",
            title="About",
            border_style="blue",
        )
    )
