"""Command-line interface for stashbulk."""

import asyncio
import math
from collections.abc import Awaitable, Callable
from dataclasses import replace
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
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .client.executor import RemoteExecutor
from .config import BulkToolConfig, StashConfig, load_config
from .engine.coordinator import BulkMutationCoordinator
from .models.requests import BulkMode, RelationshipField, SceneMetadata
from .models.results import OperationResult
from .observability import (
    MetricsCollector,
    ProgressReporter,
    ReportGenerator,
    configure_logging,
)

app = typer.Typer(
    name="stashbulk",
    help="stashbulk - Bulk scene edits for a Stash server",
    add_completion=False,
)

console = Console()
logger = structlog.get_logger(__name__)


def read_ids(ids_file: Path | None, ids: list[str] | None) -> list[str]:
    """
    Collect record ids from a file and/or repeated options.

    The file holds one id per line; blank lines and lines starting with ``#``
    are ignored. Ids given on the command line come after ids from the file.
    """
    collected: list[str] = []
    if ids_file is not None:
        for line in ids_file.read_text(encoding="utf-8").splitlines():
            value = line.strip()
            if value and not value.startswith("#"):
                collected.append(value)
    if ids:
        collected.extend(value.strip() for value in ids if value.strip())
    return collected


def _expected_chunks(record_count: int, batch_size: int) -> int:
    if record_count <= batch_size:
        return 1
    return math.ceil(record_count / batch_size)


def _print_summary(result: OperationResult, reporter: ProgressReporter) -> None:
    table = Table(title=f"Bulk Edit {result.job_id[:8]}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Operation", result.operation)
    table.add_row("Records", str(result.total_records))
    table.add_row("Acknowledged", str(result.acknowledged_count))
    table.add_row("Chunks", f"{result.succeeded_chunks}/{result.total_chunks} succeeded")
    table.add_row("Failed chunks", str(len(result.failed_chunks)))
    table.add_row("Duration", f"{reporter.summary().duration_seconds:.2f}s")
    console.print(table)

    if result.failed_chunks:
        errors = Table(title="Failed Chunks", header_style="bold red")
        errors.add_column("Chunk", justify="right")
        errors.add_column("Records", justify="right")
        errors.add_column("Error")
        for failure in result.failed_chunks:
            errors.add_row(
                str(failure.request.batch_index),
                str(failure.request.size),
                failure.error_message,
            )
        console.print(errors)


def _prepare(
    config_file: Path | None,
    log_level: str | None,
    json_logs: bool,
    url: str | None,
    concurrency: int | None,
    batch_size: int | None,
    retry_count: int | None,
    timeout: float | None,
) -> tuple[BulkToolConfig, StashConfig]:
    """Load config, set up logging and apply command-line overrides."""
    try:
        config = load_config(config_file)
    except (FileNotFoundError, ValueError, TypeError) as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    configure_logging(
        level=log_level or config.logging.level,
        json_logs=json_logs or config.logging.format == "json",
        log_file=config.logging.file,
    )

    try:
        _apply_overrides(config, url, concurrency, batch_size, retry_count, timeout)
    except ValueError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    if config.stash is None:
        console.print(
            "[bold red]ERROR:[/bold red] Stash URL not configured "
            "(set STASH_URL, use --url or --config)"
        )
        raise typer.Exit(code=1)
    return config, config.stash


def _require_ids(ids_file: Path | None, ids: list[str] | None) -> list[str]:
    record_ids = read_ids(ids_file, ids)
    if not record_ids:
        console.print("[bold red]ERROR:[/bold red] No scene ids given (use --id or --ids-file)")
        raise typer.Exit(code=1)
    return record_ids


def _run_job(
    config: BulkToolConfig,
    stash_config: StashConfig,
    record_ids: list[str],
    run: Callable[[BulkMutationCoordinator, ProgressReporter], Awaitable[OperationResult]],
    report: Path | None,
) -> None:
    """Run one edit under a progress bar, print the summary and write the report."""
    metrics = MetricsCollector()
    total_chunks = _expected_chunks(len(record_ids), config.bulk.batch_size)

    async def run_edit() -> tuple[OperationResult, ProgressReporter]:
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[eta]}"),
            console=console,
        )
        task_id = progress.add_task("[cyan]Updating scenes...", total=total_chunks, eta="")

        def refresh(reporter: ProgressReporter) -> None:
            eta = reporter.eta_text()
            progress.update(
                task_id,
                completed=reporter.processed,
                eta=f"ETA: {eta}" if eta else "",
            )

        reporter = ProgressReporter(total=total_chunks, listener=refresh)

        async with RemoteExecutor(stash_config, metrics=metrics) as executor:
            coordinator = BulkMutationCoordinator(
                executor, config.bulk, config.queue, metrics=metrics
            )
            with progress:
                result = await run(coordinator, reporter)
        return result, reporter

    try:
        result, reporter = asyncio.run(run_edit())
    except ValueError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    _print_summary(result, reporter)

    if report:
        generator = ReportGenerator()
        generator.write_json_report(
            generator.generate_report(result, metrics.get_summary()), report
        )
        console.print(f"[green]OK:[/green] Report written to {report}")

    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def apply(
    field: RelationshipField = typer.Option(
        RelationshipField.TAGS, "--field", "-f", help="Relationship field to modify"
    ),
    mode: BulkMode = typer.Option(
        BulkMode.ADD, "--mode", "-m", case_sensitive=False, help="ADD, REMOVE or SET"
    ),
    related: list[str] | None = typer.Option(
        None, "--related", "-r", help="Related id (tag, performer, ...); repeatable"
    ),
    ids: list[str] | None = typer.Option(None, "--id", help="Scene id; repeatable"),
    ids_file: Path | None = typer.Option(
        None, "--ids-file", exists=True, dir_okay=False, help="File with one scene id per line"
    ),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
    url: str | None = typer.Option(None, "--url", help="Stash base URL (overrides config)"),
    concurrency: int | None = typer.Option(None, "--concurrency", help="Chunks in flight"),
    batch_size: int | None = typer.Option(None, "--batch-size", help="Records per chunk"),
    retry_count: int | None = typer.Option(None, "--retry-count", help="Chunk-level retries"),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Per-attempt chunk timeout in seconds"
    ),
    report: Path | None = typer.Option(None, "--report", help="Write a JSON report to this path"),
    log_level: str | None = typer.Option(None, "--log-level", help="Log verbosity"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON"),
) -> None:
    """
    Apply one relationship edit to many scenes.

    Examples:
        stashbulk apply --ids-file scenes.txt --related 12 --related 40
        stashbulk apply --field performer_ids --mode REMOVE --id 7 --related 3
        stashbulk apply --field studio_id --mode SET --ids-file scenes.txt -r 5
    """
    config, stash_config = _prepare(
        config_file, log_level, json_logs, url, concurrency, batch_size, retry_count, timeout
    )
    record_ids = _require_ids(ids_file, ids)
    related_ids = list(related or [])

    console.print(
        Panel.fit(
            f"[bold blue]Stash Bulk Edit[/bold blue]\n\n"
            f"Server: [cyan]{stash_config.base_url}[/cyan]\n"
            f"Operation: [yellow]{mode.value} {field.value}[/yellow]\n"
            f"Related: {', '.join(related_ids) or '(none)'}\n"
            f"Scenes: {len(record_ids)}",
            border_style="blue",
        )
    )

    async def run(
        coordinator: BulkMutationCoordinator, reporter: ProgressReporter
    ) -> OperationResult:
        return await coordinator.apply(
            record_ids,
            related_ids,
            mode,
            field,
            on_progress=reporter.on_progress,
            on_error=reporter.on_error,
        )

    _run_job(config, stash_config, record_ids, run, report)


@app.command("set-metadata")
def set_metadata(
    rating: int | None = typer.Option(
        None, "--rating", min=0, max=100, help="Rating on the 0-100 scale"
    ),
    date: str | None = typer.Option(None, "--date", help="Release date (YYYY-MM-DD)"),
    organized: bool | None = typer.Option(
        None, "--organized/--not-organized", help="Set or clear the organized flag"
    ),
    details: str | None = typer.Option(None, "--details", help="Description text"),
    ids: list[str] | None = typer.Option(None, "--id", help="Scene id; repeatable"),
    ids_file: Path | None = typer.Option(
        None, "--ids-file", exists=True, dir_okay=False, help="File with one scene id per line"
    ),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
    url: str | None = typer.Option(None, "--url", help="Stash base URL (overrides config)"),
    concurrency: int | None = typer.Option(None, "--concurrency", help="Chunks in flight"),
    batch_size: int | None = typer.Option(None, "--batch-size", help="Records per chunk"),
    retry_count: int | None = typer.Option(None, "--retry-count", help="Chunk-level retries"),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Per-attempt chunk timeout in seconds"
    ),
    report: Path | None = typer.Option(None, "--report", help="Write a JSON report to this path"),
    log_level: str | None = typer.Option(None, "--log-level", help="Log verbosity"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON"),
) -> None:
    """
    Write the same metadata to many scenes.

    Only the fields given are changed; everything else keeps its value.

    Examples:
        stashbulk set-metadata --ids-file scenes.txt --rating 80 --organized
        stashbulk set-metadata --id 7 --id 8 --date 2024-05-01
    """
    config, stash_config = _prepare(
        config_file, log_level, json_logs, url, concurrency, batch_size, retry_count, timeout
    )
    try:
        metadata = SceneMetadata(
            rating100=rating, date=date, organized=organized, details=details
        )
    except ValueError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        raise typer.Exit(code=1) from e
    record_ids = _require_ids(ids_file, ids)

    changes = "\n".join(f"  {name}: {value}" for name, value in metadata.to_input().items())
    console.print(
        Panel.fit(
            f"[bold blue]Stash Metadata Edit[/bold blue]\n\n"
            f"Server: [cyan]{stash_config.base_url}[/cyan]\n"
            f"Changes:\n[yellow]{changes}[/yellow]\n"
            f"Scenes: {len(record_ids)}",
            border_style="blue",
        )
    )

    async def run(
        coordinator: BulkMutationCoordinator, reporter: ProgressReporter
    ) -> OperationResult:
        return await coordinator.apply_metadata(
            record_ids,
            metadata,
            on_progress=reporter.on_progress,
            on_error=reporter.on_error,
        )

    _run_job(config, stash_config, record_ids, run, report)


def _apply_overrides(
    config: BulkToolConfig,
    url: str | None,
    concurrency: int | None,
    batch_size: int | None,
    retry_count: int | None,
    timeout: float | None,
) -> None:
    if url:
        if config.stash is None:
            config.stash = StashConfig(base_url=url)
        else:
            config.stash = replace(config.stash, base_url=url)
    if concurrency is not None:
        if concurrency <= 0:
            raise ValueError(f"--concurrency must be positive, got {concurrency}")
        config.queue.concurrency = concurrency
    if batch_size is not None:
        if batch_size <= 0:
            raise ValueError(f"--batch-size must be positive, got {batch_size}")
        config.bulk.batch_size = batch_size
    if retry_count is not None:
        if retry_count < 0:
            raise ValueError(f"--retry-count must not be negative, got {retry_count}")
        config.queue.retry_count = retry_count
    if timeout is not None:
        if timeout <= 0:
            raise ValueError(f"--timeout must be positive, got {timeout}")
        config.queue.task_timeout = timeout


@app.command("init-config")
def init_config(
    output: Path = typer.Argument(Path("stashbulk.yaml"), help="Where to write the config"),
    url: str = typer.Option("http://localhost:9999", "--url", help="Stash base URL"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a configuration file with default settings."""
    if output.exists() and not force:
        console.print(f"[red]ERROR:[/red] {output} already exists (use --force to overwrite)")
        raise typer.Exit(code=1)

    BulkToolConfig(stash=StashConfig(base_url=url)).to_file(output)
    console.print(f"[green]OK:[/green] Configuration written to {output}")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(
        Panel.fit(
            "[bold]stashbulk[/bold]\n\n"
            f"Version: [cyan]{__version__}[/cyan]\n"
            "Python: 3.11+\n\n"
            "[bold]Features:[/bold]\n"
            "- Bulk tag, performer, gallery and studio edits\n"
            "- Bulk rating, date, organized and details edits\n"
            "- Bounded concurrency with chunk-level retry\n"
            "- Request-level retry with exponential backoff\n"
            "- Progress with ETA and JSON reports",
            title="About",
            border_style="blue",
        )
    )
