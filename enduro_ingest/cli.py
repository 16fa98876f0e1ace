"""Operator CLI for the workout ingest service.

Runs the same pipeline, staging store and status reader the HTTP API uses,
against the configured database and blob store.
"""

import json
from pathlib import Path

import typer
import uvicorn
from loguru import logger
from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from enduro_ingest.config.settings import settings
from enduro_ingest.core.errors import IngestError, InvalidTransitionError
from enduro_ingest.core.logger import setup_logger
from enduro_ingest.db.models import Base
from enduro_ingest.db.session import get_engine
from enduro_ingest.ingestion import staging
from enduro_ingest.ingestion.decoders.registry import decode_workout
from enduro_ingest.ingestion.pipeline import UploadedFile, WorkoutIngestPipeline
from enduro_ingest.ingestion.status import read_ingest_status
from enduro_ingest.ingestion.storage import LocalBlobStore
from enduro_ingest.ingestion.upload_validator import resolve_file_format

console = Console()

app = typer.Typer(
    name="enduro-ingest",
    help="Workout file ingest: operator commands",
    add_completion=False,
)


@app.callback()
def main(debug: bool = typer.Option(False, "--debug", help="Enable debug logging")) -> None:
    setup_logger(level="DEBUG" if debug else settings.log_level, log_file=settings.log_file)


def _print_error(exc: IngestError) -> None:
    console.print(
        Panel(
            Text(exc.code, style="bold red"),
            subtitle=exc.detail,
            border_style="red",
        )
    )


@app.command()
def init_db() -> None:
    """Create the ingest_staging and sessions tables if they do not exist."""
    Base.metadata.create_all(bind=get_engine())
    console.print("[green]Database tables verified[/green]")


@app.command()
def ingest(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Workout file to ingest"),
    athlete_id: str = typer.Option(..., "--athlete-id", help="Owning athlete ID"),
    source: str | None = typer.Option(None, "--source", help="Free-text origin of the file"),
    notes: str | None = typer.Option(None, "--notes", help="Free-text notes"),
) -> None:
    """Run the full ingest pipeline for a local file."""
    payload = path.read_bytes()
    pipeline = WorkoutIngestPipeline(LocalBlobStore(settings.storage_root), settings)
    upload = UploadedFile(filename=path.name, payload=payload, size=len(payload))
    try:
        result = pipeline.run(upload, athlete_id, source=source, notes=notes)
    except IngestError as e:
        _print_error(e)
        raise typer.Exit(1) from e

    table = Table(title="Ingest complete", show_header=False)
    for key, value in result.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def status(
    ingest_id: str = typer.Argument(..., help="Ingest ID to look up"),
    athlete_id: str = typer.Option(..., "--athlete-id", help="Requesting athlete ID"),
    etag: str | None = typer.Option(None, "--etag", help="Previously seen validator token"),
) -> None:
    """Show the status projection and validator token of one ingest."""
    try:
        result = read_ingest_status(ingest_id, athlete_id, etag)
    except IngestError as e:
        _print_error(e)
        raise typer.Exit(1) from e

    if result.not_modified:
        console.print(f"[yellow]unchanged[/yellow] {result.etag}")
        return
    console.print(JSON(json.dumps(result.body)))
    console.print(f"ETag: {result.etag}")


@app.command()
def decode(path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True)) -> None:
    """Decode a file without storing anything and print the canonical workout."""
    try:
        file_format = resolve_file_format(path.name)
        workout = decode_workout(path.read_bytes(), file_format)
    except IngestError as e:
        _print_error(e)
        raise typer.Exit(1) from e
    console.print(JSON(workout.model_dump_json()))


@app.command()
def fail(
    ingest_id: str = typer.Argument(..., help="Ingest ID to fail"),
    reason: str = typer.Option("Manually failed by operator", "--reason", help="Error message to record"),
) -> None:
    """Move a non-terminal ingest to error (manual failure injection)."""
    try:
        record = staging.mark_error(ingest_id, reason)
    except InvalidTransitionError as e:
        console.print(f"[red]Error:[/red] ingest {ingest_id} is already {e.current}")
        raise typer.Exit(1) from e
    except IngestError as e:
        _print_error(e)
        raise typer.Exit(1) from e
    logger.info(f"[CLI] Ingest {ingest_id} failed manually")
    console.print(f"[green]{record.ingest_id}[/green] -> {record.status}: {record.error_message}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
) -> None:
    """Run the HTTP API with uvicorn."""
    logger.info(f"Starting FastAPI server on {host}:{port} (reload={reload})")
    uvicorn.run("enduro_ingest.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
