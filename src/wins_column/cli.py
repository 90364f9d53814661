"""Wins Column CLI - serve the API, run a worker, inspect the queue."""

import asyncio
import logging
import signal
import time
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from wins_column.config.settings import settings
from wins_column.database import create_session_maker, init_db
from wins_column.jobs.setup import create_job_system
from wins_column.queues.store import JobStore
from wins_column.schemas.jobs import JobFilter

app = typer.Typer(
    help="Wins Column - commit summaries from GitHub pushes",
    no_args_is_help=True,
)
console = Console()
logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    logging.basicConfig(level=settings.log_level.upper(), format=settings.log_format)


def _format_time(timestamp: Optional[int]) -> str:
    if not timestamp:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(timestamp))


@app.command()
def serve() -> None:
    """Run the HTTP API (and the processor unless disabled)."""
    from wins_column.main import main as serve_main

    serve_main()


@app.command()
def worker() -> None:
    """Run the job processor without the HTTP API."""
    _configure_logging()
    asyncio.run(_run_worker())


async def _run_worker() -> None:
    engine, session_maker = create_session_maker(settings.database_url)
    await init_db(engine)
    system = create_job_system(session_maker, settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await system.processor.start()
    logger.info("Worker ready, press Ctrl+C to stop")
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        await system.aclose()
        await engine.dispose()


@app.command()
def stats() -> None:
    """Show job counts by status."""
    asyncio.run(_show_stats())


async def _show_stats() -> None:
    engine, session_maker = create_session_maker(settings.database_url)
    try:
        await init_db(engine)
        result = await JobStore(session_maker).get_queue_stats()
    finally:
        await engine.dispose()
    if not result.ok:
        console.print(f"[red]Error: {result.error}[/red]")
        raise typer.Exit(code=1)

    queue = result.data
    table = Table(title="Job Queue")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    for name, value in queue.model_dump().items():
        if name == "oldest_pending_job":
            value = _format_time(value)
        elif name == "avg_processing_time_ms" and value is not None:
            value = f"{value:.0f}"
        table.add_row(name.replace("_", " "), "-" if value is None else str(value))
    console.print(table)


@app.command()
def jobs(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    job_type: Optional[str] = typer.Option(None, "--type", "-t", help="Filter by job type"),
    project_id: Optional[int] = typer.Option(None, "--project", help="Filter by project id"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max jobs to show"),
) -> None:
    """List jobs, newest first."""
    asyncio.run(_list_jobs(JobFilter(status=status, type=job_type, project_id=project_id, limit=limit)))


async def _list_jobs(job_filter: JobFilter) -> None:
    engine, session_maker = create_session_maker(settings.database_url)
    try:
        await init_db(engine)
        result = await JobStore(session_maker).get_jobs_by_filter(job_filter)
    finally:
        await engine.dispose()
    if not result.ok:
        console.print(f"[red]Error: {result.error}[/red]")
        raise typer.Exit(code=1)

    table = Table(title="Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Status", style="green")
    table.add_column("Priority", justify="right")
    table.add_column("Attempts", justify="right")
    table.add_column("Created")
    table.add_column("Error", style="red")
    for job in result.data or []:
        table.add_row(
            str(job.id),
            job.type,
            job.status,
            str(job.priority),
            f"{job.attempts}/{job.max_attempts}",
            _format_time(job.created_at),
            (job.error_message or "")[:60],
        )
    console.print(table)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
