"""Defines the Command Line Interface (CLI) using Typer."""

import asyncio
import signal
from dataclasses import dataclass

import typer
from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from typer import Argument, Option
from typing_extensions import Annotated

from jira_sync_manager.configuration.env import Settings, get_settings
from jira_sync_manager.configuration.logging_setup import configure_logging
from jira_sync_manager.configuration.models import WorkerSettings
from jira_sync_manager.configuration.provider import EnvironmentConfigurationProvider
from jira_sync_manager.storage.database import create_db_engine, create_session_factory, init_db
from jira_sync_manager.storage.host import SqlHostPersistence
from jira_sync_manager.storage.jobs import JobStore, SyncJobSnapshot
from jira_sync_manager.synchronize.models import JobOutcome, SyncJobState
from jira_sync_manager.synchronize.worker import WorkerPool

load_dotenv()

typer_app = typer.Typer(pretty_exceptions_show_locals=False, help="Create Jira issues for accepted host issues.")
jobs_app = typer.Typer(help="Inspect and manage sync jobs.")
typer_app.add_typer(jobs_app, name="jobs")


@dataclass
class CLIContext:
    """Objects shared by every command."""

    settings: Settings
    engine: Engine
    worker_settings: WorkerSettings
    job_store: JobStore
    host: SqlHostPersistence


def _build_context(database_url: str | None, debug: bool) -> CLIContext:
    settings = get_settings()
    configure_logging(debug or settings.DEBUG)
    worker_settings = WorkerSettings.from_settings(settings)
    engine = create_db_engine(database_url or settings.DATABASE_URL)
    session_factory = create_session_factory(engine)
    job_store = JobStore(session_factory, allow_terminal_reclaim=worker_settings.allow_terminal_reclaim)
    return CLIContext(
        settings=settings,
        engine=engine,
        worker_settings=worker_settings,
        job_store=job_store,
        host=SqlHostPersistence(session_factory),
    )


@typer_app.callback()
def main_callback(
    ctx: typer.Context,
    database_url: Annotated[str | None, Option(envvar="DATABASE_URL", help="SQLAlchemy URL of the job database.")] = None,
    debug: Annotated[bool, Option(envvar="DEBUG", help="Enable debug logging.")] = False,
) -> None:
    """Set up logging and the job database for the current command."""
    ctx.obj = _build_context(database_url, debug)


@typer_app.command(name="init-db")
def init_db_cli(ctx: typer.Context) -> None:
    """Create the job queue and reference host tables."""
    context: CLIContext = ctx.obj
    init_db(context.engine)
    typer.echo(f"Initialized database at {context.engine.url.render_as_string(hide_password=True)}")


@typer_app.command(name="worker")
def worker_cli(
    ctx: typer.Context,
    once: Annotated[bool, Option(help="Process one batch per worker and exit.")] = False,
    concurrency: Annotated[int | None, Option(envvar="SYNC_CONCURRENCY", help="Number of concurrent workers.")] = None,
) -> None:
    """Run sync workers against the job queue."""
    context: CLIContext = ctx.obj
    settings = context.worker_settings
    if concurrency is not None:
        settings = settings.model_copy(update={"concurrency": concurrency})
    pool = WorkerPool.create(context.job_store, context.host, EnvironmentConfigurationProvider(), settings=settings)

    if once:
        batches = asyncio.run(pool.run_once())
        succeeded = sum(batch.count(JobOutcome.SUCCEEDED) for batch in batches)
        retried = sum(batch.count(JobOutcome.RETRY_SCHEDULED) for batch in batches)
        failed = sum(batch.count(JobOutcome.FAILED_TERMINAL) for batch in batches)
        typer.echo(f"Processed {sum(batch.processed for batch in batches)} job(s): {succeeded} succeeded, {retried} scheduled for retry, {failed} failed")
        if failed:
            raise typer.Exit(code=1)
        return

    async def _run_until_signalled() -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
        await pool.run(stop_event)

    typer.echo(f"Starting {settings.concurrency} sync worker(s)")
    asyncio.run(_run_until_signalled())


def _format_job(job: SyncJobSnapshot) -> str:
    parts = [
        f"object={job.object_id}",
        f"state={job.state.value}",
        f"attempts={job.attempts}",
        f"next_eligible_at={job.next_eligible_at.isoformat()}",
    ]
    if job.external_key:
        parts.append(f"external_key={job.external_key}")
    if job.last_error:
        parts.append(f"last_error={job.last_error!r}")
    return " ".join(parts)


@jobs_app.command(name="list")
def list_jobs_cli(
    ctx: typer.Context,
    state: Annotated[SyncJobState | None, Option(help="Only list jobs in this state.")] = None,
    limit: Annotated[int, Option(help="Maximum number of jobs to list.")] = 50,
) -> None:
    """List sync jobs, most recently updated first."""
    context: CLIContext = ctx.obj
    jobs = context.job_store.list_jobs(state=state, limit=limit)
    if not jobs:
        typer.echo("No sync jobs found")
        return
    for job in jobs:
        typer.echo(_format_job(job))


@jobs_app.command(name="show")
def show_job_cli(
    ctx: typer.Context,
    object_id: Annotated[int, Argument(help="Identifier of the host object.")],
) -> None:
    """Show the sync job of one host object."""
    context: CLIContext = ctx.obj
    job = context.job_store.get(object_id)
    if job is None:
        typer.echo(f"No sync job exists for object {object_id}", err=True)
        raise typer.Exit(code=1)
    typer.echo(_format_job(job))


@jobs_app.command(name="requeue")
def requeue_job_cli(
    ctx: typer.Context,
    object_id: Annotated[int, Argument(help="Identifier of the host object.")],
) -> None:
    """Re-queue a terminally failed sync job after fixing its cause."""
    context: CLIContext = ctx.obj
    if not context.job_store.requeue_terminal(object_id):
        typer.echo(f"Sync job for object {object_id} is not in state {SyncJobState.FAILED_TERMINAL.value}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Re-queued sync job for object {object_id}")
