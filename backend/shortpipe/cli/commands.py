"""CLI commands for shortpipe using Typer and Rich.

- init-db: Create database tables
- submit: Create a job and queue it
- status: Show a job's live status
- list: List jobs in a table
- checkpoint: Show a job's stored checkpoint
- serve: Run the HTTP API
- worker: Run a Celery worker
"""

import asyncio
from typing import Optional

import redis.asyncio as redis
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shortpipe import configure_logging
from shortpipe.config import settings
from shortpipe.db import JobRepository, create_engine, create_session_factory, init_database
from shortpipe.errors import InvalidPromptError, JobAccessDenied, JobNotFound
from shortpipe.orchestrator.checkpoint import CheckpointStore
from shortpipe.orchestrator.progress import ProgressPublisher
from shortpipe.orchestrator.state import STAGES, next_stage
from shortpipe.orchestrator.status import StatusReader

app = typer.Typer(name="shortpipe", help="Resumable AI short-video generation pipeline")
console = Console()


def _redis_client() -> redis.Redis:
    return redis.from_url(settings.redis.url, decode_responses=True)


def _checkpoint_store(client: redis.Redis) -> CheckpointStore:
    return CheckpointStore(
        client,
        ttl=settings.redis.checkpoint_ttl_seconds,
        key_prefix=settings.redis.checkpoint_prefix,
    )


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    configure_logging("DEBUG" if verbose else "WARNING")


@app.command("init-db")
def init_db():
    """Create the jobs table if it does not exist."""
    asyncio.run(_init_db_async())
    console.print(f"[green]✓[/green] Database ready: {settings.storage.database_url}")


async def _init_db_async():
    engine = create_engine(settings.storage.database_url)
    try:
        await init_database(engine)
    finally:
        await engine.dispose()


@app.command()
def submit(
    prompt: str = typer.Argument(..., help="Topic of the short video"),
    user: str = typer.Option(..., "--user", "-u", help="Owner user id"),
):
    """Create a job and queue its first attempt."""
    from shortpipe.workers.tasks import submit_job

    async def _submit() -> str:
        engine = create_engine(settings.storage.database_url)
        try:
            await init_database(engine)
            return await submit_job(JobRepository(create_session_factory(engine)), prompt, user)
        finally:
            await engine.dispose()

    try:
        job_id = asyncio.run(_submit())
    except InvalidPromptError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[green]Created job:[/green] {job_id}")
    console.print(f"Check progress with: shortpipe status {job_id} --user {user}")


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job id"),
    user: str = typer.Option(..., "--user", "-u", help="Owner user id"),
):
    """Show live status of a job."""
    asyncio.run(_status_async(job_id, user))


async def _status_async(job_id: str, user: str):
    client = _redis_client()
    engine = create_engine(settings.storage.database_url)
    try:
        reader = StatusReader(
            ProgressPublisher(
                client,
                ttl=settings.redis.progress_ttl_seconds,
                key_prefix=settings.redis.progress_prefix,
            ),
            _checkpoint_store(client),
            JobRepository(create_session_factory(engine)),
        )
        try:
            view = await reader.get_status(job_id, user)
        except (JobNotFound, JobAccessDenied):
            console.print(f"[red]Error:[/red] Job not found: {job_id}")
            raise typer.Exit(code=1)
    finally:
        await client.aclose()
        await engine.dispose()

    lines = [
        f"[bold]Status:[/bold] [{_get_status_color(view.status)}]{view.status}[/]",
    ]
    if view.step:
        lines.append(f"[bold]Step:[/bold] {view.step}")
    if view.retry_count is not None:
        lines.append(f"[bold]Attempt:[/bold] {view.retry_count}/{view.max_retries}")
    if view.error:
        lines.append(f"[bold]Error:[/bold] [red]{view.error}[/red]")
    if view.video_url:
        lines.append(f"[bold]Video:[/bold] {view.video_url}")
    lines.append("")
    for stage in STAGES:
        mark = "[green]✓[/green]" if view.completed_steps.get(stage) else "[dim]·[/dim]"
        lines.append(f"  {mark} {stage}")

    console.print(Panel("\n".join(lines), title=f"Job {job_id}"))


@app.command(name="list")
def list_jobs(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only this owner's jobs"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows"),
):
    """List recent jobs."""
    asyncio.run(_list_async(user, limit))


async def _list_async(user: Optional[str], limit: int):
    engine = create_engine(settings.storage.database_url)
    try:
        jobs = await JobRepository(create_session_factory(engine)).list_jobs(user, limit)
    finally:
        await engine.dispose()

    if not jobs:
        console.print("[yellow]No jobs found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Owner")
    table.add_column("Prompt")
    table.add_column("Status")
    table.add_column("Created")

    for job in jobs:
        prompt = job.prompt if len(job.prompt) <= 40 else job.prompt[:37] + "..."
        table.add_row(
            job.id,
            job.owner_id,
            prompt,
            f"[{_get_status_color(job.status)}]{job.status}[/]",
            job.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def checkpoint(job_id: str = typer.Argument(..., help="Job id")):
    """Show the stored checkpoint and resume point of a job."""
    asyncio.run(_checkpoint_async(job_id))


async def _checkpoint_async(job_id: str):
    client = _redis_client()
    try:
        cp = await _checkpoint_store(client).get(job_id)
    finally:
        await client.aclose()

    if cp is None:
        console.print(f"[yellow]No checkpoint for {job_id}[/yellow] (resume point: {next_stage(None)})")
        return

    table = Table(show_header=True, header_style="bold blue", title=f"Checkpoint {job_id}")
    table.add_column("Stage")
    table.add_column("Completed")
    for stage in STAGES:
        done = cp.completed_steps.get(stage, False)
        table.add_row(stage, "[green]yes[/green]" if done else "[dim]no[/dim]")
    console.print(table)
    console.print(f"[bold]Last completed:[/bold] {cp.last_completed_step or '-'}")
    console.print(f"[bold]Last failed:[/bold] {cp.last_failed_step or '-'}")
    console.print(f"[bold]Resume point:[/bold] {next_stage(cp)}")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "shortpipe.api.app:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        reload=False,
    )


@app.command()
def worker(
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", help="Worker processes"),
):
    """Run a Celery worker consuming the job queue."""
    from shortpipe.workers.celery_app import celery_app

    celery_app.worker_main([
        "worker",
        "--loglevel=INFO",
        "-Q", settings.queue.name,
        "-c", str(concurrency or settings.queue.concurrency),
    ])


def _get_status_color(status: str) -> str:
    return {
        "completed": "green",
        "complete": "green",
        "error": "red",
        "failed": "red",
        "retrying": "yellow",
    }.get(status, "cyan")
