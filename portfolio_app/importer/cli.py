"""
Operator commands for import jobs: ``flask importer ...``.

Commands run the operation inline by default and print the response payload
as JSON; ``--queue`` hands the operation to the Celery worker instead.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from portfolio_app.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from portfolio_app.importer.exceptions import ImporterError
from portfolio_app.importer.pipeline.job_service import ImportJobService
from portfolio_app.utils.importer import is_importer_enabled

_actor_option = click.option(
    "--actor",
    "actor_id",
    default="cli",
    show_default=True,
    help="Identity recorded as creator/updater of the records written.",
)
_queue_option = click.option(
    "--queue",
    "queue",
    is_flag=True,
    help="Enqueue the operation on the importer worker instead of running inline.",
)


@click.group(name="importer")
@click.pass_context
def importer_cli(ctx):
    """Validate and process staged import jobs."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. Enable it to run importer CLI commands."
        )


def get_disabled_importer_group() -> click.Group:
    """Return a command group that tells the operator the importer is disabled."""

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true and the "
            "importer package initialises before running worker commands."
        )
    return celery_app


def _echo(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _run_inline(func: Callable[[], dict[str, Any]]) -> dict[str, Any]:
    try:
        return func()
    except ImporterError as exc:
        raise click.ClickException(f"{exc.message} (status {exc.status_code})") from exc


def _enqueue(ctx, task_name: str, **kwargs: Any) -> None:
    app = ctx.ensure_object(ScriptInfo).load_app()
    celery_app = _resolve_celery(app)
    try:
        async_result = celery_app.send_task(task_name, kwargs=kwargs)
    except Exception as exc:
        raise click.ClickException(f"Failed to enqueue {task_name}: {exc}") from exc
    app.logger.info(
        "Importer task queued via CLI",
        extra={
            "importer_job_id": kwargs.get("job_id"),
            "importer_task": task_name,
            "importer_task_id": async_result.id,
        },
    )
    _echo({"job_id": kwargs.get("job_id"), "task": task_name, "task_id": async_result.id, "status": "queued"})


@importer_cli.command("validate")
@click.option("--job-id", required=True, type=int, help="ID of the import job to validate.")
@_actor_option
@_queue_option
@click.pass_context
def importer_validate(ctx, job_id: int, actor_id: str, queue: bool):
    """Validate every staged row of a job and store the report."""
    if queue:
        _enqueue(ctx, "importer.jobs.validate", job_id=job_id, actor_id=actor_id)
        return
    service = ImportJobService(actor_id=actor_id)
    _echo(_run_inline(lambda: service.validate(job_id)))


@importer_cli.command("process")
@click.option("--job-id", required=True, type=int, help="ID of the validated import job.")
@_actor_option
@_queue_option
@click.pass_context
def importer_process(ctx, job_id: int, actor_id: str, queue: bool):
    """Process all valid rows of a job in one run."""
    if queue:
        _enqueue(ctx, "importer.jobs.process", job_id=job_id, actor_id=actor_id)
        return
    service = ImportJobService(actor_id=actor_id)
    _echo(_run_inline(lambda: service.process(job_id)))


@importer_cli.command("process-chunk")
@click.option("--job-id", required=True, type=int, help="ID of the validated import job.")
@click.option("--chunk-size", type=click.IntRange(min=1), help="Rows per chunk (defaults to config).")
@click.option(
    "--start-index",
    type=click.IntRange(min=0),
    help="Index into the valid rows to start from; defaults to the job's saved cursor.",
)
@click.option("--all", "run_all", is_flag=True, help="Keep processing chunks until the job completes.")
@_actor_option
@_queue_option
@click.pass_context
def importer_process_chunk(
    ctx,
    job_id: int,
    chunk_size: Optional[int],
    start_index: Optional[int],
    run_all: bool,
    actor_id: str,
    queue: bool,
):
    """Process one chunk of a job (or every remaining chunk with --all)."""
    if queue:
        if run_all:
            raise click.ClickException("--all cannot be combined with --queue.")
        _enqueue(
            ctx,
            "importer.jobs.process_chunk",
            job_id=job_id,
            chunk_size=chunk_size,
            start_index=start_index,
            actor_id=actor_id,
        )
        return

    service = ImportJobService(actor_id=actor_id)
    if start_index is None:
        result = _run_inline(lambda: service.process_next_chunk(job_id, chunk_size=chunk_size))
    else:
        result = _run_inline(lambda: service.process_chunk(job_id, chunk_size=chunk_size, start_index=start_index))
    _echo(result)

    while run_all and not result["completed"]:
        next_index = result["nextStartIndex"]
        result = _run_inline(lambda: service.process_chunk(job_id, chunk_size=chunk_size, start_index=next_index))
        _echo(result)


@importer_cli.command("status")
@click.option("--job-id", required=True, type=int, help="ID of the import job.")
@click.option("--details/--no-details", default=False, help="Include the full validation report.")
def importer_status(job_id: int, details: bool):
    """Show a job's status, progress and counters."""
    status = _run_inline(lambda: ImportJobService().get_job_status(job_id))
    if not details:
        report = status.pop("validation_results") or {}
        status["validation_summary"] = {
            key: report.get(key) for key in ("totalRows", "validRows", "invalidRows")
        }
    _echo(status)


@importer_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the importer background worker."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    if not app.config.get("IMPORTER_WORKER_ENABLED"):
        click.echo(
            "Warning: IMPORTER_WORKER_ENABLED is false. Commands will still run, "
            "but queued operations need the flag enabled in production.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the Celery worker in the current process."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    celery_app = _resolve_celery(app)

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting importer worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Check worker connectivity with the heartbeat task."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'importer.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    _echo(payload)
