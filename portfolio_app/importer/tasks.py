"""
Importer Celery tasks.

Each task runs one ``ImportJobService`` operation inside the worker and
returns the same payload the synchronous call would. Tasks never drive
further chunks themselves; whoever enqueued them decides what runs next.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from celery import shared_task
from flask import current_app

from portfolio_app.importer.exceptions import ImporterError
from portfolio_app.importer.pipeline.job_service import ImportJobService
from portfolio_app.importer.pipeline.job_state import mark_failed
from portfolio_app.models.base import db


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by ``flask importer worker ping``."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


def _run_job_operation(
    task_name: str,
    job_id: int,
    operation: Callable[[ImportJobService], dict[str, Any]],
    *,
    actor_id: str | None,
) -> dict[str, Any]:
    service = ImportJobService(actor_id=actor_id)
    try:
        payload = operation(service)
    except ImporterError as exc:
        current_app.logger.warning(
            "Importer task %s rejected job %s: %s",
            task_name,
            job_id,
            exc.message,
            extra={"importer_job_id": job_id, "importer_task": task_name, "importer_error": exc.message},
        )
        raise
    except Exception as exc:
        db.session.rollback()
        mark_failed(job_id, f"{task_name} failed: {exc}", actor_id=actor_id)
        current_app.logger.exception(
            "Importer task %s failed",
            task_name,
            extra={"importer_job_id": job_id, "importer_task": task_name, "importer_error": str(exc)},
        )
        raise
    current_app.logger.info(
        "Importer task %s finished",
        task_name,
        extra={"importer_job_id": job_id, "importer_task": task_name},
    )
    return payload


@shared_task(name="importer.jobs.validate", bind=True)
def validate_job(self, *, job_id: int, actor_id: str | None = None) -> dict[str, Any]:
    return _run_job_operation(
        self.name,
        job_id,
        lambda service: service.validate(job_id),
        actor_id=actor_id,
    )


@shared_task(name="importer.jobs.process", bind=True)
def process_job(self, *, job_id: int, actor_id: str | None = None) -> dict[str, Any]:
    return _run_job_operation(
        self.name,
        job_id,
        lambda service: service.process(job_id),
        actor_id=actor_id,
    )


@shared_task(name="importer.jobs.process_chunk", bind=True)
def process_job_chunk(
    self,
    *,
    job_id: int,
    chunk_size: int | None = None,
    start_index: int | None = None,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Process one chunk; without ``start_index`` the job's persisted cursor is used."""
    if start_index is None:
        operation = lambda service: service.process_next_chunk(job_id, chunk_size=chunk_size)  # noqa: E731
    else:
        operation = lambda service: service.process_chunk(  # noqa: E731
            job_id, chunk_size=chunk_size, start_index=start_index
        )
    return _run_job_operation(self.name, job_id, operation, actor_id=actor_id)
