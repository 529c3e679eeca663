"""Submission and owner-scoped reads of import jobs."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fintrack.api.schemas.job import ErrorDetail, ImportJobRead, ImportMapping
from fintrack.core.exceptions import ImportSubmissionError
from fintrack.db.models.import_job import ImportJob, ImportStatus
from fintrack.db.models.transaction import Transaction
from fintrack.services.csv_ingest import read_headers
from fintrack.services.import_queue import ImportQueue, ImportWorkItem, QueueStatus
from fintrack.services.progress_tracker import ProgressReporter
from fintrack.utils.csv_validator import validate_mapping

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
ENQUEUE_FAILED = "No se pudo encolar la importación"


def submit_import(
    session: Session,
    queue: ImportQueue,
    user_id: str,
    filename: str,
    csv_data: str,
    mapping: ImportMapping | dict[str, Any],
    *,
    progress: ProgressReporter | None = None,
) -> ImportJob:
    """Create a PENDING job record, then hand the payload to the queue.

    Raises MappingError / CsvParseError when the header cannot satisfy the
    mapping, and ImportSubmissionError when the queue rejects the item.
    """
    if not isinstance(mapping, ImportMapping):
        mapping = ImportMapping.model_validate(mapping)
    validate_mapping(read_headers(csv_data), mapping)

    job = ImportJob(
        user_id=user_id,
        filename=filename,
        status=ImportStatus.PENDING.value,
        mapping=mapping.model_dump(),
    )
    session.add(job)
    # The record must be durable before a worker can receive the job id
    session.commit()
    # Queued snapshot must precede any PROCESSING snapshot a worker publishes
    if progress:
        progress.publish(job.id, 0, "Queued", status=ImportStatus.PENDING.value)

    try:
        queue.enqueue(
            ImportWorkItem(
                job_id=job.id,
                user_id=user_id,
                filename=filename,
                csv_data=csv_data,
                mapping=mapping.model_dump(),
            )
        )
    except Exception as exc:
        logger.error(f"Error enqueueing import job {job.id}: {exc}", exc_info=True)
        job.status = ImportStatus.FAILED.value
        job.error_message = ENQUEUE_FAILED
        session.commit()
        if progress:
            progress.publish(job.id, 0, ENQUEUE_FAILED, status=ImportStatus.FAILED.value)
        raise ImportSubmissionError(ENQUEUE_FAILED) from exc

    logger.info(f"Created import job {job.id} for file {filename} (user {user_id})")
    return job


def get_job(session: Session, user_id: str, job_id: str) -> ImportJob | None:
    return session.scalar(
        select(ImportJob).where(ImportJob.id == job_id, ImportJob.user_id == user_id)
    )


def list_jobs(session: Session, user_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[ImportJob]:
    """Return the user's most recent jobs, newest first."""
    return list(
        session.scalars(
            select(ImportJob)
            .where(ImportJob.user_id == user_id)
            .order_by(ImportJob.created_at.desc(), ImportJob.id)
            .limit(limit)
        ).all()
    )


def delete_job(
    session: Session,
    user_id: str,
    job_id: str,
    *,
    progress: ProgressReporter | None = None,
) -> bool:
    """Remove a job record and its progress snapshot.

    Imported transactions are kept and detached from the job.
    """
    job = get_job(session, user_id, job_id)
    if job is None:
        return False
    try:
        session.execute(
            update(Transaction)
            .where(Transaction.import_job_id == job_id)
            .values(import_job_id=None)
        )
        session.delete(job)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise
    if progress:
        progress.clear(job_id)
    logger.info(f"Deleted import job {job_id} (user {user_id})")
    return True


def read_job_status(
    session: Session,
    user_id: str,
    job_id: str,
    queue: ImportQueue | None = None,
) -> ImportJobRead | None:
    """Single status view merging the durable record with queue progress."""
    job = get_job(session, user_id, job_id)
    if job is None:
        return None
    queue_status = None
    if queue is not None and not job.is_terminal:
        try:
            queue_status = queue.get_status(job_id)
        except Exception as e:
            logger.warning(f"Failed to fetch queue status for job {job_id}: {e}")
    return serialize_job(job, queue_status)


def serialize_job(job: ImportJob, queue_status: QueueStatus | None = None) -> ImportJobRead:
    """Combine DB state + queue progress snapshot into a response schema."""
    progress = job.progress_percent
    if queue_status and job.status == ImportStatus.PROCESSING.value:
        # Per-row queue progress is fresher than the 50-row durable checkpoint
        progress = max(progress, queue_status.progress)

    details = [ErrorDetail(**detail) for detail in (job.error_details or [])]
    return ImportJobRead(
        id=job.id,
        filename=job.filename,
        status=job.status,
        progress=progress,
        message=_status_message(job, queue_status),
        mapping=job.mapping,
        total_rows=job.total_rows or 0,
        processed_rows=job.processed_rows or 0,
        success_rows=job.success_rows or 0,
        error_rows=job.error_rows or 0,
        error_details=details,
        omitted_errors=max((job.error_rows or 0) - len(details), 0),
        error_message=job.error_message,
        queue_state=queue_status.state if queue_status else job.status.lower(),
        created_at=job.created_at,
        started_at=job.started_at,
        finished_at=job.finished_at,
    )


def _status_message(job: ImportJob, queue_status: QueueStatus | None) -> str:
    if job.status == ImportStatus.PENDING.value:
        return "Queued"
    if job.status == ImportStatus.PROCESSING.value:
        if queue_status and queue_status.failed_reason:
            return f"Retrying after error: {queue_status.failed_reason}"
        total_display = job.total_rows if job.total_rows else "?"
        return f"Processed {job.processed_rows}/{total_display} rows"
    if job.status == ImportStatus.COMPLETED.value:
        return (
            f"Imported {job.success_rows} of {job.total_rows} rows "
            f"({job.error_rows} errors)"
        )
    return job.error_message or "Import failed"
