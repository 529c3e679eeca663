"""Row-by-row import of a CSV payload into transactions for one job."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fintrack.api.schemas.job import ImportMapping
from fintrack.core.exceptions import AttemptsExhaustedError, ImportPipelineError, JobNotFoundError
from fintrack.db.models.import_job import ImportJob, ImportStatus
from fintrack.db.models.transaction import PaymentMethod, Transaction
from fintrack.services.csv_ingest import parse_csv, row_number
from fintrack.services.lookup_resolver import LookupResolver
from fintrack.services.progress_tracker import ProgressReporter
from fintrack.utils.csv_validator import RowError, cell, normalize_row

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_EVERY = 50
DEFAULT_ERROR_DETAILS_LIMIT = 100
ROW_SAVE_ERROR = "No se pudo guardar la transacción"
ATTEMPTS_EXHAUSTED = "Se agotaron los intentos de importación"


@dataclass
class ImportResult:
    success_rows: int
    error_rows: int
    total_rows: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class _Sweep:
    """Counters accumulated while walking the rows of one delivery."""

    total: int = 0
    processed: int = 0
    success: int = 0
    errors: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def percent(self) -> int:
        if not self.total:
            return 0
        return round(self.processed / self.total * 100)

    def meta(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "total": self.total,
            "success": self.success,
            "errors": self.errors,
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_mapping(mapping: ImportMapping | dict[str, Any]) -> ImportMapping:
    if isinstance(mapping, ImportMapping):
        return mapping
    return ImportMapping.model_validate(mapping)


def mark_job_failed(session: Session, job_id: str, message: str) -> bool:
    """Move a non-terminal job to FAILED; returns False when nothing changed."""
    job = session.get(ImportJob, job_id)
    if job is None or job.is_terminal:
        return False
    job.status = ImportStatus.FAILED.value
    job.error_message = message
    job.finished_at = _now()
    session.commit()
    return True


def process_import_job(
    session_factory: Callable[[], Session],
    job_id: str,
    user_id: str,
    filename: str,
    csv_data: str,
    mapping: ImportMapping | dict[str, Any],
    *,
    progress: ProgressReporter | None = None,
    checkpoint_every: int = DEFAULT_CHECKPOINT_EVERY,
    error_details_limit: int = DEFAULT_ERROR_DETAILS_LIMIT,
    final_attempt: bool = True,
    max_attempts: int | None = None,
) -> ImportResult:
    """Normalize, resolve and persist every row of one import job.

    Row errors are recorded and skipped. Pipeline faults mark the job
    FAILED and re-raise. Any other exception marks the job FAILED only
    when this is the final delivery attempt, so the queue can retry.
    A delivery beyond max_attempts (a crash redelivery the queue did not
    count) fails the job without touching the rows.
    """
    mapping = _coerce_mapping(mapping)
    session = session_factory()
    sweep = _Sweep()
    try:
        job = session.get(ImportJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Import job {job_id} not found")
        if job.user_id != user_id:
            raise JobNotFoundError(f"Import job {job_id} does not belong to user {user_id}")
        if job.is_terminal:
            logger.info(f"Import job {job_id} already {job.status}, ignoring redelivery")
            return ImportResult(job.success_rows, job.error_rows, job.total_rows)

        logger.info(f"Processing import job {job_id} ({filename}) for user {user_id}")
        try:
            _sweep_rows(
                session,
                job,
                csv_data,
                mapping,
                sweep,
                progress=progress,
                checkpoint_every=checkpoint_every,
                error_details_limit=error_details_limit,
                max_attempts=max_attempts,
            )
        except ImportPipelineError as exc:
            logger.error(f"Import job {job_id} failed: {exc}", exc_info=True)
            _fail(session, job_id, str(exc), sweep, progress)
            raise
        except Exception as exc:
            if final_attempt:
                logger.error(f"Import job {job_id} failed on final attempt: {exc}", exc_info=True)
                _fail(session, job_id, f"Error inesperado: {exc}", sweep, progress)
            else:
                logger.warning(f"Import job {job_id} attempt failed, will be retried: {exc}")
                session.rollback()
            raise

        logger.info(
            f"Import job {job_id} completed: {sweep.success} success, {sweep.errors} errors"
        )
        if sweep.errors:
            logger.warning(
                f"Import job {job_id} skipped {sweep.errors} of {sweep.total} rows "
                f"(first: row {sweep.details[0]['row'] if sweep.details else '?'})"
            )
        return ImportResult(sweep.success, sweep.errors, sweep.total)
    finally:
        session.close()


def _sweep_rows(
    session: Session,
    job: ImportJob,
    csv_data: str,
    mapping: ImportMapping,
    sweep: _Sweep,
    *,
    progress: ProgressReporter | None,
    checkpoint_every: int,
    error_details_limit: int,
    max_attempts: int | None = None,
) -> None:
    job_id = job.id
    user_id = job.user_id

    job.status = ImportStatus.PROCESSING.value
    job.started_at = job.started_at or _now()
    job.attempts = (job.attempts or 0) + 1
    session.commit()
    if max_attempts is not None and job.attempts > max_attempts:
        raise AttemptsExhaustedError(ATTEMPTS_EXHAUSTED)
    # Counters already durable from an earlier delivery never move backwards
    resume_floor = job.processed_rows or 0
    if progress:
        progress.publish(
            job_id,
            _percent(resume_floor, job.total_rows or 0),
            "Processing",
            status=ImportStatus.PROCESSING.value,
        )

    rows = parse_csv(csv_data)
    sweep.total = len(rows)
    job.total_rows = sweep.total
    session.commit()

    resolver = LookupResolver.for_user(session, user_id)

    already_imported = set(
        session.scalars(
            select(Transaction.import_row).where(Transaction.import_job_id == job_id)
        ).all()
    )
    if already_imported:
        logger.info(
            f"Import job {job_id} redelivered, {len(already_imported)} rows already imported"
        )

    for index, row in enumerate(rows):
        number = row_number(index)
        try:
            if number not in already_imported:
                candidate = normalize_row(row, mapping)
                session.add(
                    Transaction(
                        user_id=user_id,
                        account_id=resolver.resolve_account(cell(row, mapping.account)),
                        category_id=resolver.resolve_category(cell(row, mapping.category)),
                        type=candidate.type.value,
                        amount=candidate.amount,
                        date=candidate.date,
                        description=candidate.description,
                        payment_method=PaymentMethod.OTHER.value,
                        import_job_id=job_id,
                        import_row=number,
                    )
                )
                # Each row commits on its own; later failures never undo it
                session.commit()
            sweep.success += 1
        except RowError as exc:
            _record_row_error(sweep, number, str(exc), error_details_limit)
        except (IntegrityError, DataError) as exc:
            session.rollback()
            logger.warning(f"Import job {job_id} row {number} rejected by database: {exc}")
            _record_row_error(sweep, number, ROW_SAVE_ERROR, error_details_limit)

        sweep.processed += 1
        if progress:
            progress.publish(
                job_id,
                max(sweep.percent(), _percent(resume_floor, sweep.total)),
                f"Processed {sweep.processed}/{sweep.total} rows",
                status=ImportStatus.PROCESSING.value,
                meta=sweep.meta(),
            )
        if sweep.processed % checkpoint_every == 0 and sweep.processed > resume_floor:
            _checkpoint(session, job, sweep)

    job.status = ImportStatus.COMPLETED.value
    job.processed_rows = sweep.processed
    job.success_rows = sweep.success
    job.error_rows = sweep.errors
    job.error_details = sweep.details or None
    job.error_message = None
    job.finished_at = _now()
    session.commit()

    if progress:
        progress.publish(
            job_id,
            100,
            "Import complete",
            status=ImportStatus.COMPLETED.value,
            meta=sweep.meta(),
        )


def _percent(processed: int, total: int) -> int:
    if not total:
        return 0
    return round(min(processed, total) / total * 100)


def _record_row_error(sweep: _Sweep, number: int, message: str, limit: int) -> None:
    sweep.errors += 1
    if len(sweep.details) < limit:
        sweep.details.append({"row": number, "error": message})


def _checkpoint(session: Session, job: ImportJob, sweep: _Sweep) -> None:
    job.processed_rows = sweep.processed
    job.success_rows = sweep.success
    job.error_rows = sweep.errors
    session.commit()
    logger.debug(f"Checkpoint for job {job.id}: {sweep.meta()}")


def _fail(
    session: Session,
    job_id: str,
    message: str,
    sweep: _Sweep,
    progress: ProgressReporter | None,
) -> None:
    try:
        session.rollback()
        mark_job_failed(session, job_id, message)
    except SQLAlchemyError as exc:
        logger.error(f"Could not mark import job {job_id} as failed: {exc}", exc_info=True)
        return
    if progress:
        progress.publish(
            job_id,
            sweep.percent(),
            f"Import failed: {message}",
            status=ImportStatus.FAILED.value,
            meta={**sweep.meta(), "error": message},
        )
