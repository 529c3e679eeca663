"""Celery task that runs one CSV import job."""

from __future__ import annotations

import logging
from typing import Any

from fintrack.core.config import get_settings
from fintrack.core.exceptions import ImportPipelineError
from fintrack.db.session import get_fresh_session
from fintrack.services.import_queue import IMPORT_TASK_NAME
from fintrack.services.import_worker import process_import_job
from fintrack.services.progress_tracker import get_progress_tracker
from fintrack.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

settings = get_settings()


def retry_countdown(retries: int, base: int | None = None) -> int:
    """Exponential backoff in seconds: base, 2*base, 4*base, ..."""
    if base is None:
        base = settings.import_retry_backoff
    return base * (2**retries)


@celery_app.task(
    bind=True,
    name=IMPORT_TASK_NAME,
    max_retries=settings.import_max_attempts - 1,
)
def import_transactions_task(
    self,
    job_id: str,
    user_id: str,
    filename: str,
    csv_data: str,
    mapping: dict[str, Any],
) -> dict[str, int]:
    """Import every row of the payload and return the final counters.

    Pipeline faults fail the job at once. Other errors are retried with
    exponential backoff; the last attempt marks the job FAILED.
    """
    final_attempt = self.request.retries >= self.max_retries
    try:
        result = process_import_job(
            get_fresh_session,
            job_id,
            user_id,
            filename,
            csv_data,
            mapping,
            progress=get_progress_tracker(),
            checkpoint_every=settings.import_checkpoint_every,
            error_details_limit=settings.import_error_details_limit,
            final_attempt=final_attempt,
            max_attempts=settings.import_max_attempts,
        )
    except ImportPipelineError:
        raise
    except Exception as exc:
        if final_attempt:
            raise
        countdown = retry_countdown(self.request.retries)
        logger.warning(
            f"Retrying import job {job_id} in {countdown}s "
            f"(attempt {self.request.retries + 1} of {self.max_retries + 1})"
        )
        raise self.retry(exc=exc, countdown=countdown)

    return result.as_dict()
