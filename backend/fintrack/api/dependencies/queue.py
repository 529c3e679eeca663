"""Import queue and progress channel dependencies."""

from functools import lru_cache

from fintrack.services.import_queue import CeleryImportQueue, ImportQueue
from fintrack.services.progress_tracker import ProgressReporter, get_progress_tracker


def get_progress() -> ProgressReporter:
    return get_progress_tracker()


@lru_cache
def _celery_queue() -> CeleryImportQueue:
    from fintrack.workers.celery_app import celery_app

    return CeleryImportQueue(celery_app, get_progress_tracker())


def get_import_queue() -> ImportQueue:
    """FastAPI dependency; tests override it with an in-memory queue."""
    return _celery_queue()
