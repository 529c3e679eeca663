"""Work queue seam between import submission and the import worker."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, Protocol

from celery import Celery
from celery.result import AsyncResult

from fintrack.core.exceptions import ImportPipelineError
from fintrack.services.progress_tracker import ProgressReporter

logger = logging.getLogger(__name__)

IMPORT_TASK_NAME = "fintrack.workers.tasks.import_transactions"
IMPORT_QUEUE_NAME = "imports"

# Queue-side states, independent of the durable ImportJob status
WAITING = "waiting"
ACTIVE = "active"
RETRYING = "retrying"
COMPLETED = "completed"
FAILED = "failed"
UNKNOWN = "unknown"

_CELERY_STATES = {
    "PENDING": WAITING,
    "RECEIVED": WAITING,
    "STARTED": ACTIVE,
    "PROGRESS": ACTIVE,
    "RETRY": RETRYING,
    "SUCCESS": COMPLETED,
    "FAILURE": FAILED,
    "REVOKED": FAILED,
}


@dataclass(frozen=True)
class ImportWorkItem:
    """Envelope delivered to the worker; job_id matches the ImportJob id."""

    job_id: str
    user_id: str
    filename: str
    csv_data: str
    mapping: dict[str, Any]

    def to_task_kwargs(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class QueueStatus:
    job_id: str
    state: str
    progress: int = 0
    attempts: int = 0
    failed_reason: str | None = None


class ImportQueue(Protocol):
    def enqueue(self, item: ImportWorkItem) -> None: ...

    def get_status(self, job_id: str) -> QueueStatus | None: ...


class CeleryImportQueue:
    """Celery/Redis backed queue; the job id doubles as the Celery task id."""

    def __init__(
        self,
        celery_app: Celery,
        progress: ProgressReporter,
        *,
        queue_name: str = IMPORT_QUEUE_NAME,
        task_name: str = IMPORT_TASK_NAME,
    ):
        self.celery_app = celery_app
        self.progress = progress
        self.queue_name = queue_name
        self.task_name = task_name

    def enqueue(self, item: ImportWorkItem) -> None:
        self.celery_app.send_task(
            self.task_name,
            kwargs=item.to_task_kwargs(),
            task_id=item.job_id,
            queue=self.queue_name,
        )
        logger.info(f"Enqueued import job {item.job_id} on queue '{self.queue_name}'")

    def get_status(self, job_id: str) -> QueueStatus | None:
        snapshot = self.progress.fetch(job_id)
        try:
            result = AsyncResult(job_id, app=self.celery_app)
            celery_state = result.state
            failed_reason = str(result.info) if celery_state == "FAILURE" else None
        except Exception as e:
            logger.warning(f"Failed to read queue state for job {job_id}: {e}")
            if not snapshot:
                return None
            celery_state, failed_reason = None, None

        if celery_state is None:
            state = UNKNOWN
        else:
            state = _CELERY_STATES.get(celery_state, UNKNOWN)
        if state == WAITING and not snapshot:
            # Celery reports PENDING for ids it has never seen
            return None
        return QueueStatus(
            job_id=job_id,
            state=state,
            progress=int(snapshot.get("progress") or 0),
            failed_reason=failed_reason,
        )


class InMemoryImportQueue:
    """FIFO queue with explicit ack/nack and at-least-once redelivery."""

    def __init__(self, progress: ProgressReporter | None = None, max_attempts: int = 3):
        self.progress = progress
        self.max_attempts = max_attempts
        self._pending: deque[ImportWorkItem] = deque()
        self._in_flight: dict[str, ImportWorkItem] = {}
        self._statuses: dict[str, QueueStatus] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def enqueue(self, item: ImportWorkItem) -> None:
        self._pending.append(item)
        self._statuses[item.job_id] = QueueStatus(job_id=item.job_id, state=WAITING)

    def dequeue(self) -> ImportWorkItem | None:
        if not self._pending:
            return None
        item = self._pending.popleft()
        self._in_flight[item.job_id] = item
        status = self._statuses[item.job_id]
        status.state = ACTIVE
        status.attempts += 1
        return item

    def is_final_attempt(self, job_id: str) -> bool:
        return self._statuses[job_id].attempts >= self.max_attempts

    def ack(self, job_id: str) -> None:
        self._in_flight.pop(job_id, None)
        self._statuses[job_id].state = COMPLETED

    def nack(self, job_id: str, reason: str, *, retry: bool = True) -> None:
        """Redeliver until attempts run out, then park the item as failed."""
        item = self._in_flight.pop(job_id, None)
        status = self._statuses[job_id]
        status.failed_reason = reason
        if retry and item is not None and status.attempts < self.max_attempts:
            status.state = RETRYING
            self._pending.append(item)
        else:
            status.state = FAILED

    def get_status(self, job_id: str) -> QueueStatus | None:
        status = self._statuses.get(job_id)
        if status is None:
            return None
        if self.progress:
            status.progress = int(self.progress.fetch(job_id).get("progress") or 0)
        return status

    def run_pending(self, handler: Callable[[ImportWorkItem, bool], Any]) -> int:
        """Deliver queued items to handler(item, final_attempt) until drained."""
        delivered = 0
        while True:
            item = self.dequeue()
            if item is None:
                return delivered
            delivered += 1
            try:
                handler(item, self.is_final_attempt(item.job_id))
            except ImportPipelineError as e:
                logger.warning(f"Import job {item.job_id} failed permanently: {e}")
                self.nack(item.job_id, str(e), retry=False)
            except Exception as e:
                logger.warning(f"Delivery of import job {item.job_id} failed: {e}")
                self.nack(item.job_id, str(e))
            else:
                self.ack(item.job_id)
