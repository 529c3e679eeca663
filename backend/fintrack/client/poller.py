"""Fixed-interval polling of an import job until it reaches a terminal state."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"COMPLETED", "FAILED"})
DEFAULT_INTERVAL = 2.0


class PollTimeout(RuntimeError):
    """The job did not finish within max_polls status checks."""


class JobSource(Protocol):
    def get_job(self, job_id: str) -> dict[str, Any] | None: ...


def poll_until_done(
    client: JobSource,
    job_id: str,
    *,
    interval: float = DEFAULT_INTERVAL,
    on_update: Callable[[dict[str, Any]], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    max_polls: int | None = None,
) -> dict[str, Any]:
    """Fetch the job every `interval` seconds and return it once terminal.

    Transient HTTP errors are logged and the next tick retries; there is
    no backoff. A job that no longer exists raises LookupError.
    """
    polls = 0
    while True:
        polls += 1
        try:
            job = client.get_job(job_id)
        except httpx.HTTPError as e:
            logger.warning(f"Error checking status of import job {job_id}: {e}")
        else:
            if job is None:
                raise LookupError(f"Import job {job_id} not found")
            if on_update:
                on_update(job)
            if job.get("status") in TERMINAL_STATUSES:
                return job

        if max_polls is not None and polls >= max_polls:
            raise PollTimeout(f"Import job {job_id} still running after {polls} polls")
        sleep(interval)
