"""Ephemeral per-job progress snapshots stored in Redis for status polling."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from functools import lru_cache
from typing import Any, Protocol

from redis import Redis
from redis.exceptions import RedisError

from fintrack.core.config import get_settings
from fintrack.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "jobs:progress:"
PROGRESS_TTL = timedelta(hours=24)


class ProgressReporter(Protocol):
    def publish(
        self,
        job_id: str,
        percent: int,
        message: str | None = None,
        *,
        status: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None: ...

    def fetch(self, job_id: str) -> dict[str, Any]: ...

    def clear(self, job_id: str) -> None: ...

def build_payload(
    job_id: str,
    percent: int,
    message: str | None,
    status: str | None,
    meta: dict[str, Any] | None,
) -> dict[str, Any]:
    return {
        "job_id": job_id,
        "progress": max(0, min(int(percent), 100)),
        "message": message,
        "status": status,
        "meta": meta or {},
    }


class ProgressTracker:
    """Redis-backed progress channel; failures never break ingestion."""

    def __init__(self, redis_client: Redis, ttl: timedelta = PROGRESS_TTL):
        self.redis = redis_client
        self.ttl = ttl

    @staticmethod
    def _key(job_id: str) -> str:
        return f"{PROGRESS_PREFIX}{job_id}"

    def publish(
        self,
        job_id: str,
        percent: int,
        message: str | None = None,
        *,
        status: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        """Persist a progress snapshot so pollers can read it."""
        payload = build_payload(job_id, percent, message, status, meta)
        try:
            self.redis.set(
                self._key(job_id),
                json.dumps(payload),
                ex=int(self.ttl.total_seconds()),
            )
        except RedisError as e:
            logger.warning(f"Failed to publish progress for job {job_id}: {e}")

    def fetch(self, job_id: str) -> dict[str, Any]:
        """Return the latest snapshot, or {} when unavailable."""
        try:
            raw = self.redis.get(self._key(job_id))
        except RedisError as e:
            logger.warning(f"Failed to fetch progress for job {job_id}: {e}")
            return {}
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return {}

    def clear(self, job_id: str) -> None:
        try:
            self.redis.delete(self._key(job_id))
        except RedisError as e:
            logger.warning(f"Failed to clear progress for job {job_id}: {e}")


class InMemoryProgressTracker:
    """Process-local progress channel for tests and single-process runs."""

    def __init__(self):
        self.snapshots: dict[str, dict[str, Any]] = {}
        self.history: dict[str, list[int]] = {}

    def publish(
        self,
        job_id: str,
        percent: int,
        message: str | None = None,
        *,
        status: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        payload = build_payload(job_id, percent, message, status, meta)
        self.snapshots[job_id] = payload
        self.history.setdefault(job_id, []).append(payload["progress"])

    def fetch(self, job_id: str) -> dict[str, Any]:
        return dict(self.snapshots.get(job_id, {}))

    def clear(self, job_id: str) -> None:
        self.snapshots.pop(job_id, None)


@lru_cache
def get_progress_tracker() -> ProgressTracker:
    """Shared Redis-backed tracker built from settings."""
    settings = get_settings()
    return ProgressTracker(create_redis_client(settings.redis_url, decode_responses=True))
