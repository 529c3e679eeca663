"""HTTP client for the import endpoints."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

IMPORTS_PATH = "/api/imports/"
DEFAULT_TIMEOUT = 10.0


class ImportApiClient:
    """Thin wrapper over httpx that carries the caller's identity header."""

    def __init__(
        self,
        base_url: str,
        user_id: str,
        *,
        http: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.http = http or httpx.Client(base_url=base_url, timeout=timeout)
        self.headers = {"X-User-Id": user_id}

    def __enter__(self) -> "ImportApiClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.http.close()

    def submit_import(self, filename: str, csv_data: str, mapping: dict[str, Any]) -> dict[str, Any]:
        """Upload the CSV with its column mapping; returns the PENDING job."""
        response = self.http.post(
            IMPORTS_PATH,
            files={"file": (filename, csv_data.encode("utf-8"), "text/csv")},
            data={"mapping": json.dumps(mapping)},
            headers=self.headers,
        )
        response.raise_for_status()
        return response.json()

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        response = self.http.get(f"{IMPORTS_PATH}{job_id}", headers=self.headers)
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        response.raise_for_status()
        return response.json()

    def list_jobs(self, limit: int | None = None) -> list[dict[str, Any]]:
        params = {"limit": limit} if limit else None
        response = self.http.get(IMPORTS_PATH, params=params, headers=self.headers)
        response.raise_for_status()
        return response.json()

    def delete_job(self, job_id: str) -> bool:
        response = self.http.delete(f"{IMPORTS_PATH}{job_id}", headers=self.headers)
        if response.status_code == httpx.codes.NOT_FOUND:
            return False
        response.raise_for_status()
        return True
