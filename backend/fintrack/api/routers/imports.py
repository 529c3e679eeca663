"""Endpoints for CSV import submission, status polling and housekeeping."""

from __future__ import annotations

import logging

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fintrack.api.dependencies.auth import get_current_user_id
from fintrack.api.dependencies.db import get_session
from fintrack.api.dependencies.queue import get_import_queue, get_progress
from fintrack.api.schemas.job import ImportJobRead, ImportMapping
from fintrack.core.config import get_settings
from fintrack.core.exceptions import CsvParseError, ImportSubmissionError
from fintrack.services import import_jobs
from fintrack.services.csv_ingest import decode_csv_bytes
from fintrack.services.import_queue import ImportQueue
from fintrack.services.progress_tracker import ProgressReporter
from fintrack.utils.csv_validator import MappingError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/",
    summary="Start a CSV import job",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportJobRead,
)
async def submit_import(
    file: UploadFile = File(...),
    mapping: str = Form(..., description="JSON object assigning roles to CSV headers"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_session),
    queue: ImportQueue = Depends(get_import_queue),
    progress: ProgressReporter = Depends(get_progress),
) -> ImportJobRead:
    """Validate the upload and mapping, record a PENDING job and enqueue it."""
    settings = get_settings()
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename is required",
        )
    if not file.filename.lower().endswith(".csv"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV uploads are supported",
        )

    raw = await file.read()
    if len(raw) > settings.import_max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.import_max_upload_bytes} bytes",
        )
    try:
        csv_data = decode_csv_bytes(raw)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        column_mapping = ImportMapping.model_validate_json(mapping)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid mapping: date and amount columns are required ({exc.error_count()} errors)",
        ) from exc

    try:
        job = import_jobs.submit_import(
            db,
            queue,
            user_id,
            file.filename,
            csv_data,
            column_mapping,
            progress=progress,
        )
    except (MappingError, CsvParseError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ImportSubmissionError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to start import process",
        ) from exc
    except SQLAlchemyError as exc:
        logger.error(f"Database error creating import job: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create import job",
        ) from exc

    return import_jobs.serialize_job(job)


@router.get(
    "/",
    summary="List recent import jobs",
    response_model=list[ImportJobRead],
)
async def list_imports(
    limit: int | None = Query(None, ge=1, le=100, description="Maximum number of jobs to return"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_session),
) -> list[ImportJobRead]:
    """Return the caller's most recent jobs, newest first."""
    limit = limit or get_settings().import_jobs_list_limit
    try:
        jobs = import_jobs.list_jobs(db, user_id, limit=limit)
    except SQLAlchemyError as exc:
        logger.error(f"Database error listing import jobs: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve jobs",
        ) from exc
    return [import_jobs.serialize_job(job) for job in jobs]


@router.get(
    "/{job_id}",
    summary="Fetch job state and latest progress",
    response_model=ImportJobRead,
)
async def get_import(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_session),
    queue: ImportQueue = Depends(get_import_queue),
) -> ImportJobRead:
    """Polled by clients until the job reaches COMPLETED or FAILED."""
    try:
        job_status = import_jobs.read_job_status(db, user_id, job_id, queue)
    except SQLAlchemyError as exc:
        logger.error(f"Database error fetching job status {job_id}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve job status",
        ) from exc
    if job_status is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job_status


@router.delete(
    "/{job_id}",
    summary="Delete an import job record",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_import(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_session),
    progress: ProgressReporter = Depends(get_progress),
) -> Response:
    """Remove the job record; transactions it created are kept."""
    if not import_jobs.delete_job(db, user_id, job_id, progress=progress):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
