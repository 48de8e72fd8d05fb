"""
Router for the diary-to-reel pipeline.
Handles job submission, job status and serving locally stored media.
"""

import logging
import mimetypes
import os
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from database import get_db
from job_store import SqlJobStore
from schemas import JobRecord, JobResponse, PipelineStartRequest
from storage import LocalBlobStore
from supervisor import submit_job
from tasks import run_pipeline_task


# Create the router
router = APIRouter(tags=["pipeline"])


def get_job_store(db: Session = Depends(get_db)):
    """Job store bound to the request's DB session."""
    return SqlJobStore(session_factory=lambda: db)


def get_job_launcher() -> Callable[[str, str], None]:
    """Hands a queued job to the Celery worker."""
    def launch(job_id: str, diary_text: str):
        run_pipeline_task.delay(job_id, diary_text)
    return launch


def get_blob_store() -> LocalBlobStore:
    return LocalBlobStore()


@router.post("/pipeline/start", response_model=JobResponse)
def start_pipeline(request: PipelineStartRequest, store=Depends(get_job_store),
                   launcher: Callable[[str, str], None] = Depends(get_job_launcher)):
    """
    Creates a queued job, sends it to the worker and immediately returns its id.
    """
    if not request.diary_text.strip():
        raise HTTPException(status_code=400, detail="diary_text is required.")
    try:
        record = submit_job(store, request.diary_text, launcher)
    except Exception as e:
        logging.error(f"Failed to submit pipeline job: {e}")
        raise HTTPException(status_code=500, detail="Failed to start the pipeline job.")
    return JobResponse(job_id=record.id, status=record.status)


@router.get("/pipeline/status/{job_id}", response_model=JobRecord)
def get_pipeline_status(job_id: str, store=Depends(get_job_store)):
    """Current snapshot of a job."""
    record = store.get(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Job not found.")
    return record


@router.get("/media/{path:path}")
def get_media(path: str, blob_store: LocalBlobStore = Depends(get_blob_store)):
    """
    Serves a generated asset from the media directory. Paths that resolve
    outside it are refused.
    """
    try:
        full_path = blob_store.resolve(path)
    except ValueError:
        raise HTTPException(status_code=403, detail="Forbidden: Access to this path is not allowed.")

    if not os.path.isfile(full_path):
        raise HTTPException(status_code=404, detail="Media file not found.")

    media_type = mimetypes.guess_type(full_path)[0] or "application/octet-stream"
    return FileResponse(full_path, media_type=media_type, filename=os.path.basename(full_path))
