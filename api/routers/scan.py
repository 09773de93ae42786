"""Card scanning endpoints — batch-identify a folder of card photos with Ollama."""

import os
import logging
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field

from api.deps import DEFAULT_USER, get_ollama_service, get_paths
from collection_utils import load_settings
from ollama_service import OllamaService
from scan_jobs import JobStateError, job_progress, process_scan_job, scan_registry

logger = logging.getLogger(__name__)

router = APIRouter()


class ScanSettings(BaseModel):
    confidence_threshold: Optional[float] = Field(default=None, ge=0, le=1)
    auto_process:         Optional[bool]  = None
    image_quality:        Optional[Literal["low", "medium", "high"]] = None


class ScanStartRequest(BaseModel):
    job_name:    str = ""
    folder_path: str = ""
    settings:    Optional[ScanSettings] = None


def _job_or_404(job_id: str) -> dict:
    job = scan_registry.get(job_id)
    if job is None:
        logger.info(f"[SCAN_ROUTES] Scan job not found: {job_id}")
        raise HTTPException(status_code=404, detail="Scan job not found")
    return job


@router.post("/start")
def start_scan(
    body: ScanStartRequest,
    background_tasks: BackgroundTasks,
    user: str = DEFAULT_USER,
    paths: dict = Depends(get_paths),
    service: OllamaService = Depends(get_ollama_service),
):
    """Start a background scan job over a folder of card images.

    Scan settings not given in the request fall back to the saved scanning
    preferences. Cards the model identifies with confidence at or above the
    threshold are added to the user's collection when the job finishes.

    Args:
        body: ScanStartRequest with 'job_name', 'folder_path' and optional
              'settings' (confidence_threshold, auto_process, image_quality).
        background_tasks: FastAPI BackgroundTasks used to run the job.
        user: Owner of the cards the job creates. Defaults to 'admin'.
        paths: Injected per-user data paths.
        service: Injected Ollama client.

    Returns:
        Dict with keys 'status' ('started'), 'job_id' and 'job'.

    Raises:
        HTTPException: 400 if job_name or folder_path is missing, or the folder
                       does not exist.
        HTTPException: 503 if the Ollama server cannot be reached.
    """
    job_name = body.job_name.strip()
    folder_path = body.folder_path.strip()
    if not job_name:
        raise HTTPException(status_code=400, detail="Job name is required")
    if not folder_path:
        raise HTTPException(status_code=400, detail="Folder path is required")
    if not os.path.isdir(folder_path):
        raise HTTPException(status_code=400, detail=f"Folder not found: {folder_path}")

    if not service.test_connection():
        raise HTTPException(
            status_code=503,
            detail="Cannot connect to Ollama service. Please ensure Ollama is running.",
        )

    saved = load_settings()["scanning"]
    requested = body.settings.model_dump(exclude_none=True) if body.settings else {}
    settings = {
        "confidence_threshold": saved.get("confidence_threshold"),
        "auto_process":         saved.get("auto_process"),
        "image_quality":        saved.get("image_quality"),
        **requested,
    }

    job = scan_registry.create(job_name, folder_path, user, settings)
    logger.info(f"[SCAN_ROUTES] Created new scan job: {job_name} with ID: {job['id']}")
    background_tasks.add_task(process_scan_job, job["id"], service, paths["cards"])
    return {"status": "started", "job_id": job["id"], "job": job}


@router.get("/jobs")
def list_jobs():
    return {"jobs": scan_registry.list()}


@router.get("/progress/{job_id}")
def scan_progress(job_id: str):
    """Return progress for one job.

    Returns:
        Dict with key 'progress' holding 'job_id', 'current_card',
        'total_cards', 'failed_cards', 'saved_cards', 'status',
        'processing_time' and 'estimated_time_remaining' (seconds).
    """
    return {"progress": job_progress(_job_or_404(job_id))}


@router.post("/pause/{job_id}")
def pause_job(job_id: str):
    try:
        job = scan_registry.pause(job_id)
    except JobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if job is None:
        raise HTTPException(status_code=404, detail="Scan job not found")
    logger.info(f"[SCAN_ROUTES] Paused job: {job['job_name']}")
    return {"status": "paused", "job": job}


@router.post("/resume/{job_id}")
def resume_job(job_id: str):
    try:
        job = scan_registry.resume(job_id)
    except JobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if job is None:
        raise HTTPException(status_code=404, detail="Scan job not found")
    logger.info(f"[SCAN_ROUTES] Resumed job: {job['job_name']}")
    return {"status": "processing", "job": job}


@router.post("/cancel/{job_id}")
def cancel_job(job_id: str):
    """Remove a job. A running job stops after its current image; nothing it found is saved."""
    job = scan_registry.remove(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Scan job not found")
    logger.info(f"[SCAN_ROUTES] Cancelled job: {job['job_name']}")
    return {"status": "cancelled", "job_id": job_id}
