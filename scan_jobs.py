"""Batch scan jobs: walk a folder of card photos and add what Ollama finds.

Jobs live in process memory only. Each job runs sequentially in a FastAPI
background task; pausing blocks the loop between images and cancelling
removes the job record, which stops the loop after the current image and
discards its results.
"""

import time
import logging
import threading
from datetime import datetime, timezone

from collection_utils import CardValidationError, create_cards, validate_card
from config import DEFAULT_CONFIDENCE_THRESHOLD
from ollama_service import OllamaError

logger = logging.getLogger(__name__)

STATUS_PROCESSING = "processing"
STATUS_PAUSED = "paused"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class JobStateError(Exception):
    """Raised when a job cannot move to the requested status."""


def _now():
    return datetime.now(timezone.utc)


class ScanJobRegistry:
    """Thread-safe in-memory store of scan jobs, oldest first."""

    def __init__(self):
        self._jobs = {}
        self._resume_events = {}
        self._lock = threading.Lock()

    def create(self, job_name, folder_path, user, settings=None):
        settings = settings or {}
        threshold = settings.get("confidence_threshold")
        auto_process = settings.get("auto_process")
        now = _now().isoformat()
        with self._lock:
            job_id = f"scan_{int(time.time() * 1000)}"
            suffix = 1
            while job_id in self._jobs:
                job_id = f"scan_{int(time.time() * 1000)}_{suffix}"
                suffix += 1
            job = {
                "id":              job_id,
                "job_name":        job_name,
                "status":          STATUS_PROCESSING,
                "total_cards":     0,
                "processed_cards": 0,
                "failed_cards":    0,
                "saved_cards":     0,
                "created_at":      now,
                "updated_at":      now,
                "user_id":         user,
                "folder_path":     folder_path,
                "error":           None,
                "settings": {
                    "confidence_threshold": DEFAULT_CONFIDENCE_THRESHOLD if threshold is None else float(threshold),
                    "auto_process":         True if auto_process is None else bool(auto_process),
                    "image_quality":        settings.get("image_quality") or "high",
                },
            }
            self._jobs[job_id] = job
            event = threading.Event()
            event.set()
            self._resume_events[job_id] = event
            return dict(job)

    def get(self, job_id):
        with self._lock:
            job = self._jobs.get(job_id)
            return dict(job) if job else None

    def list(self):
        with self._lock:
            return [dict(j) for j in self._jobs.values()]

    def update(self, job_id, **fields):
        """Set fields on a job. Returns False if the job no longer exists."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            job.update(fields)
            job["updated_at"] = _now().isoformat()
            return True

    def remove(self, job_id):
        with self._lock:
            job = self._jobs.pop(job_id, None)
            event = self._resume_events.pop(job_id, None)
        if event is not None:
            event.set()
        return job

    def pause(self, job_id):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if job["status"] != STATUS_PROCESSING:
                raise JobStateError(f"Cannot pause a job that is {job['status']}")
            job["status"] = STATUS_PAUSED
            job["updated_at"] = _now().isoformat()
            self._resume_events[job_id].clear()
            return dict(job)

    def resume(self, job_id):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if job["status"] != STATUS_PAUSED:
                raise JobStateError(f"Cannot resume a job that is {job['status']}")
            job["status"] = STATUS_PROCESSING
            job["updated_at"] = _now().isoformat()
            self._resume_events[job_id].set()
            return dict(job)

    def wait_while_paused(self, job_id, poll=0.5):
        """Block while the job is paused. Returns False once it has been removed."""
        while True:
            with self._lock:
                job = self._jobs.get(job_id)
                if job is None:
                    return False
                if job["status"] != STATUS_PAUSED:
                    return True
                event = self._resume_events[job_id]
            event.wait(poll)

    def clear(self):
        with self._lock:
            events = list(self._resume_events.values())
            self._jobs.clear()
            self._resume_events.clear()
        for event in events:
            event.set()


scan_registry = ScanJobRegistry()


def job_progress(job, now=None):
    """Progress summary for one job, with a naive time-remaining estimate."""
    now = now or _now()
    elapsed = (now - datetime.fromisoformat(job["created_at"])).total_seconds()
    processed = job["processed_cards"]
    total = job["total_cards"]
    remaining = 0
    if job["status"] == STATUS_PROCESSING and processed > 0 and total > 0:
        remaining = int(elapsed / processed * (total - processed))
    return {
        "job_id":                   job["id"],
        "current_card":             processed,
        "total_cards":              total,
        "failed_cards":             job["failed_cards"],
        "saved_cards":              job["saved_cards"],
        "status":                   job["status"],
        "processing_time":          int(elapsed),
        "estimated_time_remaining": remaining,
    }


def results_to_cards(results, job):
    """Turn folder results into validated card dicts for one job.

    Results below the job's confidence threshold, failed analyses and data
    that does not pass card validation are counted as failures.

    Returns:
        Tuple of (cards_to_save, failed_count).
    """
    threshold = job["settings"]["confidence_threshold"]
    job_name = job["job_name"]
    cards, failed = [], 0
    for result in results:
        if not result.get("success") or not result.get("card_data"):
            failed += 1
            continue
        data = dict(result["card_data"])
        confidence = data.pop("confidence", 0) or 0
        if confidence < threshold:
            logger.info(f"[SCAN_PROCESSING] Skipped {result['image_file']} due to low confidence: {confidence}")
            failed += 1
            continue
        data["lot_number"] = job_name
        data["tags"] = [job_name, "scanned"]
        data["notes"] = f"Scanned from {job['folder_path']} with confidence {confidence}"
        try:
            cards.append(validate_card(data))
        except CardValidationError as e:
            logger.error(f"[SCAN_PROCESSING] Invalid card data from {result['image_file']}: {e}")
            failed += 1
    return cards, failed


def process_scan_job(job_id, service, cards_path, registry=None):
    """Background task: analyse a job's folder and save confident results."""
    registry = registry or scan_registry
    job = registry.get(job_id)
    if job is None:
        logger.error(f"[SCAN_PROCESSING] Job {job_id} not found")
        return

    logger.info(f"[SCAN_PROCESSING] Starting background processing for job {job_id}")

    def on_progress(processed, total):
        registry.update(job_id, processed_cards=processed, total_cards=total)
        logger.info(f"[SCAN_PROCESSING] Job {job_id} progress: {processed}/{total}")

    try:
        results = service.process_card_folder(
            job["folder_path"],
            progress_callback=on_progress,
            should_continue=lambda: registry.wait_while_paused(job_id),
        )
    except (FileNotFoundError, ValueError, OllamaError) as e:
        logger.error(f"[SCAN_PROCESSING] Error processing job {job_id}: {e}")
        registry.update(job_id, status=STATUS_FAILED, error=str(e))
        return
    except Exception as e:
        logger.exception(f"[SCAN_PROCESSING] Unexpected error processing job {job_id}")
        registry.update(job_id, status=STATUS_FAILED, error=str(e))
        return

    job = registry.get(job_id)
    if job is None:
        logger.info(f"[SCAN_PROCESSING] Job {job_id} was cancelled, discarding {len(results)} results")
        return

    try:
        cards, failed = results_to_cards(results, job)
        if cards:
            create_cards(cards, job["user_id"], cards_path)
    except Exception as e:
        logger.exception(f"[SCAN_PROCESSING] Could not save cards for job {job_id}")
        registry.update(job_id, status=STATUS_FAILED, error=str(e))
        return

    registry.update(
        job_id,
        status=STATUS_COMPLETED,
        processed_cards=len(results),
        failed_cards=failed,
        saved_cards=len(cards),
    )
    logger.info(f"[SCAN_PROCESSING] Job {job_id} completed. Success: {len(cards)}, Failed: {failed}")
