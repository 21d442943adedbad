"""
Parsing Job Routes
==================
HTTP surface for starting, polling, cancelling and approving jobs.

Errors raised by the pipeline are rendered as {"message", "error"} by the
handler registered in register_error_handlers.
"""

import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from storybook.errors import JobAlreadyRunningError, JobNotFoundError, StorybookError
from storybook.pipeline.job_processor import JobProcessor


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/parsing", tags=["parsing"])


class NarrateRequest(BaseModel):
    """Optional body for a narration request."""

    model_config = ConfigDict(populate_by_name=True)

    chapter_ids: Optional[list[str]] = Field(default=None, alias="chapterIds")


# Set by create_app after the processor is built
_processor: Optional[JobProcessor] = None


def set_dependencies(processor: Optional[JobProcessor]):
    """Set service dependencies for routes."""
    global _processor
    _processor = processor


def _require_processor() -> JobProcessor:
    if _processor is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _processor


def register_error_handlers(app: FastAPI) -> None:
    """Map pipeline errors to JSON error bodies."""

    @app.exception_handler(StorybookError)
    async def storybook_error_handler(request: Request, exc: StorybookError):
        body = {"message": exc.message, "error": exc.api_code}
        if isinstance(exc, JobAlreadyRunningError) and exc.job_id is not None:
            body["jobId"] = exc.job_id
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=exc.http_status, content=body)


@router.post("/start/{book_source_id}", status_code=201)
def start_parsing(book_source_id: int):
    """Create a parsing job and schedule it."""
    processor = _require_processor()
    job_id = processor.create_parsing_job(book_source_id)
    processor.start_job(job_id)
    return {"message": "Document parsing started", "jobId": job_id, "bookSourceId": book_source_id}


@router.get("/status/{job_id}")
def get_job_status(job_id: int):
    """Snapshot of a job for polling."""
    snapshot = _require_processor().get_job_status(job_id)
    if snapshot is None:
        raise JobNotFoundError(job_id)
    return snapshot.to_dict()


@router.get("/jobs/{book_source_id}")
def list_jobs(book_source_id: int):
    """All jobs of a book source, oldest first."""
    jobs = _require_processor().get_jobs_for_book_source(book_source_id)
    return {"bookSourceId": book_source_id, "jobs": [job.to_dict() for job in jobs]}


@router.post("/cancel/{job_id}")
def cancel_job(job_id: int):
    _require_processor().cancel_job(job_id)
    return {"message": "Job cancelled successfully", "jobId": job_id}


@router.post("/process-queue")
def process_queue():
    """
    Start pending jobs.

    Always answers 200; failures are logged, not reported.
    """
    processor = _require_processor()
    job_ids: list[int] = []
    try:
        job_ids = processor.process_job_queue()
    except Exception as e:
        logger.error(f"Job queue processing failed: {e}")
    return {"message": "Job queue processing started", "jobIds": job_ids}


@router.get("/preview/{book_source_id}")
def preview(book_source_id: int):
    """Parse a source without persisting anything."""
    return {"bookSourceId": book_source_id, "preview": _require_processor().preview(book_source_id)}


@router.post("/approve/{job_id}", status_code=201)
def approve(job_id: int):
    """Create chapters from a completed parsing job."""
    chapters = _require_processor().approve_parsing_job(job_id)
    return {
        "message": "Chapters created successfully",
        "jobId": job_id,
        "chapters": [
            {"id": chapter.id, "title": chapter.title, "indexInBook": chapter.index_in_book}
            for chapter in chapters
        ],
    }


@router.post("/narrate/{book_source_id}", status_code=201)
def narrate(book_source_id: int, request: Optional[NarrateRequest] = None):
    """Create a narration job for the source's chapters and schedule it."""
    processor = _require_processor()
    chapter_ids = request.chapter_ids if request else None
    job_id = processor.create_tts_job(book_source_id, chapter_ids)
    processor.start_job(job_id)
    return {"message": "Narration started", "jobId": job_id, "bookSourceId": book_source_id}
