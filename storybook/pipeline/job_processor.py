"""
Job Processor
=============
Creates, runs, tracks and cancels background processing jobs.

State machine:
    pending -> running -> completed | failed
    pending/running -> failed (cancellation, failure, restart recovery)

At most one pending or running job exists per book source; the repository
enforces this with a conditional insert. Every transition is conditional, so
a cancelled job is never revived by a late completion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from storybook.concurrency import CancellationToken, CancelledException, JobWorkerPool
from storybook.errors import (
    BookNotAssignedError,
    DocumentValidationError,
    JobAlreadyCompletedError,
    JobAlreadyFailedError,
    JobAlreadyRunningError,
    JobCancelledError,
    JobNotCompletedError,
    JobNotFoundError,
    ManuscriptNotFoundError,
    SourceNotFoundError,
)
from storybook.ingestion.document import ParsedDocument, ValidationReport
from storybook.ingestion.document_parser import DocumentParser
from storybook.pipeline.chapter_content import build_chapter_content
from storybook.pipeline.narrator import ChapterNarrator
from storybook.storage.models import (
    ActivityCreate,
    ActivityType,
    BookSource,
    BookSourceStatus,
    Chapter,
    ChapterCreate,
    JobCreate,
    JobStatus,
    JobType,
    ProcessingJob,
)
from storybook.storage.repository import IStoryRepository


logger = logging.getLogger(__name__)

CANCEL_MESSAGE = "Job cancelled by user"
RESTART_MESSAGE = "Job interrupted by server restart"
DEFAULT_QUEUE_BATCH = 5


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class JobSnapshot:
    """Read-only view of a job for polling clients."""
    job_id: int
    book_source_id: int
    job_type: str
    status: str
    progress: int
    message: Optional[str]
    error_message: Optional[str]
    result: Optional[dict[str, Any]]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: Optional[datetime]

    @classmethod
    def from_job(cls, job: ProcessingJob) -> "JobSnapshot":
        return cls(
            job_id=job.id,
            book_source_id=job.book_source_id,
            job_type=job.job_type.value,
            status=job.status.value,
            progress=job.progress,
            message=job.message,
            error_message=job.error_message,
            result=job.result,
            started_at=job.started_at,
            completed_at=job.completed_at,
            created_at=job.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "bookSourceId": self.book_source_id,
            "jobType": self.job_type,
            "status": self.status,
            "progress": self.progress,
            "message": self.message,
            "errorMessage": self.error_message,
            "result": self.result,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "createdAt": _iso(self.created_at),
        }


class JobProcessor:
    """
    Runs parsing, narration and chapter creation jobs.

    Execution goes through a bounded JobWorkerPool when one is given;
    without a pool, start_job runs the job inline (CLI use).

    Example:
        processor = JobProcessor(repository, DocumentParser(), worker_pool=JobWorkerPool())
        job_id = processor.create_parsing_job(source.id)
        processor.start_job(job_id)
        processor.get_job_status(job_id).to_dict()
    """

    def __init__(
        self,
        repository: IStoryRepository,
        parser: Optional[DocumentParser] = None,
        narrator: Optional[ChapterNarrator] = None,
        worker_pool: Optional[JobWorkerPool] = None,
        settings: Any = None
    ):
        """
        Initialize the processor.

        Args:
            repository: Storage backend
            parser: Document parser (defaults built from settings)
            narrator: Chapter narrator; built from settings on first use if None
            worker_pool: Background executor; None runs jobs inline
            settings: Application settings (optional)
        """
        self.repository = repository
        self.parser = parser or DocumentParser()
        self.settings = settings
        self.worker_pool = worker_pool
        self._narrator = narrator
        self.queue_batch_size = getattr(settings, "queue_batch_size", DEFAULT_QUEUE_BATCH)

    # ==================== Helpers ====================

    @property
    def narrator(self) -> ChapterNarrator:
        """Narrator, built from the configured providers on first use."""
        if self._narrator is None:
            from storybook.tts.factory import create_adapters

            if self.settings is None:
                raise RuntimeError("Narration requires settings or an explicit narrator")
            synthesizer, recognizer = create_adapters(self.settings)
            self._narrator = ChapterNarrator(
                synthesizer,
                recognizer,
                audio_dir=self.settings.audio_dir,
                language=self.settings.recognition_language,
                scale_timings_to_audio=self.settings.scale_timings_to_audio,
                min_word_duration=self.settings.min_word_duration,
            )
        return self._narrator

    def _require_job(self, job_id: int) -> ProcessingJob:
        job = self.repository.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _require_source(self, book_source_id: int) -> BookSource:
        source = self.repository.get_book_source(book_source_id)
        if source is None:
            raise SourceNotFoundError(book_source_id)
        return source

    def _create_job(self, job: JobCreate) -> ProcessingJob:
        created = self.repository.create_job_if_idle(job)
        if created is None:
            active = self.repository.get_active_job(job.book_source_id)
            raise JobAlreadyRunningError(job.book_source_id, active.id if active else None)
        logger.info(f"Created {job.job_type.value} job {created.id} for book source {job.book_source_id}")
        return created

    def _progress(
        self,
        job_id: int,
        progress: int,
        message: str,
        cancel_token: Optional[CancellationToken] = None
    ) -> None:
        """
        Record progress at a phase boundary.

        Raises:
            JobCancelledError: The token was cancelled or the job left the
                running state (cancelled elsewhere)
        """
        if cancel_token is not None and cancel_token.is_cancelled():
            raise JobCancelledError(job_id)
        if not self.repository.update_job_progress(job_id, progress, message):
            raise JobCancelledError(job_id)
        logger.debug(f"Job {job_id}: {progress}% {message}")

    def _claim(self, job: ProcessingJob, message: str, cancel_token: Optional[CancellationToken]) -> bool:
        """
        Move a pending job to running.

        A job whose token is already set (pool shutdown before the worker
        reached it) is left pending for the next queue sweep.
        """
        if cancel_token is not None and cancel_token.is_cancelled():
            logger.info(f"Job {job.id} was cancelled before it started; left {job.status.value}")
            return False
        if not self.repository.start_job(job.id, message):
            logger.warning(f"Job {job.id} is {job.status.value}, not pending; skipping")
            return False
        return True

    def _read_manuscript(self, source: BookSource) -> bytes:
        path = Path(source.file_url)
        if not path.is_file():
            raise ManuscriptNotFoundError(path)
        return path.read_bytes()

    # ==================== Parsing jobs ====================

    def create_parsing_job(self, book_source_id: int) -> int:
        """
        Create a pending parsing job.

        Raises:
            SourceNotFoundError: Unknown book source
            JobAlreadyRunningError: The source already has an active job
        """
        source = self._require_source(book_source_id)
        job = self._create_job(JobCreate(
            book_source_id=book_source_id,
            job_type=JobType.PARSING,
            book_id=source.book_id,
            metadata={
                "bookSourceId": book_source_id,
                "originalFileName": source.original_file_name,
            },
        ))
        return job.id

    def _parsing_result(self, document: ParsedDocument, report: ValidationReport) -> dict[str, Any]:
        return {
            "chapters": [
                {
                    "id": chapter.id,
                    "title": chapter.title,
                    "indexInBook": chapter.index,
                    "wordCount": chapter.word_count,
                    "sentenceCount": chapter.sentence_count,
                    "contentPreview": chapter.preview,
                    "jsonContent": build_chapter_content(chapter),
                    "activities": [activity.to_dict() for activity in chapter.activities],
                }
                for chapter in document.chapters
            ],
            "metadata": document.metadata.to_dict(),
            "validation": report.to_dict(),
        }

    def execute_parsing_job(
        self,
        job_id: int,
        cancel_token: Optional[CancellationToken] = None
    ) -> Optional[dict[str, Any]]:
        """
        Run a pending parsing job to completion.

        Failures are recorded on the job ("Parsing failed: ...") and the
        book source is marked failed; they are not raised.

        Returns:
            The parsing result, or None if the job failed, was cancelled or
            was not pending
        """
        job = self._require_job(job_id)
        if not self._claim(job, "Starting document parsing...", cancel_token):
            return None

        self.repository.update_book_source_status(job.book_source_id, BookSourceStatus.PROCESSING)

        try:
            self._progress(job_id, 5, "Starting document parsing...", cancel_token)
            source = self._require_source(job.book_source_id)

            self._progress(job_id, 10, "Reading document file...", cancel_token)
            data = self._read_manuscript(source)

            self._progress(job_id, 20, "Analyzing document structure...", cancel_token)
            document = self.parser.parse(data, source.original_file_name)

            self._progress(
                job_id, 60,
                f"Processing chapters... ({document.metadata.total_chapters} detected)",
                cancel_token
            )
            report = self.parser.validate(document)
            if not report.is_valid:
                raise DocumentValidationError(report.errors)

            self._progress(job_id, 80, "Generating output format...", cancel_token)
            result = self._parsing_result(document, report)

            if cancel_token is not None and cancel_token.is_cancelled():
                raise JobCancelledError(job_id)

            if self.repository.complete_job(job_id, result, "Document parsing completed successfully"):
                self.repository.update_book_source_status(job.book_source_id, BookSourceStatus.PROCESSED)
                logger.info(f"Parsing job {job_id} completed: {len(document.chapters)} chapters")
                return result

            logger.warning(f"Parsing job {job_id} left the running state; result discarded")
            return None

        except (JobCancelledError, CancelledException):
            logger.info(f"Parsing job {job_id} stopped after cancellation")
            return None
        except Exception as e:
            message = f"Parsing failed: {e}"
            logger.error(f"Job {job_id}: {message}")
            if self.repository.fail_job(job_id, message):
                self.repository.update_book_source_status(job.book_source_id, BookSourceStatus.FAILED)
            return None

    # ==================== Narration jobs ====================

    def create_tts_job(self, book_source_id: int, chapter_ids: Optional[list[str]] = None) -> int:
        """
        Create a pending narration job for the chapters of a source's book.

        Raises:
            SourceNotFoundError: Unknown book source
            BookNotAssignedError: The source is not linked to a book
            JobAlreadyRunningError: The source already has an active job
        """
        source = self._require_source(book_source_id)
        if not source.book_id:
            raise BookNotAssignedError(book_source_id)
        job = self._create_job(JobCreate(
            book_source_id=book_source_id,
            job_type=JobType.TTS_GENERATION,
            book_id=source.book_id,
            metadata={"bookSourceId": book_source_id, "chapterIds": chapter_ids},
        ))
        return job.id

    def execute_tts_job(
        self,
        job_id: int,
        cancel_token: Optional[CancellationToken] = None
    ) -> Optional[dict[str, Any]]:
        """
        Narrate chapters and store audio, updated JSON and timing data.

        Any provider or alignment failure fails the whole job.
        """
        job = self._require_job(job_id)
        if not self._claim(job, "Starting narration...", cancel_token):
            return None

        try:
            chapters = self.repository.get_chapters(job.book_id) if job.book_id else []
            wanted = (job.metadata or {}).get("chapterIds")
            if wanted:
                chapters = [chapter for chapter in chapters if chapter.id in wanted]
            if not chapters:
                raise ValueError(f"No chapters to narrate for book {job.book_id}")

            narrator = self.narrator
            narrated = []
            total = len(chapters)
            for position, chapter in enumerate(chapters):
                self._progress(
                    job_id, 5 + int(90 * position / total),
                    f"Narrating chapter {position + 1}/{total}: {chapter.title}",
                    cancel_token
                )
                outcome = narrator.narrate(chapter, cancel_token=cancel_token)
                self.repository.update_chapter_narration(
                    chapter.id, outcome.audio_url, outcome.content, outcome.timing_data
                )
                narrated.append({
                    "chapterId": chapter.id,
                    "audioUrl": outcome.audio_url,
                    "accuracy": outcome.alignment.accuracy,
                    "matchedCount": outcome.alignment.matched_count,
                    "interpolatedCount": outcome.alignment.interpolated_count,
                })

            result = {"chapters": narrated}
            if cancel_token is not None and cancel_token.is_cancelled():
                raise JobCancelledError(job_id)
            if self.repository.complete_job(job_id, result, f"Narrated {total} chapters"):
                logger.info(f"Narration job {job_id} completed: {total} chapters")
                return result
            return None

        except (JobCancelledError, CancelledException):
            logger.info(f"Narration job {job_id} stopped after cancellation")
            return None
        except Exception as e:
            message = f"Narration failed: {e}"
            logger.error(f"Job {job_id}: {message}")
            self.repository.fail_job(job_id, message)
            return None

    # ==================== Chapter creation ====================

    def create_chapters_from_results(self, book_id: str, parsing_result: dict[str, Any]) -> list[Chapter]:
        """
        Materialise chapters from a parsing result in one transaction.

        Raises:
            ChaptersAlreadyExistError: Any target index is occupied; nothing
                is written
            DocumentValidationError: The result holds no chapters
        """
        chapters_data = (parsing_result or {}).get("chapters") or []
        if not chapters_data:
            raise DocumentValidationError(["Parsing result has no chapters"])

        creates = []
        for data in chapters_data:
            index = int(data["indexInBook"])
            creates.append(ChapterCreate(
                id=f"chapter_{book_id}_{index}",
                book_id=book_id,
                index_in_book=index,
                title=data["title"],
                content=data["jsonContent"],
                activities=[
                    ActivityCreate(
                        activity_type=ActivityType(activity["activityType"]),
                        title=activity["title"],
                        activity_data=activity["activityData"],
                        sort_order=activity["sortOrder"],
                        description=activity.get("description"),
                    )
                    for activity in data.get("activities", [])
                ],
            ))

        chapters = self.repository.create_chapters(book_id, creates)
        logger.info(f"Created {len(chapters)} chapters for book {book_id}")
        return chapters

    def approve_parsing_job(self, job_id: int) -> list[Chapter]:
        """
        Turn a completed parsing job into chapters.

        Records a chapter_creation job and runs it synchronously so that
        conflicts reach the caller.

        Raises:
            JobNotFoundError, JobNotCompletedError, SourceNotFoundError,
            BookNotAssignedError, JobAlreadyRunningError,
            ChaptersAlreadyExistError
        """
        job = self._require_job(job_id)
        if job.job_type != JobType.PARSING or job.status != JobStatus.COMPLETED:
            raise JobNotCompletedError(job_id, job.status.value)

        source = self._require_source(job.book_source_id)
        if not source.book_id:
            raise BookNotAssignedError(source.id)

        creation = self._create_job(JobCreate(
            book_source_id=source.id,
            job_type=JobType.CHAPTER_CREATION,
            book_id=source.book_id,
            metadata={"bookSourceId": source.id, "parsingJobId": job_id},
        ))
        chapters = self.execute_chapter_creation_job(creation.id, raise_errors=True)
        return chapters or []

    def execute_chapter_creation_job(
        self,
        job_id: int,
        cancel_token: Optional[CancellationToken] = None,
        raise_errors: bool = False
    ) -> Optional[list[Chapter]]:
        """Run a chapter_creation job against its parsing job's result."""
        job = self._require_job(job_id)
        if not self._claim(job, "Creating chapters...", cancel_token):
            return None

        try:
            self._progress(job_id, 10, "Creating chapters...", cancel_token)
            parsing_job_id = (job.metadata or {}).get("parsingJobId")
            parsing_job = self._require_job(int(parsing_job_id)) if parsing_job_id is not None else None
            if parsing_job is None or parsing_job.status != JobStatus.COMPLETED:
                raise JobNotCompletedError(
                    parsing_job_id, parsing_job.status.value if parsing_job else "missing"
                )

            chapters = self.create_chapters_from_results(job.book_id, parsing_job.result)
            self.repository.complete_job(
                job_id,
                {"parsingJobId": parsing_job.id, "chapterIds": [chapter.id for chapter in chapters]},
                f"Created {len(chapters)} chapters",
            )
            return chapters

        except Exception as e:
            message = f"Chapter creation failed: {e}"
            logger.error(f"Job {job_id}: {message}")
            self.repository.fail_job(job_id, message)
            if raise_errors:
                raise
            return None

    # ==================== Dispatch and control ====================

    def execute_job(self, job_id: int, cancel_token: Optional[CancellationToken] = None) -> Any:
        """Run a job by its type."""
        job = self._require_job(job_id)
        if job.job_type == JobType.PARSING:
            return self.execute_parsing_job(job_id, cancel_token)
        if job.job_type == JobType.TTS_GENERATION:
            return self.execute_tts_job(job_id, cancel_token)
        return self.execute_chapter_creation_job(job_id, cancel_token)

    def _run(self, cancel_token: CancellationToken, job_id: int) -> Any:
        return self.execute_job(job_id, cancel_token)

    def start_job(self, job_id: int) -> bool:
        """
        Schedule a job for execution and return immediately.

        Returns:
            True if scheduled (or run inline), False if already scheduled
        """
        if self.worker_pool is None:
            self.execute_job(job_id)
            return True
        submitted = self.worker_pool.submit(job_id, self._run, job_id)
        if submitted:
            logger.info(f"Job {job_id} submitted to worker pool")
        return submitted

    def get_job_status(self, job_id: int) -> Optional[JobSnapshot]:
        job = self.repository.get_job(job_id)
        return JobSnapshot.from_job(job) if job else None

    def get_jobs_for_book_source(self, book_source_id: int) -> list[JobSnapshot]:
        """All jobs of a source, oldest first."""
        return [JobSnapshot.from_job(job) for job in self.repository.list_jobs_for_source(book_source_id)]

    def cancel_job(self, job_id: int) -> JobSnapshot:
        """
        Cancel a pending or running job.

        The job is marked failed with "Job cancelled by user" and the
        in-process worker, if any, is signalled to stop.

        Raises:
            JobNotFoundError: Unknown job
            JobAlreadyCompletedError: The job already completed
            JobAlreadyFailedError: The job already failed
        """
        job = self._require_job(job_id)

        if job.status == JobStatus.COMPLETED:
            raise JobAlreadyCompletedError(job_id)
        if job.status == JobStatus.FAILED:
            raise JobAlreadyFailedError(job_id)

        if not self.repository.fail_job(job_id, CANCEL_MESSAGE):
            # Reached a terminal state between the read and the update
            current = self._require_job(job_id)
            if current.status == JobStatus.COMPLETED:
                raise JobAlreadyCompletedError(job_id)
            raise JobAlreadyFailedError(job_id)

        if self.worker_pool is not None:
            self.worker_pool.cancel(job_id, reason=CANCEL_MESSAGE)

        if job.job_type == JobType.PARSING:
            self.repository.update_book_source_status(job.book_source_id, BookSourceStatus.UPLOADED)

        logger.info(f"Job {job_id} cancelled")
        return JobSnapshot.from_job(self._require_job(job_id))

    def process_job_queue(self, limit: Optional[int] = None) -> list[int]:
        """
        Start pending jobs, oldest first.

        Skips jobs whose source has a running job and jobs already held by
        the worker pool.

        Returns:
            IDs of the jobs that were started
        """
        limit = limit or self.queue_batch_size
        started = []

        for job in self.repository.list_jobs_by_status(JobStatus.PENDING):
            if len(started) >= limit:
                break
            if self.worker_pool is not None and self.worker_pool.is_tracked(job.id):
                continue
            active = self.repository.get_active_job(job.book_source_id)
            if active is not None and active.status == JobStatus.RUNNING:
                continue
            if self.start_job(job.id):
                started.append(job.id)

        if started:
            logger.info(f"Job queue: started {len(started)} job(s): {started}")
        return started

    def recover_interrupted_jobs(self) -> list[int]:
        """
        Fail running jobs that no live worker owns, e.g. after a restart.

        Returns:
            IDs of the recovered jobs
        """
        recovered = []
        for job in self.repository.list_jobs_by_status(JobStatus.RUNNING):
            if self.worker_pool is not None and self.worker_pool.is_tracked(job.id):
                continue
            if self.repository.fail_job(job.id, RESTART_MESSAGE):
                recovered.append(job.id)
                if job.job_type == JobType.PARSING:
                    self.repository.update_book_source_status(job.book_source_id, BookSourceStatus.FAILED)

        if recovered:
            logger.warning(f"Marked {len(recovered)} interrupted job(s) as failed: {recovered}")
        return recovered

    # ==================== Preview ====================

    def preview(self, book_source_id: int) -> dict[str, Any]:
        """
        Parse a source without persisting anything.

        Raises:
            SourceNotFoundError, ManuscriptNotFoundError, UnsupportedFormatError,
            EmptyDocumentError, ChapterDetectionError
        """
        source = self._require_source(book_source_id)
        document = self.parser.parse(self._read_manuscript(source), source.original_file_name)
        preview = self.parser.preview(document)
        preview["validation"] = self.parser.validate(document).to_dict()
        return preview
