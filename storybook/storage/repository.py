"""
Repository Pattern Interface
============================
Abstract base class for pipeline storage operations.
Job exclusivity and chapter uniqueness are enforced by the backend.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from storybook.storage.models import (
    BookSource,
    BookSourceCreate,
    BookSourceStatus,
    Chapter,
    ChapterActivity,
    ChapterCreate,
    JobCreate,
    JobStatus,
    ProcessingJob,
)


class IStoryRepository(ABC):
    """
    Abstract repository interface for the storybook pipeline.

    Implementations:
        - SQLiteRepository: Local SQLite storage (current)

    Job transitions are conditional: an update only applies while the job is
    in one of the expected source states, and reports whether it applied.
    """

    # ==================== Book Source Operations ====================

    @abstractmethod
    def create_book_source(self, source: BookSourceCreate) -> BookSource:
        """
        Register an uploaded manuscript.

        Args:
            source: Book source creation data

        Returns:
            Created book source with assigned ID
        """
        pass

    @abstractmethod
    def get_book_source(self, book_source_id: int) -> Optional[BookSource]:
        """
        Get a book source by ID.

        Args:
            book_source_id: Book source identifier

        Returns:
            BookSource if found, None otherwise
        """
        pass

    @abstractmethod
    def update_book_source_status(self, book_source_id: int, status: BookSourceStatus) -> bool:
        """
        Set the lifecycle status of a book source.

        Returns:
            True if updated, False if not found
        """
        pass

    # ==================== Processing Job Operations ====================

    @abstractmethod
    def create_job_if_idle(self, job: JobCreate) -> Optional[ProcessingJob]:
        """
        Insert a pending job unless the source already has an active one.

        Args:
            job: Job creation data

        Returns:
            Created job, or None if an active job exists for the source
        """
        pass

    @abstractmethod
    def get_job(self, job_id: int) -> Optional[ProcessingJob]:
        """
        Get a processing job by ID.

        Args:
            job_id: Job identifier

        Returns:
            Job if found, None otherwise
        """
        pass

    @abstractmethod
    def get_active_job(self, book_source_id: int) -> Optional[ProcessingJob]:
        """Get the pending or running job of a book source, if any."""
        pass

    @abstractmethod
    def list_jobs_for_source(self, book_source_id: int) -> list[ProcessingJob]:
        """
        List all jobs for a book source.

        Returns:
            Jobs ordered oldest first
        """
        pass

    @abstractmethod
    def list_jobs_by_status(
        self,
        status: JobStatus,
        limit: Optional[int] = None
    ) -> list[ProcessingJob]:
        """
        List jobs in a given status.

        Args:
            status: Status filter
            limit: Maximum number of records

        Returns:
            Jobs ordered oldest first
        """
        pass

    @abstractmethod
    def start_job(self, job_id: int, message: Optional[str] = None) -> bool:
        """
        Transition a job from pending to running.

        Returns:
            True if the job was pending and is now running
        """
        pass

    @abstractmethod
    def update_job_progress(
        self,
        job_id: int,
        progress: int,
        message: Optional[str] = None
    ) -> bool:
        """
        Update progress of a running job.

        Args:
            job_id: Job to update
            progress: Progress value 0-100
            message: Human-readable progress message

        Returns:
            True if updated, False if the job is not running
        """
        pass

    @abstractmethod
    def complete_job(
        self,
        job_id: int,
        result: Optional[dict[str, Any]] = None,
        message: Optional[str] = None
    ) -> bool:
        """
        Mark a running job as completed.

        Returns:
            True if updated, False if the job is not running
        """
        pass

    @abstractmethod
    def fail_job(self, job_id: int, error: str) -> bool:
        """
        Mark a pending or running job as failed.

        Args:
            job_id: Job to fail
            error: Error message

        Returns:
            True if updated, False if not found or already terminal
        """
        pass

    # ==================== Chapter Operations ====================

    @abstractmethod
    def create_chapters(self, book_id: str, chapters: list[ChapterCreate]) -> list[Chapter]:
        """
        Create chapters (and their activities) in a single transaction.

        Raises:
            ChaptersAlreadyExistError: If any target index is occupied.
                Nothing is written in that case.
        """
        pass

    @abstractmethod
    def get_chapter(self, chapter_id: str) -> Optional[Chapter]:
        """Get a chapter by ID."""
        pass

    @abstractmethod
    def get_chapters(self, book_id: str) -> list[Chapter]:
        """
        Get all chapters for a book.

        Returns:
            List of chapters ordered by index_in_book
        """
        pass

    @abstractmethod
    def get_chapter_activities(self, chapter_id: str) -> list[ChapterActivity]:
        """Get activities of a chapter ordered by sort order."""
        pass

    @abstractmethod
    def update_chapter_narration(
        self,
        chapter_id: str,
        audio_url: str,
        content: dict[str, Any],
        timing_data: dict[str, Any]
    ) -> bool:
        """
        Store narration output for a chapter.

        Returns:
            True if updated, False if not found
        """
        pass
