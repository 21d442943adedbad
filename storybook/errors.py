"""
Error Handling Module
=====================
Custom exceptions and error handling utilities for the storybook pipeline.
Provides consistent error codes, API error identifiers and HTTP statuses.
"""

import re
from enum import Enum
from dataclasses import dataclass
from typing import Optional
from pathlib import Path


class ErrorCode(Enum):
    """Error codes for the storybook pipeline."""
    # Ingestion errors (E001-E099)
    E001 = "Unsupported manuscript format"
    E002 = "Document is empty"
    E003 = "Chapter detection failed"
    E004 = "Document validation failed"
    E005 = "Manuscript file not found"

    # Speech provider errors (E100-E199)
    E100 = "Speech provider request failed"
    E101 = "Speech provider timed out"
    E102 = "Speech provider not configured"

    # Alignment errors (E200-E299)
    E200 = "Alignment impossible"

    # Job errors (E300-E399)
    E300 = "Book source not found"
    E301 = "Job already running"
    E302 = "Job not found"
    E303 = "Job already completed"
    E304 = "Job already failed"
    E305 = "Job not completed"
    E306 = "Job cancelled"

    # Chapter errors (E400-E499)
    E400 = "Chapters already exist"
    E401 = "Book not assigned"


@dataclass
class StorybookError(Exception):
    """Base exception for the storybook pipeline with error codes."""
    code: ErrorCode
    message: str
    details: Optional[str] = None
    file_path: Optional[Path] = None

    # Identifier and status reported by the HTTP layer
    api_code = "PROCESSING_ERROR"
    http_status = 500

    def __str__(self) -> str:
        base = f"[{self.code.name}] {self.code.value}: {self.message}"
        if self.details:
            base += f" ({self.details})"
        if self.file_path:
            base += f" - File: {self.file_path}"
        return base


# ===========================================
# Ingestion
# ===========================================

class UnsupportedFormatError(StorybookError):
    """The file is not a manuscript container the parser understands."""
    api_code = "UNSUPPORTED_FORMAT"
    http_status = 400

    def __init__(self, message: str, details: str = None, file_path: Path = None):
        super().__init__(
            code=ErrorCode.E001,
            message=message,
            details=details,
            file_path=file_path
        )


class EmptyDocumentError(StorybookError):
    """No extractable text in the manuscript."""
    api_code = "EMPTY_DOCUMENT"
    http_status = 400

    def __init__(self, file_path: Path = None):
        super().__init__(
            code=ErrorCode.E002,
            message="No extractable text found",
            file_path=file_path
        )


class ChapterDetectionError(StorybookError):
    """Heuristics found zero chapter boundaries."""
    api_code = "CHAPTER_DETECTION_FAILED"
    http_status = 400

    def __init__(self, message: str = "No chapter headings detected", details: str = None):
        super().__init__(
            code=ErrorCode.E003,
            message=message,
            details=details
        )


class DocumentValidationError(StorybookError):
    """Parsed document failed validation."""
    api_code = "VALIDATION_FAILED"
    http_status = 400

    def __init__(self, errors: list[str]):
        super().__init__(
            code=ErrorCode.E004,
            message="Document validation failed",
            details=", ".join(errors)
        )
        self.errors = errors


class ManuscriptNotFoundError(StorybookError):
    """The stored manuscript file is missing on disk."""
    api_code = "FILE_NOT_FOUND"
    http_status = 404

    def __init__(self, file_path: Path):
        super().__init__(
            code=ErrorCode.E005,
            message="Document file not found",
            file_path=file_path
        )


# ===========================================
# Speech providers
# ===========================================

class ProviderError(StorybookError):
    """A synthesis or recognition request failed."""
    api_code = "PROVIDER_ERROR"
    http_status = 502

    def __init__(self, provider: str, message: str, status_code: int = None):
        super().__init__(
            code=ErrorCode.E100,
            message=f"{provider}: {message}",
            details=f"HTTP {status_code}" if status_code else None
        )
        self.provider = provider
        self.status_code = status_code


class ProviderTimeoutError(StorybookError):
    """A synthesis or recognition request exceeded its timeout."""
    api_code = "PROVIDER_TIMEOUT"
    http_status = 504

    def __init__(self, provider: str, timeout_seconds: float):
        super().__init__(
            code=ErrorCode.E101,
            message=f"{provider} request timed out",
            details=f"Timeout: {timeout_seconds:.0f}s"
        )
        self.provider = provider


class ProviderNotConfiguredError(StorybookError):
    """Provider is missing credentials or is unknown."""
    api_code = "PROVIDER_NOT_CONFIGURED"
    http_status = 503

    def __init__(self, provider: str, details: str = None):
        super().__init__(
            code=ErrorCode.E102,
            message=f"{provider} is not configured",
            details=details
        )


# ===========================================
# Alignment
# ===========================================

class AlignmentImpossibleError(StorybookError):
    """The recognizer returned no timestamped tokens."""
    api_code = "ALIGNMENT_IMPOSSIBLE"
    http_status = 422

    def __init__(self, display_word_count: int):
        super().__init__(
            code=ErrorCode.E200,
            message="Recognized token sequence is empty",
            details=f"{display_word_count} display words left unaligned"
        )


# ===========================================
# Jobs
# ===========================================

class SourceNotFoundError(StorybookError):
    """BookSource does not exist."""
    api_code = "BOOK_SOURCE_NOT_FOUND"
    http_status = 404

    def __init__(self, book_source_id: int):
        super().__init__(
            code=ErrorCode.E300,
            message=f"Book source not found: {book_source_id}"
        )
        self.book_source_id = book_source_id


class JobAlreadyRunningError(StorybookError):
    """An active job already exists for the BookSource."""
    api_code = "JOB_ALREADY_RUNNING"
    http_status = 409

    def __init__(self, book_source_id: int, job_id: int = None):
        super().__init__(
            code=ErrorCode.E301,
            message=f"A job is already running for book source {book_source_id}",
            details=f"Active job {job_id}" if job_id else None
        )
        self.book_source_id = book_source_id
        self.job_id = job_id


class JobNotFoundError(StorybookError):
    """ProcessingJob does not exist."""
    api_code = "JOB_NOT_FOUND"
    http_status = 404

    def __init__(self, job_id: int):
        super().__init__(
            code=ErrorCode.E302,
            message=f"Job not found: {job_id}"
        )
        self.job_id = job_id


class JobAlreadyCompletedError(StorybookError):
    """Attempt to cancel a completed job."""
    api_code = "JOB_COMPLETED"
    http_status = 400

    def __init__(self, job_id: int):
        super().__init__(
            code=ErrorCode.E303,
            message=f"Cannot cancel completed job {job_id}"
        )
        self.job_id = job_id


class JobAlreadyFailedError(StorybookError):
    """Attempt to cancel a job that already failed."""
    api_code = "JOB_FAILED"
    http_status = 400

    def __init__(self, job_id: int):
        super().__init__(
            code=ErrorCode.E304,
            message=f"Job {job_id} already failed"
        )
        self.job_id = job_id


class JobNotCompletedError(StorybookError):
    """Parsing result requested before the job completed."""
    api_code = "JOB_NOT_COMPLETED"
    http_status = 400

    def __init__(self, job_id: int, status: str):
        super().__init__(
            code=ErrorCode.E305,
            message=f"Job {job_id} has not completed",
            details=f"Status: {status}"
        )
        self.job_id = job_id


class JobCancelledError(StorybookError):
    """Raised inside job execution when cancellation is observed."""

    def __init__(self, job_id: int):
        super().__init__(
            code=ErrorCode.E306,
            message=f"Job {job_id} was cancelled"
        )
        self.job_id = job_id


# ===========================================
# Chapters
# ===========================================

class ChaptersAlreadyExistError(StorybookError):
    """One or more target chapter indices are already occupied."""
    api_code = "CHAPTERS_ALREADY_EXIST"
    http_status = 409

    def __init__(self, book_id: str, indices: list[int]):
        super().__init__(
            code=ErrorCode.E400,
            message=f"Chapters already exist for book {book_id}",
            details=f"Occupied indices: {', '.join(str(i) for i in indices)}"
        )
        self.book_id = book_id
        self.indices = indices


class BookNotAssignedError(StorybookError):
    """BookSource has no owning book to attach chapters to."""
    api_code = "BOOK_NOT_ASSIGNED"
    http_status = 400

    def __init__(self, book_source_id: int):
        super().__init__(
            code=ErrorCode.E401,
            message=f"Book source {book_source_id} is not linked to a book"
        )


# ===========================================
# Utility Functions
# ===========================================

def sanitize_filename(filename: str, max_length: int = 50) -> str:
    """
    Sanitize a string for use as a file name component.

    Args:
        filename: Original name
        max_length: Maximum length of the result

    Returns:
        Name without path separators, traversal sequences or illegal characters
    """
    sanitized = re.sub(r'[/\\]', '_', filename)
    sanitized = sanitized.replace('..', '_')
    sanitized = re.sub(r'[<>:"|?*\x00-\x1f]', '_', sanitized)
    sanitized = re.sub(r'\s+', '_', sanitized)
    sanitized = sanitized.strip('.')

    # Collapse multiple underscores
    sanitized = re.sub(r'_+', '_', sanitized)

    if not sanitized:
        sanitized = "untitled"

    return sanitized[:max_length]
