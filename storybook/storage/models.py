"""
Storage Models
==============
Dataclasses for repository pattern data transfer objects.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from enum import Enum


class BookSourceStatus(str, Enum):
    """Lifecycle of an uploaded manuscript."""
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class JobType(str, Enum):
    """Kinds of processing jobs."""
    PARSING = "parsing"
    TTS_GENERATION = "tts_generation"
    CHAPTER_CREATION = "chapter_creation"


class JobStatus(str, Enum):
    """Processing job status values."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.PENDING, JobStatus.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ActivityType(str, Enum):
    """Chapter activity sections found after the story text."""
    VOCABULARY_SUPPORT = "vocabulary_support"
    COMPREHENSION_QUESTIONS = "comprehension_questions"
    TRUE_FALSE = "true_false"
    MATCHING = "matching"
    WRITING_PROMPTS = "writing_prompts"


@dataclass
class BookSourceCreate:
    """Data required to register an uploaded manuscript."""
    original_file_name: str
    file_url: str
    file_size: int = 0
    book_id: Optional[str] = None
    uploaded_by: Optional[str] = None


@dataclass
class BookSource:
    """Uploaded manuscript record."""
    id: int
    book_id: Optional[str]
    original_file_name: str
    file_url: str
    file_size: int
    status: BookSourceStatus
    uploaded_by: Optional[str]
    created_at: datetime
    updated_at: datetime


@dataclass
class JobCreate:
    """Data required to create a processing job."""
    book_source_id: int
    job_type: JobType
    book_id: Optional[str] = None
    chapter_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProcessingJob:
    """Processing job record."""
    id: int
    book_source_id: int
    book_id: Optional[str]
    chapter_id: Optional[str]
    job_type: JobType
    status: JobStatus
    progress: int
    message: Optional[str]
    error_message: Optional[str]
    metadata: dict[str, Any]
    result: Optional[dict[str, Any]]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


@dataclass
class ActivityCreate:
    """Activity attached to a chapter at creation time."""
    activity_type: ActivityType
    title: str
    activity_data: dict[str, Any]
    sort_order: int
    description: Optional[str] = None


@dataclass
class ChapterActivity:
    """Persisted chapter activity."""
    id: int
    chapter_id: str
    activity_type: ActivityType
    title: str
    description: Optional[str]
    activity_data: dict[str, Any]
    sort_order: int


@dataclass
class ChapterCreate:
    """Data required to create a chapter record."""
    id: str
    book_id: str
    index_in_book: int
    title: str
    content: dict[str, Any]
    audio_url: Optional[str] = None
    activities: list[ActivityCreate] = field(default_factory=list)


@dataclass
class Chapter:
    """Chapter record with full data."""
    id: str
    book_id: str
    index_in_book: int
    title: str
    audio_url: Optional[str]
    content: dict[str, Any]
    timing_data: Optional[dict[str, Any]]
    created_at: datetime
    updated_at: datetime
