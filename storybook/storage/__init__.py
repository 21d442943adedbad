"""
Storage Module
==============
Persistence for book sources, processing jobs and chapters.

Repository Pattern:
    - IStoryRepository: Abstract interface for storage
    - SQLiteRepository: Concrete SQLite implementation
"""

from .repository import IStoryRepository
from .sqlite_repo import SQLiteRepository
from .models import (
    ActivityCreate,
    ActivityType,
    BookSource,
    BookSourceCreate,
    BookSourceStatus,
    Chapter,
    ChapterActivity,
    ChapterCreate,
    JobCreate,
    JobStatus,
    JobType,
    ProcessingJob,
)

__all__ = [
    # Repository Pattern
    "IStoryRepository",
    "SQLiteRepository",
    # Models
    "ActivityCreate",
    "ActivityType",
    "BookSource",
    "BookSourceCreate",
    "BookSourceStatus",
    "Chapter",
    "ChapterActivity",
    "ChapterCreate",
    "JobCreate",
    "JobStatus",
    "JobType",
    "ProcessingJob",
]
