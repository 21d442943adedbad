"""
SQLite Repository Implementation
================================
Concrete implementation of IStoryRepository using SQLite.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from storybook.errors import ChaptersAlreadyExistError
from storybook.storage.repository import IStoryRepository
from storybook.storage.models import (
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


logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = ("pending", "running")


def _now() -> str:
    return datetime.now().isoformat()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _dump(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def _load(value: Optional[str]) -> Any:
    if value is None:
        return None
    return json.loads(value)


class SQLiteRepository(IStoryRepository):
    """
    SQLite implementation of the storybook repository interface.

    Each operation opens its own connection, so one instance can be shared
    by the request handlers and the worker pool threads.
    """

    def __init__(self, db_path: Path | str = "data/storybook.db", timeout: float = 30.0):
        """
        Initialize SQLite repository.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self._init_schema()

    @contextmanager
    def _connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self):
        """Initialize database schema."""
        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS book_sources (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    book_id TEXT,
                    original_file_name TEXT NOT NULL,
                    file_url TEXT NOT NULL,
                    file_size INTEGER DEFAULT 0,
                    status TEXT CHECK(status IN ('uploaded', 'processing', 'processed', 'failed')) DEFAULT 'uploaded',
                    uploaded_by TEXT,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS processing_jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    book_source_id INTEGER NOT NULL,
                    book_id TEXT,
                    chapter_id TEXT,
                    job_type TEXT CHECK(job_type IN ('parsing', 'tts_generation', 'chapter_creation')) NOT NULL,
                    status TEXT CHECK(status IN ('pending', 'running', 'completed', 'failed')) DEFAULT 'pending',
                    progress INTEGER DEFAULT 0 CHECK(progress BETWEEN 0 AND 100),
                    message TEXT,
                    error_message TEXT,
                    metadata TEXT,
                    result TEXT,
                    started_at TIMESTAMP,
                    completed_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    FOREIGN KEY (book_source_id) REFERENCES book_sources(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS chapters (
                    id TEXT PRIMARY KEY,
                    book_id TEXT NOT NULL,
                    index_in_book INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    audio_url TEXT,
                    content TEXT NOT NULL,
                    timing_data TEXT,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    UNIQUE (book_id, index_in_book)
                );

                CREATE TABLE IF NOT EXISTS chapter_activities (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    chapter_id TEXT NOT NULL,
                    activity_type TEXT CHECK(activity_type IN (
                        'vocabulary_support', 'comprehension_questions',
                        'true_false', 'matching', 'writing_prompts'
                    )) NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    activity_data TEXT NOT NULL,
                    sort_order INTEGER DEFAULT 0,
                    FOREIGN KEY (chapter_id) REFERENCES chapters(id) ON DELETE CASCADE
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_one_active_per_source
                    ON processing_jobs(book_source_id)
                    WHERE status IN ('pending', 'running');
                CREATE INDEX IF NOT EXISTS idx_jobs_book_source_id ON processing_jobs(book_source_id);
                CREATE INDEX IF NOT EXISTS idx_jobs_status ON processing_jobs(status);
                CREATE INDEX IF NOT EXISTS idx_chapters_book_id ON chapters(book_id);
                CREATE INDEX IF NOT EXISTS idx_activities_chapter_id ON chapter_activities(chapter_id);
            """)

    def _row_to_book_source(self, row: sqlite3.Row) -> BookSource:
        """Convert database row to BookSource dataclass."""
        return BookSource(
            id=row["id"],
            book_id=row["book_id"],
            original_file_name=row["original_file_name"],
            file_url=row["file_url"],
            file_size=row["file_size"],
            status=BookSourceStatus(row["status"]),
            uploaded_by=row["uploaded_by"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def _row_to_job(self, row: sqlite3.Row) -> ProcessingJob:
        """Convert database row to ProcessingJob dataclass."""
        return ProcessingJob(
            id=row["id"],
            book_source_id=row["book_source_id"],
            book_id=row["book_id"],
            chapter_id=row["chapter_id"],
            job_type=JobType(row["job_type"]),
            status=JobStatus(row["status"]),
            progress=row["progress"],
            message=row["message"],
            error_message=row["error_message"],
            metadata=_load(row["metadata"]) or {},
            result=_load(row["result"]),
            started_at=_parse_ts(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def _row_to_chapter(self, row: sqlite3.Row) -> Chapter:
        """Convert database row to Chapter dataclass."""
        return Chapter(
            id=row["id"],
            book_id=row["book_id"],
            index_in_book=row["index_in_book"],
            title=row["title"],
            audio_url=row["audio_url"],
            content=_load(row["content"]),
            timing_data=_load(row["timing_data"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def _row_to_activity(self, row: sqlite3.Row) -> ChapterActivity:
        """Convert database row to ChapterActivity dataclass."""
        return ChapterActivity(
            id=row["id"],
            chapter_id=row["chapter_id"],
            activity_type=ActivityType(row["activity_type"]),
            title=row["title"],
            description=row["description"],
            activity_data=_load(row["activity_data"]),
            sort_order=row["sort_order"],
        )

    # ==================== Book Source Operations ====================

    def create_book_source(self, source: BookSourceCreate) -> BookSource:
        """Register an uploaded manuscript."""
        now = _now()
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO book_sources
                    (book_id, original_file_name, file_url, file_size, uploaded_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (source.book_id, source.original_file_name, source.file_url,
                 source.file_size, source.uploaded_by, now, now)
            )
            row = conn.execute(
                "SELECT * FROM book_sources WHERE id = ?",
                (cursor.lastrowid,)
            ).fetchone()
            return self._row_to_book_source(row)

    def get_book_source(self, book_source_id: int) -> Optional[BookSource]:
        """Get a book source by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM book_sources WHERE id = ?",
                (book_source_id,)
            ).fetchone()

            if row:
                return self._row_to_book_source(row)
            return None

    def update_book_source_status(self, book_source_id: int, status: BookSourceStatus) -> bool:
        """Set the lifecycle status of a book source."""
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE book_sources SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, _now(), book_source_id)
            )
            return cursor.rowcount > 0

    # ==================== Processing Job Operations ====================

    def create_job_if_idle(self, job: JobCreate) -> Optional[ProcessingJob]:
        """Insert a pending job unless the source already has an active one."""
        now = _now()
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO processing_jobs
                        (book_source_id, book_id, chapter_id, job_type, status, progress,
                         metadata, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 'pending', 0, ?, ?, ?)
                    """,
                    (job.book_source_id, job.book_id, job.chapter_id, job.job_type.value,
                     _dump(job.metadata or {}), now, now)
                )
                row = conn.execute(
                    "SELECT * FROM processing_jobs WHERE id = ?",
                    (cursor.lastrowid,)
                ).fetchone()
                return self._row_to_job(row)
        except sqlite3.IntegrityError as e:
            # Only the partial unique index maps to "already active"
            if "processing_jobs.book_source_id" not in str(e):
                raise
            logger.info(f"Active job already exists for book source {job.book_source_id}")
            return None

    def get_job(self, job_id: int) -> Optional[ProcessingJob]:
        """Get a processing job by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM processing_jobs WHERE id = ?",
                (job_id,)
            ).fetchone()

            if row:
                return self._row_to_job(row)
            return None

    def get_active_job(self, book_source_id: int) -> Optional[ProcessingJob]:
        """Get the pending or running job of a book source, if any."""
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM processing_jobs
                WHERE book_source_id = ? AND status IN (?, ?)
                ORDER BY created_at, id
                LIMIT 1
                """,
                (book_source_id, *_ACTIVE_STATUSES)
            ).fetchone()

            if row:
                return self._row_to_job(row)
            return None

    def list_jobs_for_source(self, book_source_id: int) -> list[ProcessingJob]:
        """List all jobs for a book source, oldest first."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM processing_jobs
                WHERE book_source_id = ?
                ORDER BY created_at, id
                """,
                (book_source_id,)
            ).fetchall()
            return [self._row_to_job(row) for row in rows]

    def list_jobs_by_status(
        self,
        status: JobStatus,
        limit: Optional[int] = None
    ) -> list[ProcessingJob]:
        """List jobs in a given status, oldest first."""
        query = "SELECT * FROM processing_jobs WHERE status = ? ORDER BY created_at, id"
        params: list[Any] = [status.value]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_job(row) for row in rows]

    def start_job(self, job_id: int, message: Optional[str] = None) -> bool:
        """Transition a job from pending to running."""
        now = _now()
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE processing_jobs
                SET status = 'running', started_at = ?, updated_at = ?,
                    message = COALESCE(?, message)
                WHERE id = ? AND status = 'pending'
                """,
                (now, now, message, job_id)
            )
            return cursor.rowcount > 0

    def update_job_progress(
        self,
        job_id: int,
        progress: int,
        message: Optional[str] = None
    ) -> bool:
        """Update progress of a running job."""
        progress = max(0, min(100, int(progress)))
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE processing_jobs
                SET progress = ?, message = COALESCE(?, message), updated_at = ?
                WHERE id = ? AND status = 'running'
                """,
                (progress, message, _now(), job_id)
            )
            return cursor.rowcount > 0

    def complete_job(
        self,
        job_id: int,
        result: Optional[dict[str, Any]] = None,
        message: Optional[str] = None
    ) -> bool:
        """Mark a running job as completed."""
        now = _now()
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE processing_jobs
                SET status = 'completed', progress = 100, result = ?,
                    message = COALESCE(?, message), completed_at = ?, updated_at = ?
                WHERE id = ? AND status = 'running'
                """,
                (_dump(result), message, now, now, job_id)
            )
            return cursor.rowcount > 0

    def fail_job(self, job_id: int, error: str) -> bool:
        """Mark a pending or running job as failed."""
        now = _now()
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE processing_jobs
                SET status = 'failed', error_message = ?, message = ?,
                    completed_at = ?, updated_at = ?
                WHERE id = ? AND status IN (?, ?)
                """,
                (error, error, now, now, job_id, *_ACTIVE_STATUSES)
            )
            return cursor.rowcount > 0

    # ==================== Chapter Operations ====================

    def _occupied_indices(self, conn: sqlite3.Connection, book_id: str, indices: list[int]) -> list[int]:
        if not indices:
            return []
        placeholders = ", ".join("?" for _ in indices)
        rows = conn.execute(
            f"""
            SELECT index_in_book FROM chapters
            WHERE book_id = ? AND index_in_book IN ({placeholders})
            ORDER BY index_in_book
            """,
            (book_id, *indices)
        ).fetchall()
        return [row["index_in_book"] for row in rows]

    def create_chapters(self, book_id: str, chapters: list[ChapterCreate]) -> list[Chapter]:
        """Create chapters (and their activities) in a single transaction."""
        indices = [chapter.index_in_book for chapter in chapters]
        now = _now()

        try:
            with self._connection() as conn:
                occupied = self._occupied_indices(conn, book_id, indices)
                if occupied:
                    raise ChaptersAlreadyExistError(book_id, occupied)

                for chapter in chapters:
                    conn.execute(
                        """
                        INSERT INTO chapters
                            (id, book_id, index_in_book, title, audio_url, content, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (chapter.id, book_id, chapter.index_in_book, chapter.title,
                         chapter.audio_url, _dump(chapter.content), now, now)
                    )
                    for activity in chapter.activities:
                        conn.execute(
                            """
                            INSERT INTO chapter_activities
                                (chapter_id, activity_type, title, description, activity_data, sort_order)
                            VALUES (?, ?, ?, ?, ?, ?)
                            """,
                            (chapter.id, activity.activity_type.value, activity.title,
                             activity.description, _dump(activity.activity_data), activity.sort_order)
                        )

                rows = conn.execute(
                    "SELECT * FROM chapters WHERE book_id = ? ORDER BY index_in_book",
                    (book_id,)
                ).fetchall()
                created_ids = {chapter.id for chapter in chapters}
                return [self._row_to_chapter(row) for row in rows if row["id"] in created_ids]
        except sqlite3.IntegrityError as e:
            # Lost a race with a concurrent insert; the transaction was rolled back
            logger.warning(f"Chapter insert conflict for book {book_id}: {e}")
            with self._connection() as conn:
                occupied = self._occupied_indices(conn, book_id, indices)
            raise ChaptersAlreadyExistError(book_id, occupied or indices) from e

    def get_chapter(self, chapter_id: str) -> Optional[Chapter]:
        """Get a chapter by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM chapters WHERE id = ?",
                (chapter_id,)
            ).fetchone()

            if row:
                return self._row_to_chapter(row)
            return None

    def get_chapters(self, book_id: str) -> list[Chapter]:
        """Get all chapters for a book ordered by index."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM chapters WHERE book_id = ? ORDER BY index_in_book",
                (book_id,)
            ).fetchall()
            return [self._row_to_chapter(row) for row in rows]

    def get_chapter_activities(self, chapter_id: str) -> list[ChapterActivity]:
        """Get activities of a chapter ordered by sort order."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM chapter_activities WHERE chapter_id = ? ORDER BY sort_order, id",
                (chapter_id,)
            ).fetchall()
            return [self._row_to_activity(row) for row in rows]

    def update_chapter_narration(
        self,
        chapter_id: str,
        audio_url: str,
        content: dict[str, Any],
        timing_data: dict[str, Any]
    ) -> bool:
        """Store narration output for a chapter."""
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE chapters
                SET audio_url = ?, content = ?, timing_data = ?, updated_at = ?
                WHERE id = ?
                """,
                (audio_url, _dump(content), _dump(timing_data), _now(), chapter_id)
            )
            return cursor.rowcount > 0
