"""
SQLite Repository Tests
=======================
Job exclusivity, conditional transitions and atomic chapter creation.
"""

import threading

import pytest

from storybook.errors import ChaptersAlreadyExistError
from storybook.storage.models import (
    ActivityCreate,
    ActivityType,
    BookSourceCreate,
    BookSourceStatus,
    ChapterCreate,
    JobCreate,
    JobStatus,
    JobType,
)
from storybook.storage.sqlite_repo import SQLiteRepository


@pytest.fixture
def source(repository):
    return repository.create_book_source(BookSourceCreate(
        original_file_name="libro.docx",
        file_url="/tmp/libro.docx",
        file_size=1234,
        book_id="book-1",
        uploaded_by="editor",
    ))


def parsing_job(source_id, **metadata):
    return JobCreate(book_source_id=source_id, job_type=JobType.PARSING, metadata=metadata)


def chapter(index, book_id="book-1", activities=None):
    return ChapterCreate(
        id=f"chapter_{book_id}_{index}",
        book_id=book_id,
        index_in_book=index,
        title=f"Capítulo {index + 1}",
        content={"title": f"Capítulo {index + 1}", "words": [{"id": 0, "text": "niño"}]},
        activities=activities or [],
    )


class TestBookSources:

    def test_create_and_get(self, repository, source):
        loaded = repository.get_book_source(source.id)

        assert loaded.original_file_name == "libro.docx"
        assert loaded.status == BookSourceStatus.UPLOADED
        assert loaded.book_id == "book-1"

    def test_update_status(self, repository, source):
        assert repository.update_book_source_status(source.id, BookSourceStatus.PROCESSING)
        assert repository.get_book_source(source.id).status == BookSourceStatus.PROCESSING

    def test_missing(self, repository):
        assert repository.get_book_source(999) is None
        assert not repository.update_book_source_status(999, BookSourceStatus.FAILED)


class TestJobExclusivity:

    def test_second_active_job_is_refused(self, repository, source):
        first = repository.create_job_if_idle(parsing_job(source.id))

        assert first is not None
        assert first.status == JobStatus.PENDING
        assert repository.create_job_if_idle(parsing_job(source.id)) is None
        assert repository.get_active_job(source.id).id == first.id

    def test_running_job_also_blocks(self, repository, source):
        job = repository.create_job_if_idle(parsing_job(source.id))
        repository.start_job(job.id)
        assert repository.create_job_if_idle(parsing_job(source.id)) is None

    def test_terminal_job_frees_the_source(self, repository, source):
        job = repository.create_job_if_idle(parsing_job(source.id))
        repository.fail_job(job.id, "boom")

        assert repository.get_active_job(source.id) is None
        assert repository.create_job_if_idle(parsing_job(source.id)) is not None

    def test_other_sources_are_independent(self, repository, source):
        other = repository.create_book_source(BookSourceCreate("otro.txt", "/tmp/otro.txt"))
        assert repository.create_job_if_idle(parsing_job(source.id)) is not None
        assert repository.create_job_if_idle(parsing_job(other.id)) is not None

    def test_concurrent_creators_get_one_job(self, repository, source):
        barrier = threading.Barrier(8)
        created = []

        def create():
            barrier.wait()
            created.append(repository.create_job_if_idle(parsing_job(source.id)))

        threads = [threading.Thread(target=create) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        winners = [job for job in created if job is not None]
        assert len(created) == 8
        assert len(winners) == 1
        assert repository.get_active_job(source.id).id == winners[0].id

    def test_metadata_round_trips(self, repository, source):
        job = repository.create_job_if_idle(parsing_job(source.id, originalFileName="libro.docx"))
        assert repository.get_job(job.id).metadata == {"originalFileName": "libro.docx"}


class TestJobTransitions:

    def test_happy_path(self, repository, source):
        job = repository.create_job_if_idle(parsing_job(source.id))

        assert repository.start_job(job.id, "Starting")
        assert repository.update_job_progress(job.id, 40, "Halfway")
        running = repository.get_job(job.id)
        assert running.status == JobStatus.RUNNING
        assert running.progress == 40
        assert running.message == "Halfway"
        assert running.started_at is not None

        assert repository.complete_job(job.id, {"chapters": []}, "Done")
        done = repository.get_job(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.progress == 100
        assert done.result == {"chapters": []}
        assert done.completed_at is not None

    def test_start_only_from_pending(self, repository, source):
        job = repository.create_job_if_idle(parsing_job(source.id))
        assert repository.start_job(job.id)
        assert not repository.start_job(job.id)

    def test_progress_requires_running(self, repository, source):
        job = repository.create_job_if_idle(parsing_job(source.id))
        assert not repository.update_job_progress(job.id, 10)

    def test_progress_is_clamped(self, repository, source):
        job = repository.create_job_if_idle(parsing_job(source.id))
        repository.start_job(job.id)
        repository.update_job_progress(job.id, 150)
        assert repository.get_job(job.id).progress == 100

    def test_late_completion_cannot_revive_failed_job(self, repository, source):
        job = repository.create_job_if_idle(parsing_job(source.id))
        repository.start_job(job.id)

        assert repository.fail_job(job.id, "Job cancelled by user")
        assert not repository.complete_job(job.id, {"chapters": []})
        assert not repository.update_job_progress(job.id, 90)

        failed = repository.get_job(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.error_message == "Job cancelled by user"

    def test_completed_job_cannot_fail(self, repository, source):
        job = repository.create_job_if_idle(parsing_job(source.id))
        repository.start_job(job.id)
        repository.complete_job(job.id)
        assert not repository.fail_job(job.id, "late")
        assert repository.get_job(job.id).status == JobStatus.COMPLETED

    def test_listing(self, repository, source):
        other = repository.create_book_source(BookSourceCreate("otro.txt", "/tmp/otro.txt"))
        first = repository.create_job_if_idle(parsing_job(source.id))
        second = repository.create_job_if_idle(parsing_job(other.id))

        pending = repository.list_jobs_by_status(JobStatus.PENDING)
        assert [job.id for job in pending] == [first.id, second.id]
        assert [job.id for job in repository.list_jobs_by_status(JobStatus.PENDING, limit=1)] == [first.id]
        assert [job.id for job in repository.list_jobs_for_source(source.id)] == [first.id]

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "shared.db"
        first = SQLiteRepository(path)
        source = first.create_book_source(BookSourceCreate("a.txt", "/tmp/a.txt"))
        job = first.create_job_if_idle(parsing_job(source.id))

        second = SQLiteRepository(path)
        assert second.get_job(job.id).status == JobStatus.PENDING
        assert second.create_job_if_idle(parsing_job(source.id)) is None


class TestChapters:

    def test_create_chapters_with_activities(self, repository):
        vocabulary = ActivityCreate(
            activity_type=ActivityType.VOCABULARY_SUPPORT,
            title="Vocabulary Support",
            activity_data={"vocabulary": [{"spanish": "niño", "english": "boy"}]},
            sort_order=1,
        )
        created = repository.create_chapters("book-1", [chapter(1), chapter(0, activities=[vocabulary])])

        assert [c.index_in_book for c in created] == [0, 1]
        assert created[0].content["words"][0]["text"] == "niño"

        activities = repository.get_chapter_activities("chapter_book-1_0")
        assert len(activities) == 1
        assert activities[0].activity_type == ActivityType.VOCABULARY_SUPPORT
        assert activities[0].activity_data["vocabulary"][0]["english"] == "boy"

    def test_conflict_writes_nothing(self, repository):
        repository.create_chapters("book-1", [chapter(0)])

        with pytest.raises(ChaptersAlreadyExistError) as exc_info:
            repository.create_chapters("book-1", [chapter(1), chapter(0)])

        assert exc_info.value.indices == [0]
        assert [c.index_in_book for c in repository.get_chapters("book-1")] == [0]

    def test_same_index_in_other_book(self, repository):
        repository.create_chapters("book-1", [chapter(0)])
        created = repository.create_chapters("book-2", [chapter(0, book_id="book-2")])
        assert created[0].book_id == "book-2"

    def test_update_narration(self, repository):
        repository.create_chapters("book-1", [chapter(0)])
        content = {"title": "Capítulo 1", "words": [{"id": 0, "text": "niño", "start_time": 0.0, "end_time": 0.4}]}

        assert repository.update_chapter_narration(
            "chapter_book-1_0", "/audio/chapter_book-1_0.mp3", content, {"words": [], "accuracy": "perfect"}
        )
        stored = repository.get_chapter("chapter_book-1_0")
        assert stored.audio_url == "/audio/chapter_book-1_0.mp3"
        assert stored.content["words"][0]["end_time"] == 0.4
        assert stored.timing_data["accuracy"] == "perfect"

    def test_missing_chapter(self, repository):
        assert repository.get_chapter("nope") is None
        assert not repository.update_chapter_narration("nope", "/audio/x.mp3", {}, {})
