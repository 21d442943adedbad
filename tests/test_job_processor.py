"""
Job Processor Tests
===================
Parsing, chapter creation and narration jobs, cancellation and the queue.
"""

import threading

import pytest

from storybook.concurrency import CancellationToken, JobWorkerPool
from storybook.errors import (
    BookNotAssignedError,
    ChaptersAlreadyExistError,
    JobAlreadyCompletedError,
    JobAlreadyFailedError,
    JobAlreadyRunningError,
    JobNotCompletedError,
    JobNotFoundError,
    SourceNotFoundError,
)
from storybook.ingestion.document_parser import DocumentParser
from storybook.pipeline.job_processor import CANCEL_MESSAGE, RESTART_MESSAGE, JobProcessor
from storybook.storage.models import BookSourceStatus, JobStatus, JobType


def run_parsing(processor, source_id):
    job_id = processor.create_parsing_job(source_id)
    processor.start_job(job_id)
    return job_id


class TestParsingJobs:

    def test_parsing_completes(self, processor, repository, make_source):
        source = make_source()
        job_id = run_parsing(processor, source.id)

        job = repository.get_job(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.message == "Document parsing completed successfully"
        assert job.metadata == {"bookSourceId": source.id, "originalFileName": "historia.txt"}
        assert [c["title"] for c in job.result["chapters"]] == ["Capítulo 1: El mercado", "Capítulo 2: La playa"]
        assert job.result["validation"]["isValid"]
        assert repository.get_book_source(source.id).status == BookSourceStatus.PROCESSED

    def test_result_carries_chapter_json(self, processor, repository, make_source):
        job = repository.get_job(run_parsing(processor, make_source().id))
        first = job.result["chapters"][0]

        assert first["jsonContent"]["title"] == "Capítulo 1: El mercado"
        assert len(first["jsonContent"]["words"]) == first["wordCount"] == 16
        assert first["activities"][0]["activityType"] == "vocabulary_support"

    def test_second_job_conflicts(self, processor, make_source):
        source = make_source()
        first = processor.create_parsing_job(source.id)

        with pytest.raises(JobAlreadyRunningError) as exc_info:
            processor.create_parsing_job(source.id)

        assert exc_info.value.job_id == first
        assert exc_info.value.http_status == 409

    def test_concurrent_requests_start_one_job(self, processor, make_source):
        source = make_source()
        barrier = threading.Barrier(6)
        created, conflicts = [], []

        def request():
            barrier.wait()
            try:
                created.append(processor.create_parsing_job(source.id))
            except JobAlreadyRunningError as e:
                conflicts.append(e.job_id)

        threads = [threading.Thread(target=request) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(created) == 1
        assert conflicts == created * 5

    def test_unknown_source(self, processor):
        with pytest.raises(SourceNotFoundError):
            processor.create_parsing_job(404)

    def test_missing_manuscript_fails_job(self, processor, repository, make_source, tmp_path):
        source = make_source(tmp_path / "borrado.txt")
        job_id = run_parsing(processor, source.id)

        job = repository.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_message.startswith("Parsing failed:")
        assert repository.get_book_source(source.id).status == BookSourceStatus.FAILED

    def test_undetectable_chapters_fail_job(self, processor, repository, make_source, tmp_path):
        path = tmp_path / "sin_titulos.txt"
        path.write_text("Había una vez un niño.\n\nFin de la historia.", encoding="utf-8")
        job_id = run_parsing(processor, make_source(path).id)

        job = repository.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert "No chapter headings detected" in job.error_message

    def test_job_snapshot(self, processor, make_source):
        source = make_source()
        job_id = run_parsing(processor, source.id)
        data = processor.get_job_status(job_id).to_dict()

        assert data["jobId"] == job_id
        assert data["jobType"] == "parsing"
        assert data["status"] == "completed"
        assert data["completedAt"] is not None
        assert [job.job_id for job in processor.get_jobs_for_book_source(source.id)] == [job_id]

    def test_unknown_job_status(self, processor):
        assert processor.get_job_status(12345) is None


class TestCancellation:

    def test_cancel_pending(self, processor, repository, make_source):
        source = make_source()
        job_id = processor.create_parsing_job(source.id)

        snapshot = processor.cancel_job(job_id)

        assert snapshot.status == "failed"
        assert snapshot.error_message == CANCEL_MESSAGE
        assert repository.get_book_source(source.id).status == BookSourceStatus.UPLOADED
        # the source is free again
        assert processor.create_parsing_job(source.id) != job_id

    def test_cancel_completed(self, processor, repository, make_source):
        job_id = run_parsing(processor, make_source().id)

        with pytest.raises(JobAlreadyCompletedError) as exc_info:
            processor.cancel_job(job_id)

        assert exc_info.value.api_code == "JOB_COMPLETED"
        assert repository.get_job(job_id).status == JobStatus.COMPLETED

    def test_cancel_failed(self, processor, make_source):
        job_id = processor.create_parsing_job(make_source().id)
        processor.cancel_job(job_id)
        with pytest.raises(JobAlreadyFailedError):
            processor.cancel_job(job_id)

    def test_cancel_unknown(self, processor):
        with pytest.raises(JobNotFoundError):
            processor.cancel_job(999)

    def test_cancelled_job_is_not_executed(self, processor, repository, make_source):
        source = make_source()
        job_id = processor.create_parsing_job(source.id)
        processor.cancel_job(job_id)

        assert processor.execute_parsing_job(job_id) is None
        assert repository.get_job(job_id).status == JobStatus.FAILED

    def test_cancel_while_running(self, repository, make_source):
        parsing_started = threading.Event()
        release = threading.Event()

        class BlockingParser(DocumentParser):
            def parse(self, data, filename):
                parsing_started.set()
                release.wait(5)
                return super().parse(data, filename)

        pool = JobWorkerPool(max_workers=1)
        processor = JobProcessor(repository, BlockingParser(), worker_pool=pool)
        source = make_source()
        try:
            job_id = processor.create_parsing_job(source.id)
            processor.start_job(job_id)
            assert parsing_started.wait(5)

            processor.cancel_job(job_id)
            release.set()
            assert pool.wait_all(timeout=5)
        finally:
            release.set()
            pool.shutdown(wait=True)

        job = repository.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_message == CANCEL_MESSAGE
        assert job.result is None
        assert repository.get_book_source(source.id).status == BookSourceStatus.UPLOADED


class TestQueueAndRecovery:

    def test_process_queue_runs_oldest_first(self, processor, repository, make_source):
        first = processor.create_parsing_job(make_source().id)
        second = processor.create_parsing_job(make_source().id)

        assert processor.process_job_queue() == [first, second]
        assert repository.get_job(first).status == JobStatus.COMPLETED
        assert repository.get_job(second).status == JobStatus.COMPLETED

    def test_process_queue_limit(self, processor, repository, make_source):
        first = processor.create_parsing_job(make_source().id)
        second = processor.create_parsing_job(make_source().id)

        assert processor.process_job_queue(limit=1) == [first]
        assert repository.get_job(second).status == JobStatus.PENDING

    def test_empty_queue(self, processor):
        assert processor.process_job_queue() == []

    def test_recover_interrupted_jobs(self, processor, repository, make_source):
        source = make_source()
        job_id = processor.create_parsing_job(source.id)
        repository.start_job(job_id)

        assert processor.recover_interrupted_jobs() == [job_id]
        job = repository.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_message == RESTART_MESSAGE
        assert repository.get_book_source(source.id).status == BookSourceStatus.FAILED

    def test_cancelled_token_leaves_job_pending(self, processor, repository, make_source):
        job_id = processor.create_parsing_job(make_source().id)
        token = CancellationToken()
        token.cancel("shutdown")

        assert processor.execute_parsing_job(job_id, token) is None
        assert repository.get_job(job_id).status == JobStatus.PENDING

    def test_shutdown_keeps_queued_jobs_for_next_start(self, repository, make_source):
        parsing_started = threading.Event()
        release = threading.Event()

        class BlockingParser(DocumentParser):
            def parse(self, data, filename):
                parsing_started.set()
                release.wait(5)
                return super().parse(data, filename)

        pool = JobWorkerPool(max_workers=1)
        processor = JobProcessor(repository, BlockingParser(), worker_pool=pool)
        running = processor.create_parsing_job(make_source().id)
        queued = processor.create_parsing_job(make_source().id)
        try:
            processor.start_job(running)
            processor.start_job(queued)
            assert parsing_started.wait(5)

            pool.shutdown(wait=False, cancel=True)
            release.set()
            assert pool.wait_all(timeout=5)
        finally:
            release.set()

        assert repository.get_job(queued).status == JobStatus.PENDING

        restarted = JobProcessor(repository, DocumentParser())
        assert restarted.recover_interrupted_jobs() == [running]
        assert restarted.process_job_queue() == [queued]
        assert repository.get_job(queued).status == JobStatus.COMPLETED


class TestChapterCreation:

    def test_approve_creates_chapters(self, processor, repository, make_source):
        source = make_source()
        job_id = run_parsing(processor, source.id)

        chapters = processor.approve_parsing_job(job_id)

        assert [c.id for c in chapters] == ["chapter_book-1_0", "chapter_book-1_1"]
        assert [c.index_in_book for c in chapters] == [0, 1]
        assert chapters[0].content["words"][0]["original"] == "María"
        activities = repository.get_chapter_activities("chapter_book-1_0")
        assert [a.title for a in activities] == ["Vocabulary Support"]

        creation = [job for job in repository.list_jobs_for_source(source.id)
                    if job.job_type == JobType.CHAPTER_CREATION]
        assert len(creation) == 1
        assert creation[0].status == JobStatus.COMPLETED
        assert creation[0].result["chapterIds"] == ["chapter_book-1_0", "chapter_book-1_1"]

    def test_second_approval_conflicts(self, processor, repository, make_source):
        source = make_source()
        job_id = run_parsing(processor, source.id)
        processor.approve_parsing_job(job_id)

        with pytest.raises(ChaptersAlreadyExistError) as exc_info:
            processor.approve_parsing_job(job_id)

        assert exc_info.value.indices == [0, 1]
        assert len(repository.get_chapters("book-1")) == 2
        latest = repository.list_jobs_for_source(source.id)[-1]
        assert latest.job_type == JobType.CHAPTER_CREATION
        assert latest.status == JobStatus.FAILED

    def test_approve_requires_completed_parsing(self, processor, make_source):
        job_id = processor.create_parsing_job(make_source().id)
        with pytest.raises(JobNotCompletedError):
            processor.approve_parsing_job(job_id)

    def test_approve_requires_book(self, processor, make_source):
        job_id = run_parsing(processor, make_source(book_id=None).id)
        with pytest.raises(BookNotAssignedError):
            processor.approve_parsing_job(job_id)


class TestNarrationJobs:

    def test_narration_stores_audio_and_timings(self, processor, repository, make_source, fake_synthesizer):
        source = make_source()
        processor.approve_parsing_job(run_parsing(processor, source.id))

        job_id = processor.create_tts_job(source.id)
        processor.start_job(job_id)

        job = repository.get_job(job_id)
        assert job.status == JobStatus.COMPLETED, job.error_message
        assert len(job.result["chapters"]) == 2
        assert len(fake_synthesizer.calls) == 2

        chapter = repository.get_chapter("chapter_book-1_0")
        assert chapter.audio_url.startswith("/audio/chapter_book-1_0_")
        assert len(chapter.timing_data["words"]) == 16
        assert all(word["start_time"] is not None for word in chapter.content["words"])

    def test_selected_chapters_only(self, processor, repository, make_source, fake_synthesizer):
        source = make_source()
        processor.approve_parsing_job(run_parsing(processor, source.id))

        processor.start_job(processor.create_tts_job(source.id, ["chapter_book-1_1"]))

        assert len(fake_synthesizer.calls) == 1
        assert repository.get_chapter("chapter_book-1_0").audio_url is None
        assert repository.get_chapter("chapter_book-1_1").audio_url is not None

    def test_no_chapters_fails(self, processor, repository, make_source):
        job_id = processor.create_tts_job(make_source().id)
        processor.start_job(job_id)

        job = repository.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_message.startswith("Narration failed:")

    def test_requires_book(self, processor, make_source):
        with pytest.raises(BookNotAssignedError):
            processor.create_tts_job(make_source(book_id=None).id)

    def test_recognition_failure_fails_job(self, processor, repository, make_source, fake_recognizer):
        source = make_source()
        processor.approve_parsing_job(run_parsing(processor, source.id))
        fake_recognizer.empty = True

        job_id = processor.create_tts_job(source.id)
        processor.start_job(job_id)

        job = repository.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert "Recognized token sequence is empty" in job.error_message
