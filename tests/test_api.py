"""
HTTP Endpoint Tests
===================
The /parsing routes and their error bodies, with jobs running inline.
"""

import pytest
from fastapi.testclient import TestClient

from storybook.api.app import create_app


@pytest.fixture
def client(settings, processor):
    with TestClient(create_app(settings, processor=processor, recover_on_startup=False)) as client:
        yield client


def start(client, source_id):
    response = client.post(f"/parsing/start/{source_id}")
    assert response.status_code == 201, response.text
    return response.json()["jobId"]


class TestParsingEndpoints:

    def test_start_and_poll(self, client, make_source):
        source = make_source()

        response = client.post(f"/parsing/start/{source.id}")

        assert response.status_code == 201
        body = response.json()
        assert body["bookSourceId"] == source.id
        status = client.get(f"/parsing/status/{body['jobId']}").json()
        assert status["status"] == "completed"
        assert status["progress"] == 100
        assert len(status["result"]["chapters"]) == 2

    def test_start_conflict(self, client, processor, make_source):
        source = make_source()
        pending = processor.create_parsing_job(source.id)

        response = client.post(f"/parsing/start/{source.id}")

        assert response.status_code == 409
        assert response.json()["error"] == "JOB_ALREADY_RUNNING"
        assert response.json()["jobId"] == pending

    def test_unknown_source(self, client):
        response = client.post("/parsing/start/9999")
        assert response.status_code == 404
        assert response.json()["error"] == "BOOK_SOURCE_NOT_FOUND"

    def test_unknown_job(self, client):
        response = client.get("/parsing/status/9999")
        assert response.status_code == 404
        assert response.json()["error"] == "JOB_NOT_FOUND"
        assert "message" in response.json()

    def test_list_jobs(self, client, make_source):
        source = make_source()
        job_id = start(client, source.id)

        body = client.get(f"/parsing/jobs/{source.id}").json()
        assert [job["jobId"] for job in body["jobs"]] == [job_id]


class TestCancelEndpoint:

    def test_cancel_pending(self, client, processor, make_source):
        job_id = processor.create_parsing_job(make_source().id)

        response = client.post(f"/parsing/cancel/{job_id}")

        assert response.status_code == 200
        assert client.get(f"/parsing/status/{job_id}").json()["errorMessage"] == "Job cancelled by user"

    def test_cancel_completed(self, client, make_source):
        job_id = start(client, make_source().id)

        response = client.post(f"/parsing/cancel/{job_id}")

        assert response.status_code == 400
        assert response.json()["error"] == "JOB_COMPLETED"

    def test_cancel_unknown(self, client):
        assert client.post("/parsing/cancel/9999").status_code == 404


class TestQueueAndPreview:

    def test_process_queue(self, client, processor, make_source):
        job_id = processor.create_parsing_job(make_source().id)

        response = client.post("/parsing/process-queue")

        assert response.status_code == 200
        assert response.json()["jobIds"] == [job_id]
        assert client.get(f"/parsing/status/{job_id}").json()["status"] == "completed"

    def test_process_queue_failure_still_answers(self, client, processor, mocker):
        mocker.patch.object(processor, "process_job_queue", side_effect=RuntimeError("db gone"))
        response = client.post("/parsing/process-queue")
        assert response.status_code == 200
        assert response.json()["jobIds"] == []

    def test_preview(self, client, make_source, repository):
        source = make_source()

        body = client.get(f"/parsing/preview/{source.id}").json()

        assert [c["title"] for c in body["preview"]["chapters"]] == [
            "Capítulo 1: El mercado",
            "Capítulo 2: La playa",
        ]
        assert body["preview"]["validation"]["isValid"]
        assert repository.list_jobs_for_source(source.id) == []


class TestChapterEndpoints:

    def test_approve_then_conflict(self, client, make_source):
        job_id = start(client, make_source().id)

        response = client.post(f"/parsing/approve/{job_id}")
        assert response.status_code == 201
        assert [c["id"] for c in response.json()["chapters"]] == ["chapter_book-1_0", "chapter_book-1_1"]

        again = client.post(f"/parsing/approve/{job_id}")
        assert again.status_code == 409
        assert again.json()["error"] == "CHAPTERS_ALREADY_EXIST"

    def test_narrate(self, client, make_source, repository):
        source = make_source()
        client.post(f"/parsing/approve/{start(client, source.id)}")

        response = client.post(f"/parsing/narrate/{source.id}", json={"chapterIds": ["chapter_book-1_0"]})

        assert response.status_code == 201
        status = client.get(f"/parsing/status/{response.json()['jobId']}").json()
        assert status["jobType"] == "tts_generation"
        assert status["status"] == "completed"
        assert repository.get_chapter("chapter_book-1_0").audio_url is not None
        assert repository.get_chapter("chapter_book-1_1").audio_url is None
