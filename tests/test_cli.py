"""
CLI Tests
=========
Command handlers driven through main() with injected settings and processor.
"""

import io
import json

import pytest

from storybook.cli.main import build_parser, main


@pytest.fixture
def run(settings, processor):
    def _run(*argv):
        out = io.StringIO()
        code = main(
            list(argv),
            settings_factory=lambda: settings,
            processor_factory=lambda s: processor,
            out=out,
        )
        return code, out.getvalue()

    return _run


class TestParser:

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_parse_options(self):
        args = build_parser().parse_args(["parse", "libro.docx", "-o", "libro.json"])
        assert args.file == "libro.docx"
        assert args.output == "libro.json"


class TestCommands:

    def test_parse_writes_reading_json(self, run, story_file, tmp_path):
        output = tmp_path / "historia.json"

        code, text = run("parse", str(story_file), "-o", str(output))

        assert code == 0
        assert "wrote 2 chapters" in text
        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["language"] == "es"
        assert [c["title"] for c in data["chapters"]] == ["Capítulo 1: El mercado", "Capítulo 2: La playa"]

    def test_parse_to_stdout(self, run, story_file):
        code, text = run("parse", str(story_file))
        assert code == 0
        assert json.loads(text)["metadata"]["totalChapters"] == 2

    def test_parse_unsupported_file(self, run, tmp_path):
        path = tmp_path / "libro.pdf"
        path.write_bytes(b"%PDF-1.4")

        code, text = run("parse", str(path))

        assert code == 1
        assert text.startswith("error:")

    def test_add_source_and_list_jobs(self, run, repository, story_file):
        code, text = run("add-source", str(story_file), "--book-id", "book-9")

        assert code == 0
        assert text.startswith("book source 1: historia.txt")
        assert repository.get_book_source(1).book_id == "book-9"

        code, text = run("jobs", "1")
        assert code == 0
        assert "no recorded jobs" in text

    def test_add_missing_file(self, run, tmp_path):
        code, text = run("add-source", str(tmp_path / "nada.txt"))
        assert code == 1
        assert "file not found" in text

    def test_preview(self, run, make_source):
        source = make_source()

        code, text = run("preview", str(source.id))

        assert code == 0
        assert "2 chapters, 34 words, 4 sentences" in text
        assert "[0] Capítulo 1: El mercado (16 words, 2 sentences)" in text
        assert "warning:" in text

    def test_process_queue_and_approve(self, run, processor, make_source):
        source = make_source()
        job_id = processor.create_parsing_job(source.id)

        code, text = run("process-queue")
        assert code == 0
        assert "processed 1 job(s)" in text
        assert f"id={job_id} status=completed" in text

        code, text = run("jobs", str(source.id))
        assert f"id={job_id} type=parsing status=completed progress=100%" in text

        code, text = run("approve", str(job_id))
        assert code == 0
        assert "created 2 chapters" in text
        assert "chapter_book-1_0" in text

    def test_pipeline_error_exits_nonzero(self, run):
        code, text = run("approve", "999")
        assert code == 1
        assert "error:" in text
