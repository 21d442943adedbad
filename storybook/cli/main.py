"""
Storybook CLI
=============
Terminal command surface for the storybook pipeline.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Optional, TextIO

from config.settings import Settings
from storybook.errors import StorybookError
from storybook.ingestion.document_parser import DocumentParser, ParserConfig
from storybook.pipeline.job_processor import JobProcessor
from storybook.storage.models import BookSourceCreate


class CLIContext:
    """Settings plus a lazily built job processor (no worker pool; jobs run inline)."""

    def __init__(self, settings: Settings, processor_factory: Optional[Callable[[Settings], JobProcessor]] = None):
        self.settings = settings
        self._processor_factory = processor_factory
        self._processor: Optional[JobProcessor] = None

    @property
    def processor(self) -> JobProcessor:
        if self._processor is None:
            if self._processor_factory is not None:
                self._processor = self._processor_factory(self.settings)
            else:
                from storybook.api.app import build_processor

                self.settings.ensure_dirs()
                self._processor = build_processor(self.settings)
        return self._processor


def build_parser() -> argparse.ArgumentParser:
    """Create the root CLI parser."""
    parser = argparse.ArgumentParser(prog="storybook", description="Storybook pipeline CLI")
    parser.add_argument("--log-level", help="Override log level (DEBUG, INFO, WARNING, ERROR)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", help="Bind address (default from settings)")
    serve_parser.add_argument("--port", type=int, help="Port (default from settings)")
    serve_parser.set_defaults(handler=handle_serve)

    # add-source
    add_parser = subparsers.add_parser("add-source", help="Register a manuscript file as a book source")
    add_parser.add_argument("file", help="Path to a .docx, .epub, .txt or .md manuscript")
    add_parser.add_argument("--book-id", help="Book the chapters will belong to")
    add_parser.add_argument("--uploaded-by", help="Uploader identifier")
    add_parser.set_defaults(handler=handle_add_source)

    # preview
    preview_parser = subparsers.add_parser("preview", help="Preview chapter detection for a book source")
    preview_parser.add_argument("book_source_id", type=int)
    preview_parser.set_defaults(handler=handle_preview)

    # parse
    parse_parser = subparsers.add_parser("parse", help="Parse a manuscript file and write reading JSON")
    parse_parser.add_argument("file", help="Manuscript path")
    parse_parser.add_argument("-o", "--output", help="Output JSON path (default: stdout)")
    parse_parser.set_defaults(handler=handle_parse)

    # jobs
    jobs_parser = subparsers.add_parser("jobs", help="List jobs of a book source")
    jobs_parser.add_argument("book_source_id", type=int)
    jobs_parser.set_defaults(handler=handle_jobs)

    # process-queue
    queue_parser = subparsers.add_parser("process-queue", help="Run pending jobs now")
    queue_parser.add_argument("--limit", type=int, help="Maximum jobs to run")
    queue_parser.set_defaults(handler=handle_process_queue)

    # approve
    approve_parser = subparsers.add_parser("approve", help="Create chapters from a completed parsing job")
    approve_parser.add_argument("job_id", type=int)
    approve_parser.set_defaults(handler=handle_approve)

    return parser


def _print(msg: str, out: TextIO) -> None:
    out.write(msg + "\n")
    out.flush()


def handle_serve(args: argparse.Namespace, context: CLIContext, out: TextIO) -> int:
    """Run the API under uvicorn."""
    import uvicorn

    from storybook.api.app import create_app

    host = args.host or context.settings.host
    port = args.port or context.settings.port
    _print(f"serving on http://{host}:{port}", out)
    uvicorn.run(create_app(context.settings), host=host, port=port, log_level=context.settings.log_level.lower())
    return 0


def handle_add_source(args: argparse.Namespace, context: CLIContext, out: TextIO) -> int:
    path = Path(args.file).expanduser().resolve()
    if not path.is_file():
        _print(f"error: file not found: {path}", out)
        return 1

    source = context.processor.repository.create_book_source(BookSourceCreate(
        original_file_name=path.name,
        file_url=str(path),
        file_size=path.stat().st_size,
        book_id=args.book_id,
        uploaded_by=args.uploaded_by,
    ))
    _print(f"book source {source.id}: {source.original_file_name} ({source.file_size} bytes)", out)
    return 0


def handle_preview(args: argparse.Namespace, context: CLIContext, out: TextIO) -> int:
    preview = context.processor.preview(args.book_source_id)
    metadata = preview["metadata"]
    _print(
        f"{metadata['totalChapters']} chapters, {metadata['totalWords']} words, "
        f"{metadata['totalSentences']} sentences",
        out,
    )
    for chapter in preview["chapters"]:
        _print(
            f"  [{chapter['indexInBook']}] {chapter['title']} "
            f"({chapter['wordCount']} words, {chapter['sentenceCount']} sentences)",
            out,
        )
    for warning in preview["validation"]["warnings"]:
        _print(f"warning: {warning}", out)
    return 0


def handle_parse(args: argparse.Namespace, context: CLIContext, out: TextIO) -> int:
    """Parse a file directly; nothing is stored."""
    parser = DocumentParser(ParserConfig(
        min_chapter_chars=context.settings.min_chapter_chars,
        min_chapter_words=context.settings.min_chapter_words,
    ))
    document = parser.parse_file(args.file)
    payload = json.dumps(parser.to_reading_json(document), ensure_ascii=False, indent=2)

    if args.output:
        Path(args.output).write_text(payload, encoding="utf-8")
        _print(f"wrote {document.metadata.total_chapters} chapters to {args.output}", out)
    else:
        _print(payload, out)
    return 0


def handle_jobs(args: argparse.Namespace, context: CLIContext, out: TextIO) -> int:
    jobs = context.processor.get_jobs_for_book_source(args.book_source_id)
    if not jobs:
        _print("  - no recorded jobs", out)
        return 0
    for job in jobs:
        line = f"  - id={job.job_id} type={job.job_type} status={job.status} progress={job.progress}%"
        if job.error_message:
            line += f" error={job.error_message}"
        _print(line, out)
    return 0


def handle_process_queue(args: argparse.Namespace, context: CLIContext, out: TextIO) -> int:
    started = context.processor.process_job_queue(limit=args.limit)
    _print(f"processed {len(started)} job(s)", out)
    for job_id in started:
        snapshot = context.processor.get_job_status(job_id)
        if snapshot is not None:
            _print(f"  - id={job_id} status={snapshot.status} {snapshot.error_message or snapshot.message or ''}", out)
    return 0


def handle_approve(args: argparse.Namespace, context: CLIContext, out: TextIO) -> int:
    chapters = context.processor.approve_parsing_job(args.job_id)
    _print(f"created {len(chapters)} chapters", out)
    for chapter in chapters:
        _print(f"  - {chapter.id}: {chapter.title}", out)
    return 0


def main(
    argv: Optional[list[str]] = None,
    settings_factory: Callable[[], Settings] = Settings.from_env,
    processor_factory: Optional[Callable[[Settings], JobProcessor]] = None,
    out: TextIO = sys.stdout,
) -> int:
    """
    CLI entrypoint.

    Args:
        argv: Optional argv override for testing.
        settings_factory: Settings source; the environment by default.
        processor_factory: Dependency-injection hook for tests.
        out: Output stream.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = settings_factory()
    if args.log_level:
        settings.log_level = args.log_level.upper()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help(file=out)
        return 2

    try:
        return int(handler(args, CLIContext(settings, processor_factory), out))
    except StorybookError as exc:
        _print(f"error: {exc}", out)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
