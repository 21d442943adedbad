"""
Application Factory
===================
Builds the FastAPI app: repository, worker pool, job processor and routes.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from config.settings import Settings
from storybook import __version__
from storybook.api.routes import register_error_handlers, router, set_dependencies
from storybook.concurrency import JobWorkerPool
from storybook.ingestion.document_parser import DocumentParser, ParserConfig
from storybook.pipeline.job_processor import JobProcessor
from storybook.pipeline.narrator import ChapterNarrator
from storybook.storage.repository import IStoryRepository
from storybook.storage.sqlite_repo import SQLiteRepository


logger = logging.getLogger(__name__)


def build_processor(
    settings: Settings,
    repository: Optional[IStoryRepository] = None,
    narrator: Optional[ChapterNarrator] = None,
    worker_pool: Optional[JobWorkerPool] = None
) -> JobProcessor:
    """Wire a JobProcessor from settings."""
    parser = DocumentParser(ParserConfig(
        min_chapter_chars=settings.min_chapter_chars,
        min_chapter_words=settings.min_chapter_words,
    ))
    return JobProcessor(
        repository=repository or SQLiteRepository(settings.database_path),
        parser=parser,
        narrator=narrator,
        worker_pool=worker_pool,
        settings=settings,
    )


def create_app(
    settings: Optional[Settings] = None,
    processor: Optional[JobProcessor] = None,
    recover_on_startup: bool = True
) -> FastAPI:
    """
    Create the HTTP application.

    Args:
        settings: Application settings (from the environment if None)
        processor: Pre-built processor, mainly for tests
        recover_on_startup: Fail orphaned running jobs and start the
            pending queue when the app starts

    Returns:
        Configured FastAPI app
    """
    settings = settings or Settings.from_env()
    settings.ensure_dirs()

    if processor is None:
        processor = build_processor(settings, worker_pool=JobWorkerPool(settings.max_workers))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info(f"Starting storybook pipeline {__version__}")
        if recover_on_startup:
            processor.recover_interrupted_jobs()
            processor.process_job_queue()
        yield
        if processor.worker_pool is not None:
            logger.info("Shutting down worker pool")
            processor.worker_pool.shutdown(wait=True, cancel=True)

    app = FastAPI(title="Storybook Pipeline", version=__version__, lifespan=lifespan)
    set_dependencies(processor)
    register_error_handlers(app)
    app.include_router(router)
    app.mount("/audio", StaticFiles(directory=settings.audio_dir, check_dir=False), name="audio")
    app.state.processor = processor
    return app
