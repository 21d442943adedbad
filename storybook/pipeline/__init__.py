"""
Pipeline Module
===============
Background jobs that turn manuscripts into narrated, timed chapters:
Parse -> Approve (chapters) -> Narrate (synthesis, recognition, alignment)
"""

from .chapter_content import apply_timings, build_chapter_content, display_text, display_words
from .job_processor import JobProcessor, JobSnapshot
from .narrator import ChapterNarrator, NarrationResult

__all__ = [
    "ChapterNarrator",
    "JobProcessor",
    "JobSnapshot",
    "NarrationResult",
    "apply_timings",
    "build_chapter_content",
    "display_text",
    "display_words",
]
