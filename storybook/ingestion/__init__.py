"""
Ingestion Module
================
Reads DOCX, EPUB and text manuscripts into chapters, sentences and words.
"""

from .document import (
    Activity,
    DocumentMetadata,
    ParsedChapter,
    ParsedDocument,
    Sentence,
    ValidationReport,
    Word,
)
from .document_parser import DocumentParser, ParserConfig
from .segmenter import TextSegmenter, normalize_word

__all__ = [
    "Activity",
    "DocumentMetadata",
    "DocumentParser",
    "ParsedChapter",
    "ParsedDocument",
    "ParserConfig",
    "Sentence",
    "TextSegmenter",
    "ValidationReport",
    "Word",
    "normalize_word",
]
