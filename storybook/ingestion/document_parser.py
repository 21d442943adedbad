"""
Document Parser Module
======================
Turns a manuscript into chapters, sentences and words.

Pipeline:
    container reader -> text blocks -> heading detection -> chapters
    -> activities split -> segmentation -> counts and metadata

The parser holds no per-document state; one instance can be shared.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from storybook.errors import ChapterDetectionError, ManuscriptNotFoundError
from storybook.ingestion.activities import parse_activities, split_story_and_activities
from storybook.ingestion.document import (
    DocumentMetadata,
    ParsedChapter,
    ParsedDocument,
    Sentence,
    ValidationReport,
)
from storybook.ingestion.readers import CHAPTER_KEYWORD, TextBlock, read_blocks
from storybook.ingestion.segmenter import TextSegmenter


logger = logging.getLogger(__name__)

_TERMINAL_PUNCTUATION = ".!?…:;,"


@dataclass
class ParserConfig:
    """Thresholds for chapter detection and validation."""
    min_chapter_chars: int = 50
    min_chapter_words: int = 20
    max_heading_length: int = 100
    heading_font_size: float = 15.0
    bold_heading_font_size: float = 14.0
    intro_title: str = "Introducción"
    language: str = "es"


class DocumentParser:
    """
    Parses DOCX, EPUB and plain-text manuscripts.

    Example:
        parser = DocumentParser()
        document = parser.parse_file("novela.docx")
        report = parser.validate(document)
    """

    def __init__(
        self,
        config: Optional[ParserConfig] = None,
        segmenter: Optional[TextSegmenter] = None
    ):
        """
        Initialize the parser.

        Args:
            config: Parser thresholds (uses defaults if None)
            segmenter: Text segmenter (a fresh one if None)
        """
        self.config = config or ParserConfig()
        self.segmenter = segmenter or TextSegmenter()

    # ==================== Entry points ====================

    def parse_file(self, file_path: Path | str) -> ParsedDocument:
        """
        Read a manuscript from disk and parse it.

        Raises:
            ManuscriptNotFoundError: If the file does not exist
        """
        path = Path(file_path)
        if not path.is_file():
            raise ManuscriptNotFoundError(path)
        return self.parse(path.read_bytes(), path.name)

    def parse(self, data: bytes, filename: str) -> ParsedDocument:
        """
        Parse manuscript bytes.

        Args:
            data: Raw file contents
            filename: Original file name, used to pick the reader

        Returns:
            ParsedDocument with chapters indexed 0..n-1

        Raises:
            UnsupportedFormatError: Unknown or unreadable container
            EmptyDocumentError: No extractable text
            ChapterDetectionError: No headings, or no chapter survived filtering
        """
        started = time.perf_counter()

        blocks = read_blocks(data, filename)
        sections = self._split_sections(blocks)
        chapters = self._build_chapters(sections)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        metadata = DocumentMetadata(
            total_chapters=len(chapters),
            total_words=sum(chapter.word_count for chapter in chapters),
            total_sentences=sum(chapter.sentence_count for chapter in chapters),
            language=self.config.language,
            processing_time_ms=elapsed_ms,
            source_format=Path(filename).suffix.lower().lstrip("."),
        )

        logger.info(
            f"Parsed {filename}: {metadata.total_chapters} chapters, "
            f"{metadata.total_words} words in {elapsed_ms}ms"
        )
        return ParsedDocument(chapters=chapters, metadata=metadata)

    # ==================== Heading detection ====================

    @staticmethod
    def _dominant_font_size(blocks: list[TextBlock]) -> Optional[float]:
        sizes: Counter = Counter()
        for block in blocks:
            if block.font_size is not None:
                sizes[block.font_size] += len(block.text)
        if not sizes:
            return None
        return sizes.most_common(1)[0][0]

    def is_heading(self, block: TextBlock, body_font_size: Optional[float] = None) -> bool:
        """
        Decide whether a block opens a chapter.

        A block is a heading when it is short and single-line, and either
        marked as a heading by the container, starts with a chapter keyword,
        or (without terminal punctuation) is set in a large or bold large font.
        """
        text = block.text.strip()
        if not text or "\n" in text or len(text) >= self.config.max_heading_length:
            return False
        if block.marked_heading or CHAPTER_KEYWORD.match(text):
            return True
        if text[-1] in _TERMINAL_PUNCTUATION or block.font_size is None:
            return False

        size = block.font_size
        if size >= self.config.heading_font_size and (body_font_size is None or size > body_font_size):
            return True
        if block.bold and size >= self.config.bold_heading_font_size and (
            body_font_size is None or size >= body_font_size
        ):
            return True
        return False

    def _split_sections(self, blocks: list[TextBlock]) -> list[tuple[str, list[str]]]:
        body_size = self._dominant_font_size(blocks)
        sections: list[tuple[str, list[str]]] = []
        title: Optional[str] = None
        body: list[str] = []
        headings = 0

        for block in blocks:
            if self.is_heading(block, body_size):
                if title is not None or body:
                    sections.append((title if title is not None else self.config.intro_title, body))
                title = " ".join(block.text.split())
                body = []
                headings += 1
            else:
                body.append(block.text)

        if headings == 0:
            raise ChapterDetectionError(details=f"{len(blocks)} blocks scanned")

        sections.append((title, body))
        return sections

    # ==================== Chapter assembly ====================

    def _segment(self, paragraphs: list[str]) -> list[Sentence]:
        sentences = []
        word_id = 0
        offset = 0

        for paragraph_index, paragraph in enumerate(paragraphs):
            for start, end in self.segmenter.sentence_spans(paragraph):
                text = paragraph[start:end]
                words = self.segmenter.split_words(text, start_id=word_id)
                word_id += len(words)
                sentences.append(Sentence(
                    id=len(sentences),
                    text=text,
                    start_index=offset + start,
                    end_index=offset + end,
                    words=words,
                    paragraph=paragraph_index,
                ))
            offset += len(paragraph) + 2

        return sentences

    def _build_chapters(self, sections: list[tuple[str, list[str]]]) -> list[ParsedChapter]:
        chapters = []

        for title, body_parts in sections:
            story, activities_text = split_story_and_activities("\n\n".join(body_parts))

            if len(story.strip()) < self.config.min_chapter_chars:
                logger.info(f"Dropping chapter '{title}': fewer than {self.config.min_chapter_chars} characters")
                continue

            paragraphs = self.segmenter.split_paragraphs(story)
            sentences = self._segment(paragraphs)
            if not any(sentence.words for sentence in sentences):
                logger.info(f"Dropping chapter '{title}': no words")
                continue

            index = len(chapters)
            chapters.append(ParsedChapter(
                id=f"chapter_{index}",
                title=title,
                index=index,
                paragraphs=paragraphs,
                sentences=sentences,
                activities=parse_activities(activities_text),
            ))

        if not chapters:
            raise ChapterDetectionError(
                "All detected chapters were empty or too short",
                details=f"{len(sections)} candidate chapters discarded"
            )
        return chapters

    # ==================== Validation and output ====================

    def validate(self, document: ParsedDocument) -> ValidationReport:
        """
        Check a parsed document.

        Only a document with zero chapters is invalid; everything else is
        reported as a warning.
        """
        errors = []
        warnings = []

        if not document.chapters:
            errors.append("Document has no chapters")

        for position, chapter in enumerate(document.chapters):
            label = chapter.title or f"#{position}"
            if not chapter.title.strip():
                warnings.append(f"Chapter {position} has no title")
            if chapter.index != position:
                warnings.append(f"Chapter '{label}' has index {chapter.index}, expected {position}")
            if chapter.word_count == 0:
                warnings.append(f"Chapter '{label}' has no words")
            elif chapter.word_count < self.config.min_chapter_words:
                warnings.append(
                    f"Chapter '{label}' is suspiciously short ({chapter.word_count} words)"
                )

        return ValidationReport(is_valid=not errors, errors=errors, warnings=warnings)

    def preview(self, document: ParsedDocument) -> dict[str, Any]:
        """Per-chapter summary used before chapters are approved."""
        return {
            "chapters": [
                {
                    "id": chapter.id,
                    "title": chapter.title,
                    "indexInBook": chapter.index,
                    "wordCount": chapter.word_count,
                    "sentenceCount": chapter.sentence_count,
                    "contentPreview": chapter.preview,
                }
                for chapter in document.chapters
            ],
            "metadata": document.metadata.to_dict(),
        }

    def to_reading_json(self, document: ParsedDocument) -> dict[str, Any]:
        """Export the document with annotated words for the reader."""
        return {
            "version": "1.0",
            "language": document.metadata.language,
            "metadata": document.metadata.to_dict(),
            "chapters": [
                {
                    "id": chapter.id,
                    "title": chapter.title,
                    "index": chapter.index,
                    "wordCount": chapter.word_count,
                    "content": {
                        "sentences": [
                            {
                                "id": sentence.id,
                                "text": sentence.text,
                                "words": [word.to_dict() for word in sentence.words],
                            }
                            for sentence in chapter.sentences
                        ]
                    },
                }
                for chapter in document.chapters
            ],
        }
