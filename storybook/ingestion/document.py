"""
Parsed Document Model
=====================
Transient structures produced by the document parser.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from storybook.storage.models import ActivityType


_EDGE_PUNCTUATION = re.compile(r"^[^\w]+|[^\w]+$")


@dataclass
class Word:
    """A display word with its comparison form and learner annotations."""
    id: int
    text: str
    normalized: str
    lemma: str
    pos: str
    clickable: bool
    start_index: int
    end_index: int
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    @property
    def bare(self) -> str:
        """Surface text without leading or trailing punctuation."""
        return _EDGE_PUNCTUATION.sub("", self.text)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.bare,
            "original": self.text,
            "lemma": self.lemma,
            "pos": self.pos,
            "clickable": self.clickable,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


@dataclass
class Sentence:
    """A sentence with character offsets into its chapter text."""
    id: int
    text: str
    start_index: int
    end_index: int
    words: list[Word] = field(default_factory=list)
    paragraph: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text}


@dataclass
class Activity:
    """Learner activity parsed from the section after the story text."""
    activity_type: ActivityType
    title: str
    description: str
    data: dict[str, Any]
    sort_order: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "activityType": self.activity_type.value,
            "title": self.title,
            "description": self.description,
            "activityData": self.data,
            "sortOrder": self.sort_order,
        }


@dataclass
class ParsedChapter:
    """A detected chapter with its segmented story text."""
    id: str
    title: str
    index: int
    paragraphs: list[str]
    sentences: list[Sentence]
    activities: list[Activity] = field(default_factory=list)

    @property
    def words(self) -> list[Word]:
        return [word for sentence in self.sentences for word in sentence.words]

    @property
    def word_count(self) -> int:
        return sum(len(sentence.words) for sentence in self.sentences)

    @property
    def sentence_count(self) -> int:
        return len(self.sentences)

    @property
    def text(self) -> str:
        return "\n\n".join(self.paragraphs)

    @property
    def preview(self) -> str:
        """First two sentences of the chapter."""
        return " ".join(sentence.text for sentence in self.sentences[:2])


@dataclass
class DocumentMetadata:
    """Totals and provenance for a parsed document."""
    total_chapters: int
    total_words: int
    total_sentences: int
    language: str = "es"
    processing_time_ms: int = 0
    source_format: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalChapters": self.total_chapters,
            "totalWords": self.total_words,
            "totalSentences": self.total_sentences,
            "language": self.language,
            "processingTimeMs": self.processing_time_ms,
            "sourceFormat": self.source_format,
        }


@dataclass
class ParsedDocument:
    """Parser output: ordered chapters plus document metadata."""
    chapters: list[ParsedChapter]
    metadata: DocumentMetadata


@dataclass
class ValidationReport:
    """Outcome of document validation. Only errors make it invalid."""
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
