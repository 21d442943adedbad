"""
Text Chunker Module
===================
Splits long narration text into provider-sized requests.
Paragraph boundaries are preferred, then sentence boundaries, then words.
"""

from dataclasses import dataclass
from typing import Optional

from storybook.ingestion.segmenter import TextSegmenter


@dataclass
class ChunkConfig:
    """Configuration for text chunking."""
    max_chars: int = 4500


class TextChunker:
    """
    Character-bounded chunker for synthesis requests.

    Every chunk is at most max_chars long and chunks joined with blank
    lines reproduce the input's words in order.
    """

    def __init__(self, config: ChunkConfig | None = None, segmenter: Optional[TextSegmenter] = None):
        """
        Initialize the text chunker.

        Args:
            config: Chunk configuration (uses defaults if None)
            segmenter: Sentence splitter (a fresh one if None)
        """
        self.config = config or ChunkConfig()
        self.segmenter = segmenter or TextSegmenter()

    def _pack(self, pieces: list[str], max_chars: int, separator: str) -> list[str]:
        """Greedily pack pieces into chunks, splitting oversized pieces further."""
        chunks = []
        current = ""

        for piece in pieces:
            if len(piece) > max_chars:
                if current:
                    chunks.append(current)
                    current = ""
                chunks.extend(self._split_oversized(piece, max_chars))
                continue

            candidate = f"{current}{separator}{piece}" if current else piece
            if len(candidate) <= max_chars:
                current = candidate
            else:
                chunks.append(current)
                current = piece

        if current:
            chunks.append(current)
        return chunks

    def _split_oversized(self, paragraph: str, max_chars: int) -> list[str]:
        sentences = self.segmenter.split_sentences(paragraph)
        if len(sentences) > 1:
            return self._pack(sentences, max_chars, " ")
        return self._hard_split(paragraph, max_chars)

    def _hard_split(self, text: str, max_chars: int) -> list[str]:
        """
        Hard split text at word boundaries when no sentence breaks.

        A single word longer than max_chars is cut at max_chars.
        """
        chunks = []
        current = ""
        for word in text.split():
            while len(word) > max_chars:
                if current:
                    chunks.append(current)
                    current = ""
                chunks.append(word[:max_chars])
                word = word[max_chars:]
            candidate = f"{current} {word}" if current else word
            if len(candidate) <= max_chars:
                current = candidate
            else:
                chunks.append(current)
                current = word
        if current:
            chunks.append(current)
        return chunks

    def chunk(self, text: str, max_chars: int | None = None) -> list[str]:
        """
        Split text into chunks suitable for one synthesis request.

        Args:
            text: Input text; paragraphs separated by blank lines
            max_chars: Maximum characters per chunk (uses config default if None)

        Returns:
            List of text chunks
        """
        if not text or not text.strip():
            return []

        max_chars = max_chars or self.config.max_chars
        stripped = text.strip()
        if len(stripped) <= max_chars:
            return [stripped]

        paragraphs = self.segmenter.split_paragraphs(stripped)
        return self._pack(paragraphs, max_chars, "\n\n")
