"""
Chapter JSON
============
Builds the persisted chapter document and writes narration timings into it.

Shape:
    {"title", "content": {"paragraphs": [{id, text, sentences, words}],
                          "sentences": [...]},
     "words": [...]}
"""

import copy
from typing import Any

from storybook.alignment.engine import AlignmentResult
from storybook.ingestion.document import ParsedChapter


def build_chapter_content(chapter: ParsedChapter) -> dict[str, Any]:
    """Chapter JSON for a parsed chapter; word times start out null."""
    paragraphs = []
    for paragraph_index, text in enumerate(chapter.paragraphs):
        sentences = [s for s in chapter.sentences if s.paragraph == paragraph_index]
        paragraphs.append({
            "id": paragraph_index,
            "text": text,
            "sentences": [sentence.to_dict() for sentence in sentences],
            "words": [word.to_dict() for sentence in sentences for word in sentence.words],
        })

    return {
        "title": chapter.title,
        "content": {
            "paragraphs": paragraphs,
            "sentences": [sentence.to_dict() for sentence in chapter.sentences],
        },
        "words": [word.to_dict() for word in chapter.words],
    }


def display_text(content: dict[str, Any]) -> str:
    """Narration text: paragraph texts separated by blank lines."""
    paragraphs = content.get("content", {}).get("paragraphs", [])
    return "\n\n".join(paragraph["text"] for paragraph in paragraphs if paragraph.get("text"))


def display_words(content: dict[str, Any]) -> list[str]:
    """Surface forms of the flat word list, in reading order."""
    return [word.get("original") or word.get("text", "") for word in content.get("words", [])]


def apply_timings(content: dict[str, Any], alignment: AlignmentResult) -> dict[str, Any]:
    """
    Copy of content with start_time/end_time set on every word.

    Timings are matched to words by position in the flat word list; the
    per-paragraph word entries are updated through their ids.

    Raises:
        ValueError: If the alignment does not cover every word
    """
    updated = copy.deepcopy(content)
    words = updated.get("words", [])
    if len(alignment.timings) != len(words):
        raise ValueError(
            f"Alignment has {len(alignment.timings)} timings for {len(words)} words"
        )

    times_by_id = {}
    for word, timing in zip(words, alignment.timings):
        word["start_time"] = round(timing.start, 3)
        word["end_time"] = round(timing.end, 3)
        times_by_id[word["id"]] = (word["start_time"], word["end_time"])

    for paragraph in updated.get("content", {}).get("paragraphs", []):
        for word in paragraph.get("words", []):
            if word["id"] in times_by_id:
                word["start_time"], word["end_time"] = times_by_id[word["id"]]

    return updated
