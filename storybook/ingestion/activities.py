"""
Activity Section Parser
=======================
Parses the learner activities that follow a chapter's story text.

The activities block starts at "Part 1 – Vocabulary Support" and holds up
to five parts, each with its own line format.
"""

import logging
import re
from typing import Callable, Optional

from storybook.ingestion.document import Activity
from storybook.storage.models import ActivityType


logger = logging.getLogger(__name__)

ACTIVITIES_MARKER = re.compile(r"\bPart\s+1\s*[–-]?\s*Vocabulary\s+Support", re.IGNORECASE)

_PART_PATTERNS = (
    (1, ActivityType.VOCABULARY_SUPPORT, re.compile(r"Part\s+1\s*[–-]?\s*Vocabulary\s+Support", re.IGNORECASE)),
    (2, ActivityType.COMPREHENSION_QUESTIONS, re.compile(r"Part\s+2\s*[–-]?\s*Comprehension\s+Questions", re.IGNORECASE)),
    (3, ActivityType.TRUE_FALSE, re.compile(r"Part\s+3\s*[–-]?\s*True\s+or\s+False", re.IGNORECASE)),
    (4, ActivityType.MATCHING, re.compile(r"Part\s+4\s*[–-]?\s*Vocabulary\s+Match\s+up", re.IGNORECASE)),
    (5, ActivityType.WRITING_PROMPTS, re.compile(r"Part\s+5\s*[–-]?\s*Writing\s+Prompts", re.IGNORECASE)),
)

_VOCAB_LINE = re.compile(r"^(.+?)\s*[=→]\s*(.+)$")
_NUMBER_LINE = re.compile(r"^(\d+)$")


def split_story_and_activities(body: str) -> tuple[str, str]:
    """
    Split chapter body text at the activities marker.

    Returns:
        (story text, activities text); activities text is empty when the
        marker is absent
    """
    match = ACTIVITIES_MARKER.search(body)
    if match is None:
        return body, ""
    return body[:match.start()], body[match.start():]


def _lines(content: str) -> list[str]:
    return [line.strip() for line in content.split("\n") if line.strip()]


def _skips(line: str, markers: tuple[str, ...]) -> bool:
    return any(marker in line for marker in markers)


# ==================== Part parsers ====================

def parse_vocabulary(content: str) -> dict:
    vocabulary = []
    for line in _lines(content):
        if _skips(line, ("Part 1", "Vocabulary Support", "Glossary")):
            continue
        match = _VOCAB_LINE.match(line)
        if match:
            vocabulary.append({"spanish": match.group(1).strip(), "english": match.group(2).strip()})
    return {"vocabulary": vocabulary}


def parse_comprehension(content: str) -> dict:
    questions = []
    for line in _lines(content):
        if _skips(line, ("Part 2", "Comprehension Questions", "Answer in", "words")):
            continue
        if line.endswith("?") and len(line) > 10:
            questions.append(line)
    return {"questions": questions}


def parse_true_false(content: str) -> dict:
    statements = []
    for line in _lines(content):
        if _skips(line, ("Part 3", "True or False", "Write T", "false", "Part")):
            continue
        if not line.endswith("?") and len(line) > 10:
            statements.append({"statement": line})
    return {"statements": statements}


def parse_matching(content: str) -> dict:
    """
    Pairs appear as a bare number line, a Spanish line, then an English line.
    """
    pairs = []
    number: Optional[int] = None
    spanish = ""

    for line in _lines(content):
        if _skips(line, ("Part 4", "Match", "Spanish", "English", "numbers", "boxes")):
            continue
        number_match = _NUMBER_LINE.match(line)
        if number_match:
            number = int(number_match.group(1))
            continue
        if number is not None and len(line) > 2 and not spanish:
            spanish = line
            continue
        if spanish and len(line) > 2:
            pairs.append({"spanish": spanish, "english": line, "number": number})
            spanish = ""
            number = None

    return {"matchingPairs": pairs}


def parse_writing_prompts(content: str) -> dict:
    prompts = []
    for line in _lines(content):
        if _skips(line, ("Part 5", "Writing Prompts", "Write short sentences", "per question")):
            continue
        if len(line) > 15 and ("Write" in line or "Imagine" in line or line.endswith("?")):
            prompts.append(line)
    return {"prompts": prompts}


_PARSERS: dict[ActivityType, tuple[str, str, Callable[[str], dict]]] = {
    ActivityType.VOCABULARY_SUPPORT: (
        "Vocabulary Support",
        "Glossary of key vocabulary words from the chapter",
        parse_vocabulary,
    ),
    ActivityType.COMPREHENSION_QUESTIONS: (
        "Comprehension Questions",
        "Questions to test understanding of the chapter content",
        parse_comprehension,
    ),
    ActivityType.TRUE_FALSE: (
        "True or False",
        "Determine if statements about the chapter are true or false",
        parse_true_false,
    ),
    ActivityType.MATCHING: (
        "Vocabulary Match Up",
        "Match Spanish words with their English meanings",
        parse_matching,
    ),
    ActivityType.WRITING_PROMPTS: (
        "Writing Prompts",
        "Creative writing exercises to practice Spanish",
        parse_writing_prompts,
    ),
}


def parse_activities(text: str) -> list[Activity]:
    """
    Parse the activities block into up to five activity sections.

    Args:
        text: Activities text, lines separated by newlines

    Returns:
        Activities ordered by part number; parts absent from the text are
        omitted
    """
    if not text.strip():
        return []

    markers = []
    for part, activity_type, pattern in _PART_PATTERNS:
        match = pattern.search(text)
        if match:
            markers.append((match.start(), part, activity_type))
    markers.sort()

    activities = []
    for position, (start, part, activity_type) in enumerate(markers):
        end = markers[position + 1][0] if position + 1 < len(markers) else len(text)
        title, description, parser = _PARSERS[activity_type]
        activities.append(Activity(
            activity_type=activity_type,
            title=title,
            description=description,
            data=parser(text[start:end]),
            sort_order=part,
        ))

    logger.debug(f"Parsed {len(activities)} activity sections")
    return activities
