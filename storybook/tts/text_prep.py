"""
Text Preparation
================
Learner pacing for synthesis input and the inverse cleanup used to
recover the as-spoken words.
"""

import re


_SENTENCE_GAP = re.compile(r"([.!?])\s+")
_TEXT_END = re.compile(r"([.!?])$")
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_COMMA = re.compile(r",\s+")
_COLON = re.compile(r"[:;]\s+")
_CONNECTOR = re.compile(r"\s+(que|pero|y|como)\s+", re.IGNORECASE)

_PAUSE_MARKER = re.compile(r"\.{2,}")
_DASHES = re.compile("[\u2010-\u2015]")
_QUOTES = re.compile(r"[\"“”'‘’«»]")
_WHITESPACE = re.compile(r"\s+")


def add_learner_pauses(text: str) -> str:
    """
    Insert pause markers for a slow, learner-friendly reading pace.

    Long pauses after sentences, shorter ones at line breaks, commas,
    colons and semicolons, and a brief pause around the connectors
    que, pero, y and como.
    """
    processed = _SENTENCE_GAP.sub(r"\1..... ", text)
    processed = _TEXT_END.sub(r"\1.....", processed)

    # Placeholder keeps paragraph breaks from being rewritten as line breaks
    processed = _PARAGRAPH_BREAK.sub("...\x00", processed)
    processed = processed.replace("\n", "...\n").replace("\x00", "\n\n")

    processed = _COMMA.sub(",... ", processed)
    processed = _COLON.sub(lambda m: f"{m.group(0)}... ", processed)
    processed = _CONNECTOR.sub(r".. \1. ", processed)
    return processed


def clean_tts_text(text: str) -> str:
    """
    Remove pause markers and typographic noise from synthesis input.

    The result approximates what the narrator actually says, word for word.
    """
    cleaned = _PAUSE_MARKER.sub("", text)
    cleaned = cleaned.replace("…", "")
    cleaned = _DASHES.sub("-", cleaned)
    cleaned = _QUOTES.sub("", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned)
    return cleaned.strip()


def spoken_words(text: str) -> list[str]:
    """Whitespace tokens of cleaned synthesis input."""
    return clean_tts_text(text).split()
