"""
Text Segmenter Module
=====================
Splits Spanish prose into paragraphs, sentences and words.

Sentence detection is punctuation driven with guards for common Spanish
abbreviations and initials. Words carry a comparison form (lower-case, no
diacritics, no punctuation) plus light learner annotations: a heuristic
lemma, a coarse part of speech and a clickable flag.
"""

import re
import unicodedata
from typing import Optional

from storybook.ingestion.document import Word


# Paragraphs are separated by blank lines
_PARAGRAPH_BREAK = re.compile(r"\r?\n\s*\r?\n")

# Terminal run, closing quotes/brackets, whitespace, then a sentence opener
_SENTENCE_BOUNDARY = re.compile(
    r"([.!?…]+)"
    r"([\"'»”’)\]]*)"
    r"(\s+)"
    r"(?=[A-ZÁÉÍÓÚÑÜ¿¡\"'«“‘\-—–\d])"
)

_TOKEN = re.compile(r"\S+")
_NON_WORD = re.compile(r"[\W_]+")
_LEADING_PUNCTUATION = re.compile(r"^[^\w]+")

ABBREVIATIONS = frozenset({
    "sr.", "sra.", "srta.", "dr.", "dra.", "ud.", "uds.",
    "etc.", "p.ej.", "vs.", "pág.", "núm.", "aprox.",
})

STOPWORDS = frozenset({
    "el", "la", "de", "que", "y", "a", "en", "un", "es", "se", "no", "te",
    "lo", "le", "da", "su", "por", "son", "con", "para", "al", "del", "los",
    "las", "me", "una", "como", "muy", "si", "más", "pero", "sus", "fue", "ser",
})

ARTICLES = frozenset({"el", "la", "los", "las", "un", "una", "unos", "unas"})

PREPOSITIONS = frozenset({
    "de", "a", "en", "con", "por", "para", "desde", "hasta", "sin",
})

_VERB_ENDING = re.compile(r"(ar|er|ir|ando|endo|ado|ido)$")

# Gerund and participle endings mapped to an infinitive ending
_LEMMA_RULES = (
    ("iendo", "er"),
    ("yendo", "er"),
    ("ando", "ar"),
    ("endo", "er"),
    ("ado", "ar"),
    ("ido", "ir"),
)


def normalize_word(text: str) -> str:
    """
    Comparison form of a word.

    Lower-cases, decomposes (NFD), drops combining marks and strips every
    non-alphanumeric character.

    Example:
        normalize_word("¡María!") -> "maria"
    """
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_WORD.sub("", stripped)


def _clean(text: str) -> str:
    """Lower-case form that keeps diacritics but drops punctuation."""
    return _NON_WORD.sub("", unicodedata.normalize("NFC", text.lower()))


def guess_lemma(clean: str) -> str:
    """Approximate the infinitive of gerunds and participles."""
    for ending, replacement in _LEMMA_RULES:
        stem = clean[: -len(ending)]
        if clean.endswith(ending) and len(stem) >= 2:
            return stem + replacement
    return clean


def guess_pos(clean: str) -> str:
    if clean in ARTICLES:
        return "article"
    if clean in PREPOSITIONS:
        return "preposition"
    if _VERB_ENDING.search(clean):
        return "verb"
    return "noun"


def is_clickable(clean: str, normalized: str) -> bool:
    if clean in STOPWORDS or normalized in STOPWORDS:
        return False
    return len(normalized) > 2 and clean.isalpha()


class TextSegmenter:
    """
    Stateless paragraph, sentence and word splitter.

    Safe to share between threads.
    """

    def __init__(self, abbreviations: Optional[frozenset[str]] = None):
        self.abbreviations = abbreviations if abbreviations is not None else ABBREVIATIONS

    # ==================== Paragraphs ====================

    def split_paragraphs(self, text: str) -> list[str]:
        """
        Split text on blank lines.

        Returns:
            Non-empty paragraphs with internal whitespace collapsed
        """
        if not text:
            return []
        paragraphs = []
        for block in _PARAGRAPH_BREAK.split(text):
            collapsed = " ".join(block.split())
            if collapsed:
                paragraphs.append(collapsed)
        return paragraphs

    # ==================== Sentences ====================

    def _is_guarded(self, text: str, punct_start: int, punctuation: str) -> bool:
        """True when the period belongs to an abbreviation or an initial."""
        if punctuation != ".":
            return False
        token_start = text.rfind(" ", 0, punct_start) + 1
        token = _LEADING_PUNCTUATION.sub("", text[token_start:punct_start])
        if not token:
            return False
        if len(token) == 1 and token.isalpha():
            return True
        return f"{token}.".lower() in self.abbreviations

    def sentence_spans(self, text: str) -> list[tuple[int, int]]:
        """
        Character spans of each sentence in text.

        Spans exclude surrounding whitespace and include terminal punctuation
        and closing quotes.
        """
        spans = []
        start = 0
        for match in _SENTENCE_BOUNDARY.finditer(text):
            if self._is_guarded(text, match.start(1), match.group(1)):
                continue
            end = match.end(2)
            spans.append((start, end))
            start = match.end()
        spans.append((start, len(text)))

        trimmed = []
        for span_start, span_end in spans:
            segment = text[span_start:span_end]
            if not segment.strip():
                continue
            lead = len(segment) - len(segment.lstrip())
            trail = len(segment) - len(segment.rstrip())
            trimmed.append((span_start + lead, span_end - trail))
        return trimmed

    def split_sentences(self, text: str) -> list[str]:
        """Split a paragraph into sentences, keeping terminal punctuation."""
        return [text[start:end] for start, end in self.sentence_spans(text)]

    # ==================== Words ====================

    def split_words(self, sentence: str, start_id: int = 0) -> list[Word]:
        """
        Split a sentence into display words.

        Tokens whose comparison form is empty (pure punctuation such as a
        dialogue dash) are skipped.

        Args:
            sentence: Sentence text
            start_id: ID assigned to the first word

        Returns:
            Words with offsets relative to the sentence
        """
        words = []
        next_id = start_id
        for match in _TOKEN.finditer(sentence):
            surface = match.group()
            normalized = normalize_word(surface)
            if not normalized:
                continue
            clean = _clean(surface)
            words.append(Word(
                id=next_id,
                text=surface,
                normalized=normalized,
                lemma=guess_lemma(clean),
                pos=guess_pos(clean),
                clickable=is_clickable(clean, normalized),
                start_index=match.start(),
                end_index=match.end(),
            ))
            next_id += 1
        return words
