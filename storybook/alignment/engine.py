"""
Timing Alignment Engine
=======================
Recovers per-word timestamps for display text from recognized speech.

Steps:
    1. Normalize display words, as-spoken words and recognized tokens
    2. Map each display word to its as-spoken form (bounded look-ahead)
    3. Needleman-Wunsch alignment of display words against tokens
    4. Copy token times onto matched and substituted words
    5. Interpolate unaligned runs between anchors
    6. Monotonic post-pass
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

from storybook.alignment.needleman_wunsch import EditOp, align_sequences
from storybook.alignment.text import GAP_PENALTY, similarity
from storybook.errors import AlignmentImpossibleError
from storybook.ingestion.segmenter import normalize_word


logger = logging.getLogger(__name__)

MATCHED = "matched"
SUBSTITUTED = "substituted"
INTERPOLATED = "interpolated"


@dataclass
class RecognizedToken:
    """A word reported by the speech recognizer."""
    word: str
    start: float
    end: float
    confidence: Optional[float] = None


@dataclass
class WordTiming:
    """Timing assigned to one display word."""
    index: int
    word: str
    start: float
    end: float
    status: str
    recognized: Optional[str] = None

    @property
    def is_anchor(self) -> bool:
        return self.status in (MATCHED, SUBSTITUTED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "word": self.word,
            "start": round(self.start, 3),
            "end": round(self.end, 3),
            "status": self.status,
            "recognized": self.recognized,
        }


@dataclass
class AlignmentResult:
    """Ordered timings, one per display word, plus alignment statistics."""
    timings: list[WordTiming] = field(default_factory=list)
    matched_count: int = 0
    substituted_count: int = 0
    interpolated_count: int = 0
    score: int = 0
    accuracy: str = "perfect"

    @property
    def anchored_rate(self) -> float:
        if not self.timings:
            return 1.0
        return (self.matched_count + self.substituted_count) / len(self.timings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "words": [timing.to_dict() for timing in self.timings],
            "matchedCount": self.matched_count,
            "substitutedCount": self.substituted_count,
            "interpolatedCount": self.interpolated_count,
            "score": self.score,
            "accuracy": self.accuracy,
        }


@dataclass
class AlignmentConfig:
    """Alignment tuning."""
    gap_penalty: int = GAP_PENALTY
    lookahead_window: int = 5
    spoken_match_threshold: float = 0.7
    perfect_threshold: float = 0.9
    good_threshold: float = 0.7


class TimingAlignmentEngine:
    """
    Aligns display words with recognized tokens.

    Stateless; one instance can serve concurrent jobs.

    Example:
        engine = TimingAlignmentEngine()
        tokens = [RecognizedToken("hola", 0.0, 0.4), RecognizedToken("maría", 0.5, 0.9)]
        result = engine.align(["¡Hola,", "María!"], [], tokens)
    """

    def __init__(self, config: Optional[AlignmentConfig] = None):
        self.config = config or AlignmentConfig()

    # ==================== Public API ====================

    def align(
        self,
        display_words: Sequence[str],
        tts_words: Sequence[str],
        whisper_words: Sequence[RecognizedToken],
        whisper_transcript: str = ""
    ) -> AlignmentResult:
        """
        Align display words against recognized tokens.

        Args:
            display_words: Words as shown to the reader
            tts_words: Words as sent to the synthesizer (may be empty)
            whisper_words: Recognized tokens with timestamps
            whisper_transcript: Full recognized text, for diagnostics

        Returns:
            AlignmentResult with exactly one timing per display word

        Raises:
            AlignmentImpossibleError: If there are no usable recognized tokens
        """
        if not display_words:
            return AlignmentResult()

        tokens = [token for token in whisper_words if normalize_word(token.word)]
        if not tokens:
            raise AlignmentImpossibleError(len(display_words))

        display_norm = [normalize_word(word) for word in display_words]
        token_norm = [normalize_word(token.word) for token in tokens]
        alternates = self._map_spoken_forms(display_words, tts_words)

        steps, score = align_sequences(display_norm, token_norm, alternates, self.config.gap_penalty)

        timings: list[Optional[WordTiming]] = [None] * len(display_words)
        for step in steps:
            if step.display_index is None or step.token_index is None:
                continue
            token = tokens[step.token_index]
            timings[step.display_index] = WordTiming(
                index=step.display_index,
                word=display_words[step.display_index],
                start=float(token.start),
                end=float(token.end),
                status=MATCHED if step.op is EditOp.MATCH else SUBSTITUTED,
                recognized=token.word,
            )

        filled = self._interpolate(list(display_words), display_norm, timings, tokens)
        self._enforce_monotonic(filled)

        matched = sum(1 for timing in filled if timing.status == MATCHED)
        substituted = sum(1 for timing in filled if timing.status == SUBSTITUTED)
        result = AlignmentResult(
            timings=filled,
            matched_count=matched,
            substituted_count=substituted,
            interpolated_count=len(filled) - matched - substituted,
            score=score,
        )
        result.accuracy = self._accuracy(result.anchored_rate)

        logger.info(
            f"Aligned {len(filled)} words against {len(tokens)} tokens: "
            f"{matched} matched, {substituted} substituted, "
            f"{result.interpolated_count} interpolated ({result.accuracy})"
        )
        if whisper_transcript and result.accuracy == "fallback":
            logger.debug(f"Low alignment accuracy; transcript: {whisper_transcript[:200]}")
        return result

    def normalize_timings(
        self,
        result: AlignmentResult,
        audio_duration: Optional[float] = None,
        min_word_duration: float = 0.05,
        scale_to_audio: bool = False
    ) -> AlignmentResult:
        """
        Post-process timings for playback.

        Optionally scales all times so the last word ends at audio_duration,
        then makes starts non-decreasing and gives every word at least
        min_word_duration.

        Returns:
            A new AlignmentResult; the input is left untouched
        """
        timings = [replace(timing) for timing in result.timings]
        if not timings:
            return replace(result, timings=timings)

        last_end = max(timing.end for timing in timings)
        if scale_to_audio and audio_duration and last_end > 0:
            factor = audio_duration / last_end
            for timing in timings:
                timing.start *= factor
                timing.end *= factor

        previous_end = 0.0
        for timing in timings:
            timing.start = max(timing.start, previous_end, 0.0)
            timing.end = max(timing.end, timing.start + min_word_duration)
            previous_end = timing.end

        return replace(result, timings=timings)

    # ==================== Internals ====================

    def _map_spoken_forms(
        self,
        display_words: Sequence[str],
        tts_words: Sequence[str]
    ) -> list[Optional[str]]:
        """
        Pair each display word with its as-spoken word.

        A display word first looks for a similar spoken word within
        lookahead_window words of the previous pairing. When none is similar
        (an abbreviation or a number read out as words), the spoken word at
        the cursor is taken as its form, provided the next display word
        re-syncs further ahead; the spoken words in between belong to the
        same display word.

        Example:
            ["Sr.", "García"] with ["señor", "García"] -> ["senor", "garcia"]
        """
        spoken = [normalize_word(word) for word in tts_words]
        spoken = [word for word in spoken if word]
        if not spoken:
            return [None] * len(display_words)

        threshold = self.config.spoken_match_threshold
        window = self.config.lookahead_window
        mapped: list[Optional[str]] = []
        cursor = 0

        for position, word in enumerate(display_words):
            if cursor >= len(spoken):
                mapped.append(None)
                continue

            best_index = None
            best_score = threshold
            for candidate in range(cursor, min(cursor + window, len(spoken))):
                score = similarity(word, spoken[candidate])
                if score >= best_score and (best_index is None or score > best_score):
                    best_index, best_score = candidate, score
            if best_index is not None:
                mapped.append(spoken[best_index])
                cursor = best_index + 1
                continue

            step = self._resync_step(display_words, position, spoken, cursor)
            if step is None:
                mapped.append(None)
            else:
                mapped.append(spoken[cursor])
                cursor += step
        return mapped

    def _resync_step(
        self,
        display_words: Sequence[str],
        position: int,
        spoken: list[str],
        cursor: int
    ) -> Optional[int]:
        """
        Number of spoken words consumed by an unmatched display word, or None.

        None when the next display word already matches at the cursor (the
        unmatched word was not spoken) or re-syncs nowhere in the window.
        """
        if position + 1 >= len(display_words):
            return len(spoken) - cursor

        following = display_words[position + 1]
        threshold = self.config.spoken_match_threshold
        if similarity(following, spoken[cursor]) >= threshold:
            return None
        for step in range(1, self.config.lookahead_window):
            if cursor + step >= len(spoken):
                break
            if similarity(following, spoken[cursor + step]) >= threshold:
                return step
        return None

    @staticmethod
    def _spread(
        indices: list[int],
        words: list[str],
        norms: list[str],
        start: float,
        end: float
    ) -> list[WordTiming]:
        """Split [start, end] across words proportionally to normalized length."""
        end = max(end, start)
        weights = [max(len(norms[i]), 1) for i in indices]
        total = float(sum(weights))
        span = end - start

        out = []
        cursor = start
        for index, weight in zip(indices, weights):
            word_end = cursor + span * weight / total
            out.append(WordTiming(index, words[index], cursor, word_end, INTERPOLATED))
            cursor = word_end
        return out

    def _interpolate(
        self,
        words: list[str],
        norms: list[str],
        timings: list[Optional[WordTiming]],
        tokens: list[RecognizedToken]
    ) -> list[WordTiming]:
        anchors = [timing for timing in timings if timing is not None]
        if not anchors:
            spread = self._spread(list(range(len(words))), words, norms, tokens[0].start, tokens[-1].end)
            return spread

        average = sum(a.end - a.start for a in anchors) / len(anchors)
        filled: list[WordTiming] = list(timings)  # type: ignore[arg-type]

        position = 0
        while position < len(timings):
            if timings[position] is not None:
                position += 1
                continue

            run_start = position
            while position < len(timings) and timings[position] is None:
                position += 1
            run = list(range(run_start, position))
            before = timings[run_start - 1] if run_start > 0 else None
            after = timings[position] if position < len(timings) else None

            if before is not None and after is not None:
                start, end = before.end, after.start
            elif after is not None:
                end = after.start
                start = max(0.0, end - average * len(run))
            else:
                start = before.end
                end = start + average * len(run)

            for timing in self._spread(run, words, norms, start, end):
                filled[timing.index] = timing

        return filled

    @staticmethod
    def _enforce_monotonic(timings: list[WordTiming]) -> None:
        previous_start = 0.0
        previous_end = 0.0
        for timing in timings:
            if timing.start < previous_start:
                timing.start = previous_start
            if timing.status == INTERPOLATED and timing.start < previous_end:
                timing.start = previous_end
            if timing.end < timing.start:
                timing.end = timing.start
            previous_start, previous_end = timing.start, timing.end

    def _accuracy(self, anchored_rate: float) -> str:
        if anchored_rate >= self.config.perfect_threshold:
            return "perfect"
        if anchored_rate >= self.config.good_threshold:
            return "good"
        return "fallback"
