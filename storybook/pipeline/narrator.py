"""
Chapter Narrator
================
Synthesis -> recognition -> alignment for one persisted chapter.

The narrator never invents timings: provider failures propagate and an
empty recognition result raises AlignmentImpossibleError.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from storybook.alignment.engine import AlignmentResult, TimingAlignmentEngine
from storybook.concurrency import CancellationToken
from storybook.errors import sanitize_filename
from storybook.pipeline.chapter_content import apply_timings, display_text, display_words
from storybook.storage.models import Chapter
from storybook.tts.base import SpeechRecognitionAdapter, SpeechSynthesisAdapter
from storybook.tts.text_prep import spoken_words


logger = logging.getLogger(__name__)

# Args: fraction complete (0-1), message
NarrationProgressCallback = Callable[[float, str], None]


@dataclass
class NarrationResult:
    """Output of narrating one chapter."""
    audio_url: str
    audio_path: Path
    content: dict[str, Any]
    timing_data: dict[str, Any]
    alignment: AlignmentResult


class ChapterNarrator:
    """
    Produces audio and per-word timings for a chapter.

    Example:
        narrator = ChapterNarrator(synthesizer, recognizer, Path("data/audio"))
        outcome = narrator.narrate(chapter)
        repository.update_chapter_narration(
            chapter.id, outcome.audio_url, outcome.content, outcome.timing_data
        )
    """

    def __init__(
        self,
        synthesizer: SpeechSynthesisAdapter,
        recognizer: SpeechRecognitionAdapter,
        audio_dir: Path,
        engine: Optional[TimingAlignmentEngine] = None,
        language: str = "es",
        scale_timings_to_audio: bool = False,
        min_word_duration: float = 0.05,
        audio_url_prefix: str = "/audio"
    ):
        self.synthesizer = synthesizer
        self.recognizer = recognizer
        self.audio_dir = Path(audio_dir)
        self.engine = engine or TimingAlignmentEngine()
        self.language = language
        self.scale_timings_to_audio = scale_timings_to_audio
        self.min_word_duration = min_word_duration
        self.audio_url_prefix = audio_url_prefix.rstrip("/")

    def _save_audio(self, chapter_id: str, audio: bytes) -> Path:
        self.audio_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{sanitize_filename(chapter_id)}_{int(time.time() * 1000)}.mp3"
        path = self.audio_dir / filename
        path.write_bytes(audio)
        return path

    def narrate(
        self,
        chapter: Chapter,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[NarrationProgressCallback] = None
    ) -> NarrationResult:
        """
        Narrate a chapter and time every word.

        Args:
            chapter: Persisted chapter with chapter JSON content
            cancel_token: Checked between provider calls
            on_progress: Optional progress callback

        Returns:
            NarrationResult with updated chapter JSON and timing data

        Raises:
            ValueError: The chapter has no words
            ProviderError / ProviderTimeoutError: Provider request failed
            AlignmentImpossibleError: Recognition returned no tokens
            CancelledException: Cancellation was requested
        """
        def report(fraction: float, message: str) -> None:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            if on_progress:
                on_progress(fraction, message)

        text = display_text(chapter.content)
        words = display_words(chapter.content)
        if not text or not words:
            raise ValueError(f"Chapter {chapter.id} has no words to narrate")

        report(0.0, "Synthesizing audio")
        synthesis = self.synthesizer.synthesize(text)
        audio_path = self._save_audio(chapter.id, synthesis.audio)
        logger.info(f"Saved {len(synthesis.audio)} bytes of audio for {chapter.id} to {audio_path}")

        report(0.4, "Transcribing audio")
        recognition = self.recognizer.transcribe(audio_path, language=self.language)

        report(0.8, "Aligning word timings")
        alignment = self.engine.align(
            words,
            spoken_words(synthesis.spoken_text),
            recognition.tokens,
            recognition.text,
        )
        alignment = self.engine.normalize_timings(
            alignment,
            audio_duration=recognition.duration or None,
            min_word_duration=self.min_word_duration,
            scale_to_audio=self.scale_timings_to_audio,
        )

        content = apply_timings(chapter.content, alignment)
        total_duration = recognition.duration or (alignment.timings[-1].end if alignment.timings else 0.0)
        timing_data = {
            "words": [timing.to_dict() for timing in alignment.timings],
            "totalDuration": round(total_duration, 3),
            "accuracy": alignment.accuracy,
            "matchedCount": alignment.matched_count,
            "substitutedCount": alignment.substituted_count,
            "interpolatedCount": alignment.interpolated_count,
            "voiceId": synthesis.voice_id,
        }

        report(1.0, "Narration complete")
        return NarrationResult(
            audio_url=f"{self.audio_url_prefix}/{audio_path.name}",
            audio_path=audio_path,
            content=content,
            timing_data=timing_data,
            alignment=alignment,
        )
