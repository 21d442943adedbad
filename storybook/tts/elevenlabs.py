"""
ElevenLabs Synthesizer
======================
Text-to-speech through the ElevenLabs REST API, tuned for slow,
clear narration for Spanish learners.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from storybook.ingestion.segmenter import TextSegmenter
from storybook.tts.base import HTTPProvider, SpeechSynthesisAdapter, SynthesisResult
from storybook.tts.chunker import ChunkConfig, TextChunker
from storybook.tts.text_prep import add_learner_pauses


logger = logging.getLogger(__name__)

DEFAULT_VOICE_ID = "VR6AewLTigWG4xSOukaG"


def _learner_voice_settings() -> dict:
    return {
        "stability": 0.95,
        "similarity_boost": 0.15,
        "style": 0.05,
        "use_speaker_boost": False,
    }


@dataclass
class ElevenLabsConfig:
    """Configuration for the ElevenLabs synthesizer."""
    api_key: Optional[str] = None
    voice_id: str = DEFAULT_VOICE_ID
    model_id: str = "eleven_multilingual_v2"
    base_url: str = "https://api.elevenlabs.io"
    timeout_seconds: float = 600.0
    max_chunk_chars: int = 4500
    learner_pauses: bool = True
    voice_settings: dict = field(default_factory=_learner_voice_settings)


class ElevenLabsSynthesizer(HTTPProvider, SpeechSynthesisAdapter):
    """
    ElevenLabs text-to-speech adapter.

    Long text is split into chunks of at most max_chunk_chars; the MP3
    responses are concatenated in order.
    """

    provider_name = "elevenlabs"

    def __init__(self, config: Optional[ElevenLabsConfig] = None):
        self.config = config or ElevenLabsConfig()
        super().__init__(self.config.api_key, self.config.base_url, self.config.timeout_seconds)
        self._segmenter = TextSegmenter()
        self._chunker = TextChunker(ChunkConfig(max_chars=self.config.max_chunk_chars), self._segmenter)

    @property
    def name(self) -> str:
        return "elevenlabs"

    def prepare_text(self, text: str) -> str:
        """Synthesis input for display text, paragraph by paragraph."""
        paragraphs = self._segmenter.split_paragraphs(text)
        if self.config.learner_pauses:
            paragraphs = [add_learner_pauses(paragraph) for paragraph in paragraphs]
        return "\n\n".join(paragraphs)

    def _synthesize_chunk(self, text: str) -> bytes:
        response = self._post(
            f"/v1/text-to-speech/{self.config.voice_id}",
            headers={
                "Accept": "audio/mpeg",
                "Content-Type": "application/json",
                "xi-api-key": self.api_key,
            },
            json={
                "text": text,
                "model_id": self.config.model_id,
                "voice_settings": self.config.voice_settings,
            },
        )
        return response.content

    def synthesize(self, text: str) -> SynthesisResult:
        spoken_text = self.prepare_text(text)
        chunks = self._chunker.chunk(spoken_text)
        logger.info(
            f"Synthesizing {len(text)} characters ({len(spoken_text)} with pauses) "
            f"in {len(chunks)} request(s) with voice {self.config.voice_id}"
        )

        audio = b"".join(self._synthesize_chunk(chunk) for chunk in chunks)
        return SynthesisResult(
            audio=audio,
            spoken_text=spoken_text,
            content_type="audio/mpeg",
            voice_id=self.config.voice_id,
            chunk_count=len(chunks),
        )
