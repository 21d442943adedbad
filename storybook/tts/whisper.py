"""
Whisper Recognizer
==================
Word-timestamped transcription through the OpenAI audio API.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from storybook.alignment.engine import RecognizedToken
from storybook.errors import ProviderError
from storybook.tts.base import HTTPProvider, RecognitionResult, SpeechRecognitionAdapter


logger = logging.getLogger(__name__)


@dataclass
class WhisperConfig:
    """Configuration for the Whisper recognizer."""
    api_key: Optional[str] = None
    model: str = "whisper-1"
    base_url: str = "https://api.openai.com"
    timeout_seconds: float = 300.0


class WhisperRecognizer(HTTPProvider, SpeechRecognitionAdapter):
    """OpenAI Whisper adapter returning word-level timestamps."""

    provider_name = "whisper"

    def __init__(self, config: Optional[WhisperConfig] = None):
        self.config = config or WhisperConfig()
        super().__init__(self.config.api_key, self.config.base_url, self.config.timeout_seconds)

    @property
    def name(self) -> str:
        return "whisper"

    def transcribe(self, audio_path: Path, language: str = "es") -> RecognitionResult:
        audio_path = Path(audio_path)
        if not audio_path.is_file():
            raise ProviderError(self.provider_name, f"audio file not found: {audio_path}")

        with audio_path.open("rb") as audio:
            response = self._post(
                "/v1/audio/transcriptions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                files={"file": (audio_path.name, audio, "audio/mpeg")},
                data={
                    "model": self.config.model,
                    "language": language,
                    "response_format": "verbose_json",
                    "timestamp_granularities[]": "word",
                },
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(self.provider_name, "response is not valid JSON") from exc

        tokens = [
            RecognizedToken(
                word=str(item.get("word", "")).strip(),
                start=float(item.get("start", 0.0)),
                end=float(item.get("end", 0.0)),
            )
            for item in payload.get("words") or []
        ]
        result = RecognitionResult(
            text=payload.get("text", ""),
            tokens=tokens,
            duration=float(payload.get("duration") or 0.0),
            language=payload.get("language", language),
        )

        logger.info(f"Transcribed {audio_path.name}: {len(tokens)} words, {result.duration:.1f}s")
        if not tokens:
            logger.warning(f"No word-level timing data returned for {audio_path.name}")
        return result
