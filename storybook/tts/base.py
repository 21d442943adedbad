"""
Speech Adapter Interfaces
=========================
Abstract base classes for speech synthesis and recognition providers.
Enables pluggable providers (ElevenLabs, Whisper, future).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import requests

from storybook.alignment.engine import RecognizedToken
from storybook.errors import ProviderError, ProviderNotConfiguredError, ProviderTimeoutError


logger = logging.getLogger(__name__)


@dataclass
class SynthesisResult:
    """Audio produced by a synthesis provider."""
    audio: bytes
    spoken_text: str
    content_type: str = "audio/mpeg"
    voice_id: Optional[str] = None
    chunk_count: int = 1


@dataclass
class RecognitionResult:
    """Transcript with word timestamps from a recognition provider."""
    text: str
    tokens: list[RecognizedToken] = field(default_factory=list)
    duration: float = 0.0
    language: str = "es"


class HTTPProvider:
    """
    Shared request handling for HTTP speech providers.

    Maps transport failures onto the pipeline's provider errors.
    """

    provider_name = "provider"

    def __init__(self, api_key: Optional[str], base_url: str, timeout_seconds: float):
        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _require_api_key(self) -> None:
        if not self.api_key:
            raise ProviderNotConfiguredError(self.provider_name, details="API key is missing")

    def _post(self, endpoint_path: str, **kwargs: Any) -> requests.Response:
        """
        POST to the provider and return the successful response.

        Raises:
            ProviderTimeoutError: The request exceeded timeout_seconds
            ProviderError: Transport failure or non-2xx status
        """
        self._require_api_key()
        endpoint = f"{self.base_url}{endpoint_path}"
        try:
            response = requests.post(endpoint, timeout=self.timeout_seconds, **kwargs)
            response.raise_for_status()
        except requests.Timeout as exc:
            logger.error(f"{self.provider_name} request timed out after {self.timeout_seconds}s")
            raise ProviderTimeoutError(self.provider_name, self.timeout_seconds) from exc
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            body = exc.response.text[:200] if exc.response is not None else ""
            logger.error(f"{self.provider_name} returned HTTP {status}: {body}")
            raise ProviderError(self.provider_name, body or str(exc), status_code=status) from exc
        except requests.RequestException as exc:
            logger.error(f"{self.provider_name} transport error: {exc}")
            raise ProviderError(self.provider_name, f"transport error: {exc}") from exc
        return response


class SpeechSynthesisAdapter(ABC):
    """
    Text-to-speech provider contract.

    Implementations:
        - ElevenLabsSynthesizer: ElevenLabs REST API
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider identifier, e.g. 'elevenlabs'."""
        pass

    @abstractmethod
    def synthesize(self, text: str) -> SynthesisResult:
        """
        Convert display text to audio.

        Args:
            text: Display text; providers apply their own text preparation

        Returns:
            SynthesisResult with audio bytes and the text actually spoken

        Raises:
            ProviderError: Request failed
            ProviderTimeoutError: Request timed out
        """
        pass


class SpeechRecognitionAdapter(ABC):
    """
    Speech-to-text provider contract with word-level timestamps.

    Implementations:
        - WhisperRecognizer: OpenAI transcription API
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider identifier, e.g. 'whisper'."""
        pass

    @abstractmethod
    def transcribe(self, audio_path: Path, language: str = "es") -> RecognitionResult:
        """
        Transcribe an audio file.

        Args:
            audio_path: Path to the audio file
            language: ISO language code

        Returns:
            RecognitionResult with timestamped tokens in audio order
        """
        pass
