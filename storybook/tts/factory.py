"""
Speech Provider Factory
=======================
Registry for creating synthesis and recognition adapters by name.
Enables runtime selection of providers from settings.
"""

from typing import Any, Callable, Optional, Type

from storybook.errors import ProviderNotConfiguredError
from storybook.tts.base import SpeechRecognitionAdapter, SpeechSynthesisAdapter
from storybook.tts.elevenlabs import ElevenLabsConfig, ElevenLabsSynthesizer
from storybook.tts.whisper import WhisperConfig, WhisperRecognizer


def _elevenlabs_from_settings(settings: Any) -> ElevenLabsSynthesizer:
    return ElevenLabsSynthesizer(ElevenLabsConfig(
        api_key=settings.elevenlabs_api_key,
        voice_id=settings.voice_id,
        model_id=settings.tts_model_id,
        timeout_seconds=settings.tts_timeout_seconds,
        max_chunk_chars=settings.tts_max_chunk_chars,
        learner_pauses=settings.learner_pauses,
    ))


def _whisper_from_settings(settings: Any) -> WhisperRecognizer:
    return WhisperRecognizer(WhisperConfig(
        api_key=settings.openai_api_key,
        timeout_seconds=settings.recognition_timeout_seconds,
    ))


class ProviderFactory:
    """
    Factory for speech adapters.

    Usage:
        synthesizer = ProviderFactory.create_synthesizer("elevenlabs", settings)
        recognizer = ProviderFactory.create_recognizer("whisper", settings)

        # Register a custom provider
        ProviderFactory.register_synthesizer("custom", build_custom)
    """

    _synthesizers: dict[str, Callable[[Any], SpeechSynthesisAdapter]] = {
        "elevenlabs": _elevenlabs_from_settings,
    }

    _recognizers: dict[str, Callable[[Any], SpeechRecognitionAdapter]] = {
        "whisper": _whisper_from_settings,
    }

    @classmethod
    def create_synthesizer(cls, name: str, settings: Any) -> SpeechSynthesisAdapter:
        """
        Create a synthesis adapter.

        Args:
            name: Provider identifier ('elevenlabs', ...)
            settings: Application settings holding keys and tuning

        Raises:
            ProviderNotConfiguredError: If the provider is not registered
        """
        builder = cls._synthesizers.get(name.lower())
        if builder is None:
            raise ProviderNotConfiguredError(
                name, details=f"Available: {', '.join(cls.available_synthesizers())}"
            )
        return builder(settings)

    @classmethod
    def create_recognizer(cls, name: str, settings: Any) -> SpeechRecognitionAdapter:
        """Create a recognition adapter; see create_synthesizer."""
        builder = cls._recognizers.get(name.lower())
        if builder is None:
            raise ProviderNotConfiguredError(
                name, details=f"Available: {', '.join(cls.available_recognizers())}"
            )
        return builder(settings)

    @classmethod
    def register_synthesizer(
        cls,
        name: str,
        builder: Callable[[Any], SpeechSynthesisAdapter] | Type[SpeechSynthesisAdapter]
    ) -> None:
        cls._synthesizers[name.lower()] = builder

    @classmethod
    def register_recognizer(
        cls,
        name: str,
        builder: Callable[[Any], SpeechRecognitionAdapter] | Type[SpeechRecognitionAdapter]
    ) -> None:
        cls._recognizers[name.lower()] = builder

    @classmethod
    def unregister(cls, name: str) -> None:
        """
        Remove a provider from both registries.

        Raises:
            KeyError: If the name is not registered
        """
        name = name.lower()
        if name not in cls._synthesizers and name not in cls._recognizers:
            raise KeyError(f"Provider '{name}' not registered")
        cls._synthesizers.pop(name, None)
        cls._recognizers.pop(name, None)

    @classmethod
    def available_synthesizers(cls) -> list[str]:
        return sorted(cls._synthesizers)

    @classmethod
    def available_recognizers(cls) -> list[str]:
        return sorted(cls._recognizers)


def create_adapters(
    settings: Any,
    synthesizer: Optional[str] = None,
    recognizer: Optional[str] = None
) -> tuple[SpeechSynthesisAdapter, SpeechRecognitionAdapter]:
    """Build the configured synthesis and recognition adapters."""
    return (
        ProviderFactory.create_synthesizer(synthesizer or settings.tts_provider, settings),
        ProviderFactory.create_recognizer(recognizer or settings.recognition_provider, settings),
    )
