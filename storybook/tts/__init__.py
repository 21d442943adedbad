"""
TTS Module
==========
Speech synthesis and recognition adapters.

Adapter Pattern:
    - SpeechSynthesisAdapter: Abstract base for synthesis providers
    - SpeechRecognitionAdapter: Abstract base for recognition providers
    - ElevenLabsSynthesizer / WhisperRecognizer: HTTP implementations
    - ProviderFactory: Registry for creating adapters by name
"""

from .base import (
    RecognitionResult,
    SpeechRecognitionAdapter,
    SpeechSynthesisAdapter,
    SynthesisResult,
)
from .chunker import ChunkConfig, TextChunker
from .elevenlabs import ElevenLabsConfig, ElevenLabsSynthesizer
from .factory import ProviderFactory, create_adapters
from .text_prep import add_learner_pauses, clean_tts_text, spoken_words
from .whisper import WhisperConfig, WhisperRecognizer

__all__ = [
    "ChunkConfig",
    "ElevenLabsConfig",
    "ElevenLabsSynthesizer",
    "ProviderFactory",
    "RecognitionResult",
    "SpeechRecognitionAdapter",
    "SpeechSynthesisAdapter",
    "SynthesisResult",
    "TextChunker",
    "WhisperConfig",
    "WhisperRecognizer",
    "add_learner_pauses",
    "clean_tts_text",
    "create_adapters",
    "spoken_words",
]
