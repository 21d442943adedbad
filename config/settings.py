"""
Application Settings
====================
Central configuration for the storybook pipeline.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field, fields
from typing import Any, Literal, Optional


_PATH_FIELDS = ("data_dir", "database_path", "audio_dir")
_SECRET_FIELDS = ("elevenlabs_api_key", "openai_api_key")

# Environment variable -> settings field
_ENV_MAP = {
    "STORYBOOK_DATA_DIR": "data_dir",
    "STORYBOOK_DATABASE": "database_path",
    "STORYBOOK_AUDIO_DIR": "audio_dir",
    "ELEVENLABS_API_KEY": "elevenlabs_api_key",
    "ELEVENLABS_VOICE_ID": "voice_id",
    "OPENAI_API_KEY": "openai_api_key",
    "STORYBOOK_TTS_PROVIDER": "tts_provider",
    "STORYBOOK_RECOGNITION_PROVIDER": "recognition_provider",
    "STORYBOOK_TTS_TIMEOUT": "tts_timeout_seconds",
    "STORYBOOK_RECOGNITION_TIMEOUT": "recognition_timeout_seconds",
    "STORYBOOK_MAX_WORKERS": "max_workers",
    "STORYBOOK_QUEUE_BATCH": "queue_batch_size",
    "STORYBOOK_MIN_CHAPTER_CHARS": "min_chapter_chars",
    "STORYBOOK_MIN_CHAPTER_WORDS": "min_chapter_words",
    "STORYBOOK_SCALE_TIMINGS": "scale_timings_to_audio",
    "STORYBOOK_LOG_LEVEL": "log_level",
    "STORYBOOK_HOST": "host",
    "STORYBOOK_PORT": "port",
}


def _coerce(value: str, current: Any) -> Any:
    """Convert an environment string to the type of the default value."""
    if isinstance(current, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


@dataclass
class Settings:
    """Application configuration settings."""

    # Paths
    data_dir: Path = field(default_factory=lambda: Path("data"))
    database_path: Path = field(default_factory=lambda: Path("data") / "storybook.db")
    audio_dir: Path = field(default_factory=lambda: Path("data") / "audio")

    # Speech providers
    tts_provider: str = "elevenlabs"
    recognition_provider: str = "whisper"
    elevenlabs_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    voice_id: str = "VR6AewLTigWG4xSOukaG"
    tts_model_id: str = "eleven_multilingual_v2"
    tts_timeout_seconds: float = 600.0
    recognition_timeout_seconds: float = 300.0
    tts_max_chunk_chars: int = 4500
    learner_pauses: bool = True
    recognition_language: str = "es"

    # Jobs
    max_workers: int = 2
    queue_batch_size: int = 5

    # Parsing
    min_chapter_chars: int = 50
    min_chapter_words: int = 20

    # Alignment
    scale_timings_to_audio: bool = False
    min_word_duration: float = 0.05

    # Service
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    def __post_init__(self):
        """Coerce path fields given as strings."""
        for name in _PATH_FIELDS:
            setattr(self, name, Path(getattr(self, name)))

    def ensure_dirs(self) -> None:
        """Create data and audio directories."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.audio_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        STORYBOOK_DATA_DIR also moves the database and audio defaults
        unless those are set explicitly.
        """
        environ = os.environ if environ is None else environ
        defaults = cls()
        values: dict[str, Any] = {}

        for env_name, field_name in _ENV_MAP.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            values[field_name] = _coerce(raw, getattr(defaults, field_name))

        if "data_dir" in values:
            data_dir = Path(values["data_dir"])
            values.setdefault("database_path", data_dir / "storybook.db")
            values.setdefault("audio_dir", data_dir / "audio")

        return cls(**values)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """Build settings from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self, redact: bool = True) -> dict[str, Any]:
        """Plain-dict view; API keys are masked unless redact is False."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Path):
                value = str(value)
            if redact and f.name in _SECRET_FIELDS and value:
                value = "***"
            out[f.name] = value
        return out
