"""
Settings Tests
==============
Environment loading, type coercion and redaction.
"""

from pathlib import Path

from config.settings import Settings


class TestSettings:

    def test_defaults(self):
        settings = Settings()
        assert settings.database_path == Path("data") / "storybook.db"
        assert settings.tts_provider == "elevenlabs"
        assert settings.learner_pauses is True

    def test_string_paths_are_coerced(self):
        assert Settings(audio_dir="/tmp/audio").audio_dir == Path("/tmp/audio")

    def test_data_dir_moves_derived_paths(self):
        settings = Settings.from_env({"STORYBOOK_DATA_DIR": "/srv/storybook"})

        assert settings.data_dir == Path("/srv/storybook")
        assert settings.database_path == Path("/srv/storybook/storybook.db")
        assert settings.audio_dir == Path("/srv/storybook/audio")

    def test_explicit_paths_win(self):
        settings = Settings.from_env({
            "STORYBOOK_DATA_DIR": "/srv/storybook",
            "STORYBOOK_DATABASE": "/var/db/books.db",
        })
        assert settings.database_path == Path("/var/db/books.db")
        assert settings.audio_dir == Path("/srv/storybook/audio")

    def test_types_are_coerced(self):
        settings = Settings.from_env({
            "STORYBOOK_MAX_WORKERS": "4",
            "STORYBOOK_TTS_TIMEOUT": "90",
            "STORYBOOK_SCALE_TIMINGS": "yes",
            "STORYBOOK_PORT": "9000",
        })
        assert settings.max_workers == 4
        assert settings.tts_timeout_seconds == 90.0
        assert settings.scale_timings_to_audio is True
        assert settings.port == 9000

    def test_empty_values_are_ignored(self):
        assert Settings.from_env({"ELEVENLABS_API_KEY": ""}).elevenlabs_api_key is None

    def test_redaction(self):
        settings = Settings(elevenlabs_api_key="secret", openai_api_key=None)

        redacted = settings.to_dict()
        assert redacted["elevenlabs_api_key"] == "***"
        assert redacted["openai_api_key"] is None
        assert redacted["data_dir"] == "data"
        assert settings.to_dict(redact=False)["elevenlabs_api_key"] == "secret"

    def test_from_dict_ignores_unknown_keys(self):
        settings = Settings.from_dict({"voice_id": "voz", "theme": "dark"})
        assert settings.voice_id == "voz"

    def test_ensure_dirs(self, tmp_path):
        settings = Settings(
            data_dir=tmp_path / "d",
            database_path=tmp_path / "d" / "db" / "s.db",
            audio_dir=tmp_path / "d" / "audio",
        )
        settings.ensure_dirs()
        assert (tmp_path / "d" / "db").is_dir()
        assert (tmp_path / "d" / "audio").is_dir()
