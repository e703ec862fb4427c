"""Tests for configuration loading and saving."""

import json

from voicenote.core.config import AppConfig, ConfigManager
from voicenote.core.models import ArtifactFormat, AudioSource


class TestConfigManager:

    def test_missing_file_gives_defaults(self, tmp_path):
        manager = ConfigManager(tmp_path / "config.json")
        config = manager.config
        assert config.audio_chunk_interval_ms == 100
        assert config.analyzer_fft_size == 256
        assert config.analyzer_smoothing == 0.8
        assert config.transcription_language == "auto"
        assert config.audio_format is ArtifactFormat.NATIVE_CONTAINER
        assert not (tmp_path / "config.json").exists()

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        manager = ConfigManager(path)
        manager.config.audio_source = AudioSource.SYSTEM_OUTPUT
        manager.config.openai_api_key = "sk-test"
        manager.set_last_selected_device("2")

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["audio_source"] == "system"
        assert data["last_selected_device"] == "2"

        reloaded = ConfigManager(path).config
        assert reloaded.audio_source is AudioSource.SYSTEM_OUTPUT
        assert reloaded.openai_api_key == "sk-test"

    def test_unreadable_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")
        assert ConfigManager(path).config == AppConfig()

    def test_invalid_values_give_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"analyzer_smoothing": 5}), encoding="utf-8")
        assert ConfigManager(path).config.analyzer_smoothing == 0.8

    def test_save_directory_falls_back_to_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        manager = ConfigManager(tmp_path / "config.json")
        assert manager.get_default_save_directory() == tmp_path
        manager.set_default_save_directory(str(tmp_path / "docs"))
        assert manager.get_default_save_directory() == tmp_path / "docs"
