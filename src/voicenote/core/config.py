"""Application configuration management"""

import json
import sys
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field
from loguru import logger

from .models import ArtifactFormat, AudioSource, DEFAULT_TITLE


class AppConfig(BaseModel):
    """Application configuration"""

    # Directory for saved documents and audio (current directory if None)
    default_save_directory: Optional[str] = None
    default_title: str = DEFAULT_TITLE

    # Audio capture settings
    audio_source: AudioSource = AudioSource.MICROPHONE
    audio_format: ArtifactFormat = ArtifactFormat.NATIVE_CONTAINER
    audio_sample_rate: int = 44100
    audio_channels: int = 1  # mono for speech
    audio_bitrate: int = 128  # kbps for mp3
    audio_chunk_interval_ms: int = Field(default=100, gt=0)  # hand-off cadence
    last_selected_device: Optional[str] = None

    # Level meter settings
    analyzer_fft_size: int = 256
    analyzer_smoothing: float = Field(default=0.8, ge=0.0, lt=1.0)
    analyzer_refresh_hz: float = Field(default=60.0, gt=0)

    # Transcription settings
    transcription_language: str = "auto"  # "auto" = auto-detect, "en", "de", etc.
    realtime_enabled: bool = False
    realtime_backend: str = "local"  # "local" (faster-whisper) or "api"

    # Local faster-whisper settings
    transcription_model: str = "small"
    transcription_device: str = "cpu"
    transcription_compute_type: str = "int8"

    # OpenAI-compatible transcription endpoint
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "whisper-1"
    openai_timeout: float = 120.0

    log_level: str = "INFO"


def get_config_dir() -> Path:
    """Get the application config directory"""
    if sys.platform == "win32":
        config_dir = Path.home() / "AppData" / "Local" / "VoiceNote"
    elif sys.platform == "darwin":
        config_dir = Path.home() / "Library" / "Application Support" / "VoiceNote"
    else:
        config_dir = Path.home() / ".config" / "VoiceNote"

    return config_dir


def get_config_path() -> Path:
    """Get the config file path"""
    return get_config_dir() / "config.json"


class ConfigManager:
    """Loads and saves the JSON config file"""

    def __init__(self, config_path: Optional[Path] = None):
        self._config_path = Path(config_path) if config_path else get_config_path()
        self._config = self._load_config()

    @property
    def config_path(self) -> Path:
        return self._config_path

    def _load_config(self) -> AppConfig:
        """Load config from file or create default"""
        if not self._config_path.exists():
            logger.info("No config file found, using defaults")
            return AppConfig()

        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            logger.info(f"Loaded config from {self._config_path}")
            return AppConfig(**data)
        except Exception as e:
            logger.warning(f"Failed to load config: {e}, using defaults")
            return AppConfig()

    def save(self):
        """Save config to file"""
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._config_path, "w", encoding="utf-8") as f:
            json.dump(self._config.model_dump(mode="json"), f, indent=2)
        logger.info(f"Saved config to {self._config_path}")

    @property
    def config(self) -> AppConfig:
        """Get the current config"""
        return self._config

    def set_default_save_directory(self, path: str):
        """Set the default save directory"""
        self._config.default_save_directory = path
        self.save()

    def get_default_save_directory(self) -> Path:
        """Get the save directory as Path (current directory if unset)"""
        if self._config.default_save_directory:
            return Path(self._config.default_save_directory)
        return Path.cwd()

    def set_last_selected_device(self, device_id: Optional[str]):
        """Remember the last used capture device"""
        self._config.last_selected_device = device_id
        self.save()
