"""Application setup: logging and service wiring"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from .core.amplitude import AmplitudeAnalyzer
from .core.audio_recorder import AudioSessionController
from .core.capture_backend import AudioBackend, create_audio_backend
from .core.config import AppConfig
from .core.file_store import LocalFileStore
from .core.recognition import RecognitionTransport
from .core.recording_controller import RecordingOrchestrator
from .core.transcoder import Mp3Transcoder
from .core.transcriber import WhisperStreamingTransport
from .core.whisper_api import ChunkedApiTransport, WhisperApiRecognizer
from .signals import SessionSignals


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging"""
    logger.remove()  # Remove default handler
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level.upper(),
    )


def create_transport(config: AppConfig, recognizer: WhisperApiRecognizer) -> Optional[RecognitionTransport]:
    """Real-time transport selected by ``realtime_backend``"""
    if config.realtime_backend == "api":
        return ChunkedApiTransport(recognizer)
    if config.realtime_backend == "local":
        return WhisperStreamingTransport(
            model_size=config.transcription_model,
            device=config.transcription_device,
            compute_type=config.transcription_compute_type,
        )
    logger.warning(f"Unknown real-time backend '{config.realtime_backend}', real-time disabled")
    return None


def create_orchestrator(
    config: AppConfig,
    save_directory: Optional[Path] = None,
    backend: Optional[AudioBackend] = None,
    signals: Optional[SessionSignals] = None,
) -> RecordingOrchestrator:
    """Build an orchestrator and its services from configuration"""
    analyzer = AmplitudeAnalyzer(
        fft_size=config.analyzer_fft_size,
        smoothing=config.analyzer_smoothing,
        refresh_rate=config.analyzer_refresh_hz,
    )
    controller = AudioSessionController(
        backend or create_audio_backend(),
        analyzer=analyzer,
        sample_rate=config.audio_sample_rate,
        channels=config.audio_channels,
        chunk_interval=config.audio_chunk_interval_ms / 1000.0,
    )

    recognizer = WhisperApiRecognizer(
        api_key=config.openai_api_key,
        base_url=config.openai_base_url,
        model=config.openai_model,
        timeout=config.openai_timeout,
    )

    directory = save_directory or Path(config.default_save_directory or Path.cwd())
    return RecordingOrchestrator(
        controller=controller,
        file_store=LocalFileStore(directory),
        transport=create_transport(config, recognizer),
        batch_recognizer=recognizer,
        transcoder=Mp3Transcoder(bitrate=config.audio_bitrate),
        signals=signals,
        title=config.default_title,
        language=config.transcription_language,
    )
