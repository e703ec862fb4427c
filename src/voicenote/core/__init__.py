"""Core business logic"""

from .config import AppConfig, ConfigManager
from .models import (
    ArtifactFormat,
    AudioArtifact,
    AudioDevice,
    AudioSession,
    AudioSource,
    ConnectionState,
    ConnectionStatus,
    Document,
    Provenance,
    RecognitionEvent,
    RecognitionEventKind,
    Segment,
    SessionState,
    TranscriptionResult,
)
from .amplitude import AmplitudeAnalyzer
from .audio_recorder import AudioSessionController, SessionStream
from .capture_backend import AudioBackend, CaptureStream, SoundDeviceBackend, create_audio_backend
from .reconciler import TranscriptSegmentReconciler
from .recognition import BatchRecognizer, RecognitionChannel, RecognitionTransport
from .transcoder import Mp3Transcoder
from .file_store import LocalFileStore
from .recording_controller import RecordingOrchestrator

# Recognition engines
from .transcriber import WhisperStreamingTransport
from .whisper_api import ChunkedApiTransport, WhisperApiRecognizer

__all__ = [
    "AppConfig",
    "ConfigManager",
    "ArtifactFormat",
    "AudioArtifact",
    "AudioDevice",
    "AudioSession",
    "AudioSource",
    "ConnectionState",
    "ConnectionStatus",
    "Document",
    "Provenance",
    "RecognitionEvent",
    "RecognitionEventKind",
    "Segment",
    "SessionState",
    "TranscriptionResult",
    "AmplitudeAnalyzer",
    "AudioSessionController",
    "SessionStream",
    "AudioBackend",
    "CaptureStream",
    "SoundDeviceBackend",
    "create_audio_backend",
    "TranscriptSegmentReconciler",
    "BatchRecognizer",
    "RecognitionChannel",
    "RecognitionTransport",
    "Mp3Transcoder",
    "LocalFileStore",
    "RecordingOrchestrator",
    # Recognition engines
    "WhisperStreamingTransport",
    "ChunkedApiTransport",
    "WhisperApiRecognizer",
]
