"""Shared fakes and fixtures for the voicenote test suite.

The fakes stand in for the audio device layer, recognition engines and the
MP3 transcoder so sessions can be driven end to end without hardware,
network access or FFmpeg.
"""

from typing import List, Optional

import numpy as np
import pytest

from voicenote.core.audio_recorder import AudioSessionController
from voicenote.core.capture_backend import AudioBackend, CaptureStream, VideoTrackRequired
from voicenote.core.errors import DeviceUnavailable, RecognitionError
from voicenote.core.file_store import LocalFileStore
from voicenote.core.models import (
    ArtifactFormat,
    AudioArtifact,
    AudioDevice,
    ConnectionState,
    RecognitionEvent,
    TranscriptionResult,
)
from voicenote.core.recognition import BatchRecognizer, RecognitionTransport
from voicenote.core.recording_controller import RecordingOrchestrator


SAMPLE_RATE = 16000


def tone_block(frames: int = 1024, amplitude: int = 8000, channels: int = 1) -> np.ndarray:
    """int16 block shaped (frames, channels) like PortAudio delivers"""
    t = np.arange(frames) / SAMPLE_RATE
    wave = (amplitude * np.sin(2 * np.pi * 440.0 * t)).astype(np.int16)
    return np.repeat(wave[:, None], channels, axis=1)


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


class FakeStream(CaptureStream):
    def __init__(self, sample_rate: int = SAMPLE_RATE, channels: int = 1, fail_on_start: bool = False):
        self.sample_rate = sample_rate
        self.channels = channels
        self.fail_on_start = fail_on_start
        self.callback = None
        self.started = False
        self.stopped = False
        self.closed = False
        self.video_discarded = False

    def start(self, callback):
        if self.fail_on_start:
            raise RuntimeError("device vanished")
        self.callback = callback
        self.started = True

    def stop(self):
        self.stopped = True

    def close(self):
        self.closed = True

    def discard_video(self):
        self.video_discarded = True

    def emit(self, block: np.ndarray):
        """Deliver a block the way the audio thread would"""
        self.callback(block)


class FakeBackend(AudioBackend):
    def __init__(
        self,
        system_audio: bool = True,
        require_video: bool = False,
        fail_on_start: bool = False,
        formats=None,
    ):
        self.system_audio = system_audio
        self.require_video = require_video
        self.fail_on_start = fail_on_start
        self.formats = formats or {ArtifactFormat.NATIVE_CONTAINER, ArtifactFormat.COMPRESSED_MP3}
        self.streams: List[FakeStream] = []
        self.display_requests: List[bool] = []

    def list_devices(self) -> List[AudioDevice]:
        return [
            AudioDevice(id="0", label="Built-in Microphone", is_default=True),
            AudioDevice(id="1", label="USB Headset", channels=2),
        ]

    def supports_system_audio_capture(self) -> bool:
        return self.system_audio

    def supported_artifact_formats(self):
        return set(self.formats)

    def _new_stream(self, sample_rate, channels) -> FakeStream:
        stream = FakeStream(sample_rate, channels, fail_on_start=self.fail_on_start)
        self.streams.append(stream)
        return stream

    def open_microphone(self, device_id: Optional[str], sample_rate: int, channels: int):
        if device_id == "missing":
            raise DeviceUnavailable("No audio input device matches 'missing'")
        return self._new_stream(sample_rate, channels)

    def open_display_capture(self, sample_rate: int, channels: int, audio_only: bool = True):
        self.display_requests.append(audio_only)
        if audio_only and self.require_video:
            raise VideoTrackRequired()
        return self._new_stream(sample_rate, channels)

    @property
    def last_stream(self) -> Optional[FakeStream]:
        return self.streams[-1] if self.streams else None


# ---------------------------------------------------------------------------
# Recognition
# ---------------------------------------------------------------------------


class FakeTransport(RecognitionTransport):
    """Real-time transport driven by the test through emit_* helpers"""

    def __init__(self, configured: bool = True, fail_on_start: bool = False, final_on_stop: Optional[str] = None):
        super().__init__()
        self.configured = configured
        self.fail_on_start = fail_on_start
        self.final_on_stop = final_on_stop
        self.started_with = None
        self.captured_channel = None
        self.stop_calls = 0

    def is_configured(self) -> bool:
        return self.configured

    async def start(self, stream, language=None):
        self._set_status(ConnectionState.CONNECTING)
        if self.fail_on_start:
            self._set_status(ConnectionState.ERROR, "connection refused")
            raise RecognitionError("connection refused")
        self.started_with = (stream, language)
        self.captured_channel = self._channel
        self._set_status(ConnectionState.CONNECTED)

    async def stop(self):
        self.stop_calls += 1
        if self.final_on_stop:
            # A result still in flight when the session stops
            self._publish(RecognitionEvent.final(self.final_on_stop))
        self._set_status(ConnectionState.DISCONNECTED)

    def emit_partial(self, text: str):
        self._publish(RecognitionEvent.partial(text))

    def emit_final(self, text: str):
        self._publish(RecognitionEvent.final(text))


class FakeBatchRecognizer(BatchRecognizer):
    def __init__(self, text: str = "batch transcript", configured: bool = True):
        self.text = text
        self.configured = configured
        self.calls = []

    def is_configured(self) -> bool:
        return self.configured

    async def transcribe(self, artifact: AudioArtifact, language=None) -> TranscriptionResult:
        self.calls.append((artifact, language))
        return TranscriptionResult(text=self.text, language=language)


class FakeTranscoder:
    def __init__(self):
        self.calls = []

    async def transcode(self, artifact: AudioArtifact) -> AudioArtifact:
        self.calls.append(artifact)
        return AudioArtifact(
            data=b"ID3" + b"\x00" * 16,
            format=ArtifactFormat.COMPRESSED_MP3,
            sample_rate=artifact.sample_rate,
            channels=artifact.channels,
            duration_seconds=artifact.duration_seconds,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def controller(backend):
    return AudioSessionController(backend, sample_rate=SAMPLE_RATE, channels=1, chunk_interval=0.01)


@pytest.fixture
def make_orchestrator(tmp_path):
    """Factory building an orchestrator over fakes; keyword overrides pass through"""

    def _make(backend=None, transport=None, batch_recognizer=None, transcoder=None, **kwargs):
        backend = backend or FakeBackend()
        controller = AudioSessionController(backend, sample_rate=SAMPLE_RATE, channels=1, chunk_interval=0.01)
        return RecordingOrchestrator(
            controller=controller,
            file_store=LocalFileStore(tmp_path),
            transport=transport,
            batch_recognizer=batch_recognizer,
            transcoder=transcoder or FakeTranscoder(),
            **kwargs,
        )

    return _make
