"""Audio session controller: stream lifecycle, chunked capture and level analysis"""

import asyncio
import io
import wave
from typing import Optional, Callable, List

import numpy as np
from loguru import logger

from .amplitude import AmplitudeAnalyzer
from .capture_backend import AudioBackend, CaptureStream, VideoTrackRequired
from .errors import AlreadyRecording, DeviceUnavailable, NotRecording, VoiceNoteError
from .models import (
    ArtifactFormat,
    AudioArtifact,
    AudioDevice,
    AudioSession,
    AudioSource,
    SessionState,
)


ChunkListener = Callable[[np.ndarray], None]


class SessionStream:
    """
    Handle to the running capture, given to recognition transports.

    Listeners receive each chunk (int16, shaped (frames, channels)) on the
    event loop at the controller's chunk cadence.
    """

    def __init__(self, controller: "AudioSessionController", sample_rate: int, channels: int):
        self._controller = controller
        self.sample_rate = sample_rate
        self.channels = channels

    def subscribe(self, listener: ChunkListener) -> Callable[[], None]:
        return self._controller.subscribe(listener)


class AudioSessionController:
    """
    Owns one capture session at a time.

    States: IDLE -> ACTIVE -> STOPPING -> IDLE. Audio arrives on the PortAudio
    thread and is marshalled onto the event loop; every ``chunk_interval``
    seconds the pending blocks are flushed as one chunk to the artifact buffer
    and to chunk listeners.
    """

    def __init__(
        self,
        backend: AudioBackend,
        analyzer: Optional[AmplitudeAnalyzer] = None,
        sample_rate: int = 44100,
        channels: int = 1,
        chunk_interval: float = 0.1,
    ):
        self.backend = backend
        self.analyzer = analyzer or AmplitudeAnalyzer()
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_interval = chunk_interval

        self._state = SessionState.IDLE
        self._starting = False
        self._session: Optional[AudioSession] = None
        self._stream: Optional[CaptureStream] = None
        self._session_stream: Optional[SessionStream] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._chunk_task: Optional[asyncio.Task] = None
        self._capture_rate = sample_rate

        self._pending: List[np.ndarray] = []
        self._chunks: List[np.ndarray] = []
        self._listeners: List[ChunkListener] = []

    @property
    def state(self) -> SessionState:
        """Get current session state"""
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state == SessionState.ACTIVE

    @property
    def session(self) -> Optional[AudioSession]:
        return self._session

    @property
    def stream(self) -> Optional[SessionStream]:
        """Chunk stream of the active session"""
        return self._session_stream

    def list_devices(self) -> List[AudioDevice]:
        return self.backend.list_devices()

    def subscribe(self, listener: ChunkListener) -> Callable[[], None]:
        """Register a chunk listener; returns an unsubscribe function"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_recording_duration(self) -> float:
        """Seconds of audio captured so far"""
        frames = sum(len(chunk) for chunk in self._chunks)
        return frames / float(self._capture_rate)

    async def start(
        self,
        source: AudioSource = AudioSource.MICROPHONE,
        device_id: Optional[str] = None,
        artifact_format: ArtifactFormat = ArtifactFormat.NATIVE_CONTAINER,
    ) -> AudioSession:
        """
        Acquire a stream and begin capture.

        Raises:
            AlreadyRecording: a session is already active
            DeviceUnavailable: no usable device, or capture could not start
        """
        if self._state != SessionState.IDLE or self._starting:
            raise AlreadyRecording("Recording already in progress")

        if artifact_format not in self.backend.supported_artifact_formats():
            raise ValueError(f"Artifact format {artifact_format.value} is not supported here")

        if source == AudioSource.SYSTEM_OUTPUT and not self.backend.supports_system_audio_capture():
            raise DeviceUnavailable("System audio capture is not supported on this platform")

        # Held until the session is active or start fails
        self._starting = True
        try:
            return await self._start_capture(source, device_id, artifact_format)
        finally:
            self._starting = False

    async def _start_capture(
        self, source: AudioSource, device_id: Optional[str], artifact_format: ArtifactFormat
    ) -> AudioSession:
        self._loop = asyncio.get_running_loop()
        self._pending = []
        self._chunks = []

        # Phase 1: acquire
        stream = await self._acquire_stream(source, device_id)

        # Phase 2: capture + analysis; release the stream on any failure
        try:
            sample_rate = getattr(stream, "sample_rate", self.sample_rate)
            channels = getattr(stream, "channels", self.channels)
            self._capture_rate = sample_rate
            self._stream = stream
            self._session_stream = SessionStream(self, sample_rate, channels)
            self._chunk_task = self._loop.create_task(self._chunk_loop())
            self.analyzer.start(sample_rate)
            await asyncio.to_thread(stream.start, self._on_audio_block)
        except Exception as e:
            logger.error(f"Failed to start capture: {e}")
            await self._teardown(stream)
            if isinstance(e, VoiceNoteError):
                raise
            raise DeviceUnavailable(f"Could not start capture: {e}") from e

        self._session = AudioSession(
            source=source,
            artifact_format=artifact_format,
            device_id=device_id if source == AudioSource.MICROPHONE else None,
        )
        self._state = SessionState.ACTIVE
        logger.info(f"Started recording from {stream.name} ({source.value})")
        return self._session

    async def _acquire_stream(self, source: AudioSource, device_id: Optional[str]) -> CaptureStream:
        if source == AudioSource.MICROPHONE:
            return await asyncio.to_thread(
                self.backend.open_microphone, device_id, self.sample_rate, self.channels
            )

        try:
            return await asyncio.to_thread(
                self.backend.open_display_capture, self.sample_rate, self.channels, True
            )
        except VideoTrackRequired:
            logger.info("Audio-only display capture refused, retrying with a minimal video track")

        stream = await asyncio.to_thread(
            self.backend.open_display_capture, self.sample_rate, self.channels, False
        )
        try:
            stream.discard_video()
        except Exception:
            self._release_stream(stream)
            raise
        return stream

    def _on_audio_block(self, block: np.ndarray):
        """Called on the audio thread"""
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._receive_block, block)
        except RuntimeError:
            # Loop already closed; capture is shutting down
            pass

    def _receive_block(self, block: np.ndarray):
        if self._stream is None:
            return
        self._pending.append(block)
        self.analyzer.feed(block)

    async def _chunk_loop(self):
        while True:
            await asyncio.sleep(self.chunk_interval)
            self._flush_chunk()

    def _flush_chunk(self):
        if not self._pending:
            return

        chunk = np.concatenate(self._pending)
        self._pending = []
        self._chunks.append(chunk)

        for listener in list(self._listeners):
            try:
                listener(chunk)
            except Exception as e:
                logger.error(f"Chunk listener failed: {e}")

    async def stop(self) -> AudioArtifact:
        """
        Stop capture and return the recorded artifact.

        Raises:
            NotRecording: no active session
        """
        if self._state != SessionState.ACTIVE:
            raise NotRecording("No recording in progress")

        self._state = SessionState.STOPPING
        stream = self._stream

        try:
            try:
                await asyncio.to_thread(stream.stop)
            except Exception as e:
                logger.error(f"Error stopping stream: {e}")

            # Let blocks already queued by the audio thread land
            await asyncio.sleep(0)
            await self._cancel_chunk_task()
            self._flush_chunk()
        finally:
            await self._teardown(stream)

        artifact = self._build_artifact()
        logger.info(f"Recording stopped, {artifact.duration_seconds:.1f}s captured")
        return artifact

    async def _cancel_chunk_task(self):
        task = self._chunk_task
        self._chunk_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _teardown(self, stream: Optional[CaptureStream]):
        """Release everything acquired by start(); safe on partial state"""
        await self._cancel_chunk_task()
        self.analyzer.stop()
        if stream is not None:
            self._release_stream(stream)
        self._stream = None
        self._session_stream = None
        self._listeners = []
        self._session = None
        self._state = SessionState.IDLE

    def _release_stream(self, stream: CaptureStream):
        try:
            stream.close()
        except Exception as e:
            logger.warning(f"Error closing stream: {e}")

    def _build_artifact(self) -> AudioArtifact:
        """Pack captured chunks into a 16-bit WAV artifact"""
        if self._chunks:
            audio = np.concatenate(self._chunks)
        else:
            audio = np.zeros((0, self.channels), dtype=np.int16)
        self._chunks = []

        if audio.dtype != np.int16:
            audio = (np.clip(audio, -1.0, 1.0) * 32767).astype(np.int16)
        channels = audio.shape[1] if audio.ndim > 1 else 1
        sample_rate = self._capture_rate

        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav_file:
            wav_file.setnchannels(channels)
            wav_file.setsampwidth(2)  # 16-bit
            wav_file.setframerate(sample_rate)
            wav_file.writeframes(audio.tobytes())

        return AudioArtifact(
            data=buffer.getvalue(),
            format=ArtifactFormat.NATIVE_CONTAINER,
            sample_rate=sample_rate,
            channels=channels,
            duration_seconds=len(audio) / float(sample_rate),
        )
