"""Recording orchestrator - coordinates capture, recognition, the transcript and persistence"""

import asyncio
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger

from ..signals import SessionSignals
from . import document_codec
from .audio_recorder import AudioSessionController
from .errors import (
    AlreadyRecording,
    MalformedDocument,
    NoRecording,
    NothingToSave,
    NotRecording,
    RecognitionNotConfigured,
    VoiceNoteError,
)
from .file_store import LocalFileStore, audio_filename, document_filename
from .models import (
    DEFAULT_TITLE,
    ArtifactFormat,
    AudioArtifact,
    AudioDevice,
    AudioSession,
    AudioSource,
    ConnectionStatus,
    Document,
    Segment,
)
from .reconciler import TranscriptSegmentReconciler
from .recognition import BatchRecognizer, RecognitionChannel, RecognitionTransport
from .transcoder import Mp3Transcoder


class RecordingOrchestrator:
    """
    Owns one document and at most one recording session.

    Recognition results reach the transcript only through the event channel
    consumer, one event at a time in arrival order. Failures are raised to
    the caller and also reported on ``signals.error_occurred``.
    """

    def __init__(
        self,
        controller: AudioSessionController,
        file_store: LocalFileStore,
        transport: Optional[RecognitionTransport] = None,
        batch_recognizer: Optional[BatchRecognizer] = None,
        transcoder: Optional[Mp3Transcoder] = None,
        signals: Optional[SessionSignals] = None,
        title: str = DEFAULT_TITLE,
        language: str = "auto",
    ):
        self.controller = controller
        self.file_store = file_store
        self.transport = transport
        self.batch_recognizer = batch_recognizer
        self.transcoder = transcoder or Mp3Transcoder()
        self.signals = signals or SessionSignals()

        self.title = title
        self.language = language

        self.reconciler = TranscriptSegmentReconciler(on_change=self._on_segments_changed)

        self._artifact: Optional[AudioArtifact] = None
        self._artifact_format = ArtifactFormat.NATIVE_CONTAINER
        self._channel: Optional[RecognitionChannel] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._realtime = False

        self.controller.analyzer.set_level_callback(self._on_audio_level)
        if self.transport is not None:
            self.transport.set_status_callback(self._on_connection_status)

    # ----- state -----

    @property
    def is_recording(self) -> bool:
        return self.controller.is_recording

    @property
    def is_realtime(self) -> bool:
        """True while a real-time transport feeds the transcript"""
        return self._realtime and self._channel is not None

    @property
    def segments(self) -> List[Segment]:
        return self.reconciler.segments

    @property
    def artifact(self) -> Optional[AudioArtifact]:
        """Audio of the last completed session"""
        return self._artifact

    @property
    def document(self) -> Document:
        return Document(
            title=self.title,
            segments=self.reconciler.committed_segments(),
            language=self.language,
        )

    def text(self) -> str:
        """Flattened transcript as shown in an editor"""
        return self.reconciler.flatten()

    def list_devices(self) -> List[AudioDevice]:
        return self.controller.list_devices()

    def set_language(self, language: Optional[str]):
        """Set the recognition language tag ("auto" to auto-detect)"""
        self.language = language or "auto"
        logger.info(f"Recognition language set to {self.language}")

    def get_recording_duration(self) -> float:
        return self.controller.get_recording_duration()

    # ----- callbacks -----

    def _on_audio_level(self, level: float):
        self.signals.audio_level_updated.emit(level)

    def _on_segments_changed(self, segments: List[Segment]):
        self.signals.segments_changed.emit(segments)

    def _on_connection_status(self, status: ConnectionStatus):
        self.signals.connection_status_changed.emit(status)
        if status.message:
            self.signals.status_message.emit(f"Recognition: {status.message}", 5000)

    def _report(self, error: Exception):
        logger.error(f"{error.__class__.__name__}: {error}")
        self.signals.error_occurred.emit(str(error))

    # ----- session lifecycle -----

    async def start_session(
        self,
        source: AudioSource = AudioSource.MICROPHONE,
        device_id: Optional[str] = None,
        artifact_format: ArtifactFormat = ArtifactFormat.NATIVE_CONTAINER,
        realtime: bool = False,
    ) -> AudioSession:
        """
        Start capturing, optionally with real-time recognition.

        Raises:
            RecognitionNotConfigured: real-time requested without a usable transport
            AlreadyRecording: a session is already active
            DeviceUnavailable: capture could not be started
        """
        try:
            if realtime and (self.transport is None or not self.transport.is_configured()):
                raise RecognitionNotConfigured("Real-time recognition is not configured")

            session = await self.controller.start(source, device_id, artifact_format)
            self._artifact_format = artifact_format
            self._realtime = realtime

            if realtime:
                await self._start_realtime()
        except VoiceNoteError as e:
            self._report(e)
            raise

        self.signals.recording_started.emit()
        self.signals.status_message.emit("Recording started", 2000)
        logger.info(f"Session started: {source.value}, realtime={realtime}")
        return session

    async def _start_realtime(self):
        channel = RecognitionChannel()
        self._channel = channel
        self._consumer_task = asyncio.get_running_loop().create_task(self._consume_events(channel))
        self.transport.set_event_channel(channel)

        try:
            await self.transport.start(self.controller.stream, self.language)
        except Exception as e:
            logger.error(f"Failed to start recognition transport: {e}")
            channel.close()
            try:
                await self.transport.stop()
            except Exception as stop_error:
                logger.warning(f"Error stopping recognition transport: {stop_error}")
            self.transport.set_event_channel(None)
            await self._stop_consumer()
            self._realtime = False
            try:
                await self.controller.stop()
            except VoiceNoteError as stop_error:
                logger.warning(f"Error releasing session: {stop_error}")
            raise

    async def _consume_events(self, channel: RecognitionChannel):
        """Single consumer: applies recognition events in arrival order"""
        while True:
            event = await channel.get()
            try:
                self.reconciler.apply(event)
            except Exception as e:
                logger.error(f"Failed to apply {event.kind.value} event: {e}")
            finally:
                channel.task_done()

    async def drain_events(self):
        """Wait until every queued recognition event has been applied"""
        if self._channel is not None and self._consumer_task is not None:
            await self._channel.join()

    async def _stop_consumer(self):
        task = self._consumer_task
        self._consumer_task = None
        self._channel = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def stop_session(self) -> AudioArtifact:
        """
        Stop the session and keep its audio.

        Recognition events published after this call begins are discarded.
        When real-time recognition was not used, the whole recording is
        transcribed once and appended as a single final segment.

        Raises:
            NotRecording: no active session
            RecognitionNotConfigured: batch transcription needed but unavailable
            RecognitionError: batch transcription failed
        """
        if not self.controller.is_recording:
            error = NotRecording("No recording in progress")
            self._report(error)
            raise error

        realtime = self._realtime
        if self._channel is not None:
            self._channel.close()
            await self.drain_events()

        if realtime and self.transport is not None:
            try:
                await self.transport.stop()
            except Exception as e:
                logger.warning(f"Error stopping recognition transport: {e}")
            self.transport.set_event_channel(None)
        await self._stop_consumer()
        self._realtime = False

        try:
            artifact = await self.controller.stop()
        except VoiceNoteError as e:
            self._report(e)
            raise

        self._artifact = artifact
        self.signals.recording_stopped.emit()
        self.signals.status_message.emit(f"Recording stopped ({artifact.duration_seconds:.1f}s)", 3000)

        if not realtime:
            await self._transcribe_recording(artifact)

        return artifact

    async def _transcribe_recording(self, artifact: AudioArtifact):
        try:
            if self.batch_recognizer is None or not self.batch_recognizer.is_configured():
                raise RecognitionNotConfigured("No transcription service is configured")

            self.signals.status_message.emit("Transcribing recording...", 0)
            result = await self.batch_recognizer.transcribe(artifact, self.language)
        except VoiceNoteError as e:
            self._report(e)
            raise

        if result.text:
            self.reconciler.add_batch_result(result.text)
            self.signals.status_message.emit("Transcription complete", 2000)
        else:
            logger.warning("Batch transcription returned no text")

    # ----- editing -----

    def edit_text(self, new_text: str) -> Optional[Segment]:
        """Apply the flattened editor text; edits land on the last segment as user input"""
        return self.reconciler.apply_editor_text(new_text)

    def update_segment(self, segment_id: str, new_text: str) -> Optional[Segment]:
        return self.reconciler.update_segment(segment_id, new_text)

    def clear(self):
        """Discard all segments and reset the title"""
        self.reconciler.clear()
        self.title = DEFAULT_TITLE
        logger.info("Document cleared")

    # ----- persistence -----

    async def save_document(self, title: Optional[str] = None) -> Path:
        """
        Save the transcript as HTML.

        Raises:
            NothingToSave: the document has no committed segments
        """
        if self.reconciler.is_empty():
            error = NothingToSave("No content to save")
            self._report(error)
            raise error

        if title is not None:
            self.title = title

        content = document_codec.encode(
            self.title,
            self.reconciler.committed_segments(),
            language=self.language if self.language != "auto" else None,
        )
        path = await self.file_store.save_file(
            document_filename(self.title), content, "text/html"
        )
        self.signals.document_saved.emit(str(path))
        self.signals.status_message.emit(f"Saved {path.name}", 3000)
        return path

    async def save_audio(
        self,
        filename: Optional[str] = None,
        artifact_format: Optional[ArtifactFormat] = None,
    ) -> Path:
        """
        Save the last session's audio, transcoding to MP3 when requested.

        Raises:
            NoRecording: no audio artifact is held
            TranscodeFailure: MP3 conversion failed
        """
        if self._artifact is None:
            error = NoRecording("No recording available")
            self._report(error)
            raise error

        artifact_format = artifact_format or self._artifact_format
        artifact = self._artifact
        if artifact_format is ArtifactFormat.COMPRESSED_MP3:
            self.signals.status_message.emit("Converting to MP3...", 0)
            try:
                artifact = await self.transcoder.transcode(artifact)
            except VoiceNoteError as e:
                self._report(e)
                raise

        if filename:
            filename = str(Path(filename).with_suffix(f".{artifact.extension}"))
        else:
            filename = audio_filename(self.title, artifact.extension)

        path = await self.file_store.save_file(filename, artifact.data, artifact.mime_type)
        self.signals.audio_saved.emit(str(path))
        return path

    async def load_document(self, path: Union[str, Path]) -> Document:
        """
        Replace the current document with a saved one.

        Raises:
            AlreadyRecording: a session is active
            MalformedDocument: the file is not a saved document
            OSError: the file could not be read
        """
        try:
            if self.controller.is_recording:
                raise AlreadyRecording("Cannot load a document while recording")
            try:
                text = await self.file_store.read_file(path)
            except UnicodeDecodeError as e:
                raise MalformedDocument(f"Not a text document: {path}") from e
            document = document_codec.decode(text)
        except (VoiceNoteError, OSError) as e:
            self._report(e)
            raise

        self.title = document.title
        if document.language:
            self.language = document.language
        self.reconciler.load(document.segments)

        self.signals.document_loaded.emit(str(path))
        logger.info(f"Loaded '{document.title}' with {len(document.segments)} segments")
        return document
