"""OpenAI-compatible Whisper HTTP recognition (batch and chunked real-time)"""

import asyncio
import io
import wave
from typing import List, Optional

import numpy as np
import requests
from loguru import logger

from .errors import RecognitionError, RecognitionNotConfigured
from .models import (
    ArtifactFormat,
    AudioArtifact,
    ConnectionState,
    RecognitionEvent,
    TranscriptionResult,
)
from .recognition import (
    WHISPER_SAMPLE_RATE,
    BatchRecognizer,
    RecognitionTransport,
    normalize_language,
    to_mono_float,
)


SUPPORTED_LANGUAGES = [
    ("auto", "Auto-detect"),
    ("en", "English"),
    ("es", "Spanish"),
    ("fr", "French"),
    ("de", "German"),
    ("it", "Italian"),
    ("pt", "Portuguese"),
    ("ru", "Russian"),
    ("ja", "Japanese"),
    ("ko", "Korean"),
    ("zh", "Chinese"),
    ("ar", "Arabic"),
    ("hi", "Hindi"),
    ("nl", "Dutch"),
    ("pl", "Polish"),
]


def pcm_to_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Pack mono float samples in [-1, 1] into a 16-bit WAV"""
    pcm = (np.clip(samples, -1.0, 1.0) * 32767).astype(np.int16)
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm.tobytes())
    return buffer.getvalue()


class WhisperApiRecognizer(BatchRecognizer):
    """
    Transcribes a recording through the ``/audio/transcriptions`` endpoint.

    The request is a multipart upload with the audio file, model name and,
    unless auto-detecting, the language code.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1",
        model: str = "whisper-1",
        timeout: float = 120,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or ""
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._session = session or requests.Session()

        if not self.api_key:
            logger.warning("OpenAI API key not configured, HTTP transcription disabled")

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/audio/transcriptions"

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def set_api_key(self, api_key: str):
        self.api_key = api_key or ""

    def transcribe_bytes(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        language: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> TranscriptionResult:
        """
        Blocking transcription request.

        Raises:
            RecognitionNotConfigured: no API key
            RecognitionError: network failure or non-success response
        """
        if not self.is_configured():
            raise RecognitionNotConfigured("OpenAI API key is not configured")

        form = {"model": self.model}
        language = normalize_language(language)
        if language:
            form["language"] = language
        if prompt:
            form["prompt"] = prompt

        try:
            response = self._session.post(
                self.endpoint,
                headers={"Authorization": f"Bearer {self.api_key}"},
                data=form,
                files={"file": (filename, data, mime_type)},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RecognitionError(f"Transcription request failed: {e}") from e

        if not response.ok:
            try:
                detail = response.json().get("error", {}).get("message", "")
            except ValueError:
                detail = ""
            raise RecognitionError(
                f"API request failed: {response.status_code} {response.reason}. {detail}".strip()
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise RecognitionError(f"Invalid transcription response: {e}") from e

        return TranscriptionResult(
            text=(payload.get("text") or "").strip(),
            language=payload.get("language"),
        )

    async def transcribe(
        self, artifact: AudioArtifact, language: Optional[str] = None
    ) -> TranscriptionResult:
        logger.info(f"Transcribing {artifact.duration_seconds:.1f}s of audio via {self.model}")
        result = await asyncio.to_thread(
            self.transcribe_bytes,
            artifact.data,
            f"audio.{artifact.extension}",
            artifact.mime_type,
            language,
        )
        logger.info(f"Transcription complete: {len(result.text)} characters")
        return result


class ChunkedApiTransport(RecognitionTransport):
    """
    Approximates real-time recognition over the batch endpoint.

    Audio is accumulated from the session stream and every ``interval``
    seconds the buffered window is uploaded as a short WAV. Each non-empty
    response is published as a final result.
    """

    def __init__(self, recognizer: WhisperApiRecognizer, interval: float = 2.0):
        super().__init__()
        self.recognizer = recognizer
        self.interval = interval

        self._buffer: List[np.ndarray] = []
        self._source_rate = WHISPER_SAMPLE_RATE
        self._language: Optional[str] = None
        self._unsubscribe = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def is_configured(self) -> bool:
        return self.recognizer.is_configured()

    async def start(self, stream, language: Optional[str] = None):
        if self._running:
            logger.warning("Chunked transport already running")
            return
        if not self.is_configured():
            raise RecognitionNotConfigured("OpenAI API key is not configured")

        self._set_status(ConnectionState.CONNECTING)
        self._buffer = []
        self._source_rate = stream.sample_rate
        self._language = normalize_language(language)
        self._unsubscribe = stream.subscribe(self._on_chunk)
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._set_status(ConnectionState.CONNECTED)
        logger.info(f"Chunked transcription started, every {self.interval:.1f}s")

    def _on_chunk(self, chunk: np.ndarray):
        if self._running:
            self._buffer.append(to_mono_float(chunk, self._source_rate))

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            await self._transcribe_window()

    async def _transcribe_window(self):
        if not self._buffer:
            return
        audio = np.concatenate(self._buffer)
        self._buffer = []

        try:
            result = await asyncio.to_thread(
                self.recognizer.transcribe_bytes,
                pcm_to_wav(audio, WHISPER_SAMPLE_RATE),
                "chunk.wav",
                ArtifactFormat.NATIVE_CONTAINER.mime_type,
                self._language,
            )
        except RecognitionError as e:
            # One failed window does not end the session
            logger.error(f"Chunk transcription failed: {e}")
            self._set_status(ConnectionState.ERROR, str(e))
            return

        if result.text:
            self._publish(RecognitionEvent.final(result.text))

    async def stop(self):
        if not self._running:
            return
        self._running = False

        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._buffer = []
        self._set_status(ConnectionState.DISCONNECTED)
        logger.info("Chunked transcription stopped")
