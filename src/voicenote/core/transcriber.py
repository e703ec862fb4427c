"""Real-time transcription transport using faster-whisper"""

import asyncio
import time
from typing import Dict, List, Optional

import numpy as np
from loguru import logger

from .errors import RecognitionError, RecognitionNotConfigured
from .models import ConnectionState, RecognitionEvent
from .recognition import (
    WHISPER_SAMPLE_RATE,
    RecognitionTransport,
    normalize_language,
    to_mono_float,
)

try:
    from faster_whisper import WhisperModel
except ImportError:
    WhisperModel = None
    logger.warning("faster-whisper not installed. Local transcription will not work.")


class WhisperStreamingTransport(RecognitionTransport):
    """
    Local streaming recognition with faster-whisper.

    Audio from the session stream is buffered into the current utterance.
    While speech continues the whole utterance is re-transcribed every
    ``PARTIAL_INTERVAL`` seconds and published as a partial result. After
    ``SILENCE_TIMEOUT`` seconds without speech, or once the utterance reaches
    ``MAX_UTTERANCE_DURATION``, it is transcribed a last time and published
    as a final result.
    """

    # Seconds between partial results while speaking
    PARTIAL_INTERVAL = 2.0

    # Silence timeout (seconds) - finalize utterance if no speech for this duration
    SILENCE_TIMEOUT = 1.2

    # Longest utterance (seconds) before it is finalized regardless of speech
    MAX_UTTERANCE_DURATION = 15.0

    # RMS level above which a chunk counts as speech
    SPEECH_RMS_THRESHOLD = 0.01

    # How often the worker checks the buffer
    POLL_INTERVAL = 0.2

    def __init__(
        self,
        model_size: str = "small",
        device: str = "cpu",
        compute_type: str = "int8",
        initial_prompt: Optional[str] = None,
        replacements: Optional[Dict[str, str]] = None,
    ):
        """
        Args:
            model_size: Whisper model size (large-v3, medium, small, etc.)
            device: Device to use (cuda, cpu)
            compute_type: Computation type (float16, int8, etc.)
            initial_prompt: Prompt to guide transcription style and vocabulary
            replacements: Dict of {wrong: correct} text replacements
        """
        super().__init__()
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.initial_prompt = initial_prompt
        self.replacements = dict(replacements or {})

        self._model = None
        self._language: Optional[str] = None
        self._source_rate = WHISPER_SAMPLE_RATE
        self._unsubscribe = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

        # Current utterance
        self._utterance: List[np.ndarray] = []
        self._utterance_samples = 0
        self._has_speech = False
        self._last_speech_time = 0.0
        self._last_partial_time = 0.0
        self._previous_text = ""

    def is_configured(self) -> bool:
        return WhisperModel is not None

    @property
    def is_model_loaded(self) -> bool:
        return self._model is not None

    def _apply_replacements(self, text: str) -> str:
        """Apply text replacements for common transcription errors"""
        for wrong, correct in self.replacements.items():
            text = text.replace(wrong, correct)
        return text

    def _load_model_sync(self):
        logger.info(f"Loading Whisper model: {self.model_size} on {self.device}")
        start_time = time.time()
        model = WhisperModel(
            self.model_size,
            device=self.device,
            compute_type=self.compute_type,
        )
        logger.info(f"Whisper model loaded in {time.time() - start_time:.1f}s")
        return model

    async def load_model(self):
        """Load the Whisper model off the event loop"""
        if self._model is not None:
            return
        if WhisperModel is None:
            raise RecognitionNotConfigured("faster-whisper is not installed")
        try:
            self._model = await asyncio.to_thread(self._load_model_sync)
        except Exception as e:
            raise RecognitionError(f"Failed to load Whisper model: {e}") from e

    async def start(self, stream, language: Optional[str] = None):
        if self._running:
            logger.warning("Transcriber already running")
            return
        if not self.is_configured():
            raise RecognitionNotConfigured("faster-whisper is not installed")

        self._set_status(ConnectionState.CONNECTING)
        try:
            await self.load_model()
        except RecognitionError as e:
            self._set_status(ConnectionState.ERROR, str(e))
            raise

        self._language = normalize_language(language)
        self._source_rate = stream.sample_rate
        self._reset_utterance()
        self._previous_text = ""
        self._running = True
        self._unsubscribe = stream.subscribe(self._on_chunk)
        self._task = asyncio.get_running_loop().create_task(self._worker_loop())

        self._set_status(ConnectionState.CONNECTED)
        logger.info("Transcriber started")

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

        self._reset_utterance()
        self._set_status(ConnectionState.DISCONNECTED)
        logger.info("Transcriber stopped")

    def _reset_utterance(self):
        self._utterance = []
        self._utterance_samples = 0
        self._has_speech = False
        self._last_speech_time = 0.0
        self._last_partial_time = time.monotonic()

    def _on_chunk(self, chunk: np.ndarray):
        if not self._running:
            return

        audio = to_mono_float(chunk, self._source_rate)
        if not len(audio):
            return

        self._utterance.append(audio)
        self._utterance_samples += len(audio)

        rms = float(np.sqrt(np.mean(np.square(audio))))
        if rms >= self.SPEECH_RMS_THRESHOLD:
            if not self._has_speech:
                self._last_partial_time = time.monotonic()
            self._has_speech = True
            self._last_speech_time = time.monotonic()

    @property
    def utterance_duration(self) -> float:
        return self._utterance_samples / float(WHISPER_SAMPLE_RATE)

    async def _worker_loop(self):
        """Main worker loop - decides when to emit partial and final results"""
        logger.debug("Transcription worker started")
        while True:
            await asyncio.sleep(self.POLL_INTERVAL)
            try:
                await self._process()
            except RecognitionError as e:
                logger.error(f"Transcription error: {e}")
                self._set_status(ConnectionState.ERROR, str(e))
            except Exception as e:
                logger.error(f"Error in transcription worker: {e}")
                self._set_status(ConnectionState.ERROR, str(e))
                self._reset_utterance()

    async def _process(self):
        if not self._utterance:
            return

        if not self._has_speech:
            # Keep a short lead-in of silence only
            keep = int(0.5 * WHISPER_SAMPLE_RATE)
            if self._utterance_samples > keep:
                audio = np.concatenate(self._utterance)[-keep:]
                self._utterance = [audio]
                self._utterance_samples = len(audio)
            return

        now = time.monotonic()
        silent_for = now - self._last_speech_time
        if silent_for >= self.SILENCE_TIMEOUT or self.utterance_duration >= self.MAX_UTTERANCE_DURATION:
            await self._finalize_utterance()
        elif now - self._last_partial_time >= self.PARTIAL_INTERVAL:
            self._last_partial_time = now
            text = await self._transcribe(np.concatenate(self._utterance))
            if text and self._running:
                self._publish(RecognitionEvent.partial(text))

    async def _finalize_utterance(self):
        audio = np.concatenate(self._utterance)
        self._reset_utterance()

        text = await self._transcribe(audio)
        if text and self._running:
            self._previous_text = (self._previous_text + " " + text)[-500:]
            self._publish(RecognitionEvent.final(text))
            logger.debug(f"Utterance finalized: {text}")

    async def _transcribe(self, audio: np.ndarray) -> str:
        try:
            return await asyncio.to_thread(self._transcribe_sync, audio)
        except Exception as e:
            raise RecognitionError(f"Whisper inference failed: {e}") from e

    def _transcribe_sync(self, audio: np.ndarray) -> str:
        transcribe_opts = dict(
            vad_filter=True,
            vad_parameters=dict(
                min_silence_duration_ms=500,
                speech_pad_ms=200,
                threshold=0.5,
            ),
            condition_on_previous_text=True,
        )

        # Set language if specified (otherwise auto-detect)
        if self._language:
            transcribe_opts["language"] = self._language

        if self.initial_prompt:
            transcribe_opts["initial_prompt"] = self.initial_prompt
        elif self._previous_text:
            # Use previous transcription as context
            transcribe_opts["initial_prompt"] = self._previous_text

        segments, _info = self._model.transcribe(audio, **transcribe_opts)
        text = " ".join(seg.text.strip() for seg in segments if seg.text.strip())
        return self._apply_replacements(text)
