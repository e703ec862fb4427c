"""Recognition interfaces and the typed event channel between transports and the reconciler"""

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np
from loguru import logger

from .models import (
    AudioArtifact,
    ConnectionState,
    ConnectionStatus,
    RecognitionEvent,
    TranscriptionResult,
)


# Whisper models expect 16 kHz mono
WHISPER_SAMPLE_RATE = 16000

StatusCallback = Callable[[ConnectionStatus], None]


def normalize_language(language: Optional[str]) -> Optional[str]:
    """Map the "auto" tag (and empty values) to None, meaning auto-detect"""
    if not language:
        return None
    language = language.strip()
    if not language or language.lower() == "auto":
        return None
    return language


def to_mono_float(
    audio_data: np.ndarray,
    source_sample_rate: int,
    target_sample_rate: int = WHISPER_SAMPLE_RATE,
) -> np.ndarray:
    """
    Convert a captured chunk to mono float32 at ``target_sample_rate``.

    Args:
        audio_data: Audio samples (int16 or float32), mono or (frames, channels)
        source_sample_rate: Sample rate of the input audio
        target_sample_rate: Rate expected by the recognizer
    """
    if audio_data.dtype == np.int16:
        audio_data = audio_data.astype(np.float32) / 32768.0
    else:
        audio_data = audio_data.astype(np.float32)

    # Ensure mono
    if audio_data.ndim > 1:
        audio_data = audio_data.mean(axis=1)

    if source_sample_rate != target_sample_rate and len(audio_data):
        # Nearest-sample resampling is good enough for speech recognition
        ratio = target_sample_rate / source_sample_rate
        new_length = max(1, int(round(len(audio_data) * ratio)))
        indices = np.linspace(0, len(audio_data) - 1, new_length).astype(int)
        audio_data = audio_data[indices]

    return audio_data


class RecognitionChannel:
    """
    Ordered queue of recognition events.

    Transports publish from the event loop; a single consumer applies events
    in arrival order. Once closed, published events are dropped.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: RecognitionEvent) -> bool:
        """Enqueue an event; returns False if the channel no longer accepts events"""
        if self._closed:
            logger.debug(f"Dropping late {event.kind.value} event")
            return False
        self._queue.put_nowait(event)
        return True

    async def get(self) -> RecognitionEvent:
        return await self._queue.get()

    def task_done(self):
        self._queue.task_done()

    async def join(self):
        """Wait until every published event has been consumed"""
        await self._queue.join()

    def close(self):
        self._closed = True

    def pending(self) -> int:
        return self._queue.qsize()


class RecognitionTransport(ABC):
    """
    Real-time recognizer fed from a running session stream.

    Results go to the event channel as partial and final events. Status
    changes go to the status callback.
    """

    def __init__(self):
        self._channel: Optional[RecognitionChannel] = None
        self._status_callback: Optional[StatusCallback] = None
        self._status = ConnectionStatus(ConnectionState.DISCONNECTED)

    def set_event_channel(self, channel: Optional[RecognitionChannel]):
        self._channel = channel

    def set_status_callback(self, callback: Optional[StatusCallback]):
        self._status_callback = callback

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    def _set_status(self, state: ConnectionState, message: Optional[str] = None):
        self._status = ConnectionStatus(state, message)
        logger.debug(f"{self.__class__.__name__} status: {state.value}" + (f" ({message})" if message else ""))
        if self._status_callback:
            self._status_callback(self._status)

    def _publish(self, event: RecognitionEvent):
        if self._channel is not None:
            self._channel.publish(event)

    @abstractmethod
    def is_configured(self) -> bool:
        pass

    @abstractmethod
    async def start(self, stream, language: Optional[str] = None):
        """
        Begin recognizing audio from ``stream`` (a SessionStream).

        Raises:
            RecognitionNotConfigured: engine or credentials missing
            RecognitionError: engine failed to start
        """
        pass

    @abstractmethod
    async def stop(self):
        """Stop recognition. Safe to call more than once."""
        pass


class BatchRecognizer(ABC):
    """Recognizer that transcribes a whole recording at once"""

    @abstractmethod
    def is_configured(self) -> bool:
        pass

    @abstractmethod
    async def transcribe(
        self, artifact: AudioArtifact, language: Optional[str] = None
    ) -> TranscriptionResult:
        """
        Raises:
            RecognitionNotConfigured: engine or credentials missing
            RecognitionError: transport or authentication failure
        """
        pass
