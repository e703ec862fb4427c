"""Audio capture backends.

This module defines the abstract interface for capture backends so the
session controller can acquire microphone and system-output streams without
probing the platform itself. ``SoundDeviceBackend`` implements it on top of
PortAudio via sounddevice.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Set

import numpy as np
from loguru import logger

from .errors import DeviceUnavailable
from .models import ArtifactFormat, AudioDevice
from .transcoder import find_ffmpeg

try:
    import sounddevice as sd
except (ImportError, OSError):
    # OSError: PortAudio library missing
    sd = None
    logger.warning("sounddevice not available. Audio capture will not work.")


# Device name fragments that identify loopback / monitor inputs
LOOPBACK_NAME_HINTS = ("monitor", "loopback", "stereo mix", "what u hear", "blackhole")

AudioCallback = Callable[[np.ndarray], None]


class VideoTrackRequired(Exception):
    """Raised by a backend whose display capture cannot be audio-only"""


class CaptureStream(ABC):
    """An acquired but not necessarily running capture stream"""

    sample_rate: int
    channels: int

    @abstractmethod
    def start(self, callback: AudioCallback):
        """Begin delivering blocks to ``callback`` (called on the audio thread)."""
        pass

    @abstractmethod
    def stop(self):
        """Halt delivery."""
        pass

    @abstractmethod
    def close(self):
        """Release the underlying device handle."""
        pass

    def discard_video(self):
        """Drop any video track that came with a display capture."""
        pass

    @property
    def name(self) -> str:
        return self.__class__.__name__


class AudioBackend(ABC):
    """Stream factory and capability query for the session controller."""

    @abstractmethod
    def list_devices(self) -> List[AudioDevice]:
        pass

    @abstractmethod
    def supports_system_audio_capture(self) -> bool:
        pass

    @abstractmethod
    def supported_artifact_formats(self) -> Set[ArtifactFormat]:
        pass

    @abstractmethod
    def open_microphone(
        self, device_id: Optional[str], sample_rate: int, channels: int
    ) -> CaptureStream:
        """Acquire a microphone stream.

        Raises:
            DeviceUnavailable: permission denied or no matching device
        """
        pass

    @abstractmethod
    def open_display_capture(
        self, sample_rate: int, channels: int, audio_only: bool = True
    ) -> CaptureStream:
        """Acquire a system-output stream.

        Raises:
            VideoTrackRequired: audio-only capture is not permitted here
            DeviceUnavailable: no system-output source available
        """
        pass


class SoundDeviceStream(CaptureStream):
    """CaptureStream wrapping a sounddevice InputStream"""

    def __init__(self, device, sample_rate: int, channels: int, dtype: str = "int16", label: str = ""):
        self.sample_rate = sample_rate
        self.channels = channels
        self._label = label or str(device)
        self._callback: Optional[AudioCallback] = None

        try:
            self._stream = sd.InputStream(
                device=device,
                channels=channels,
                samplerate=sample_rate,
                dtype=dtype,
                callback=self._audio_callback,
                blocksize=1024,
            )
        except Exception as e:
            raise DeviceUnavailable(f"Could not open audio device {self._label}: {e}") from e

    @property
    def name(self) -> str:
        return self._label

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status):
        """Callback for audio stream - called on audio thread"""
        if status:
            logger.warning(f"Audio callback status: {status}")

        callback = self._callback
        if callback is not None:
            # Copy: PortAudio reuses the buffer
            callback(indata.copy())

    def start(self, callback: AudioCallback):
        self._callback = callback
        self._stream.start()

    def stop(self):
        self._stream.stop()
        self._callback = None

    def close(self):
        self._callback = None
        self._stream.close()


class SoundDeviceBackend(AudioBackend):
    """
    PortAudio capture via sounddevice.

    System output is captured from a loopback or monitor input device
    (PulseAudio/PipeWire monitors, "Stereo Mix", BlackHole). Such devices are
    audio-only, so the video-track fallback never triggers here.
    """

    def __init__(self, dtype: str = "int16"):
        self.dtype = dtype

    def _query_input_devices(self) -> List[AudioDevice]:
        if sd is None:
            return []

        devices = []
        try:
            default_device = sd.query_devices(kind="input")
            default_index = default_device["index"] if default_device else -1
        except Exception:
            default_index = -1

        try:
            for i, device in enumerate(sd.query_devices()):
                if device["max_input_channels"] > 0:
                    devices.append(AudioDevice(
                        id=str(i),
                        label=device["name"],
                        channels=device["max_input_channels"],
                        sample_rate=device["default_samplerate"],
                        is_default=(i == default_index),
                    ))
        except Exception as e:
            logger.error(f"Error getting audio devices: {e}")

        return devices

    def list_devices(self) -> List[AudioDevice]:
        """Get list of available audio input devices"""
        return self._query_input_devices()

    def _find_loopback_device(self) -> Optional[AudioDevice]:
        for device in self._query_input_devices():
            name = device.label.lower()
            if any(hint in name for hint in LOOPBACK_NAME_HINTS):
                return device
        return None

    def supports_system_audio_capture(self) -> bool:
        return self._find_loopback_device() is not None

    def supported_artifact_formats(self) -> Set[ArtifactFormat]:
        formats = {ArtifactFormat.NATIVE_CONTAINER}
        if find_ffmpeg():
            formats.add(ArtifactFormat.COMPRESSED_MP3)
        return formats

    def _resolve_device(self, device_id: Optional[str]):
        """Map an opaque device id to a sounddevice index"""
        if device_id is None or device_id == "":
            return None
        for device in self._query_input_devices():
            if device.id == device_id or device.label == device_id:
                return int(device.id)
        raise DeviceUnavailable(f"No audio input device matches '{device_id}'")

    def open_microphone(self, device_id: Optional[str], sample_rate: int, channels: int) -> CaptureStream:
        if sd is None:
            raise DeviceUnavailable("sounddevice not installed or PortAudio missing")

        device = self._resolve_device(device_id)
        label = device_id or "default input"
        logger.info(f"Opening microphone: {label}")
        return SoundDeviceStream(device, sample_rate, channels, dtype=self.dtype, label=label)

    def open_display_capture(self, sample_rate: int, channels: int, audio_only: bool = True) -> CaptureStream:
        if sd is None:
            raise DeviceUnavailable("sounddevice not installed or PortAudio missing")

        loopback = self._find_loopback_device()
        if loopback is None:
            raise DeviceUnavailable("No loopback or monitor device found for system audio")

        logger.info(f"Opening system audio via {loopback.label}")
        return SoundDeviceStream(
            int(loopback.id),
            sample_rate,
            min(channels, loopback.channels),
            dtype=self.dtype,
            label=loopback.label,
        )


def create_audio_backend(name: str = "sounddevice") -> AudioBackend:
    """Factory function for capture backends"""
    if name == "sounddevice":
        return SoundDeviceBackend()
    raise ValueError(f"Unknown audio backend: {name}")
