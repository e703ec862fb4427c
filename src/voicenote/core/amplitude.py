"""Audio level analysis for the live level meter"""

import asyncio
from typing import Optional, Callable
import numpy as np
from loguru import logger


def loudness_from_bins(byte_bins) -> float:
    """
    Collapse byte frequency magnitudes (0-255) into a loudness value.

    The mean bin magnitude is divided by 128 and clamped to [0, 1].
    """
    bins = np.asarray(byte_bins, dtype=np.float64)
    if bins.size == 0:
        return 0.0
    level = float(np.mean(bins)) / 128.0
    return max(0.0, min(1.0, level))


class AmplitudeAnalyzer:
    """
    Continuously computes a smoothed loudness value from captured audio.

    Works like a browser analyser node: the newest ``fft_size`` samples are
    windowed and transformed, bin magnitudes are smoothed over time, mapped
    from decibels to bytes and averaged. The result is delivered to the level
    callback once per tick.
    """

    MIN_DECIBELS = -100.0
    MAX_DECIBELS = -30.0

    def __init__(
        self,
        fft_size: int = 256,
        smoothing: float = 0.8,
        refresh_rate: float = 60.0,
    ):
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError("fft_size must be a power of two >= 32")

        self.fft_size = fft_size
        self.smoothing = smoothing
        self.refresh_rate = refresh_rate

        self._window = np.blackman(fft_size)
        self._samples = np.zeros(fft_size, dtype=np.float32)
        self._smoothed = np.zeros(fft_size // 2, dtype=np.float64)

        self._active = False
        self._sample_rate: Optional[int] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._level_callback: Optional[Callable[[float], None]] = None
        self._level = 0.0

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def level(self) -> float:
        """Last computed loudness (0.0 to 1.0)"""
        return self._level

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def set_level_callback(self, callback: Optional[Callable[[float], None]]):
        """Set callback for level updates (0.0 to 1.0)"""
        self._level_callback = callback

    def start(self, sample_rate: int):
        """Bind to a stream and start ticking on the running event loop"""
        if self._active:
            logger.warning("Amplitude analyzer already running")
            return

        self._reset()
        self._sample_rate = sample_rate
        self._active = True
        self._tick_task = asyncio.get_running_loop().create_task(self._tick_loop())
        logger.debug(f"Amplitude analyzer started ({self.fft_size}-point, {self.refresh_rate:.0f} Hz)")

    def stop(self):
        """Stop ticking and release buffers"""
        self._active = False
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None
        self._reset()
        self._sample_rate = None
        logger.debug("Amplitude analyzer stopped")

    def _reset(self):
        self._samples = np.zeros(self.fft_size, dtype=np.float32)
        self._smoothed = np.zeros(self.fft_size // 2, dtype=np.float64)
        self._level = 0.0

    def feed(self, block: np.ndarray):
        """Push a captured block (int16 or float, mono or interleaved)"""
        if not self._active:
            return

        samples = np.asarray(block)
        if samples.dtype == np.int16:
            samples = samples.astype(np.float32) / 32768.0
        else:
            samples = samples.astype(np.float32)
        if samples.ndim > 1:
            samples = samples.mean(axis=1)

        if len(samples) >= self.fft_size:
            self._samples = samples[-self.fft_size:].copy()
        else:
            self._samples = np.concatenate((self._samples[len(samples):], samples))

    def byte_frequency_data(self) -> np.ndarray:
        """Smoothed bin magnitudes scaled to 0-255, advancing the smoothing state"""
        spectrum = np.fft.rfft(self._samples * self._window)
        magnitude = np.abs(spectrum[: self.fft_size // 2]) / self.fft_size

        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitude

        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(self._smoothed)
        scale = 255.0 / (self.MAX_DECIBELS - self.MIN_DECIBELS)
        scaled = (decibels - self.MIN_DECIBELS) * scale
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)

    def tick(self) -> Optional[float]:
        """Compute one loudness update; skipped silently when not active"""
        if not self._active:
            return None

        self._level = loudness_from_bins(self.byte_frequency_data())
        if self._level_callback:
            self._level_callback(self._level)
        return self._level

    async def _tick_loop(self):
        interval = 1.0 / self.refresh_rate
        while self._active:
            await asyncio.sleep(interval)
            self.tick()
