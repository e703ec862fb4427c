"""Offline MP3 transcoding of recorded audio artifacts"""

import asyncio
import io
import os
import shutil
import sys
from pathlib import Path
from typing import Iterator, Optional, Tuple

import numpy as np
from loguru import logger
from pydub import AudioSegment

from .errors import TranscodeFailure
from .models import ArtifactFormat, AudioArtifact


# Samples per channel in one MPEG-1 Layer III frame
MP3_FRAME_SIZE = 1152


def find_ffmpeg() -> Optional[str]:
    """Find FFmpeg executable"""
    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg:
        return ffmpeg

    common_paths = [
        "C:/ffmpeg/bin/ffmpeg.exe",
        "C:/Program Files/ffmpeg/bin/ffmpeg.exe",
        "/usr/bin/ffmpeg",
        "/usr/local/bin/ffmpeg",
        "/opt/homebrew/bin/ffmpeg",
    ]

    # Handles GUI launches where PATH isn't set properly
    python_dir = Path(sys.executable).parent
    common_paths.append(str(python_dir / "ffmpeg.exe"))
    common_paths.append(str(python_dir / "Library" / "bin" / "ffmpeg.exe"))

    conda_prefix = os.environ.get("CONDA_PREFIX")
    if conda_prefix:
        common_paths.append(f"{conda_prefix}/Library/bin/ffmpeg.exe")
        common_paths.append(f"{conda_prefix}/bin/ffmpeg")

    for path in common_paths:
        if Path(path).is_file():
            return path
    return None


def float_to_int16(samples: np.ndarray) -> np.ndarray:
    """
    Convert float PCM to signed 16-bit.

    Samples are clamped to [-1, 1]; negatives scale by 32768 and positives by
    32767 so both ends stay inside the int16 range.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return np.trunc(scaled).astype(np.int16)


def iter_frames(pcm: np.ndarray, frame_size: int = MP3_FRAME_SIZE) -> Iterator[np.ndarray]:
    """Yield consecutive frames of ``frame_size`` samples; the last may be partial"""
    for start in range(0, len(pcm), frame_size):
        yield pcm[start:start + frame_size]


def decode_artifact(artifact: AudioArtifact) -> Tuple[np.ndarray, int]:
    """
    Decode an artifact to linear PCM.

    Returns:
        (float samples shaped (frames, channels) in [-1, 1], sample rate)
    """
    segment = AudioSegment.from_file(io.BytesIO(artifact.data), format=artifact.extension)
    samples = np.array(segment.get_array_of_samples(), dtype=np.float64)
    full_scale = float(1 << (8 * segment.sample_width - 1))
    samples = samples.reshape(-1, segment.channels) / full_scale
    return samples, segment.frame_rate


class Mp3Transcoder:
    """
    Converts native WAV artifacts to MP3.

    The artifact is decoded with pydub, converted to 16-bit PCM and streamed
    into an FFmpeg/LAME process one 1152-sample frame at a time. Closing
    stdin flushes the final partial frame.
    """

    def __init__(self, bitrate: int = 128, ffmpeg_path: Optional[str] = None):
        self.bitrate = bitrate
        self._ffmpeg_path = ffmpeg_path

    @property
    def ffmpeg_path(self) -> Optional[str]:
        if self._ffmpeg_path is None:
            self._ffmpeg_path = find_ffmpeg()
        return self._ffmpeg_path

    def is_available(self) -> bool:
        return self.ffmpeg_path is not None

    async def transcode(self, artifact: AudioArtifact) -> AudioArtifact:
        """
        Transcode an artifact to MP3.

        Raises:
            TranscodeFailure: on any decode or encode error
        """
        if artifact.format is ArtifactFormat.COMPRESSED_MP3:
            return artifact

        ffmpeg = self.ffmpeg_path
        if ffmpeg is None:
            raise TranscodeFailure("FFmpeg not found, cannot encode MP3")

        try:
            samples, sample_rate = await asyncio.to_thread(decode_artifact, artifact)
        except Exception as e:
            raise TranscodeFailure(f"Could not decode {artifact.extension} audio: {e}") from e

        if samples.size == 0:
            raise TranscodeFailure("Recording contains no audio samples")

        channels = samples.shape[1]
        pcm = float_to_int16(samples)
        logger.info(f"Encoding {len(pcm)} frames ({channels} ch @ {sample_rate} Hz) to MP3 {self.bitrate}k")

        cmd = [
            ffmpeg,
            "-hide_banner",
            "-loglevel", "error",
            "-f", "s16le",
            "-ar", str(sample_rate),
            "-ac", str(channels),
            "-i", "pipe:0",
            "-codec:a", "libmp3lame",
            "-b:a", f"{self.bitrate}k",
            "-f", "mp3",
            "pipe:1",
        ]

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeFailure(f"Could not start FFmpeg: {e}") from e

        # Read concurrently so a full stdout pipe cannot stall the writer
        stdout_task = asyncio.ensure_future(process.stdout.read())
        stderr_task = asyncio.ensure_future(process.stderr.read())

        try:
            for frame in iter_frames(pcm):
                process.stdin.write(frame.tobytes())
                await process.stdin.drain()
            process.stdin.close()
        except (BrokenPipeError, ConnectionResetError) as e:
            process.kill()
            await process.wait()
            stdout_task.cancel()
            stderr_task.cancel()
            raise TranscodeFailure(f"FFmpeg pipe closed during encoding: {e}") from e

        mp3_data = await stdout_task
        errors = await stderr_task
        returncode = await process.wait()

        if returncode != 0:
            message = errors.decode("utf-8", errors="replace").strip()
            raise TranscodeFailure(f"FFmpeg exited with code {returncode}: {message}")
        if not mp3_data:
            raise TranscodeFailure("FFmpeg produced no MP3 data")

        logger.info(f"MP3 encoded: {len(mp3_data)} bytes")
        return AudioArtifact(
            data=mp3_data,
            format=ArtifactFormat.COMPRESSED_MP3,
            sample_rate=sample_rate,
            channels=channels,
            duration_seconds=len(pcm) / float(sample_rate),
        )
