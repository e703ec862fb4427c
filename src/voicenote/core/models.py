"""Data types shared by the capture, recognition and document services"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List


DEFAULT_TITLE = "Untitled Note"


class Provenance(str, Enum):
    """Where a segment's current text came from"""
    MACHINE = "machine"  # recognizer output
    USER = "user"  # edited by the user


class AudioSource(str, Enum):
    """Capture source"""
    MICROPHONE = "microphone"
    SYSTEM_OUTPUT = "system"


class ArtifactFormat(str, Enum):
    """Audio artifact format selected at save time"""
    NATIVE_CONTAINER = "wav"
    COMPRESSED_MP3 = "mp3"

    @property
    def mime_type(self) -> str:
        return "audio/wav" if self is ArtifactFormat.NATIVE_CONTAINER else "audio/mpeg"


class SessionState(Enum):
    """Audio session state enumeration"""
    IDLE = "idle"
    ACTIVE = "active"
    STOPPING = "stopping"


class RecognitionEventKind(str, Enum):
    PARTIAL = "partial"
    FINAL = "final"


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


def _new_segment_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Segment:
    """
    One provenance-tagged span of transcript text.

    Segments are immutable; the reconciler swaps list entries to change text,
    provenance or the provisional flag. A finalized segment never becomes
    provisional again.
    """
    text: str
    provenance: Provenance = Provenance.MACHINE
    provisional: bool = False
    id: str = field(default_factory=_new_segment_id)
    created_at: float = field(default_factory=time.monotonic)  # diagnostics only

    @property
    def is_user_input(self) -> bool:
        return self.provenance is Provenance.USER


@dataclass
class Document:
    """Persisted (title, ordered segments) pair"""
    title: str = DEFAULT_TITLE
    segments: List[Segment] = field(default_factory=list)
    language: Optional[str] = None


@dataclass
class AudioSession:
    """Runtime-only description of the current capture"""
    source: AudioSource
    artifact_format: ArtifactFormat
    device_id: Optional[str] = None
    started_at: float = field(default_factory=time.monotonic)


@dataclass
class AudioArtifact:
    """Raw or transcoded audio payload produced by a session"""
    data: bytes
    format: ArtifactFormat
    sample_rate: int
    channels: int
    duration_seconds: float = 0.0

    @property
    def mime_type(self) -> str:
        return self.format.mime_type

    @property
    def extension(self) -> str:
        return self.format.value

    def __len__(self) -> int:
        return len(self.data)


@dataclass
class AudioDevice:
    """Audio capture device information"""
    id: str
    label: str
    channels: int = 1
    sample_rate: float = 44100.0
    is_default: bool = False


@dataclass(frozen=True)
class RecognitionEvent:
    """A partial or final recognition result"""
    kind: RecognitionEventKind
    text: str
    confidence: Optional[float] = None

    @classmethod
    def partial(cls, text: str, confidence: Optional[float] = None) -> "RecognitionEvent":
        return cls(RecognitionEventKind.PARTIAL, text, confidence)

    @classmethod
    def final(cls, text: str, confidence: Optional[float] = None) -> "RecognitionEvent":
        return cls(RecognitionEventKind.FINAL, text, confidence)

    @property
    def is_final(self) -> bool:
        return self.kind is RecognitionEventKind.FINAL


@dataclass(frozen=True)
class ConnectionStatus:
    """Recognition transport connection status"""
    state: ConnectionState
    message: Optional[str] = None


@dataclass
class TranscriptionResult:
    """Result of a batch transcription call"""
    text: str
    language: Optional[str] = None
