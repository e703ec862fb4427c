"""Error types raised by the recording and document services"""


class VoiceNoteError(Exception):
    """Base class for all VoiceNote errors"""


class DeviceUnavailable(VoiceNoteError):
    """Capture permission denied or no matching device"""


class AlreadyRecording(VoiceNoteError):
    """start() called while a session is active"""


class NotRecording(VoiceNoteError):
    """stop() called with no active session"""


class RecognitionNotConfigured(VoiceNoteError):
    """Recognition engine or credentials are missing"""


class RecognitionError(VoiceNoteError):
    """Recognition request failed (transport or auth)"""


class MalformedDocument(VoiceNoteError):
    """Saved document could not be decoded"""


class NothingToSave(VoiceNoteError):
    """Document has no segments"""


class NoRecording(VoiceNoteError):
    """No audio artifact is currently held"""


class TranscodeFailure(VoiceNoteError):
    """Offline audio format conversion failed"""


class SegmentNotFound(VoiceNoteError, KeyError):
    """No segment with the requested id"""
