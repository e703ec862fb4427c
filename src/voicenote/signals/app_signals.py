"""Session signals for notifying a front end about recording and document changes"""

from PySide6.QtCore import QObject, Signal


class SessionSignals(QObject):
    """
    Signals emitted by one RecordingOrchestrator.

    Each orchestrator owns its own instance; connect front-end slots to it
    after construction.
    """

    # ===== Recording signals =====
    recording_started = Signal()
    recording_stopped = Signal()

    # ===== Audio signals =====
    audio_level_updated = Signal(float)  # 0.0 - 1.0

    # ===== Transcript signals =====
    segments_changed = Signal(object)  # list of Segment, document order
    connection_status_changed = Signal(object)  # ConnectionStatus

    # ===== File signals =====
    document_saved = Signal(str)  # file_path
    audio_saved = Signal(str)  # file_path
    document_loaded = Signal(str)  # file_path

    # ===== UI signals =====
    status_message = Signal(str, int)  # (message, timeout_ms)
    error_occurred = Signal(str)
