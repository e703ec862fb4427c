"""VoiceNote - voice-to-text note taking with provenance-tagged transcripts"""

__version__ = "0.1.0"
