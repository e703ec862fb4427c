"""Signals for cross-component communication"""

from .app_signals import SessionSignals

__all__ = ["SessionSignals"]
