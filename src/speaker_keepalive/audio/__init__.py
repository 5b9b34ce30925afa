"""Audio plumbing: tone synthesis, pacat playback, parec capture, PulseAudio queries."""

from .capture import ParecCapture
from .output import PacatOutputSink
from .pulse import PulseAudioManager

__all__ = ["ParecCapture", "PacatOutputSink", "PulseAudioManager"]
