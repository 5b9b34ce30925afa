"""Exceptions shared across the daemon.

``StartupError`` is the only fatal one; everything else is confined to the
tick it happened in.
"""


class StartupError(Exception):
    """A resource the daemon cannot run without is unavailable."""


class DeviceResolutionError(StartupError):
    """The playback or monitor device could not be resolved."""


class ProbeError(Exception):
    """An activity probe could not tell whether sound is playing."""


class CaptureError(ProbeError):
    """The monitor capture stream failed to open or read."""


class CpuTelemetryError(Exception):
    """CPU usage could not be sampled."""


class OutputError(Exception):
    """A keep-alive tone could not be played to completion."""
