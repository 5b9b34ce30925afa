"""Keep digital speakers (and optionally the host) from going to sleep."""

__version__ = "0.3.0"
