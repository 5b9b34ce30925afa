"""PulseAudio access: monitor source resolution and sink state queries.

Every PulseAudio sink ``X`` has a monitor source (usually ``X.monitor``)
that mirrors whatever is being played on it. Recording from the default
sink's monitor tells us whether anything audible is going out.
"""

import asyncio
import logging
import os

from pulsectl_asyncio import PulseAsync

from ..errors import DeviceResolutionError, ProbeError

logger = logging.getLogger(__name__)

CLIENT_NAME = "speaker-keepalive"

# Common PulseAudio / pipewire-pulse socket locations (tried in order).
_FALLBACK_SERVERS = [
    f"unix:/run/user/{os.getuid()}/pulse/native",
    "unix:/run/pulse/native",
    "unix:/var/run/pulse/native",
]

_STATE_PREFIX = "State:"
_RUNNING = "RUNNING"


def parse_running_states(text: str) -> int:
    """Count ``State: RUNNING`` entries in ``pactl list sinks`` output."""
    count = 0
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(_STATE_PREFIX):
            state = stripped[len(_STATE_PREFIX):].strip()
            if state.upper() == _RUNNING:
                count += 1
    return count


class PulseAudioManager:
    """Thin wrapper over a PulseAudio client connection."""

    def __init__(self):
        self._pulse: PulseAsync | None = None
        self._server: str | None = None  # resolved PA server address

    async def connect(self) -> None:
        """Connect to the PulseAudio server.

        Tries the library default (PULSE_SERVER or the session socket)
        first, then known socket paths.
        """
        try:
            self._pulse = PulseAsync(CLIENT_NAME)
            await self._pulse.connect()
            self._server = os.environ.get("PULSE_SERVER", "default")
            logger.info("Connected to PulseAudio (%s)", self._server)
            return
        except Exception:
            logger.debug("PulseAudio not reachable via default address")
            self._close_quietly()

        if os.environ.get("PULSE_SERVER"):
            raise ConnectionError(
                f"PulseAudio not reachable at PULSE_SERVER={os.environ['PULSE_SERVER']}"
            )

        logger.info("Probing known PulseAudio socket paths...")
        for server in _FALLBACK_SERVERS:
            try:
                self._pulse = PulseAsync(CLIENT_NAME, server=server)
                await self._pulse.connect()
                self._server = server
                logger.info("Connected to PulseAudio via %s", server)
                return
            except Exception:
                logger.debug("PulseAudio not available at %s", server)
                self._close_quietly()

        raise ConnectionError("PulseAudio not reachable at any known address")

    def disconnect(self) -> None:
        """Disconnect from PulseAudio."""
        if self._pulse:
            self._pulse.close()
            self._pulse = None

    def _close_quietly(self) -> None:
        if self._pulse:
            try:
                self._pulse.close()
            except Exception as e:
                logger.debug("Closing PulseAudio client failed: %s", e)
            self._pulse = None

    async def resolve_monitor_source(self, sink_name: str | None = None) -> str:
        """Return the monitor source of *sink_name*, or of the default sink.

        Connects on demand so the resolver can be reused after the audio
        server restarted.
        """
        try:
            if self._pulse is None:
                await self.connect()
            if sink_name is None:
                info = await self._pulse.server_info()
                sink_name = info.default_sink_name
            if not sink_name:
                raise DeviceResolutionError("PulseAudio has no default sink")
            sink = await self._pulse.get_sink_by_name(sink_name)
        except DeviceResolutionError:
            raise
        except Exception as e:
            # Drop the connection so the next attempt starts fresh
            self._close_quietly()
            raise DeviceResolutionError(f"could not resolve sink {sink_name!r}: {e}") from e

        monitor = sink.monitor_source_name
        if not monitor:
            raise DeviceResolutionError(f"sink {sink_name} has no monitor source")
        logger.info("Monitoring %s via %s", sink_name, monitor)
        return monitor

    async def count_running_sinks(self) -> int:
        """Count sinks PulseAudio reports as RUNNING.

        Shells out to ``pactl`` rather than keeping a client connection
        open, so it keeps working across audio server restarts.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                "pactl", "list", "sinks",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except (FileNotFoundError, OSError) as exc:
            raise ProbeError(f"pactl not available: {exc}") from exc
        if proc.returncode != 0:
            raise ProbeError(
                f"pactl list sinks failed ({proc.returncode}): "
                f"{stderr.decode(errors='replace').strip()}"
            )
        return parse_running_states(stdout.decode(errors="replace"))
