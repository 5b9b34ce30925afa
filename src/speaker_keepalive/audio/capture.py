"""Record a PulseAudio monitor source with ``parec``.

The stream is unsigned 8-bit mono: plenty for a loudness estimate, and
every byte is one sample centred on 128.
"""

import asyncio
import logging
import shutil

from ..errors import CaptureError, StartupError

logger = logging.getLogger(__name__)

SAMPLE_RATE = 8000
BUFFER_SIZE = 4096  # samples (= bytes) per read
_DRAIN_LIMIT = 1 << 16
_DRAIN_IDLE = 0.02  # seconds without new data that count as "caught up"


class ParecCapture:
    """A long-lived parec process reading from one monitor source."""

    def __init__(
        self,
        device: str,
        sample_rate: int = SAMPLE_RATE,
        buffer_size: int = BUFFER_SIZE,
        timeout: float = 1.0,
    ):
        self.device = device
        self._sample_rate = sample_rate
        self._buffer_size = buffer_size
        self._timeout = timeout
        self._proc: asyncio.subprocess.Process | None = None

    @staticmethod
    def check() -> None:
        if shutil.which("parec") is None:
            raise StartupError("parec not found; install pulseaudio-utils to monitor output")

    @property
    def is_open(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def open(self) -> None:
        try:
            self._proc = await asyncio.create_subprocess_exec(
                "parec",
                "--device", self.device,
                "--format=u8",
                f"--rate={self._sample_rate}",
                "--channels=1",
                "--latency-msec=100",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except (FileNotFoundError, OSError) as e:
            raise CaptureError(f"could not start parec on {self.device}: {e}") from e
        logger.debug("Capture opened on %s (pid=%s)", self.device, self._proc.pid)

    async def read(self) -> bytes:
        """Return the newest ``buffer_size`` samples.

        The pipe keeps filling between ticks (and backs up while a tone
        plays), so the whole backlog is drained first and only the tail
        is kept.
        """
        if not self.is_open:
            raise CaptureError(f"capture on {self.device} is not running")
        stdout = self._proc.stdout
        try:
            data = await self._drain(stdout)
            if len(data) < self._buffer_size:
                data += await asyncio.wait_for(
                    stdout.readexactly(self._buffer_size - len(data)), self._timeout
                )
        except asyncio.TimeoutError as e:
            raise CaptureError(f"no samples from {self.device} within {self._timeout}s") from e
        except asyncio.IncompleteReadError as e:
            raise CaptureError(f"parec on {self.device} stopped mid-buffer") from e
        return data[-self._buffer_size:]

    async def _drain(self, stdout: asyncio.StreamReader) -> bytes:
        """Read until no more data is immediately available; keep the newest bytes.

        Bounded by ``timeout`` so a source that never pauses can't stall the tick.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        tail = b""
        while loop.time() < deadline:
            try:
                chunk = await asyncio.wait_for(stdout.read(_DRAIN_LIMIT), _DRAIN_IDLE)
            except asyncio.TimeoutError:
                break
            if not chunk:
                raise CaptureError(f"parec on {self.device} closed its output")
            tail = (tail + chunk)[-self._buffer_size:]
        return tail

    async def close(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None or proc.returncode is not None:
            return
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), 2.0)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
