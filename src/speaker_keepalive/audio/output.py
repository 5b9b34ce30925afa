"""Play keep-alive tones through PulseAudio with ``pacat``.

The tone generator may be infinite (continuous or duty-cycled tones), so
samples are encoded and written in fixed-size chunks instead of being
rendered up front.
"""

import asyncio
import itertools
import logging
import shutil
from collections.abc import Iterable

from ..errors import OutputError, StartupError
from .tone import encode_s16le

logger = logging.getLogger(__name__)

CHUNK_FRAMES = 4410  # 100 ms at 44.1 kHz


class PacatOutputSink:
    """Streams a sample sequence to a PulseAudio sink via pacat."""

    def __init__(self, device: str | None = None, chunk_frames: int = CHUNK_FRAMES):
        self._device = device
        self._chunk_frames = chunk_frames

    def check(self) -> None:
        """Fail at startup when there is no way to open an output stream."""
        if shutil.which("pacat") is None:
            raise StartupError("pacat not found; install pulseaudio-utils to play tones")

    async def play(
        self,
        samples: Iterable[float],
        sample_rate: int,
        channels: int = 1,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Block until *samples* is exhausted or *stop_event* is set."""
        cmd = [
            "pacat",
            "--playback",
            "--format=s16le",
            f"--rate={sample_rate}",
            f"--channels={channels}",
        ]
        if self._device:
            cmd += ["--device", self._device]

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, OSError) as e:
            raise OutputError(f"could not start pacat: {e}") from e

        logger.debug("pacat started (pid=%s, rate=%d, channels=%d)", proc.pid, sample_rate, channels)
        iterator = iter(samples)
        stopped = False
        try:
            while True:
                if stop_event is not None and stop_event.is_set():
                    stopped = True
                    break
                chunk = list(itertools.islice(iterator, self._chunk_frames))
                if not chunk:
                    break
                proc.stdin.write(encode_s16le(chunk, channels))
                await proc.stdin.drain()
                # drain() doesn't yield while the pipe has room
                await asyncio.sleep(0)
        except (BrokenPipeError, ConnectionResetError) as e:
            await proc.wait()
            stderr = await proc.stderr.read()
            raise OutputError(
                f"pacat closed the stream (exit {proc.returncode}): "
                f"{stderr.decode(errors='replace').strip() or e}"
            ) from e
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if stopped:
            proc.terminate()
            await proc.wait()
            logger.debug("Tone stopped early")
            return

        proc.stdin.close()
        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise OutputError(
                f"pacat exited with {proc.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
