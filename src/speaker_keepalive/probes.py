"""Activity probes: is anything audible right now?

Three backends answer the same question from different signals:

- ``StructuralScan`` walks ``/proc/asound`` for a PCM substream in the
  RUNNING state. Cheap and needs no sound server, but binary only.
- ``MonitorRmsProbe`` records the default sink's monitor source and
  compares the RMS level with a threshold, so a stream playing digital
  silence does not count as activity.
- ``SubsystemStateQuery`` asks PulseAudio (via ``pactl``) how many sinks
  are RUNNING.

One backend is chosen at startup by ``select_probe``. A probe either
returns a ``ProbeResult`` or raises ``ProbeError``; callers must treat an
error as "unknown", never as silence or activity.
"""

import abc
import enum
import logging
import math
import shutil
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from .audio.capture import ParecCapture
from .errors import CaptureError, DeviceResolutionError, ProbeError, StartupError

logger = logging.getLogger(__name__)

PROCFS_ROOT = "/proc/asound"
_RUNNING_MARKER = "state: RUNNING"
_U8_MIDPOINT = 128


class ProbeKind(enum.Enum):
    STRUCTURAL_SCAN = "procfs"
    MONITOR_RMS = "monitor"
    SUBSYSTEM_STATE = "pactl"


@dataclass(frozen=True)
class ProbeResult:
    active: bool
    kind: ProbeKind


class ActivityProbe(abc.ABC):
    """Common interface of all activity backends."""

    kind: ProbeKind

    @abc.abstractmethod
    async def sample(self) -> ProbeResult:
        """Return the current activity or raise ``ProbeError``."""

    async def reset(self) -> None:
        """Forget anything observed before a blocking tone or suspend."""

    async def close(self) -> None:
        """Release any resources held between samples."""

    def _result(self, active: bool) -> ProbeResult:
        return ProbeResult(active=active, kind=self.kind)


def _subdirs(path: Path, prefix: str) -> list[Path]:
    """Child directories of *path* whose name starts with *prefix*.

    Entries that disappear or can't be read are skipped; cards and
    streams come and go while we scan.
    """
    try:
        entries = list(path.iterdir())
    except OSError as e:
        logger.debug("Cannot list %s: %s", path, e)
        return []
    return sorted(e for e in entries if e.name.startswith(prefix) and e.is_dir())


class StructuralScan(ActivityProbe):
    """Scan card*/pcm*/sub*/status under the ALSA procfs tree."""

    kind = ProbeKind.STRUCTURAL_SCAN

    def __init__(self, root: str | Path = PROCFS_ROOT):
        self._root = Path(root)

    @staticmethod
    def available(root: str | Path = PROCFS_ROOT) -> bool:
        return Path(root).is_dir()

    async def sample(self) -> ProbeResult:
        try:
            entries = list(self._root.iterdir())
        except OSError as e:
            raise ProbeError(f"cannot read {self._root}: {e}") from e

        cards = sorted(
            e for e in entries if e.name.startswith("card") and e.is_dir()
        )
        for card in cards:
            for pcm in _subdirs(card, "pcm"):
                for sub in _subdirs(pcm, "sub"):
                    if self._substream_running(sub):
                        logger.debug("Active substream: %s", sub)
                        return self._result(True)
        return self._result(False)

    @staticmethod
    def _substream_running(sub: Path) -> bool:
        try:
            return _RUNNING_MARKER in (sub / "status").read_text()
        except OSError as e:
            logger.debug("Cannot read %s/status: %s", sub, e)
            return False


def unsigned_rms(buffer: bytes) -> float:
    """RMS of unsigned 8-bit samples, normalised to [0, 1].

    128 is the zero line; 0 and 255 are (almost) full scale.
    """
    if not buffer:
        return 0.0
    total = 0
    for sample in buffer:
        offset = sample - _U8_MIDPOINT
        total += offset * offset
    return math.sqrt(total / len(buffer)) / _U8_MIDPOINT


class MonitorRmsProbe(ActivityProbe):
    """Measure loudness on the monitor of the playback device.

    The capture handle is created lazily and thrown away whenever a read
    fails. The next sample resolves the monitor source again (the default
    sink may have changed) and opens a fresh capture.
    """

    kind = ProbeKind.MONITOR_RMS

    def __init__(
        self,
        resolve_device: Callable[[], Awaitable[str]],
        capture_factory: Callable,
        threshold: float,
    ):
        self._resolve_device = resolve_device
        self._capture_factory = capture_factory
        self._threshold = threshold
        self._capture = None
        self.last_rms: float | None = None

    async def _acquire(self):
        try:
            device = await self._resolve_device()
        except DeviceResolutionError as e:
            raise ProbeError(str(e)) from e
        capture = self._capture_factory(device)
        await capture.open()
        return capture

    async def _discard(self) -> None:
        capture, self._capture = self._capture, None
        if capture is not None:
            try:
                await capture.close()
            except Exception as e:
                logger.debug("Error closing capture: %s", e)

    async def sample(self) -> ProbeResult:
        if self._capture is None:
            self._capture = await self._acquire()
            logger.info("Monitor capture acquired on %s", self._capture.device)
        try:
            buffer = await self._capture.read()
        except CaptureError:
            await self._discard()
            raise
        self.last_rms = unsigned_rms(buffer)
        return self._result(self.last_rms >= self._threshold)

    async def reset(self) -> None:
        # The capture recorded our own tone meanwhile; reopen it fresh
        await self._discard()

    async def close(self) -> None:
        await self._discard()


class SubsystemStateQuery(ActivityProbe):
    """Active when the sound server reports at least one running stream."""

    kind = ProbeKind.SUBSYSTEM_STATE

    def __init__(self, count_running: Callable[[], Awaitable[int]]):
        self._count_running = count_running

    async def sample(self) -> ProbeResult:
        running = await self._count_running()
        return self._result(running > 0)


async def select_probe(
    preference: str,
    *,
    procfs_root: str | Path = PROCFS_ROOT,
    pulse=None,
    activity_threshold: float = 0.001,
    capture_factory: Callable | None = None,
    monitor_available: Callable[[], bool] | None = None,
    pactl_available: Callable[[], bool] | None = None,
    sink_name: str | None = None,
) -> ActivityProbe:
    """Pick the activity backend, preferring procfs, then monitor, then pactl.

    A forced *preference* that can't be satisfied is a startup error.
    """
    if capture_factory is None:
        capture_factory = ParecCapture
    if monitor_available is None:
        monitor_available = _tool_check(ParecCapture.check)
    if pactl_available is None:
        pactl_available = _which("pactl")

    if preference in ("auto", "procfs") and StructuralScan.available(procfs_root):
        logger.info("Activity probe: ALSA procfs scan (%s)", procfs_root)
        return StructuralScan(procfs_root)
    if preference == "procfs":
        raise StartupError(f"{procfs_root} is not available")

    if preference in ("auto", "monitor") and pulse is not None and monitor_available():
        # Resolve once now so a missing device fails startup
        device = await pulse.resolve_monitor_source(sink_name)
        logger.info("Activity probe: monitor RMS on %s (threshold %.4f)", device, activity_threshold)
        return MonitorRmsProbe(
            lambda: pulse.resolve_monitor_source(sink_name),
            capture_factory,
            activity_threshold,
        )
    if preference == "monitor":
        raise StartupError("monitor capture needs PulseAudio and parec")

    if preference in ("auto", "pactl") and pulse is not None and pactl_available():
        logger.info("Activity probe: pactl sink state query")
        return SubsystemStateQuery(pulse.count_running_sinks)

    raise StartupError("no usable activity probe (procfs, parec or pactl)")


def _tool_check(check: Callable[[], None]) -> Callable[[], bool]:
    def available() -> bool:
        try:
            check()
        except StartupError:
            return False
        return True
    return available


def _which(tool: str) -> Callable[[], bool]:
    return lambda: shutil.which(tool) is not None
