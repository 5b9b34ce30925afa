"""CPU usage sampling and smoothing for the suspend gate.

A host that is busy compiling or transcoding is usually silent too, so the
suspend gate can require the average load to be low before suspending.
"""

import collections
import logging
from collections.abc import Callable

import psutil

from .errors import CpuTelemetryError

logger = logging.getLogger(__name__)


class CpuSampler:
    """Busiest core's usage in percent since the previous sample.

    One pegged core is enough to count as busy, hence the max rather
    than the mean over cores.
    """

    def __init__(self, cpu_percent: Callable[..., list[float]] = psutil.cpu_percent):
        self._cpu_percent = cpu_percent

    def sample(self) -> float:
        try:
            per_core = self._cpu_percent(interval=None, percpu=True)
        except (psutil.Error, OSError) as e:
            raise CpuTelemetryError(f"CPU usage unavailable: {e}") from e
        if not per_core:
            raise CpuTelemetryError("CPU usage unavailable: no cores reported")
        return max(per_core)


class MovingAverage:
    """Average of the last ``capacity`` samples, newest first.

    The divisor is always the configured capacity, not the number of
    samples seen so far, so the output ramps up from 0 while the window
    fills. A freshly started daemon therefore looks idle to the gate for
    its first ``capacity`` ticks.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._window: collections.deque[float] = collections.deque()

    def add(self, value: float) -> float:
        self._window.appendleft(value)
        while len(self._window) > self.capacity:
            self._window.pop()
        return self.average

    @property
    def average(self) -> float:
        return sum(self._window) / self.capacity

    @property
    def window(self) -> list[float]:
        return list(self._window)

    def __len__(self) -> int:
        return len(self._window)
