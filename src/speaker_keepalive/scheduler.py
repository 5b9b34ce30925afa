"""Silence bookkeeping for the keep-alive tone and the suspend gate.

Both state machines count seconds of continuous silence from the same
stream of probe results but reset independently. Neither sees ticks on
which the probe failed, so a flaky backend can stall the counters but
never advance or clear them.
"""

import enum
import logging

from .config import SuspendConfig

logger = logging.getLogger(__name__)


class SchedulerState(enum.Enum):
    ACCUMULATING = "accumulating"
    EMITTING = "emitting"


class SilenceScheduler:
    """Decides when the keep-alive tone is due.

    ``observe`` returns True once ``threshold_seconds`` of silence have
    been counted and moves to EMITTING. The caller plays the tone and then
    reports back with ``pulse_finished`` (counter cleared) or
    ``pulse_failed`` (counter kept, so the tone is retried next tick).
    """

    def __init__(self, threshold_seconds: float, tick_interval: float):
        self.threshold_seconds = threshold_seconds
        self.tick_interval = tick_interval
        self.accumulated = 0.0
        self.state = SchedulerState.ACCUMULATING

    def observe(self, active: bool) -> bool:
        if self.state is SchedulerState.EMITTING:
            raise RuntimeError("observe() called while a pulse is still playing")
        if active:
            self.accumulated = 0.0
            return False
        self.accumulated += self.tick_interval
        if self.accumulated >= self.threshold_seconds:
            self.state = SchedulerState.EMITTING
            return True
        return False

    def pulse_finished(self) -> None:
        self.accumulated = 0.0
        self.state = SchedulerState.ACCUMULATING

    def pulse_failed(self) -> None:
        self.state = SchedulerState.ACCUMULATING


class SuspendGate:
    """Decides when to ask the host to suspend.

    Fires after ``threshold_seconds`` of silence, provided the smoothed CPU
    usage is at or below the ceiling (or no ceiling is set). The counter
    is reset in exactly one place, ``attempt_finished``, whether or not the
    suspend succeeded, so a failing suspend is retried only after another
    full idle period.
    """

    def __init__(self, config: SuspendConfig, tick_interval: float):
        self.config = config
        self.tick_interval = tick_interval
        self.accumulated = 0.0

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def needs_cpu(self) -> bool:
        return self.enabled and self.config.cpu_threshold > 0

    def observe(self, active: bool, cpu_average: float | None = None) -> bool:
        """Record one tick; True when a suspend should be attempted now.

        *cpu_average* is None when CPU telemetry failed this tick; with a
        ceiling configured the decision is then postponed.
        """
        if not self.enabled:
            return False
        if active:
            self.accumulated = 0.0
            return False
        self.accumulated += self.tick_interval
        if self.accumulated < self.config.threshold_seconds:
            return False
        if not self.needs_cpu:
            return True
        if cpu_average is None:
            logger.debug("Suspend decision postponed: no CPU reading this tick")
            return False
        if cpu_average > self.config.cpu_threshold:
            logger.debug(
                "Suspend held back: CPU %.1f%% above %.1f%%",
                cpu_average, self.config.cpu_threshold,
            )
            return False
        return True

    def attempt_finished(self) -> None:
        self.accumulated = 0.0
