"""The tick loop tying probes, timers, tone playback and suspend together.

Each tick, after sleeping for the tick interval:

1. ask the activity probe whether sound is audible,
2. sample CPU usage (only when the suspend gate has a CPU ceiling),
3. feed the silence scheduler and play the keep-alive tone if it is due,
4. feed the suspend gate and suspend the host if it is due.

Playback and suspend are awaited in line, so no probing happens while a
tone plays; that time is simply not counted, and the probe is reset
afterwards so nothing it buffered meanwhile leaks into the next tick.
A failure inside a tick is logged and the next tick starts from the same
timer values.
"""

import asyncio
import logging

from .audio.tone import tone_samples
from .config import PulseConfig, ScheduleConfig, SuspendConfig
from .cpu import CpuSampler, MovingAverage
from .errors import CpuTelemetryError, OutputError, ProbeError
from .probes import ActivityProbe, ProbeResult
from .scheduler import SilenceScheduler, SuspendGate

logger = logging.getLogger(__name__)


def format_period(seconds: float) -> str:
    """``MM:SS`` rendering of a silence period."""
    whole = int(seconds)
    return f"{whole // 60:02d}:{whole % 60:02d}"


class KeepAliveDaemon:
    """Runs the keep-alive and suspend state machines once per tick."""

    def __init__(
        self,
        pulse: PulseConfig,
        schedule: ScheduleConfig,
        suspend: SuspendConfig,
        probe: ActivityProbe,
        sink,
        cpu_sampler: CpuSampler | None = None,
        suspend_invoker=None,
    ):
        self.pulse = pulse
        self.schedule = schedule
        self.probe = probe
        self.sink = sink
        self.silence = SilenceScheduler(schedule.silence_threshold_seconds, schedule.tick_interval)
        self.gate = SuspendGate(suspend, schedule.tick_interval)
        self.cpu_average = MovingAverage(suspend.cpu_window)
        self._cpu_sampler = cpu_sampler
        self._suspend_invoker = suspend_invoker
        self._stop_event: asyncio.Event | None = None
        self._since_status = 0.0
        self.pulses_emitted = 0
        self.suspend_attempts = 0

        if self.gate.enabled and suspend_invoker is None:
            raise ValueError("suspend gate enabled without a suspend invoker")
        if self.gate.needs_cpu and cpu_sampler is None:
            raise ValueError("CPU ceiling configured without a CPU sampler")

    async def tick(self) -> ProbeResult | None:
        """Run one tick. Returns the probe result, or None if the probe failed."""
        try:
            result = await self.probe.sample()
        except ProbeError as e:
            logger.error("Activity probe failed, tick skipped: %s", e)
            return None

        cpu_average = self._sample_cpu()

        if self.silence.observe(result.active):
            await self._play_keepalive()

        if self.gate.observe(result.active, cpu_average):
            await self._suspend_host()

        return result

    def _sample_cpu(self) -> float | None:
        if not self.gate.needs_cpu:
            return None
        try:
            usage = self._cpu_sampler.sample()
        except CpuTelemetryError as e:
            logger.warning("%s", e)
            return None
        return self.cpu_average.add(usage)

    async def _play_keepalive(self) -> None:
        logger.info(
            "No sound for %s, playing %.1f Hz keep-alive tone (%s)",
            format_period(self.silence.accumulated),
            self.pulse.frequency,
            self.pulse.mode.value,
        )
        finished = False
        try:
            await self.sink.play(
                tone_samples(self.pulse),
                self.pulse.sample_rate,
                self.pulse.channels,
                self._stop_event,
            )
            finished = True
        except OutputError as e:
            logger.error("Keep-alive tone failed: %s", e)
        finally:
            # Only a tone that actually played to the end clears the counter
            if finished:
                self.silence.pulse_finished()
                self.pulses_emitted += 1
            else:
                self.silence.pulse_failed()
        await self.probe.reset()
        if finished:
            logger.debug("Keep-alive tone finished")

    async def _suspend_host(self) -> None:
        logger.info(
            "System idle for %s, requesting suspend", format_period(self.gate.accumulated)
        )
        self.suspend_attempts += 1
        try:
            result = await self._suspend_invoker.suspend()
        finally:
            self.gate.attempt_finished()
        await self.probe.reset()
        if result.success:
            logger.info("Suspend requested")
        else:
            logger.error(
                "Suspend failed (exit code %s): %s", result.exit_code, result.detail
            )

    def _log_status(self) -> None:
        self._since_status += self.schedule.tick_interval
        if self._since_status < self.schedule.debug_interval:
            return
        self._since_status = 0.0
        if self.gate.enabled:
            logger.debug(
                "Period of silence: %s (system idle %s, CPU avg %.1f%%)",
                format_period(self.silence.accumulated),
                format_period(self.gate.accumulated),
                self.cpu_average.average,
            )
        else:
            logger.debug("Period of silence: %s", format_period(self.silence.accumulated))

    async def run(self, stop_event: asyncio.Event) -> None:
        """Tick until *stop_event* is set."""
        self._stop_event = stop_event
        interval = self.schedule.tick_interval
        logger.info(
            "Watching for silence: tone after %s, tick every %.1fs",
            format_period(self.silence.threshold_seconds), interval,
        )
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Tick failed: %s", e, exc_info=True)
            self._log_status()
        logger.info("Tick loop stopped")
