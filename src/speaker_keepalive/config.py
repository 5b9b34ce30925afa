"""Configuration loader for the speaker keep-alive daemon.

Settings are layered, later sources winning:

1. Built-in defaults (the ``AppConfig`` field defaults).
2. An optional JSON options file (``--options``, or
   ``/etc/speaker-keepalive/options.json`` when it exists).
3. Environment (``KEEPALIVE_DEBUG_INTERVAL``).
4. Command-line flags.

The loaded ``AppConfig`` is split into immutable ``PulseConfig``,
``ScheduleConfig`` and ``SuspendConfig`` views that the core consumes.
"""

import argparse
import enum
import json
import logging
import math
import os
from dataclasses import dataclass, fields
from pathlib import Path

from .errors import StartupError

logger = logging.getLogger(__name__)

OPTIONS_PATH = "/etc/speaker-keepalive/options.json"
DEBUG_INTERVAL_ENV = "KEEPALIVE_DEBUG_INTERVAL"

PROBE_CHOICES = ("auto", "procfs", "monitor", "pactl")


class ConfigError(StartupError):
    """Raised when a configuration value is out of range."""


class ToneMode(enum.Enum):
    CONTINUOUS = "continuous"
    FIXED = "fixed"
    DUTY_CYCLE = "duty_cycle"


@dataclass(frozen=True)
class PulseConfig:
    """Shape of the keep-alive tone."""

    frequency: float = 20.0
    amplitude: float = 0.01
    duration: float = 120.0  # seconds, 0 = continuous
    pulse_rate: float | None = None  # pulses per second, None = plain tone
    pulse_length: float = 0.1  # seconds of tone per pulse
    sample_rate: int = 44100
    channels: int = 1

    @property
    def mode(self) -> ToneMode:
        if self.pulse_rate is not None:
            return ToneMode.DUTY_CYCLE
        if self.duration > 0:
            return ToneMode.FIXED
        return ToneMode.CONTINUOUS


@dataclass(frozen=True)
class ScheduleConfig:
    """Silence detection timing."""

    silence_minutes: float = 10
    tick_interval: float = 1.0
    activity_threshold: float = 0.001
    debug_interval: float = 5.0

    @property
    def silence_threshold_seconds(self) -> float:
        return self.silence_minutes * 60


@dataclass(frozen=True)
class SuspendConfig:
    """Host suspend gating. Zero minutes disables the gate."""

    suspend_minutes: float = 0
    cpu_threshold: float = 0  # percent, 0 = suspend regardless of load
    cpu_window: int = 60  # ticks

    @property
    def enabled(self) -> bool:
        return self.suspend_minutes > 0

    @property
    def threshold_seconds(self) -> float:
        return self.suspend_minutes * 60


@dataclass
class AppConfig:
    """Application configuration loaded from options file, env and flags."""

    log_level: str = "info"

    # Tone
    pulse_duration: float = 120.0
    frequency: float = 20.0
    amplitude: float = 0.01
    pulse_rate: float | None = None
    pulse_length: float = 0.1
    sample_rate: int = 44100
    device: str | None = None  # PulseAudio sink, None = default sink

    # Scheduling
    mins_of_silence: float = 10
    tick_interval: float = 1.0
    activity_threshold: float = 0.001
    debug_interval: float = 5.0
    probe: str = "auto"

    # Suspend
    suspend_after: float = 0
    suspend_cpu_threshold: float = 0
    cpu_window: int = 60
    suspend_command: str | None = None  # None = logind over D-Bus

    @property
    def pulse(self) -> PulseConfig:
        return PulseConfig(
            frequency=self.frequency,
            amplitude=self.amplitude,
            duration=self.pulse_duration,
            pulse_rate=self.pulse_rate,
            pulse_length=self.pulse_length,
            sample_rate=self.sample_rate,
        )

    @property
    def schedule(self) -> ScheduleConfig:
        return ScheduleConfig(
            silence_minutes=self.mins_of_silence,
            tick_interval=self.tick_interval,
            activity_threshold=self.activity_threshold,
            debug_interval=self.debug_interval,
        )

    @property
    def suspend(self) -> SuspendConfig:
        return SuspendConfig(
            suspend_minutes=self.suspend_after,
            cpu_threshold=self.suspend_cpu_threshold,
            cpu_window=self.cpu_window,
        )

    def validate(self) -> None:
        """Raise ``ConfigError`` for values the daemon cannot run with."""
        if self.frequency <= 0:
            raise ConfigError(f"frequency must be positive, got {self.frequency}")
        if self.sample_rate <= 0:
            raise ConfigError(f"sample rate must be positive, got {self.sample_rate}")
        if self.frequency >= self.sample_rate / 2:
            raise ConfigError(
                f"frequency {self.frequency} Hz is above the Nyquist limit "
                f"of a {self.sample_rate} Hz stream"
            )
        if not 0 <= abs(self.amplitude) <= 1:
            raise ConfigError(f"amplitude must be within [-1, 1], got {self.amplitude}")
        if self.pulse_duration < 0 or not math.isfinite(self.pulse_duration):
            raise ConfigError(f"pulse duration must be >= 0, got {self.pulse_duration}")
        if self.pulse_rate is None:
            if self.pulse_duration > 0 and round(self.sample_rate * self.pulse_duration) < 1:
                raise ConfigError(
                    f"pulse duration {self.pulse_duration}s is shorter than one sample"
                )
        else:
            if self.pulse_rate <= 0:
                raise ConfigError(f"pulse rate must be positive, got {self.pulse_rate}")
            # Checked in samples: that is what the generator works with
            interval = round(self.sample_rate / self.pulse_rate)
            length = round(self.sample_rate * self.pulse_length) if self.pulse_length > 0 else 0
            if interval < 1:
                raise ConfigError(
                    f"pulse rate {self.pulse_rate} Hz leaves less than one sample per pulse "
                    f"at {self.sample_rate} Hz"
                )
            if not 1 <= length <= interval:
                raise ConfigError(
                    f"pulse length {self.pulse_length}s ({length} samples) does not fit a "
                    f"{self.pulse_rate} Hz pulse interval ({interval} samples)"
                )
        if self.tick_interval <= 0:
            raise ConfigError(f"tick interval must be positive, got {self.tick_interval}")
        if self.debug_interval <= 0:
            raise ConfigError(f"debug interval must be positive, got {self.debug_interval}")
        if self.mins_of_silence < 0 or self.suspend_after < 0:
            raise ConfigError("minute thresholds must be >= 0")
        if not 0 <= self.suspend_cpu_threshold <= 100:
            raise ConfigError(
                f"CPU threshold must be a percentage, got {self.suspend_cpu_threshold}"
            )
        if self.cpu_window < 1:
            raise ConfigError(f"CPU window must hold at least one sample, got {self.cpu_window}")
        if self.activity_threshold < 0:
            raise ConfigError(
                f"activity threshold must be >= 0, got {self.activity_threshold}"
            )
        if self.probe not in PROBE_CHOICES:
            raise ConfigError(f"unknown probe {self.probe!r}")

    @classmethod
    def load(cls, argv: list[str] | None = None) -> "AppConfig":
        """Load configuration from options file, environment and flags."""
        args = build_parser().parse_args(argv)
        config = cls()

        # 1. Options file
        opts_path = Path(args.options or OPTIONS_PATH)
        if opts_path.exists():
            try:
                data = json.loads(opts_path.read_text())
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigError(f"Failed to parse options file {opts_path}: {e}") from e
            known = {f.name for f in fields(cls)}
            for key, value in data.items():
                if key in known:
                    setattr(config, key, value)
                else:
                    logger.warning("Ignoring unknown option %r in %s", key, opts_path)
            logger.debug("Loaded options from %s", opts_path)
        elif args.options:
            raise ConfigError(f"Options file {opts_path} does not exist")

        # 2. Environment
        env_debug = os.environ.get(DEBUG_INTERVAL_ENV)
        if env_debug:
            try:
                config.debug_interval = float(env_debug)
            except ValueError as e:
                raise ConfigError(f"{DEBUG_INTERVAL_ENV}={env_debug!r} is not a number") from e

        # 3. Flags (only those given explicitly)
        for key, value in vars(args).items():
            if key != "options" and value is not None:
                setattr(config, key, value)

        config.validate()
        return config


def build_parser() -> argparse.ArgumentParser:
    """Command-line flags. Every default is None so unset flags don't override."""
    parser = argparse.ArgumentParser(
        prog="speaker-keepalive",
        description="Keep your digital speakers from sleeping, using low sound signals",
    )
    parser.add_argument("--options", help=f"JSON options file (default {OPTIONS_PATH})")
    parser.add_argument("--log-level", dest="log_level")

    tone = parser.add_argument_group("tone")
    tone.add_argument("-d", "--pulse-duration", type=float,
                      help="Duration of each tone in seconds, 0 plays forever (default 120)")
    tone.add_argument("-f", "--frequency", type=float,
                      help="Frequency of the sine wave in Hz (default 20)")
    tone.add_argument("-a", "--amplitude", type=float,
                      help="Amplitude of the sine wave, e.g. 0.01 for 1%% (default 0.01)")
    tone.add_argument("--pulse-rate", type=float,
                      help="Play short pulses at this rate in Hz instead of a steady tone")
    tone.add_argument("--pulse-length", type=float,
                      help="Length of each pulse in seconds (default 0.1)")
    tone.add_argument("--sample-rate", type=int)
    tone.add_argument("--device", help="PulseAudio sink to play on (default sink if unset)")

    schedule = parser.add_argument_group("scheduling")
    schedule.add_argument("-s", "--mins-of-silence", type=float,
                          help="Minutes of undetected sound until the tone plays (default 10)")
    schedule.add_argument("--tick-interval", type=float,
                          help="Seconds between activity checks (default 1)")
    schedule.add_argument("--activity-threshold", type=float,
                          help="RMS level counted as audible for the monitor probe (default 0.001)")
    schedule.add_argument("--debug-interval", type=float,
                          help=f"Seconds between DEBUG status lines (env {DEBUG_INTERVAL_ENV})")
    schedule.add_argument("--probe", choices=PROBE_CHOICES,
                          help="Activity probe backend (default auto)")

    suspend = parser.add_argument_group("suspend")
    suspend.add_argument("--suspend-after", type=float,
                         help="Minutes of silence before suspending the host, 0 disables")
    suspend.add_argument("--suspend-cpu-threshold", type=float,
                         help="Only suspend while average CPU usage is at most this percent")
    suspend.add_argument("--cpu-window", type=int,
                         help="Number of ticks averaged for the CPU threshold (default 60)")
    suspend.add_argument("--suspend-command",
                         help="Command to run instead of asking logind to suspend")
    return parser
