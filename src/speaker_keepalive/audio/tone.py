"""Keep-alive tone synthesis.

Many digital speakers enter standby after a few minutes of silence. A
20 Hz sine wave at 1% amplitude sits at the bottom edge of human hearing
and is enough to keep most of them awake.

Samples are produced lazily as floats in [-1, 1] and depend only on the
sample index and the ``PulseConfig``, never on the wall clock, so every
call starts the waveform from index 0 again.
"""

import itertools
import math
import struct
from collections.abc import Iterable, Iterator

from ..config import PulseConfig, ToneMode

S16_MAX = 32767


def sine_samples(frequency: float, amplitude: float, sample_rate: int) -> Iterator[float]:
    """Infinite sine wave starting at phase 0."""
    step = 2.0 * math.pi * frequency / sample_rate
    for i in itertools.count():
        yield amplitude * math.sin(step * i)


def pulse_interval(pulse: PulseConfig) -> int:
    """Samples per duty-cycle period."""
    return round(pulse.sample_rate / pulse.pulse_rate)


def pulse_length(pulse: PulseConfig) -> int:
    """Samples of tone at the start of each duty-cycle period."""
    return round(pulse.sample_rate * pulse.pulse_length)


def sample_count(pulse: PulseConfig) -> int | None:
    """Number of samples a tone produces, or None when it never ends."""
    if pulse.mode is ToneMode.FIXED:
        return round(pulse.sample_rate * pulse.duration)
    return None


def duty_cycle_samples(pulse: PulseConfig) -> Iterator[float]:
    """Short bursts of sine, silence for the rest of every period.

    The phase restarts at the top of each burst so every pulse is identical.
    """
    interval = pulse_interval(pulse)
    on = min(pulse_length(pulse), interval)
    if on < 1:
        raise ValueError(
            f"pulse of {pulse.pulse_length}s at {pulse.pulse_rate} Hz is shorter than one sample"
        )
    burst = list(
        itertools.islice(
            sine_samples(pulse.frequency, pulse.amplitude, pulse.sample_rate), on
        )
    )
    gap = [0.0] * (interval - on)
    while True:
        yield from burst
        yield from gap


def tone_samples(pulse: PulseConfig) -> Iterator[float]:
    """Lazy sample sequence for the configured tone mode."""
    if pulse.mode is ToneMode.DUTY_CYCLE:
        return duty_cycle_samples(pulse)
    samples = sine_samples(pulse.frequency, pulse.amplitude, pulse.sample_rate)
    count = sample_count(pulse)
    if count is None:
        return samples
    return itertools.islice(samples, count)


def encode_s16le(samples: Iterable[float], channels: int = 1) -> bytes:
    """Pack float samples as signed 16-bit little-endian PCM.

    Each sample is copied to every channel (interleaved frames).
    """
    values = [
        int(max(-1.0, min(1.0, sample)) * S16_MAX)
        for sample in samples
        for _ in range(channels)
    ]
    return struct.pack(f"<{len(values)}h", *values)
