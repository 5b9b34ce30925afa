import json

import pytest

from speaker_keepalive import config as config_module
from speaker_keepalive.config import AppConfig, ConfigError, ToneMode
from speaker_keepalive.errors import StartupError


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module, "OPTIONS_PATH", str(tmp_path / "absent.json"))
    monkeypatch.delenv(config_module.DEBUG_INTERVAL_ENV, raising=False)


def test_defaults():
    config = AppConfig.load([])
    assert config.pulse.duration == 120.0
    assert config.pulse.frequency == 20.0
    assert config.pulse.amplitude == 0.01
    assert config.pulse.mode is ToneMode.FIXED
    assert config.schedule.silence_threshold_seconds == 600
    assert config.schedule.debug_interval == 5.0
    assert config.suspend.enabled is False
    assert config.probe == "auto"


def test_flags_override_defaults():
    config = AppConfig.load([
        "-d", "0", "-f", "30", "-a", "0.05", "-s", "2",
        "--suspend-after", "30", "--suspend-cpu-threshold", "15", "--cpu-window", "10",
        "--probe", "pactl",
    ])
    assert config.pulse.mode is ToneMode.CONTINUOUS
    assert config.pulse.frequency == 30.0
    assert config.schedule.silence_threshold_seconds == 120
    assert config.suspend.threshold_seconds == 1800
    assert config.suspend.cpu_threshold == 15
    assert config.suspend.cpu_window == 10
    assert config.probe == "pactl"


def test_duty_cycle_flags():
    config = AppConfig.load(["--pulse-rate", "2", "--pulse-length", "0.05"])
    assert config.pulse.mode is ToneMode.DUTY_CYCLE
    assert config.pulse.pulse_rate == 2


def test_options_file_then_flags(tmp_path):
    options = tmp_path / "options.json"
    options.write_text(json.dumps({"mins_of_silence": 3, "amplitude": 0.02, "bogus": 1}))
    config = AppConfig.load(["--options", str(options), "-a", "0.03"])
    assert config.mins_of_silence == 3
    assert config.amplitude == 0.03


def test_missing_explicit_options_file(tmp_path):
    with pytest.raises(ConfigError):
        AppConfig.load(["--options", str(tmp_path / "nope.json")])


def test_malformed_options_file(tmp_path):
    options = tmp_path / "options.json"
    options.write_text("{not json")
    with pytest.raises(ConfigError):
        AppConfig.load(["--options", str(options)])


def test_debug_interval_from_environment(monkeypatch):
    monkeypatch.setenv(config_module.DEBUG_INTERVAL_ENV, "30")
    assert AppConfig.load([]).schedule.debug_interval == 30.0
    assert AppConfig.load(["--debug-interval", "2"]).schedule.debug_interval == 2.0


def test_bad_debug_interval_environment(monkeypatch):
    monkeypatch.setenv(config_module.DEBUG_INTERVAL_ENV, "often")
    with pytest.raises(ConfigError):
        AppConfig.load([])


@pytest.mark.parametrize("argv", [
    ["-f", "0"],
    ["-f", "30000"],
    ["-a", "1.5"],
    ["-d", "-1"],
    ["--tick-interval", "0"],
    ["--suspend-cpu-threshold", "150"],
    ["--cpu-window", "0"],
    ["--pulse-rate", "10", "--pulse-length", "0.5"],
    ["-s", "-1"],
])
def test_invalid_values_rejected(argv):
    with pytest.raises(ConfigError):
        AppConfig.load(argv)


@pytest.mark.parametrize("argv", [
    # 100000 Hz at 44100 Hz rounds to a zero-sample interval
    ["--pulse-rate", "100000", "--pulse-length", "0.000005"],
    # 10 microseconds of tone rounds to zero samples
    ["--pulse-rate", "2", "--pulse-length", "0.00001"],
    ["--pulse-rate", "2", "--pulse-length", "0"],
    ["-d", "0.000001"],
])
def test_sub_sample_pulses_rejected(argv):
    with pytest.raises(ConfigError):
        AppConfig.load(argv)


def test_config_error_is_fatal_at_startup():
    with pytest.raises(StartupError):
        AppConfig.load(["-f", "0"])
