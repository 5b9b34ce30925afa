import logging
import sys

import pytest

from speaker_keepalive import __main__ as entry
from speaker_keepalive import config as config_module
from speaker_keepalive.audio.output import PacatOutputSink
from speaker_keepalive.errors import StartupError


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module, "OPTIONS_PATH", str(tmp_path / "absent.json"))
    monkeypatch.delenv(config_module.DEBUG_INTERVAL_ENV, raising=False)
    monkeypatch.setattr(PacatOutputSink, "check", lambda self: None)


def test_startup_failure_exits_with_status_1(monkeypatch, caplog):
    async def no_backend(*args, **kwargs):
        raise StartupError("no usable activity backend")

    monkeypatch.setattr(entry, "select_probe", no_backend)
    monkeypatch.setattr(sys, "argv", ["speaker-keepalive"])

    with caplog.at_level(logging.ERROR), pytest.raises(SystemExit) as exc:
        entry.run()
    assert exc.value.code == 1
    assert "Startup failed" in caplog.text


@pytest.mark.parametrize("argv", [["-f", "0"], ["-f", "30000"]])
def test_invalid_configuration_exits_with_status_1(monkeypatch, caplog, argv):
    monkeypatch.setattr(sys, "argv", ["speaker-keepalive", *argv])

    with caplog.at_level(logging.ERROR), pytest.raises(SystemExit) as exc:
        entry.run()
    assert exc.value.code == 1
    assert "Invalid configuration" in caplog.text
