import asyncio
import itertools
import struct

import pytest

from speaker_keepalive.audio.capture import ParecCapture
from speaker_keepalive.audio.output import PacatOutputSink
from speaker_keepalive.audio.pulse import PulseAudioManager
from speaker_keepalive.errors import CaptureError, OutputError, ProbeError, StartupError
from speaker_keepalive.probes import unsigned_rms


# --- Helpers ---

def install_tool(bin_dir, name, script, monkeypatch):
    """Put a fake command line tool first on PATH."""
    bin_dir.mkdir(exist_ok=True)
    path = bin_dir / name
    path.write_text("#!/bin/sh\n" + script)
    path.chmod(0o755)
    monkeypatch.setenv("PATH", f"{bin_dir}")
    return path


# --- Output sink ---

def test_pacat_receives_pcm(tmp_path, monkeypatch):
    out = tmp_path / "pcm.raw"
    args = tmp_path / "args.txt"
    install_tool(tmp_path / "bin", "pacat", f'echo "$@" > {args}\n/bin/cat > {out}\n', monkeypatch)

    sink = PacatOutputSink(device="alsa_output.test", chunk_frames=3)
    sink.check()
    asyncio.run(sink.play([0.0, 0.5, -0.5, 1.0, 0.25], 8000, 1))

    assert struct.unpack("<5h", out.read_bytes()) == (0, 16383, -16383, 32767, 8191)
    recorded = args.read_text()
    assert "--rate=8000" in recorded
    assert "--channels=1" in recorded
    assert "--device alsa_output.test" in recorded


def test_pacat_failure_raises(tmp_path, monkeypatch):
    install_tool(tmp_path / "bin", "pacat", "/bin/cat > /dev/null\necho 'Connection refused' >&2\nexit 1\n",
                 monkeypatch)
    with pytest.raises(OutputError, match="Connection refused"):
        asyncio.run(PacatOutputSink().play([0.1] * 10, 8000))


def test_play_stops_early_on_event(tmp_path, monkeypatch):
    install_tool(tmp_path / "bin", "pacat", "exec /bin/cat > /dev/null\n", monkeypatch)
    sink = PacatOutputSink(chunk_frames=100)

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(sink.play(itertools.repeat(0.01), 8000, 1, stop))
        await asyncio.sleep(0.1)
        stop.set()
        await asyncio.wait_for(task, 2.0)

    asyncio.run(scenario())


def test_missing_pacat_is_startup_error(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path))
    with pytest.raises(StartupError):
        PacatOutputSink().check()


# --- Capture ---

def test_parec_capture_reads_newest_buffer(tmp_path, monkeypatch):
    install_tool(
        tmp_path / "bin", "parec",
        "/usr/bin/head -c 3000 /dev/zero | /usr/bin/tr '\\000' '\\200'\n"
        "/usr/bin/head -c 1000 /dev/zero\n"
        "exec /bin/sleep 10\n",
        monkeypatch,
    )
    capture = ParecCapture("sink.monitor", buffer_size=2000, timeout=2.0)

    async def scenario():
        await capture.open()
        try:
            await asyncio.sleep(0.3)
            return await capture.read()
        finally:
            await capture.close()

    data = asyncio.run(scenario())
    assert len(data) == 2000
    # The tail holds the 1000 full-scale samples written last
    assert data[-1000:] == bytes(1000)
    assert unsigned_rms(data) > 0.5
    assert capture.is_open is False


def test_parec_capture_skips_loud_backlog(tmp_path, monkeypatch):
    # Far more than one pipe's worth of full-scale audio, then fresh silence
    recording = tmp_path / "recording.raw"
    recording.write_bytes(bytes(200_000) + bytes([128] * 8000))
    install_tool(
        tmp_path / "bin", "parec",
        f"/bin/cat {recording}\nexec /bin/sleep 10\n",
        monkeypatch,
    )
    capture = ParecCapture("sink.monitor", buffer_size=4096, timeout=2.0)

    async def scenario():
        await capture.open()
        try:
            await asyncio.sleep(1.0)
            return await capture.read()
        finally:
            await capture.close()

    data = asyncio.run(scenario())
    assert len(data) == 4096
    assert unsigned_rms(data) < 0.01


def test_parec_exit_is_capture_error(tmp_path, monkeypatch):
    install_tool(tmp_path / "bin", "parec", "exit 1\n", monkeypatch)
    capture = ParecCapture("sink.monitor", timeout=2.0)

    async def scenario():
        await capture.open()
        try:
            await capture.read()
        finally:
            await capture.close()

    with pytest.raises(CaptureError):
        asyncio.run(scenario())


def test_read_before_open_is_capture_error():
    with pytest.raises(CaptureError):
        asyncio.run(ParecCapture("sink.monitor").read())


# --- pactl ---

def test_count_running_sinks(tmp_path, monkeypatch):
    install_tool(
        tmp_path / "bin", "pactl",
        "printf 'Sink #0\\n\\tState: RUNNING\\nSink #1\\n\\tState: IDLE\\nSink #2\\n\\tState: RUNNING\\n'\n",
        monkeypatch,
    )
    assert asyncio.run(PulseAudioManager().count_running_sinks()) == 2


def test_pactl_failure_is_probe_error(tmp_path, monkeypatch):
    install_tool(tmp_path / "bin", "pactl", "echo 'Connection failure' >&2\nexit 1\n", monkeypatch)
    with pytest.raises(ProbeError, match="Connection failure"):
        asyncio.run(PulseAudioManager().count_running_sinks())
