"""Entry point for the speaker keep-alive daemon."""

import asyncio
import logging
import signal
import sys

from . import __version__
from .audio.output import PacatOutputSink
from .audio.pulse import PulseAudioManager
from .config import AppConfig, ConfigError
from .cpu import CpuSampler
from .daemon import KeepAliveDaemon
from .errors import StartupError
from .probes import select_probe
from .suspend import CommandSuspendInvoker, LogindSuspendInvoker

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def setup_logging(level_name: str) -> None:
    """Configure logging to stdout (captured by journald)."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # Quiet noisy libraries
    logging.getLogger("dbus_next").setLevel(logging.WARNING)
    logging.getLogger("pulsectl_asyncio").setLevel(logging.WARNING)


async def main(config: AppConfig) -> None:
    """Build all components and tick until signalled to stop."""
    logger.info("Speaker keep-alive v%s starting...", __version__)

    sink = PacatOutputSink(device=config.device)
    sink.check()

    pulse = PulseAudioManager()
    probe = await select_probe(
        config.probe,
        pulse=pulse,
        activity_threshold=config.activity_threshold,
        sink_name=config.device,
    )

    suspend_invoker = None
    if config.suspend.enabled:
        if config.suspend_command:
            suspend_invoker = CommandSuspendInvoker(config.suspend_command)
        else:
            suspend_invoker = LogindSuspendInvoker()
        logger.info(
            "Suspend after %s min of silence (CPU ceiling: %s)",
            config.suspend_after,
            f"{config.suspend_cpu_threshold}%" if config.suspend_cpu_threshold else "none",
        )

    daemon = KeepAliveDaemon(
        config.pulse,
        config.schedule,
        config.suspend,
        probe,
        sink,
        cpu_sampler=CpuSampler(),
        suspend_invoker=suspend_invoker,
    )

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _signal_handler)

    try:
        await daemon.run(shutdown_event)
    finally:
        await probe.close()
        if suspend_invoker:
            suspend_invoker.close()
        pulse.disconnect()
        logger.info("Goodbye.")


def run() -> None:
    """Console-script entry point."""
    try:
        config = AppConfig.load()
    except ConfigError as e:
        setup_logging("info")
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)
    setup_logging(config.log_level)

    try:
        asyncio.run(main(config))
    except StartupError as e:
        logger.error("Startup failed: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    run()
