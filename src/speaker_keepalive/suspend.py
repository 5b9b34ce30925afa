"""Ask the host to suspend.

By default the request goes to systemd-logind over the system D-Bus, the
same call ``systemctl suspend`` makes. A custom command can be configured
instead for hosts without logind.

Invokers never raise for an ordinary failure; they return a
``SuspendResult`` so the caller can log it and carry on.
"""

import asyncio
import logging
import shlex
from dataclasses import dataclass

from dbus_next import BusType
from dbus_next.aio import MessageBus
from dbus_next.errors import DBusError

logger = logging.getLogger(__name__)

LOGIND_SERVICE = "org.freedesktop.login1"
LOGIND_PATH = "/org/freedesktop/login1"
LOGIND_MANAGER_INTERFACE = "org.freedesktop.login1.Manager"


@dataclass(frozen=True)
class SuspendResult:
    success: bool
    exit_code: int | None = None
    detail: str | None = None


class LogindSuspendInvoker:
    """Calls org.freedesktop.login1.Manager.Suspend on the system bus."""

    def __init__(self, bus: MessageBus | None = None):
        self._bus = bus
        self._manager_iface = None

    async def _manager(self):
        if self._manager_iface is None:
            if self._bus is None:
                self._bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
                logger.debug("Connected to system D-Bus")
            introspection = await self._bus.introspect(LOGIND_SERVICE, LOGIND_PATH)
            proxy = self._bus.get_proxy_object(LOGIND_SERVICE, LOGIND_PATH, introspection)
            self._manager_iface = proxy.get_interface(LOGIND_MANAGER_INTERFACE)
        return self._manager_iface

    async def suspend(self) -> SuspendResult:
        try:
            manager = await self._manager()
            # interactive=False: never wait on a polkit prompt
            await manager.call_suspend(False)
        except DBusError as e:
            return SuspendResult(False, detail=f"{e.type}: {e.text}")
        except (OSError, EOFError) as e:
            # Bus went away; reconnect next time
            self._bus = None
            self._manager_iface = None
            return SuspendResult(False, detail=f"system D-Bus unavailable: {e}")
        return SuspendResult(True)

    def close(self) -> None:
        if self._bus is not None:
            self._bus.disconnect()
            self._bus = None
            self._manager_iface = None


class CommandSuspendInvoker:
    """Runs a user-supplied command, e.g. ``loginctl suspend``."""

    def __init__(self, command: str | list[str]):
        self._argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not self._argv:
            raise ValueError("suspend command is empty")

    async def suspend(self) -> SuspendResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await proc.communicate()
        except (FileNotFoundError, OSError) as e:
            return SuspendResult(False, detail=f"{self._argv[0]}: {e}")
        detail = stderr.decode(errors="replace").strip() or None
        return SuspendResult(proc.returncode == 0, proc.returncode, detail)

    def close(self) -> None:
        pass
