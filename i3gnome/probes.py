"""Readiness probes for named session endpoints.

A probe answers one question for one endpoint name: is it ready? It either
returns a ProbeStatus or raises one of the ProbeError subclasses below. The
time bound is enforced by the caller (see resilience.retry), not the probe.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from .models import ProbeStatus

logger = logging.getLogger(__name__)


class ProbeError(Exception):
    """Base class for probe failures. All of them are retryable."""

    pass


class ProbeUnavailable(ProbeError):
    """The endpoint does not exist."""

    pass


class ProbeNoReply(ProbeError):
    """The endpoint exists but did not answer."""

    pass


class ProbeTimeout(ProbeError):
    """The bounded wait for the endpoint elapsed."""

    def __init__(self, message: str = "", timeout: float = 0.0):
        super().__init__(message)
        self.timeout = timeout


class ProbeUnknownError(ProbeError):
    """Any other probe failure."""

    pass


class Probe(ABC):
    """A single readiness check against a named endpoint."""

    @abstractmethod
    async def check(self, name: str) -> ProbeStatus:
        """Check one endpoint.

        Args:
            name: Endpoint identifier

        Returns:
            READY or NOT_READY

        Raises:
            ProbeError: If the check failed
        """


class CallableProbe(Probe):
    """Adapts a plain function into a probe.

    The function receives the endpoint name and returns a ProbeStatus, a
    bool, or raises. Blocking functions run in the default executor so they
    do not stall other probes.
    """

    def __init__(self, func: Callable[[str], Any]):
        self.func = func

    async def check(self, name: str) -> ProbeStatus:
        if asyncio.iscoroutinefunction(self.func):
            result = await self.func(name)
        else:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, self.func, name)

        if isinstance(result, ProbeStatus):
            return result
        return ProbeStatus.READY if result else ProbeStatus.NOT_READY


# D-Bus error names mapped to probe error kinds
DBUS_ERROR_MAP: dict[str, type[ProbeError]] = {
    "org.freedesktop.DBus.Error.ServiceUnknown": ProbeUnavailable,
    "org.freedesktop.DBus.Error.NameHasNoOwner": ProbeUnavailable,
    "org.freedesktop.DBus.Error.UnknownMethod": ProbeNoReply,
    "org.freedesktop.DBus.Error.NoReply": ProbeNoReply,
    "org.freedesktop.DBus.Error.Timeout": ProbeTimeout,
    "org.freedesktop.DBus.Error.TimedOut": ProbeTimeout,
}


def classify_dbus_error(stderr: str) -> ProbeError:
    """Turn dbus-send error output into a probe error."""
    for error_name, error_class in DBUS_ERROR_MAP.items():
        if error_name in stderr:
            return error_class(stderr.strip())
    return ProbeUnknownError(stderr.strip() or "dbus-send failed")


class DBusSendProbe(Probe):
    """Base for probes that shell out to dbus-send on the session bus."""

    def __init__(self, dbus_send: str = "dbus-send", reply_timeout_ms: Optional[int] = None):
        self.dbus_send = dbus_send
        self.reply_timeout_ms = reply_timeout_ms

    @abstractmethod
    def message_args(self, name: str) -> list[str]:
        """Object path, interface.method and arguments for the call."""

    def command(self, name: str) -> list[str]:
        cmd = [self.dbus_send, "--session", "--print-reply", f"--dest={name}"]
        if self.reply_timeout_ms is not None:
            cmd.insert(3, f"--reply-timeout={self.reply_timeout_ms}")
        return cmd + self.message_args(name)

    async def check(self, name: str) -> ProbeStatus:
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command(name),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProbeUnknownError(f"Cannot run {self.dbus_send}: {e}") from e

        try:
            _, stderr = await process.communicate()
        finally:
            # Reclaim the child if the bounded wait cancelled us
            if process.returncode is None:
                process.kill()
                await process.wait()

        if process.returncode == 0:
            return ProbeStatus.READY
        raise classify_dbus_error(stderr.decode("utf-8", errors="replace"))


class DBusPeerProbe(DBusSendProbe):
    """Pings a bus name through org.freedesktop.DBus.Peer."""

    def message_args(self, name: str) -> list[str]:
        return ["/", "org.freedesktop.DBus.Peer.Ping"]


class SessionManagerRegistration(DBusSendProbe):
    """Registers this client with the GNOME session manager."""

    SESSION_MANAGER = "org.gnome.SessionManager"

    def __init__(self, app_id: str, client_id: str, **kwargs):
        super().__init__(**kwargs)
        self.app_id = app_id
        self.client_id = client_id

    def message_args(self, name: str) -> list[str]:
        return [
            "/org/gnome/SessionManager",
            "org.gnome.SessionManager.RegisterClient",
            f"string:{self.app_id}",
            f"string:{self.client_id}",
        ]
