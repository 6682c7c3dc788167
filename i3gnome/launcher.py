"""Launching and stopping the target window manager process."""

import asyncio
import logging
import signal
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Optional

logger = logging.getLogger(__name__)


class LaunchFailure(Exception):
    """The target process could not be started or its configuration is invalid."""

    def __init__(self, message: str = "", reason: str = "start"):
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True)
class LaunchConfig:
    """How to start the target process."""

    command: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict, compare=False)
    check_args: tuple[str, ...] = ()  # Validation flags; empty skips the check
    degraded: bool = False

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    def with_args(self, args, degraded: bool = True) -> "LaunchConfig":
        return replace(self, args=tuple(args), degraded=degraded)


class LaunchHandle(ABC):
    """A running target process."""

    @property
    @abstractmethod
    def returncode(self) -> Optional[int]:
        """Exit status, or None while running."""

    @abstractmethod
    async def wait(self) -> int:
        """Wait for the process to exit."""

    @abstractmethod
    async def terminate(self, grace: float = 5.0) -> Optional[int]:
        """Stop the process, escalating to a kill after `grace` seconds."""


class Launcher(ABC):
    """Starts the target process."""

    @abstractmethod
    async def launch(self, config: LaunchConfig) -> LaunchHandle:
        """Start the target.

        Raises:
            LaunchFailure: If it could not be started
        """


class ProcessHandle(LaunchHandle):
    """LaunchHandle over an asyncio subprocess."""

    def __init__(self, process: asyncio.subprocess.Process):
        self.process = process

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    async def wait(self) -> int:
        return await self.process.wait()

    async def terminate(self, grace: float = 5.0) -> Optional[int]:
        if self.process.returncode is not None:
            return self.process.returncode

        logger.info(f"Sending SIGTERM to target (pid {self.pid})")
        try:
            self.process.send_signal(signal.SIGTERM)
        except ProcessLookupError:
            return await self.process.wait()

        try:
            return await asyncio.wait_for(self.process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning(f"Target did not exit within {grace}s, killing pid {self.pid}")
            try:
                self.process.kill()
            except ProcessLookupError:
                pass
            return await self.process.wait()


class ProcessLauncher(Launcher):
    """Starts the target as a child process."""

    def __init__(self, startup_grace: float = 1.0, check_timeout: float = 10.0):
        """Initialize launcher.

        Args:
            startup_grace: Seconds the process must survive to count as started
            check_timeout: Time limit for the configuration check command
        """
        self.startup_grace = startup_grace
        self.check_timeout = check_timeout

    async def check_config(self, config: LaunchConfig) -> None:
        """Run the target's own configuration check, if configured.

        Raises:
            LaunchFailure: If the check fails or cannot run
        """
        if not config.check_args:
            return

        argv = [config.command, *config.check_args, *config.args]
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                env=config.env or None,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise LaunchFailure(f"Cannot run {config.command}: {e}", reason="missing") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.check_timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise LaunchFailure("Configuration check timed out", reason="config") from None

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise LaunchFailure(f"Invalid configuration: {detail}", reason="config")

    async def launch(self, config: LaunchConfig) -> ProcessHandle:
        await self.check_config(config)

        logger.info(f"Launching {' '.join(config.argv)}")
        try:
            process = await asyncio.create_subprocess_exec(*config.argv, env=config.env or None)
        except OSError as e:
            raise LaunchFailure(f"Cannot start {config.command}: {e}", reason="missing") from e

        try:
            code = await asyncio.wait_for(process.wait(), timeout=self.startup_grace)
        except asyncio.TimeoutError:
            return ProcessHandle(process)

        raise LaunchFailure(
            f"{config.command} exited with status {code} during startup",
            reason="start",
        )
