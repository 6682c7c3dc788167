"""Session environment checks and launch environment assembly."""

import logging
import shutil
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass
class EnvironmentReport:
    """Result of validating the login environment."""

    missing_required: list[str] = field(default_factory=list)
    missing_recommended: list[str] = field(default_factory=list)
    missing_commands: list[str] = field(default_factory=list)
    present: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """No critical issue (warnings allowed)."""
        return not self.missing_required and not self.missing_commands

    @property
    def exit_code(self) -> int:
        """0 no issues, 1 critical issues, 2 warnings only."""
        if not self.ok:
            return 1
        if self.missing_recommended:
            return 2
        return 0

    def problems(self) -> list[str]:
        problems = [f"{name} is not set" for name in self.missing_required]
        problems += [f"{name} not found on PATH" for name in self.missing_commands]
        return problems


class EnvironmentValidator:
    """Checks that the session has a display, a bus and the tools it needs."""

    def __init__(
        self,
        required: Iterable[str] = ("DISPLAY", "DBUS_SESSION_BUS_ADDRESS"),
        recommended: Iterable[str] = ("XDG_CURRENT_DESKTOP",),
        commands: Iterable[str] = (),
        which: Callable[..., Optional[str]] = shutil.which,
    ):
        self.required = list(required)
        self.recommended = list(recommended)
        self.commands = list(commands)
        self._which = which

    def check(self, environ: Mapping[str, str]) -> EnvironmentReport:
        """Validate an environment mapping.

        Args:
            environ: Environment to inspect (usually os.environ)

        Returns:
            Report listing everything that is missing
        """
        report = EnvironmentReport()
        for name in self.required:
            if environ.get(name):
                report.present[name] = environ[name]
            else:
                report.missing_required.append(name)
        for name in self.recommended:
            if environ.get(name):
                report.present[name] = environ[name]
            else:
                report.missing_recommended.append(name)
        path = environ.get("PATH")
        for command in self.commands:
            if self._which(command, path=path) is None:
                report.missing_commands.append(command)

        for name in report.missing_recommended:
            logger.warning(f"Recommended variable {name} is not set")
        for problem in report.problems():
            logger.error(f"Environment check failed: {problem}")
        return report


def build_session_environment(
    environ: Mapping[str, str],
    session_env: Mapping[str, str],
) -> dict[str, str]:
    """Environment handed to the target process.

    Desktop variables from `session_env` are only filled in where the login
    environment left them unset. The autostart id belongs to this launcher's
    registration and must not leak into children.
    """
    env = dict(environ)
    for name, value in session_env.items():
        env.setdefault(name, value)
    env.pop("DESKTOP_AUTOSTART_ID", None)
    return env


def diagnostics_exit_code(*codes: int) -> int:
    """Combine diagnostic exit codes: any critical (1) wins over warnings (2)."""
    if 1 in codes:
        return 1
    if 2 in codes:
        return 2
    return 0
