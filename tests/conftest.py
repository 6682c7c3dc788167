"""Pytest configuration and fixtures for i3gnome tests."""

import asyncio
import os
from typing import Optional

import pytest

from i3gnome.config import Settings
from i3gnome.launcher import LaunchConfig, LaunchFailure, LaunchHandle, Launcher
from i3gnome.models import ProbeStatus
from i3gnome.monitoring.metrics import reset_metrics
from i3gnome.probes import Probe


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch, tmp_path):
    """Keep I3GNOME_* variables and stray .env files out of tests."""
    for name in list(os.environ):
        if name.startswith("I3GNOME_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Start every test with empty metrics."""
    reset_metrics()
    yield
    reset_metrics()


class ScriptedProbe(Probe):
    """Probe whose answer per endpoint is scripted.

    Behaviours: "ready", "not-ready", "hang", an exception class or instance,
    or a list of those consumed one per call (the last one repeats).
    """

    def __init__(self, script: Optional[dict] = None, default="ready", delay: float = 0.0):
        self.script = dict(script or {})
        self.default = default
        self.delay = delay
        self.calls: list[str] = []
        self.completed = 0

    async def check(self, name: str) -> ProbeStatus:
        self.calls.append(name)
        behaviour = self.script.get(name, self.default)
        if isinstance(behaviour, list):
            index = min(self.calls.count(name), len(behaviour)) - 1
            behaviour = behaviour[index]

        if self.delay:
            await asyncio.sleep(self.delay)
        if behaviour == "hang":
            await asyncio.sleep(3600)
        if isinstance(behaviour, type) and issubclass(behaviour, Exception):
            raise behaviour(f"{name} failed")
        if isinstance(behaviour, Exception):
            raise behaviour

        self.completed += 1
        if behaviour == "ready":
            return ProbeStatus.READY
        if behaviour == "not-ready":
            return ProbeStatus.NOT_READY
        raise AssertionError(f"Unknown behaviour {behaviour!r}")


class FakeHandle(LaunchHandle):
    """A target process that exits when told to."""

    def __init__(self):
        self._exited = asyncio.Event()
        self._code: Optional[int] = None
        self.terminated = False

    @property
    def returncode(self) -> Optional[int]:
        return self._code

    def exit(self, code: int = 0) -> None:
        self._code = code
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self._code

    async def terminate(self, grace: float = 5.0) -> Optional[int]:
        self.terminated = True
        if self._code is None:
            self.exit(-15)
        return self._code


class FakeLauncher(Launcher):
    """Launcher with scripted results: "ok", "run" (never exits) or a LaunchFailure."""

    def __init__(self, results=None, default="ok"):
        self.results = list(results or [])
        self.default = default
        self.configs: list[LaunchConfig] = []
        self.handles: list[FakeHandle] = []

    async def launch(self, config: LaunchConfig) -> FakeHandle:
        self.configs.append(config)
        result = self.results.pop(0) if self.results else self.default
        if isinstance(result, LaunchFailure):
            raise result
        handle = FakeHandle()
        if result == "ok":
            handle.exit(0)
        self.handles.append(handle)
        return handle


@pytest.fixture
def session_environ():
    """A complete login environment."""
    return {
        "DISPLAY": ":1",
        "DBUS_SESSION_BUS_ADDRESS": "unix:path=/run/user/1000/bus",
        "XDG_CURRENT_DESKTOP": "GNOME",
        "PATH": "/usr/bin:/bin",
    }


@pytest.fixture
def make_settings(tmp_path):
    """Build fast test settings; keyword arguments override."""

    def _make(**overrides) -> Settings:
        values = dict(
            critical_endpoints=["svc.a", "svc.b", "svc.c", "svc.d"],
            important_endpoints=[],
            optional_endpoints=[],
            base_timeout=0.05,
            max_timeout=0.05,
            timeout_increment=0.0,
            max_retries=1,
            backoff_unit=0.0,
            jitter=0.0,
            poll_deadline=1.0,
            monitor_interval=5.0,
            registration_enabled=False,
            required_commands=[],
            runtime_dir=str(tmp_path),
            shutdown_grace=0.1,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def recorded_sleeps():
    """Async sleep replacement that records delays instead of sleeping."""
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    _sleep.delays = delays
    return _sleep


@pytest.fixture
def scripted_probe():
    """Factory for ScriptedProbe instances."""
    return ScriptedProbe


@pytest.fixture
def fake_launcher():
    """Factory for FakeLauncher instances."""
    return FakeLauncher
