"""Tests for readiness probes."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from i3gnome.models import ProbeStatus
from i3gnome.probes import (
    CallableProbe,
    DBusPeerProbe,
    ProbeNoReply,
    ProbeTimeout,
    ProbeUnavailable,
    ProbeUnknownError,
    SessionManagerRegistration,
    classify_dbus_error,
)


def fake_process(returncode=0, stderr=b""):
    process = MagicMock()
    process.returncode = None

    async def communicate():
        process.returncode = returncode
        return b"", stderr

    process.communicate = communicate
    process.wait = AsyncMock(return_value=returncode)
    return process


@pytest.mark.unit
class TestCallableProbe:
    """Test CallableProbe."""

    @pytest.mark.asyncio
    async def test_sync_bool(self):
        probe = CallableProbe(lambda name: name == "up")
        assert await probe.check("up") == ProbeStatus.READY
        assert await probe.check("down") == ProbeStatus.NOT_READY

    @pytest.mark.asyncio
    async def test_async_status(self):
        async def check(name):
            return ProbeStatus.READY

        assert await CallableProbe(check).check("svc") == ProbeStatus.READY

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        def check(name):
            raise ProbeUnavailable(name)

        with pytest.raises(ProbeUnavailable):
            await CallableProbe(check).check("svc")


@pytest.mark.unit
class TestClassifyDBusError:
    """Test mapping of dbus-send errors."""

    @pytest.mark.parametrize(
        "stderr, expected",
        [
            ("Error org.freedesktop.DBus.Error.ServiceUnknown: The name was not provided",
             ProbeUnavailable),
            ("Error org.freedesktop.DBus.Error.NameHasNoOwner: no owner", ProbeUnavailable),
            ("Error org.freedesktop.DBus.Error.NoReply: Did not receive a reply", ProbeNoReply),
            ("Error org.freedesktop.DBus.Error.UnknownMethod: no Ping", ProbeNoReply),
            ("Error org.freedesktop.DBus.Error.Timeout: timed out", ProbeTimeout),
            ("Failed to open connection to session bus", ProbeUnknownError),
            ("", ProbeUnknownError),
        ],
    )
    def test_classification(self, stderr, expected):
        assert isinstance(classify_dbus_error(stderr), expected)


@pytest.mark.unit
class TestDBusPeerProbe:
    """Test DBusPeerProbe."""

    def test_command(self):
        probe = DBusPeerProbe(reply_timeout_ms=2000)
        assert probe.command("org.gnome.SettingsDaemon.Power") == [
            "dbus-send",
            "--session",
            "--print-reply",
            "--reply-timeout=2000",
            "--dest=org.gnome.SettingsDaemon.Power",
            "/",
            "org.freedesktop.DBus.Peer.Ping",
        ]

    @pytest.mark.asyncio
    async def test_ready_on_zero_exit(self):
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=fake_process())):
            assert await DBusPeerProbe().check("org.gnome.Shell") == ProbeStatus.READY

    @pytest.mark.asyncio
    async def test_classified_failure(self):
        process = fake_process(1, b"Error org.freedesktop.DBus.Error.ServiceUnknown: nope")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(ProbeUnavailable):
                await DBusPeerProbe().check("org.gnome.Missing")

    @pytest.mark.asyncio
    async def test_missing_dbus_send(self):
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError())):
            with pytest.raises(ProbeUnknownError):
                await DBusPeerProbe(dbus_send="/nonexistent/dbus-send").check("svc")

    @pytest.mark.asyncio
    async def test_child_killed_when_cancelled(self):
        """Test a cancelled check does not leave dbus-send running."""
        process = MagicMock()
        process.returncode = None

        async def communicate():
            await asyncio.sleep(10)

        process.communicate = communicate
        process.wait = AsyncMock(return_value=-9)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(DBusPeerProbe().check("svc"), timeout=0.05)

        process.kill.assert_called_once()
        process.wait.assert_awaited()


@pytest.mark.unit
class TestSessionManagerRegistration:
    def test_register_client_message(self):
        probe = SessionManagerRegistration("i3-gnome", "10abc")

        command = probe.command(SessionManagerRegistration.SESSION_MANAGER)

        assert "--dest=org.gnome.SessionManager" in command
        assert command[-4:] == [
            "/org/gnome/SessionManager",
            "org.gnome.SessionManager.RegisterClient",
            "string:i3-gnome",
            "string:10abc",
        ]
