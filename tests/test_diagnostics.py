"""Tests for one-shot diagnostics."""

import pytest

from i3gnome.diagnostics import run_diagnostics
from i3gnome.probes import ProbeUnavailable


class TestRunDiagnostics:
    """Test run_diagnostics exit codes."""

    @pytest.mark.asyncio
    async def test_all_healthy(self, make_settings, scripted_probe, session_environ):
        settings = make_settings(important_endpoints=["imp.a"], optional_endpoints=["opt.a"])

        code, results = await run_diagnostics(settings, scripted_probe(), session_environ)

        assert code == 0
        assert set(results) == {"critical", "important", "optional"}
        assert all(result.satisfied for result in results.values())

    @pytest.mark.asyncio
    async def test_critical_failure(self, make_settings, scripted_probe, session_environ):
        probe = scripted_probe(default=ProbeUnavailable)

        code, results = await run_diagnostics(make_settings(), probe, session_environ)

        assert code == 1
        assert not results["critical"].satisfied

    @pytest.mark.asyncio
    async def test_partial_critical_is_a_warning(
        self, make_settings, scripted_probe, session_environ
    ):
        """Test a satisfied tier with a missing endpoint reports warnings."""
        probe = scripted_probe({"svc.d": ProbeUnavailable})

        code, results = await run_diagnostics(
            make_settings(critical_threshold=0.75), probe, session_environ
        )

        assert code == 2
        assert results["critical"].satisfied

    @pytest.mark.asyncio
    async def test_optional_failure_is_a_warning(
        self, make_settings, scripted_probe, session_environ
    ):
        probe = scripted_probe({"opt.a": ProbeUnavailable})
        settings = make_settings(optional_endpoints=["opt.a"])

        code, results = await run_diagnostics(settings, probe, session_environ)

        assert code == 2
        assert not results["optional"].satisfied

    @pytest.mark.asyncio
    async def test_missing_display_is_critical(
        self, make_settings, scripted_probe, session_environ
    ):
        environ = {k: v for k, v in session_environ.items() if k != "DISPLAY"}

        code, _ = await run_diagnostics(make_settings(), scripted_probe(), environ)

        assert code == 1

    @pytest.mark.asyncio
    async def test_empty_tiers_skipped(self, make_settings, scripted_probe, session_environ):
        probe = scripted_probe()

        code, results = await run_diagnostics(
            make_settings(critical_endpoints=[]), probe, session_environ
        )

        assert code == 0
        assert results == {}
        assert probe.calls == []
