"""Tests for resilience module."""

import pytest


def test_resilience_imports():
    """Test that resilience module can be imported."""
    from i3gnome.resilience import (
        resilient_call,
        RetryConfig,
        timeout_schedule,
        worst_case_duration,
        with_probe_timeout,
        Deadline,
        FallbackStrategy,
        FallbackHandler,
        UnrecoverableFailure,
    )

    assert resilient_call is not None
    assert RetryConfig is not None
    assert with_probe_timeout is not None
    assert FallbackHandler is not None
