"""Resilience layer for the session launcher.

This module provides:
- Resilient probe calls with growing timeouts, backoff and jitter
- Timeout and deadline helpers
- Fallback launch configuration
"""

from .fallback import FallbackConfig, FallbackHandler, FallbackStrategy, UnrecoverableFailure
from .retry import RetryConfig, resilient_call, timeout_schedule, worst_case_duration
from .timeout import Deadline, with_probe_timeout

__all__ = [
    "resilient_call",
    "RetryConfig",
    "timeout_schedule",
    "worst_case_duration",
    "with_probe_timeout",
    "Deadline",
    "FallbackStrategy",
    "FallbackConfig",
    "FallbackHandler",
    "UnrecoverableFailure",
]
