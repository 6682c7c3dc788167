"""Monitoring module for the session launcher.

This module provides:
- Prometheus-format metrics for calls, polls and state transitions
- Textfile export of those metrics
"""

from .metrics import (
    # Call metrics
    call_attempts_total,
    call_duration_seconds,
    # Poll metrics
    poll_ready_ratio,
    poll_results_total,
    # Session metrics
    fallback_activations_total,
    state_transitions_total,
    unresponsive_critical_endpoints,
    # Utility
    generate_metrics,
    reset_metrics,
    write_metrics_file,
)

__all__ = [
    "call_attempts_total",
    "call_duration_seconds",
    "poll_results_total",
    "poll_ready_ratio",
    "state_transitions_total",
    "fallback_activations_total",
    "unresponsive_critical_endpoints",
    "generate_metrics",
    "reset_metrics",
    "write_metrics_file",
]
