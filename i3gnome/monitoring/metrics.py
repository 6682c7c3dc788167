"""Prometheus-format metrics for the session launcher.

Session metrics are rendered as Prometheus text and written to a file for
the node exporter textfile collector:
- Call metrics: call_attempts_total, call_duration_seconds
- Poll metrics: poll_results_total, poll_ready_ratio
- Session metrics: state_transitions_total, fallback_activations_total,
  unresponsive_critical_endpoints
"""

import logging
import os
import tempfile
import threading
from typing import Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Metric Classes (no prometheus_client dependency)
# =============================================================================


class _Metric:
    """Common label handling for all metric types."""

    kind = "untyped"

    def __init__(self, name: str, description: str, labels: Optional[list[str]] = None):
        self.name = name
        self.description = description
        self._label_names = labels or []
        self._values: dict[tuple, float] = {}
        self._lock = threading.Lock()

    def _key(self, kwargs: dict) -> tuple:
        return tuple(str(kwargs.get(label, "")) for label in self._label_names)

    def _format_labels(self, label_values: tuple, extra: str = "") -> str:
        parts = [f'{l}="{v}"' for l, v in zip(self._label_names, label_values)]
        if extra:
            parts.append(extra)
        return "{" + ",".join(parts) + "}" if parts else ""

    def get_all(self) -> dict[tuple, float]:
        """Get all values."""
        with self._lock:
            return self._values.copy()

    def get(self, **labels) -> float:
        """Get the value for one label set (0 if never recorded)."""
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def reset(self) -> None:
        """Drop all recorded values."""
        with self._lock:
            self._values.clear()

    def to_prometheus(self) -> str:
        """Format as Prometheus text."""
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} {self.kind}"]
        with self._lock:
            for label_values, value in self._values.items():
                lines.append(f"{self.name}{self._format_labels(label_values)} {value}")
        return "\n".join(lines)


class Counter(_Metric):
    """A counter metric that can only increase."""

    kind = "counter"

    def labels(self, **kwargs) -> "_Bound":
        return _Bound(self, self._key(kwargs))

    def inc(self, value: float = 1.0) -> None:
        self._add((), value)

    def _add(self, key: tuple, value: float) -> None:
        if value < 0:
            raise ValueError("Counters can only increase")
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value


class Gauge(_Metric):
    """A gauge metric that can be set to any value."""

    kind = "gauge"

    def labels(self, **kwargs) -> "_Bound":
        return _Bound(self, self._key(kwargs))

    def set(self, value: float) -> None:
        self._set((), value)

    def _set(self, key: tuple, value: float) -> None:
        with self._lock:
            self._values[key] = value


class Histogram(_Metric):
    """A histogram metric for tracking distributions."""

    kind = "histogram"
    DEFAULT_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0)

    def __init__(
        self,
        name: str,
        description: str,
        labels: Optional[list[str]] = None,
        buckets: Optional[tuple] = None,
    ):
        super().__init__(name, description, labels)
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._observations: dict[tuple, list[float]] = {}

    def labels(self, **kwargs) -> "_Bound":
        return _Bound(self, self._key(kwargs))

    def observe(self, value: float) -> None:
        self._observe((), value)

    def _observe(self, key: tuple, value: float) -> None:
        with self._lock:
            self._observations.setdefault(key, []).append(value)

    def count(self, **labels) -> int:
        with self._lock:
            return len(self._observations.get(self._key(labels), []))

    def reset(self) -> None:
        with self._lock:
            self._observations.clear()

    def to_prometheus(self) -> str:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} histogram"]
        with self._lock:
            for label_values, observations in self._observations.items():
                for bucket in self.buckets:
                    hits = sum(1 for o in observations if o <= bucket)
                    labels = self._format_labels(label_values, f'le="{bucket}"')
                    lines.append(f"{self.name}_bucket{labels} {hits}")
                labels = self._format_labels(label_values, 'le="+Inf"')
                lines.append(f"{self.name}_bucket{labels} {len(observations)}")
                plain = self._format_labels(label_values)
                lines.append(f"{self.name}_sum{plain} {sum(observations)}")
                lines.append(f"{self.name}_count{plain} {len(observations)}")
        return "\n".join(lines)


class _Bound:
    """A metric bound to specific label values."""

    def __init__(self, parent: _Metric, label_values: tuple):
        self._parent = parent
        self._label_values = label_values

    def inc(self, value: float = 1.0) -> None:
        self._parent._add(self._label_values, value)

    def set(self, value: float) -> None:
        self._parent._set(self._label_values, value)

    def observe(self, value: float) -> None:
        self._parent._observe(self._label_values, value)


# =============================================================================
# Call Metrics
# =============================================================================

call_attempts_total = Counter(
    name="i3gnome_call_attempts_total",
    description="Probe attempts by endpoint and classified outcome",
    labels=["endpoint", "outcome"],
)

call_duration_seconds = Histogram(
    name="i3gnome_call_duration_seconds",
    description="Wall-clock duration of resilient calls",
    labels=["outcome"],
)


# =============================================================================
# Poll Metrics
# =============================================================================

poll_results_total = Counter(
    name="i3gnome_poll_results_total",
    description="Completed readiness polls by tier and verdict",
    labels=["tier", "satisfied"],
)

poll_ready_ratio = Gauge(
    name="i3gnome_poll_ready_ratio",
    description="Ready fraction of the most recent poll per tier",
    labels=["tier"],
)


# =============================================================================
# Session Metrics
# =============================================================================

state_transitions_total = Counter(
    name="i3gnome_state_transitions_total",
    description="Session coordinator state transitions",
    labels=["source", "target"],
)

fallback_activations_total = Counter(
    name="i3gnome_fallback_activations_total",
    description="Fallback activations by failure dimension",
    labels=["dimension"],
)

unresponsive_critical_endpoints = Gauge(
    name="i3gnome_unresponsive_critical_endpoints",
    description="Critical endpoints not ready at the last monitoring check",
)


_ALL_METRICS = [
    call_attempts_total,
    call_duration_seconds,
    poll_results_total,
    poll_ready_ratio,
    state_transitions_total,
    fallback_activations_total,
    unresponsive_critical_endpoints,
]


def generate_metrics() -> str:
    """Generate all metrics in Prometheus text format."""
    output = []
    for metric in _ALL_METRICS:
        text = metric.to_prometheus()
        if text.strip():
            output.append(text)
    return "\n\n".join(output) + "\n"


def reset_metrics() -> None:
    """Clear every session metric."""
    for metric in _ALL_METRICS:
        metric.reset()


def write_metrics_file(path: str) -> None:
    """Atomically write all metrics to a textfile-collector file.

    Args:
        path: Destination file, replaced in one rename
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".metrics-", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(generate_metrics())
        os.replace(tmp_path, path)
    except OSError:
        os.unlink(tmp_path)
        raise
    logger.debug(f"Metrics written to {path}")
