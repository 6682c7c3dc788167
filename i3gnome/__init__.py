"""i3-gnome: run the i3 window manager inside a GNOME session."""

__version__ = "1.2.0"

from .coordinator import SessionCoordinator
from .probes import CallableProbe, DBusPeerProbe, Probe
from .readiness import ReadinessPoller
from .resilience.retry import RetryConfig, resilient_call

__all__ = [
    "SessionCoordinator",
    "ReadinessPoller",
    "resilient_call",
    "RetryConfig",
    "Probe",
    "CallableProbe",
    "DBusPeerProbe",
]
