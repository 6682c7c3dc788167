"""Shared types for readiness polling and session sequencing."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Mapping, Optional


class Tier(str, Enum):
    """Importance tier of an endpoint."""

    CRITICAL = "critical"  # Gates the launch
    IMPORTANT = "important"  # Diagnostic only
    OPTIONAL = "optional"  # Diagnostic only


class ProbeStatus(str, Enum):
    """Answer returned by a probe that did not raise."""

    READY = "ready"
    NOT_READY = "not-ready"


class CallOutcome(str, Enum):
    """Classified outcome of one probe attempt."""

    SUCCESS = "success"
    TIMEOUT = "timeout"  # Bounded wait elapsed
    UNAVAILABLE = "unavailable"  # Endpoint does not exist
    NO_REPLY = "no-reply"  # Endpoint exists but did not answer
    UNKNOWN_ERROR = "unknown-error"


class Readiness(str, Enum):
    """Terminal per-endpoint outcome recorded by a poll."""

    READY = "ready"
    NOT_READY = "not-ready"


class SessionState(str, Enum):
    """States of the session coordinator."""

    INIT = "Init"
    VALIDATING = "Validating"
    REGISTERING = "Registering"
    POLLING = "Polling"
    LAUNCHING = "Launching"
    MONITORING = "Monitoring"
    FALLBACK = "Fallback"
    SHUTTING_DOWN = "ShuttingDown"
    TERMINATED = "Terminated"


class FailureDimension(str, Enum):
    """Which step pushed the session into Fallback."""

    ENVIRONMENT = "environment"
    READINESS = "readiness"
    LAUNCH = "launch"


class ExitCode(IntEnum):
    """Process exit status of a session run."""

    SUCCESS = 0
    DEGRADED_FAILURE = 1
    ENVIRONMENT_MISSING = 2
    CONFIGURATION_ERROR = 78


@dataclass(frozen=True)
class Endpoint:
    """A named external dependency polled for readiness."""

    name: str
    tier: Tier = Tier.CRITICAL
    probe_timeout: float = 5.0


@dataclass(frozen=True)
class CallAttempt:
    """One probe attempt inside a resilient call."""

    endpoint: str
    attempt: int
    timeout: float
    outcome: CallOutcome
    elapsed: float
    error: Optional[str] = None


@dataclass(frozen=True)
class CallResult:
    """Aggregate result of a resilient call."""

    endpoint: str
    outcome: CallOutcome
    attempts: int
    elapsed: float = field(default=0.0, compare=False)
    last_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == CallOutcome.SUCCESS


@dataclass(frozen=True)
class EndpointStatus:
    """Terminal status of one endpoint within a poll."""

    readiness: Readiness
    outcome: Optional[CallOutcome] = None  # None when the poll ended first
    resolved_at: Optional[float] = field(default=None, compare=False)

    @property
    def is_ready(self) -> bool:
        return self.readiness == Readiness.READY


@dataclass(frozen=True)
class PollResult:
    """Immutable outcome of one readiness poll."""

    statuses: Mapping[str, EndpointStatus]
    threshold: float
    total: int
    deadline_reached: bool = False
    elapsed: float = field(default=0.0, compare=False)

    def __post_init__(self):
        if not isinstance(self.statuses, MappingProxyType):
            object.__setattr__(self, "statuses", MappingProxyType(dict(self.statuses)))

    @property
    def ready_count(self) -> int:
        return sum(1 for status in self.statuses.values() if status.is_ready)

    @property
    def ready_ratio(self) -> float:
        if self.total == 0:
            return 1.0
        return self.ready_count / self.total

    @property
    def satisfied(self) -> bool:
        """True when the ready fraction meets the threshold."""
        return self.total == 0 or self.ready_ratio >= self.threshold

    @property
    def not_ready(self) -> list[str]:
        return sorted(
            name for name, status in self.statuses.items() if not status.is_ready
        )
