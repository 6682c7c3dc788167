"""Resilient probe calls with growing timeouts and jittered backoff.

Provides a single-endpoint call primitive with:
- A bounded timeout per attempt that grows by a fixed increment up to a cap
- Linear backoff with bounded random jitter between attempts
- Classification of each failure into a CallOutcome
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional

from ..config import ConfigurationError, Settings
from ..models import CallAttempt, CallOutcome, CallResult, Endpoint, ProbeStatus
from ..monitoring.metrics import call_attempts_total, call_duration_seconds
from ..probes import Probe, ProbeNoReply, ProbeTimeout, ProbeUnavailable
from .timeout import with_probe_timeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for resilient calls."""

    max_retries: int = 5
    base_timeout: float = 5.0  # First attempt timeout in seconds
    max_timeout: float = 20.0  # Timeout cap
    timeout_increment: float = 3.0  # Added to the timeout after each failure
    backoff_unit: float = 1.0  # Backoff is attempt * unit + jitter
    jitter: float = 0.5  # Upper bound of the random jitter in seconds

    def validate(self) -> "RetryConfig":
        """Reject impossible policies.

        Raises:
            ConfigurationError: If any bound is violated
        """
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")
        if self.base_timeout <= 0:
            raise ConfigurationError("base_timeout must be positive")
        if self.max_timeout < self.base_timeout:
            raise ConfigurationError("max_timeout must be >= base_timeout")
        if self.timeout_increment < 0 or self.backoff_unit < 0 or self.jitter < 0:
            raise ConfigurationError("increments, backoff and jitter must not be negative")
        return self

    def for_endpoint(self, endpoint: Endpoint) -> "RetryConfig":
        """Start from the endpoint's own probe timeout."""
        base = endpoint.probe_timeout
        return replace(self, base_timeout=base, max_timeout=max(self.max_timeout, base))

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryConfig":
        return cls(
            max_retries=settings.max_retries,
            base_timeout=settings.base_timeout,
            max_timeout=settings.max_timeout,
            timeout_increment=settings.timeout_increment,
            backoff_unit=settings.backoff_unit,
            jitter=settings.jitter,
        ).validate()


def next_timeout(current: float, config: RetryConfig) -> float:
    """Timeout for the attempt after one that used `current`."""
    return min(current + config.timeout_increment, config.max_timeout)


def timeout_schedule(config: RetryConfig) -> list[float]:
    """Timeouts used by each attempt of a call that never succeeds."""
    timeouts = [min(config.base_timeout, config.max_timeout)]
    while len(timeouts) < config.max_retries:
        timeouts.append(next_timeout(timeouts[-1], config))
    return timeouts


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """Calculate the sleep after a failed attempt.

    Args:
        attempt: Attempt number that just failed (1-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds, within [attempt * unit, attempt * unit + jitter]
    """
    return attempt * config.backoff_unit + random.uniform(0, config.jitter)


def worst_case_duration(config: RetryConfig) -> float:
    """Upper bound on the wall-clock time of one resilient call."""
    attempts = sum(timeout_schedule(config))
    sleeps = sum(
        attempt * config.backoff_unit + config.jitter
        for attempt in range(1, config.max_retries)
    )
    return attempts + sleeps


def classify_failure(error: BaseException) -> CallOutcome:
    """Map a probe failure onto a CallOutcome."""
    if isinstance(error, (ProbeTimeout, asyncio.TimeoutError)):
        return CallOutcome.TIMEOUT
    if isinstance(error, ProbeUnavailable):
        return CallOutcome.UNAVAILABLE
    if isinstance(error, ProbeNoReply):
        return CallOutcome.NO_REPLY
    return CallOutcome.UNKNOWN_ERROR


async def resilient_call(
    probe: Probe,
    endpoint: Endpoint,
    config: Optional[RetryConfig] = None,
    on_attempt: Optional[Callable[[CallAttempt], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> CallResult:
    """Probe one endpoint until it answers ready or the retry budget is spent.

    Args:
        probe: Probe to invoke
        endpoint: Endpoint to check
        config: Retry policy (defaults to RetryConfig())
        on_attempt: Optional observer called with every CallAttempt
        sleep: Backoff sleep, replaceable in tests

    Returns:
        CallResult with SUCCESS or the last classified failure
    """
    config = (config or RetryConfig()).validate()
    started = time.monotonic()
    timeout = min(config.base_timeout, config.max_timeout)
    outcome = CallOutcome.UNKNOWN_ERROR
    last_error: Optional[str] = None

    for attempt in range(1, config.max_retries + 1):
        attempt_started = time.monotonic()
        try:
            status = await with_probe_timeout(probe.check(endpoint.name), timeout, endpoint.name)
            if status == ProbeStatus.READY:
                outcome, last_error = CallOutcome.SUCCESS, None
            else:
                outcome, last_error = CallOutcome.NO_REPLY, "endpoint answered not-ready"
        except Exception as e:
            outcome, last_error = classify_failure(e), str(e) or type(e).__name__

        record = CallAttempt(
            endpoint=endpoint.name,
            attempt=attempt,
            timeout=timeout,
            outcome=outcome,
            elapsed=time.monotonic() - attempt_started,
            error=last_error,
        )
        call_attempts_total.labels(endpoint=endpoint.name, outcome=outcome.value).inc()
        if on_attempt:
            on_attempt(record)

        if outcome == CallOutcome.SUCCESS:
            logger.debug(
                f"{endpoint.name} ready after {attempt} attempt(s)",
                extra={"event": "call_attempt", "endpoint": endpoint.name,
                       "attempt": attempt, "outcome": outcome.value},
            )
            break

        logger.warning(
            f"Attempt {attempt}/{config.max_retries} for {endpoint.name} failed "
            f"({outcome.value}, timeout {timeout:.1f}s): {last_error}",
            extra={"event": "call_attempt", "endpoint": endpoint.name, "attempt": attempt,
                   "outcome": outcome.value, "timeout": timeout},
        )

        if attempt == config.max_retries:
            break

        await sleep(calculate_backoff(attempt, config))
        timeout = next_timeout(timeout, config)

    elapsed = time.monotonic() - started
    call_duration_seconds.labels(outcome=outcome.value).observe(elapsed)
    if outcome != CallOutcome.SUCCESS:
        logger.error(
            f"All {config.max_retries} attempts failed for {endpoint.name}: {outcome.value}",
            extra={"event": "call_failed", "endpoint": endpoint.name, "outcome": outcome.value},
        )
    return CallResult(
        endpoint=endpoint.name,
        outcome=outcome,
        attempts=record.attempt,
        elapsed=elapsed,
        last_error=last_error,
    )
