"""Concurrent readiness polling over a set of endpoints."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable, Optional

from .config import ConfigurationError
from .models import CallOutcome, Endpoint, EndpointStatus, PollResult, Readiness
from .monitoring.metrics import poll_ready_ratio, poll_results_total
from .probes import Probe
from .resilience.retry import RetryConfig, resilient_call
from .resilience.timeout import Deadline

logger = logging.getLogger(__name__)


def validate_poll_args(threshold: float, deadline: float) -> None:
    """Reject poll arguments that can never make sense.

    Raises:
        ConfigurationError: If threshold is outside (0, 1] or deadline is negative
    """
    if not 0 < threshold <= 1:
        raise ConfigurationError(f"threshold must be in (0, 1], got {threshold}")
    if deadline < 0:
        raise ConfigurationError(f"deadline must not be negative, got {deadline}")


class ReadinessPoller:
    """Fires one resilient call per endpoint and aggregates the answers.

    Results travel from the calls to the poll loop through one queue, so the
    ready/not-ready tally is only ever touched by the poll loop itself. Calls
    still running when a poll finishes are detached: the poll returns without
    them and they are reclaimed in the background (or by aclose()).

    Usage:
        poller = ReadinessPoller(DBusPeerProbe(), RetryConfig(max_retries=3))
        result = await poller.poll(endpoints, threshold=0.75, deadline=30)
        if result.satisfied:
            ...
    """

    def __init__(
        self,
        probe: Probe,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize poller.

        Args:
            probe: Probe used for every endpoint
            retry_config: Policy for each per-endpoint call
            sleep: Backoff sleep passed to each call
        """
        self.probe = probe
        self.retry_config = (retry_config or RetryConfig()).validate()
        self._sleep = sleep
        self._detached: set[asyncio.Task] = set()

    @property
    def detached_count(self) -> int:
        """Calls from finished polls that are still draining."""
        return len(self._detached)

    async def poll(
        self,
        endpoints: Iterable[Endpoint],
        threshold: float,
        deadline: float,
        label: Optional[str] = None,
        quiet: bool = False,
    ) -> PollResult:
        """Poll endpoints until enough are ready or the deadline passes.

        Args:
            endpoints: Endpoints to check (names are unique keys)
            threshold: Required ready fraction, 0 < threshold <= 1
            deadline: Seconds before unresolved endpoints count as not ready
            label: Tier label for logs and metrics
            quiet: Log an unmet threshold at INFO instead of WARNING

        Returns:
            Frozen PollResult

        Raises:
            ConfigurationError: For an invalid threshold or deadline
        """
        validate_poll_args(threshold, deadline)
        batch = list({endpoint.name: endpoint for endpoint in endpoints}.values())
        label = label or (batch[0].tier.value if batch else "empty")
        total = len(batch)
        timer = Deadline(deadline)

        if total == 0:
            return self._finish(PollResult({}, threshold, 0), label, quiet)

        results: asyncio.Queue = asyncio.Queue()
        tasks = {
            endpoint.name: asyncio.create_task(
                self._run_call(endpoint, results), name=f"probe:{endpoint.name}"
            )
            for endpoint in batch
        }

        statuses: dict[str, EndpointStatus] = {}
        ready = 0
        deadline_reached = False
        try:
            while len(statuses) < total and ready / total < threshold:
                remaining = timer.remaining()
                if remaining <= 0:
                    deadline_reached = True
                    break
                try:
                    name, status = await asyncio.wait_for(results.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    deadline_reached = True
                    break
                statuses[name] = status
                ready += status.is_ready

            # Answers that arrived together with the deciding one
            while not results.empty():
                name, status = results.get_nowait()
                statuses.setdefault(name, status)
        finally:
            for task in tasks.values():
                if not task.done():
                    self._detach(task)

        for endpoint in batch:
            statuses.setdefault(endpoint.name, EndpointStatus(Readiness.NOT_READY))

        result = PollResult(
            statuses={endpoint.name: statuses[endpoint.name] for endpoint in batch},
            threshold=threshold,
            total=total,
            deadline_reached=deadline_reached,
            elapsed=timer.elapsed(),
        )
        return self._finish(result, label, quiet)

    async def _run_call(self, endpoint: Endpoint, results: asyncio.Queue) -> None:
        try:
            call = await resilient_call(
                self.probe,
                endpoint,
                self.retry_config.for_endpoint(endpoint),
                sleep=self._sleep,
            )
            outcome = call.outcome
        except Exception as e:
            logger.error(f"Resilient call for {endpoint.name} crashed: {e}")
            outcome = CallOutcome.UNKNOWN_ERROR

        readiness = Readiness.READY if outcome == CallOutcome.SUCCESS else Readiness.NOT_READY
        results.put_nowait((endpoint.name, EndpointStatus(readiness, outcome, time.monotonic())))

    def _detach(self, task: asyncio.Task) -> None:
        self._detached.add(task)
        task.add_done_callback(self._reclaim)

    def _reclaim(self, task: asyncio.Task) -> None:
        self._detached.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Detached {task.get_name()} ended with {task.exception()!r}")

    def _finish(self, result: PollResult, label: str, quiet: bool = False) -> PollResult:
        poll_results_total.labels(tier=label, satisfied=str(result.satisfied).lower()).inc()
        poll_ready_ratio.labels(tier=label).set(result.ready_ratio)

        message = (
            f"Poll [{label}] {result.ready_count}/{result.total} ready "
            f"(threshold {result.threshold:.0%}) in {result.elapsed:.2f}s"
        )
        extra = {
            "event": "poll_result",
            "tier": label,
            "ready": result.ready_count,
            "total": result.total,
            "satisfied": result.satisfied,
            "deadline_reached": result.deadline_reached,
            "not_ready": result.not_ready,
        }
        if not result.satisfied:
            message = f"{message}; not ready: {', '.join(result.not_ready)}"
        log = logger.info if result.satisfied or quiet else logger.warning
        log(message, extra=extra)
        return result

    async def aclose(self) -> None:
        """Cancel and reap calls still draining from earlier polls."""
        pending = list(self._detached)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.debug(f"Reclaimed {len(pending)} detached probe call(s)")
