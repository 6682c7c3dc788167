"""Session coordinator: validate, register, poll, launch, monitor, shut down."""

import asyncio
import logging
import os
from typing import Awaitable, Callable, Mapping, Optional

from .config import Settings
from .environment import EnvironmentReport, EnvironmentValidator, build_session_environment
from .launcher import LaunchConfig, Launcher, LaunchFailure, LaunchHandle
from .models import Endpoint, ExitCode, FailureDimension, PollResult, SessionState, Tier
from .monitoring.metrics import (
    state_transitions_total,
    unresponsive_critical_endpoints,
    write_metrics_file,
)
from .probes import Probe, SessionManagerRegistration
from .readiness import ReadinessPoller
from .resilience.fallback import (
    FallbackConfig,
    FallbackHandler,
    FallbackStrategy,
    UnrecoverableFailure,
)
from .resilience.retry import RetryConfig, resilient_call

logger = logging.getLogger(__name__)

S = SessionState

# state -> (successor on success, successor on failure)
TRANSITIONS: dict[SessionState, tuple[SessionState, SessionState]] = {
    S.INIT: (S.VALIDATING, S.VALIDATING),
    S.VALIDATING: (S.REGISTERING, S.FALLBACK),
    S.REGISTERING: (S.POLLING, S.POLLING),  # Failed registration degrades silently
    S.POLLING: (S.LAUNCHING, S.FALLBACK),
    S.LAUNCHING: (S.MONITORING, S.FALLBACK),
    S.FALLBACK: (S.LAUNCHING, S.TERMINATED),
    S.MONITORING: (S.SHUTTING_DOWN, S.SHUTTING_DOWN),
    S.SHUTTING_DOWN: (S.TERMINATED, S.TERMINATED),
    S.TERMINATED: (S.TERMINATED, S.TERMINATED),
}


def next_state(state: SessionState, ok: bool) -> SessionState:
    """Successor of `state` for a success (ok) or failure signal."""
    success, failure = TRANSITIONS[state]
    return success if ok else failure


StepResult = tuple[bool, str]


class SessionCoordinator:
    """Drives one session run through the SessionState machine.

    Only this object mutates its state, and only through _transition().
    """

    def __init__(
        self,
        settings: Settings,
        probe: Probe,
        launcher: Launcher,
        registration: Optional[Probe] = None,
        poller: Optional[ReadinessPoller] = None,
        fallback: Optional[FallbackHandler] = None,
        validator: Optional[EnvironmentValidator] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """Initialize coordinator.

        Args:
            settings: Validated session settings
            probe: Readiness probe for all tiers
            launcher: Starts the target process
            registration: Registration probe (default: GNOME session manager)
            poller: Readiness poller (default: built from settings)
            fallback: Fallback handler (default: built from settings)
            validator: Environment validator (default: built from settings)
            environ: Login environment (default: os.environ)
        """
        self.settings = settings
        self.retry_config = RetryConfig.from_settings(settings)
        self.launcher = launcher
        self.registration = registration
        self.poller = poller or ReadinessPoller(probe, self.retry_config)
        self.fallback = fallback or FallbackHandler(
            FallbackConfig(
                strategy=FallbackStrategy(settings.fallback_strategy),
                config_text=settings.fallback_config_text,
                runtime_dir=settings.runtime_dir,
            )
        )
        self.validator = validator or EnvironmentValidator(
            required=settings.required_env,
            recommended=settings.recommended_env,
            commands=settings.required_commands,
        )
        self.environ = dict(os.environ if environ is None else environ)

        self._state = S.INIT
        self.history: list[tuple[SessionState, SessionState]] = []
        self.environment_report: Optional[EnvironmentReport] = None
        self.critical_result: Optional[PollResult] = None
        self.tier_results: dict[str, PollResult] = {}
        self.registered = False
        self.exit_code: Optional[ExitCode] = None

        self._launch_config: Optional[LaunchConfig] = None
        self._handle: Optional[LaunchHandle] = None
        self._first_failure: Optional[FailureDimension] = None
        self._last_failure: Optional[tuple[FailureDimension, str]] = None
        self._clean_shutdown = False
        self._shutdown_requested = asyncio.Event()
        self._background: set[asyncio.Task] = set()

        self._steps: dict[SessionState, Callable[[], Awaitable[StepResult]]] = {
            S.INIT: self._init,
            S.VALIDATING: self._validate,
            S.REGISTERING: self._register,
            S.POLLING: self._poll,
            S.LAUNCHING: self._launch,
            S.FALLBACK: self._fallback,
            S.MONITORING: self._monitor,
            S.SHUTTING_DOWN: self._shut_down,
        }

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def launch_config(self) -> Optional[LaunchConfig]:
        return self._launch_config

    @property
    def degraded(self) -> bool:
        return self.fallback.attempted

    def request_shutdown(self) -> None:
        """Ask a running session to shut down (e.g. from a signal handler)."""
        logger.info("Termination requested")
        self._shutdown_requested.set()

    async def run(self) -> ExitCode:
        """Run the session to Terminated.

        Returns:
            Exit code of the session
        """
        try:
            while self._state != S.TERMINATED:
                ok, reason = await self._steps[self._state]()
                self._transition(ok, reason)
        finally:
            await self._release()

        self.exit_code = self._resolve_exit_code()
        logger.info(
            f"Session terminated with exit code {int(self.exit_code)}",
            extra={"event": "session_exit", "exit_code": int(self.exit_code)},
        )
        return self.exit_code

    def _transition(self, ok: bool, reason: str) -> SessionState:
        source = self._state
        target = next_state(source, ok)
        self._state = target
        self.history.append((source, target))
        state_transitions_total.labels(source=source.value, target=target.value).inc()

        log = logger.info if ok else logger.warning
        log(
            f"{source.value} -> {target.value}: {reason}",
            extra={"event": "state_transition", "source": source.value,
                   "target": target.value, "signal": "success" if ok else "failure"},
        )
        return target

    def _fail(self, dimension: FailureDimension, reason: str) -> StepResult:
        if self._first_failure is None:
            self._first_failure = dimension
        self._last_failure = (dimension, reason)
        return False, reason

    def _resolve_exit_code(self) -> ExitCode:
        if self._clean_shutdown:
            return ExitCode.SUCCESS
        if self._first_failure == FailureDimension.ENVIRONMENT:
            return ExitCode.ENVIRONMENT_MISSING
        return ExitCode.DEGRADED_FAILURE

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _init(self) -> StepResult:
        self._launch_config = LaunchConfig(
            command=self.settings.target_command,
            args=tuple(self.settings.target_args),
            env=build_session_environment(self.environ, self.settings.session_env),
            check_args=tuple(self.settings.config_check_args),
        )
        return True, "session start"

    async def _validate(self) -> StepResult:
        report = self.validator.check(self.environ)
        self.environment_report = report
        if not report.ok:
            return self._fail(FailureDimension.ENVIRONMENT, "; ".join(report.problems()))
        return True, "environment checks passed"

    async def _register(self) -> StepResult:
        if not self.settings.registration_enabled:
            return True, "registration disabled"

        client_id = self.settings.autostart_id or self.environ.get("DESKTOP_AUTOSTART_ID")
        if not client_id:
            return True, "no autostart id, registration skipped"

        probe = self.registration or SessionManagerRegistration(
            self.settings.registration_app_id, client_id
        )
        endpoint = Endpoint(
            name=SessionManagerRegistration.SESSION_MANAGER,
            tier=Tier.CRITICAL,
            probe_timeout=self.settings.base_timeout,
        )
        result = await resilient_call(probe, endpoint, self.retry_config)
        if result.succeeded:
            self.registered = True
            return True, f"registered with session manager as {client_id}"
        return False, f"registration failed ({result.outcome.value}), continuing unregistered"

    async def _poll(self) -> StepResult:
        for tier in (Tier.IMPORTANT, Tier.OPTIONAL):
            endpoints = self.settings.endpoints(tier)
            if endpoints:
                self._spawn(self._poll_background(tier, endpoints))

        result = await self.poller.poll(
            self.settings.endpoints(Tier.CRITICAL),
            threshold=self.settings.critical_threshold,
            deadline=self.settings.poll_deadline,
            label=Tier.CRITICAL.value,
        )
        self.critical_result = result
        summary = f"{result.ready_count}/{result.total} critical endpoints ready"
        if result.satisfied:
            return True, summary
        return self._fail(
            FailureDimension.READINESS,
            f"{summary}, below threshold {self.settings.critical_threshold:.0%}",
        )

    async def _poll_background(self, tier: Tier, endpoints: list[Endpoint]) -> None:
        result = await self.poller.poll(
            endpoints,
            threshold=self.settings.tier_threshold,
            deadline=self.settings.poll_deadline,
            label=tier.value,
        )
        self.tier_results[tier.value] = result

    async def _launch(self) -> StepResult:
        if self._shutdown_requested.is_set():
            # Monitoring sees no handle and proceeds straight to ShuttingDown
            return True, "termination requested, launch skipped"
        try:
            self._handle = await self.launcher.launch(self._launch_config)
        except LaunchFailure as e:
            return self._fail(FailureDimension.LAUNCH, str(e))
        mode = "degraded" if self._launch_config.degraded else "normal"
        return True, f"target started ({mode} configuration)"

    async def _fallback(self) -> StepResult:
        dimension, reason = self._last_failure or (FailureDimension.LAUNCH, "unknown failure")
        try:
            self._launch_config = self.fallback.prepare(dimension, self._launch_config, reason)
        except UnrecoverableFailure as e:
            logger.error(
                f"Unrecoverable session failure: {e}",
                extra={"event": "unrecoverable", "dimension": dimension.value},
            )
            return False, str(e)
        return True, f"degraded launch prepared ({self.fallback.config.strategy.value})"

    async def _monitor(self) -> StepResult:
        if self._handle is None:
            return True, "termination requested before launch"

        exited = asyncio.ensure_future(self._handle.wait())
        stopping = asyncio.ensure_future(self._shutdown_requested.wait())
        check: Optional[asyncio.Task] = None
        try:
            while True:
                # A running re-check is waited on alongside exit and shutdown
                watched = {exited, stopping} if check is None else {exited, stopping, check}
                done, _ = await asyncio.wait(
                    watched,
                    timeout=self.settings.monitor_interval if check is None else None,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if exited in done:
                    return True, f"target exited with status {exited.result()}"
                if stopping in done:
                    return True, "termination signal received"
                if check is None:
                    check = asyncio.create_task(self._check_critical(), name="critical-monitor")
                elif check in done:
                    check.result()
                    check = None
        finally:
            for task in (exited, stopping, check):
                if task is not None and not task.done():
                    task.cancel()
            if check is not None:
                await asyncio.gather(check, return_exceptions=True)

    async def _check_critical(self) -> None:
        endpoints = self.settings.endpoints(Tier.CRITICAL)
        if not endpoints:
            return
        result = await self.poller.poll(
            endpoints,
            threshold=1.0,
            deadline=min(self.settings.poll_deadline, self.settings.monitor_interval),
            label="critical-monitor",
            quiet=True,
        )
        down = result.not_ready
        unresponsive_critical_endpoints.set(len(down))
        if len(down) > 1:
            logger.warning(
                f"Session degraded: {len(down)} critical endpoints not responding: "
                f"{', '.join(down)}",
                extra={"event": "degradation", "not_ready": down},
            )

    async def _shut_down(self) -> StepResult:
        await self._release()
        self._clean_shutdown = True
        return True, "cleanup complete"

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _release(self) -> None:
        """Stop the target and reap background work. Safe to call twice."""
        if self._handle is not None and self._handle.returncode is None:
            await self._handle.terminate(self.settings.shutdown_grace)

        pending = list(self._background)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self.poller.aclose()

        if self.settings.metrics_file:
            try:
                write_metrics_file(self.settings.metrics_file)
            except OSError as e:
                logger.error(f"Failed to write metrics to {self.settings.metrics_file}: {e}")
