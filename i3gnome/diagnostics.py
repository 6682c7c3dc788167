"""One-shot session diagnostics: environment report plus a poll per tier."""

import logging
import os
from typing import Mapping, Optional

from .config import Settings
from .environment import EnvironmentValidator, diagnostics_exit_code
from .models import PollResult, Tier
from .probes import Probe
from .readiness import ReadinessPoller
from .resilience.retry import RetryConfig

logger = logging.getLogger(__name__)


async def run_diagnostics(
    settings: Settings,
    probe: Probe,
    environ: Optional[Mapping[str, str]] = None,
) -> tuple[int, dict[str, PollResult]]:
    """Check the environment and every endpoint tier without launching anything.

    Exit codes follow the diagnose script convention: 0 no issues,
    1 critical issues, 2 warnings only.

    Args:
        settings: Session settings
        probe: Readiness probe
        environ: Environment to inspect (default: os.environ)

    Returns:
        (exit code, poll result per tier)
    """
    environ = os.environ if environ is None else environ
    validator = EnvironmentValidator(
        required=settings.required_env,
        recommended=settings.recommended_env,
        commands=settings.required_commands,
    )
    report = validator.check(environ)
    codes = [report.exit_code]

    poller = ReadinessPoller(probe, RetryConfig.from_settings(settings))
    results: dict[str, PollResult] = {}
    try:
        for tier in Tier:
            endpoints = settings.endpoints(tier)
            if not endpoints:
                continue
            threshold = settings.critical_threshold if tier == Tier.CRITICAL else settings.tier_threshold
            result = await poller.poll(endpoints, threshold, settings.poll_deadline, label=tier.value)
            results[tier.value] = result
            if not result.satisfied:
                codes.append(1 if tier == Tier.CRITICAL else 2)
            elif result.not_ready:
                codes.append(2)
    finally:
        await poller.aclose()

    code = diagnostics_exit_code(*codes)
    logger.info(f"Diagnostics finished with exit code {code}",
                extra={"event": "diagnostics", "exit_code": code})
    return code, results
