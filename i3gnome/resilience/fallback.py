"""Fallback launch configuration for degraded sessions.

Provides:
- Synthesis of a minimal known-good configuration for the target
- A one-shot guard so the degraded path is never retried
- A history of activations for diagnostics
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..launcher import LaunchConfig
from ..models import FailureDimension
from ..monitoring.metrics import fallback_activations_total

logger = logging.getLogger(__name__)


class FallbackStrategy(str, Enum):
    """Types of fallback strategies."""

    MINIMAL_CONFIG = "MINIMAL_CONFIG"  # Write and use a minimal config file
    BARE_COMMAND = "BARE_COMMAND"  # Start the target without configured args
    FAIL_FAST = "FAIL_FAST"  # No degraded launch


class UnrecoverableFailure(Exception):
    """The degraded path itself failed; the session cannot continue."""

    def __init__(self, message: str = "", dimension: Optional[FailureDimension] = None):
        super().__init__(message)
        self.dimension = dimension


@dataclass
class FallbackConfig:
    """Configuration for fallback handler."""

    strategy: FallbackStrategy = FallbackStrategy.MINIMAL_CONFIG
    config_text: str = ""
    runtime_dir: str = "/tmp"
    config_filename: str = "i3-gnome-fallback.conf"
    config_flag: str = "-c"


class FallbackHandler:
    """Prepares the degraded launch, at most once per session."""

    def __init__(self, config: Optional[FallbackConfig] = None):
        """Initialize fallback handler.

        Args:
            config: Fallback configuration
        """
        self.config = config or FallbackConfig()
        self._history: list[dict[str, Any]] = []

    @property
    def attempted(self) -> bool:
        """Whether a degraded launch has already been prepared."""
        return bool(self._history)

    @property
    def config_path(self) -> str:
        return os.path.join(self.config.runtime_dir, self.config.config_filename)

    def prepare(
        self,
        dimension: FailureDimension,
        original: LaunchConfig,
        reason: str = "",
    ) -> LaunchConfig:
        """Synthesize the degraded launch configuration.

        Args:
            dimension: Which step failed
            original: Launch configuration of the normal path
            reason: Human-readable failure reason

        Returns:
            Degraded launch configuration

        Raises:
            UnrecoverableFailure: If fallback was already attempted or the
                strategy is FAIL_FAST
        """
        if self.attempted:
            previous = self._history[-1]["dimension"]
            raise UnrecoverableFailure(
                f"Fallback already attempted ({previous}); {dimension.value} failure is final",
                dimension,
            )

        self._history.append({
            "dimension": dimension.value,
            "strategy": self.config.strategy.value,
            "reason": reason,
            "at": datetime.now(timezone.utc).isoformat(),
        })
        fallback_activations_total.labels(dimension=dimension.value).inc()
        logger.warning(
            f"Entering fallback after {dimension.value} failure: {reason}",
            extra={"event": "fallback", "dimension": dimension.value,
                   "strategy": self.config.strategy.value},
        )

        if self.config.strategy == FallbackStrategy.FAIL_FAST:
            raise UnrecoverableFailure("Fallback disabled (FAIL_FAST)", dimension)

        if self.config.strategy == FallbackStrategy.BARE_COMMAND:
            return original.with_args(())

        return original.with_args((self.config.config_flag, self._write_minimal_config()))

    def _write_minimal_config(self) -> str:
        """Write the minimal config file and return its path."""
        path = self.config_path
        try:
            os.makedirs(self.config.runtime_dir, exist_ok=True)
            with open(path, "w", encoding="utf-8") as handle:
                handle.write(self.config.config_text)
        except OSError as e:
            raise UnrecoverableFailure(f"Cannot write fallback config {path}: {e}") from e
        logger.info(f"Wrote minimal configuration to {path}")
        return path

    def get_history(self) -> list[dict[str, Any]]:
        """Get fallback activations."""
        return self._history.copy()
