"""Configuration for the i3-gnome session launcher."""

import os
import tempfile
from typing import Optional

from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Endpoint, Tier


class ConfigurationError(Exception):
    """Invalid thresholds, timeouts or endpoint configuration."""

    pass


def _default_runtime_dir() -> str:
    return os.environ.get("XDG_RUNTIME_DIR") or tempfile.gettempdir()


class Settings(BaseSettings):
    """Session settings, read from I3GNOME_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="I3GNOME_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Endpoints per tier (opaque bus names)
    critical_endpoints: list[str] = [
        "org.gnome.SettingsDaemon.XSettings",
        "org.gnome.SettingsDaemon.MediaKeys",
        "org.gnome.SettingsDaemon.Power",
        "org.gnome.SettingsDaemon.Color",
    ]
    important_endpoints: list[str] = [
        "org.gnome.SettingsDaemon.Keyboard",
        "org.gnome.SettingsDaemon.Sound",
    ]
    optional_endpoints: list[str] = [
        "org.gnome.SettingsDaemon.Sharing",
        "org.gnome.SettingsDaemon.Wacom",
    ]

    # Readiness thresholds
    critical_threshold: float = 0.75  # Fraction of critical endpoints required, > 0.5
    tier_threshold: float = 0.5  # Background tiers, reporting only

    # Resilient call policy
    base_timeout: float = 5.0  # Seconds, first attempt
    max_timeout: float = 20.0
    timeout_increment: float = 3.0
    max_retries: int = 5
    backoff_unit: float = 1.0  # backoff = attempt * unit + jitter
    jitter: float = 0.5  # Upper bound of the random jitter

    # Poll and monitoring
    poll_deadline: float = 30.0
    monitor_interval: float = 30.0

    # Session manager registration
    registration_enabled: bool = True
    registration_app_id: str = "i3-gnome"
    autostart_id: Optional[str] = None

    # Target process
    target_command: str = "i3"
    target_args: list[str] = []
    config_check_args: list[str] = []  # e.g. ["-C"]; empty disables the check
    startup_grace: float = 1.0
    shutdown_grace: float = 5.0

    # Fallback
    fallback_strategy: str = "MINIMAL_CONFIG"
    fallback_config_text: str = (
        "# i3 config file (v4)\n"
        "font pango:monospace 8\n"
        "bindsym Mod4+Return exec x-terminal-emulator\n"
        "bindsym Mod4+Shift+e exit\n"
        "bar {\n"
        "    status_command i3status\n"
        "}\n"
    )
    runtime_dir: str = ""

    # Environment validation
    required_env: list[str] = ["DISPLAY", "DBUS_SESSION_BUS_ADDRESS"]
    recommended_env: list[str] = ["XDG_CURRENT_DESKTOP"]
    required_commands: list[str] = ["dbus-send"]
    session_env: dict[str, str] = {
        "XDG_CURRENT_DESKTOP": "GNOME",
        "XDG_SESSION_TYPE": "x11",
        "XDG_SESSION_DESKTOP": "gnome",
    }

    # Observability
    metrics_file: Optional[str] = None
    debug: bool = False

    @model_validator(mode="after")
    def _check_policy(self) -> "Settings":
        if not 0.5 < self.critical_threshold <= 1:
            raise ValueError("critical_threshold must be a majority, in (0.5, 1]")
        if not 0 < self.tier_threshold <= 1:
            raise ValueError("tier_threshold must be in (0, 1]")
        if self.base_timeout <= 0:
            raise ValueError("base_timeout must be positive")
        if self.max_timeout < self.base_timeout:
            raise ValueError("max_timeout must be >= base_timeout")
        if self.timeout_increment < 0:
            raise ValueError("timeout_increment must not be negative")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.backoff_unit < 0 or self.jitter < 0:
            raise ValueError("backoff_unit and jitter must not be negative")
        if self.poll_deadline < 0:
            raise ValueError("poll_deadline must not be negative")
        if self.monitor_interval <= 0:
            raise ValueError("monitor_interval must be positive")
        if self.fallback_strategy not in ("MINIMAL_CONFIG", "BARE_COMMAND", "FAIL_FAST"):
            raise ValueError(f"unknown fallback_strategy {self.fallback_strategy!r}")
        if not self.runtime_dir:
            self.runtime_dir = _default_runtime_dir()
        return self

    def endpoints(self, tier: Tier) -> list[Endpoint]:
        """Build the endpoint set of one tier."""
        names = {
            Tier.CRITICAL: self.critical_endpoints,
            Tier.IMPORTANT: self.important_endpoints,
            Tier.OPTIONAL: self.optional_endpoints,
        }[tier]
        return [
            Endpoint(name=name, tier=tier, probe_timeout=self.base_timeout)
            for name in dict.fromkeys(names)
        ]


def load_settings(**overrides) -> Settings:
    """Load settings from the environment, raising ConfigurationError if invalid.

    Args:
        **overrides: Field values that take precedence over the environment

    Returns:
        Validated settings
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid session configuration: {e}") from e
