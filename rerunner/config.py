"""Supervisor configuration: defaults, JSON config file, CLI overrides."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from rerunner.errors import ConfigError
from rerunner.plan import ShellKind

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "RERUNNER_CONFIG"


class SupervisorConfig(BaseModel):
    """Top-level configuration, loaded from an optional JSON file."""

    log_level: str = "WARNING"
    log_dir: str | None = None
    quiet: bool = False
    clear_screen: bool = False
    shell: ShellKind = ShellKind.EXEC
    grace_seconds: float = Field(default=2.0, ge=0)
    reap_timeout_seconds: float = Field(default=5.0, gt=0)
    debounce_ms: int = Field(default=50, ge=0)
    run_on_start: bool = False

    @property
    def log_path(self) -> Path | None:
        """Expanded log directory, or None when file logging is off."""
        if not self.log_dir:
            return None
        return Path(self.log_dir).expanduser()


def resolve_config_path(explicit: str | Path | None = None) -> Path | None:
    """Pick the config file: explicit argument, then ``$RERUNNER_CONFIG``."""
    if explicit:
        return Path(explicit).expanduser()
    from_env = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if from_env:
        return Path(from_env).expanduser()
    return None


def load_config(config_path: Path | None = None) -> SupervisorConfig:
    """Load the config file; keys it leaves out keep their defaults.

    Without a path the defaults are returned unchanged. Unknown keys are
    ignored; unreadable JSON and invalid values raise `ConfigError`.
    """
    if config_path is None:
        return SupervisorConfig()

    try:
        user_data = json.loads(config_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        msg = f"Cannot read config file {config_path}: {exc}"
        raise ConfigError(msg) from exc
    if not isinstance(user_data, dict):
        msg = f"Config file {config_path} must contain a JSON object"
        raise ConfigError(msg)

    try:
        config = SupervisorConfig.model_validate(user_data)
    except ValidationError as exc:
        msg = f"Invalid config file {config_path}: {exc}"
        raise ConfigError(msg) from exc
    logger.info("Loaded config from %s", config_path)
    return config


def apply_overrides(config: SupervisorConfig, **overrides: object) -> SupervisorConfig:
    """Return a copy of *config* with every non-None override applied."""
    updates = {key: value for key, value in overrides.items() if value is not None}
    if not updates:
        return config
    logger.debug("CLI overrides: %s", ", ".join(f"{k}={v}" for k, v in updates.items()))
    return config.model_copy(update=updates)
