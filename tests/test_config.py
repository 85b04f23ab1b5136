"""Tests for supervisor configuration."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from rerunner.config import (
    CONFIG_ENV_VAR,
    SupervisorConfig,
    apply_overrides,
    load_config,
    resolve_config_path,
)
from rerunner.errors import ConfigError
from rerunner.plan import ShellKind

# -- SupervisorConfig defaults --


def test_defaults() -> None:
    cfg = SupervisorConfig()
    assert cfg.quiet is False
    assert cfg.clear_screen is False
    assert cfg.shell is ShellKind.EXEC
    assert cfg.grace_seconds == 2.0
    assert cfg.reap_timeout_seconds == 5.0
    assert cfg.run_on_start is False
    assert cfg.log_path is None


def test_rejects_negative_grace() -> None:
    with pytest.raises(ValidationError, match="grace_seconds"):
        SupervisorConfig(grace_seconds=-1)


def test_shell_parsed_from_string() -> None:
    cfg = SupervisorConfig.model_validate({"shell": "bash"})
    assert cfg.shell is ShellKind.BASH


def test_log_path_expands_user() -> None:
    cfg = SupervisorConfig(log_dir="~/logs")
    assert cfg.log_path is not None
    assert "~" not in str(cfg.log_path)


# -- load_config --


def test_load_without_path_returns_defaults() -> None:
    assert load_config(None) == SupervisorConfig()


def test_load_merges_file_over_defaults(tmp_path: Path) -> None:
    path = tmp_path / "rerunner.json"
    path.write_text(json.dumps({"quiet": True, "grace_seconds": 0.5}))
    cfg = load_config(path)
    assert cfg.quiet is True
    assert cfg.grace_seconds == 0.5
    assert cfg.debounce_ms == SupervisorConfig().debounce_ms


def test_load_partial_file_keeps_defaults(tmp_path: Path) -> None:
    path = tmp_path / "rerunner.json"
    for data in ({}, {"quiet": True}, {"grace_seconds": 1.5, "shell": "sh"}):
        path.write_text(json.dumps(data))
        assert load_config(path) == SupervisorConfig.model_validate(data)


def test_load_ignores_unknown_keys(tmp_path: Path) -> None:
    path = tmp_path / "rerunner.json"
    path.write_text(json.dumps({"unknown": 1}))
    assert load_config(path) == SupervisorConfig()


def test_load_invalid_json_raises(tmp_path: Path) -> None:
    path = tmp_path / "rerunner.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError, match="Cannot read config"):
        load_config(path)


def test_load_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.json")


def test_load_non_object_raises(tmp_path: Path) -> None:
    path = tmp_path / "rerunner.json"
    path.write_text("[1, 2]")
    with pytest.raises(ConfigError, match="JSON object"):
        load_config(path)


def test_load_invalid_value_raises(tmp_path: Path) -> None:
    path = tmp_path / "rerunner.json"
    path.write_text(json.dumps({"shell": "fish"}))
    with pytest.raises(ConfigError, match="Invalid config"):
        load_config(path)


# -- resolve_config_path / apply_overrides --


def test_resolve_explicit_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(CONFIG_ENV_VAR, "/from/env.json")
    assert resolve_config_path("/explicit.json") == Path("/explicit.json")


def test_resolve_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(CONFIG_ENV_VAR, "/from/env.json")
    assert resolve_config_path(None) == Path("/from/env.json")


def test_resolve_none(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    assert resolve_config_path(None) is None


def test_apply_overrides_skips_none() -> None:
    cfg = SupervisorConfig(quiet=True)
    updated = apply_overrides(cfg, quiet=None, grace_seconds=0.1)
    assert updated.quiet is True
    assert updated.grace_seconds == 0.1


def test_apply_overrides_noop_returns_same() -> None:
    cfg = SupervisorConfig()
    assert apply_overrides(cfg, quiet=None) is cfg
