"""Tests for jsrepl.core.config TOML loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from jsrepl.core.config import EngineConfig, load_config
from jsrepl.core.errors import ConfigValidationError


def test_defaults() -> None:
    config = EngineConfig()

    assert config.execution.timeout_ms == 5000
    assert config.sessions.default_expires_in_ms == 3_600_000
    assert config.sessions.sweep_interval_seconds == 300.0
    assert config.packages.npm_command == "npm"
    assert config.packages.expose_lookup is False
    assert config.transpiler.command[:2] == ["npx", "--yes"]
    assert config.logging.level == "INFO"


def test_from_file(tmp_path: Path) -> None:
    config_file = tmp_path / "jsrepl.toml"
    config_file.write_text(
        """
[execution]
timeout_ms = 250
capture_console = false

[sessions]
default_expires_in_ms = 60000
sweep_interval_seconds = 5

[packages]
cache_dir = "/var/cache/jsrepl"
expose_lookup = true

[logging]
level = "DEBUG"
structured = true
""",
        encoding="utf-8",
    )

    config = EngineConfig.from_file(config_file)

    assert config.execution.timeout_ms == 250
    assert config.execution.capture_console is False
    assert config.sessions.default_expires_in_ms == 60000
    assert config.sessions.sweep_interval_seconds == 5.0
    assert config.packages.cache_dir == Path("/var/cache/jsrepl")
    assert config.packages.expose_lookup is True
    assert config.logging.structured is True


def test_execution_config_to_options() -> None:
    config = EngineConfig.model_validate({"execution": {"timeout_ms": 10, "await_promises": False}})

    options = config.execution.to_options()

    assert options.timeout_ms == 10
    assert options.await_promises is False
    assert options.additional_bindings == {}


def test_invalid_values_raise(tmp_path: Path) -> None:
    config_file = tmp_path / "bad.toml"
    config_file.write_text("[execution]\ntimeout_ms = -1\n", encoding="utf-8")

    with pytest.raises(ConfigValidationError, match="timeout_ms"):
        EngineConfig.from_file(config_file)


def test_invalid_log_level_raises(tmp_path: Path) -> None:
    config_file = tmp_path / "bad.toml"
    config_file.write_text('[logging]\nlevel = "LOUD"\n', encoding="utf-8")

    with pytest.raises(ConfigValidationError):
        EngineConfig.from_file(config_file)


def test_from_file_missing(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        EngineConfig.from_file(tmp_path / "absent.toml")


def test_load_config_falls_back_to_defaults(tmp_path: Path) -> None:
    config = load_config(str(tmp_path / "absent.toml"))

    assert config == EngineConfig()


def test_load_config_reads_file(tmp_path: Path) -> None:
    config_file = tmp_path / "jsrepl.toml"
    config_file.write_text("[transpiler]\ncommand = [\"tsc-stdin\"]\n", encoding="utf-8")

    config = load_config(str(config_file))

    assert config.transpiler.command == ["tsc-stdin"]
