"""
Engine Configuration.

Configuration models for the execution service, loadable from TOML.
"""

from __future__ import annotations

import os
import tempfile
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from jsrepl.core.errors import ConfigValidationError
from jsrepl.core.models import ExecutionOptions


class ExecutionConfig(BaseModel):
    """Default execution options applied to every call."""

    timeout_ms: int = Field(default=5000, gt=0)
    capture_console: bool = True
    await_promises: bool = True
    memory_limit_bytes: int = Field(default=128_000_000, gt=0)

    def to_options(self) -> ExecutionOptions:
        return ExecutionOptions(**self.model_dump())


class SessionsConfig(BaseModel):
    """Configuration for the session store."""

    default_expires_in_ms: int = Field(default=3_600_000, gt=0)
    sweep_interval_seconds: float = Field(default=300.0, gt=0)


class PackagesConfig(BaseModel):
    """Configuration for the npm package collaborator."""

    cache_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "jsrepl-packages"
    )
    npm_command: str = "npm"
    install_timeout_seconds: float = Field(default=60.0, gt=0)
    expose_lookup: bool = Field(
        default=False,
        description="Inject a findPackage(name) host function into evaluations",
    )


class TranspilerConfig(BaseModel):
    """Configuration for the TypeScript transpiler collaborator."""

    command: list[str] = Field(
        default_factory=lambda: ["npx", "--yes", "esbuild", "--loader=ts"]
    )
    timeout_seconds: float = Field(default=30.0, gt=0)


class LoggingConfig(BaseModel):
    """Configuration for engine logging."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    structured: bool = False
    configure: bool = Field(
        default=False,
        description="Configure structlog when the service starts",
    )


class EngineConfig(BaseModel):
    """Main engine configuration."""

    execution: ExecutionConfig = ExecutionConfig()
    sessions: SessionsConfig = SessionsConfig()
    packages: PackagesConfig = PackagesConfig()
    transpiler: TranspilerConfig = TranspilerConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def from_file(cls, path: Path | str) -> EngineConfig:
        """Load configuration from TOML file.

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigValidationError: If the file contains invalid values
            tomllib.TOMLDecodeError: If the file is not valid TOML
        """
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid engine configuration: {e}") from e


def load_config(path: str = "config/jsrepl.toml") -> EngineConfig:
    """Load engine configuration, falling back to defaults if the file is missing.

    Args:
        path: Path to the TOML file

    Returns:
        EngineConfig: Validated configuration
    """
    if not os.path.exists(path):
        return EngineConfig()
    return EngineConfig.from_file(path)
