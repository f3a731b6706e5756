"""npm package collaborator.

Installs packages into a cache directory by shelling out to npm and looks up
installed packages there. The engine treats it as an external effect: only
success/failure and the resolved path matter to evaluation.
"""

from __future__ import annotations

import re
import subprocess
import time
from pathlib import Path

from pydantic import BaseModel

from jsrepl.core.logging import EngineLogger

# npm package names, optionally scoped (@scope/name)
_PACKAGE_NAME = re.compile(r"^(?:@[a-z0-9][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*$")
_VERSION_SPEC = re.compile(r"^[A-Za-z0-9.^~<>=*|+ -]+$")


class PackageResult(BaseModel):
    """Outcome of a package operation."""

    succeeded: bool
    package_name: str
    version: str | None = None
    elapsed_ms: float = 0.0
    cached: bool = False
    error: str | None = None


def validate_package_name(name: str) -> str:
    """Ensure a package name is a plain npm name before it reaches a command line.

    Raises:
        ValueError: If the name is not a valid npm package name
    """
    if len(name) > 214 or not _PACKAGE_NAME.match(name):
        raise ValueError(f"Invalid npm package name: {name!r}")
    return name


class NpmPackageManager:
    """Install and find npm packages under a cache directory.

    Attributes:
        cache_dir: Directory used as the npm prefix (packages land in
                   cache_dir/node_modules)
        npm_command: npm executable
        timeout_seconds: Limit for one install
    """

    def __init__(
        self,
        cache_dir: Path,
        npm_command: str = "npm",
        timeout_seconds: float = 60.0,
        logger: EngineLogger | None = None,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.npm_command = npm_command
        self.timeout_seconds = timeout_seconds
        self.logger = logger or EngineLogger("jsrepl.packages")

    @property
    def modules_dir(self) -> Path:
        return self.cache_dir / "node_modules"

    def find_package(self, name: str) -> Path | None:
        """Return the installed package directory, or None if not installed."""
        try:
            validate_package_name(name)
        except ValueError:
            return None
        package_dir = self.modules_dir / name
        if (package_dir / "package.json").is_file():
            return package_dir
        return None

    def install_package(self, name: str, version: str | None = None) -> PackageResult:
        """Install a package unless it is already in the cache.

        Invalid names or versions are reported as a failed PackageResult.
        """
        start = time.perf_counter()

        def finish(succeeded: bool, cached: bool = False, error: str | None = None) -> PackageResult:
            result = PackageResult(
                succeeded=succeeded,
                package_name=name,
                version=version,
                elapsed_ms=(time.perf_counter() - start) * 1000,
                cached=cached,
                error=error,
            )
            self.logger.log_package_install(
                name, version, succeeded, result.elapsed_ms, cached
            )
            return result

        try:
            validate_package_name(name)
            if version is not None and not _VERSION_SPEC.match(version):
                raise ValueError(f"Invalid version specifier: {version!r}")
        except ValueError as e:
            return finish(False, error=str(e))

        if version is None and self.find_package(name) is not None:
            return finish(True, cached=True)

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        spec = f"{name}@{version}" if version else name
        try:
            completed = subprocess.run(
                [self.npm_command, "install", spec, "--prefix", str(self.cache_dir), "--no-save"],
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as e:
            return finish(False, error=f"npm not found: {e}")
        except subprocess.TimeoutExpired:
            return finish(False, error=f"Installation timed out after {self.timeout_seconds}s")

        if completed.returncode != 0:
            return finish(False, error=completed.stderr.strip() or f"npm exited with {completed.returncode}")
        return finish(True)
