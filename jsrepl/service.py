"""Execution service.

Wires the Evaluator, SessionStore and the TypeScript/npm collaborators into
one explicitly constructed object with a start/shutdown lifecycle. Transport
adapters (HTTP, MCP, CLI) hold an ExecutionService and translate to and from
``ExecutionResult.to_payload()``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from contextlib import suppress
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from jsrepl.core.config import EngineConfig
from jsrepl.core.logging import EngineLogger, configure_structlog
from jsrepl.core.models import ExecutionOptions, ExecutionResult
from jsrepl.evaluator import Evaluator
from jsrepl.packages import NpmPackageManager, PackageResult
from jsrepl.sessions import SessionStore
from jsrepl.transpile import CommandTranspiler, TranspileResult, Transpiler

FIND_PACKAGE_BINDING = "findPackage"


class TypeScriptOutcome(BaseModel):
    """Transpilation outcome plus the evaluation it led to, if any."""

    model_config = ConfigDict(frozen=True)

    transpilation: TranspileResult
    execution: ExecutionResult | None = None

    @property
    def succeeded(self) -> bool:
        return self.execution is not None and self.execution.succeeded


class ExecutionService:
    """Evaluation engine facade with a background session sweep.

    Example:
        >>> async with ExecutionService() as service:
        ...     session = service.sessions.create()
        ...     await service.evaluate("let x = 1;", session_id=session.id)
        ...     result = await service.evaluate("return x + 1;", session_id=session.id)
        >>> result.value
        2
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        evaluator: Evaluator | None = None,
        store: SessionStore | None = None,
        transpiler: Transpiler | None = None,
        packages: NpmPackageManager | None = None,
        logger: EngineLogger | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.logger = logger or EngineLogger()
        self.evaluator = evaluator or Evaluator(
            defaults=self.config.execution.to_options(), logger=self.logger
        )
        self._store = store or SessionStore(
            evaluator=self.evaluator,
            logger=self.logger,
            default_expires_in_ms=self.config.sessions.default_expires_in_ms,
        )
        self.transpiler = transpiler or CommandTranspiler(
            self.config.transpiler.command,
            self.config.transpiler.timeout_seconds,
            logger=self.logger,
        )
        self.packages = packages or NpmPackageManager(
            self.config.packages.cache_dir,
            self.config.packages.npm_command,
            self.config.packages.install_timeout_seconds,
            logger=self.logger,
        )
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def sessions(self) -> SessionStore:
        return self._store

    @property
    def running(self) -> bool:
        return self._sweep_task is not None

    async def start(self) -> None:
        """Configure logging (if enabled) and start the background sweep."""
        if self.config.logging.configure:
            configure_structlog(
                level=getattr(logging, self.config.logging.level),
                use_json=self.config.logging.structured,
            )
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._periodic_sweep())

    async def shutdown(self) -> None:
        """Stop the background sweep and drop every session."""
        if self._sweep_task:
            self._sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        self._store.clear()

    async def __aenter__(self) -> ExecutionService:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    async def _periodic_sweep(self) -> None:
        while True:
            await asyncio.sleep(self.config.sessions.sweep_interval_seconds)
            self._store.sweep()

    def _find_package_binding(self, name: str) -> str | None:
        path = self.packages.find_package(name)
        return None if path is None else str(path)

    def _prepare_options(
        self,
        options: ExecutionOptions | Mapping[str, Any] | None,
        base: ExecutionOptions | None,
    ) -> ExecutionOptions | Mapping[str, Any] | None:
        if not self.config.packages.expose_lookup:
            return options
        opts = ExecutionOptions.resolve(options, base or self.evaluator.defaults)
        bindings = {FIND_PACKAGE_BINDING: self._find_package_binding, **opts.additional_bindings}
        return opts.model_copy(update={"additional_bindings": bindings})

    async def evaluate(
        self,
        code: str,
        context: Mapping[str, Any] | None = None,
        options: ExecutionOptions | Mapping[str, Any] | None = None,
        session_id: str | None = None,
    ) -> ExecutionResult:
        """Evaluate JavaScript, statelessly or inside a session.

        With ``session_id`` the session's context is used and ``context`` is
        ignored.

        Raises:
            SessionNotFoundError: If session_id names no session
            OptionsValidationError: If options are invalid
        """
        if session_id is None:
            return await self.evaluator.evaluate(
                code, context, self._prepare_options(options, None)
            )

        base = None
        if self.config.packages.expose_lookup:
            session = self._store.get(session_id)
            base = session.execution_options if session is not None else None
        return await self._store.execute_in_session(
            session_id, code, self._prepare_options(options, base)
        )

    async def evaluate_typescript(
        self,
        source: str,
        context: Mapping[str, Any] | None = None,
        options: ExecutionOptions | Mapping[str, Any] | None = None,
        session_id: str | None = None,
    ) -> TypeScriptOutcome:
        """Transpile TypeScript and evaluate the output if transpilation succeeded."""
        transpilation = await asyncio.to_thread(self.transpiler.transpile, source)
        if not transpilation.succeeded or transpilation.js_text is None:
            return TypeScriptOutcome(transpilation=transpilation)
        execution = await self.evaluate(
            transpilation.js_text, context, options, session_id=session_id
        )
        return TypeScriptOutcome(transpilation=transpilation, execution=execution)

    async def install_package(self, name: str, version: str | None = None) -> PackageResult:
        """Install an npm package into the cache without blocking the loop."""
        return await asyncio.to_thread(self.packages.install_package, name, version)

    def find_package(self, name: str) -> Path | None:
        return self.packages.find_package(name)
