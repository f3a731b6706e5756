"""Evaluator: run a JavaScript snippet in a fresh QuickJS context.

Each call builds a new ``quickjs.Context``, loads the host prelude, installs
the capability set, runs the snippet as a function body and pumps promise
jobs and timers until the unit settles or the deadline passes. The context is
discarded afterwards, so the only state that survives a call is what the
caller takes from ``ExecutionResult.user_variables``.

Timeouts:
    - A pending result that does not settle within ``timeout_ms`` loses the
      race and is abandoned (its timers and jobs are dropped with the context).
    - Code that never yields is stopped by the engine interrupt, armed with
      the same budget, and reported with the same timeout message. The engine
      refuses calls into Python while the interrupt is armed, so it is left
      off when the capability set contains host functions; such calls are
      then bounded by the deadline alone.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Mapping
from typing import Any

import quickjs

from jsrepl.capabilities import CapabilitySet, build_capabilities, host_function_bridge
from jsrepl.codec import decode
from jsrepl.core.errors import EngineError
from jsrepl.core.logging import EngineLogger
from jsrepl.core.models import (
    TIMEOUT_MESSAGE,
    ExecutionFailure,
    ExecutionOptions,
    ExecutionResult,
    FailureKind,
    ResultKind,
)
from jsrepl.prelude import HOST_FUNCTION_PREFIX, HOST_PRELUDE
from jsrepl.probe import build_unit_source, scan_declarations

# Substring of the engine's message when its interrupt handler stops code
_INTERRUPTED = "interrupted"


class _DeadlineExceeded(Exception):
    """The unit did not settle before the deadline."""


class ConsoleCapture:
    """Receives console lines drained from the context.

    Buffers ``[level] text`` lines when capture is enabled; otherwise forwards
    each call to the engine logger.
    """

    def __init__(self, enabled: bool, logger: EngineLogger) -> None:
        self.enabled = enabled
        self._logger = logger
        self._lines: list[str] = []

    def __call__(self, level: str, text: str) -> None:
        if self.enabled:
            self._lines.append(f"[{level}] {text}")
        else:
            self._logger.log_guest_console(level, text)

    @property
    def output(self) -> str:
        return "".join(f"{line}\n" for line in self._lines)


def _literal(text: str) -> str:
    """Quote text as a JavaScript string literal."""
    return json.dumps(text)


def _was_interrupted(envelope: dict[str, Any] | None) -> bool:
    if envelope is None or not envelope["settled"] or envelope["ok"]:
        return False
    error = envelope["error"] or {}
    return error.get("name") == "InternalError" and _INTERRUPTED in str(error.get("message"))


class Evaluator:
    """Stateless JavaScript evaluator.

    Attributes:
        defaults: ExecutionOptions that per-call option mappings are merged onto
        logger: EngineLogger for structured event emission

    Example:
        >>> evaluator = Evaluator()
        >>> result = await evaluator.evaluate("return 2 + 2;")
        >>> result.value, result.result_kind
        (4, <ResultKind.NUMBER: 'number'>)
    """

    def __init__(
        self,
        defaults: ExecutionOptions | None = None,
        logger: EngineLogger | None = None,
    ) -> None:
        self.defaults = defaults or ExecutionOptions()
        self.logger = logger or EngineLogger()

    async def evaluate(
        self,
        code: str,
        context: Mapping[str, Any] | None = None,
        options: ExecutionOptions | Mapping[str, Any] | None = None,
        *,
        session_id: str | None = None,
    ) -> ExecutionResult:
        """Evaluate a snippet and report its outcome.

        Args:
            code: JavaScript statements; ``return`` yields the result value
            context: Bindings visible to the snippet (e.g. a session context)
            options: ExecutionOptions, or a mapping merged onto ``defaults``
            session_id: Session the call belongs to, for log correlation

        Returns:
            ExecutionResult. Throws, rejections and timeouts in the snippet are
            reported through ``failure``, never raised.

        Raises:
            OptionsValidationError: If ``options`` contains invalid values
            EngineError: If the host runtime cannot be initialised
        """
        started = time.perf_counter()
        opts = ExecutionOptions.resolve(options, self.defaults)
        deadline = time.monotonic() + opts.timeout_ms / 1000
        console = ConsoleCapture(opts.capture_console, self.logger)
        self.logger.log_execution_start(code, opts, session_id=session_id)

        ctx: quickjs.Context | None = None
        envelope: dict[str, Any] | None = None
        failure: ExecutionFailure | None = None
        names, parse_error = scan_declarations(code)
        try:
            capabilities = build_capabilities(context, opts.additional_bindings)
        except TypeError as exc:
            capabilities = None
            failure = ExecutionFailure(name="TypeError", message=str(exc))

        try:
            if capabilities is not None:
                ctx = self._create_context(opts, capabilities)
                source = build_unit_source(code, names, opts.await_promises)
                ctx.eval(f"__host.start({_literal(source)}, {json.dumps(opts.await_promises)})")
                await self._pump(ctx, deadline)
        except _DeadlineExceeded:
            self.logger.log_execution_timeout(opts.timeout_ms, interrupted=False)
            failure = self._timeout_failure(opts)
        except (quickjs.JSException, MemoryError) as exc:
            if _INTERRUPTED in str(exc):
                self.logger.log_execution_timeout(opts.timeout_ms, interrupted=True)
                failure = self._timeout_failure(opts)
            else:
                failure = ExecutionFailure(name="InternalError", message=str(exc))

        if ctx is not None:
            self._drain_console(ctx, console)
            envelope = self._collect(ctx)
            if failure is None and _was_interrupted(envelope):
                # interrupt surfaced as a rejection of the async unit
                self.logger.log_execution_timeout(opts.timeout_ms, interrupted=True)
                failure = self._timeout_failure(opts)

        result = self._build_result(
            envelope,
            failure,
            console,
            elapsed_ms=(time.perf_counter() - started) * 1000,
            parse_error=parse_error,
        )
        self.logger.log_execution_complete(result, session_id=session_id)
        return result

    def _create_context(
        self, opts: ExecutionOptions, capabilities: CapabilitySet
    ) -> quickjs.Context:
        """Create a context with limits, host runtime and capability set installed."""
        ctx = quickjs.Context()
        ctx.set_memory_limit(opts.memory_limit_bytes)
        if not capabilities.host_functions:
            ctx.set_time_limit(opts.timeout_ms / 1000)

        bridges: dict[str, str] = {}
        for index, (name, fn) in enumerate(capabilities.host_functions.items()):
            raw_name = f"{HOST_FUNCTION_PREFIX}{index}"
            ctx.add_callable(raw_name, host_function_bridge(name, fn))
            bridges[name] = raw_name

        try:
            ctx.eval(HOST_PRELUDE)
        except quickjs.JSException as exc:
            raise EngineError(f"Failed to initialise host runtime: {exc}") from exc

        ctx.eval(
            "__host.install({}, {}, {})".format(
                _literal(json.dumps(capabilities.data)),
                _literal(json.dumps(bridges)),
                _literal(json.dumps(sorted(capabilities.excluded))),
            )
        )
        return ctx

    async def _pump(self, ctx: quickjs.Context, deadline: float) -> None:
        """Run promise jobs and timers until the unit settles.

        Raises:
            _DeadlineExceeded: If the deadline passes first
        """
        while True:
            if ctx.eval("__host.isSettled()"):
                return
            if time.monotonic() >= deadline:
                raise _DeadlineExceeded
            if self._drain_jobs(ctx, deadline):
                continue
            if ctx.eval("__host.runNextTimer()"):
                # Yield to other tasks between timer callbacks
                await asyncio.sleep(0)
                continue
            delay_ms = ctx.eval("__host.nextTimerDelay()")
            remaining = deadline - time.monotonic()
            await asyncio.sleep(remaining if delay_ms < 0 else min(remaining, delay_ms / 1000))

    @staticmethod
    def _drain_jobs(ctx: quickjs.Context, deadline: float) -> bool:
        """Execute pending promise jobs; return True if any ran."""
        ran = False
        while ctx.execute_pending_job():
            ran = True
            if time.monotonic() >= deadline:
                raise _DeadlineExceeded
        return ran

    def _drain_console(self, ctx: quickjs.Context, console: ConsoleCapture) -> None:
        """Move buffered console lines from the context into the capture."""
        try:
            lines = json.loads(ctx.eval("__host.drainConsole()"))
        except (quickjs.JSException, MemoryError) as exc:
            self.logger.log_collect_failed(str(exc))
            return
        for level, text in lines:
            console(level, text)

    def _collect(self, ctx: quickjs.Context) -> dict[str, Any] | None:
        """Fetch the result envelope; None if the context can no longer answer."""
        try:
            return json.loads(ctx.eval("__host.collect()"))
        except (quickjs.JSException, MemoryError) as exc:
            self.logger.log_collect_failed(str(exc))
            return None

    @staticmethod
    def _timeout_failure(opts: ExecutionOptions) -> ExecutionFailure:
        return ExecutionFailure(
            name="TimeoutError",
            message=TIMEOUT_MESSAGE.format(timeout_ms=opts.timeout_ms),
            kind=FailureKind.TIMEOUT,
        )

    @staticmethod
    def _build_result(
        envelope: dict[str, Any] | None,
        failure: ExecutionFailure | None,
        console: ConsoleCapture,
        elapsed_ms: float,
        parse_error: str | None = None,
    ) -> ExecutionResult:
        """Map the guest envelope (if any) and host-side failure to a result."""
        metadata: dict[str, Any] = {}
        variables: dict[str, Any] = {}
        if envelope is not None:
            fallbacks = list(envelope["variableFallbacks"])
            for name, value in envelope["variables"].items():
                decoded: list[str] = []
                variables[name] = decode(value, decoded, name)
                if decoded and name not in fallbacks:
                    fallbacks.append(name)
            if fallbacks:
                metadata["variable_fallbacks"] = fallbacks
            if envelope["probeError"]:
                metadata["probe_error"] = envelope["probeError"]
            elif parse_error is not None:
                metadata["probe_error"] = f"Declarations found by token scan: {parse_error}"

        if failure is None and envelope is not None and envelope["settled"]:
            if envelope["ok"]:
                value_fallbacks: list[str] = []
                value = decode(envelope["value"], value_fallbacks)
                if envelope["fallback"] or value_fallbacks:
                    metadata["value_fallback"] = True
                return ExecutionResult(
                    value=value,
                    console_output=console.output,
                    result_kind=ResultKind(envelope["kind"]),
                    succeeded=True,
                    elapsed_ms=elapsed_ms,
                    user_variables=variables,
                    metadata=metadata,
                )
            failure = ExecutionFailure(**envelope["error"])

        if failure is None:
            failure = ExecutionFailure(
                name="InternalError", message="Evaluation ended without a result"
            )
        return ExecutionResult(
            value=None,
            console_output=console.output,
            succeeded=False,
            failure=failure,
            elapsed_ms=elapsed_ms,
            user_variables=variables,
            metadata=metadata,
        )


async def evaluate(
    code: str,
    context: Mapping[str, Any] | None = None,
    options: ExecutionOptions | Mapping[str, Any] | None = None,
) -> ExecutionResult:
    """Stateless entry point: evaluate ``code`` with a default Evaluator."""
    return await Evaluator().evaluate(code, context, options)
