"""Structured logging for evaluation and session events.

Provides EngineLogger class that uses structlog for structured event emission
(execution.start, execution.complete, session lifecycle events). Configures
structlog with console rendering by default but allows custom configuration.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from jsrepl.core.models import ExecutionOptions, ExecutionResult


def configure_structlog(level: int = logging.INFO, use_json: bool = False) -> None:
    """Configure structlog with sensible defaults for engine logging.

    Args:
        level: Minimum log level (default: logging.INFO)
        use_json: If True, use JSON renderer; otherwise use console renderer
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class EngineLogger:
    """Wrapper for structured logging of engine events.

    Accepts either structlog or standard logging.Logger instances and normalizes
    emission so callers do not need to care which backend is in use.
    """

    _CODE_PREVIEW_LENGTH = 80

    def __init__(self, logger: Any = None) -> None:
        """Initialize EngineLogger with optional custom logger.

        Args:
            logger: Optional structlog BoundLogger, logging.Logger, or string name.
                    If None, a default structlog logger named 'jsrepl' is created.
                    If string, creates a structlog logger with that name.
        """
        if logger is None:
            self._logger = structlog.get_logger("jsrepl")
        elif isinstance(logger, str):
            self._logger = structlog.get_logger(logger)
        else:
            self._logger = logger

    @property
    def logger(self) -> Any:
        """Expose the underlying logger instance (structlog or logging.Logger)."""
        return self._logger

    def _emit(self, level: int, message: str, **fields: Any) -> None:
        """Emit a log record regardless of logger backend."""
        extra = dict(fields)
        extra.setdefault("log_message", message)
        extra.setdefault("event", message.split(".", 1)[-1] if "." in message else message)
        extra.setdefault("event_type", extra.get("event"))

        if isinstance(self._logger, logging.Logger):
            self._logger.log(level, message, extra=extra)
            return

        method_name = logging.getLevelName(level).lower()
        log_method = getattr(self._logger, method_name, None)
        if not callable(log_method):
            log_method = self._logger.info

        log_kwargs = dict(extra)
        event_value = log_kwargs.pop("event", None)
        event_arg = event_value if event_value is not None else message
        log_method(event_arg, **log_kwargs)

    def _preview(self, code: str) -> str:
        """Shorten code to a single-line preview for log events."""
        flat = " ".join(code.split())
        if len(flat) <= self._CODE_PREVIEW_LENGTH:
            return flat
        return flat[: self._CODE_PREVIEW_LENGTH - 3] + "..."

    def log_execution_start(
        self, code: str, options: ExecutionOptions, session_id: str | None = None
    ) -> None:
        """Log the start of an evaluation with option details.

        Args:
            code: Source about to be evaluated (logged as a short preview)
            options: Resolved ExecutionOptions for the call
            session_id: Optional session identifier for session-bound calls
        """
        log_kwargs: dict[str, Any] = {
            "event": "execution.start",
            "code_preview": self._preview(code),
            "code_length": len(code),
            "timeout_ms": options.timeout_ms,
            "await_promises": options.await_promises,
            "capture_console": options.capture_console,
            "memory_limit_bytes": options.memory_limit_bytes,
            "additional_bindings": sorted(options.additional_bindings),
        }
        if session_id is not None:
            log_kwargs["session_id"] = session_id

        self._emit(logging.INFO, "jsrepl.execution.start", **log_kwargs)

    def log_execution_complete(
        self, result: ExecutionResult, session_id: str | None = None
    ) -> None:
        """Log the completion of an evaluation with result metrics.

        Args:
            result: ExecutionResult of the call
            session_id: Optional session identifier for session-bound calls
        """
        log_kwargs: dict[str, Any] = {
            "event": "execution.complete",
            "success": result.succeeded,
            "result_kind": result.result_kind.value,
            "elapsed_ms": result.elapsed_ms,
            "console_lines": len(result.console_lines()),
            "captured_variables": sorted(result.user_variables),
        }
        if result.failure is not None:
            log_kwargs["failure_kind"] = result.failure.kind.value
            log_kwargs["failure_message"] = result.failure.message
        if result.metadata.get("value_fallback"):
            log_kwargs["value_fallback"] = True
        if session_id is not None:
            log_kwargs["session_id"] = session_id

        level = logging.INFO if result.succeeded else logging.WARNING
        self._emit(level, "jsrepl.execution.complete", **log_kwargs)

    def log_execution_timeout(self, timeout_ms: int, interrupted: bool) -> None:
        """Log that an evaluation hit its deadline.

        Args:
            timeout_ms: Budget that was exceeded
            interrupted: True if the engine interrupted running code, False if
                         a pending result lost the race against the deadline
        """
        self._emit(
            logging.WARNING,
            "jsrepl.execution.timeout",
            event="execution.timeout",
            timeout_ms=timeout_ms,
            interrupted=interrupted,
        )

    def log_collect_failed(self, error: str) -> None:
        """Log that the result envelope could not be read back from the context."""
        self._emit(
            logging.WARNING,
            "jsrepl.execution.collect_failed",
            event="execution.collect_failed",
            error=error,
        )

    def log_guest_console(self, level: str, text: str) -> None:
        """Forward an uncaptured guest console call to the log."""
        log_level = {
            "error": logging.ERROR,
            "warn": logging.WARNING,
            "debug": logging.DEBUG,
        }.get(level, logging.INFO)
        self._emit(log_level, "jsrepl.guest.console", event="guest.console", level_name=level, text=text)

    def log_session_created(self, session_id: str, expires_in_ms: int) -> None:
        """Log the creation of a new session."""
        self._emit(
            logging.INFO,
            "jsrepl.session.created",
            event="session.created",
            session_id=session_id,
            expires_in_ms=expires_in_ms,
        )

    def log_session_deleted(self, session_id: str) -> None:
        """Log explicit deletion of a session."""
        self._emit(
            logging.INFO, "jsrepl.session.deleted", event="session.deleted", session_id=session_id
        )

    def log_session_swept(self, session_id: str, idle_ms: float, max_age_ms: float) -> None:
        """Log eviction of an idle session by a sweep.

        Args:
            session_id: Evicted session identifier
            idle_ms: Time since the session was last accessed
            max_age_ms: Age threshold applied to the session
        """
        self._emit(
            logging.INFO,
            "jsrepl.session.swept",
            event="session.swept",
            session_id=session_id,
            idle_ms=idle_ms,
            max_age_ms=max_age_ms,
        )

    def log_sweep_completed(self, removed_count: int, remaining_count: int) -> None:
        """Log completion of a sweep with summary statistics."""
        self._emit(
            logging.INFO,
            "jsrepl.session.sweep.completed",
            event="session.sweep.completed",
            removed_count=removed_count,
            remaining_count=remaining_count,
        )

    def log_transpile_complete(
        self, succeeded: bool, diagnostics_count: int, elapsed_ms: float
    ) -> None:
        """Log the outcome of a TypeScript transpilation."""
        self._emit(
            logging.INFO if succeeded else logging.WARNING,
            "jsrepl.transpile.complete",
            event="transpile.complete",
            success=succeeded,
            diagnostics_count=diagnostics_count,
            elapsed_ms=elapsed_ms,
        )

    def log_package_install(
        self, package_name: str, version: str | None, succeeded: bool, elapsed_ms: float, cached: bool
    ) -> None:
        """Log the outcome of a package installation."""
        self._emit(
            logging.INFO if succeeded else logging.WARNING,
            "jsrepl.package.install",
            event="package.install",
            package_name=package_name,
            version=version,
            success=succeeded,
            elapsed_ms=elapsed_ms,
            cached=cached,
        )
