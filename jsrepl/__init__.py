"""jsrepl: sandboxed JavaScript evaluation with persistent REPL sessions.

Quick start:
    >>> from jsrepl import evaluate
    >>> result = await evaluate("return 2 + 2;")
    >>> result.value
    4

Sessions:
    >>> from jsrepl import SessionStore
    >>> store = SessionStore()
    >>> session = store.create()
    >>> await store.execute_in_session(session.id, "let x = 42;")
    >>> (await store.execute_in_session(session.id, "return x;")).value
    42
"""

from __future__ import annotations

from .capabilities import HOST_GLOBALS, CapabilitySet, build_capabilities
from .codec import UNDEFINED, JSFunction
from .core.config import EngineConfig, load_config
from .core.errors import (
    ConfigValidationError,
    EngineError,
    OptionsValidationError,
    SessionNotFoundError,
)
from .core.logging import EngineLogger, configure_structlog
from .core.models import (
    ExecutionFailure,
    ExecutionOptions,
    ExecutionResult,
    FailureKind,
    ResultKind,
)
from .evaluator import Evaluator, evaluate
from .packages import NpmPackageManager, PackageResult
from .service import ExecutionService, TypeScriptOutcome
from .sessions import HistoryEntry, Session, SessionOptions, SessionStore
from .transpile import CommandTranspiler, Diagnostic, TranspileResult, Transpiler

__version__ = "0.1.0"

__all__ = [
    "HOST_GLOBALS",
    "UNDEFINED",
    "CapabilitySet",
    "CommandTranspiler",
    "ConfigValidationError",
    "Diagnostic",
    "EngineConfig",
    "EngineError",
    "EngineLogger",
    "Evaluator",
    "ExecutionFailure",
    "ExecutionOptions",
    "ExecutionResult",
    "ExecutionService",
    "FailureKind",
    "HistoryEntry",
    "JSFunction",
    "NpmPackageManager",
    "OptionsValidationError",
    "PackageResult",
    "ResultKind",
    "Session",
    "SessionNotFoundError",
    "SessionOptions",
    "SessionStore",
    "TranspileResult",
    "Transpiler",
    "TypeScriptOutcome",
    "build_capabilities",
    "configure_structlog",
    "evaluate",
    "load_config",
]
