"""Core engine abstractions and models.

This module provides the foundational types shared by the evaluator, the
session store and the service layer: Pydantic models for options and
results, structured logging, configuration and error types.
"""

from __future__ import annotations

from .errors import (
    ConfigValidationError,
    EngineError,
    OptionsValidationError,
    SessionNotFoundError,
)
from .models import (
    ExecutionFailure,
    ExecutionOptions,
    ExecutionResult,
    FailureKind,
    ResultKind,
)

__all__ = [
    "ConfigValidationError",
    "EngineError",
    "ExecutionFailure",
    "ExecutionOptions",
    "ExecutionResult",
    "FailureKind",
    "OptionsValidationError",
    "ResultKind",
    "SessionNotFoundError",
]
