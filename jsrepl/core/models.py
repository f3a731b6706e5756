"""Pydantic models for execution options and execution results.

Provides validated option models with safe defaults and an immutable
ExecutionResult record that carries the settled value, captured console
output, timing, failure details and the variables a snippet defined.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from jsrepl.codec import to_plain
from jsrepl.core.errors import OptionsValidationError

TIMEOUT_MESSAGE = "Script execution timed out after {timeout_ms}ms"


class ResultKind(str, Enum):
    """Classification of a settled value.

    Precedence when classifying: null, array, date, then the JavaScript
    ``typeof`` of the value.
    """
    UNDEFINED = "undefined"
    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"
    DATE = "date"
    FUNCTION = "function"
    BIGINT = "bigint"
    SYMBOL = "symbol"


class FailureKind(str, Enum):
    """Why an evaluation failed."""
    EVALUATION = "evaluation"
    TIMEOUT = "timeout"


class ExecutionOptions(BaseModel):
    """Per-call execution configuration.

    Attributes:
        timeout_ms: Wall-clock budget before the call is treated as failed
        capture_console: Buffer console calls into the result (otherwise they
            are forwarded to the engine logger)
        await_promises: Wait for a pending result to settle, within timeout_ms
        additional_bindings: Extra name->value bindings, highest precedence
        memory_limit_bytes: Heap cap for the JavaScript context
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    timeout_ms: int = Field(
        default=5000,
        gt=0,
        description="Budget in milliseconds before the call is treated as failed"
    )

    capture_console: bool = Field(
        default=True,
        description="Capture console calls into ExecutionResult.console_output"
    )

    await_promises: bool = Field(
        default=True,
        description="Await a pending result, subject to the same timeout"
    )

    additional_bindings: dict[str, Any] = Field(
        default_factory=dict,
        description="Bindings merged into the capability set with highest precedence"
    )

    memory_limit_bytes: int = Field(
        default=128_000_000,
        gt=0,
        description="Heap cap for the JavaScript context"
    )

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise OptionsValidationError(f"Invalid execution options: {e}") from e

    @classmethod
    def resolve(
        cls,
        options: ExecutionOptions | Mapping[str, Any] | None = None,
        base: ExecutionOptions | None = None,
    ) -> ExecutionOptions:
        """Merge options onto a base (or the defaults).

        A mapping only overrides the keys it names; an ExecutionOptions
        instance is taken as-is.

        Raises:
            OptionsValidationError: If the merged values are invalid
        """
        if isinstance(options, ExecutionOptions):
            return options
        if base is None:
            base = cls()
        if not options:
            return base
        if not isinstance(options, Mapping):
            raise OptionsValidationError(
                f"Execution options must be a mapping or ExecutionOptions, got {type(options).__name__}"
            )
        merged = {name: getattr(base, name) for name in cls.model_fields}
        merged.update(options)
        return cls(**merged)


class ExecutionFailure(BaseModel):
    """Error details for a failed evaluation."""

    model_config = ConfigDict(frozen=True)

    message: str
    name: str = "Error"
    stack: str | None = None
    kind: FailureKind = FailureKind.EVALUATION

    @property
    def is_timeout(self) -> bool:
        return self.kind is FailureKind.TIMEOUT


class ExecutionResult(BaseModel):
    """Immutable outcome of one evaluation.

    Attributes:
        value: Settled value, decoded into Python (see jsrepl.codec)
        console_output: Captured console lines, "[level] text\\n" per call
        result_kind: Classification of the settled value
        succeeded: Whether the unit completed without throwing or timing out
        failure: Present iff succeeded is False
        elapsed_ms: Wall-clock time from call entry to return
        user_variables: Top-level bindings the snippet created or changed
        metadata: Additional execution details (e.g. value_fallback)
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    value: Any = None
    console_output: str = ""
    result_kind: ResultKind = ResultKind.UNDEFINED
    succeeded: bool
    failure: ExecutionFailure | None = None
    elapsed_ms: float = Field(default=0.0, ge=0)
    user_variables: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_failure_matches_status(self) -> ExecutionResult:
        """Ensure failure is present exactly when the evaluation failed."""
        if self.succeeded and self.failure is not None:
            raise ValueError("A successful result cannot carry a failure")
        if not self.succeeded and self.failure is None:
            raise ValueError("A failed result must carry a failure")
        return self

    def console_lines(self) -> list[str]:
        """Return captured console output as a list of tagged lines."""
        return self.console_output.splitlines()

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-safe dict for transport adapters."""
        return {
            "result": to_plain(self.value),
            "consoleOutput": self.console_output,
            "resultType": self.result_kind.value,
            "success": self.succeeded,
            "error": None if self.failure is None else {
                "name": self.failure.name,
                "message": self.failure.message,
                "stack": self.failure.stack,
                "kind": self.failure.kind.value,
            },
            "executionTime": self.elapsed_ms,
            "variables": to_plain(self.user_variables),
        }
