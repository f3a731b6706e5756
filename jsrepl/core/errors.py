"""Exception classes for engine misuse and engine failures.

User code errors (throws, rejected promises, timeouts) never raise: they are
captured in ExecutionResult.failure. The exceptions below signal caller
misuse or a failure of the engine itself.
"""

from __future__ import annotations


class OptionsValidationError(Exception):
    """Raised when execution or session options are invalid.

    Wraps Pydantic ValidationError with a domain-specific name so callers do
    not need to depend on pydantic to handle bad option values (negative
    timeouts, non-positive memory limits, unknown option names).
    """

    pass


class ConfigValidationError(Exception):
    """Raised when an engine configuration file contains invalid values."""

    pass


class SessionNotFoundError(KeyError):
    """Raised when a session operation references an unknown session id.

    Attributes:
        session_id: The identifier that was not found
    """

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session not found: {self.session_id}"


class EngineError(Exception):
    """Raised when the JavaScript engine itself fails.

    Indicates a failure in the host runtime (context creation, host prelude
    evaluation), not in user code.
    """

    pass
