"""TypeScript transpiler collaborator.

The engine never type-checks or compiles TypeScript itself. A transpiler
takes source text and returns JavaScript text plus diagnostics; the service
only evaluates ``js_text`` once transpilation succeeded and passes the
diagnostics through untouched.
"""

from __future__ import annotations

import re
import subprocess
import time
from collections.abc import Sequence
from typing import Protocol

from pydantic import BaseModel, Field

from jsrepl.core.logging import EngineLogger

# "[ERROR] message", "<file>:1:4: ERROR: message", "<file>(1,4): error TS2322: message"
_DIAGNOSTIC_LINE = re.compile(
    r"^(?:.*?[:(]\d+[:,]\d+\)?:?\s*)?\[?(?P<category>ERROR|WARNING|error|warning)\]?"
    r"\s*(?:TS(?P<code>\d+))?:?\s+(?P<message>.+)$"
)


class Diagnostic(BaseModel):
    """One compiler diagnostic."""

    code: int = 0
    message: str
    category: str = "Error"


class TranspileResult(BaseModel):
    """Outcome of a transpilation.

    Attributes:
        succeeded: Whether JavaScript output was produced
        js_text: Transpiled JavaScript (present iff succeeded)
        diagnostics: Compiler diagnostics, passed through opaquely
        error: Failure description when not succeeded
        elapsed_ms: Wall-clock time spent transpiling
    """

    succeeded: bool
    js_text: str | None = None
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    error: str | None = None
    elapsed_ms: float = 0.0


class Transpiler(Protocol):
    """Anything that turns TypeScript source into JavaScript."""

    def transpile(self, source: str) -> TranspileResult: ...


def parse_diagnostics(output: str) -> list[Diagnostic]:
    """Parse compiler stderr into diagnostics, one per reported line."""
    diagnostics = []
    for line in output.splitlines():
        match = _DIAGNOSTIC_LINE.match(line.strip().lstrip("✘▲ ").strip())
        if match is None:
            continue
        diagnostics.append(
            Diagnostic(
                code=int(match.group("code") or 0),
                message=match.group("message").strip(),
                category=match.group("category").capitalize(),
            )
        )
    return diagnostics


class CommandTranspiler:
    """Transpile by piping source through an external command.

    The command reads TypeScript on stdin and writes JavaScript on stdout
    (``esbuild --loader=ts`` by default). A non-zero exit status is a failed
    transpilation, with stderr parsed into diagnostics.
    """

    def __init__(
        self,
        command: Sequence[str] = ("npx", "--yes", "esbuild", "--loader=ts"),
        timeout_seconds: float = 30.0,
        logger: EngineLogger | None = None,
    ) -> None:
        self.command = list(command)
        self.timeout_seconds = timeout_seconds
        self.logger = logger or EngineLogger("jsrepl.transpile")

    def transpile(self, source: str) -> TranspileResult:
        start = time.perf_counter()
        try:
            completed = subprocess.run(
                self.command,
                input=source,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as e:
            result = TranspileResult(succeeded=False, error=f"Transpiler not found: {e}")
        except subprocess.TimeoutExpired:
            result = TranspileResult(
                succeeded=False,
                error=f"Transpilation timed out after {self.timeout_seconds}s",
            )
        else:
            diagnostics = parse_diagnostics(completed.stderr)
            if completed.returncode == 0:
                result = TranspileResult(
                    succeeded=True, js_text=completed.stdout, diagnostics=diagnostics
                )
            else:
                errors = [d.message for d in diagnostics if d.category == "Error"]
                detail = "\n".join(errors) or completed.stderr.strip()
                result = TranspileResult(
                    succeeded=False,
                    diagnostics=diagnostics,
                    error=f"TypeScript compilation failed:\n{detail}",
                )

        result = result.model_copy(update={"elapsed_ms": (time.perf_counter() - start) * 1000})
        self.logger.log_transpile_complete(
            result.succeeded, len(result.diagnostics), result.elapsed_ms
        )
        return result
