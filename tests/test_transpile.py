"""Tests for jsrepl.transpile with the external command mocked out."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

from jsrepl.transpile import CommandTranspiler, parse_diagnostics


def _completed(returncode: int, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=["esbuild"], returncode=returncode, stdout=stdout, stderr=stderr)


class TestParseDiagnostics:
    def test_esbuild_format(self) -> None:
        stderr = '✘ [ERROR] Expected ";" but found "x"\n\n    <stdin>:1:4:\n      1 │ let y x\n'

        (diagnostic,) = parse_diagnostics(stderr)

        assert diagnostic.category == "Error"
        assert diagnostic.message == 'Expected ";" but found "x"'
        assert diagnostic.code == 0

    def test_tsc_format(self) -> None:
        stderr = "input.ts(1,5): error TS2322: Type 'string' is not assignable to type 'number'."

        (diagnostic,) = parse_diagnostics(stderr)

        assert diagnostic.code == 2322
        assert diagnostic.category == "Error"
        assert diagnostic.message.startswith("Type 'string'")

    def test_location_prefixed_warning(self) -> None:
        (diagnostic,) = parse_diagnostics("<stdin>:3:1: WARNING: Unused label")

        assert diagnostic.category == "Warning"
        assert diagnostic.message == "Unused label"

    def test_noise_is_ignored(self) -> None:
        assert parse_diagnostics("1 error\n\n") == []


class TestCommandTranspiler:
    @patch("jsrepl.transpile.subprocess.run")
    def test_success(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(0, stdout="const x = 1;\n")
        transpiler = CommandTranspiler(["esbuild", "--loader=ts"], timeout_seconds=5, logger=MagicMock())

        result = transpiler.transpile("const x: number = 1;")

        assert result.succeeded
        assert result.js_text == "const x = 1;\n"
        assert result.diagnostics == []
        assert result.error is None
        assert result.elapsed_ms >= 0
        args, kwargs = mock_run.call_args
        assert args[0] == ["esbuild", "--loader=ts"]
        assert kwargs["input"] == "const x: number = 1;"
        assert kwargs["timeout"] == 5

    @patch("jsrepl.transpile.subprocess.run")
    def test_compile_error(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(1, stderr='✘ [ERROR] Unexpected "}"\n')
        transpiler = CommandTranspiler(logger=MagicMock())

        result = transpiler.transpile("}")

        assert not result.succeeded
        assert result.js_text is None
        assert len(result.diagnostics) == 1
        assert result.error == 'TypeScript compilation failed:\nUnexpected "}"'

    @patch("jsrepl.transpile.subprocess.run")
    def test_missing_command(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = FileNotFoundError("npx")
        transpiler = CommandTranspiler(logger=MagicMock())

        result = transpiler.transpile("let a = 1;")

        assert not result.succeeded
        assert result.error is not None
        assert result.error.startswith("Transpiler not found")

    @patch("jsrepl.transpile.subprocess.run")
    def test_timeout(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="esbuild", timeout=1)
        transpiler = CommandTranspiler(timeout_seconds=1, logger=MagicMock())

        result = transpiler.transpile("let a = 1;")

        assert not result.succeeded
        assert result.error == "Transpilation timed out after 1s"

    @patch("jsrepl.transpile.subprocess.run")
    def test_logs_outcome(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(0, stdout="")
        logger = MagicMock()

        CommandTranspiler(logger=logger).transpile("")

        logger.log_transpile_complete.assert_called_once()
        assert logger.log_transpile_complete.call_args.args[:2] == (True, 0)
