"""Tests for jsrepl.core.logging module.

Verifies EngineLogger functionality with structlog including structured
event logging, key-value pairs, and event emission from the evaluator and
session store.
"""

from __future__ import annotations

import logging
from typing import Any

import pytest
import structlog

from jsrepl.core.logging import EngineLogger, configure_structlog
from jsrepl.core.models import (
    ExecutionFailure,
    ExecutionOptions,
    ExecutionResult,
    FailureKind,
    ResultKind,
)
from jsrepl.evaluator import Evaluator
from jsrepl.sessions import SessionStore


@pytest.fixture
def std_logger() -> logging.Logger:
    """Fixture providing a standard library logger for compatibility tests."""
    logger = logging.getLogger("jsrepl-test-logger")
    logger.handlers.clear()
    logger.setLevel(logging.INFO)
    logger.propagate = True
    return logger


@pytest.mark.parametrize("use_json", [False, True])
def test_configure_structlog(use_json: bool) -> None:
    configure_structlog(use_json=use_json)
    try:
        assert structlog.get_logger() is not None
    finally:
        structlog.reset_defaults()


def test_engine_logger_wraps_provided_logger(custom_logger: Any) -> None:
    engine_logger = EngineLogger(logger=custom_logger)

    assert engine_logger.logger is custom_logger


def test_engine_logger_creates_default_logger() -> None:
    assert EngineLogger().logger is not None
    assert EngineLogger("jsrepl.custom").logger is not None


def test_engine_logger_accepts_standard_logging_logger(
    std_logger: logging.Logger, caplog: pytest.LogCaptureFixture
) -> None:
    engine_logger = EngineLogger(logger=std_logger)

    with caplog.at_level(logging.INFO, logger=std_logger.name):
        engine_logger.log_execution_start("return 1;", ExecutionOptions(), session_id="s-1")

    assert len(caplog.records) == 1
    record = caplog.records[0]
    assert record.event == "execution.start"
    assert record.session_id == "s-1"
    assert record.log_message == "jsrepl.execution.start"


def test_log_execution_start_structure(engine_logger: EngineLogger, log_capture: Any) -> None:
    options = ExecutionOptions(timeout_ms=250, additional_bindings={"b": 1, "a": 2})

    engine_logger.log_execution_start("let x =\n  1;", options)

    event = log_capture.events[0]
    assert event["level"] == "info"
    assert event["event"] == "execution.start"
    assert event["log_message"] == "jsrepl.execution.start"
    assert event["code_preview"] == "let x = 1;"
    assert event["code_length"] == len("let x =\n  1;")
    assert event["timeout_ms"] == 250
    assert event["additional_bindings"] == ["a", "b"]
    assert "session_id" not in event


def test_long_code_preview_is_truncated(engine_logger: EngineLogger, log_capture: Any) -> None:
    engine_logger.log_execution_start("x" * 500, ExecutionOptions())

    preview = log_capture.events[0]["code_preview"]
    assert len(preview) == 80
    assert preview.endswith("...")


def test_log_execution_complete_success(engine_logger: EngineLogger, log_capture: Any) -> None:
    result = ExecutionResult(
        succeeded=True,
        value=1,
        result_kind=ResultKind.NUMBER,
        console_output="[log] a\n[log] b\n",
        elapsed_ms=12.5,
        user_variables={"y": 1, "x": 2},
    )

    engine_logger.log_execution_complete(result, session_id="s-1")

    event = log_capture.events[0]
    assert event["level"] == "info"
    assert event["event"] == "execution.complete"
    assert event["success"] is True
    assert event["result_kind"] == "number"
    assert event["elapsed_ms"] == 12.5
    assert event["console_lines"] == 2
    assert event["captured_variables"] == ["x", "y"]
    assert event["session_id"] == "s-1"
    assert "failure_kind" not in event


def test_log_execution_complete_failure(engine_logger: EngineLogger, log_capture: Any) -> None:
    result = ExecutionResult(
        succeeded=False,
        failure=ExecutionFailure(message="too slow", kind=FailureKind.TIMEOUT),
    )

    engine_logger.log_execution_complete(result)

    event = log_capture.events[0]
    assert event["level"] == "warning"
    assert event["failure_kind"] == "timeout"
    assert event["failure_message"] == "too slow"


def test_log_collect_failed(engine_logger: EngineLogger, log_capture: Any) -> None:
    engine_logger.log_collect_failed("InternalError: out of memory")

    event = log_capture.events[0]
    assert event["level"] == "warning"
    assert event["event"] == "execution.collect_failed"
    assert event["error"] == "InternalError: out of memory"


def test_log_guest_console_levels(engine_logger: EngineLogger, log_capture: Any) -> None:
    engine_logger.log_guest_console("warn", "careful")
    engine_logger.log_guest_console("log", "plain")

    warn, plain = log_capture.named("guest.console")
    assert warn["level"] == "warning"
    assert warn["level_name"] == "warn"
    assert warn["text"] == "careful"
    assert plain["level"] == "info"


@pytest.mark.asyncio
async def test_evaluator_emits_start_and_complete(
    engine_logger: EngineLogger, log_capture: Any
) -> None:
    await Evaluator(logger=engine_logger).evaluate("return 1;")

    assert [e["event"] for e in log_capture.events] == ["execution.start", "execution.complete"]


@pytest.mark.asyncio
async def test_evaluator_emits_timeout(engine_logger: EngineLogger, log_capture: Any) -> None:
    await Evaluator(logger=engine_logger).evaluate(
        "return new Promise(() => {});", options={"timeout_ms": 50}
    )

    (timeout,) = log_capture.named("execution.timeout")
    assert timeout["level"] == "warning"
    assert timeout["timeout_ms"] == 50
    assert timeout["interrupted"] is False


@pytest.mark.asyncio
async def test_session_events(engine_logger: EngineLogger, log_capture: Any) -> None:
    now = [1000.0]
    store = SessionStore(logger=engine_logger, clock=lambda: now[0])

    session = store.create({"expires_in_ms": 1000})
    await store.execute_in_session(session.id, "return 1;")
    now[0] += 5
    store.sweep()

    (created,) = log_capture.named("session.created")
    assert created["session_id"] == session.id
    assert created["expires_in_ms"] == 1000

    (complete,) = log_capture.named("execution.complete")
    assert complete["session_id"] == session.id

    (swept,) = log_capture.named("session.swept")
    assert swept["idle_ms"] == 5000.0
    assert swept["max_age_ms"] == 1000

    (summary,) = log_capture.named("session.sweep.completed")
    assert summary["removed_count"] == 1
    assert summary["remaining_count"] == 0


def test_session_deleted_event(engine_logger: EngineLogger, log_capture: Any) -> None:
    store = SessionStore(logger=engine_logger)
    session = store.create()

    store.delete(session.id)
    store.delete(session.id)

    assert len(log_capture.named("session.deleted")) == 1
