"""Shared pytest fixtures for all tests."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest
import structlog

from jsrepl.core.logging import EngineLogger
from jsrepl.evaluator import Evaluator
from jsrepl.sessions import SessionStore


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StructlogCapture:
    """Helper to capture structlog events."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        """Capture event dict (structlog processor signature)."""
        self.events.append(event_dict.copy())
        return event_dict

    def named(self, event: str) -> list[dict[str, Any]]:
        return [e for e in self.events if e.get("event") == event]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def log_capture() -> StructlogCapture:
    """Fixture providing structlog event capture."""
    return StructlogCapture()


@pytest.fixture
def custom_logger(log_capture: StructlogCapture) -> Any:
    """Fixture providing a structlog logger with capture processor."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            log_capture,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.BoundLogger,
        context_class=dict,
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    yield structlog.get_logger("test_jsrepl")
    structlog.reset_defaults()


@pytest.fixture
def engine_logger(custom_logger: Any) -> EngineLogger:
    return EngineLogger(logger=custom_logger)


@pytest.fixture
def quiet_logger() -> MagicMock:
    """EngineLogger stand-in that records calls without emitting anything."""
    return MagicMock(spec=EngineLogger)


@pytest.fixture
def evaluator(quiet_logger: MagicMock) -> Evaluator:
    return Evaluator(logger=quiet_logger)


@pytest.fixture
def store(evaluator: Evaluator, quiet_logger: MagicMock, clock: FakeClock) -> SessionStore:
    return SessionStore(evaluator=evaluator, logger=quiet_logger, clock=clock)
