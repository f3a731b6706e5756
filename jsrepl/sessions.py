"""Session store for stateful multi-turn evaluation.

A session threads a context (the variables earlier snippets defined) and a
history log across evaluations, emulating a persistent REPL on top of the
stateless Evaluator.

Session Model
-------------
Each session is identified by a UUIDv4 string. Ids carry 122 random bits, so
a deleted id is not issued again without the store remembering past ids. The
store owns every Session instance; ``get`` and ``list_all`` hand out copies
detached down to nested containers, so callers never hold a live reference
across calls.

Lifecycle: created -> active (re-entered by ``get``/``execute_in_session``)
-> deleted (explicit ``delete`` or eviction by ``sweep``). A call that is
waiting on, or running against, a session when it is deleted raises
``SessionNotFoundError`` and is not recorded.

Context Merge Policy
--------------------
After each evaluation, the variables the probe captured
(``ExecutionResult.user_variables``) overwrite same-named context entries.
Nothing is ever removed from a context by evaluation, including when the
snippet fails part-way.

Concurrency
-----------
Calls against the same session are serialized by a per-session
``asyncio.Lock``; calls against different sessions proceed independently.
The session map itself is guarded by a ``threading.Lock`` that is never held
across an await.

Usage Examples
--------------
    >>> store = SessionStore()
    >>> session = store.create()
    >>> await store.execute_in_session(session.id, "let x = 42;")
    >>> result = await store.execute_in_session(session.id, "return x;")
    >>> result.value
    42
    >>> len(store.get(session.id).history)
    2
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from jsrepl.core.errors import OptionsValidationError, SessionNotFoundError
from jsrepl.core.logging import EngineLogger
from jsrepl.core.models import ExecutionOptions, ExecutionResult
from jsrepl.evaluator import Evaluator

DEFAULT_EXPIRES_IN_MS = 3_600_000


def _detached(value: Any) -> Any:
    """Copy nested dicts and lists; other values are shared."""
    if isinstance(value, dict):
        return {key: _detached(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_detached(item) for item in value]
    return value


class SessionOptions(BaseModel):
    """Options for creating a session.

    Attributes:
        initial_context: Bindings the first evaluation starts with
        expires_in_ms: Inactivity window after which a sweep may evict the session
        execution_options: Defaults for every evaluation in the session
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    initial_context: dict[str, Any] = Field(default_factory=dict)
    expires_in_ms: int = Field(default=DEFAULT_EXPIRES_IN_MS, gt=0)
    execution_options: ExecutionOptions | None = None

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise OptionsValidationError(f"Invalid session options: {e}") from e


@dataclass(frozen=True)
class HistoryEntry:
    """One evaluation in a session's history."""

    code: str
    result: ExecutionResult
    timestamp: float


@dataclass
class Session:
    """A stateful sequence of evaluations sharing one context and history.

    Attributes:
        id: Opaque, unguessable identifier (UUIDv4)
        created_at: Unix timestamp of creation
        last_accessed_at: Unix timestamp of the last get/execute
        expires_in_ms: Inactivity window used by sweeps without an explicit age
        context: Variables carried forward between evaluations
        history: Every evaluation made against the session, oldest first
        execution_options: Session-level default options
    """

    id: str
    created_at: float
    last_accessed_at: float
    expires_in_ms: int = DEFAULT_EXPIRES_IN_MS
    context: dict[str, Any] = field(default_factory=dict)
    history: list[HistoryEntry] = field(default_factory=list)
    execution_options: ExecutionOptions | None = None

    def idle_ms(self, now: float) -> float:
        return (now - self.last_accessed_at) * 1000

    def is_expired(self, now: float, max_age_ms: float | None = None) -> bool:
        """Check whether the session has been idle for longer than max_age_ms.

        Args:
            now: Current Unix timestamp
            max_age_ms: Age threshold; defaults to the session's own expires_in_ms
        """
        limit = self.expires_in_ms if max_age_ms is None else max_age_ms
        return self.idle_ms(now) > limit

    def snapshot(self) -> Session:
        """Return a copy whose context and history are detached from the store."""
        return replace(self, context=_detached(self.context), history=list(self.history))


class SessionStore:
    """Owns sessions and runs evaluations against their contexts.

    The store never evaluates code itself: it delegates to an Evaluator and
    only does the context/history bookkeeping.
    """

    def __init__(
        self,
        evaluator: Evaluator | None = None,
        logger: EngineLogger | None = None,
        default_expires_in_ms: int = DEFAULT_EXPIRES_IN_MS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.logger = logger or EngineLogger("jsrepl.sessions")
        self._evaluator = evaluator or Evaluator(logger=self.logger)
        self._default_expires_in_ms = default_expires_in_ms
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._map_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def create(self, options: SessionOptions | Mapping[str, Any] | None = None) -> Session:
        """Create a session with empty history.

        Args:
            options: SessionOptions or a mapping of its fields

        Returns:
            Snapshot of the new session

        Raises:
            OptionsValidationError: If options are invalid
        """
        if options is None:
            options = SessionOptions(expires_in_ms=self._default_expires_in_ms)
        elif not isinstance(options, SessionOptions):
            options = SessionOptions(
                **{"expires_in_ms": self._default_expires_in_ms, **dict(options)}
            )

        now = self._clock()
        with self._map_lock:
            session = Session(
                id=str(uuid.uuid4()),
                created_at=now,
                last_accessed_at=now,
                expires_in_ms=options.expires_in_ms,
                context=_detached(options.initial_context),
                execution_options=options.execution_options,
            )
            self._sessions[session.id] = session
            self._locks[session.id] = asyncio.Lock()

        self.logger.log_session_created(session.id, session.expires_in_ms)
        return session.snapshot()

    def _touch(self, session_id: str) -> Session | None:
        with self._map_lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_accessed_at = max(session.last_accessed_at, self._clock())
            return session

    def get(self, session_id: str) -> Session | None:
        """Look up a session and bump its last_accessed_at.

        Returns:
            Snapshot of the session, or None (without side effects) if unknown
        """
        session = self._touch(session_id)
        return None if session is None else session.snapshot()

    async def execute_in_session(
        self,
        session_id: str,
        code: str,
        options: ExecutionOptions | Mapping[str, Any] | None = None,
    ) -> ExecutionResult:
        """Evaluate code against a session's context and record it.

        Args:
            session_id: Target session
            code: JavaScript statements
            options: Per-call options, merged onto the session's defaults

        Returns:
            ExecutionResult of the evaluation

        Raises:
            SessionNotFoundError: If the session does not exist, or is deleted
                before the evaluation is recorded
            OptionsValidationError: If options are invalid
        """
        session = self._touch(session_id)
        lock = self._locks.get(session_id)
        if session is None or lock is None:
            raise SessionNotFoundError(session_id)

        opts = ExecutionOptions.resolve(
            options, session.execution_options or self._evaluator.defaults
        )
        async with lock:
            if not self._is_current(session):
                raise SessionNotFoundError(session_id)
            result = await self._evaluator.evaluate(
                code, dict(session.context), opts, session_id=session_id
            )
            with self._map_lock:
                if self._sessions.get(session_id) is not session:
                    raise SessionNotFoundError(session_id)
                session.context.update(_detached(result.user_variables))
                now = self._clock()
                session.history.append(HistoryEntry(code=code, result=result, timestamp=now))
                session.last_accessed_at = max(session.last_accessed_at, now)
        return result

    def _is_current(self, session: Session) -> bool:
        with self._map_lock:
            return self._sessions.get(session.id) is session

    def delete(self, session_id: str) -> bool:
        """Delete a session.

        Returns:
            True if the session existed
        """
        with self._map_lock:
            existed = self._sessions.pop(session_id, None) is not None
            self._locks.pop(session_id, None)
        if existed:
            self.logger.log_session_deleted(session_id)
        return existed

    def list_all(self) -> list[Session]:
        """Return snapshots of every current session."""
        with self._map_lock:
            return [session.snapshot() for session in self._sessions.values()]

    def sweep(self, max_age_ms: float | None = None) -> int:
        """Evict sessions idle for longer than max_age_ms.

        Args:
            max_age_ms: Age threshold; if None each session's own expires_in_ms
                        is used

        Returns:
            Number of sessions removed
        """
        now = self._clock()
        evicted: list[Session] = []
        with self._map_lock:
            for session_id, session in list(self._sessions.items()):
                if session.is_expired(now, max_age_ms):
                    del self._sessions[session_id]
                    self._locks.pop(session_id, None)
                    evicted.append(session)
            remaining = len(self._sessions)

        for session in evicted:
            limit = session.expires_in_ms if max_age_ms is None else max_age_ms
            self.logger.log_session_swept(session.id, session.idle_ms(now), limit)
        self.logger.log_sweep_completed(len(evicted), remaining)
        return len(evicted)

    def clear(self) -> int:
        """Remove every session; return how many were removed."""
        with self._map_lock:
            count = len(self._sessions)
            self._sessions.clear()
            self._locks.clear()
        return count
