"""Streaming session state machine, event buffer and SSE wire format."""

from __future__ import annotations

import json
import logging
import secrets
import string
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from canvaspilot.models.actions import ActionDescriptor, ActionStatus
from canvaspilot.models.events import TERMINAL_STATES, EventType, SessionState, StreamEvent

logger = logging.getLogger(__name__)

DEFAULT_EVENT_BUFFER = 100

_ALPHABET = string.ascii_letters + string.digits + "_-"

# Allowed moves; terminal states have none
TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CREATED: frozenset({SessionState.CONNECTING, SessionState.ERROR}),
    SessionState.CONNECTING: frozenset({SessionState.STREAMING, SessionState.ERROR}),
    SessionState.STREAMING: frozenset({SessionState.COMPLETED, SessionState.ERROR}),
    SessionState.COMPLETED: frozenset(),
    SessionState.ERROR: frozenset(),
}


class InvalidTransitionError(Exception):
    def __init__(self, current: SessionState, target: SessionState) -> None:
        super().__init__(f"Cannot move session from {current.value} to {target.value}")
        self.current = current
        self.target = target


def _token(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def new_session_id() -> str:
    return f"sess_{_token(16)}"


def new_event_id() -> str:
    return f"evt_{_token(12)}"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SessionMetadata:
    user_id: str
    conversation_id: str | None = None
    project_id: str | None = None
    started_at_ms: int = 0
    last_activity_ms: int = 0


@dataclass
class StreamingSession:
    metadata: SessionMetadata
    id: str = field(default_factory=new_session_id)
    state: SessionState = SessionState.CREATED
    buffer_size: int = DEFAULT_EVENT_BUFFER
    current_message: str = ""
    actions: list[ActionDescriptor] = field(default_factory=list)
    error: str | None = None
    provider_model: str | None = None
    clock: Callable[[], int] = now_ms
    events: deque[StreamEvent] = field(init=False)
    _next_sequence: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        self.events = deque(maxlen=self.buffer_size)
        stamp = self.clock()
        if not self.metadata.started_at_ms:
            self.metadata.started_at_ms = stamp
        self.metadata.last_activity_ms = stamp

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def last_sequence(self) -> int:
        return self._next_sequence - 1

    def touch(self) -> None:
        self.metadata.last_activity_ms = self.clock()

    def transition(self, target: SessionState, error: str | None = None) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target)
        logger.debug("Session %s: %s -> %s", self.id, self.state.value, target.value)
        self.state = target
        if error:
            self.error = error
        self.touch()

    def emit(self, type: EventType, data: dict[str, Any] | None = None) -> StreamEvent:
        event = StreamEvent(
            id=new_event_id(),
            type=type,
            session_id=self.id,
            timestamp_ms=self.clock(),
            sequence=self._next_sequence,
            data=data or {},
        )
        self._next_sequence += 1
        self.events.append(event)
        self.touch()
        return event

    def append_message(self, chunk: str) -> None:
        self.current_message += chunk
        self.touch()

    def add_action(self, action: ActionDescriptor) -> None:
        self.actions.append(action)
        self.touch()

    def update_action_status(self, action_id: str, status: ActionStatus) -> bool:
        for action in self.actions:
            if action.id == action_id:
                action.status = status
                self.touch()
                return True
        return False

    def events_since(self, sequence: int) -> list[StreamEvent]:
        """Buffered events with a sequence greater than ``sequence``."""
        return [e for e in self.events if e.sequence > sequence]

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "user_id": self.metadata.user_id,
            "conversation_id": self.metadata.conversation_id,
            "project_id": self.metadata.project_id,
            "started_at_ms": self.metadata.started_at_ms,
            "last_activity_ms": self.metadata.last_activity_ms,
            "current_message": self.current_message,
            "actions": [a.model_dump(mode="json") for a in self.actions],
            "error": self.error,
            "provider_model": self.provider_model,
            "last_sequence": self.last_sequence,
        }


class SessionStore:
    """In-process registry of sessions, shared by concurrent requests."""

    def __init__(
        self,
        buffer_size: int = DEFAULT_EVENT_BUFFER,
        clock: Callable[[], int] = now_ms,
        on_discard: Callable[[str], None] | None = None,
    ) -> None:
        self._sessions: dict[str, StreamingSession] = {}
        self._lock = threading.Lock()
        self._buffer_size = buffer_size
        self._clock = clock
        self._on_discard = on_discard

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(
        self,
        user_id: str,
        conversation_id: str | None = None,
        project_id: str | None = None,
    ) -> StreamingSession:
        session = StreamingSession(
            metadata=SessionMetadata(user_id=user_id, conversation_id=conversation_id, project_id=project_id),
            buffer_size=self._buffer_size,
            clock=self._clock,
        )
        with self._lock:
            self._sessions[session.id] = session
        logger.info("Created session %s for user %s", session.id, user_id)
        return session

    def get(self, session_id: str) -> StreamingSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def _forget(self, session_ids: list[str]) -> None:
        if self._on_discard is None:
            return
        for session_id in session_ids:
            self._on_discard(session_id)

    def discard(self, session_id: str) -> bool:
        with self._lock:
            found = self._sessions.pop(session_id, None) is not None
        if found:
            self._forget([session_id])
        return found

    def cleanup_stale(self, max_age_s: float) -> int:
        """Drop sessions idle for longer than ``max_age_s``; returns how many."""
        cutoff = self._clock() - int(max_age_s * 1000)
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if s.metadata.last_activity_ms < cutoff]
            for sid in stale:
                del self._sessions[sid]
        self._forget(stale)
        if stale:
            logger.info("Cleaned up %d stale session(s)", len(stale))
        return len(stale)


# ---------------------------------------------------------------------------
# SSE wire format
# ---------------------------------------------------------------------------


def format_sse(event: StreamEvent) -> str:
    data = json.dumps(event.model_dump(mode="json"))
    return f"id: {event.id}\nevent: {event.type.value}\ndata: {data}\n\n"


def format_heartbeat(session_id: str) -> str:
    data = json.dumps({"type": EventType.HEARTBEAT.value, "session_id": session_id, "timestamp_ms": now_ms()})
    return f"event: {EventType.HEARTBEAT.value}\ndata: {data}\n\n"
