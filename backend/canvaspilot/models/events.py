"""Streaming session states and emitted events."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SessionState(str, Enum):
    CREATED = "created"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.ERROR})


class EventType(str, Enum):
    SESSION_START = "session_start"
    CHUNK = "chunk"
    MESSAGE = "message"
    ACTION = "action"
    COMPLETE = "complete"
    ERROR = "error"
    HEARTBEAT = "heartbeat"


class StreamEvent(BaseModel):
    id: str
    type: EventType
    session_id: str
    timestamp_ms: int
    sequence: int
    data: dict[str, Any] = Field(default_factory=dict)
