"""Persistence hooks — where session events, actions and state changes are recorded.

Two implementations: an in-memory one (tests, and the default when no data
directory is configured) and an append-only JSONL store. The in-memory store
keeps the newest ``max_records`` of each kind per session and forgets a
session once the session registry discards it. A failing hook is
logged by the caller and never fails the session.
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from pathlib import Path
from typing import Any, Protocol

from canvaspilot.models.actions import ActionDescriptor
from canvaspilot.models.events import SessionState, StreamEvent

logger = logging.getLogger(__name__)


class PersistenceHooks(Protocol):
    async def append_event(self, session_id: str, event: StreamEvent) -> None: ...

    async def append_action(self, session_id: str, action: ActionDescriptor) -> None: ...

    async def update_session_state(self, session_id: str, state: SessionState, **fields: Any) -> None: ...

    def discard(self, session_id: str) -> None: ...


class InMemoryPersistence:
    def __init__(self, max_records: int = 100) -> None:
        self.max_records = max_records
        self.events: dict[str, deque[StreamEvent]] = {}
        self.actions: dict[str, deque[ActionDescriptor]] = {}
        self.states: dict[str, deque[tuple[SessionState, dict[str, Any]]]] = {}

    def _records(self, table: dict[str, deque], session_id: str) -> deque:
        if session_id not in table:
            table[session_id] = deque(maxlen=self.max_records)
        return table[session_id]

    async def append_event(self, session_id: str, event: StreamEvent) -> None:
        self._records(self.events, session_id).append(event)

    async def append_action(self, session_id: str, action: ActionDescriptor) -> None:
        self._records(self.actions, session_id).append(action.model_copy())

    async def update_session_state(self, session_id: str, state: SessionState, **fields: Any) -> None:
        self._records(self.states, session_id).append((state, fields))

    def discard(self, session_id: str) -> None:
        self.events.pop(session_id, None)
        self.actions.pop(session_id, None)
        self.states.pop(session_id, None)

    def last_state(self, session_id: str) -> SessionState | None:
        history = self.states.get(session_id)
        return history[-1][0] if history else None


class JsonlPersistence:
    """Append-only ``events.jsonl``, ``actions.jsonl`` and ``sessions.jsonl`` under ``data_dir``."""

    def __init__(self, data_dir: Path | str) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.events_file = self.data_dir / "events.jsonl"
        self.actions_file = self.data_dir / "actions.jsonl"
        self.sessions_file = self.data_dir / "sessions.jsonl"

    @staticmethod
    def _append(path: Path, record: dict[str, Any]) -> None:
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    async def append_event(self, session_id: str, event: StreamEvent) -> None:
        self._append(self.events_file, {"session_id": session_id, **event.model_dump(mode="json")})

    async def append_action(self, session_id: str, action: ActionDescriptor) -> None:
        self._append(self.actions_file, {"session_id": session_id, **action.model_dump(mode="json")})

    async def update_session_state(self, session_id: str, state: SessionState, **fields: Any) -> None:
        self._append(
            self.sessions_file,
            {"session_id": session_id, "state": state.value, "timestamp": time.time(), **fields},
        )
        logger.debug("Recorded state %s for session %s", state.value, session_id)

    def discard(self, session_id: str) -> None:
        # the files are an append-only log; nothing is held in memory
        pass

    def read(self, name: str) -> list[dict[str, Any]]:
        """All records of ``events``, ``actions`` or ``sessions``."""
        path = self.data_dir / f"{name}.jsonl"
        if not path.exists():
            return []
        records = []
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt line in %s", path.name)
        return records


def build_persistence(data_dir: str, max_records: int = 100) -> PersistenceHooks:
    if data_dir:
        logger.info("Persisting sessions to %s", data_dir)
        return JsonlPersistence(data_dir)
    return InMemoryPersistence(max_records=max_records)
