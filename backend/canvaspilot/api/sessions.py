"""Streaming sessions — create, inspect, replay events, and stream an editing request over SSE."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, AsyncIterator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from canvaspilot.dependencies import get_runner, get_session_store, get_settings
from canvaspilot.models.events import SessionState, StreamEvent
from canvaspilot.models.requests import CreateSessionRequest, StreamRequest
from canvaspilot.models.responses import EventsResponse, SessionResponse
from canvaspilot.streaming.runner import SessionRunner
from canvaspilot.streaming.session import SessionStore, StreamingSession, format_heartbeat, format_sse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions")

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _require(store: SessionStore, session_id: str) -> StreamingSession:
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return session


async def sse_with_heartbeats(
    events: AsyncIterator[StreamEvent],
    session_id: str,
    interval_s: float,
) -> AsyncGenerator[str, None]:
    """SSE lines for ``events``, with a heartbeat whenever nothing was sent for ``interval_s``."""
    queue: asyncio.Queue[str | None] = asyncio.Queue()

    async def pump() -> None:
        try:
            async for event in events:
                await queue.put(format_sse(event))
        finally:
            await queue.put(None)

    task = asyncio.create_task(pump())
    try:
        while True:
            try:
                item = await asyncio.wait_for(queue.get(), timeout=interval_s)
            except asyncio.TimeoutError:
                yield format_heartbeat(session_id)
                continue
            if item is None:
                break
            yield item
        await task
    finally:
        if not task.done():
            task.cancel()


@router.post("", response_model=SessionResponse)
async def create_session(
    req: CreateSessionRequest,
    store: SessionStore = Depends(get_session_store),
    settings=Depends(get_settings),
) -> SessionResponse:
    store.cleanup_stale(settings.session_max_age_s)
    session = store.create(req.user_id, conversation_id=req.conversation_id, project_id=req.project_id)
    return SessionResponse(**session.describe())


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, store: SessionStore = Depends(get_session_store)) -> SessionResponse:
    return SessionResponse(**_require(store, session_id).describe())


@router.get("/{session_id}/events", response_model=EventsResponse)
async def get_events(
    session_id: str,
    since: int = -1,
    store: SessionStore = Depends(get_session_store),
) -> EventsResponse:
    session = _require(store, session_id)
    return EventsResponse(session_id=session.id, events=session.events_since(since))


@router.post("/{session_id}/stream")
async def stream_session(
    session_id: str,
    req: StreamRequest,
    store: SessionStore = Depends(get_session_store),
    runner: SessionRunner = Depends(get_runner),
    settings=Depends(get_settings),
) -> StreamingResponse:
    from canvaspilot.api.scene import load_scene

    session = _require(store, session_id)
    if session.state != SessionState.CREATED:
        raise HTTPException(status_code=409, detail=f"Session {session_id} is already {session.state.value}")

    scene = load_scene(req.scene)
    events = None
    if req.use_heuristics:
        from canvaspilot.intent.heuristic import HeuristicIntentParser

        actions = HeuristicIntentParser().parse(req.message)
        if actions:
            logger.info("Session %s: %d heuristic action(s)", session.id, len(actions))
            events = runner.run_actions(session, scene, actions, source="heuristic", describe_scene=scene.to_payload)
    if events is None:
        events = runner.run(session, scene, req.message, req.history, describe_scene=scene.to_payload)

    return StreamingResponse(
        sse_with_heartbeats(events, session.id, settings.heartbeat_interval_s),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )
