"""Tests for API endpoints (scripted providers, no network)."""

from __future__ import annotations

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from canvaspilot.api.sessions import sse_with_heartbeats
from canvaspilot.dependencies import get_gateway, get_runner, get_session_store
from canvaspilot.llm.gateway import ModelGateway
from canvaspilot.llm.rate_limits import InMemoryRateLimitStore
from canvaspilot.main import app
from canvaspilot.models.context import BudgetConfig
from canvaspilot.models.events import EventType
from canvaspilot.storage.persistence import InMemoryPersistence
from canvaspilot.streaming.runner import SessionRunner
from canvaspilot.streaming.session import SessionStore
from tests.conftest import (
    SPLIT_RESPONSE,
    FakeImageLoader,
    FakeProvider,
    circle_node,
    collect,
    make_scene,
    rect_node,
    text_node,
)


@pytest.fixture
def client():
    provider = FakeProvider("fake", ["k"], ["m"], default=SPLIT_RESPONSE)
    gateway = ModelGateway([provider], InMemoryRateLimitStore())
    runner = SessionRunner(gateway, InMemoryPersistence(), BudgetConfig(), image_loader=FakeImageLoader())
    store = SessionStore()

    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_runner] = lambda: runner
    app.dependency_overrides[get_session_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def _scene_payload(**kw) -> dict:
    return make_scene(rect_node(), circle_node(), text_node(), **kw).to_payload()


def _parse_sse(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.strip().split("\n\n"):
        fields = dict(line.split(": ", 1) for line in block.split("\n") if ": " in line)
        events.append((fields["event"], json.loads(fields["data"])))
    return events


# ---------------------------------------------------------------------------
# Health / intent
# ---------------------------------------------------------------------------

class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["providers"][0]["name"] == "fake"
        assert data["providers"][0]["configured"] is True
        assert data["providers"][0]["keys_available"] == 1


class TestIntent:
    def test_heuristic(self, client):
        response = client.post("/api/intent", json={"text": "make the circle red"})
        assert response.status_code == 200
        data = response.json()
        assert data["strategy"] == "heuristic"
        assert data["actions"][0]["type"] == "modify_element"
        assert data["actions"][0]["payload"] == {"elementQuery": "circle", "properties": {"fill": "#ef4444"}}

    def test_model_response(self, client):
        text = '{"message": "Picked it", "actions": [{"type": "select_element", "payload": {"elementQuery": "circle"}}]}'
        data = client.post("/api/intent", json={"text": text, "strategy": "model"}).json()
        assert data["message"] == "Picked it"
        assert [a["type"] for a in data["actions"]] == ["select_element"]

    def test_unknown_strategy(self, client):
        response = client.post("/api/intent", json={"text": "hi", "strategy": "magic"})
        assert response.status_code == 400


# ---------------------------------------------------------------------------
# Scene
# ---------------------------------------------------------------------------

class TestScene:
    def test_index(self, client):
        response = client.post("/api/scene/index", json={"scene": _scene_payload(active_ids=["rect_1"])})
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 3
        assert data["canvas"]["width_px"] == 900
        assert data["canvas"]["height_px"] == 1200
        selected = [e["id"] for e in data["elements"] if e["is_selected"]]
        assert selected == ["rect_1"]
        assert data["summary"]

    def test_context(self, client):
        history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
        response = client.post("/api/scene/context", json={"scene": _scene_payload(), "history": history})
        assert response.status_code == 200
        data = response.json()
        assert data["was_pruned"] is False
        assert len(data["messages"]) == 2
        assert data["snapshot"]["count"] == 3
        assert data["total_tokens"] > 0
        assert json.loads(data["minimal"])["count"] == 3

    def test_execute(self, client):
        actions = [
            {"type": "create_shape", "payload": {"shapeType": "circle", "fill": "green"}},
            {"payload": {"shapeType": "star"}},
            {"type": "create_shape", "payload": {"shapeType": "blob"}},
        ]
        response = client.post("/api/scene/execute", json={"scene": make_scene().to_payload(), "actions": actions})
        assert response.status_code == 200
        data = response.json()
        results = data["results"]
        assert [r["success"] for r in results] == [True, False, False]
        assert results[1]["action_id"] == "invalid_1"
        assert results[1]["message"] == "Action has no type"

        created = [o for o in data["scene"]["objects"] if o.get("name") != "workspace"]
        assert len(created) == 1
        assert created[0]["fill"] == "#22c55e"
        assert created[0]["selectable"] is True


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class TestSessions:
    def test_create_and_get(self, client):
        created = client.post("/api/sessions", json={"user_id": "u1", "conversation_id": "c1"}).json()
        assert created["id"].startswith("sess_")
        assert created["state"] == "created"

        fetched = client.get(f"/api/sessions/{created['id']}").json()
        assert fetched["conversation_id"] == "c1"

    def test_missing_session(self, client):
        assert client.get("/api/sessions/sess_missing").status_code == 404
        assert client.get("/api/sessions/sess_missing/events").status_code == 404

    def test_stream_model_response(self, client):
        session_id = client.post("/api/sessions", json={"user_id": "u1"}).json()["id"]
        response = client.post(
            f"/api/sessions/{session_id}/stream",
            json={"message": "add a circle", "scene": make_scene().to_payload()},
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        events = _parse_sse(response.text)
        assert [name for name, _ in events] == [
            "session_start", "chunk", "message", "chunk", "action", "message", "complete",
        ]
        complete = events[-1][1]["data"]
        assert complete["provider_model"] == "fake:m"
        assert len(complete["scene"]["objects"]) == 2

        state = client.get(f"/api/sessions/{session_id}").json()
        assert state["state"] == "completed"
        assert state["current_message"] == "Adding a circle"

        replay = client.get(f"/api/sessions/{session_id}/events", params={"since": 4}).json()
        assert [e["sequence"] for e in replay["events"]] == [5, 6]

    def test_second_stream_conflicts(self, client):
        session_id = client.post("/api/sessions", json={}).json()["id"]
        body = {"message": "add a circle", "scene": make_scene().to_payload()}
        assert client.post(f"/api/sessions/{session_id}/stream", json=body).status_code == 200
        assert client.post(f"/api/sessions/{session_id}/stream", json=body).status_code == 409

    def test_stream_heuristics(self, client):
        session_id = client.post("/api/sessions", json={}).json()["id"]
        response = client.post(
            f"/api/sessions/{session_id}/stream",
            json={"message": "make the rectangle red", "scene": _scene_payload(), "use_heuristics": True},
        )
        events = _parse_sse(response.text)
        assert [name for name, _ in events] == ["session_start", "action", "complete"]
        complete = events[-1][1]["data"]
        assert complete["provider_model"] == "heuristic"
        rect = next(o for o in complete["scene"]["objects"] if o["id"] == "rect_1")
        assert rect["fill"] == "#ef4444"


class TestHeartbeats:
    def test_heartbeat_while_idle(self):
        session = SessionStore().create("u1")

        async def slow_events():
            await asyncio.sleep(0.2)
            yield session.emit(EventType.COMPLETE, {"success": True})

        chunks = asyncio.run(collect(sse_with_heartbeats(slow_events(), session.id, 0.02)))
        assert chunks[0].startswith("event: heartbeat")
        assert "event: complete" in chunks[-1]

    def test_no_heartbeat_when_busy(self):
        session = SessionStore().create("u1")

        async def fast_events():
            for i in range(3):
                yield session.emit(EventType.CHUNK, {"text": str(i)})

        chunks = asyncio.run(collect(sse_with_heartbeats(fast_events(), session.id, 5.0)))
        assert len(chunks) == 3
        assert all("event: chunk" in c for c in chunks)
