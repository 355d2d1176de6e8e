"""API response models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from canvaspilot.models.actions import ActionDescriptor, ActionResult
from canvaspilot.models.context import ConversationMessage
from canvaspilot.models.events import StreamEvent
from canvaspilot.models.scene import SceneSnapshot


class ProviderStatus(BaseModel):
    name: str
    configured: bool
    keys_total: int = 0
    keys_available: int = 0
    models_total: int = 0
    models_available: int = 0


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    providers: list[ProviderStatus] = Field(default_factory=list)


class ContextResponse(BaseModel):
    snapshot: SceneSnapshot
    messages: list[ConversationMessage] = Field(default_factory=list)
    total_tokens: int = 0
    was_pruned: bool = False
    minimal: str = ""


class ExecuteResponse(BaseModel):
    results: list[ActionResult] = Field(default_factory=list)
    scene: dict[str, Any] = Field(default_factory=dict)


class IntentResponse(BaseModel):
    strategy: str
    actions: list[ActionDescriptor] = Field(default_factory=list)
    message: str = ""


class SessionResponse(BaseModel):
    id: str
    state: str
    user_id: str
    conversation_id: str | None = None
    project_id: str | None = None
    started_at_ms: int = 0
    last_activity_ms: int = 0
    current_message: str = ""
    actions: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None
    provider_model: str | None = None
    last_sequence: int = -1


class EventsResponse(BaseModel):
    session_id: str
    events: list[StreamEvent] = Field(default_factory=list)
