"""API request models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from canvaspilot.models.context import BudgetConfig, ConversationMessage


class ScenePayload(BaseModel):
    objects: list[dict[str, Any]] = Field(default_factory=list, description="Scene objects, workspace marker included")
    active_ids: list[str] = Field(default_factory=list, description="Ids of the selected objects")
    background: str | None = Field(default=None, description="Scene-wide background when there is no workspace")
    zoom: float = Field(default=1.0, description="Current zoom factor")


class IndexRequest(BaseModel):
    scene: ScenePayload


class ContextRequest(BaseModel):
    scene: ScenePayload
    history: list[ConversationMessage] = Field(default_factory=list)
    budget: BudgetConfig | None = Field(default=None, description="Overrides the configured budget")


class ExecuteRequest(BaseModel):
    scene: ScenePayload
    actions: list[dict[str, Any]] = Field(..., description="Action objects ({type, payload, description})")


class IntentRequest(BaseModel):
    text: str = Field(..., description="User instruction in natural language")
    strategy: str = Field(default="heuristic", description="heuristic or model")


class CreateSessionRequest(BaseModel):
    user_id: str = Field(default="anonymous")
    conversation_id: str | None = None
    project_id: str | None = None


class StreamRequest(BaseModel):
    message: str = Field(..., description="User instruction")
    scene: ScenePayload = Field(default_factory=ScenePayload)
    history: list[ConversationMessage] = Field(default_factory=list)
    use_heuristics: bool = Field(
        default=False,
        description="Try the regex fast path first; falls back to the model when nothing matches",
    )
