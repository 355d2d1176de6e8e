"""Conversation history and budgeted-context models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from canvaspilot.models.scene import SceneSnapshot


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp_ms: int | None = None


class BudgetConfig(BaseModel):
    max_tokens: int = 8000
    reserve_for_response_tokens: int = 1000
    message_priority: float = 0.4
    element_priority: float = 0.35
    summary_priority: float = 0.25

    @property
    def ceiling(self) -> int:
        return max(0, self.max_tokens - self.reserve_for_response_tokens)


class BudgetAllocation(BaseModel):
    messages: int = 0
    elements: int = 0
    summary: int = 0
    metadata: int = 0


class PrunedContext(BaseModel):
    """Snapshot + history that fits the configured token ceiling."""

    snapshot: SceneSnapshot
    messages: list[ConversationMessage] = Field(default_factory=list)
    total_tokens: int = 0
    was_pruned: bool = False
