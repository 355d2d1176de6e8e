"""Scene snapshot model — the token-bounded description of a live scene."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ElementKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    TRIANGLE = "triangle"
    POLYGON = "polygon"
    PATH = "path"
    LINE = "line"
    GROUP = "group"
    UNKNOWN = "unknown"


SHAPE_KINDS = frozenset(
    {
        ElementKind.RECTANGLE,
        ElementKind.CIRCLE,
        ElementKind.TRIANGLE,
        ElementKind.POLYGON,
        ElementKind.PATH,
        ElementKind.LINE,
    }
)


class Point(BaseModel):
    x: float = 0
    y: float = 0


class Size(BaseModel):
    w: float = 0
    h: float = 0


class CanvasInfo(BaseModel):
    width_px: int = 500
    height_px: int = 500
    background_color: str = "#ffffff"


class SceneObject(BaseModel):
    """One indexed scene element. Rebuilt on every indexing pass."""

    id: str
    kind: ElementKind = ElementKind.UNKNOWN
    position: Point = Field(default_factory=Point)
    size: Size = Field(default_factory=Size)
    layer_index: int = 0
    rotation_degrees: float | None = None
    opacity: float | None = None  # only recorded when != 1
    fill_color: str | None = None
    stroke_color: str | None = None
    stroke_width: float | None = None
    name: str | None = None
    text_content: str | None = None  # truncated to 100 chars
    font_family: str | None = None
    font_size_px: int | None = None
    image_ref: str | None = None
    image_description: str | None = None
    is_selected: bool = False

    def record(self) -> dict[str, Any]:
        """Compact form used for prompts and token estimation."""
        data = self.model_dump(mode="json", exclude_none=True)
        if not self.is_selected:
            data.pop("is_selected", None)
        return data


class TokenBudget(BaseModel):
    total: int = 0
    used: int = 0
    elements_tokens: int = 0
    messages_tokens: int = 0
    summary_tokens: int = 0


class SceneSnapshot(BaseModel):
    """Point-in-time, size-estimated description of the scene."""

    version: str = "1.0.0"
    timestamp_ms: int = 0
    canvas: CanvasInfo = Field(default_factory=CanvasInfo)
    elements: list[SceneObject] = Field(default_factory=list)
    count: int = 0
    summary: str = ""
    token_budget: TokenBudget = Field(default_factory=TokenBudget)

    @property
    def selected(self) -> list[SceneObject]:
        return [e for e in self.elements if e.is_selected]
