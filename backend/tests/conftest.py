"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from canvaspilot.llm.prompts import Prompt
from canvaspilot.llm.providers import Provider
from canvaspilot.scene.engine import InMemoryScene, SceneNode
from canvaspilot.scene.images import ImageInfo, ImageLoadError


WORKSPACE_W = 900
WORKSPACE_H = 1200

PROMPT = Prompt(system="You are a canvas design assistant.", user="add a circle")

# The model response used by the streaming tests, split mid-action
SPLIT_RESPONSE = [
    'data: {"message": "Adding a circle", "actions": [{"type": "create_shape", "payload": {"shape',
    'Type": "circle", "position": "center"}, "description": "Add a circle"}]}',
]

TWO_ACTION_RESPONSE = (
    '{"message": "Done \\u2014 moved it \\"up\\"\\nand added a label", "actions": ['
    '{"type": "move_element", "payload": {"elementQuery": "rectangle", "position": "top-left"}, "description": "Move {box}"},'
    '{"type": "add_text", "payload": {"text": "Label ]", "fontSize": 24}, "description": "Add label"}'
    "]}"
)


# ---------------------------------------------------------------------------
# Scene builders
# ---------------------------------------------------------------------------

def workspace_node(left: float = 0, top: float = 0, fill: str = "#ffffff") -> SceneNode:
    return SceneNode(
        id="ws",
        type="rect",
        name="workspace",
        left=left,
        top=top,
        width=WORKSPACE_W,
        height=WORKSPACE_H,
        fill=fill,
        selectable=False,
        evented=False,
    )


def rect_node(node_id: str = "rect_1", left: float = 100, top: float = 100, **kw) -> SceneNode:
    kw.setdefault("fill", "#3b82f6")
    return SceneNode(id=node_id, type="rect", left=left, top=top, width=100, height=100, **kw)


def circle_node(node_id: str = "circle_1", left: float = 600, top: float = 900, **kw) -> SceneNode:
    kw.setdefault("fill", "#ef4444")
    return SceneNode(id=node_id, type="circle", left=left, top=top, width=100, height=100, radius=50, **kw)


def text_node(node_id: str = "text_1", text: str = "Summer Sale", **kw) -> SceneNode:
    kw.setdefault("left", 300)
    kw.setdefault("top", 40)
    return SceneNode(
        id=node_id, type="textbox", text=text, font_family="Arial", font_size=32, width=300, height=40, fill="#000000", **kw
    )


def image_node(node_id: str = "image_1", src: str = "https://cdn.example.com/photos/red-apple.png", **kw) -> SceneNode:
    return SceneNode(id=node_id, type="image", src=src, left=500, top=200, width=400, height=300, scale_x=0.5, scale_y=0.5, **kw)


def make_scene(*nodes: SceneNode, active_ids: list[str] | None = None, workspace: bool = True) -> InMemoryScene:
    all_nodes = ([workspace_node()] if workspace else []) + list(nodes)
    return InMemoryScene(all_nodes, active_ids=active_ids)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeProvider(Provider):
    """Scripted provider: ``script[(credential, model)]`` is a list of fragments and/or exceptions."""

    def __init__(
        self,
        name: str,
        credentials: list[str],
        models: list[str],
        script: dict | None = None,
        default: list | None = None,
        delay_s: float = 0.0,
    ) -> None:
        super().__init__(credentials, models)
        self.name = name
        self.script = script or {}
        self.default = default if default is not None else ["{}"]
        self.delay_s = delay_s
        self.calls: list[tuple[str, str]] = []

    async def stream_text(self, credential: str, model: str, prompt: Prompt, timeout_s: float) -> AsyncIterator[str]:
        self.calls.append((credential, model))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        for item in self.script.get((credential, model), self.default):
            if isinstance(item, Exception):
                raise item
            yield item


class FakeImageLoader:
    def __init__(self, width: float = 400, height: float = 200, error: Exception | None = None) -> None:
        self.width = width
        self.height = height
        self.error = error
        self.loaded: list[str] = []

    async def load(self, url: str) -> ImageInfo:
        self.loaded.append(url)
        if self.error is not None:
            raise self.error
        return ImageInfo(url=url, width=self.width, height=self.height)


class FakeImageSearch:
    def __init__(self, urls: list[str] | None = None) -> None:
        self.urls = urls or []
        self.queries: list[str] = []

    async def search(self, query: str, count: int = 1) -> list[str]:
        self.queries.append(query)
        return list(self.urls)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def collect(stream: AsyncIterator) -> list:
    return [item async for item in stream]


BROKEN_IMAGE_LOADER = FakeImageLoader(error=ImageLoadError("404"))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def empty_scene() -> InMemoryScene:
    return make_scene()


@pytest.fixture
def scene() -> InMemoryScene:
    """Workspace with a rectangle, a circle and a text box; nothing selected."""
    return make_scene(rect_node(), circle_node(), text_node())


@pytest.fixture
def selected_scene() -> InMemoryScene:
    """Same as ``scene`` with the rectangle selected."""
    return make_scene(rect_node(), circle_node(), text_node(), active_ids=["rect_1"])
