"""Scene engine interface + an in-process implementation.

The rendering engine itself lives in the editor. Everything in this package
talks to it through ``SceneEngine``; ``InMemoryScene`` satisfies the same
protocol from a JSON scene payload so the HTTP API and tests can run the
executor server-side.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, fields
from typing import Any, Protocol

from pydantic.alias_generators import to_camel, to_snake

logger = logging.getLogger(__name__)

WORKSPACE_NAMES = frozenset({"clip", "workspace"})


@dataclass(eq=False)
class SceneNode:
    """One object in the live scene. Origin is the top-left corner."""

    id: str
    type: str = "rect"
    name: str | None = None
    left: float = 0.0
    top: float = 0.0
    width: float = 0.0
    height: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0
    angle: float = 0.0
    opacity: float = 1.0
    fill: Any = None  # str, or {"colorStops": ...} / {"source": ...}
    stroke: Any = None
    stroke_width: float = 0.0
    text: str | None = None
    font_family: str | None = None
    font_size: float | None = None
    src: str | None = None
    rx: float | None = None
    ry: float | None = None
    radius: float | None = None
    points: list[dict[str, float]] | None = None
    visible: bool = True
    selectable: bool = True
    evented: bool = True
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_workspace(self) -> bool:
        return self.name in WORKSPACE_NAMES

    def rendered_size(self) -> tuple[float, float]:
        return self.width * (self.scale_x or 1.0), self.height * (self.scale_y or 1.0)

    def set(self, **props: Any) -> None:
        """Assign properties; camelCase names are accepted, unknown names land in ``extra``."""
        for key, value in props.items():
            attr = _attr_name(key)
            if attr in _NODE_FIELDS and attr not in ("id", "extra"):
                setattr(self, attr, value)
            else:
                self.extra[key] = value

    def clone(self, new_id: str) -> SceneNode:
        node = copy.deepcopy(self)
        node.id = new_id
        return node

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if value is None:
                continue
            data[to_camel(f.name)] = copy.deepcopy(value)
        data.update(copy.deepcopy(self.extra))
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, default_id: str) -> SceneNode:
        node = cls(id=str(data.get("id") or default_id))
        rest = {k: v for k, v in data.items() if k != "id"}
        node.set(**rest)
        return node


_NODE_FIELDS = {f.name for f in fields(SceneNode)}


def _attr_name(key: str) -> str:
    return key if key in _NODE_FIELDS else to_snake(key)


class SceneEngine(Protocol):
    """Query/mutate primitives the executor and indexer need from a scene host."""

    background: str | None
    zoom: float
    viewport_transform: list[float]

    def objects(self) -> list[SceneNode]: ...

    def workspace(self) -> SceneNode | None: ...

    def get_active_objects(self) -> list[SceneNode]: ...

    def set_active(self, nodes: list[SceneNode]) -> None: ...

    def discard_active(self) -> None: ...

    def add(self, node: SceneNode) -> None: ...

    def remove(self, node: SceneNode) -> None: ...

    def index_of(self, node: SceneNode) -> int: ...

    def move_to(self, node: SceneNode, index: int) -> None: ...

    def fire_modified(self, node: SceneNode) -> None: ...

    def request_render(self) -> None: ...

    async def save(self) -> None: ...


class InMemoryScene:
    """Ordered node list (index 0 = bottom layer) with a selection and a save hook."""

    def __init__(
        self,
        nodes: list[SceneNode] | None = None,
        *,
        active_ids: list[str] | None = None,
        background: str | None = None,
        zoom: float = 1.0,
        on_save: Callable[[InMemoryScene], Awaitable[None]] | None = None,
    ) -> None:
        self._nodes: list[SceneNode] = list(nodes or [])
        wanted = set(active_ids or [])
        self._active: list[SceneNode] = [n for n in self._nodes if n.id in wanted and not n.is_workspace]
        self.background = background
        self.zoom = zoom
        self.viewport_transform = [zoom, 0.0, 0.0, zoom, 0.0, 0.0]
        self.modified: list[str] = []
        self.render_count = 0
        self.save_count = 0
        self._on_save = on_save

    # -- queries ----------------------------------------------------------

    def all_objects(self) -> list[SceneNode]:
        return list(self._nodes)

    def objects(self) -> list[SceneNode]:
        return [n for n in self._nodes if not n.is_workspace]

    def workspace(self) -> SceneNode | None:
        return next((n for n in self._nodes if n.is_workspace), None)

    def get(self, node_id: str) -> SceneNode | None:
        return next((n for n in self._nodes if n.id == node_id), None)

    def get_active_objects(self) -> list[SceneNode]:
        return [n for n in self._active if n in self._nodes]

    def index_of(self, node: SceneNode) -> int:
        return self._nodes.index(node)

    # -- mutations --------------------------------------------------------

    def set_active(self, nodes: list[SceneNode]) -> None:
        self._active = [n for n in nodes if n in self._nodes]

    def discard_active(self) -> None:
        self._active = []

    def add(self, node: SceneNode) -> None:
        self._nodes.append(node)

    def remove(self, node: SceneNode) -> None:
        if node in self._nodes:
            self._nodes.remove(node)
        self._active = [n for n in self._active if n is not node]

    def move_to(self, node: SceneNode, index: int) -> None:
        self._nodes.remove(node)
        index = max(0, min(index, len(self._nodes)))
        self._nodes.insert(index, node)

    def fire_modified(self, node: SceneNode) -> None:
        self.modified.append(node.id)

    def request_render(self) -> None:
        self.render_count += 1

    async def save(self) -> None:
        self.save_count += 1
        if self._on_save is not None:
            await self._on_save(self)

    # -- payload round-trip -------------------------------------------------

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> InMemoryScene:
        raw_objects = payload.get("objects") or []
        nodes = [SceneNode.from_dict(obj, default_id=f"el_{i}") for i, obj in enumerate(raw_objects)]
        active_ids = payload.get("active_ids", payload.get("activeIds")) or []
        return cls(
            nodes,
            active_ids=list(active_ids),
            background=payload.get("background"),
            zoom=float(payload.get("zoom") or 1.0),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "objects": [n.to_dict() for n in self._nodes],
            "active_ids": [n.id for n in self.get_active_objects()],
            "background": self.background,
            "zoom": self.zoom,
        }
