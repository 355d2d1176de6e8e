"""Scene snapshot indexer — compresses the live scene into a token-bounded description.

Indexing is a pure read of the scene: nothing is mutated and the only state
carried across calls is the image reference registry, which assigns short
``img_N`` tokens to image sources so repeated images cost a few characters
instead of a full URL.
"""

from __future__ import annotations

import json
import logging
import math
import re
import threading
import time
from collections.abc import Callable
from typing import Any

import numpy as np

from canvaspilot.models.scene import (
    SHAPE_KINDS,
    CanvasInfo,
    ElementKind,
    Point,
    SceneObject,
    SceneSnapshot,
    Size,
    TokenBudget,
)
from canvaspilot.scene.engine import SceneEngine, SceneNode

logger = logging.getLogger(__name__)

INDEX_VERSION = "1.0.0"
CHARS_PER_TOKEN = 4

DEFAULT_CANVAS_WIDTH = 500
DEFAULT_CANVAS_HEIGHT = 500
DEFAULT_BACKGROUND = "#ffffff"

# Headroom added on top of the measured cost of a fresh snapshot
_BUDGET_HEADROOM_TOKENS = 50

# Center zone radius as a fraction of the canvas diagonal
_CENTER_ZONE_RATIO = 0.2

_TEXT_TYPES = {"textbox", "text", "i-text"}

_KIND_MAP = {
    "textbox": ElementKind.TEXT,
    "text": ElementKind.TEXT,
    "i-text": ElementKind.TEXT,
    "image": ElementKind.IMAGE,
    "rect": ElementKind.RECTANGLE,
    "rectangle": ElementKind.RECTANGLE,
    "circle": ElementKind.CIRCLE,
    "ellipse": ElementKind.CIRCLE,
    "triangle": ElementKind.TRIANGLE,
    "polygon": ElementKind.POLYGON,
    "path": ElementKind.PATH,
    "line": ElementKind.LINE,
    "group": ElementKind.GROUP,
}

_IMAGE_FILE_RE = re.compile(r"/([^/]+)\.(jpg|jpeg|png|gif|webp|svg)", re.IGNORECASE)


def estimate_tokens(text: str) -> int:
    """Approximate token cost: one token per four characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def map_kind(host_type: str | None) -> ElementKind:
    if not host_type:
        return ElementKind.UNKNOWN
    return _KIND_MAP.get(host_type.lower(), ElementKind.UNKNOWN)


def serialize_color(value: Any) -> str:
    """Symbolic color: the literal string, or gradient/pattern/complex for paint objects."""
    if not value:
        return "none"
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        if "colorStops" in value or "color_stops" in value:
            return "gradient"
        if "source" in value:
            return "pattern"
    return "complex"


# ---------------------------------------------------------------------------
# Image references
# ---------------------------------------------------------------------------


class ImageRefRegistry:
    """Assigns stable ``img_N`` tokens to image sources for the process lifetime."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._refs: dict[str, str] = {}

    def ref_for(self, src: str) -> str:
        with self._lock:
            ref = self._refs.get(src)
            if ref is None:
                ref = f"img_{len(self._refs) + 1}"
                self._refs[src] = ref
            return ref

    def reset(self) -> None:
        with self._lock:
            self._refs.clear()

    def __len__(self) -> int:
        return len(self._refs)


default_image_refs = ImageRefRegistry()


def describe_image(src: str) -> str:
    if not src:
        return "unknown"
    if src.startswith("data:"):
        return "generated_by_ai"
    match = _IMAGE_FILE_RE.search(src)
    if match:
        return re.sub(r"[-_]", " ", match.group(1))[:30]
    if "cloudinary" in src:
        return "cloud_image"
    if "unsplash" in src:
        return "unsplash_image"
    return "external_image"


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------


def index_element(
    node: SceneNode,
    layer_index: int,
    *,
    origin: tuple[float, float] = (0.0, 0.0),
    selected: bool = False,
    image_refs: ImageRefRegistry | None = None,
) -> SceneObject:
    """Normalize one scene node. Positions are relative to the workspace origin."""
    refs = image_refs or default_image_refs
    kind = map_kind(node.type)
    width, height = node.rendered_size()

    element = SceneObject(
        id=node.id,
        kind=kind,
        position=Point(x=round(node.left - origin[0]), y=round(node.top - origin[1])),
        size=Size(w=round(width), h=round(height)),
        layer_index=layer_index,
        is_selected=selected,
    )

    if node.angle:
        element.rotation_degrees = round(node.angle)
    if node.opacity is not None and node.opacity != 1:
        element.opacity = round(node.opacity, 2)
    if node.fill:
        element.fill_color = serialize_color(node.fill)
    if node.stroke:
        element.stroke_color = serialize_color(node.stroke)
    if node.stroke_width and node.stroke_width > 0:
        element.stroke_width = node.stroke_width
    if node.name:
        element.name = node.name

    if kind == ElementKind.TEXT:
        if node.text:
            element.text_content = node.text[:100]
        if node.font_family:
            element.font_family = node.font_family
        if node.font_size:
            element.font_size_px = round(node.font_size)

    if kind == ElementKind.IMAGE and node.src:
        element.image_ref = refs.ref_for(node.src)
        element.image_description = describe_image(node.src)

    return element


def element_record(element: SceneObject) -> dict[str, Any]:
    return element.record()


def element_tokens(element: SceneObject) -> int:
    return estimate_tokens(json.dumps(element.record(), separators=(",", ":")))


def index_scene(
    scene: SceneEngine,
    *,
    image_refs: ImageRefRegistry | None = None,
    clock: Callable[[], float] | None = None,
) -> SceneSnapshot:
    """Build a SceneSnapshot from the live scene. Pure apart from image ref assignment."""
    clock = clock or time.time
    workspace = scene.workspace()
    objects = scene.objects()

    active_ids = {n.id for n in scene.get_active_objects()}

    if workspace is not None:
        ws_width, ws_height = workspace.rendered_size()
        width = ws_width or DEFAULT_CANVAS_WIDTH
        height = ws_height or DEFAULT_CANVAS_HEIGHT
        background = serialize_color(workspace.fill) if workspace.fill else DEFAULT_BACKGROUND
        origin = (workspace.left, workspace.top)
    else:
        width, height = DEFAULT_CANVAS_WIDTH, DEFAULT_CANVAS_HEIGHT
        background = serialize_color(scene.background) if scene.background else DEFAULT_BACKGROUND
        origin = (0.0, 0.0)

    canvas = CanvasInfo(width_px=round(width), height_px=round(height), background_color=background)

    elements = [
        index_element(
            node,
            idx,
            origin=origin,
            selected=node.id in active_ids,
            image_refs=image_refs,
        )
        for idx, node in enumerate(objects)
    ]

    summary = summarize_scene(elements, canvas)
    elements_cost = sum(element_tokens(e) for e in elements)
    summary_cost = estimate_tokens(summary)

    logger.debug("Indexed %d elements (%d + %d tokens)", len(elements), elements_cost, summary_cost)

    return SceneSnapshot(
        version=INDEX_VERSION,
        timestamp_ms=int(clock() * 1000),
        canvas=canvas,
        elements=elements,
        count=len(elements),
        summary=summary,
        token_budget=TokenBudget(
            total=elements_cost + summary_cost + _BUDGET_HEADROOM_TOKENS,
            used=elements_cost + summary_cost,
            elements_tokens=elements_cost,
            messages_tokens=0,
            summary_tokens=summary_cost,
        ),
    )


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count > 1 else ''}"


def zone_counts(elements: list[SceneObject], canvas: CanvasInfo) -> dict[str, int]:
    """Bucket element centers into center + four quadrants."""
    zones = {"center": 0, "top-left": 0, "top-right": 0, "bottom-left": 0, "bottom-right": 0}
    if not elements:
        return zones

    centers = np.array(
        [[e.position.x + e.size.w / 2, e.position.y + e.size.h / 2] for e in elements],
        dtype=float,
    )
    mid = np.array([canvas.width_px / 2, canvas.height_px / 2], dtype=float)
    radius = math.hypot(canvas.width_px, canvas.height_px) * _CENTER_ZONE_RATIO

    dist = np.linalg.norm(centers - mid, axis=1)
    in_center = dist < radius
    left = centers[:, 0] < mid[0]
    top = centers[:, 1] < mid[1]

    zones["center"] = int(np.sum(in_center))
    zones["top-left"] = int(np.sum(~in_center & left & top))
    zones["top-right"] = int(np.sum(~in_center & ~left & top))
    zones["bottom-left"] = int(np.sum(~in_center & left & ~top))
    zones["bottom-right"] = int(np.sum(~in_center & ~left & ~top))
    return zones


def summarize_scene(elements: list[SceneObject], canvas: CanvasInfo) -> str:
    """Natural-language summary derived only from elements + canvas."""
    if not elements:
        return f"Empty canvas ({canvas.width_px}x{canvas.height_px}px, bg: {canvas.background_color})"

    parts = [f"Canvas: {canvas.width_px}x{canvas.height_px}px, background {canvas.background_color}"]

    selected = [e for e in elements if e.is_selected]
    if selected:
        descs = []
        for e in selected:
            if e.text_content:
                descs.append(f'text "{e.text_content[:20]}"')
            elif e.image_ref:
                descs.append(f"image ({e.image_description})")
            else:
                descs.append(e.kind.value)
        parts.append(f"Selected: {', '.join(descs)}")

    texts = [e for e in elements if e.kind == ElementKind.TEXT]
    if texts:
        previews = ", ".join(f'"{(e.text_content or "")[:25]}..."' for e in texts[:3])
        parts.append(f"{_plural(len(texts), 'text element')}: {previews}")

    images = [e for e in elements if e.kind == ElementKind.IMAGE]
    if images:
        descs = ", ".join(e.image_description or "unknown" for e in images)
        parts.append(f"{_plural(len(images), 'image')} ({descs})")

    shape_counts: dict[str, int] = {}
    for e in elements:
        if e.kind in SHAPE_KINDS:
            shape_counts[e.kind.value] = shape_counts.get(e.kind.value, 0) + 1
    if shape_counts:
        parts.append("Shapes: " + ", ".join(_plural(n, kind) for kind, n in shape_counts.items()))

    zones = zone_counts(elements, canvas)
    zone_descs = []
    for zone, count in zones.items():
        if count:
            zone_descs.append(f"{count} centered" if zone == "center" else f"{count} {zone}")
    if zone_descs:
        parts.append(f"Layout: {', '.join(zone_descs)}")

    return ". ".join(parts)


# ---------------------------------------------------------------------------
# Snapshot helpers
# ---------------------------------------------------------------------------


def minimal_context(snapshot: SceneSnapshot) -> str:
    """Compact JSON view of a snapshot for low-budget prompts."""
    elements = []
    for e in snapshot.elements:
        item: dict[str, Any] = {
            "id": e.id,
            "type": e.kind.value,
            "pos": f"{round(e.position.x)},{round(e.position.y)}",
        }
        if e.text_content:
            item["text"] = e.text_content[:30]
        if e.image_ref:
            item["img"] = e.image_ref
        if e.is_selected:
            item["sel"] = True
        elements.append(item)

    return json.dumps(
        {
            "canvas": snapshot.canvas.model_dump(mode="json"),
            "summary": snapshot.summary,
            "count": snapshot.count,
            "elements": elements,
        },
        separators=(",", ":"),
    )


def find_in_snapshot(snapshot: SceneSnapshot, query: str) -> SceneObject | None:
    """Resolve a query against snapshot elements: id, name, kind, text, then selection."""
    q = query.strip().lower()
    if q:
        for e in snapshot.elements:
            if e.id.lower() == q:
                return e
        for e in snapshot.elements:
            if e.name and e.name.lower() == q:
                return e
        for e in snapshot.elements:
            if e.kind.value == q:
                return e
        for e in snapshot.elements:
            if e.text_content and q in e.text_content.lower():
                return e
    return next((e for e in snapshot.elements if e.is_selected), None)
