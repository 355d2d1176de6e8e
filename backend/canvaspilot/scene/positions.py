"""Position preset resolution inside the workspace rectangle.

All coordinates are scene coordinates (the space node.left/top live in), so
zoom and viewport panning never shift where a preset lands.
"""

from __future__ import annotations

from shapely.geometry import Polygon, box

from canvaspilot.models.actions import PositionPreset
from canvaspilot.models.scene import Point
from canvaspilot.scene.engine import SceneEngine

# Margin as a fraction of the smaller workspace dimension.
# Presets for created/moved elements use 5%; placements of searched images use 10%.
PRESET_MARGIN_RATIO = 0.05
SEARCH_MARGIN_RATIO = 0.10

DEFAULT_WORKSPACE_WIDTH = 500.0
DEFAULT_WORKSPACE_HEIGHT = 500.0


def workspace_bounds(scene: SceneEngine) -> Polygon:
    ws = scene.workspace()
    if ws is None:
        return box(0.0, 0.0, DEFAULT_WORKSPACE_WIDTH, DEFAULT_WORKSPACE_HEIGHT)
    width, height = ws.rendered_size()
    return box(ws.left, ws.top, ws.left + (width or DEFAULT_WORKSPACE_WIDTH), ws.top + (height or DEFAULT_WORKSPACE_HEIGHT))


def bounds_size(bounds: Polygon) -> tuple[float, float]:
    minx, miny, maxx, maxy = bounds.bounds
    return maxx - minx, maxy - miny


def resolve_position(
    position: PositionPreset | Point | None,
    bounds: Polygon,
    size: tuple[float, float],
    *,
    margin_ratio: float = PRESET_MARGIN_RATIO,
) -> tuple[float, float]:
    """Top-left corner for an element of ``size`` placed at ``position``.

    Explicit points are offsets from the workspace origin. ``None`` means center.
    """
    left, top, right, bottom = bounds.bounds
    width, height = right - left, bottom - top
    obj_w, obj_h = size

    if isinstance(position, Point):
        return left + position.x, top + position.y

    margin = min(width, height) * margin_ratio
    preset = position or PositionPreset.CENTER
    vertical, _, horizontal = preset.value.partition("-")
    if preset == PositionPreset.CENTER:
        vertical, horizontal = "middle", "center"

    if horizontal == "left":
        x = left + margin
    elif horizontal == "right":
        x = right - margin - obj_w
    else:
        x = left + width / 2 - obj_w / 2

    if vertical == "top":
        y = top + margin
    elif vertical == "bottom":
        y = bottom - margin - obj_h
    else:
        y = top + height / 2 - obj_h / 2

    return x, y


def clamp_inside(bounds: Polygon, left: float, top: float, size: tuple[float, float]) -> tuple[float, float]:
    """Shift a rectangle so it does not extend past the workspace edges."""
    ws_left, ws_top, ws_right, ws_bottom = bounds.bounds
    obj_w, obj_h = size
    if bounds.covers(box(left, top, left + obj_w, top + obj_h)):
        return left, top
    left = min(max(left, ws_left), max(ws_left, ws_right - obj_w))
    top = min(max(top, ws_top), max(ws_top, ws_bottom - obj_h))
    return left, top
