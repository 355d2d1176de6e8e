"""Action executor — applies validated ActionDescriptors to a live scene.

Each handler resolves its target and position against the scene, mutates it,
then notifies listeners (modified event, re-render, host save). Failures are
reported as ``ActionResult(success=False)``; a batch keeps going after a
failed action and always ends by restoring interactivity on every object.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Callable
from typing import Any

from canvaspilot.models.actions import (
    ActionDescriptor,
    ActionResult,
    ActionStatus,
    ActionType,
    AddImagePayload,
    AddTextPayload,
    AskClarificationPayload,
    ChangeBackgroundPayload,
    ChangeLayerOrderPayload,
    CreateShapePayload,
    DeleteElementPayload,
    DuplicateElementPayload,
    LayerDirection,
    ModifyElementPayload,
    MoveElementPayload,
    RemoveBackgroundPayload,
    ResizeDirective,
    ResizeElementPayload,
    SearchImagesPayload,
    SelectElementPayload,
    TargetPayload,
    parse_payload,
)
from canvaspilot.models.scene import Point
from canvaspilot.scene.engine import SceneEngine, SceneNode
from canvaspilot.scene.images import ImageLoader, ImageLoadError, ImageSearch
from canvaspilot.scene.positions import (
    PRESET_MARGIN_RATIO,
    SEARCH_MARGIN_RATIO,
    bounds_size,
    clamp_inside,
    resolve_position,
    workspace_bounds,
)
from canvaspilot.scene.query import SELECTION_WORDS, QueryResult, resolve_query

logger = logging.getLogger(__name__)

MIN_ELEMENT_SIZE = 10.0
MAX_WORKSPACE_FRACTION = 0.95
IMAGE_MAX_FRACTION = 0.5

COLOR_MAP = {
    "red": "#ef4444",
    "blue": "#3b82f6",
    "green": "#22c55e",
    "yellow": "#eab308",
    "orange": "#f97316",
    "purple": "#a855f7",
    "pink": "#ec4899",
    "black": "#000000",
    "white": "#ffffff",
    "gray": "#6b7280",
    "grey": "#6b7280",
    "cyan": "#06b6d4",
    "teal": "#14b8a6",
    "indigo": "#6366f1",
    "lime": "#84cc16",
    "amber": "#f59e0b",
    "emerald": "#10b981",
    "rose": "#f43f5e",
    "violet": "#8b5cf6",
    "sky": "#0ea5e9",
}

SHAPE_ALIASES = {
    "rect": "rectangle",
    "square": "rectangle",
    "box": "rectangle",
    "oval": "circle",
    "ellipse": "circle",
    "dot": "circle",
    "rhombus": "diamond",
}

# (fill, stroke) per shape kind
SHAPE_COLORS = {
    "rectangle": ("#3b82f6", "#1e40af"),
    "circle": ("#ef4444", "#b91c1c"),
    "triangle": ("#22c55e", "#15803d"),
    "diamond": ("#a855f7", "#7e22ce"),
    "star": ("#eab308", "#ca8a04"),
    "hexagon": ("#06b6d4", "#0891b2"),
    "pentagon": ("#f97316", "#c2410c"),
    "octagon": ("#ec4899", "#be185d"),
    "line": ("#1f2937", "#1f2937"),
}

_POLYGON_SIDES = {"hexagon": 6, "pentagon": 5, "octagon": 8}

# modify_element property name aliases -> scene property
PROPERTY_ALIASES = {
    "border": "stroke",
    "borderColor": "stroke",
    "border_color": "stroke",
    "borderWidth": "strokeWidth",
    "border_width": "strokeWidth",
    "color": "fill",
    "backgroundColor": "fill",
    "background_color": "fill",
    "rotation": "angle",
}
_RADIUS_ALIASES = {"cornerRadius", "corner_radius", "borderRadius", "border_radius"}
_COLOR_PROPS = {"fill", "stroke"}
_PROTECTED_PROPS = {"id", "type", "src"}

TARGETED_TYPES = frozenset(
    {
        ActionType.MOVE_ELEMENT.value,
        ActionType.MODIFY_ELEMENT.value,
        ActionType.RESIZE_ELEMENT.value,
        ActionType.DELETE_ELEMENT.value,
        ActionType.CHANGE_LAYER_ORDER.value,
        ActionType.DUPLICATE_ELEMENT.value,
        ActionType.REMOVE_BACKGROUND.value,
    }
)


def parse_color(color: str | None) -> str:
    if not color:
        return "#000000"
    lower = color.strip().lower()
    if lower in COLOR_MAP:
        return COLOR_MAP[lower]
    if lower.startswith("#") or lower.startswith("rgb") or lower.startswith("hsl"):
        return lower
    return color


def normalize_shape(kind: str) -> str:
    key = kind.strip().lower()
    return SHAPE_ALIASES.get(key, key)


def new_object_id() -> str:
    return f"obj_{uuid.uuid4().hex[:8]}"


def _normalize_points(points: list[tuple[float, float]]) -> tuple[list[dict[str, float]], float, float]:
    """Shift points so the bounding box starts at (0, 0)."""
    min_x = min(p[0] for p in points)
    min_y = min(p[1] for p in points)
    shifted = [{"x": round(x - min_x, 3), "y": round(y - min_y, 3)} for x, y in points]
    width = max(p[0] for p in points) - min_x
    height = max(p[1] for p in points) - min_y
    return shifted, width, height


def regular_polygon(sides: int, radius: float) -> list[tuple[float, float]]:
    return [
        (math.cos(i * 2 * math.pi / sides - math.pi / 2) * radius, math.sin(i * 2 * math.pi / sides - math.pi / 2) * radius)
        for i in range(sides)
    ]


def star_points(outer: float, inner_ratio: float = 0.4, tips: int = 5) -> list[tuple[float, float]]:
    points = []
    for i in range(tips * 2):
        r = outer if i % 2 == 0 else outer * inner_ratio
        angle = i * math.pi / tips - math.pi / 2
        points.append((math.cos(angle) * r, math.sin(angle) * r))
    return points


def build_shape(kind: str, payload: CreateShapePayload, node_id: str) -> SceneNode | None:
    """Scene node for a shape kind with default size/colors; None for unknown kinds."""
    if kind not in SHAPE_COLORS:
        return None
    fill, stroke = SHAPE_COLORS[kind]
    width = payload.width or 100.0
    height = payload.height or 100.0
    node = SceneNode(id=node_id, fill=fill, stroke=stroke, stroke_width=0.0)
    node.extra["shape"] = kind

    if kind == "rectangle":
        node.type = "rect"
        node.width, node.height = width, height
        node.rx = node.ry = 0.0
    elif kind == "circle":
        radius = payload.radius or (payload.width / 2 if payload.width else 50.0)
        node.type = "circle"
        node.radius = radius
        node.width = node.height = radius * 2
    elif kind == "triangle":
        node.type = "triangle"
        node.width, node.height = width, height
    elif kind == "diamond":
        size = payload.width or 100.0
        node.type = "polygon"
        node.points, node.width, node.height = _normalize_points(
            [(size / 2, 0), (size, size / 2), (size / 2, size), (0, size / 2)]
        )
    elif kind == "star":
        node.type = "polygon"
        node.points, node.width, node.height = _normalize_points(star_points(payload.radius or 50.0))
    elif kind in _POLYGON_SIDES:
        node.type = "polygon"
        node.points, node.width, node.height = _normalize_points(
            regular_polygon(_POLYGON_SIDES[kind], payload.radius or 50.0)
        )
    elif kind == "line":
        length = payload.width or 150.0
        node.type = "line"
        node.width, node.height = length, 0.0
        node.points = [{"x": 0.0, "y": 0.0}, {"x": length, "y": 0.0}]
        node.stroke_width = 4.0
    return node


class ActionExecutor:
    """Runs actions against one scene. Not thread-safe: drive it from one task."""

    def __init__(
        self,
        scene: SceneEngine,
        *,
        image_loader: ImageLoader | None = None,
        image_search: ImageSearch | None = None,
        id_factory: Callable[[], str] = new_object_id,
    ) -> None:
        self.scene = scene
        self.image_loader = image_loader
        self.image_search = image_search
        self.id_factory = id_factory
        self._handlers: dict[str, Callable[[Any], Any]] = {
            ActionType.CREATE_SHAPE.value: self._create_shape,
            ActionType.ADD_TEXT.value: self._add_text,
            ActionType.MOVE_ELEMENT.value: self._move_element,
            ActionType.MODIFY_ELEMENT.value: self._modify_element,
            ActionType.RESIZE_ELEMENT.value: self._resize_element,
            ActionType.DELETE_ELEMENT.value: self._delete_element,
            ActionType.SELECT_ELEMENT.value: self._select_element,
            ActionType.ADD_IMAGE.value: self._add_image,
            ActionType.CHANGE_BACKGROUND.value: self._change_background,
            ActionType.SEARCH_IMAGES.value: self._search_images,
            ActionType.ASK_CLARIFICATION.value: self._ask_clarification,
            ActionType.CHANGE_LAYER_ORDER.value: self._change_layer_order,
            ActionType.DUPLICATE_ELEMENT.value: self._duplicate_element,
            ActionType.REMOVE_BACKGROUND.value: self._remove_background,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def execute(self, action: ActionDescriptor) -> ActionResult:
        """Execute one action. Never raises for bad input or missing targets."""
        action.status = ActionStatus.RUNNING
        try:
            parsed = parse_payload(action)
        except Exception as e:
            logger.warning("Action %s rejected: %s", action.id, e)
            return self._finish(action, False, f"Invalid {action.type} payload: {e}")
        if not parsed.ok:
            logger.warning("Action %s rejected: %s", action.id, parsed.error)
            return self._finish(action, False, parsed.error or "Invalid payload")

        handler = self._handlers[action.type]
        try:
            success, message = await handler(parsed.payload)
        except Exception as e:
            logger.warning("Action %s (%s) FAILED: %s", action.id, action.type, e)
            success, message = False, f"Error: {e}"
        return self._finish(action, success, message)

    async def execute_batch(self, actions: list[ActionDescriptor]) -> list[ActionResult]:
        """Execute in order; the initial selection is re-activated for selection-addressed actions."""
        initial = self.capture_selection()
        results: list[ActionResult] = []
        try:
            for action in actions:
                results.append(await self.execute_in_batch(action, initial))
        finally:
            self.restore_interactivity()
        return results

    def capture_selection(self) -> list[SceneNode]:
        return list(self.scene.get_active_objects())

    async def execute_in_batch(self, action: ActionDescriptor, initial: list[SceneNode]) -> ActionResult:
        """Execute one action of a batch whose selection was captured as ``initial``."""
        if initial and self._addresses_selection(action):
            alive = [n for n in initial if n in self.scene.objects()]
            if alive:
                self.scene.set_active(alive)
        return await self.execute(action)

    def restore_interactivity(self) -> None:
        for node in self.scene.objects():
            node.selectable = True
            node.evented = True
        self.scene.request_render()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _finish(action: ActionDescriptor, success: bool, message: str) -> ActionResult:
        action.status = ActionStatus.COMPLETE if success else ActionStatus.ERROR
        return ActionResult(action_id=action.id, type=action.type, success=success, message=message)

    @staticmethod
    def _addresses_selection(action: ActionDescriptor) -> bool:
        if action.type not in TARGETED_TYPES:
            return False
        query = action.payload.get("elementQuery") or action.payload.get("element_query")
        element_id = action.payload.get("elementId") or action.payload.get("element_id")
        if not query and not element_id:
            return True
        return str(query or element_id).strip().lower() in SELECTION_WORDS

    def _resolve(self, payload: TargetPayload, default: str = "selected") -> QueryResult:
        return resolve_query(self.scene, payload.element_query or (None if payload.element_id else default), payload.element_id)

    async def _commit(self, node: SceneNode | None = None, *, select: bool = True) -> None:
        if node is not None:
            self.scene.fire_modified(node)
            if select:
                self.scene.set_active([node])
        self.scene.request_render()
        await self.scene.save()

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _create_shape(self, p: CreateShapePayload) -> tuple[bool, str]:
        kind = normalize_shape(p.shape)
        node = build_shape(kind, p, self.id_factory())
        if node is None:
            return False, f"Unknown shape type: {p.shape}"

        if p.fill:
            node.fill = parse_color(p.fill)
        if p.stroke:
            node.stroke = parse_color(p.stroke)
        if p.stroke_width is not None:
            node.stroke_width = p.stroke_width
        if p.opacity is not None:
            node.opacity = max(0.0, min(1.0, p.opacity))

        bounds = workspace_bounds(self.scene)
        node.left, node.top = resolve_position(p.position, bounds, node.rendered_size(), margin_ratio=PRESET_MARGIN_RATIO)
        self.scene.add(node)
        await self._commit(node)
        color = f" with color {node.fill}" if p.fill else ""
        return True, f"Created {kind}{color}"

    async def _add_text(self, p: AddTextPayload) -> tuple[bool, str]:
        bounds = workspace_bounds(self.scene)
        ws_w, _ = bounds_size(bounds)

        # No font metrics server-side: estimate a box from character count
        width = min(len(p.text) * p.font_size * 0.6, ws_w * 0.8)
        per_line = max(1, int(width // (p.font_size * 0.6))) if width else 1
        lines = max(1, math.ceil(len(p.text) / per_line))
        height = lines * p.font_size * 1.16

        node = SceneNode(
            id=self.id_factory(),
            type="textbox",
            text=p.text,
            font_size=p.font_size,
            font_family=p.font_family,
            fill=parse_color(p.fill),
            width=width,
            height=height,
        )
        node.extra["textAlign"] = "center"
        node.left, node.top = resolve_position(p.position, bounds, node.rendered_size())
        self.scene.add(node)
        await self._commit(node)
        preview = p.text[:30] + ("..." if len(p.text) > 30 else "")
        return True, f'Added text "{preview}"'

    async def _move_element(self, p: MoveElementPayload) -> tuple[bool, str]:
        found = self._resolve(p)
        if not found.found:
            return False, found.reason or "Element not found"
        node = found.node
        bounds = workspace_bounds(self.scene)
        node.left, node.top = resolve_position(p.position, bounds, node.rendered_size())
        await self._commit(node)
        if isinstance(p.position, Point):
            where = f"({p.position.x:g}, {p.position.y:g})"
        else:
            where = p.position.value
        return True, f"Moved element to {where}"

    async def _modify_element(self, p: ModifyElementPayload) -> tuple[bool, str]:
        found = self._resolve(p)
        if not found.found:
            return False, found.reason or "Element not found"
        if not p.properties:
            return False, "No properties to modify"

        props: dict[str, Any] = {}
        for key, value in p.properties.items():
            if key in _RADIUS_ALIASES:
                props["rx"] = value
                props["ry"] = value
                continue
            name = PROPERTY_ALIASES.get(key, key)
            if name in _PROTECTED_PROPS:
                logger.warning("modify_element: property %r is read-only, skipping", key)
                continue
            if name in _COLOR_PROPS and isinstance(value, str):
                value = parse_color(value)
            if name == "opacity" and isinstance(value, (int, float)):
                value = max(0.0, min(1.0, float(value)))
            props[name] = value

        if not props:
            return False, "No modifiable properties given"
        found.node.set(**props)
        await self._commit(found.node)
        return True, "Modified element: " + ", ".join(f"{k}={v}" for k, v in props.items())

    async def _resize_element(self, p: ResizeElementPayload) -> tuple[bool, str]:
        found = self._resolve(p)
        if not found.found:
            return False, found.reason or "Element not found"
        directive = p.directive()
        if directive is None:
            return False, "No size given (width, height, scale, increaseBy or decreaseBy)"

        node = found.node
        cur_w, cur_h = node.rendered_size()
        new_w, new_h = cur_w, cur_h
        if directive == ResizeDirective.SCALE:
            new_w, new_h = cur_w * p.scale, cur_h * p.scale
        elif directive == ResizeDirective.INCREASE_BY:
            new_w, new_h = cur_w + p.increase_by, cur_h + p.increase_by
        elif directive == ResizeDirective.DECREASE_BY:
            new_w, new_h = cur_w - p.decrease_by, cur_h - p.decrease_by
        elif p.width and p.height:
            new_w, new_h = p.width, p.height
        elif p.width:
            new_w = p.width
            new_h = cur_h * (p.width / cur_w) if cur_w else cur_h
        else:
            new_h = p.height
            new_w = cur_w * (p.height / cur_h) if cur_h else cur_w

        bounds = workspace_bounds(self.scene)
        ws_w, ws_h = bounds_size(bounds)
        new_w = min(max(new_w, MIN_ELEMENT_SIZE), ws_w * MAX_WORKSPACE_FRACTION)
        new_h = min(max(new_h, MIN_ELEMENT_SIZE), ws_h * MAX_WORKSPACE_FRACTION)

        if node.width > 0:
            node.scale_x = new_w / node.width
        else:
            node.width, node.scale_x = new_w, 1.0
        if node.height > 0:
            node.scale_y = new_h / node.height
        else:
            node.height, node.scale_y = new_h, 1.0

        node.left, node.top = clamp_inside(bounds, node.left, node.top, node.rendered_size())
        await self._commit(node)
        return True, f"Resized element to {round(new_w)}x{round(new_h)}px"

    async def _delete_element(self, p: DeleteElementPayload) -> tuple[bool, str]:
        found = self._resolve(p)
        if not found.found:
            return False, found.reason or "Element not found"
        targets = found.nodes if found.matched_by in ("selection", "selection_fallback") else [found.node]
        for node in targets:
            self.scene.remove(node)
        self.scene.discard_active()
        await self._commit()
        if len(targets) == 1:
            return True, "Deleted element"
        return True, f"Deleted {len(targets)} elements"

    async def _select_element(self, p: SelectElementPayload) -> tuple[bool, str]:
        found = self._resolve(p, default="")
        if not found.found:
            return False, found.reason or "Element not found"
        self.scene.set_active(found.nodes or [found.node])
        self.scene.request_render()
        return True, "Selected element"

    async def _place_image(self, url: str, p: AddImagePayload | SearchImagesPayload, margin_ratio: float) -> SceneNode:
        info = await self.image_loader.load(url)
        bounds = workspace_bounds(self.scene)
        ws_w, ws_h = bounds_size(bounds)
        img_w = info.width or 200.0
        img_h = info.height or 200.0

        scale = min(ws_w * IMAGE_MAX_FRACTION / img_w, ws_h * IMAGE_MAX_FRACTION / img_h, 1.0)
        target_w = getattr(p, "width", None)
        target_h = getattr(p, "height", None)
        if target_w:
            scale = target_w / img_w
        elif target_h:
            scale = target_h / img_h

        node = SceneNode(
            id=self.id_factory(),
            type="image",
            src=url,
            width=img_w,
            height=img_h,
            scale_x=scale,
            scale_y=scale,
        )
        node.left, node.top = resolve_position(p.position, bounds, node.rendered_size(), margin_ratio=margin_ratio)
        self.scene.add(node)
        await self._commit(node)
        return node

    async def _add_image(self, p: AddImagePayload) -> tuple[bool, str]:
        if self.image_loader is None:
            return False, "Image loading is not available"
        try:
            await self._place_image(p.url, p, PRESET_MARGIN_RATIO)
        except ImageLoadError as e:
            return False, f"Failed to load image: {e}"
        return True, "Added image"

    async def _search_images(self, p: SearchImagesPayload) -> tuple[bool, str]:
        if not p.query.strip():
            return False, "No search query"
        if self.image_search is None or self.image_loader is None:
            return False, "Image search is not available"
        urls = await self.image_search.search(p.query, p.count)
        if not urls:
            return False, f'No images found for "{p.query}"'
        try:
            await self._place_image(urls[0], p, SEARCH_MARGIN_RATIO)
        except ImageLoadError as e:
            return False, f"Failed to load image: {e}"
        return True, f'Added "{p.query}" image'

    async def _change_background(self, p: ChangeBackgroundPayload) -> tuple[bool, str]:
        color = parse_color(p.color)
        ws = self.scene.workspace()
        if ws is not None:
            ws.fill = color
            await self._commit(ws, select=False)
        else:
            self.scene.background = color
            await self._commit()
        return True, f"Changed background to {color}"

    async def _ask_clarification(self, p: AskClarificationPayload) -> tuple[bool, str]:
        if p.options:
            return True, f"{p.question} ({' / '.join(p.options)})"
        return True, p.question

    async def _change_layer_order(self, p: ChangeLayerOrderPayload) -> tuple[bool, str]:
        found = self._resolve(p)
        if not found.found:
            return False, found.reason or "Element not found"
        node = found.node
        ws = self.scene.workspace()
        total = len(self.scene.objects()) + (1 if ws is not None else 0)
        index = self.scene.index_of(node)

        if p.direction == LayerDirection.BRING_FORWARD:
            self.scene.move_to(node, index + 1)
        elif p.direction == LayerDirection.SEND_BACKWARD:
            self.scene.move_to(node, index - 1)
        elif p.direction == LayerDirection.BRING_TO_FRONT:
            self.scene.move_to(node, total - 1)
        else:
            self.scene.move_to(node, 0)

        # workspace always stays at the back
        if ws is not None:
            self.scene.move_to(ws, 0)
        await self._commit(node)
        return True, f"Changed layer order: {p.direction.value.replace('_', ' ')}"

    async def _duplicate_element(self, p: DuplicateElementPayload) -> tuple[bool, str]:
        found = self._resolve(p)
        if not found.found:
            return False, found.reason or "Element not found"
        clone = found.node.clone(self.id_factory())
        clone.left += p.offset_x
        clone.top += p.offset_y
        self.scene.add(clone)
        await self._commit(clone)
        return True, "Duplicated element"

    async def _remove_background(self, p: RemoveBackgroundPayload) -> tuple[bool, str]:
        found = self._resolve(p)
        if not found.found:
            return False, "No image element found"
        if found.node.type != "image":
            return False, "Selected element is not an image"
        return False, "Background removal requires the editor toolbar. Select the image and use its background removal button."
