"""Action descriptors and their per-type payload models.

An ActionDescriptor is what the stream parser emits: a loosely-typed
``{type, payload, description}`` object. The executor validates the payload
against the model registered for the action type (``parse_payload``) before
touching the scene, so malformed model output surfaces as a failed action
instead of an exception.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from canvaspilot.models.scene import Point


class ActionType(str, Enum):
    CREATE_SHAPE = "create_shape"
    ADD_TEXT = "add_text"
    MOVE_ELEMENT = "move_element"
    MODIFY_ELEMENT = "modify_element"
    RESIZE_ELEMENT = "resize_element"
    DELETE_ELEMENT = "delete_element"
    SELECT_ELEMENT = "select_element"
    ADD_IMAGE = "add_image"
    CHANGE_BACKGROUND = "change_background"
    SEARCH_IMAGES = "search_images"
    ASK_CLARIFICATION = "ask_clarification"
    CHANGE_LAYER_ORDER = "change_layer_order"
    DUPLICATE_ELEMENT = "duplicate_element"
    REMOVE_BACKGROUND = "remove_background"


_TYPE_ALIASES = {
    "spawn_shape": ActionType.CREATE_SHAPE.value,
    "add_shape": ActionType.CREATE_SHAPE.value,
    "change_canvas_background": ActionType.CHANGE_BACKGROUND.value,
    "add_image_to_canvas": ActionType.ADD_IMAGE.value,
}


def normalize_action_type(raw: str) -> str:
    """Canonical snake_case action type; unknown types pass through normalized."""
    key = raw.strip().lower().replace("-", "_").replace(" ", "_")
    return _TYPE_ALIASES.get(key, key)


class ActionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class PositionPreset(str, Enum):
    CENTER = "center"
    TOP_LEFT = "top-left"
    TOP_CENTER = "top-center"
    TOP_RIGHT = "top-right"
    MIDDLE_LEFT = "middle-left"
    MIDDLE_RIGHT = "middle-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_CENTER = "bottom-center"
    BOTTOM_RIGHT = "bottom-right"


_PRESET_ALIASES = {
    "middle": PositionPreset.CENTER,
    "centre": PositionPreset.CENTER,
    "centered": PositionPreset.CENTER,
    "middle-center": PositionPreset.CENTER,
    "center-center": PositionPreset.CENTER,
    "top": PositionPreset.TOP_CENTER,
    "bottom": PositionPreset.BOTTOM_CENTER,
    "left": PositionPreset.MIDDLE_LEFT,
    "right": PositionPreset.MIDDLE_RIGHT,
    "center-left": PositionPreset.MIDDLE_LEFT,
    "center-right": PositionPreset.MIDDLE_RIGHT,
    "upper-left": PositionPreset.TOP_LEFT,
    "upper-right": PositionPreset.TOP_RIGHT,
    "lower-left": PositionPreset.BOTTOM_LEFT,
    "lower-right": PositionPreset.BOTTOM_RIGHT,
    "topleft": PositionPreset.TOP_LEFT,
    "topright": PositionPreset.TOP_RIGHT,
    "bottomleft": PositionPreset.BOTTOM_LEFT,
    "bottomright": PositionPreset.BOTTOM_RIGHT,
}


def _point(x: Any, y: Any) -> Point:
    try:
        return Point(x=float(x), y=float(y))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid coordinates: {x!r}, {y!r}") from None


def normalize_position(value: Any) -> Any:
    """Coerce model-supplied positions into a preset or an {x, y} point.

    Unrecognized preset names fall back to center.
    """
    if value is None or isinstance(value, (PositionPreset, Point)):
        return value
    if isinstance(value, dict):
        if "x" in value and "y" in value:
            return _point(value["x"], value["y"])
        if "left" in value and "top" in value:
            return _point(value["left"], value["top"])
        return PositionPreset.CENTER
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return _point(value[0], value[1])
    if isinstance(value, str):
        key = value.strip().lower().replace("_", "-").replace(" ", "-")
        try:
            return PositionPreset(key)
        except ValueError:
            return _PRESET_ALIASES.get(key, PositionPreset.CENTER)
    return PositionPreset.CENTER


PositionSpec = Annotated[Union[PositionPreset, Point], BeforeValidator(normalize_position)]


# ---------------------------------------------------------------------------
# Payload variants
# ---------------------------------------------------------------------------


class PayloadModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class TargetPayload(PayloadModel):
    element_id: str | None = None
    element_query: str | None = None

    def query(self, default: str = "selected") -> str:
        return self.element_query or self.element_id or default


class CreateShapePayload(PayloadModel):
    shape: str = Field(
        default="rectangle",
        validation_alias=AliasChoices("shape", "shapeType", "shape_type", "kind"),
    )
    fill: str | None = None
    stroke: str | None = None
    stroke_width: float | None = None
    width: float | None = None
    height: float | None = None
    radius: float | None = None
    opacity: float | None = None
    position: PositionSpec | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_options(cls, data: Any) -> Any:
        # {"shapeType": "circle", "options": {"fill": ...}} and the flat form are both accepted
        if isinstance(data, dict) and isinstance(data.get("options"), dict):
            merged = {k: v for k, v in data.items() if k != "options"}
            merged.update(data["options"])
            return merged
        return data


class AddTextPayload(PayloadModel):
    text: str = "Text"
    font_size: float = 32
    font_family: str = "Arial"
    fill: str = Field(default="#000000", validation_alias=AliasChoices("fill", "color"))
    position: PositionSpec | None = None

    @field_validator("text")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        return value if value.strip() else "Text"


class MoveElementPayload(TargetPayload):
    position: PositionSpec


_TARGET_KEYS = {"elementId", "element_id", "elementQuery", "element_query"}


class ModifyElementPayload(TargetPayload):
    properties: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_flat_properties(cls, data: Any) -> Any:
        if isinstance(data, dict) and "properties" not in data:
            props = {k: v for k, v in data.items() if k not in _TARGET_KEYS}
            data = {k: v for k, v in data.items() if k in _TARGET_KEYS}
            data["properties"] = props
        return data


class ResizeDirective(str, Enum):
    SCALE = "scale"
    INCREASE_BY = "increase_by"
    DECREASE_BY = "decrease_by"
    EXPLICIT = "explicit"


class ResizeElementPayload(TargetPayload):
    width: float | None = None
    height: float | None = None
    scale: float | None = None
    increase_by: float | None = None
    decrease_by: float | None = None

    def directive(self) -> ResizeDirective | None:
        """The single directive in effect; scale > increase > decrease > explicit."""
        if self.scale:
            return ResizeDirective.SCALE
        if self.increase_by:
            return ResizeDirective.INCREASE_BY
        if self.decrease_by:
            return ResizeDirective.DECREASE_BY
        if self.width or self.height:
            return ResizeDirective.EXPLICIT
        return None


class DeleteElementPayload(TargetPayload):
    pass


class SelectElementPayload(TargetPayload):
    pass


class AddImagePayload(PayloadModel):
    url: str = Field(validation_alias=AliasChoices("url", "imageUrl", "image_url", "src"))
    position: PositionSpec | None = None
    width: float | None = None
    height: float | None = None


class ChangeBackgroundPayload(PayloadModel):
    color: str = Field(
        default="#ffffff",
        validation_alias=AliasChoices("color", "fill", "backgroundColor", "background_color"),
    )


class SearchImagesPayload(PayloadModel):
    query: str
    count: int = 1
    position: PositionSpec | None = None


class AskClarificationPayload(PayloadModel):
    question: str = "Could you clarify what you would like to change?"
    options: list[str] = Field(default_factory=list)


class LayerDirection(str, Enum):
    BRING_FORWARD = "bring_forward"
    SEND_BACKWARD = "send_backward"
    BRING_TO_FRONT = "bring_to_front"
    SEND_TO_BACK = "send_to_back"


class ChangeLayerOrderPayload(TargetPayload):
    direction: LayerDirection = Field(
        default=LayerDirection.BRING_FORWARD,
        validation_alias=AliasChoices("direction", "action", "order"),
    )


class DuplicateElementPayload(TargetPayload):
    offset_x: float = 20
    offset_y: float = 20


class RemoveBackgroundPayload(TargetPayload):
    pass


PAYLOAD_MODELS: dict[str, type[PayloadModel]] = {
    ActionType.CREATE_SHAPE.value: CreateShapePayload,
    ActionType.ADD_TEXT.value: AddTextPayload,
    ActionType.MOVE_ELEMENT.value: MoveElementPayload,
    ActionType.MODIFY_ELEMENT.value: ModifyElementPayload,
    ActionType.RESIZE_ELEMENT.value: ResizeElementPayload,
    ActionType.DELETE_ELEMENT.value: DeleteElementPayload,
    ActionType.SELECT_ELEMENT.value: SelectElementPayload,
    ActionType.ADD_IMAGE.value: AddImagePayload,
    ActionType.CHANGE_BACKGROUND.value: ChangeBackgroundPayload,
    ActionType.SEARCH_IMAGES.value: SearchImagesPayload,
    ActionType.ASK_CLARIFICATION.value: AskClarificationPayload,
    ActionType.CHANGE_LAYER_ORDER.value: ChangeLayerOrderPayload,
    ActionType.DUPLICATE_ELEMENT.value: DuplicateElementPayload,
    ActionType.REMOVE_BACKGROUND.value: RemoveBackgroundPayload,
}


# ---------------------------------------------------------------------------
# Descriptor + results
# ---------------------------------------------------------------------------


class ActionDescriptor(BaseModel):
    """A structured instruction to mutate the scene."""

    id: str
    type: str
    description: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    status: ActionStatus = ActionStatus.PENDING

    @field_validator("type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return normalize_action_type(value)

    def signature(self) -> str:
        """Structural identity (type, payload, description), independent of id."""
        return json.dumps(
            {"type": self.type, "payload": self.payload, "description": self.description},
            sort_keys=True,
            default=str,
        )


@dataclass
class PayloadResult:
    payload: PayloadModel | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.payload is not None


def parse_payload(action: ActionDescriptor) -> PayloadResult:
    """Validate an action payload against its variant model."""
    model = PAYLOAD_MODELS.get(action.type)
    if model is None:
        return PayloadResult(error=f"Unknown action type: {action.type}")
    try:
        return PayloadResult(payload=model.model_validate(action.payload))
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "payload" for err in e.errors())
        return PayloadResult(error=f"Invalid {action.type} payload ({fields})")


class ActionResult(BaseModel):
    action_id: str
    type: str
    success: bool
    message: str
