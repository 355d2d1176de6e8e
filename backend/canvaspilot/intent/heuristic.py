"""Regex intent detection for simple editing requests (no model round-trip).

Handles the common one-liners: create a shape, move/modify/resize/delete the
selection or an element named by its kind, change the background. Anything
it does not recognise yields no actions, and the caller falls back to the
model-driven path.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from canvaspilot.models.actions import ActionDescriptor
from canvaspilot.scene.executor import COLOR_MAP
from canvaspilot.streaming.parser import new_action_id

logger = logging.getLogger(__name__)

SHAPE_WORDS = {
    "rectangle": "rectangle",
    "rect": "rectangle",
    "square": "rectangle",
    "box": "rectangle",
    "circle": "circle",
    "oval": "circle",
    "ellipse": "circle",
    "round": "circle",
    "dot": "circle",
    "triangle": "triangle",
    "tri": "triangle",
    "diamond": "diamond",
    "rhombus": "diamond",
    "star": "star",
    "hexagon": "hexagon",
    "hex": "hexagon",
    "pentagon": "pentagon",
    "octagon": "octagon",
    "line": "line",
}
# element words that can address existing objects but are not creatable shapes
TARGET_WORDS = ("text", "image", "picture", "photo", "title", "heading")

_SHAPE_RE = re.compile(r"\b(" + "|".join(sorted(SHAPE_WORDS, key=len, reverse=True)) + r")s?\b", re.IGNORECASE)
_TARGET_RE = re.compile(
    r"\b(" + "|".join(sorted([*SHAPE_WORDS, *TARGET_WORDS], key=len, reverse=True)) + r")s?\b",
    re.IGNORECASE,
)
_COLOR_RE = re.compile(r"\b(" + "|".join(COLOR_MAP) + r")\b|(#[0-9a-fA-F]{6}\b|#[0-9a-fA-F]{3}\b)", re.IGNORECASE)

# (pattern, preset); corners before edges before center
_POSITION_PATTERNS = [
    (r"\b(?:top|upper)[\s-]?left\b", "top-left"),
    (r"\b(?:top|upper)[\s-]?right\b", "top-right"),
    (r"\b(?:bottom|lower)[\s-]?left\b", "bottom-left"),
    (r"\b(?:bottom|lower)[\s-]?right\b", "bottom-right"),
    (r"\btop[\s-]?(?:center|middle)\b", "top-center"),
    (r"\bbottom[\s-]?(?:center|middle)\b", "bottom-center"),
    (r"\b(?:middle|center)[\s-]?left\b", "middle-left"),
    (r"\b(?:middle|center)[\s-]?right\b", "middle-right"),
    (r"\btop\b", "top-center"),
    (r"\bbottom\b", "bottom-center"),
    (r"\bleft\b", "middle-left"),
    (r"\bright\b", "middle-right"),
    (r"\b(?:center|centre|middle|centered)\b", "center"),
]
_POSITION_RES = [(re.compile(p, re.IGNORECASE), preset) for p, preset in _POSITION_PATTERNS]
_COORD_RE = re.compile(r"\(?\b(\d+)\s*,\s*(\d+)\b\)?")

# "make"/"put"/"place" only create with an article ("make a circle", not "make the circle red")
_CREATE_RE = re.compile(
    r"\b(?:create|add|draw|spawn|insert|want|need|give\s+me)\b|\b(?:make|place|put)\s+(?:a|an|another|one|new)\b",
    re.IGNORECASE,
)
_TEXT_RE = re.compile(r"\b(?:add|write|put|insert)\s+(?:a\s+|the\s+)?(?:text|title|heading)\s+[\"'](.+?)[\"']", re.IGNORECASE)
_MOVE_RE = re.compile(r"\b(?:move|put|place|relocate|reposition|shift)\b", re.IGNORECASE)
_STROKE_RE = re.compile(r"\b(?:border|stroke|outline)\b", re.IGNORECASE)
_FILL_RE = re.compile(r"\b(?:make|set|change|colou?r|fill|paint|turn)\b", re.IGNORECASE)
_BACKGROUND_RE = re.compile(r"\bbackground\b", re.IGNORECASE)
_REMOVE_BG_RE = re.compile(r"\b(?:remove|erase|delete|cut\s+out)\s+(?:the\s+)?(?:image\s+)?background\b", re.IGNORECASE)
_OPACITY_RE = re.compile(r"\b(?:opacity|transparency)\s+(?:to\s+)?(\d+(?:\.\d+)?)", re.IGNORECASE)

_INCREASE_RE = re.compile(r"\b(?:increase|enlarge|grow|expand)\b(?:\s+\w+){0,3}?\s+(?:by\s+)?(\d+)", re.IGNORECASE)
_DECREASE_RE = re.compile(r"\b(?:decrease|shrink|reduce)\b(?:\s+\w+){0,3}?\s+(?:by\s+)?(\d+)", re.IGNORECASE)
_SCALE_RE = re.compile(r"\b(?:scale|resize)\b(?:\s+\w+){0,3}?\s+(?:to\s+|by\s+)?(\d+(?:\.\d+)?)\s*(%|x\b)?", re.IGNORECASE)
_DIMENSION_RE = re.compile(r"\b(width|height|size)\s+(?:to\s+)?(\d+)", re.IGNORECASE)
_BIGGER_RE = re.compile(r"\b(?:bigger|larger|enlarge)\b", re.IGNORECASE)
_SMALLER_RE = re.compile(r"\b(?:smaller|shrink|reduce)\b", re.IGNORECASE)
_DELETE_RE = re.compile(r"\b(?:delete|remove|erase|get\s+rid\s+of)\s+(?:the\s+)?(\w+)", re.IGNORECASE)

_WXH_RE = re.compile(r"\b(\d+)\s*(?:x|by)\s*(\d+)\b", re.IGNORECASE)
_RADIUS_RE = re.compile(r"\bradius\s+(?:of\s+)?(\d+)", re.IGNORECASE)
_SINGLE_SIZE_RE = re.compile(r"\b(\d+)\s*(?:px|pixels?)\b|\b(\d+)\s+(?:wide|tall|big|large)\b", re.IGNORECASE)

_SELECTION_WORDS = {"it", "this", "that", "selected", "selection", "them"}

CLARIFY_MOVE_QUESTION = "Where would you like me to move it? (e.g., center, top-left, bottom-right)"
CLARIFY_MOVE_OPTIONS = ["center", "top-left", "top-right", "bottom-left", "bottom-right"]


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------


def parse_color(text: str) -> str | None:
    match = _COLOR_RE.search(text)
    if not match:
        return None
    if match.group(1):
        return COLOR_MAP[match.group(1).lower()]
    return match.group(2)


def parse_shape(text: str) -> str | None:
    match = _SHAPE_RE.search(text)
    return SHAPE_WORDS[match.group(1).lower()] if match else None


def parse_position(text: str) -> str | dict[str, int] | None:
    for pattern, preset in _POSITION_RES:
        if pattern.search(text):
            return preset
    match = _COORD_RE.search(text)
    if match:
        return {"x": int(match.group(1)), "y": int(match.group(2))}
    return None


def parse_size(text: str) -> dict[str, int]:
    match = _WXH_RE.search(text)
    if match:
        return {"width": int(match.group(1)), "height": int(match.group(2))}
    match = _RADIUS_RE.search(text)
    if match:
        return {"radius": int(match.group(1))}
    match = _SINGLE_SIZE_RE.search(text)
    if match:
        size = int(match.group(1) or match.group(2))
        if 10 < size < 2000:
            return {"width": size, "height": size}
    return {}


def parse_target(text: str) -> str:
    """Kind word naming the element to act on, else the selection."""
    match = _TARGET_RE.search(text)
    if not match:
        return "selected"
    word = match.group(1).lower()
    return SHAPE_WORDS.get(word, word)


# ---------------------------------------------------------------------------
# Intent detectors
# ---------------------------------------------------------------------------


def detect_text(text: str) -> dict[str, Any] | None:
    match = _TEXT_RE.search(text)
    if not match:
        return None
    payload: dict[str, Any] = {"text": match.group(1)}
    color = parse_color(text)
    if color:
        payload["fill"] = color
    position = parse_position(text[match.end() :])
    if position:
        payload["position"] = position
    return {"type": "add_text", "description": "Add text", "payload": payload}


def detect_spawn(text: str) -> dict[str, Any] | None:
    if not _CREATE_RE.search(text):
        return None
    shape = parse_shape(text)
    if shape is None:
        return None
    payload: dict[str, Any] = {"shapeType": shape}
    color = parse_color(text)
    if color:
        payload["fill"] = color
    position = parse_position(text)
    if position:
        payload["position"] = position
    payload.update(parse_size(text))
    return {"type": "create_shape", "description": f"Create {shape}", "payload": payload}


def detect_move(text: str) -> dict[str, Any] | None:
    match = _MOVE_RE.search(text)
    if not match:
        return None
    rest = text[match.end() :]
    query = parse_target(rest)
    position = parse_position(rest) or parse_position(text)
    if position is None:
        return {
            "type": "ask_clarification",
            "description": "Need position clarification",
            "payload": {"question": CLARIFY_MOVE_QUESTION, "options": list(CLARIFY_MOVE_OPTIONS)},
        }
    return {
        "type": "move_element",
        "description": f"Move to {position if isinstance(position, str) else '({x}, {y})'.format(**position)}",
        "payload": {"elementQuery": query, "position": position},
    }


def detect_background(text: str) -> dict[str, Any] | None:
    if not _BACKGROUND_RE.search(text) or _REMOVE_BG_RE.search(text):
        return None
    color = parse_color(text)
    if color is None:
        return None
    return {"type": "change_background", "description": "Change background", "payload": {"color": color}}


def detect_remove_background(text: str) -> dict[str, Any] | None:
    if not _REMOVE_BG_RE.search(text):
        return None
    return {
        "type": "remove_background",
        "description": "Remove image background",
        "payload": {"elementQuery": "image" if re.search(r"\bimage\b", text, re.IGNORECASE) else "selected"},
    }


def detect_modify(text: str) -> dict[str, Any] | None:
    properties: dict[str, Any] = {}
    color = parse_color(text)
    if color and _STROKE_RE.search(text):
        properties["stroke"] = color
    elif color and _FILL_RE.search(text):
        properties["fill"] = color

    match = _OPACITY_RE.search(text)
    if match:
        value = float(match.group(1))
        properties["opacity"] = value / 100 if value > 1 else value

    if not properties:
        return None
    return {
        "type": "modify_element",
        "description": "Modify element",
        "payload": {"elementQuery": parse_target(text), "properties": properties},
    }


def detect_resize(text: str) -> dict[str, Any] | None:
    query = parse_target(text)
    options: dict[str, Any] | None = None

    if match := _INCREASE_RE.search(text):
        options = {"increaseBy": int(match.group(1))}
    elif match := _DECREASE_RE.search(text):
        options = {"decreaseBy": int(match.group(1))}
    elif match := _SCALE_RE.search(text):
        value = float(match.group(1))
        if match.group(2) == "%" or value > 10:
            value = value / 100
        options = {"scale": value}
    elif match := _DIMENSION_RE.search(text):
        size = int(match.group(2))
        dimension = match.group(1).lower()
        options = {dimension: size} if dimension in ("width", "height") else {"width": size, "height": size}
    elif _BIGGER_RE.search(text):
        options = {"increaseBy": 50}
    elif _SMALLER_RE.search(text):
        options = {"decreaseBy": 50}

    if options is None:
        return None
    return {"type": "resize_element", "description": "Resize element", "payload": {"elementQuery": query, **options}}


def detect_delete(text: str) -> dict[str, Any] | None:
    if _REMOVE_BG_RE.search(text):
        return None
    match = _DELETE_RE.search(text)
    if not match:
        return None
    word = match.group(1).lower()
    if word in _SELECTION_WORDS:
        query = "selected"
    else:
        query = parse_target(text[match.start() :])
        if query == "selected":
            query = word
    return {"type": "delete_element", "description": "Delete element", "payload": {"elementQuery": query}}


class HeuristicIntentParser:
    """Text -> ActionDescriptors without a model."""

    def parse(self, text: str) -> list[ActionDescriptor]:
        text = text.strip()
        if not text:
            return []

        found: list[dict[str, Any]] = []
        created = detect_text(text) or detect_spawn(text)
        if created:
            found.append(created)
        else:
            # creation verbs like "put"/"place" already carry the position
            for detector in (detect_background, detect_remove_background, detect_move, detect_modify, detect_resize):
                if detector is detect_modify and found and found[-1]["type"] == "change_background":
                    continue
                action = detector(text)
                if action:
                    found.append(action)
            delete = detect_delete(text)
            if delete:
                found.append(delete)

        actions = [
            ActionDescriptor(id=new_action_id(), type=a["type"], description=a["description"], payload=a["payload"])
            for a in found
        ]
        logger.debug("Heuristic intents for %r: %s", text[:60], [a.type for a in actions])
        return actions
