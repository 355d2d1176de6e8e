"""System prompt for the scene-editing assistant."""

from __future__ import annotations

import json
from dataclasses import dataclass

from canvaspilot.models.context import MessageRole, PrunedContext

_RESPONSE_FORMAT = """RESPONSE FORMAT - Always respond with valid JSON:
{
  "message": "Your helpful response here",
  "actions": [
    {
      "type": "action_type",
      "payload": { ... },
      "description": "What this action does"
    }
  ]
}"""

_ACTIONS = """AVAILABLE ACTIONS:
- create_shape: Create a shape (payload: { shapeType, fill, stroke, strokeWidth, width, height, radius, position })
- add_text: Add text (payload: { text, fontSize, fontFamily, fill, position })
- move_element: Move an element (payload: { elementQuery, position })
- modify_element: Change properties (payload: { elementQuery, properties: { fill, stroke, strokeWidth, opacity, angle, text, fontSize } })
- resize_element: Resize (payload: { elementQuery, width, height, scale, increaseBy, decreaseBy } - use ONE of these)
- delete_element: Remove an element (payload: { elementQuery })
- select_element: Select an element (payload: { elementQuery })
- change_layer_order: Reorder (payload: { elementQuery, direction: "bring_forward" | "send_backward" | "bring_to_front" | "send_to_back" })
- duplicate_element: Copy an element (payload: { elementQuery, offsetX, offsetY })
- change_background: Change the canvas background (payload: { color })
- search_images: Find and place a stock image (payload: { query, count, position })
- add_image: Add an image by URL (payload: { url, position, width, height })
- ask_clarification: Ask the user a question (payload: { question, options })

elementQuery may be an element id, "selected", a kind ("circle", "text"), a name, or words from the element's text."""

_POSITIONS = (
    'POSITIONS: "center", "top-left", "top-center", "top-right", "middle-left", '
    '"middle-right", "bottom-left", "bottom-center", "bottom-right", or {"x": 0, "y": 0} '
    "measured from the canvas top-left corner"
)

_SHAPES = 'SHAPES: "rectangle", "circle", "triangle", "diamond", "star", "hexagon", "pentagon", "octagon", "line"'

_CLOSING = "Be concise. Execute actions when the request is clear. Ask for clarification when it is not."

PRUNED_HISTORY_TURNS = 4
FULL_HISTORY_TURNS = 6

# Seeded model turn for providers without a system role
MODEL_ACK = "I understand. I will respond with valid JSON containing message and actions."


@dataclass
class Prompt:
    system: str
    user: str


def canvas_state(context: PrunedContext) -> str:
    snap = context.snapshot
    return json.dumps(
        {
            "canvas": snap.canvas.model_dump(mode="json"),
            "summary": snap.summary,
            "elements": [e.record() for e in snap.elements],
        },
        separators=(",", ":"),
    )


def history_text(context: PrunedContext) -> str:
    turns = PRUNED_HISTORY_TURNS if context.was_pruned else FULL_HISTORY_TURNS
    lines = []
    for msg in context.messages[-turns:]:
        who = "User" if msg.role == MessageRole.USER else "Assistant"
        lines.append(f"{who}: {msg.content}")
    return "\n".join(lines)


def build_system_prompt(context: PrunedContext) -> str:
    sections = [
        "You are a canvas design assistant. Help users create and modify designs.",
        _RESPONSE_FORMAT,
        _ACTIONS,
        _POSITIONS,
        _SHAPES,
        "CANVAS STATE:\n" + canvas_state(context),
    ]
    history = history_text(context)
    if history:
        sections.append("RECENT HISTORY:\n" + history)
    sections.append(_CLOSING)
    return "\n\n".join(sections)


def build_prompt(context: PrunedContext, user_message: str) -> Prompt:
    return Prompt(system=build_system_prompt(context), user=user_message)
