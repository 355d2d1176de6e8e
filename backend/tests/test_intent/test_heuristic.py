"""Tests for the keyword-based intent parser and strategy selection."""

from __future__ import annotations

import pytest

from canvaspilot.intent.heuristic import (
    CLARIFY_MOVE_OPTIONS,
    CLARIFY_MOVE_QUESTION,
    HeuristicIntentParser,
    parse_color,
    parse_position,
    parse_size,
    parse_target,
)
from canvaspilot.intent.strategy import HeuristicStrategy, ModelResponseStrategy, get_strategy


def _parse(text: str) -> list[tuple[str, dict]]:
    return [(a.type, a.payload) for a in HeuristicIntentParser().parse(text)]


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------

class TestExtraction:
    def test_color_names_and_hex(self):
        assert parse_color("make it blue") == "#3b82f6"
        assert parse_color("use #ff0000 please") == "#ff0000"
        assert parse_color("no colour here") is None

    def test_positions(self):
        assert parse_position("at the top left") == "top-left"
        assert parse_position("to the bottom") == "bottom-center"
        assert parse_position("in the middle") == "center"
        assert parse_position("place at 100, 200") == {"x": 100, "y": 200}
        assert parse_position("somewhere nice") is None

    def test_sizes(self):
        assert parse_size("a 200x100 box") == {"width": 200, "height": 100}
        assert parse_size("radius of 40") == {"radius": 40}
        assert parse_size("150px square") == {"width": 150, "height": 150}
        assert parse_size("a square") == {}

    def test_targets(self):
        assert parse_target("the square") == "rectangle"
        assert parse_target("the heading") == "heading"
        assert parse_target("it") == "selected"


# ---------------------------------------------------------------------------
# Intents
# ---------------------------------------------------------------------------

class TestCreate:
    def test_shape_with_everything(self):
        assert _parse("draw a 200x100 blue rectangle at the bottom right") == [
            (
                "create_shape",
                {"shapeType": "rectangle", "fill": "#3b82f6", "position": "bottom-right", "width": 200, "height": 100},
            )
        ]

    def test_circle_radius(self):
        assert _parse("create a circle with radius 80") == [("create_shape", {"shapeType": "circle", "radius": 80})]

    def test_text(self):
        assert _parse('add text "Hello World" at the top') == [
            ("add_text", {"text": "Hello World", "position": "top-center"})
        ]


class TestEdits:
    def test_recolor(self):
        assert _parse("make the circle red") == [
            ("modify_element", {"elementQuery": "circle", "properties": {"fill": "#ef4444"}})
        ]

    def test_border_color(self):
        assert _parse("make the border red") == [
            ("modify_element", {"elementQuery": "selected", "properties": {"stroke": "#ef4444"}})
        ]

    def test_opacity(self):
        assert _parse("set opacity to 50") == [
            ("modify_element", {"elementQuery": "selected", "properties": {"opacity": 0.5}})
        ]

    def test_move(self):
        assert _parse("move it to the top right") == [
            ("move_element", {"elementQuery": "selected", "position": "top-right"})
        ]

    def test_move_without_position_asks(self):
        assert _parse("move the square") == [
            ("ask_clarification", {"question": CLARIFY_MOVE_QUESTION, "options": CLARIFY_MOVE_OPTIONS})
        ]

    def test_background(self):
        assert _parse("change the background to blue") == [("change_background", {"color": "#3b82f6"})]

    def test_remove_background(self):
        assert _parse("remove the background from the image") == [("remove_background", {"elementQuery": "image"})]

    def test_delete(self):
        assert _parse("delete the triangle") == [("delete_element", {"elementQuery": "triangle"})]
        assert _parse("delete it") == [("delete_element", {"elementQuery": "selected"})]

    def test_resize(self):
        assert _parse("make it bigger") == [("resize_element", {"elementQuery": "selected", "increaseBy": 50})]
        assert _parse("scale the circle to 150%") == [("resize_element", {"elementQuery": "circle", "scale": 1.5})]

    def test_nothing_recognized(self):
        assert _parse("hello there") == []
        assert _parse("   ") == []

    def test_ids_are_unique(self):
        actions = HeuristicIntentParser().parse("make the circle red") + HeuristicIntentParser().parse("make the circle red")
        assert actions[0].id != actions[1].id


class TestStrategies:
    def test_get_strategy(self):
        assert isinstance(get_strategy("heuristic"), HeuristicStrategy)
        assert isinstance(get_strategy("model"), ModelResponseStrategy)
        with pytest.raises(ValueError):
            get_strategy("telepathy")

    def test_model_strategy_keeps_message(self):
        strategy = get_strategy("model")
        actions = strategy.parse('{"message": "Selecting it", "actions": [{"type": "select_element"}]}')
        assert [a.type for a in actions] == ["select_element"]
        assert strategy.last_message == "Selecting it"
