"""Tests for the scene snapshot indexer."""

from __future__ import annotations

import json

from canvaspilot.models.scene import ElementKind
from canvaspilot.scene.engine import InMemoryScene, SceneNode
from canvaspilot.scene.indexer import (
    ImageRefRegistry,
    describe_image,
    estimate_tokens,
    find_in_snapshot,
    index_scene,
    minimal_context,
    serialize_color,
    zone_counts,
)
from tests.conftest import (
    FakeClock,
    circle_node,
    image_node,
    make_scene,
    rect_node,
    text_node,
    workspace_node,
)


def _index(scene, **kw):
    kw.setdefault("image_refs", ImageRefRegistry())
    kw.setdefault("clock", FakeClock(1_700_000_000.0))
    return index_scene(scene, **kw)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_estimate_tokens_rounds_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_serialize_color(self):
        assert serialize_color(None) == "none"
        assert serialize_color("") == "none"
        assert serialize_color("#ff0000") == "#ff0000"
        assert serialize_color({"colorStops": [{"offset": 0, "color": "#fff"}]}) == "gradient"
        assert serialize_color({"source": "tile.png"}) == "pattern"
        assert serialize_color({"type": "mystery"}) == "complex"

    def test_describe_image(self):
        assert describe_image("https://cdn.example.com/photos/red-apple_big.png") == "red apple big"
        assert describe_image("data:image/png;base64,AAAA") == "generated_by_ai"
        assert describe_image("https://res.cloudinary.com/demo/abc") == "cloud_image"
        assert describe_image("https://images.unsplash.com/photo-123") == "unsplash_image"
        assert describe_image("https://example.com/asset?id=3") == "external_image"
        assert describe_image("") == "unknown"

    def test_image_refs_are_stable(self):
        refs = ImageRefRegistry()
        assert refs.ref_for("a.png") == "img_1"
        assert refs.ref_for("b.png") == "img_2"
        assert refs.ref_for("a.png") == "img_1"
        assert len(refs) == 2


# ---------------------------------------------------------------------------
# Canvas + elements
# ---------------------------------------------------------------------------

class TestIndexScene:
    def test_empty_canvas(self, empty_scene):
        snap = _index(empty_scene)
        assert snap.count == 0
        assert snap.elements == []
        assert snap.canvas.width_px == 900
        assert snap.canvas.height_px == 1200
        assert snap.summary == "Empty canvas (900x1200px, bg: #ffffff)"

    def test_no_workspace_defaults(self):
        scene = InMemoryScene([], background="#111111")
        snap = _index(scene)
        assert (snap.canvas.width_px, snap.canvas.height_px) == (500, 500)
        assert snap.canvas.background_color == "#111111"

        snap = _index(InMemoryScene([]))
        assert snap.canvas.background_color == "#ffffff"

    def test_workspace_is_not_an_element(self, scene):
        snap = _index(scene)
        assert snap.count == 3
        assert "ws" not in [e.id for e in snap.elements]

    def test_positions_relative_to_workspace(self):
        scene = InMemoryScene([workspace_node(left=100, top=50), rect_node(left=150, top=80)])
        el = _index(scene).elements[0]
        assert (el.position.x, el.position.y) == (50, 30)

    def test_rendered_size_uses_scale(self):
        scene = make_scene(SceneNode(id="r", type="rect", width=100, height=40, scale_x=2, scale_y=0.5))
        el = _index(scene).elements[0]
        assert (el.size.w, el.size.h) == (200, 20)

    def test_kinds_and_layers(self, scene):
        snap = _index(scene)
        assert [e.kind for e in snap.elements] == [ElementKind.RECTANGLE, ElementKind.CIRCLE, ElementKind.TEXT]
        assert [e.layer_index for e in snap.elements] == [0, 1, 2]
        assert snap.elements[2].text_content == "Summer Sale"
        assert snap.elements[2].font_size_px == 32

    def test_unknown_type(self):
        snap = _index(make_scene(SceneNode(id="x", type="sparkle")))
        assert snap.elements[0].kind == ElementKind.UNKNOWN

    def test_opacity_only_when_not_opaque(self):
        snap = _index(make_scene(rect_node("a"), rect_node("b", opacity=0.456)))
        assert snap.elements[0].opacity is None
        assert snap.elements[1].opacity == 0.46
        assert "opacity" not in snap.elements[0].record()

    def test_text_truncated_to_100_chars(self):
        snap = _index(make_scene(text_node(text="x" * 250)))
        assert len(snap.elements[0].text_content) == 100

    def test_gradient_fill(self):
        snap = _index(make_scene(rect_node(fill={"colorStops": []})))
        assert snap.elements[0].fill_color == "gradient"

    def test_images_share_refs(self):
        src = "https://cdn.example.com/photos/red-apple.png"
        snap = _index(make_scene(image_node("i1", src=src), image_node("i2", src=src), image_node("i3", src="https://x.io/b.jpg")))
        refs = [e.image_ref for e in snap.elements]
        assert refs == ["img_1", "img_1", "img_2"]
        assert snap.elements[0].image_description == "red apple"
        assert (snap.elements[0].size.w, snap.elements[0].size.h) == (200, 150)

    def test_selection_flag(self, selected_scene):
        snap = _index(selected_scene)
        assert [e.id for e in snap.selected] == ["rect_1"]
        assert snap.elements[0].record()["is_selected"] is True
        assert "is_selected" not in snap.elements[1].record()

    def test_token_budget(self, scene):
        snap = _index(scene)
        budget = snap.token_budget
        assert budget.used == budget.elements_tokens + budget.summary_tokens
        assert budget.total == budget.used + 50
        assert budget.messages_tokens == 0
        assert budget.summary_tokens == estimate_tokens(snap.summary)

    def test_idempotent_with_fixed_clock(self, selected_scene):
        refs = ImageRefRegistry()
        clock = FakeClock(42.0)
        first = index_scene(selected_scene, image_refs=refs, clock=clock)
        second = index_scene(selected_scene, image_refs=refs, clock=clock)
        assert first.model_dump() == second.model_dump()
        assert first.timestamp_ms == 42_000

    def test_indexing_does_not_mutate(self, selected_scene):
        before = selected_scene.to_payload()
        _index(selected_scene)
        assert selected_scene.to_payload() == before
        assert selected_scene.modified == []


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

class TestSummary:
    def test_summary_sections(self, selected_scene):
        summary = _index(selected_scene).summary
        assert summary.startswith("Canvas: 900x1200px, background #ffffff")
        assert "Selected: rectangle" in summary
        assert '1 text element: "Summer Sale..."' in summary
        assert "Shapes: 1 rectangle, 1 circle" in summary
        assert "Layout:" in summary

    def test_selected_text_and_image(self):
        scene = make_scene(text_node(), image_node(), active_ids=["text_1", "image_1"])
        summary = _index(scene).summary
        assert 'Selected: text "Summer Sale", image (red apple)' in summary
        assert "1 image (red apple)" in summary

    def test_plural_shapes(self):
        summary = _index(make_scene(rect_node("a"), rect_node("b"))).summary
        assert "Shapes: 2 rectangles" in summary

    def test_zone_counts(self):
        scene = make_scene(
            rect_node("center", left=400, top=550),
            rect_node("tl", left=0, top=0),
            rect_node("br", left=800, top=1100),
        )
        snap = _index(scene)
        zones = zone_counts(snap.elements, snap.canvas)
        assert zones == {"center": 1, "top-left": 1, "top-right": 0, "bottom-left": 0, "bottom-right": 1}
        assert "Layout: 1 centered, 1 top-left, 1 bottom-right" in snap.summary


# ---------------------------------------------------------------------------
# Snapshot helpers
# ---------------------------------------------------------------------------

class TestSnapshotHelpers:
    def test_minimal_context(self, selected_scene):
        data = json.loads(minimal_context(_index(selected_scene)))
        assert data["count"] == 3
        assert data["canvas"]["width_px"] == 900
        first = data["elements"][0]
        assert first == {"id": "rect_1", "type": "rectangle", "pos": "100,100", "sel": True}
        assert data["elements"][2]["text"] == "Summer Sale"

    def test_find_in_snapshot(self, selected_scene):
        snap = _index(selected_scene)
        assert find_in_snapshot(snap, "circle_1").id == "circle_1"
        assert find_in_snapshot(snap, "circle").id == "circle_1"
        assert find_in_snapshot(snap, "summer").id == "text_1"
        assert find_in_snapshot(snap, "").id == "rect_1"
        assert find_in_snapshot(snap, "unicorn").id == "rect_1"
