"""Tests for the context budget manager."""

from __future__ import annotations

from canvaspilot.models.context import BudgetConfig, ConversationMessage, MessageRole
from canvaspilot.models.scene import ElementKind, Point, SceneObject, SceneSnapshot, Size
from canvaspilot.llm.context_budget import (
    allocate_budget,
    build_context,
    context_tokens,
    message_tokens,
    priority_order,
    prune_elements,
    prune_messages,
    prune_summary,
)
from canvaspilot.scene.indexer import ImageRefRegistry, index_scene
from tests.conftest import FakeClock, make_scene, rect_node, text_node


def _msg(content: str, role: MessageRole = MessageRole.USER) -> ConversationMessage:
    return ConversationMessage(role=role, content=content)


def _history(n: int, size: int) -> list[ConversationMessage]:
    roles = [MessageRole.USER, MessageRole.ASSISTANT]
    return [_msg(f"{i:03d}" + "x" * (size - 3), roles[i % 2]) for i in range(n)]


def _element(id: str, layer: int, selected: bool = False, text: str | None = None) -> SceneObject:
    return SceneObject(
        id=id,
        kind=ElementKind.TEXT if text else ElementKind.RECTANGLE,
        position=Point(x=0, y=0),
        size=Size(w=10, h=10),
        layer_index=layer,
        is_selected=selected,
        text_content=text,
        fill_color="#3b82f6",
        stroke_color="#1e40af",
    )


def _big_snapshot(count: int = 60) -> SceneSnapshot:
    nodes = [text_node(f"t{i}", text=f"Paragraph {i} " + "lorem ipsum " * 8, left=i, top=i) for i in range(count)]
    scene = make_scene(*nodes, active_ids=["t5"])
    return index_scene(scene, image_refs=ImageRefRegistry(), clock=FakeClock())


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------

class TestAllocation:
    def test_ceiling(self):
        assert BudgetConfig(max_tokens=8000, reserve_for_response_tokens=1000).ceiling == 7000
        assert BudgetConfig(max_tokens=100, reserve_for_response_tokens=500).ceiling == 0

    def test_shares_follow_priorities(self):
        alloc = allocate_budget(BudgetConfig(), 10, 10)
        assert alloc.metadata == 100
        assert alloc.messages > alloc.elements > alloc.summary
        assert alloc.messages + alloc.elements + alloc.summary <= 6900

    def test_empty_category_weight_is_redistributed(self):
        alloc = allocate_budget(BudgetConfig(), 0, 10)
        assert alloc.messages == 0
        assert alloc.elements > alloc.summary > 0

        alloc = allocate_budget(BudgetConfig(), 10, 0)
        assert alloc.elements == 0
        assert alloc.messages > alloc.summary > 0


# ---------------------------------------------------------------------------
# Per-category pruning
# ---------------------------------------------------------------------------

class TestPruneMessages:
    def test_recent_two_always_kept(self):
        history = _history(10, 400)
        kept = prune_messages(history, 0)
        assert kept == history[-2:]

    def test_older_turns_newest_first_with_one_truncated(self):
        history = _history(10, 400)
        assert message_tokens(history[0]) == 110
        kept = prune_messages(history, 420)
        assert len(kept) == 4
        assert kept[0].content.startswith("[earlier] 006")
        assert kept[0].content.endswith("...")
        assert kept[1:] == history[-3:]

    def test_all_fit(self):
        history = _history(4, 10)
        assert prune_messages(history, 10_000) == history

    def test_empty(self):
        assert prune_messages([], 100) == []


class TestPruneElements:
    def test_priority_order(self):
        elements = [_element("a", 0), _element("b", 1, selected=True), _element("c", 2)]
        assert [e.id for e in priority_order(elements)] == ["b", "c", "a"]

    def test_greedy_fill(self):
        elements = [_element(f"e{i}", i) for i in range(10)]
        one = len(prune_elements(elements[:1], 10_000))
        assert one == 1
        kept = prune_elements(elements, 60)
        assert 0 < len(kept) < 10
        assert kept[0].id == "e9"

    def test_minimal_record_fallback(self):
        long_text = _element("t", 0, selected=True, text="word " * 20)
        kept = prune_elements([long_text], 45)
        assert len(kept) == 1
        assert kept[0].fill_color is None
        assert kept[0].text_content == ("word " * 4)

    def test_dropped_selection_stops_unselected(self):
        huge = _element("s" * 200, 1, selected=True)
        small = _element("b", 0)
        assert prune_elements([huge, small], 45) == []
        assert len(prune_elements([small], 45)) == 1


class TestPruneSummary:
    def test_within_budget(self):
        assert prune_summary("short", 10) == "short"

    def test_truncated(self):
        result = prune_summary("x" * 100, 10)
        assert result == "x" * 37 + "..."

    def test_zero_budget(self):
        assert prune_summary("x" * 100, 0) == ""


# ---------------------------------------------------------------------------
# Whole context
# ---------------------------------------------------------------------------

class TestBuildContext:
    def test_fits_verbatim(self):
        scene = make_scene(rect_node(), text_node())
        snap = index_scene(scene, image_refs=ImageRefRegistry(), clock=FakeClock())
        history = _history(10, 20)
        ctx = build_context(snap, history, BudgetConfig())
        assert not ctx.was_pruned
        assert ctx.snapshot == snap
        assert ctx.messages == history[-6:]
        assert ctx.total_tokens == context_tokens(snap, history[-6:])

    def test_pruned_context_respects_ceiling(self):
        snap = _big_snapshot()
        history = _history(30, 800)
        config = BudgetConfig(max_tokens=2000, reserve_for_response_tokens=500)
        ctx = build_context(snap, history, config)
        assert ctx.was_pruned
        assert ctx.total_tokens <= config.ceiling
        assert context_tokens(ctx.snapshot, ctx.messages) == ctx.total_tokens
        assert ctx.snapshot.count == len(ctx.snapshot.elements) < snap.count
        assert ctx.snapshot.token_budget.total == 2000
        assert ctx.snapshot.token_budget.used == ctx.total_tokens

    def test_selected_element_survives_pruning(self):
        snap = _big_snapshot()
        config = BudgetConfig(max_tokens=1500, reserve_for_response_tokens=500)
        ctx = build_context(snap, _history(10, 400), config)
        assert "t5" in [e.id for e in ctx.snapshot.elements]

    def test_kept_elements_back_in_layer_order(self):
        snap = _big_snapshot()
        config = BudgetConfig(max_tokens=2000, reserve_for_response_tokens=500)
        layers = [e.layer_index for e in build_context(snap, [], config).snapshot.elements]
        assert layers == sorted(layers)

    def test_tiny_budget_still_under_ceiling(self):
        snap = _big_snapshot(10)
        config = BudgetConfig(max_tokens=300, reserve_for_response_tokens=100)
        ctx = build_context(snap, _history(6, 2000), config)
        assert ctx.total_tokens <= config.ceiling
        assert len(ctx.messages) <= 2
