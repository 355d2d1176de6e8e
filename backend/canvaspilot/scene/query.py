"""Element query resolution against the live scene.

A query is whatever free text the model (or the heuristic parser) used to
name a target: an id, "selected", "the red circle", "the heading". Resolution
never raises; callers get a ``QueryResult`` and decide whether a missing
target is fatal for their action.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from canvaspilot.scene.engine import SceneEngine, SceneNode

logger = logging.getLogger(__name__)

SELECTION_WORDS = frozenset({"selected", "selection", "it", "this", "that", "current"})

_STOPWORDS = frozenset({"the", "a", "an", "my", "element", "object", "one"})

# query word -> host types (or shape names stored by the executor in extra["shape"])
KIND_SYNONYMS: dict[str, frozenset[str]] = {
    "rectangle": frozenset({"rect", "rectangle"}),
    "rect": frozenset({"rect", "rectangle"}),
    "square": frozenset({"rect", "rectangle"}),
    "box": frozenset({"rect", "rectangle"}),
    "circle": frozenset({"circle", "ellipse"}),
    "oval": frozenset({"circle", "ellipse"}),
    "ellipse": frozenset({"circle", "ellipse"}),
    "dot": frozenset({"circle"}),
    "triangle": frozenset({"triangle"}),
    "polygon": frozenset({"polygon"}),
    "diamond": frozenset({"diamond"}),
    "rhombus": frozenset({"diamond"}),
    "star": frozenset({"star"}),
    "hexagon": frozenset({"hexagon"}),
    "pentagon": frozenset({"pentagon"}),
    "octagon": frozenset({"octagon"}),
    "line": frozenset({"line"}),
    "path": frozenset({"path"}),
    "group": frozenset({"group"}),
    "text": frozenset({"textbox", "text", "i-text"}),
    "textbox": frozenset({"textbox", "text", "i-text"}),
    "heading": frozenset({"textbox", "text", "i-text"}),
    "title": frozenset({"textbox", "text", "i-text"}),
    "label": frozenset({"textbox", "text", "i-text"}),
    "caption": frozenset({"textbox", "text", "i-text"}),
    "image": frozenset({"image"}),
    "img": frozenset({"image"}),
    "photo": frozenset({"image"}),
    "picture": frozenset({"image"}),
    "logo": frozenset({"image"}),
}

TEXT_TYPES = frozenset({"textbox", "text", "i-text"})


@dataclass
class QueryResult:
    node: SceneNode | None = None
    matched_by: str | None = None
    reason: str | None = None
    nodes: list[SceneNode] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.node is not None


def _words(query: str) -> list[str]:
    return [w for w in re.findall(r"[a-z0-9_\-]+", query.lower()) if w not in _STOPWORDS]


def _node_kinds(node: SceneNode) -> set[str]:
    kinds = {node.type.lower()}
    shape = node.extra.get("shape")
    if isinstance(shape, str):
        kinds.add(shape.lower())
    return kinds


def _prefer(candidates: list[SceneNode], active: list[SceneNode]) -> SceneNode:
    """Selected candidate first, otherwise the topmost one."""
    for node in candidates:
        if node in active:
            return node
    return candidates[-1]


def resolve_query(scene: SceneEngine, query: str | None, element_id: str | None = None) -> QueryResult:
    """Resolve an element reference: id, selection words, kind, name, text, then selection fallback."""
    objects = scene.objects()
    active = [n for n in scene.get_active_objects() if not n.is_workspace]
    raw = (query or "").strip()
    q = raw.lower()

    # Literal id (either field)
    for candidate_id in (element_id, raw):
        if candidate_id:
            for node in objects:
                if node.id == candidate_id or node.id.lower() == candidate_id.lower():
                    return QueryResult(node=node, matched_by="id", nodes=[node])

    if q in SELECTION_WORDS:
        if active:
            return QueryResult(node=active[0], matched_by="selection", nodes=list(active))
        return QueryResult(reason="No element is selected")

    words = _words(q)

    if words:
        wanted: set[str] = set()
        for w in words:
            wanted |= KIND_SYNONYMS.get(w, frozenset())
        if wanted:
            matches = [n for n in objects if _node_kinds(n) & wanted]
            if matches:
                node = _prefer(matches, active)
                return QueryResult(node=node, matched_by="kind", nodes=[node])

        matches = [n for n in objects if n.name and (n.name.lower() == q or q in n.name.lower())]
        if matches:
            node = _prefer(matches, active)
            return QueryResult(node=node, matched_by="name", nodes=[node])

        matches = []
        for n in objects:
            if n.type.lower() in TEXT_TYPES and n.text:
                text = n.text.lower()
                if q in text or (len(text) >= 3 and text[:20] in q):
                    matches.append(n)
        if matches:
            node = _prefer(matches, active)
            return QueryResult(node=node, matched_by="text", nodes=[node])

    if active:
        return QueryResult(node=active[0], matched_by="selection_fallback", nodes=list(active))

    if not raw and not element_id:
        return QueryResult(reason="No element specified and nothing is selected")
    logger.warning("Element query %r matched nothing", raw or element_id)
    return QueryResult(reason=f"Element not found: {raw or element_id}")
