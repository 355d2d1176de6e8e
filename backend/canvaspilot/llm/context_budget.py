"""Context budget manager — fits scene snapshot + history into a token ceiling.

The ceiling is ``max_tokens - reserve_for_response_tokens``. When the full
context already fits it is passed through untouched (with the last six
messages). Otherwise each category gets a share of the ceiling by priority
weight and is pruned independently, then a final pass enforces the ceiling
in a fixed order: lowest-priority elements, summary, then the recent turns.
"""

from __future__ import annotations

import logging
import math

from canvaspilot.models.context import BudgetAllocation, BudgetConfig, ConversationMessage, PrunedContext
from canvaspilot.models.scene import SceneObject, SceneSnapshot, TokenBudget
from canvaspilot.scene.indexer import CHARS_PER_TOKEN, element_tokens, estimate_tokens

logger = logging.getLogger(__name__)

MESSAGE_OVERHEAD_TOKENS = 10
METADATA_RESERVE_TOKENS = 100
KEEP_RECENT_MESSAGES = 2
UNPRUNED_HISTORY = 6

_TRUNCATION_MARGIN_TOKENS = 20
_MIN_TRUNCATED_TOKENS = 50
_EARLIER_PREFIX = "[earlier] "
_ELLIPSIS = "..."
_MINIMAL_TEXT_CHARS = 20


def message_tokens(message: ConversationMessage) -> int:
    return estimate_tokens(message.content) + MESSAGE_OVERHEAD_TOKENS


def messages_tokens(messages: list[ConversationMessage]) -> int:
    return sum(message_tokens(m) for m in messages)


def elements_tokens(elements: list[SceneObject]) -> int:
    return sum(element_tokens(e) for e in elements)


def context_tokens(snapshot: SceneSnapshot, messages: list[ConversationMessage], metadata: int = METADATA_RESERVE_TOKENS) -> int:
    return messages_tokens(messages) + elements_tokens(snapshot.elements) + estimate_tokens(snapshot.summary) + metadata


def is_within_budget(snapshot: SceneSnapshot, messages: list[ConversationMessage], config: BudgetConfig) -> bool:
    return context_tokens(snapshot, messages) <= config.ceiling


def allocate_budget(config: BudgetConfig, message_count: int, element_count: int) -> BudgetAllocation:
    """Split the ceiling by priority weight; an empty category's weight goes half to each of the others."""
    available = config.ceiling
    metadata = min(METADATA_RESERVE_TOKENS, available)
    remaining = available - metadata

    msg_w = config.message_priority
    el_w = config.element_priority
    sum_w = config.summary_priority

    if message_count == 0:
        el_w += msg_w * 0.5
        sum_w += msg_w * 0.5
        msg_w = 0.0
    if element_count == 0:
        msg_w += el_w * 0.5
        sum_w += el_w * 0.5
        el_w = 0.0

    total = msg_w + el_w + sum_w
    if total <= 0:
        return BudgetAllocation(metadata=metadata)

    return BudgetAllocation(
        messages=math.floor(remaining * msg_w / total),
        elements=math.floor(remaining * el_w / total),
        summary=math.floor(remaining * sum_w / total),
        metadata=metadata,
    )


# ---------------------------------------------------------------------------
# Per-category pruning
# ---------------------------------------------------------------------------


def truncate_message(message: ConversationMessage, max_tokens: int, prefix: str = "") -> ConversationMessage | None:
    """Shorten a message so it costs at most ``max_tokens`` (overhead included); None if nothing fits."""
    if message_tokens(message) <= max_tokens and not prefix:
        return message
    chars = (max_tokens - MESSAGE_OVERHEAD_TOKENS) * CHARS_PER_TOKEN - len(prefix) - len(_ELLIPSIS)
    if chars <= 0:
        return None
    return message.model_copy(update={"content": f"{prefix}{message.content[:chars]}{_ELLIPSIS}"})


def prune_messages(messages: list[ConversationMessage], budget: int) -> list[ConversationMessage]:
    """Keep the last two turns whole, then older turns newest-first while budget remains.

    At most one older turn is truncated to an ``[earlier] ...`` prefix; everything
    older than that is dropped.
    """
    if not messages:
        return []

    recent = messages[-KEEP_RECENT_MESSAGES:]
    older = messages[:-KEEP_RECENT_MESSAGES]

    older_budget = max(0, budget - messages_tokens(recent))
    used = 0
    kept: list[ConversationMessage] = []

    for msg in reversed(older):
        cost = message_tokens(msg)
        if used + cost <= older_budget:
            kept.insert(0, msg)
            used += cost
            continue
        if used < older_budget:
            available = older_budget - used - _TRUNCATION_MARGIN_TOKENS
            if available > _MIN_TRUNCATED_TOKENS:
                chars = available * CHARS_PER_TOKEN
                kept.insert(0, msg.model_copy(update={"content": f"{_EARLIER_PREFIX}{msg.content[:chars]}{_ELLIPSIS}"}))
        break

    return kept + list(recent)


def minimal_element(element: SceneObject) -> SceneObject:
    return SceneObject(
        id=element.id,
        kind=element.kind,
        position=element.position,
        size=element.size,
        layer_index=element.layer_index,
        is_selected=element.is_selected,
        text_content=element.text_content[:_MINIMAL_TEXT_CHARS] if element.text_content else None,
    )


def priority_order(elements: list[SceneObject]) -> list[SceneObject]:
    """Selected first, then topmost layer first."""
    return sorted(elements, key=lambda e: (not e.is_selected, -e.layer_index))


def prune_elements(elements: list[SceneObject], budget: int) -> list[SceneObject]:
    """Greedy fill in priority order, falling back to minimal records.

    Once a selected element cannot be kept even in minimal form, no unselected
    element is kept after it. The result stays in priority order.
    """
    kept: list[SceneObject] = []
    used = 0
    selected_dropped = False

    for element in priority_order(elements):
        if selected_dropped and not element.is_selected:
            break
        cost = element_tokens(element)
        if used + cost <= budget:
            kept.append(element)
            used += cost
            continue
        minimal = minimal_element(element)
        cost = element_tokens(minimal)
        if used + cost <= budget:
            kept.append(minimal)
            used += cost
        elif element.is_selected:
            selected_dropped = True

    return kept


def prune_summary(summary: str, budget: int) -> str:
    if estimate_tokens(summary) <= budget:
        return summary
    chars = budget * CHARS_PER_TOKEN - len(_ELLIPSIS)
    if chars <= 0:
        return ""
    return summary[:chars] + _ELLIPSIS


# ---------------------------------------------------------------------------
# Whole-context pruning
# ---------------------------------------------------------------------------


def _enforce_ceiling(
    elements: list[SceneObject],
    summary: str,
    messages: list[ConversationMessage],
    metadata: int,
    ceiling: int,
) -> tuple[list[SceneObject], str, list[ConversationMessage]]:
    def total() -> int:
        return elements_tokens(elements) + estimate_tokens(summary) + messages_tokens(messages) + metadata

    # 1. lowest-priority elements
    while elements and total() > ceiling:
        elements = elements[:-1]

    # 2. summary
    over = total() - ceiling
    if over > 0 and summary:
        summary = prune_summary(summary, max(0, estimate_tokens(summary) - over))

    # 3. older turns, then the older recent turn, then the newest
    while messages and total() > ceiling:
        over = total() - ceiling
        if len(messages) > KEEP_RECENT_MESSAGES:
            messages = messages[1:]
            continue
        target = messages[0]
        shortened = truncate_message(target, message_tokens(target) - over)
        if shortened is not None and message_tokens(shortened) < message_tokens(target):
            messages = [shortened] + messages[1:]
        else:
            messages = messages[1:]

    return elements, summary, messages


def prune_context(snapshot: SceneSnapshot, messages: list[ConversationMessage], config: BudgetConfig) -> PrunedContext:
    allocation = allocate_budget(config, len(messages), len(snapshot.elements))

    kept_messages = prune_messages(messages, allocation.messages)
    kept_elements = prune_elements(snapshot.elements, allocation.elements)
    summary = prune_summary(snapshot.summary, allocation.summary)

    kept_elements, summary, kept_messages = _enforce_ceiling(
        kept_elements, summary, kept_messages, allocation.metadata, config.ceiling
    )

    # back to layer order for presentation
    kept_elements = sorted(kept_elements, key=lambda e: e.layer_index)

    el_tokens = elements_tokens(kept_elements)
    msg_tokens = messages_tokens(kept_messages)
    sum_tokens = estimate_tokens(summary)
    total = el_tokens + msg_tokens + sum_tokens + allocation.metadata

    logger.info(
        "Pruned context: %d/%d elements, %d/%d messages, %d tokens (ceiling %d)",
        len(kept_elements), len(snapshot.elements), len(kept_messages), len(messages), total, config.ceiling,
    )

    pruned = snapshot.model_copy(
        update={
            "elements": kept_elements,
            "count": len(kept_elements),
            "summary": summary,
            "token_budget": TokenBudget(
                total=config.max_tokens,
                used=total,
                elements_tokens=el_tokens,
                messages_tokens=msg_tokens,
                summary_tokens=sum_tokens,
            ),
        }
    )
    return PrunedContext(snapshot=pruned, messages=kept_messages, total_tokens=total, was_pruned=True)


def build_context(snapshot: SceneSnapshot, messages: list[ConversationMessage], config: BudgetConfig) -> PrunedContext:
    """Verbatim context when it fits, pruned context otherwise."""
    if is_within_budget(snapshot, messages, config):
        recent = list(messages[-UNPRUNED_HISTORY:])
        return PrunedContext(
            snapshot=snapshot,
            messages=recent,
            total_tokens=context_tokens(snapshot, recent),
            was_pruned=False,
        )
    return prune_context(snapshot, messages, config)
