"""Interchangeable text -> ActionDescriptor strategies."""

from __future__ import annotations

from typing import Protocol

from canvaspilot.intent.heuristic import HeuristicIntentParser
from canvaspilot.models.actions import ActionDescriptor
from canvaspilot.streaming.parser import parse_response


class IntentStrategy(Protocol):
    name: str

    def parse(self, text: str) -> list[ActionDescriptor]: ...


class HeuristicStrategy(HeuristicIntentParser):
    name = "heuristic"


class ModelResponseStrategy:
    """Actions from a complete model response (``{"message", "actions"}`` JSON)."""

    name = "model"

    def __init__(self) -> None:
        self.last_message = ""

    def parse(self, text: str) -> list[ActionDescriptor]:
        outcome = parse_response(text)
        self.last_message = outcome.message
        return outcome.actions


STRATEGIES: dict[str, type] = {
    HeuristicStrategy.name: HeuristicStrategy,
    ModelResponseStrategy.name: ModelResponseStrategy,
}


def get_strategy(name: str) -> IntentStrategy:
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ValueError(f"Unknown intent strategy: {name}") from None
