"""Tests for the incremental action parser."""

from __future__ import annotations

import pytest

from canvaspilot.streaming.parser import (
    IncrementalActionParser,
    describe_action,
    parse_response,
    safe_prefix,
)
from tests.conftest import SPLIT_RESPONSE, TWO_ACTION_RESPONSE


def _feed_all(fragments):
    parser = IncrementalActionParser()
    deltas, actions = [], []
    for fragment in fragments:
        update = parser.feed(fragment)
        deltas.append(update.message_delta)
        actions.extend(update.actions)
    return parser, deltas, actions


# ---------------------------------------------------------------------------
# Message deltas
# ---------------------------------------------------------------------------

class TestMessageDeltas:
    def test_partial_message_before_closing_quote(self):
        _, deltas, _ = _feed_all(['{"message": "Hel', "lo wor", 'ld", "actions": []}'])
        assert deltas == ["Hel", "lo wor", "ld"]

    def test_escape_split_across_fragments(self):
        parser, deltas, _ = _feed_all(['{"message": "a\\', 'n b"}'])
        assert deltas == ["a", "\n b"]
        assert parser.message == "a\n b"

    def test_unicode_escape_split(self):
        _, deltas, _ = _feed_all(['{"message": "caf\\u00', 'e9!"}'])
        assert "".join(deltas) == "café!"
        assert deltas[0] == "caf"

    def test_surrogate_pair_split(self):
        _, deltas, _ = _feed_all(['{"message": "hi \\ud83d', '\\ude00"}'])
        assert deltas == ["hi ", "\U0001F600"]

    def test_only_top_level_message_streams(self):
        _, deltas, _ = _feed_all(['{"actions": [{"type": "add_text", "payload": {"message": "nested"}}], "message": "top"}'])
        assert deltas == ["top"]

    def test_multiple_documents_joined(self):
        parser, deltas, _ = _feed_all(['{"message": "First"}', '{"message": "Second", "actions": []}'])
        assert deltas == ["First", "\nSecond"]
        assert parser.finalize().message == "First\nSecond"


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class TestActions:
    def test_action_emitted_when_object_closes(self):
        parser = IncrementalActionParser()
        first = parser.feed(SPLIT_RESPONSE[0])
        assert first.message_delta == "Adding a circle"
        assert first.actions == []

        second = parser.feed(SPLIT_RESPONSE[1])
        assert second.message_delta == ""
        assert len(second.actions) == 1
        action = second.actions[0]
        assert action.type == "create_shape"
        assert action.payload == {"shapeType": "circle", "position": "center"}
        assert action.description == "Add a circle"
        assert action.id.startswith("act_")

        outcome = parser.finalize()
        assert outcome.late_actions == []
        assert outcome.message == "Adding a circle"
        assert [a.id for a in outcome.actions] == [action.id]

    def test_brackets_inside_strings(self):
        _, _, actions = _feed_all([TWO_ACTION_RESPONSE])
        assert [a.type for a in actions] == ["move_element", "add_text"]
        assert actions[0].description == "Move {box}"
        assert actions[1].payload["text"] == "Label ]"

    def test_byte_by_byte_matches_single_fragment(self):
        whole, whole_deltas, whole_actions = _feed_all([TWO_ACTION_RESPONSE])
        split, split_deltas, split_actions = _feed_all(list(TWO_ACTION_RESPONSE))
        assert "".join(split_deltas) == "".join(whole_deltas)
        assert [a.signature() for a in split_actions] == [a.signature() for a in whole_actions]
        assert split.finalize().message == whole.finalize().message == 'Done \u2014 moved it "up"\nand added a label'

    def test_malformed_action_skipped(self):
        text = '{"actions": [{"type": "create_shape", "payload": {"fill": }}, {"type": "add_text", "payload": {"text": "hi"}}]}'
        parser, _, actions = _feed_all([text])
        assert [a.type for a in actions] == ["add_text"]
        assert [a.type for a in parser.finalize().actions] == ["add_text"]

    def test_action_without_type_skipped(self):
        _, _, actions = _feed_all(['{"actions": [{"payload": {}}, {"type": "  "}, {"type": "select_element"}]}'])
        assert [a.type for a in actions] == ["select_element"]

    def test_flat_payload_and_type_alias(self):
        _, _, actions = _feed_all(['{"actions": [{"type": "spawn_shape", "shapeType": "star", "fill": "gold"}]}'])
        assert actions[0].type == "create_shape"
        assert actions[0].payload == {"shapeType": "star", "fill": "gold"}

    def test_model_ids_are_replaced(self):
        _, _, actions = _feed_all(['{"actions": [{"id": "x", "type": "select_element"}, {"id": "x", "type": "select_element"}]}'])
        assert actions[0].id != "x"
        assert actions[0].id != actions[1].id


# ---------------------------------------------------------------------------
# Finalization
# ---------------------------------------------------------------------------

class TestFinalize:
    def test_identical_actions_both_kept(self):
        text = '{"message": "", "actions": [{"type": "duplicate_element"}, {"type": "duplicate_element"}]}'
        parser, _, actions = _feed_all([text])
        outcome = parser.finalize()
        assert len(actions) == 2
        assert outcome.late_actions == []
        assert len(outcome.actions) == 2

    def test_truncated_response_keeps_message_only(self):
        text = (
            '{"message": "Working on it", "actions": [{"type": "create_shape", "payload": {"shapeType": "circle"}}, '
            '{"type": "add_te'
        )
        parser, _, actions = _feed_all([text])
        outcome = parser.finalize()
        assert outcome.message == "Working on it"
        assert [a.type for a in outcome.actions] == ["create_shape"]
        assert outcome.late_actions == []

    def test_plain_text_reply(self):
        outcome = parse_response("Sure, what color would you like?")
        assert outcome.message == "Sure, what color would you like?"
        assert outcome.actions == []

    def test_code_fences(self):
        outcome = parse_response('```json\n{"message": "Hi", "actions": [{"type": "select_element"}]}\n```')
        assert outcome.message == "Hi"
        assert [a.type for a in outcome.actions] == ["select_element"]

    def test_fallback_message_key(self):
        assert parse_response('{"response": "ok"}').message == "ok"

    def test_idempotent(self):
        parser, _, _ = _feed_all(SPLIT_RESPONSE)
        assert parser.finalize() is parser.finalize()

    def test_feed_after_finalize(self):
        parser = IncrementalActionParser()
        parser.finalize()
        with pytest.raises(RuntimeError):
            parser.feed("{}")


class TestHelpers:
    def test_safe_prefix(self):
        assert safe_prefix("abc") == "abc"
        assert safe_prefix("abc\\") == "abc"
        assert safe_prefix('a\\"b') == 'a\\"b'
        assert safe_prefix("a\\u00") == "a"
        assert safe_prefix("x\\ud83d") == "x"
        assert safe_prefix("x\\ud83d\\ude00") == "x\\ud83d\\ude00"

    def test_describe_action(self):
        assert describe_action({"type": "delete_element", "payload": {"elementQuery": "it"}}).payload == {"elementQuery": "it"}
        assert describe_action(["not", "a", "dict"]) is None
        assert describe_action({"type": 3}) is None
