"""Incremental parser for ``{"message": "...", "actions": [...]}`` model responses.

The response arrives in arbitrary fragments. ``feed`` scans only the newly
appended text, keeping string/escape state and a bracket stack between calls,
so it can report the growing ``message`` value before its closing quote and
emit each object of the ``actions`` array the moment its closing brace shows
up. ``finalize`` parses the whole buffer once the stream is over and emits
any action the incremental pass missed.

Several top-level documents in one response are accepted (some models send
the message and the actions as separate objects); their messages are joined
with newlines.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from canvaspilot.models.actions import ActionDescriptor
from canvaspilot.streaming.jsonscan import iter_top_level_objects, strip_code_fences, try_parse_json

logger = logging.getLogger(__name__)

MESSAGE_KEY = "message"
ACTIONS_KEY = "actions"
# Accepted in place of "message" when the full response is parsed
_FALLBACK_MESSAGE_KEYS = ("response", "content")
_MESSAGE_JOINER = "\n"

_DECODER = json.JSONDecoder(strict=False)
_HIGH_SURROGATE_RE = re.compile(r"[dD][89abAB][0-9a-fA-F]{2}")


def new_action_id() -> str:
    return f"act_{uuid.uuid4().hex[:12]}"


@dataclass
class ParserUpdate:
    """What one fragment revealed."""

    message_delta: str = ""
    actions: list[ActionDescriptor] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.message_delta and not self.actions


@dataclass
class ParseOutcome:
    message: str
    actions: list[ActionDescriptor]
    late_actions: list[ActionDescriptor] = field(default_factory=list)


@dataclass
class _Frame:
    opener: str
    start: int
    role: str = ""
    key: str | None = None
    pending_key: str | None = None
    expect_key: bool = True


def safe_prefix(raw: str) -> str:
    """Longest prefix of a JSON string body that does not end inside an escape sequence."""
    i = 0
    n = len(raw)
    while i < n:
        if raw[i] != "\\":
            i += 1
            continue
        if i + 1 >= n:
            return raw[:i]
        if raw[i + 1] != "u":
            i += 2
            continue
        if i + 6 > n:
            return raw[:i]
        # a high surrogate is only safe together with its low half
        if _HIGH_SURROGATE_RE.fullmatch(raw[i + 2 : i + 6]) and i + 12 > n:
            return raw[:i]
        i += 6
    return raw


def decode_string_body(raw: str) -> str | None:
    try:
        value, _ = _DECODER.raw_decode(f'"{raw}"')
    except json.JSONDecodeError:
        return None
    return value


def describe_action(obj: Any) -> ActionDescriptor | None:
    """ActionDescriptor for one decoded action object, or None if it has no usable type."""
    if not isinstance(obj, dict) or not isinstance(obj.get("type"), str) or not obj["type"].strip():
        return None
    payload = obj.get("payload")
    if not isinstance(payload, dict):
        # payload fields written next to "type"
        payload = {k: v for k, v in obj.items() if k not in ("id", "type", "description", "payload")}
    description = obj.get("description")
    try:
        return ActionDescriptor(
            id=new_action_id(),
            type=obj["type"],
            description=description if isinstance(description, str) else None,
            payload=payload,
        )
    except ValidationError as e:
        logger.debug("Skipping action object: %s", e)
        return None


def message_of(doc: dict) -> str | None:
    for key in (MESSAGE_KEY, *_FALLBACK_MESSAGE_KEYS):
        if isinstance(doc.get(key), str):
            return doc[key]
    return None


class IncrementalActionParser:
    def __init__(self) -> None:
        self._buffer = ""
        self._pos = 0
        self._stack: list[_Frame] = []
        self._in_string = False
        self._escaped = False
        self._string_start = 0
        self._string_role = ""

        self._message = ""
        self._doc_emitted = 0
        self._doc_has_output = False

        self._actions: list[ActionDescriptor] = []
        self._outcome: ParseOutcome | None = None

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def message(self) -> str:
        """Message text emitted so far through deltas."""
        return self._message

    @property
    def actions(self) -> list[ActionDescriptor]:
        return list(self._actions)

    # ------------------------------------------------------------------
    # Incremental scan
    # ------------------------------------------------------------------

    def feed(self, fragment: str) -> ParserUpdate:
        if self._outcome is not None:
            raise RuntimeError("parser already finalized")
        update = ParserUpdate()
        if not fragment:
            return update

        self._buffer += fragment
        buf = self._buffer
        for i in range(self._pos, len(buf)):
            self._step(buf, i, buf[i], update)
        self._pos = len(buf)

        if self._in_string and self._string_role == "message":
            self._emit_message(safe_prefix(buf[self._string_start :]), update)
        return update

    def _step(self, buf: str, i: int, ch: str, update: ParserUpdate) -> None:
        if self._in_string:
            if self._escaped:
                self._escaped = False
            elif ch == "\\":
                self._escaped = True
            elif ch == '"':
                self._in_string = False
                self._close_string(buf[self._string_start : i], update)
            return

        if not self._stack:
            # text between documents (prose, fences, SSE prefixes) is ignored
            if ch == "{":
                self._stack.append(_Frame("{", i, role="doc"))
                self._doc_emitted = 0
                self._doc_has_output = False
            return

        frame = self._stack[-1]
        if ch == '"':
            self._in_string = True
            self._string_start = i + 1
            if frame.opener == "{" and frame.expect_key:
                self._string_role = "key"
            elif frame.role == "doc" and frame.key == MESSAGE_KEY:
                self._string_role = "message"
            else:
                self._string_role = "value"
        elif ch == ":":
            if frame.opener == "{":
                frame.key = frame.pending_key
                frame.expect_key = False
        elif ch == ",":
            if frame.opener == "{":
                frame.key = None
                frame.pending_key = None
                frame.expect_key = True
        elif ch in "{[":
            role = ""
            if ch == "[" and frame.role == "doc" and frame.key == ACTIONS_KEY:
                role = "actions"
            elif ch == "{" and frame.role == "actions":
                role = "action"
            self._stack.append(_Frame(ch, i, role=role))
        elif ch in "}]":
            closed = self._stack.pop()
            if closed.role == "action":
                self._complete_action(buf[closed.start : i + 1], update)

    def _close_string(self, raw: str, update: ParserUpdate) -> None:
        if self._string_role == "key":
            self._stack[-1].pending_key = decode_string_body(raw)
        elif self._string_role == "message":
            self._emit_message(raw, update)
        self._string_role = ""

    def _emit_message(self, raw: str, update: ParserUpdate) -> None:
        decoded = decode_string_body(raw)
        if decoded is None:
            logger.debug("Message fragment not decodable yet (%d chars)", len(raw))
            return
        if len(decoded) <= self._doc_emitted:
            return
        delta = decoded[self._doc_emitted :]
        self._doc_emitted = len(decoded)
        if not self._doc_has_output and self._message:
            delta = _MESSAGE_JOINER + delta
        self._doc_has_output = True
        self._message += delta
        update.message_delta += delta

    def _complete_action(self, text: str, update: ParserUpdate) -> None:
        result = try_parse_json(text, repair=False)
        if not result.ok:
            logger.debug("Skipping malformed action object: %s", result.error)
            return
        descriptor = describe_action(result.value)
        if descriptor is None:
            logger.debug("Skipping action object without a type")
            return
        self._actions.append(descriptor)
        update.actions.append(descriptor)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def finalize(self) -> ParseOutcome:
        """Parse the complete buffer; emits actions the incremental scan missed.

        A document that only parses after repair (unclosed brackets) contributes
        its message but not its actions, since its last action may be cut short.
        """
        if self._outcome is not None:
            return self._outcome

        text = strip_code_fences(self._buffer.strip())
        messages: list[str] = []
        final_actions: list[ActionDescriptor] = []
        parsed_any = False

        for doc in iter_top_level_objects(text):
            result = try_parse_json(doc, repair=False)
            repaired = False
            if not result.ok:
                result = try_parse_json(doc)
                repaired = True
            if not result.ok or not isinstance(result.value, dict):
                logger.debug("Skipping unparseable response segment: %s", result.error)
                continue
            parsed_any = True
            msg = message_of(result.value)
            if msg:
                messages.append(msg)
            items = result.value.get(ACTIONS_KEY)
            if repaired or not isinstance(items, list):
                continue
            for item in items:
                descriptor = describe_action(item)
                if descriptor is not None:
                    final_actions.append(descriptor)

        # structural match, counting repeats, so identical actions are not collapsed
        emitted = Counter(a.signature() for a in self._actions)
        late: list[ActionDescriptor] = []
        for descriptor in final_actions:
            sig = descriptor.signature()
            if emitted[sig] > 0:
                emitted[sig] -= 1
                continue
            late.append(descriptor)
        self._actions.extend(late)

        if messages:
            message = _MESSAGE_JOINER.join(messages)
        else:
            message = self._message
        if not parsed_any and not message and not self._actions:
            # plain-text reply
            message = text.strip()

        if late:
            logger.info("Finalization recovered %d action(s)", len(late))
        self._outcome = ParseOutcome(message=message, actions=list(self._actions), late_actions=late)
        return self._outcome


def parse_response(text: str) -> ParseOutcome:
    """One-shot parse of a complete response."""
    parser = IncrementalActionParser()
    parser.feed(text)
    return parser.finalize()
