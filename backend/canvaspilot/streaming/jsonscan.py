"""JSON helpers that report failure as values instead of exceptions."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


@dataclass
class JsonResult:
    ok: bool
    value: Any = None
    error: str | None = None


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text)


def try_parse_json(text: str, *, repair: bool = True) -> JsonResult:
    """Parse ``text``; with ``repair`` also tolerate code fences, trailing commas and unclosed brackets."""
    try:
        return JsonResult(ok=True, value=json.loads(text))
    except json.JSONDecodeError as e:
        first_error = f"{e.msg} at {e.pos}"
    except TypeError as e:
        return JsonResult(ok=False, error=str(e))

    if not repair:
        return JsonResult(ok=False, error=first_error)

    candidate = _TRAILING_COMMA_RE.sub(r"\1", strip_code_fences(text).strip())
    candidate = close_open_structures(candidate)
    try:
        return JsonResult(ok=True, value=json.loads(candidate))
    except json.JSONDecodeError:
        return JsonResult(ok=False, error=first_error)


def close_open_structures(text: str) -> str:
    """Append the quotes/brackets needed to close whatever is still open."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack:
            stack.pop()

    suffix = ""
    if in_string:
        suffix += "\\" if escaped else ""
        suffix += '"'
    suffix += "".join(reversed(stack))
    return _TRAILING_COMMA_RE.sub(r"\1", text.rstrip().rstrip(",") + suffix)


def find_balanced_end(text: str, start: int) -> int | None:
    """Index just past the bracket that closes the one at ``start``, or None if not closed yet."""
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def iter_top_level_objects(text: str) -> list[str]:
    """Complete top-level ``{...}`` documents in ``text`` (concatenated responses)."""
    docs = []
    i = 0
    while True:
        start = text.find("{", i)
        if start < 0:
            break
        end = find_balanced_end(text, start)
        if end is None:
            docs.append(text[start:])
            break
        docs.append(text[start:end])
        i = end
    return docs
