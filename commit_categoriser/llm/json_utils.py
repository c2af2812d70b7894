"""JSON array extraction and repair for free-form LLM output.

Models asked for a JSON array routinely wrap it in prose or code fences, leave
trailing commas, forget to quote keys, embed raw newlines in strings or stop
mid-record when they hit their output token limit. The functions below fix
those problems one at a time so each step can be tested on its own:

    extract_json_array -> strip_trailing_commas -> separate_adjacent_records
        -> quote_bare_keys -> collapse_control_characters -> balance_brackets

`repair_json_array` runs the whole pipeline and never raises. Running it on
its own output changes nothing. `parse_json_array` decides whether the
repaired text is usable and raises `UnrecoverableParseError` when it is not.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable

from json_repair import repair_json

from .provider import UnrecoverableParseError

_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f]+")
_TRAILING_FENCE_RE = re.compile(r"\s*`{3,}\s*$")
_ARRAY_OF_OBJECTS_RE = re.compile(r"\[\s*\{")
_ADJACENT_RECORDS_RE = re.compile(r"\}(\s*)\{")

_MAX_REPAIR_PASSES = 10

_CLOSER_FOR = {"[": "]", "{": "}"}
_OPENER_FOR = {"]": "[", "}": "{"}


def _split_segments(text: str) -> list[tuple[bool, str]]:
    """Split text into ``(is_string, chunk)`` pieces.

    String chunks keep their surrounding quotes. An unterminated string at the
    end of the text is returned as a string chunk without a closing quote.
    """
    segments: list[tuple[bool, str]] = []
    start = 0
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                segments.append((True, text[start : index + 1]))
                start = index + 1
                in_string = False
        elif char == '"':
            if index > start:
                segments.append((False, text[start:index]))
            start = index
            in_string = True
    if start < len(text):
        segments.append((in_string, text[start:]))
    return segments


def _map_outside_strings(text: str, transform: Callable[[str], str]) -> str:
    return "".join(
        chunk if is_string else transform(chunk)
        for is_string, chunk in _split_segments(text)
    )


def extract_json_array(text: str) -> str:
    """Return the first top-level ``[...]`` span, discarding surrounding prose.

    An array that is never closed is kept up to the end of the text. When the
    text holds objects but no array, the objects are wrapped in one.
    """
    if not isinstance(text, str):
        text = "" if text is None else str(text)

    # Prefer an array of objects so bracketed prose such as "[see below]"
    # ahead of the payload is skipped.
    match = _ARRAY_OF_OBJECTS_RE.search(text)
    wrap = False
    if match:
        start = match.start()
    else:
        start = text.find("[")
        brace = text.find("{")
        if brace != -1 and (start == -1 or brace < start):
            start = brace
            wrap = True
        elif start == -1:
            return text.strip()

    depth = 0
    in_string = False
    escaped = False
    fragment: str | None = None
    last_complete: int | None = None
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "[{":
            depth += 1
        elif char in "]}":
            depth -= 1
            if depth == 0:
                if not wrap:
                    fragment = text[start : index + 1]
                    break
                last_complete = index

    if fragment is None:
        fragment = text[start:]
        # Trailing prose after the last complete object is dropped; a truncated
        # final object is kept for balance_brackets to close.
        if wrap and depth <= 0 and last_complete is not None:
            fragment = text[start : last_complete + 1]
        fragment = _TRAILING_FENCE_RE.sub("", fragment).rstrip()

    return f"[{fragment}" if wrap else fragment


def strip_trailing_commas(text: str) -> str:
    """Remove commas that directly precede a closing bracket or brace."""
    return _map_outside_strings(text, lambda chunk: _TRAILING_COMMA_RE.sub(r"\1", chunk))


def separate_adjacent_records(text: str) -> str:
    """Insert the comma missing between back-to-back objects such as ``{...} {...}``."""
    return _map_outside_strings(text, lambda chunk: _ADJACENT_RECORDS_RE.sub(r"},\1{", chunk))


def quote_bare_keys(text: str) -> str:
    """Quote unquoted object keys such as ``{sha: "abc"}``."""
    return _map_outside_strings(text, lambda chunk: _BARE_KEY_RE.sub(r'\1"\2":', chunk))


def collapse_control_characters(text: str) -> str:
    """Replace raw newlines, tabs and other control characters inside strings."""
    return "".join(
        _CONTROL_CHARS_RE.sub(" ", chunk) if is_string else chunk
        for is_string, chunk in _split_segments(text)
    )


def balance_brackets(text: str) -> str:
    """Close whatever the model left open.

    Closers are emitted in nesting order. A closer that does not match the
    innermost open bracket first closes the brackets opened after its partner;
    a closer with no partner at all is dropped. An unterminated trailing
    string is closed and a dangling comma before the appended closers removed.
    """
    stack: list[str] = []
    out: list[str] = []
    for is_string, chunk in _split_segments(text):
        if is_string:
            if len(chunk) < 2 or not chunk.endswith('"') or _ends_with_escape(chunk[:-1]):
                # Unterminated string: only possible for the final chunk.
                body = chunk.rstrip("\\") if _ends_with_escape(chunk) else chunk
                out.append(body + '"')
            else:
                out.append(chunk)
            continue
        for char in chunk:
            if char in _CLOSER_FOR:
                stack.append(char)
                out.append(char)
            elif char in _OPENER_FOR:
                opener = _OPENER_FOR[char]
                if opener not in stack:
                    continue
                while stack[-1] != opener:
                    out.append(_CLOSER_FOR[stack.pop()])
                stack.pop()
                out.append(char)
            else:
                out.append(char)

    if not stack:
        return "".join(out)

    result = "".join(out).rstrip()
    if result.endswith(","):
        result = result[:-1].rstrip()
    return result + "".join(_CLOSER_FOR[opener] for opener in reversed(stack))


def _ends_with_escape(chunk: str) -> bool:
    trailing = len(chunk) - len(chunk.rstrip("\\"))
    return trailing % 2 == 1


def _repair_once(text: str) -> str:
    repaired = extract_json_array(text)
    for step in (
        strip_trailing_commas,
        separate_adjacent_records,
        quote_bare_keys,
        collapse_control_characters,
        balance_brackets,
    ):
        repaired = step(repaired)
    return repaired.strip()


def repair_json_array(text: str) -> str:
    """Run every repair step until the output stops changing. Never raises.

    One pass is usually enough. Dropping a stray closer can expose a different
    first span, so passes repeat until the text is a fixed point.
    """
    repaired = _repair_once(text)
    for _ in range(_MAX_REPAIR_PASSES):
        again = _repair_once(repaired)
        if again == repaired:
            break
        repaired = again
    return repaired


def truncate_to_last_complete_record(text: str) -> str | None:
    """Cut after the last complete ``}`` record boundary and close the array.

    Returns ``None`` when the text has no complete record to keep.
    """
    if not text.startswith("["):
        return None
    for marker in ("},", "}"):
        index = text.rfind(marker)
        if index > 0:
            candidate = text[: index + 1] + "]"
            if candidate != text:
                return candidate
    return None


def _load_array(text: str) -> list[Any]:
    value = json.loads(text)
    if not isinstance(value, list):
        raise ValueError("Top-level JSON value is not an array")
    return value


def parse_json_array(text: str) -> list[Any]:
    """Repair and parse a model response into a list of records.

    Raises:
        UnrecoverableParseError: If no JSON array can be recovered.
    """
    repaired = repair_json_array(text)
    try:
        return _load_array(repaired)
    except ValueError:
        pass

    truncated = truncate_to_last_complete_record(repaired)
    if truncated is not None:
        try:
            return _load_array(truncated)
        except ValueError:
            pass

    # Last resort: let json_repair reconstruct whatever it can.
    try:
        recovered = repair_json(repaired, return_objects=True)
    except Exception as exc:  # json_repair raises assorted errors on garbage
        raise UnrecoverableParseError(
            f"Could not repair JSON array: {exc}", response_text=text
        ) from exc
    if isinstance(recovered, dict):
        recovered = [recovered]
    if isinstance(recovered, list) and recovered:
        return recovered

    raise UnrecoverableParseError(
        "Response does not contain a recoverable JSON array.",
        response_text=text if isinstance(text, str) else str(text),
    )
