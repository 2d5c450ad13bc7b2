"""
Repair and parse oracle responses.

Gemini occasionally returns JSON whose string values contain literal line
breaks (multi-step workings, long question text). Strict JSON parsers reject
those, so every response goes through sanitize_response() before json.loads.
"""

import json
import re
from typing import Any

from config import ANSWER_SEPARATOR

_FENCE_RE = re.compile(r"^```(?:json|JSON)?\s*\n?(.*?)\n?```\s*$", re.DOTALL)


class ResponseParseError(ValueError):
    """Oracle response could not be parsed as JSON, even after repair."""

    def __init__(self, message: str, raw: str):
        super().__init__(message)
        self.raw = raw


def sanitize_response(text: str, separator: str = ANSWER_SEPARATOR) -> str:
    """
    Replace line breaks inside quoted strings with an inline separator.

    Characters outside string values (including their newlines) are left
    untouched. A CRLF pair counts as one line break.
    """
    out = []
    in_string = False
    escaped = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if not in_string:
            if ch == '"':
                in_string = True
            out.append(ch)
            i += 1
            continue

        if ch in "\r\n":
            if escaped:
                # backslash + raw newline is not a valid escape, drop the backslash
                out.pop()
                escaped = False
            out.append(separator)
            if ch == "\r" and i + 1 < n and text[i + 1] == "\n":
                i += 1
        elif escaped:
            out.append(ch)
            escaped = False
        elif ch == "\\":
            out.append(ch)
            escaped = True
        elif ch == '"':
            out.append(ch)
            in_string = False
        else:
            out.append(ch)
        i += 1

    return "".join(out)


def flatten_lines(value: str, separator: str = ANSWER_SEPARATOR) -> str:
    """Join the lines of an already-decoded value with the inline separator."""
    if "\n" not in value and "\r" not in value:
        return value
    lines = [line.strip() for line in re.split(r"\r\n|\r|\n", value)]
    return separator.join(line for line in lines if line)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence if present."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1).strip() if match else stripped


def _balanced_block(text: str, start: int) -> str:
    """Return the balanced {...} or [...] block opening at start, ignoring brackets in strings."""
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
                return text[start:i + 1]
    return ""


def _embedded_json(text: str) -> Any:
    """
    Decode the first bracketed block that is valid JSON.

    Prose often echoes labels such as "[Page 3]" before the real payload, so
    every opening bracket is tried in order.
    """
    for match in re.finditer(r"[{\[]", text):
        block = _balanced_block(text, match.start())
        if not block or block == text:
            continue
        try:
            return json.loads(block)
        except json.JSONDecodeError:
            continue
    raise LookupError("no JSON block")


def parse_oracle_json(text: str) -> Any:
    """
    Sanitize and parse an oracle response.

    Tries the whole (unfenced) response first, then the first bracketed
    block inside it that parses (models sometimes wrap JSON in prose).

    Raises:
        ResponseParseError: nothing parseable was found
    """
    if text is None or not text.strip():
        raise ResponseParseError("Empty response", text or "")

    cleaned = sanitize_response(strip_code_fence(text))
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as first_error:
        try:
            return _embedded_json(cleaned)
        except LookupError:
            raise ResponseParseError(f"Invalid JSON: {first_error}", text) from first_error


def excerpt(text: str, limit: int) -> str:
    """Short single-line preview of a raw response for logs and reports."""
    if not text:
        return ""
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[:limit] + "..."
