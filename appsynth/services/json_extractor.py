"""Recover a JSON value from free-text model output.

Models wrap answers in markdown fences, think out loud before answering,
or append a closing remark.  :func:`extract` strips an outer fence, tries
a direct parse, then falls back to scanning for balanced ``{...}`` /
``[...]`` blocks and parsing them from the last one backward, so the
final block a model emits wins.

No lenient repair (trailing commas, single quotes) is attempted.  A
response that fails here is retried as a whole by the step executor.
"""

import json
import logging
import re
from typing import Any

from appsynth.errors import MalformedResponse

logger = logging.getLogger(__name__)

_FENCE_WRAP_RE = re.compile(r"^```[\w+.-]*[ \t]*\n?(.*?)\n?[ \t]*```$", re.DOTALL)

_CLOSERS = {"{": "}", "[": "]"}


def strip_fences(text: str) -> str:
    """Remove a markdown code fence wrapping the whole of *text*.

    Handles fences with or without a language tag.  Returns the stripped
    input unchanged when it is not fence-wrapped.
    """
    if not text:
        return text
    stripped = text.strip()
    m = _FENCE_WRAP_RE.match(stripped)
    return m.group(1).strip() if m else stripped


def _match_block(text: str, start: int) -> int | None:
    """Return the index of the bracket closing ``text[start]``, or None.

    String literals are skipped so braces inside them do not count.  A
    mismatched closer makes the block invalid.
    """
    stack = [_CLOSERS[text[start]]]
    in_string = False
    escaped = False
    for i in range(start + 1, len(text)):
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
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "}]":
            if ch != stack.pop():
                return None
            if not stack:
                return i
    return None


def balanced_blocks(text: str) -> list[str]:
    """Return the top-level balanced ``{...}`` / ``[...]`` substrings, in order.

    An opener that never closes (or closes with the wrong bracket) is
    skipped and scanning resumes at the next character.
    """
    blocks: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        if text[i] in _CLOSERS:
            end = _match_block(text, i)
            if end is not None:
                blocks.append(text[i : end + 1])
                i = end + 1
                continue
        i += 1
    return blocks


def _parse_last(blocks: list[str]) -> tuple[bool, Any]:
    for block in reversed(blocks):
        try:
            return True, json.loads(block)
        except ValueError:
            # An invalid outer block may still hold a valid inner one
            found, value = _parse_last(balanced_blocks(block[1:-1]))
            if found:
                return True, value
    return False, None


def extract(text: str | None) -> Any:
    """Parse the JSON value a model response carries.

    Raises:
        MalformedResponse: if the text is empty or no candidate parses.
    """
    if text is None or not text.strip():
        raise MalformedResponse("Empty response from model")

    stripped = strip_fences(text)
    try:
        return json.loads(stripped)
    except ValueError:
        pass

    found, value = _parse_last(balanced_blocks(text))
    if found:
        return value

    logger.warning("JSON extraction failed. Raw text snippet: %s", text[:200])
    raise MalformedResponse(
        "Failed to parse JSON response. The model output was not valid JSON.",
        snippet=text[:200],
    )
