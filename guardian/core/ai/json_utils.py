"""
Helpers for pulling JSON objects out of free-form model output.
"""

from __future__ import annotations

import re

from guardian.core.errors import GenerationError

CODE_BLOCK = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
PREVIEW_CHARS = 200


def extract_json_object(text: str) -> str:
    """
    Return the first JSON object embedded in ``text``.

    Looks for a fenced ```json block first, then falls back to the first
    ``{`` and its balanced closing brace, skipping braces inside strings.

    Raises:
        GenerationError: If no object is present or the braces never balance
    """
    if not text or not text.strip():
        raise GenerationError("Parse error: empty response")

    block = CODE_BLOCK.search(text)
    if block:
        return block.group(1).strip()

    start = text.find("{")
    if start == -1:
        preview = text[:PREVIEW_CHARS].replace("\n", " ")
        raise GenerationError(f'Parse error: no JSON object found (preview: "{preview}")')

    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        char = text[i]
        if escape:
            escape = False
            continue
        if char == "\\" and in_string:
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    raise GenerationError("Parse error: unbalanced JSON object (missing closing brace)")
