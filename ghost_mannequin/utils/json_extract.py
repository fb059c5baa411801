"""Pull a JSON object out of free-form model output."""

import json
import re

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _strip_fence(text: str) -> str:
    # Remove markdown code blocks if present
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        if lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines[1:])
    return text


def _loads_object(text: str) -> dict | None:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def extract_json_object(text: str | None, *, recover: bool = True) -> dict | None:
    """Parse ``text`` as a JSON object.

    The whole text is tried first (after stripping a leading code fence).
    With ``recover`` set, a fenced block anywhere in the text and then the
    outermost ``{...}`` span are each tried once. Returns None when nothing
    parses to an object.
    """
    if not text:
        return None

    data = _loads_object(_strip_fence(text))
    if data is not None or not recover:
        return data

    match = _FENCE.search(text)
    if match:
        data = _loads_object(match.group(1).strip())
        if data is not None:
            return data

    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return _loads_object(text[start:end + 1])
    return None
