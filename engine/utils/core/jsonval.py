import re
import json
from typing import Any, Optional
from utils.core.log import get_logger

"""
Helpers for validating and cleaning JSON emitted by the model.
"""

_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def is_valid_json(raw: str) -> bool:
    try:
        json.loads(raw)
        return True
    except (TypeError, json.JSONDecodeError):
        return False


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding ```json ... ``` block if present.

    An opening fence without a closing one (truncated output) is also dropped.
    """
    if not raw:
        return ""
    text = raw.strip()
    m = _FENCE_RE.match(text)
    if m:
        return m.group(1).strip()
    if text.startswith("```"):
        first_nl = text.find("\n")
        return text[first_nl + 1 :].strip() if first_nl >= 0 else ""
    return text


def _drop_trailing_commas(raw: str) -> str:
    """Remove commas directly before ] or }, leaving string contents untouched."""
    out = []
    in_string = False
    escaped = False
    n = len(raw)
    for i, ch in enumerate(raw):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < n and raw[j].isspace():
                j += 1
            if j < n and raw[j] in "]}":
                continue
        out.append(ch)
    return "".join(out)


def clean_malformed_json(raw: str, *, label: Optional[str] = None) -> str:
    """
    Best-effort scrub for common Gemini JSON glitches.

    The heuristics are idempotent; running twice is safe.
    """
    logger = get_logger()

    try:
        # fix '}, ], {' breaks in arrays
        raw = re.sub(r"\},\s*\],\s*\{", r"}, {", raw)

        raw = _drop_trailing_commas(raw)

        # replace raw control characters (0x00-0x1F) with space
        raw = re.sub(r"(?<!\\)[\x00-\x08\x0B\x0C\x0E-\x1F]", " ", raw)

        return raw
    except re.error as e:
        logger.debug(f"[clean_malformed_json] ({label or 'json'}) failed: {e}")
        return raw


def parse_json_payload(raw: str, *, label: Optional[str] = None) -> tuple[Any, Optional[str]]:
    """
    Parse model JSON output. Tries: direct load, cleaned load, first {...} block.
    Returns (data, None) on success or (None, error_message) on failure.
    """
    if not raw or not raw.strip():
        return None, "Empty response"

    text = strip_code_fences(raw)
    try:
        return json.loads(text), None
    except json.JSONDecodeError:
        pass

    cleaned = clean_malformed_json(text, label=label)
    try:
        return json.loads(cleaned), None
    except json.JSONDecodeError:
        pass

    match = re.search(r"\{[\s\S]*\}", cleaned)
    if match:
        try:
            return json.loads(match.group()), None
        except json.JSONDecodeError:
            pass

    return None, "Invalid or truncated JSON"
