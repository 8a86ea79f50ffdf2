"""
Recovery of complete records from a truncated ``{"records": [ ... ]`` response.

When the model hits its output limit the JSON is cut mid-object and cannot be
parsed. `RecordScanner` walks the array left to right as a finite-state
machine over three variables:

    in_string    inside a JSON string literal
    escape_next  previous character was a backslash
    depth        open ``{`` count, only tracked outside strings

Characters are buffered while depth > 0. Each time depth falls back to 0 the
buffer holds one top-level object, which is parsed and kept, or dropped if it
does not parse. A truncated trailing object never reaches depth 0 and is
therefore ignored.
"""

from __future__ import annotations

import re
import json
from typing import List, Optional

from utils.core.jsonval import strip_code_fences

_RECORDS_ARRAY_RE = re.compile(r'"records"\s*:\s*\[')

QUOTE = '"'
BACKSLASH = "\\"
OPEN_BRACE = "{"
CLOSE_BRACE = "}"
CLOSE_BRACKET = "]"


class RecordScanner:
    """Feed characters one at a time; complete objects collect in `records`."""

    def __init__(self) -> None:
        self.in_string = False
        self.escape_next = False
        self.depth = 0
        self.finished = False
        self.buffer: List[str] = []
        self.records: List[dict] = []
        self.discarded = 0

    def feed(self, ch: str) -> None:
        if self.finished:
            return
        if self.escape_next:
            self._consume_escaped(ch)
        elif ch == BACKSLASH:
            self._begin_escape(ch)
        elif ch == QUOTE:
            self._toggle_quote(ch)
        elif self.in_string:
            self._accumulate(ch)
        elif ch == OPEN_BRACE:
            self._open_object(ch)
        elif ch == CLOSE_BRACE:
            self._close_object(ch)
        elif ch == CLOSE_BRACKET and self.depth == 0:
            self._end_array()
        else:
            self._accumulate(ch)

    def feed_text(self, text: str) -> "RecordScanner":
        for ch in text:
            if self.finished:
                break
            self.feed(ch)
        return self

    # transitions

    def _accumulate(self, ch: str) -> None:
        if self.depth > 0:
            self.buffer.append(ch)

    def _consume_escaped(self, ch: str) -> None:
        self.escape_next = False
        self._accumulate(ch)

    def _begin_escape(self, ch: str) -> None:
        self.escape_next = True
        self._accumulate(ch)

    def _toggle_quote(self, ch: str) -> None:
        self.in_string = not self.in_string
        self._accumulate(ch)

    def _open_object(self, ch: str) -> None:
        self.depth += 1
        self._accumulate(ch)

    def _close_object(self, ch: str) -> None:
        if self.depth == 0:
            # stray brace after the array, e.g. the wrapper object's own close
            return
        self._accumulate(ch)
        self.depth -= 1
        if self.depth == 0:
            self._complete_object()

    def _end_array(self) -> None:
        self.finished = True

    def _complete_object(self) -> None:
        candidate = "".join(self.buffer).strip().rstrip(",").strip()
        self.buffer = []
        try:
            obj = json.loads(candidate)
        except json.JSONDecodeError:
            self.discarded += 1
            return
        if isinstance(obj, dict):
            self.records.append(obj)
        else:
            self.discarded += 1


def locate_records_array(text: str) -> int:
    """Index just after the opening ``[`` of the records array (0 if absent)."""
    m = _RECORDS_ARRAY_RE.search(text)
    if m:
        return m.end()
    bracket = text.find("[")
    return bracket + 1 if bracket >= 0 else 0


def repair_truncated_records(raw_text: str) -> Optional[List[dict]]:
    """
    Recover every syntactically complete record from truncated output.

    Returns the recovered objects, or None when nothing could be recovered.
    """
    if not raw_text or not raw_text.strip():
        return None
    text = strip_code_fences(raw_text)
    scanner = RecordScanner().feed_text(text[locate_records_array(text):])
    return scanner.records or None
