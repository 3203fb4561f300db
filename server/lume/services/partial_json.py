"""Best-effort parsing of JSON documents that are still being streamed.

Tool inputs arrive as raw text deltas. After each delta the accumulated
buffer is repaired into valid JSON (unterminated strings closed, dangling
keys and separators dropped, open containers closed), parsed, and run through
a partial validator that keeps well-typed fields of the target shape. None of
this ever raises to the caller: a delta that cannot be interpreted yet simply
produces no update.
"""
from __future__ import annotations
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

_WS = " \t\n\r"
_LITERALS = {"true": True, "false": False, "null": None}
_NUMBER_CHARS = set("0123456789+-.eE")
# A complete high-surrogate escape at the very end; its low half is still to come
_TRAILING_HIGH_SURROGATE = re.compile(r"(?<!\\)((?:\\\\)*)\\u[dD][89abAB][0-9a-fA-F]{2}$")


class _Missing:
    """Marker for a value that has not started (or cannot be kept) yet."""


MISSING = _Missing()


class _Scanner:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos] in _WS:
            self.pos += 1

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def peek(self) -> str:
        return self.text[self.pos]

    def value(self) -> Tuple[Any, bool]:
        """Parse one value; returns ``(value, complete)``.

        ``value`` is MISSING when the text ends before anything usable.
        """
        self.skip_ws()
        if self.at_end():
            return MISSING, False
        ch = self.peek()
        if ch == "{":
            return self._object()
        if ch == "[":
            return self._array()
        if ch == '"':
            return self._string()
        if ch == "-" or ch.isdigit():
            return self._number()
        return self._literal()

    def _object(self) -> Tuple[Any, bool]:
        self.pos += 1
        obj: Dict[str, Any] = {}
        while True:
            self.skip_ws()
            if self.at_end():
                return obj, False
            ch = self.peek()
            if ch == "}":
                self.pos += 1
                return obj, True
            if ch == ",":
                self.pos += 1
                continue
            if ch != '"':
                raise ValueError(f"expected object key at {self.pos}")
            key, key_done = self._string()
            if not key_done:
                return obj, False
            self.skip_ws()
            if self.at_end():
                return obj, False
            if self.peek() != ":":
                raise ValueError(f"expected ':' at {self.pos}")
            self.pos += 1
            value, done = self.value()
            if value is not MISSING:
                obj[key] = value
            if not done:
                return obj, False

    def _array(self) -> Tuple[Any, bool]:
        self.pos += 1
        items: List[Any] = []
        while True:
            self.skip_ws()
            if self.at_end():
                return items, False
            ch = self.peek()
            if ch == "]":
                self.pos += 1
                return items, True
            if ch == ",":
                self.pos += 1
                continue
            value, done = self.value()
            if value is not MISSING:
                items.append(value)
            if not done:
                return items, False

    def _string(self) -> Tuple[Any, bool]:
        start = self.pos
        self.pos += 1
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch == "\\":
                self.pos += 2
                continue
            if ch == '"':
                self.pos += 1
                return json.loads(text[start:self.pos], strict=False), True
            self.pos += 1
        # Unterminated: drop a trailing partial escape, then close the string
        raw = text[start + 1:]
        cut = raw.rfind("\\")
        if cut != -1:
            tail = raw[cut:]
            backslashes = len(raw[:cut + 1]) - len(raw[:cut + 1].rstrip("\\"))
            escaped_backslash = backslashes % 2 == 0
            if not escaped_backslash:
                if len(tail) == 1 or (tail[1] == "u" and len(tail) < 6):
                    raw = raw[:cut]
        raw = _TRAILING_HIGH_SURROGATE.sub(r"\1", raw)
        self.pos = len(text)
        return json.loads('"' + raw + '"', strict=False), False

    def _number(self) -> Tuple[Any, bool]:
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos] in _NUMBER_CHARS:
            self.pos += 1
        token = self.text[start:self.pos]
        complete = not self.at_end()
        try:
            return json.loads(token), complete
        except json.JSONDecodeError:
            if complete:
                raise ValueError(f"invalid number {token!r}")
            # "-", "1.", "1e" ... wait for more digits
            return MISSING, False

    def _literal(self) -> Tuple[Any, bool]:
        rest = self.text[self.pos:self.pos + 5]
        for word, value in _LITERALS.items():
            if rest.startswith(word):
                self.pos += len(word)
                return value, True
            if word.startswith(rest) and self.pos + len(rest) == len(self.text):
                self.pos = len(self.text)
                return MISSING, False
        raise ValueError(f"unexpected character {self.peek()!r} at {self.pos}")


def parse_partial(text: str) -> Any:
    """Parse the longest meaningful prefix of ``text`` as a JSON value."""
    scanner = _Scanner(text)
    value, _ = scanner.value()
    if value is MISSING:
        raise ValueError("no JSON value yet")
    return value


def repair_json(text: str) -> str:
    """Return syntactically valid JSON text for a possibly truncated document."""
    return json.dumps(parse_partial(text), ensure_ascii=False)


# Partial validators

Shape = Any  # tuple of accepted types | {key: Shape} | [Shape]


def _conform(value: Any, shape: Shape) -> Any:
    if isinstance(shape, dict):
        if not isinstance(value, dict):
            return MISSING
        out: Dict[str, Any] = {}
        for key, item in value.items():
            if key in shape:
                kept = _conform(item, shape[key])
                if kept is not MISSING:
                    out[key] = kept
            else:
                out[key] = item
        return out
    if isinstance(shape, list):
        if not isinstance(value, list):
            return MISSING
        kept_items = (_conform(item, shape[0]) for item in value)
        return [item for item in kept_items if item is not MISSING]
    if isinstance(value, bool) and bool not in shape:
        return MISSING
    return value if isinstance(value, shape) else MISSING


SLIDE_SHAPE: Dict[str, Shape] = {
    "slideNumber": (int,),
    "slideTitle": (str,),
    "slideContent": (str,),
    "slideType": (str,),
}

SLIDES_OUTLINE_SHAPE: Dict[str, Shape] = {
    "outline": {
        "pptTitle": (str,),
        "slidesCount": (int,),
        "overallRequirements": (str, type(None)),
    },
    "chapters": [{"chapterTitle": (str,), "slides": [SLIDE_SHAPE]}],
}

MARKDOWN_SHAPE: Dict[str, Shape] = {
    "title": (str,),
    "content": (str,),
    "description": (str,),
}


def partial_slides_outline(obj: Any) -> Dict[str, Any]:
    kept = _conform(obj, SLIDES_OUTLINE_SHAPE)
    return {} if kept is MISSING else kept


def partial_markdown(obj: Any) -> Dict[str, Any]:
    kept = _conform(obj, MARKDOWN_SHAPE)
    return {} if kept is MISSING else kept


class PartialJSONParser:
    """Accumulates deltas and exposes the latest partial view."""

    def __init__(self, validator: Optional[Callable[[Any], Any]] = None) -> None:
        self.buffer = ""
        self.validator = validator
        self.value: Any = None

    def feed(self, delta: str) -> Optional[Any]:
        self.buffer += delta
        try:
            parsed = json.loads(repair_json(self.buffer))
            view = self.validator(parsed) if self.validator else parsed
        except (ValueError, TypeError, RecursionError) as e:
            # Not enough text yet; the next delta may fix it
            logger.debug("partial parse skipped at %d chars: %s", len(self.buffer), e)
            return None
        self.value = view
        return view
