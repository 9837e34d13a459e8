"""
Best-effort recovery of a JSON object from raw model text.

Models wrap JSON in markdown fences, leak control characters, emit literal
line breaks inside string values, leave trailing commas, and truncate output
mid-string when they hit the token limit. parse_model_json() runs a chain of
repair stages, each applied to the output of the previous one, and retries a
strict parse after every stage. When all of them fail it salvages individual
fields by hand-walking the buffer.

The chain never raises: total failure returns None.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_LEADING_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE_RE = re.compile(r"\s*```\s*$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\u200b-\u200d\ufeff]")
_NUMBER_VALUE_RE = re.compile(r"-?\d+(?:\.\d+)?")

_SIMPLE_ESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
}


@dataclass(frozen=True)
class FallbackSchema:
    """Field names the manual salvage pass looks for.

    string_fields land at the top level of the result, nested_fields under
    nested_key. array_fields are salvaged as lists of strings; "flags" is
    always strict (None when its array does not parse).
    """

    string_fields: tuple[str, ...] = ()
    nested_key: str = "fields"
    nested_fields: tuple[str, ...] = ()
    array_fields: tuple[str, ...] = ()


DEFAULT_FALLBACK_SCHEMA = FallbackSchema(
    string_fields=(
        "template_id",
        "observations",
        "disclaimer",
        "patient_name",
        "patient_gender",
        "exam_date",
        "conclusion",
    ),
)


# ---------------------------------------------------------------------------
# Repair stages
# ---------------------------------------------------------------------------


def strip_code_fence(text: str) -> str:
    # A fence wrapping the whole buffer is stripped at its ends so fences
    # quoted inside string values survive.
    if _LEADING_FENCE_RE.match(text):
        text = _LEADING_FENCE_RE.sub("", text, count=1)
        return _TRAILING_FENCE_RE.sub("", text, count=1)
    match = _FENCE_RE.search(text)
    return match.group(1) if match else text


def strip_control_chars(text: str) -> str:
    return _CONTROL_CHARS_RE.sub("", text)


def escape_newlines_inside_strings(text: str) -> str:
    """Escape raw CR/LF/TAB characters that sit inside JSON string literals."""
    out: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if not in_string:
            out.append(char)
            if char == '"':
                in_string = True
            continue
        if escaped:
            out.append(char)
            escaped = False
            continue
        if char == "\\":
            out.append(char)
            escaped = True
        elif char == '"':
            out.append(char)
            in_string = False
        elif char == "\n":
            out.append("\\n")
        elif char == "\r":
            out.append("\\r")
        elif char == "\t":
            out.append("\\t")
        else:
            out.append(char)
    return "".join(out)


def remove_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing brace or bracket."""
    out: list[str] = []
    in_string = False
    escaped = False
    length = len(text)
    for index, char in enumerate(text):
        if in_string:
            out.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
            out.append(char)
            continue
        if char == ",":
            lookahead = index + 1
            while lookahead < length and text[lookahead].isspace():
                lookahead += 1
            if lookahead < length and text[lookahead] in "}]":
                continue
        out.append(char)
    return "".join(out)


_REPAIR_STAGES: list[tuple[str, Callable[[str], str]]] = [
    ("control characters", strip_control_chars),
    ("newlines inside strings", escape_newlines_inside_strings),
    ("trailing commas", remove_trailing_commas),
]


def _slice_object(text: str) -> Optional[str]:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    return text[first:last + 1]


def _loads_object(text: str) -> Optional[dict]:
    candidate = _slice_object(text)
    if candidate is None:
        return None
    try:
        value = json.loads(candidate)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


# ---------------------------------------------------------------------------
# Manual field salvage
# ---------------------------------------------------------------------------


def _read_hex4(text: str, start: int) -> Optional[int]:
    digits = text[start:start + 4]
    if len(digits) != 4:
        return None
    try:
        return int(digits, 16)
    except ValueError:
        return None


def _decode_string(text: str, start: int, lenient: bool) -> tuple[Optional[str], int]:
    """Decode a JSON string body that begins just after its opening quote.

    Returns (value, end) where end is the index after the closing quote.
    Strict mode yields None when the closing quote is missing; lenient mode
    yields whatever was decoded up to the end of the buffer.
    """
    chars: list[str] = []
    index = start
    length = len(text)
    while index < length:
        char = text[index]
        if char == '"':
            return "".join(chars), index + 1
        if char != "\\":
            chars.append(char)
            index += 1
            continue
        if index + 1 >= length:
            break
        code = text[index + 1]
        if code != "u":
            chars.append(_SIMPLE_ESCAPES.get(code, code))
            index += 2
            continue
        value = _read_hex4(text, index + 2)
        if value is None:
            if index + 6 > length:
                break
            chars.append("u")
            index += 2
            continue
        index += 6
        # Join a UTF-16 surrogate pair into one code point.
        if 0xD800 <= value <= 0xDBFF and text[index:index + 2] == "\\u":
            low = _read_hex4(text, index + 2)
            if low is not None and 0xDC00 <= low <= 0xDFFF:
                value = 0x10000 + ((value - 0xD800) << 10) + (low - 0xDC00)
                index += 6
        chars.append(chr(value))
    if lenient:
        return "".join(chars), length
    return None, length


def decode_string_at(text: str, start: int, lenient: bool = False) -> Optional[str]:
    value, _ = _decode_string(text, start, lenient)
    return value


def _value_start(text: str, name: str) -> Optional[re.Match]:
    return re.search(r'"%s"\s*:\s*' % re.escape(name), text)


def extract_string_field(text: str, name: str, lenient: bool = False) -> Optional[str]:
    match = _value_start(text, name)
    if not match:
        return None
    start = match.end()
    if start < len(text) and text[start] == '"':
        return decode_string_at(text, start + 1, lenient=lenient)
    number = _NUMBER_VALUE_RE.match(text, start)
    if number:
        return number.group(0)
    return None


def _balanced_array_slice(text: str, start: int) -> Optional[str]:
    """Return text[start:end] for the bracket-balanced array opening at start."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def _array_start(text: str, name: str) -> Optional[int]:
    match = re.search(r'"%s"\s*:\s*\[' % re.escape(name), text)
    return match.end() - 1 if match else None


def extract_flags(text: str) -> Optional[list]:
    """Strictly parse the "flags" array; None when absent or invalid."""
    start = _array_start(text, "flags")
    if start is None:
        return None
    chunk = _balanced_array_slice(text, start)
    if chunk is None:
        return None
    try:
        value = json.loads(chunk)
    except ValueError:
        return None
    return value if isinstance(value, list) else None


def extract_string_array(text: str, name: str) -> Optional[list[str]]:
    """Salvage an array of strings, tolerating truncation after any element."""
    start = _array_start(text, name)
    if start is None:
        return None
    chunk = _balanced_array_slice(text, start)
    if chunk is not None:
        try:
            value = json.loads(chunk)
        except ValueError:
            value = None
        if isinstance(value, list):
            return [str(item) for item in value if isinstance(item, (str, int, float))]
    # Unbalanced or invalid: walk complete string literals only.
    items: list[str] = []
    index = start + 1
    while True:
        quote = text.find('"', index)
        if quote == -1:
            break
        between = text[index:quote]
        if "]" in between:
            break
        value, index = _decode_string(text, quote + 1, lenient=False)
        if value is None:
            break
        items.append(value)
    return items


def fallback_extract(text: str, schema: FallbackSchema) -> Optional[dict[str, Any]]:
    """Hand-salvage known fields; strict first, lenient for truncated values."""
    result: dict[str, Any] = {}
    salvaged_lenient: list[str] = []

    def _salvage(name: str) -> Optional[str]:
        value = extract_string_field(text, name)
        if value is None:
            value = extract_string_field(text, name, lenient=True)
            if value is not None:
                value = value.rstrip()
                salvaged_lenient.append(name)
        return value or None

    for name in schema.array_fields:
        if name == "flags":
            value = extract_flags(text)
        else:
            value = extract_string_array(text, name)
        if value is not None:
            result[name] = value

    for name in schema.string_fields:
        if name in result:
            continue
        value = _salvage(name)
        if value is not None:
            result[name] = value

    nested: dict[str, str] = {}
    for name in schema.nested_fields:
        value = _salvage(name)
        if value is not None:
            nested[name] = value
    if nested:
        result[schema.nested_key] = nested

    if not result:
        return None
    if salvaged_lenient:
        logger.warning(
            "Salvaged truncated values for %d field(s): %s",
            len(salvaged_lenient),
            ", ".join(salvaged_lenient),
        )
    return result


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def parse_model_json(
    raw_text: Optional[str],
    schema: FallbackSchema = DEFAULT_FALLBACK_SCHEMA,
) -> Optional[dict[str, Any]]:
    """Parse raw model output into a dict, or None when nothing is salvageable."""
    if not isinstance(raw_text, str) or not raw_text.strip():
        return None

    text = strip_code_fence(raw_text)
    parsed = _loads_object(text)
    if parsed is None and text != raw_text:
        parsed = _loads_object(raw_text)
    if parsed is not None:
        return parsed

    for stage_name, repair in _REPAIR_STAGES:
        text = repair(text)
        parsed = _loads_object(text)
        if parsed is not None:
            logger.info("Model JSON parsed after repairing %s", stage_name)
            return parsed

    salvaged = fallback_extract(text, schema)
    if salvaged is None:
        logger.warning("Model JSON unrecoverable (%d chars)", len(raw_text))
    else:
        logger.warning("Model JSON recovered by field salvage: %s", sorted(salvaged))
    return salvaged
