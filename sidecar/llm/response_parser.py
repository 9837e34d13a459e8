"""
Parse and validate a regenerated report section.

Post-response validation:
1. The response must be a JSON object whose blockId matches the request
2. lines must be a non-empty list of strings (or one string)
3. Lines that merely repeat a section heading are dropped
4. A leading "Heading:" label is stripped from the remaining lines
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from llm.json_extractor import FallbackSchema, parse_model_json

logger = logging.getLogger(__name__)

REGENERATION_SCHEMA = FallbackSchema(
    string_fields=("blockId", "block_id"),
    array_fields=("lines",),
)

_LABEL_PREFIX_RE = re.compile(r"^\s*([A-Za-z][A-Za-z /&()-]{0,40}?)\s*:\s*(.*)$")


@dataclass
class ValidationIssue:
    severity: str  # "warning" or "error"
    message: str


def _heading_key(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip().rstrip(":").strip()).lower()


def _coerce_lines(value: Any) -> list[str]:
    if isinstance(value, str):
        return [line.strip() for line in value.splitlines() if line.strip()]
    if isinstance(value, list):
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]
    return []


def clean_section_lines(
    lines: Iterable[str],
    headings: Iterable[str],
) -> tuple[list[str], list[ValidationIssue]]:
    """Drop heading-only lines and strip leading heading labels."""
    labels = {_heading_key(h) for h in headings if h}
    issues: list[ValidationIssue] = []
    cleaned: list[str] = []
    for line in lines:
        if _heading_key(line) in labels:
            issues.append(ValidationIssue("warning", f"Dropped duplicated heading line '{line}'."))
            continue
        match = _LABEL_PREFIX_RE.match(line)
        if match and _heading_key(match.group(1)) in labels:
            line = match.group(2).strip()
            issues.append(ValidationIssue("warning", f"Stripped '{match.group(1)}:' label prefix."))
        if line:
            cleaned.append(line)
    return cleaned, issues


def parse_regenerated_section(
    raw_text: Optional[str],
    block_id: str,
    headings: Iterable[str],
) -> tuple[list[str], list[ValidationIssue]]:
    """
    Parse a regeneration response into replacement lines for ``block_id``.
    Returns (lines, issues). Raises ValueError when the response cannot be
    used, so the caller can retry with a stricter prompt.
    """
    parsed = parse_model_json(raw_text, REGENERATION_SCHEMA)
    if parsed is None:
        raise ValueError("Regeneration response is not valid JSON")

    returned_id = parsed.get("blockId", parsed.get("block_id"))
    if not isinstance(returned_id, str) or returned_id.strip().upper() != block_id.upper():
        raise ValueError(f"Regeneration response blockId {returned_id!r} does not match {block_id!r}")

    lines = _coerce_lines(parsed.get("lines"))
    if not lines:
        raise ValueError("Regeneration response has no lines")

    lines, issues = clean_section_lines(lines, headings)
    if not lines:
        raise ValueError("Regeneration response only repeated section headings")

    for issue in issues:
        logger.info("Regeneration %s: %s", block_id, issue.message)
    return lines, issues
