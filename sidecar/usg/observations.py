"""
Observation post-processing.

Structured reports: findings the model could not map to a canonical field
come back as "other observations". They are kept only when they read like
an abdominal ultrasound finding and not like dictation noise.

Free-text reports: any line that opens with a forbidden section header
(impression, conclusion, ...) is removed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

OTHER_OBSERVATION_ALIASES = (
    "other_observations",
    "otherObservations",
    "additional_observations",
    "additionalObservations",
)

OTHER_OBSERVATIONS_HEADING = "OTHER OBSERVATIONS:"

_MIN_LENGTH = 4
_MAX_LENGTH = 260

USG_OBSERVATION_KEYWORDS = (
    "abdomen", "abdominal", "liver", "hepatic", "portal vein", "ihbr",
    "gall", "gallbladder", "gall bladder", "cbd", "bile duct",
    "pancreas", "pancreatic", "spleen", "splenic",
    "kidney", "kidneys", "renal", "ureter", "ureteric",
    "bladder", "urinary bladder", "prostate",
    "uterus", "endometrium", "ovary", "ovaries", "adnexa", "adnexal",
    "pelvic", "pelvis", "peritoneal", "peritoneum", "ascites", "retroperitoneal",
    "lymph", "node", "aorta", "ivc",
)

_NOISE_PATTERNS = [
    re.compile(r"\b(?:hello|hi|thanks|thank you|okay|ok|hmm|huh|bye)\b", re.IGNORECASE),
    re.compile(r"\b(?:start|stop|pause|resume)\s+(?:record(?:ing)?|dictation)\b", re.IGNORECASE),
    re.compile(r"\b(?:audio|noise|background|music|mic|microphone)\b", re.IGNORECASE),
    re.compile(r"\b(?:patient|attender|relative)\s+(?:said|speaks?|talking)\b", re.IGNORECASE),
    re.compile(r"\b(?:call|phone|mobile|speaker|network)\b", re.IGNORECASE),
    re.compile(r"\b(?:doctor|dr\.)\s+(?:please|kindly)\b", re.IGNORECASE),
]

_UNCLEAR_LINES = {"[unclear - needs review]", "unclear - needs review"}
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class OtherObservations:
    accepted: list[str] = field(default_factory=list)
    dropped_count: int = 0


def normalize_observation_line(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value or "").strip()


def is_relevant_observation(text: str) -> bool:
    normalized = normalize_observation_line(text).lower()
    if len(normalized) < _MIN_LENGTH or len(normalized) > _MAX_LENGTH:
        return False
    if normalized in _UNCLEAR_LINES:
        return False
    if any(pattern.search(normalized) for pattern in _NOISE_PATTERNS):
        return False
    return any(keyword in normalized for keyword in USG_OBSERVATION_KEYWORDS)


def _raw_observations(parsed: dict[str, Any]) -> list[str]:
    for alias in OTHER_OBSERVATION_ALIASES:
        candidate = parsed.get(alias)
        if isinstance(candidate, list):
            values = [
                normalize_observation_line(item) for item in candidate if isinstance(item, str)
            ]
            values = [v for v in values if v]
            if values:
                return values
        elif isinstance(candidate, str) and candidate.strip():
            return [normalize_observation_line(candidate)]
    return []


def extract_other_observations(parsed: dict[str, Any]) -> OtherObservations:
    """De-duplicate (case-insensitively, first spelling wins) and filter."""
    seen: set[str] = set()
    result = OtherObservations()
    for value in _raw_observations(parsed):
        lowered = value.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        if is_relevant_observation(value):
            result.accepted.append(value)
        else:
            result.dropped_count += 1
    return result


def append_other_observations(report_text: str, observations: Iterable[str]) -> str:
    lines = [f"- {line}" for line in observations]
    if not lines:
        return report_text
    return f"{report_text.strip()}\n\n{OTHER_OBSERVATIONS_HEADING}\n" + "\n".join(lines)


def sanitize_observations(text: str, forbidden_headers: Iterable[str]) -> tuple[str, bool]:
    """Remove lines that open with a forbidden header. Returns (text, removed)."""
    patterns = [re.compile(rf"^{re.escape(word)}\b", re.IGNORECASE) for word in forbidden_headers]
    removed = False
    kept: list[str] = []
    for line in (text or "").splitlines():
        trimmed = line.strip()
        if trimmed and any(p.match(trimmed) for p in patterns):
            removed = True
            continue
        kept.append(line)
    return "\n".join(kept).strip(), removed
