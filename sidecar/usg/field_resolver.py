"""
Map loosely-keyed model output onto the canonical USG field set.

The model is not guaranteed to use the exact key names from the prompt, so
every canonical key is looked up through an ordered alias list. The first
alias holding a non-empty string or a finite number wins.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from usg.fields import FIELD_ALIASES, Gender

_PATIENT_NAME_ALIASES = ["patient_name", "patientName", "name"]
_PATIENT_GENDER_ALIASES = ["patient_gender", "patientGender", "gender", "sex"]
_EXAM_DATE_ALIASES = ["exam_date", "examDate", "date"]

_MALE_WORDS = {"male", "m", "man", "boy"}
_FEMALE_WORDS = {"female", "f", "woman", "girl"}


@dataclass
class PatientInfo:
    name: str = ""
    gender_raw: str = ""
    date: str = ""


def _is_usable(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    return False


def _coerce(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def get_field_value(source: dict, aliases: Iterable[str]) -> str:
    """Return the first usable alias value from source, or ""."""
    for alias in aliases:
        value = source.get(alias)
        if _is_usable(value):
            return _coerce(value)
    return ""


def field_source(parsed: dict) -> dict:
    """The dict holding field values: parsed["fields"] when present, else parsed."""
    nested = parsed.get("fields")
    return nested if isinstance(nested, dict) else parsed


def resolve_fields(parsed: Optional[dict], canonical_keys: Iterable[str]) -> dict[str, str]:
    """Resolve every canonical key; unresolved keys map to ""."""
    source = field_source(parsed) if isinstance(parsed, dict) else {}
    return {
        key: get_field_value(source, FIELD_ALIASES.get(key, [key]))
        for key in canonical_keys
    }


def has_all_canonical_keys(parsed: dict, canonical_keys: Iterable[str]) -> bool:
    """True when the model returned a fields object containing every key."""
    nested = parsed.get("fields")
    if not isinstance(nested, dict):
        return False
    return all(key in nested for key in canonical_keys)


def resolve_patient_info(parsed: dict) -> PatientInfo:
    info = PatientInfo(
        name=get_field_value(parsed, _PATIENT_NAME_ALIASES),
        gender_raw=get_field_value(parsed, _PATIENT_GENDER_ALIASES),
        date=get_field_value(parsed, _EXAM_DATE_ALIASES),
    )
    # Some responses nest patient details inside "fields".
    nested = parsed.get("fields")
    if isinstance(nested, dict):
        info.name = info.name or get_field_value(nested, _PATIENT_NAME_ALIASES[:2])
        info.gender_raw = info.gender_raw or get_field_value(nested, _PATIENT_GENDER_ALIASES[:2])
        info.date = info.date or get_field_value(nested, _EXAM_DATE_ALIASES[:2])
    return info


def normalize_gender(value: str) -> Optional[Gender]:
    word = (value or "").strip().lower()
    if word in _MALE_WORDS:
        return Gender.MALE
    if word in _FEMALE_WORDS:
        return Gender.FEMALE
    return None


def resolve_string_list(parsed: dict, aliases: Iterable[str]) -> list[str]:
    """Read a list of strings (or a comma-separated string) under the first present alias."""
    for alias in aliases:
        value = parsed.get(alias)
        if isinstance(value, list):
            return [_coerce(item) for item in value if _is_usable(item)]
        if isinstance(value, str) and value.strip():
            return [part.strip() for part in value.split(",") if part.strip()]
    return []


def resolve_extraction_confidence(parsed: dict) -> Optional[float]:
    for alias in ("extraction_confidence", "extractionConfidence"):
        value = parsed.get(alias)
        if _is_usable(value) and not isinstance(value, str):
            return max(0.0, min(1.0, float(value)))
    return None
