"""
Impression terminology cleanup.

Canonicalizes common dictation misspellings and singular/plural slips, and
keeps the impression in step with the bladder section: diffuse bladder wall
thickening without any cystitis mention gets a cystitis line appended.
"""

from __future__ import annotations

import re

CYSTITIS_IMPRESSION = "Diffuse urinary bladder wall thickening - likely cystitis"

_SPELLING_FIXES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\bchol[iey]?lithias[ie]s\b", re.IGNORECASE), "cholelithiasis"),
    (re.compile(r"\bcholecys(?:tits|itis|titis)\b", re.IGNORECASE), "cholecystitis"),
    (re.compile(r"\bhepatosplenomegal+y\b", re.IGNORECASE), "hepatosplenomegaly"),
    (re.compile(r"\bhepatomegal+y\b", re.IGNORECASE), "hepatomegaly"),
    (re.compile(r"\bsplenomegal+y\b", re.IGNORECASE), "splenomegaly"),
    (re.compile(r"\bprostatomegal+y\b", re.IGNORECASE), "prostatomegaly"),
    (re.compile(r"\bhydronephrosys\b", re.IGNORECASE), "hydronephrosis"),
    (re.compile(r"\bnephrolithiasys\b", re.IGNORECASE), "nephrolithiasis"),
    (re.compile(r"\binfilteration\b", re.IGNORECASE), "infiltration"),
    (re.compile(r"\badenexal\b", re.IGNORECASE), "adnexal"),
    (re.compile(r"\badenexa\b", re.IGNORECASE), "adnexa"),
    (re.compile(r"\bcalcul(?:ii|is|uses)\b", re.IGNORECASE), "calculi"),
]

_CALCULUS_SITE = r"(?:(?:small|tiny|large)\s+)?(?:(?:renal|ureteric|vesical|gall\s*bladder|cbd)\s+)?"

_PLURAL_FIXES: list[tuple[re.Pattern, str]] = [
    (
        re.compile(
            r"\b(multiple|bilateral|several|numerous|few|two|three|four)\s+(" + _CALCULUS_SITE + r")calculus\b",
            re.IGNORECASE,
        ),
        r"\1 \2calculi",
    ),
    (
        re.compile(r"\b(single|solitary|one|a)\s+(" + _CALCULUS_SITE + r")calculi\b", re.IGNORECASE),
        r"\1 \2calculus",
    ),
]

_DIFFUSE_THICKENING_RE = re.compile(
    r"\bdiffuse(?:ly)?\s+(?:(?:and\s+)?(?:irregular(?:ly)?|uniform(?:ly)?|circumferential(?:ly)?)\s+)?"
    r"(?:wall\s+)?thicken(?:ed|ing)\b"
    r"|\bwalls?\s+(?:are\s+|is\s+)?diffusely\s+thick(?:ened)?\b"
    r"|\bdiffuse(?:ly)?\s+thick(?:ened)?\s+walls?\b",
    re.IGNORECASE,
)
_NEGATION_RE = re.compile(r"\b(?:no|not|without|negative\s+for|absence\s+of|free\s+of)\b", re.IGNORECASE)
_CYSTITIS_RE = re.compile(r"\bcystitis\b", re.IGNORECASE)
_CLAUSE_SPLIT_RE = re.compile(r"[.;\n]+")


def _match_case(replacement: str, original: str) -> str:
    if original[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def canonicalize_terms(text: str) -> str:
    """Fix known misspellings and calculus singular/plural agreement."""
    for pattern, replacement in _SPELLING_FIXES:
        text = pattern.sub(lambda m, r=replacement: _match_case(r, m.group(0)), text)
    for pattern, replacement in _PLURAL_FIXES:
        text = pattern.sub(replacement, text)
    return text


def indicates_diffuse_bladder_thickening(bladder_text: str) -> bool:
    """True when a clause reports diffuse wall thickening without negating it."""
    for clause in _CLAUSE_SPLIT_RE.split(bladder_text or ""):
        match = _DIFFUSE_THICKENING_RE.search(clause)
        if match and not _NEGATION_RE.search(clause[:match.start()]):
            return True
    return False


def _append_sentence(text: str, sentence: str) -> str:
    text = text.strip()
    if not text:
        return sentence
    if text[-1] not in ".!?":
        text += "."
    return f"{text} {sentence}"


def normalize_impression(impression: str, bladder_text: str) -> str:
    text = canonicalize_terms(impression or "").strip()
    if indicates_diffuse_bladder_thickening(bladder_text) and not _CYSTITIS_RE.search(text):
        text = _append_sentence(text, CYSTITIS_IMPRESSION)
    return text
