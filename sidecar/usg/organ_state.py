"""
Organ visualization state inference and field suppression.

Each organ is classified from two corpora: its own fields (local) and the
impression (global). Lexicons are checked in a fixed priority order and the
first hit wins; a local hit always beats a global one:

    surgically_absent > not_visualized > not_assessed > limited_visualization

An organ that is anything but visualized has its detail fields emptied and
suppressed so baseline "normal" sentences cannot reappear next to a
"gall bladder not visualized" statement. Opposite-gender organ groups are
suppressed unconditionally.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from usg.fields import Gender, OrganGroup, ReportVariant, organ_groups
from usg.terminology import normalize_impression

logger = logging.getLogger(__name__)


class OrganState(str, Enum):
    VISUALIZED = "visualized"
    LIMITED_VISUALIZATION = "limited_visualization"
    NOT_VISUALIZED = "not_visualized"
    NOT_ASSESSED = "not_assessed"
    SURGICALLY_ABSENT = "surgically_absent"


def _compile(patterns: list[str]) -> list[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# ---------------------------------------------------------------------------
# Lexicons
# ---------------------------------------------------------------------------

_GENERIC_SURGICAL = _compile([
    r"\bsurgically\s+(?:removed|absent|excised)\b",
    r"\b(?:removed|excised)\s+surgically\b",
    r"\bpost[-\s]?operative(?:ly)?\s+absent\b",
])

_NOT_VISUALIZED = _compile([
    r"\bnot\s+visuali[sz]ed\b",
    r"\bnon[-\s]?visuali[sz]ed\b",
    r"\bnon[-\s]?visuali[sz]ation\b",
    r"\b(?:could|can)\s*not\s+be\s+(?:visuali[sz]ed|seen|identified|localized|localised)\b",
    r"\bnot\s+(?:seen|identified)\s+(?:at\s+all|separately)\b",
])

_NOT_ASSESSED = _compile([
    r"\bnot\s+(?:assessed|evaluated|examined|scanned|imaged|commented\s+upon)\b",
    r"\bnot\s+included\s+in\s+(?:the\s+|this\s+)?(?:study|scan|examination)\b",
    r"\bnot\s+part\s+of\s+(?:the\s+|this\s+)?(?:study|scan|examination)\b",
])

_LIMITED = _compile([
    r"\bpartially\s+(?:visuali[sz]ed|seen|distended|filled)\b",
    r"\b(?:poorly|sub-?optimally|incompletely|partly)\s+(?:visuali[sz]ed|seen|distended|evaluated|assessed)\b",
    r"\bnot\s+well\s+(?:visuali[sz]ed|seen|distended)\b",
    r"\bobscured\b",
    r"\bbowel\s+gas\b",
    r"\blimited\s+(?:visuali[sz]ation|evaluation|study|assessment|view)\b",
    r"\b(?:contracted|collapsed)\b",
    r"\b(?:empty|undistended|non[-\s]?distended)\s+(?:urinary\s+)?bladder\b",
    r"\bbladder\s+(?:is\s+)?(?:empty|undistended)\b",
])

# Procedures that remove the whole organ (or both of a paired organ).
_SURGICAL_TERMS: dict[str, list[re.Pattern]] = {
    "liver": [],
    "gallbladder": _compile([r"\bcholecystectom(?:y|ised|ized)\b"]),
    "pancreas": _compile([r"\bpancreatectomy\b"]),
    "spleen": _compile([r"\bsplenectom(?:y|ised|ized)\b"]),
    "kidneys": _compile([r"\bbilateral\s+nephrectom(?:y|ies)\b"]),
    "bladder": _compile([r"\bcystectomy\b"]),
    "prostate": _compile([r"\bprostatectomy\b"]),
    "uterus": _compile([r"\bhysterectom(?:y|ised|ized)\b", r"\btah\b"]),
    "adnexa": _compile([
        r"\bbilateral\s+(?:salpingo[-\s]?)?oophorectom(?:y|ies)\b",
        r"\bbso\b",
    ]),
}

_ORGAN_NAMES: dict[str, re.Pattern] = {
    "liver": re.compile(r"\b(?:liver|hepatic)\b", re.IGNORECASE),
    "gallbladder": re.compile(r"\b(?:gall\s*bladder|gb)\b", re.IGNORECASE),
    "pancreas": re.compile(r"\bpancrea(?:s|tic)\b", re.IGNORECASE),
    "spleen": re.compile(r"\b(?:spleen|splenic)\b", re.IGNORECASE),
    "kidneys": re.compile(r"\b(?:kidneys?|renal)\b", re.IGNORECASE),
    "bladder": re.compile(r"(?<!gall )\b(?:urinary\s+)?bladder\b", re.IGNORECASE),
    "prostate": re.compile(r"\bprostat(?:e|ic)\b", re.IGNORECASE),
    "uterus": re.compile(r"\b(?:uterus|uterine|endometri(?:um|al))\b", re.IGNORECASE),
    "adnexa": re.compile(r"\b(?:ovary|ovaries|ovarian|adnexa|adnexal|adenexa)\b", re.IGNORECASE),
}

# A laterality qualifier on a paired organ describes one side only.
_PAIRED_ORGANS = {"kidneys", "adnexa"}
_UNILATERAL_RE = re.compile(r"\b(?:left|right|rt|lt)\b", re.IGNORECASE)
_BILATERAL_RE = re.compile(r"\b(?:both|bilateral(?:ly)?)\b", re.IGNORECASE)

_CLAUSE_SPLIT_RE = re.compile(r"[.;\n]+|,(?!\d)")

# "not contracted", "no bowel gas" and the like describe a normal study.
_NEGATABLE_STATES = {OrganState.LIMITED_VISUALIZATION}
_NEGATION_RE = re.compile(r"\b(?:no|not|without|nor|free\s+of|absence\s+of)\b", re.IGNORECASE)
_NEGATION_WINDOW_WORDS = 4

Lexicons = list[tuple[OrganState, list[re.Pattern]]]

_GENERIC_LEXICONS: Lexicons = [
    (OrganState.SURGICALLY_ABSENT, _GENERIC_SURGICAL),
    (OrganState.NOT_VISUALIZED, _NOT_VISUALIZED),
    (OrganState.NOT_ASSESSED, _NOT_ASSESSED),
    (OrganState.LIMITED_VISUALIZATION, _LIMITED),
]


def _organ_lexicons(organ: str) -> Lexicons:
    lexicons = list(_GENERIC_LEXICONS)
    lexicons[0] = (OrganState.SURGICALLY_ABSENT, _GENERIC_SURGICAL + _SURGICAL_TERMS.get(organ, []))
    return lexicons


_LEXICONS_BY_ORGAN: dict[str, Lexicons] = {organ: _organ_lexicons(organ) for organ in _SURGICAL_TERMS}


def _negated(corpus: str, start: int) -> bool:
    clause = _CLAUSE_SPLIT_RE.split(corpus[:start])[-1]
    preceding = clause.split()[-_NEGATION_WINDOW_WORDS:]
    return bool(_NEGATION_RE.search(" ".join(preceding)))


def _matches(state: OrganState, pattern: re.Pattern, corpus: str) -> bool:
    if state not in _NEGATABLE_STATES:
        return pattern.search(corpus) is not None
    return any(not _negated(corpus, m.start()) for m in pattern.finditer(corpus))


def classify_corpus(corpus: str, lexicons: Lexicons) -> Optional[OrganState]:
    """First lexicon (in priority order) with a matching pattern, or None."""
    if not corpus or not corpus.strip():
        return None
    for state, patterns in lexicons:
        if any(_matches(state, pattern, corpus) for pattern in patterns):
            return state
    return None


def _clauses(text: str) -> list[str]:
    return [c.strip() for c in _CLAUSE_SPLIT_RE.split(text or "") if c.strip()]


def _usable_clauses(organ: str, clauses: list[str]) -> list[str]:
    if organ not in _PAIRED_ORGANS:
        return clauses
    return [
        c for c in clauses
        if not _UNILATERAL_RE.search(c) or _BILATERAL_RE.search(c)
    ]


def classify_local(organ: str, local_text: str) -> Optional[OrganState]:
    clauses = _usable_clauses(organ, _clauses(local_text))
    return classify_corpus(" . ".join(clauses), _LEXICONS_BY_ORGAN[organ])


def classify_global(organ: str, impression: str) -> Optional[OrganState]:
    """Classify from the impression, considering only clauses naming the organ."""
    clauses = _usable_clauses(organ, _clauses(impression))
    if any(p.search(c) for c in clauses for p in _SURGICAL_TERMS.get(organ, [])):
        return OrganState.SURGICALLY_ABSENT
    naming = [c for c in clauses if _ORGAN_NAMES[organ].search(c)]
    return classify_corpus(" . ".join(naming), _GENERIC_LEXICONS)


def infer_organ_state(organ: str, local_text: str, impression: str) -> OrganState:
    return (
        classify_local(organ, local_text)
        or classify_global(organ, impression)
        or OrganState.VISUALIZED
    )


# ---------------------------------------------------------------------------
# State sentences
# ---------------------------------------------------------------------------

_STATE_SUBJECTS: dict[str, tuple[str, str]] = {
    "liver": ("", "is"),
    "gallbladder": ("", "is"),
    "pancreas": ("", "is"),
    "spleen": ("", "is"),
    "kidneys": ("Both kidneys", "are"),
    "bladder": ("", "is"),
    "prostate": ("The prostate gland", "is"),
    "uterus": ("Uterus", "is"),
    "adnexa": ("Both ovaries", "are"),
}

_SURGICAL_STATUS: dict[str, str] = {
    "gallbladder": "post-cholecystectomy",
    "pancreas": "post-pancreatectomy",
    "spleen": "post-splenectomy",
    "kidneys": "post-bilateral nephrectomy",
    "bladder": "post-cystectomy",
    "prostate": "post-prostatectomy",
    "uterus": "post-hysterectomy",
    "adnexa": "post-bilateral oophorectomy",
}

_STATE_PHRASES: dict[OrganState, str] = {
    OrganState.NOT_VISUALIZED: "not visualized",
    OrganState.NOT_ASSESSED: "not assessed",
    OrganState.LIMITED_VISUALIZATION: "only partially visualized; evaluation is limited",
}


# Used when the state sentence follows other text rather than a heading.
_ORGAN_SUBJECTS: dict[str, str] = {
    "liver": "Liver",
    "gallbladder": "Gall bladder",
    "pancreas": "Pancreas",
    "spleen": "Spleen",
    "bladder": "Urinary bladder",
}


def state_sentence(organ: str, state: OrganState, named: bool = False) -> str:
    """Main-field sentence describing a non-visualized organ."""
    subject, verb = _STATE_SUBJECTS[organ]
    if named and not subject:
        subject = _ORGAN_SUBJECTS[organ]
    if state == OrganState.SURGICALLY_ABSENT:
        status = _SURGICAL_STATUS.get(organ)
        phrase = f"not visualized (likely {status} status)" if status else "surgically absent"
    else:
        phrase = _STATE_PHRASES[state]
    sentence = f"{verb} {phrase}."
    return f"{subject} {sentence}" if subject else sentence


def _state_sentences(organ: str) -> set[str]:
    return {state_sentence(organ, s) for s in OrganState if s != OrganState.VISUALIZED}


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


@dataclass
class NormalizedFields:
    fields: dict[str, str]
    suppressed: set[str] = field(default_factory=set)
    organ_states: dict[str, OrganState] = field(default_factory=dict)

    def is_visualized(self, organ: str) -> bool:
        return self.organ_states.get(organ, OrganState.VISUALIZED) == OrganState.VISUALIZED


def _suppress_group(
    group: OrganGroup,
    fields: dict[str, str],
    suppressed: set[str],
    state: OrganState,
    from_local: bool,
) -> None:
    for key in group.detail_fields:
        fields[key] = ""
        suppressed.add(key)
    main = fields.get(group.main_field, "").strip()
    if not main or main in _state_sentences(group.organ):
        suppressed.add(group.main_field)
        if not main:
            fields[group.main_field] = state_sentence(group.organ, state)
    elif from_local and classify_local(group.organ, main) != state:
        # The emptied detail fields carried the state; keep it in the main field.
        if not main.endswith((".", "!", "?")):
            main += "."
        fields[group.main_field] = f"{main} {state_sentence(group.organ, state, named=True)}"


def normalize(
    fields: dict[str, str],
    gender: Gender,
    variant: ReportVariant = ReportVariant.WHOLE_ABDOMEN,
) -> NormalizedFields:
    """Infer organ states, suppress contradicted fields, tidy the impression.

    The input mapping is not modified.
    """
    out = {key: (value or "").strip() for key, value in fields.items()}
    suppressed: set[str] = set()
    states: dict[str, OrganState] = {}
    impression = out.get("impression", "")

    for group in organ_groups(variant):
        if group.gender is not None and group.gender != gender:
            for key in group.field_keys:
                out[key] = ""
                suppressed.add(key)
            states[group.organ] = OrganState.NOT_ASSESSED
            continue

        local_text = " . ".join(out.get(key, "") for key in group.field_keys if out.get(key))
        local_state = classify_local(group.organ, local_text)
        state = local_state or classify_global(group.organ, impression) or OrganState.VISUALIZED
        states[group.organ] = state
        if state != OrganState.VISUALIZED:
            _suppress_group(group, out, suppressed, state, from_local=local_state is not None)
            logger.info("Organ %s classified %s; suppressed detail fields", group.organ, state.value)

    if "impression" in out:
        bladder_text = " . ".join(
            out.get(key, "") for key in ("bladder_main", "bladder_mass_calculus") if key not in suppressed
        )
        out["impression"] = normalize_impression(impression, bladder_text)

    return NormalizedFields(fields=out, suppressed=suppressed, organ_states=states)
