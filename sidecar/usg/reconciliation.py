"""
Cross-check the model's self-reported abnormality claims against signals
computed from the resolved fields.

Server-side, a field counts as abnormal when:
  (a) it is marked "[unclear ...]",
  (b) it is a block's measurement field and its leading number falls
      outside the block's normal range, or
  (c) it is free text that differs from the baseline default, contains an
      abnormal keyword, and that keyword is not negated.

Disagreements become user-facing flags; they never change the report.
Blocks that both sides call abnormal, and either side calls complex, are
returned as regeneration candidates (impression excluded, capped).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from usg.blocks import IMPRESSION_BLOCK_ID, AnatomicalBlock, contains_laterality, word_count

logger = logging.getLogger(__name__)

MAX_REGENERATION_CANDIDATES = 3
COMPLEX_WORD_THRESHOLD = 30
FIELD_MISMATCH_SAMPLE_SIZE = 3

_UNCLEAR_RE = re.compile(r"\[\s*unclear", re.IGNORECASE)
_LEADING_NUMBER_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")
_CLAUSE_SPLIT_RE = re.compile(r"[.;\n]+|,(?!\d)")
_WHITESPACE_RE = re.compile(r"\s+")

_ABNORMAL_KEYWORDS_RE = re.compile(
    r"\b(?:"
    r"calcul(?:us|i)|stones?|sludge|polyps?|mass(?:es)?|lesions?|cysts?|cystic|nodules?|nodular"
    r"|hydronephrosis|hydroureter\w*|pelvicalyceal\s+dilat\w*|dilat(?:ed|ation)|prominent"
    r"|thicken(?:ed|ing)|enlarged|enlargement|bulky|\w+megaly"
    r"|fatty|steatosis|coarse(?:ned)?|heterogen(?:ous|eous)|altered\s+echotexture"
    r"|(?:raised|increased)\s+echogenicity|cirrho(?:sis|tic)|echogenic\s+foci"
    r"|collection|ascites|free\s+fluid|effusion|abscess"
    r"|fibroids?|adenomyosis|cholecystitis|cystitis|pyelonephritis|nephritis"
    r"|hypoechoic|hyperechoic|anechoic|calcifi(?:ed|cation)|scarr?ing|shrunken|atrophic"
    r"|grade\s+(?:i{1,3}|[1-3])"
    r")\b",
    re.IGNORECASE,
)
_NEGATION_BEFORE_RE = re.compile(
    r"\b(?:no|not|without|absent|negative\s+for|free\s+of|absence\s+of|nil)\b", re.IGNORECASE
)
_NEGATION_AFTER_RE = re.compile(r"^\W*(?:\w+\W+){0,3}?(?:absent|not\s+seen|ruled\s+out)\b", re.IGNORECASE)
_NEGATION_WINDOW_WORDS = 6


@dataclass
class SignalVerdict:
    block_id: str
    ai_reported_abnormal: bool
    server_computed_abnormal: bool
    server_complex: bool = False
    ai_complex: bool = False
    abnormal_fields: list[str] = field(default_factory=list)

    @property
    def complex(self) -> bool:
        return self.server_complex or self.ai_complex

    @property
    def agrees(self) -> bool:
        return self.ai_reported_abnormal == self.server_computed_abnormal


@dataclass
class ReconciliationResult:
    mismatch_flags: list[str] = field(default_factory=list)
    regeneration_candidates: list[AnatomicalBlock] = field(default_factory=list)
    verdicts: dict[str, SignalVerdict] = field(default_factory=dict)


def _normalize_text(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", (text or "").strip().lower())


def _normalize_id(value: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", (value or "").upper())


def _keyword_negated(clause: str, start: int, end: int) -> bool:
    preceding = clause[:start].split()[-_NEGATION_WINDOW_WORDS:]
    if _NEGATION_BEFORE_RE.search(" ".join(preceding)):
        return True
    return bool(_NEGATION_AFTER_RE.match(clause[end:]))


def has_unnegated_abnormal_keyword(text: str) -> bool:
    for clause in _CLAUSE_SPLIT_RE.split(text or ""):
        for match in _ABNORMAL_KEYWORDS_RE.finditer(clause):
            if not _keyword_negated(clause, match.start(), match.end()):
                return True
    return False


def parse_leading_number(text: str) -> Optional[float]:
    match = _LEADING_NUMBER_RE.match(text or "")
    return float(match.group(1)) if match else None


def is_field_abnormal(
    key: str,
    value: str,
    block: AnatomicalBlock,
    defaults: dict[str, str],
) -> bool:
    value = (value or "").strip()
    if not value:
        return False
    if _UNCLEAR_RE.search(value):
        return True
    if block.measurement is not None and block.measurement.field_key == key:
        number = parse_leading_number(value)
        return number is not None and not block.measurement.contains(number)
    if _normalize_text(value) == _normalize_text(defaults.get(key, "")):
        return False
    return has_unnegated_abnormal_keyword(value)


def _block_complex(block: AnatomicalBlock, fields: dict[str, str], abnormal_count: int) -> bool:
    if abnormal_count >= 2:
        return True
    for key in block.field_keys:
        value = fields.get(key, "")
        if value and (contains_laterality(value) or word_count(value) > COMPLEX_WORD_THRESHOLD):
            return True
    return False


def compute_verdict(
    block: AnatomicalBlock,
    fields: dict[str, str],
    defaults: dict[str, str],
) -> tuple[list[str], bool]:
    """Return (abnormal field keys, complex) for one block."""
    abnormal = [
        key for key in block.field_keys
        if is_field_abnormal(key, fields.get(key, ""), block, defaults)
    ]
    return abnormal, _block_complex(block, fields, len(abnormal))


def _ai_block_ids(values: Iterable[str], blocks: list[AnatomicalBlock]) -> set[str]:
    """Match free-form block names ("Gall bladder", "liver") to block ids."""
    wanted = {_normalize_id(v) for v in values if v}
    matched = set()
    for block in blocks:
        if _normalize_id(block.block_id) in wanted or _normalize_id(block.label) in wanted:
            matched.add(block.block_id)
    return matched


def _format_field_sample(keys: list[str]) -> str:
    sample = ", ".join(keys[:FIELD_MISMATCH_SAMPLE_SIZE])
    overflow = len(keys) - FIELD_MISMATCH_SAMPLE_SIZE
    return f"{sample} (+{overflow} more)" if overflow > 0 else sample


def reconcile(
    fields: dict[str, str],
    blocks: list[AnatomicalBlock],
    ai_abnormal_blocks: Iterable[str],
    ai_abnormal_fields: Iterable[str],
    ai_complex_blocks: Iterable[str],
    defaults: dict[str, str],
    max_candidates: int = MAX_REGENERATION_CANDIDATES,
) -> ReconciliationResult:
    result = ReconciliationResult()
    ai_fields = {f.strip() for f in ai_abnormal_fields if f and f.strip()}
    use_field_level = bool(ai_fields)
    ai_blocks = _ai_block_ids(ai_abnormal_blocks, blocks)
    ai_complex = _ai_block_ids(ai_complex_blocks, blocks)

    server_only_fields: list[str] = []
    ai_only_fields: list[str] = []

    for block in blocks:
        abnormal_fields, server_complex = compute_verdict(block, fields, defaults)
        if use_field_level:
            ai_abnormal = any(key in ai_fields for key in block.field_keys)
        else:
            ai_abnormal = block.block_id in ai_blocks
        verdict = SignalVerdict(
            block_id=block.block_id,
            ai_reported_abnormal=ai_abnormal,
            server_computed_abnormal=bool(abnormal_fields),
            server_complex=server_complex,
            ai_complex=block.block_id in ai_complex,
            abnormal_fields=abnormal_fields,
        )
        result.verdicts[block.block_id] = verdict

        if not verdict.agrees:
            if verdict.server_computed_abnormal:
                result.mismatch_flags.append(
                    f"Abnormality mismatch in {block.label}: findings look abnormal "
                    f"but the model did not flag this section."
                )
            else:
                result.mismatch_flags.append(
                    f"Abnormality mismatch in {block.label}: the model flagged this "
                    f"section as abnormal but no abnormal finding was detected."
                )

        if use_field_level:
            for key in block.field_keys:
                server = key in abnormal_fields
                ai = key in ai_fields
                if server and not ai:
                    server_only_fields.append(key)
                elif ai and not server:
                    ai_only_fields.append(key)

        if (
            verdict.ai_reported_abnormal
            and verdict.server_computed_abnormal
            and verdict.complex
            and block.block_id != IMPRESSION_BLOCK_ID
            and len(result.regeneration_candidates) < max_candidates
        ):
            result.regeneration_candidates.append(block)

    if server_only_fields:
        result.mismatch_flags.append(
            "Field-level mismatch (abnormal findings not flagged by the model): "
            + _format_field_sample(server_only_fields)
        )
    if ai_only_fields:
        result.mismatch_flags.append(
            "Field-level mismatch (flagged by the model without abnormal findings): "
            + _format_field_sample(ai_only_fields)
        )

    logger.info(
        "Reconciliation: %d mismatch flag(s), %d regeneration candidate(s)",
        len(result.mismatch_flags),
        len(result.regeneration_candidates),
    )
    return result
