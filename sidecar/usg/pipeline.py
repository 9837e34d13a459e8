"""
Report generation pipeline: model output in, reviewed-draft report out.

Structured (USG) templates:
  parse -> resolve canonical fields -> normalize organ states ->
  assemble -> reconcile self-reported abnormality signals ->
  regenerate agreed abnormal + complex sections -> append other observations

Free-text templates:
  parse -> take the observations string -> strip forbidden sections

Only two conditions fail a request: the model transport raising, and model
output that stays unparseable after one "valid JSON only" retry. Everything
else degrades to defaults plus a flag.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

from llm.client import AudioPayload
from llm.json_extractor import DEFAULT_FALLBACK_SCHEMA, FallbackSchema, parse_model_json
from llm.prompt_engine import DEFAULT_DISCLAIMER, FORBIDDEN_HEADERS, UNCLEAR_MARKER, PromptEngine
from usg.assembler import assemble
from usg.blocks import blocks_for
from usg.field_resolver import (
    has_all_canonical_keys,
    normalize_gender,
    resolve_extraction_confidence,
    resolve_fields,
    resolve_patient_info,
    resolve_string_list,
)
from usg.fields import Gender, baseline_defaults, canonical_keys
from usg.observations import append_other_observations, extract_other_observations, sanitize_observations
from usg.organ_state import normalize
from usg.reconciliation import reconcile
from usg.regeneration import RegenerationAttempt, regenerate_sections
from usg.templates import ReportTemplate
from usg.transport import ModelTransport

logger = logging.getLogger(__name__)

REGENERATION_ENABLED = os.getenv("REGENERATION_ENABLED", "true").lower() == "true"
REGENERATION_MAX_BLOCKS = int(os.getenv("REGENERATION_MAX_BLOCKS", "3"))
LOW_CONFIDENCE_THRESHOLD = 0.5

_SELF_REPORT_ARRAYS = ("abnormal_blocks", "abnormal_fields", "complex_blocks")


class ReportGenerationError(Exception):
    """Base class for errors that prevent a report from being produced."""


class ModelTransportError(ReportGenerationError):
    """The model endpoint could not be reached or returned an error."""


class UnparseableModelOutputError(ReportGenerationError):
    """Model output could not be parsed, even after a JSON-only retry."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


@dataclass
class GenerationResult:
    template_id: str
    observations: str
    flags: list[str]
    disclaimer: str
    raw_text: str = ""
    gender: Optional[Gender] = None
    regeneration_attempts: list[RegenerationAttempt] = field(default_factory=list)


def _dedupe(flags: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for flag in flags:
        if flag and flag not in seen:
            seen.add(flag)
            out.append(flag)
    return out


def parse_schema_for(template: ReportTemplate) -> FallbackSchema:
    if not template.is_structured:
        return FallbackSchema(string_fields=DEFAULT_FALLBACK_SCHEMA.string_fields, array_fields=("flags",))
    return FallbackSchema(
        string_fields=DEFAULT_FALLBACK_SCHEMA.string_fields,
        nested_fields=canonical_keys(template.variant),
        array_fields=("flags", "other_observations") + _SELF_REPORT_ARRAYS,
    )


async def _call_model(
    transport: ModelTransport,
    system_prompt: str,
    user_prompt: str,
    audio: Optional[AudioPayload],
) -> str:
    try:
        return await transport(system_prompt, user_prompt, audio)
    except ReportGenerationError:
        raise
    except Exception as e:
        logger.warning("Model transport failed: %s", e)
        raise ModelTransportError(str(e) or "Model request failed.") from e


def _model_flags(parsed: dict[str, Any]) -> list[str]:
    flags = parsed.get("flags")
    if not isinstance(flags, list):
        return []
    return [str(flag) for flag in flags if flag is not None and str(flag).strip()]


def _disclaimer(parsed: dict[str, Any]) -> str:
    value = parsed.get("disclaimer")
    return value if isinstance(value, str) and value.strip() else DEFAULT_DISCLAIMER


async def generate_report(
    template: ReportTemplate,
    transport: Optional[ModelTransport] = None,
    audio: Optional[AudioPayload] = None,
    raw_text: Optional[str] = None,
    gender: Optional[Gender] = None,
    prompt_engine: Optional[PromptEngine] = None,
    regenerate: bool = REGENERATION_ENABLED,
    max_regeneration_blocks: int = REGENERATION_MAX_BLOCKS,
) -> GenerationResult:
    """Produce a report for ``template`` from dictation audio or a replayed model response.

    Either ``raw_text`` (already obtained model output) or a ``transport``
    must be given. The transport is also used for the JSON-only retry and
    for section regeneration.
    """
    engine = prompt_engine or PromptEngine()
    template_gender = gender or template.gender or Gender.MALE

    system_prompt = engine.build_extraction_system_prompt(template)
    baseline_text = None
    if template.is_structured:
        baseline_text = assemble({}, set(), template_gender, template.variant).to_text()
    user_prompt = engine.build_extraction_user_prompt(template, baseline_text, template_gender)

    if raw_text is None:
        if transport is None:
            raise ValueError("generate_report needs raw_text or a transport")
        raw_text = await _call_model(transport, system_prompt, user_prompt, audio)

    schema = parse_schema_for(template)
    parsed = parse_model_json(raw_text, schema)
    if parsed is None:
        if transport is None:
            raise UnparseableModelOutputError("Model returned invalid JSON.", raw_text)
        logger.warning("Model output unparseable; retrying with JSON-only instruction")
        raw_text = await _call_model(transport, system_prompt, engine.build_json_retry_prompt(user_prompt), audio)
        parsed = parse_model_json(raw_text, schema)
        if parsed is None:
            raise UnparseableModelOutputError("Model returned invalid JSON.", raw_text)

    if template.is_structured:
        return await _structured_report(
            template, parsed, raw_text, template_gender, transport, engine,
            regenerate, max_regeneration_blocks,
        )
    return _free_text_report(template, parsed, raw_text)


async def _structured_report(
    template: ReportTemplate,
    parsed: dict[str, Any],
    raw_text: str,
    template_gender: Gender,
    transport: Optional[ModelTransport],
    engine: PromptEngine,
    regenerate: bool,
    max_regeneration_blocks: int,
) -> GenerationResult:
    variant = template.variant
    keys = canonical_keys(variant)
    extra_flags: list[str] = []

    patient = resolve_patient_info(parsed)
    spoken_gender = normalize_gender(patient.gender_raw)
    effective_gender = template_gender
    if spoken_gender is not None:
        effective_gender = spoken_gender
        if spoken_gender != template_gender:
            extra_flags.append(
                f"Gender mismatch: template={template_gender.label}, audio={spoken_gender.label}"
            )
    elif patient.gender_raw.strip():
        extra_flags.append("Patient gender unclear; using template gender")

    if not has_all_canonical_keys(parsed, keys):
        extra_flags.append("Model output missing some canonical fields; missing fields treated as empty.")

    fields = resolve_fields(parsed, keys)
    normalized = normalize(fields, effective_gender, variant)
    defaults = baseline_defaults(variant, effective_gender)
    report = assemble(normalized.fields, normalized.suppressed, effective_gender, variant, patient, defaults)

    logger.info(
        "Assembled %s report (gender=%s, suppressed=%d)",
        template.template_id, effective_gender.value, len(normalized.suppressed),
    )

    reconciliation = reconcile(
        normalized.fields,
        blocks_for(variant, effective_gender),
        resolve_string_list(parsed, ["abnormal_blocks", "abnormalBlocks"]),
        resolve_string_list(parsed, ["abnormal_fields", "abnormalFields"]),
        resolve_string_list(parsed, ["complex_blocks", "complexBlocks"]),
        defaults,
        max_candidates=max_regeneration_blocks,
    )
    extra_flags.extend(reconciliation.mismatch_flags)

    attempts: list[RegenerationAttempt] = []
    if regenerate and transport is not None and reconciliation.regeneration_candidates:
        baseline = assemble({}, set(), effective_gender, variant, defaults=defaults)
        outcome = await regenerate_sections(
            report, baseline, reconciliation.regeneration_candidates,
            normalized.fields, transport, engine,
        )
        extra_flags.extend(outcome.flags)
        attempts = outcome.attempts

    observations = report.to_text()
    other = extract_other_observations(parsed)
    if other.dropped_count:
        extra_flags.append("Filtered non-USG-abdomen or noisy lines from OTHER OBSERVATIONS.")
    if other.accepted:
        observations = append_other_observations(observations, other.accepted)
        extra_flags.append("Additional non-canonical observations appended under OTHER OBSERVATIONS.")

    confidence = resolve_extraction_confidence(parsed)
    if confidence is not None and confidence < LOW_CONFIDENCE_THRESHOLD:
        extra_flags.append("Low extraction confidence; review report carefully.")

    return GenerationResult(
        template_id=template.template_id,
        observations=observations,
        flags=_dedupe(_model_flags(parsed) + extra_flags),
        disclaimer=_disclaimer(parsed),
        raw_text=raw_text,
        gender=effective_gender,
        regeneration_attempts=attempts,
    )


def _free_text_report(template: ReportTemplate, parsed: dict[str, Any], raw_text: str) -> GenerationResult:
    observations = parsed.get("observations")
    observations = observations if isinstance(observations, str) else ""
    text, removed = sanitize_observations(observations, FORBIDDEN_HEADERS)

    flags = _model_flags(parsed)
    if removed:
        flags = ["Removed forbidden section"] + flags
    if not text.strip():
        flags = ["No clear findings detected in audio"] + flags
        text = UNCLEAR_MARKER

    return GenerationResult(
        template_id=template.template_id,
        observations=text,
        flags=_dedupe(flags),
        disclaimer=_disclaimer(parsed),
        raw_text=raw_text,
    )
