"""
Prompt construction for dictation extraction and section regeneration.

Extraction prompts ask the model to listen to a radiologist's dictation and
return JSON only: canonical USG fields for structured templates, or an
observations string for free-text templates. Structured prompts also ask
for self-reported abnormality signals (abnormal_blocks, abnormal_fields,
complex_blocks) that the reconciliation step cross-checks.

Regeneration prompts are deliberately narrow: one block, its baseline and
current lines, and only that block's dictated field values.
"""

from __future__ import annotations

import json
from typing import Optional

from usg.blocks import AnatomicalBlock
from usg.fields import Gender, MEASUREMENT_FIELD_UNITS, canonical_keys
from usg.templates import ReportTemplate

DEFAULT_DISCLAIMER = "Draft only. Must be reviewed and signed by the doctor."
UNCLEAR_MARKER = "[Unclear - needs review]"

FORBIDDEN_HEADERS = ("impression", "conclusion", "diagnosis", "plan", "advice", "recommendation")

# Per-field guidance; the values plug straight into the report builder.
_FIELD_GUIDANCE: dict[str, str] = {
    "liver_main": "sentence/phrase describing liver size/echotexture",
    "liver_focal_lesion": "full sentence",
    "liver_hepatic_veins": "full sentence",
    "liver_ihbr": "full sentence",
    "liver_portal_vein": "full sentence",
    "gallbladder_main": "sentence/phrase describing wall/contour",
    "gallbladder_calculus_sludge": "full sentence",
    "cbd_main": 'full sentence (e.g., "CBD is normal.")',
    "cbd_measurement_mm": "number only, CBD calibre in mm",
    "pancreas_main": "sentence/phrase for size/shape/contour",
    "pancreas_echotexture": "full sentence",
    "spleen_main": "sentence/phrase",
    "spleen_focal_lesion": "full sentence",
    "kidneys_size": (
        "include right/left measurements if mentioned "
        '(e.g., "Right Kidney    : 116x46 mm      Left kidney   :   105x52 mm")'
    ),
    "kidneys_main": "full sentence",
    "kidneys_cmd": "full sentence",
    "kidneys_cortical_scarring": "full sentence",
    "kidneys_parenchyma": "full sentence",
    "kidneys_calculus_hydronephrosis": "full sentence",
    "ureters_main": "full sentence",
    "bladder_main": "sentence/phrase",
    "bladder_mass_calculus": "full sentence",
    "post_void_residual_ml": "number only, post-void residual volume in ml",
    "prostate_main": "full sentence (male only)",
    "prostate_echotexture": "full sentence (male only)",
    "prostate_volume_cc": "number only, prostate volume in cc (male only)",
    "uterus_main": "full sentence (female only)",
    "uterus_myometrium": "full sentence (female only)",
    "endometrium_measurement_mm": "number only (female only)",
    "ovaries_main": "full sentence (female only)",
    "adnexal_mass": "full sentence (female only)",
    "peritoneal_fluid": "full sentence",
    "lymph_nodes": "full sentence",
    "impression": (
        "if spoken, use it. If not spoken, infer concise impression from abnormal "
        "extracted findings. If all findings are normal/unremarkable, keep empty."
    ),
    "correlate_clinically": '"Please correlate clinically." if dictated; empty if not mentioned',
}


def _schema_text(template: ReportTemplate) -> str:
    schema = {
        "template_id": template.template_id,
        "patient_name": "",
        "patient_gender": "",
        "exam_date": "",
        "fields": {key: "" for key in canonical_keys(template.variant)},
        "other_observations": [],
        "abnormal_blocks": [],
        "abnormal_fields": [],
        "complex_blocks": [],
        "extraction_confidence": 0,
        "flags": [],
        "disclaimer": DEFAULT_DISCLAIMER,
    }
    return json.dumps(schema, indent=2)


def _template_header(template: ReportTemplate) -> str:
    order = " > ".join(template.headings) if template.headings else "Use logical order"
    return (
        f"Template: {template.title} ({template.template_id})\n"
        f"Allowed topics: {', '.join(template.allowed_topics)}\n"
        f"Preferred order: {order}"
    )


class PromptEngine:
    """Builds system and user prompts for each model call the pipeline makes."""

    # ── Extraction ──────────────────────────────────────────────────

    def build_extraction_system_prompt(self, template: ReportTemplate) -> str:
        if not template.is_structured:
            return self._free_text_system_prompt()

        measurement_keys = [k for k in canonical_keys(template.variant) if k in MEASUREMENT_FIELD_UNITS]
        return (
            "You are a radiology documentation assistant. Follow strict rules and output JSON only.\n\n"
            "STRICT RULES:\n"
            "- Return JSON only. No markdown, no code fences.\n"
            f"- Use the provided {template.title} template for context, but do NOT output it directly.\n"
            "- Output MUST include the full fields object with ALL keys present. Do NOT omit keys.\n"
            "- Fill ONLY the fields object, patient_name, patient_gender, exam_date, "
            "other_observations and the abnormality signals.\n"
            "- Ignore non-dictation audio (patient conversation, small talk, procedure chatter). "
            "Extract only reportable findings.\n"
            "- If a finding does not fit the provided canonical fields, put it in other_observations.\n"
            "- other_observations MUST contain only findings relevant to this examination. "
            "Do NOT include chatter/noise/admin instructions.\n"
            "- If a field is not explicitly mentioned, return an empty string for that field.\n"
            "- Exception for impression: if not explicitly spoken, infer a concise impression "
            "from abnormal extracted findings.\n"
            "- If extracted findings are all normal/unremarkable, keep impression as empty string.\n"
            "- If an organ is surgically absent or was not visualized, say so in its main field "
            "and leave its detail fields empty.\n"
            "- Strings must be valid JSON (no unescaped newlines).\n"
            f'- If uncertain, write "{UNCLEAR_MARKER}" and add a flag.\n'
            f"- For {', '.join(measurement_keys)}, return numbers only (no units).\n"
            "- abnormal_blocks: section names (e.g. LIVER, GALLBLADDER, KIDNEYS) whose findings are abnormal.\n"
            "- abnormal_fields: field keys whose values describe an abnormal finding.\n"
            "- complex_blocks: abnormal sections with multiple or lateralised findings.\n"
            "- extraction_confidence: number between 0 and 1.\n\n"
            "Return JSON ONLY with schema:\n"
            f"{_schema_text(template)}"
        )

    def _free_text_system_prompt(self) -> str:
        return (
            "You are a radiology documentation assistant. Follow strict rules and output JSON only.\n\n"
            "STRICT RULES:\n"
            "- Output must contain ONLY OBSERVATIONS / FINDINGS.\n"
            "- Do NOT include Impression, Conclusion, Diagnosis, Advice, Plan, or Recommendations.\n"
            "- Do NOT add normal findings unless explicitly spoken in the audio.\n"
            f'- Do NOT infer missing info. If uncertain, write "{UNCLEAR_MARKER}" and add a flag.\n'
            "- Ignore non-dictation audio (patient conversation, small talk, procedure chatter). "
            "Extract only reportable findings.\n"
            "- Pay special attention to negations, laterality, and measurements/units.\n\n"
            "Return JSON ONLY with schema:\n"
            "{\n"
            '  "template_id": "...",\n'
            '  "observations": "...",\n'
            '  "flags": ["..."],\n'
            f'  "disclaimer": "{DEFAULT_DISCLAIMER}"\n'
            "}"
        )

    def build_extraction_user_prompt(
        self,
        template: ReportTemplate,
        baseline_text: Optional[str] = None,
        gender: Optional[Gender] = None,
    ) -> str:
        header = _template_header(template)
        if not template.is_structured:
            return (
                f"{header}\n\n"
                "Forbidden output sections: Impression, Conclusion, Diagnosis, Advice, Plan, Recommendations.\n"
                "Only return OBSERVATIONS / FINDINGS.\n\n"
                "Do NOT add facts that are not explicitly spoken in the audio."
            )

        keys = canonical_keys(template.variant)
        guidance = "\n".join(f"- {key}: {_FIELD_GUIDANCE.get(key, 'full sentence')}" for key in keys)
        gender_note = f"\nTemplate gender: {gender.label}" if gender else ""
        prompt = (
            f"{header}{gender_note}\n\n"
            "PATIENT INFO:\n"
            "- patient_name: full patient name as spoken (if mentioned)\n"
            "- patient_gender: male/female as spoken (if mentioned)\n"
            "- exam_date: date as spoken (if mentioned)\n\n"
            "FIELD GUIDANCE (values plug into the report builder):\n"
            f"{guidance}\n"
            "- other_observations: only findings not fitting canonical keys (array of concise strings). "
            "Exclude noise/chatter/admin lines.\n\n"
            f"Allowed field keys: {', '.join(keys)}\n"
        )
        if baseline_text:
            prompt += (
                f"\n{template.title.upper()} TEMPLATE (for context only; do not output directly):\n"
                f"{baseline_text}\n"
            )
        return prompt

    def build_json_retry_prompt(self, user_prompt: str) -> str:
        """Re-ask after output that could not be parsed at all."""
        return (
            "Your previous response was not valid JSON and could not be parsed.\n"
            "Return valid JSON only: a single JSON object matching the schema, "
            "no markdown, no code fences, no commentary, no unescaped newlines inside strings.\n\n"
            f"{user_prompt}"
        )

    # ── Section regeneration ────────────────────────────────────────

    def build_regeneration_system_prompt(self, strict: bool = False) -> str:
        prompt = (
            "You are a radiology report editor. Rewrite ONE section of an ultrasound report.\n\n"
            "STRICT RULES:\n"
            "- Use ONLY the dictated field values provided as ground truth. Do NOT add findings.\n"
            "- Keep the style and tone of the baseline lines.\n"
            "- Preserve every measurement, laterality (right/left) and negation exactly.\n"
            "- Do NOT include the section heading in the lines.\n"
            "- Return JSON only with schema:\n"
            '{\n  "blockId": "<the requested block id>",\n  "lines": ["..."]\n}'
        )
        if strict:
            prompt += (
                "\n\nReturn exactly one JSON object and nothing else. "
                "blockId MUST equal the requested block id and lines MUST be a non-empty array of strings."
            )
        return prompt

    def build_regeneration_user_prompt(
        self,
        block: AnatomicalBlock,
        baseline_lines: list[str],
        current_lines: list[str],
        field_values: dict[str, str],
    ) -> str:
        baseline = "\n".join(baseline_lines) or "(none)"
        current = "\n".join(current_lines) or "(none)"
        values = json.dumps(field_values, indent=2, ensure_ascii=False)
        return (
            f"Block id: {block.block_id}\n"
            f"Section heading: {block.heading}\n\n"
            f"BASELINE LINES (normal template wording):\n{baseline}\n\n"
            f"CURRENT LINES (assembled from dictation):\n{current}\n\n"
            f"DICTATED FIELD VALUES (ground truth):\n{values}\n\n"
            "Rewrite the current lines into fluent report sentences for this section only."
        )
