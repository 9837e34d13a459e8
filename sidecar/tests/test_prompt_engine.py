"""Tests for prompt construction and the template registry."""

import json

from llm.prompt_engine import DEFAULT_DISCLAIMER, UNCLEAR_MARKER, PromptEngine
from usg.blocks import blocks_for
from usg.fields import Gender, ReportVariant, canonical_keys
from usg.templates import TEMPLATES, get_template, list_templates


class TestTemplates:
    def test_lookup_strips_whitespace(self):
        assert get_template("  USG_KUB_FEMALE ").gender == Gender.FEMALE
        assert get_template("UNKNOWN") is None

    def test_structured_templates(self):
        structured = {t.template_id for t in list_templates() if t.is_structured}
        assert structured == {"USG_ABDOMEN_MALE", "USG_ABDOMEN_FEMALE", "USG_KUB_MALE", "USG_KUB_FEMALE"}

    def test_free_text_templates_have_topics(self):
        for template in TEMPLATES.values():
            assert template.allowed_topics
            assert template.title


class TestExtractionPrompts:
    def test_structured_system_prompt_embeds_schema(self):
        engine = PromptEngine()
        template = get_template("USG_ABDOMEN_MALE")
        prompt = engine.build_extraction_system_prompt(template)
        schema = json.loads(prompt.split("Return JSON ONLY with schema:\n", 1)[1])
        assert list(schema["fields"]) == list(canonical_keys(ReportVariant.WHOLE_ABDOMEN))
        assert schema["disclaimer"] == DEFAULT_DISCLAIMER
        assert "abnormal_blocks" in schema
        assert "cbd_measurement_mm" in prompt
        assert UNCLEAR_MARKER in prompt

    def test_structured_user_prompt(self):
        engine = PromptEngine()
        template = get_template("USG_KUB_MALE")
        prompt = engine.build_extraction_user_prompt(template, "BASELINE TEXT", Gender.FEMALE)
        assert "Template gender: Female" in prompt
        assert "Allowed field keys: " + ", ".join(canonical_keys(ReportVariant.KUB)) in prompt
        assert "BASELINE TEXT" in prompt
        assert "Forbidden output sections" not in prompt

    def test_free_text_prompts(self):
        engine = PromptEngine()
        template = get_template("CT_HEAD")
        system = engine.build_extraction_system_prompt(template)
        user = engine.build_extraction_user_prompt(template)
        assert "Output must contain ONLY OBSERVATIONS / FINDINGS." in system
        assert "Forbidden output sections:" in user
        assert "Template: CT Head (CT_HEAD)" in user

    def test_json_retry_prompt_wraps_original(self):
        prompt = PromptEngine().build_json_retry_prompt("ORIGINAL PROMPT")
        assert prompt.startswith("Your previous response was not valid JSON")
        assert "Return valid JSON only" in prompt
        assert prompt.endswith("ORIGINAL PROMPT")


class TestRegenerationPrompts:
    def test_strict_adds_single_object_rule(self):
        engine = PromptEngine()
        assert "Return exactly one JSON object" not in engine.build_regeneration_system_prompt()
        assert "Return exactly one JSON object" in engine.build_regeneration_system_prompt(strict=True)

    def test_user_prompt_sections(self):
        block = blocks_for(ReportVariant.KUB, Gender.MALE)[0]
        prompt = PromptEngine().build_regeneration_user_prompt(
            block, [], ["Right kidney shows a calculus."], {"kidneys_main": "Right renal calculus."},
        )
        assert "Block id: KIDNEYS" in prompt
        assert "BASELINE LINES (normal template wording):\n(none)" in prompt
        assert "Right kidney shows a calculus." in prompt
        assert '"kidneys_main": "Right renal calculus."' in prompt
