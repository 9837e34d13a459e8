"""Tests for tolerant model-JSON parsing and field salvage."""

import json

from llm.json_extractor import (
    FallbackSchema,
    escape_newlines_inside_strings,
    extract_flags,
    extract_string_array,
    extract_string_field,
    parse_model_json,
    remove_trailing_commas,
    strip_code_fence,
)

FIELDS_SCHEMA = FallbackSchema(
    string_fields=("observations", "disclaimer"),
    nested_fields=("liver_main", "gallbladder_main", "cbd_measurement_mm"),
    array_fields=("flags", "abnormal_blocks"),
)


class TestRepairStages:
    def test_strip_closed_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strip_unclosed_fence(self):
        assert strip_code_fence('```json\n{"a": 1').strip() == '{"a": 1'

    def test_escape_newline_only_inside_strings(self):
        text = '{\n"a": "one\ntwo"\n}'
        assert escape_newlines_inside_strings(text) == '{\n"a": "one\\ntwo"\n}'

    def test_trailing_commas_outside_strings(self):
        assert remove_trailing_commas('{"a": [1, 2,], "b": "x,}",}') == '{"a": [1, 2], "b": "x,}"}'


class TestParseModelJson:
    def test_plain_object(self):
        assert parse_model_json('{"observations": "Normal study."}') == {"observations": "Normal study."}

    def test_object_inside_prose_and_fence(self):
        raw = 'Here is the report:\n```json\n{"flags": [], "observations": "ok"}\n```\nDone.'
        assert parse_model_json(raw) == {"flags": [], "observations": "ok"}

    def test_fence_inside_string_value(self):
        payload = {"observations": "see ``` marker", "flags": []}
        raw = "```json\n" + json.dumps(payload) + "\n```"
        assert parse_model_json(raw) == payload
        assert parse_model_json(raw) == parse_model_json(json.dumps(payload))

    def test_control_and_zero_width_characters(self):
        assert parse_model_json('{"observations": "Normal\x00 study."}') == {"observations": "Normal study."}
        raw = '{\u200b"flags": [],\ufeff "observations": "ok"}'
        assert parse_model_json(raw) == {"flags": [], "observations": "ok"}

    def test_raw_newline_inside_string(self):
        parsed = parse_model_json('{"observations": "line one\nline two"}')
        assert parsed == {"observations": "line one\nline two"}

    def test_trailing_comma(self):
        parsed = parse_model_json('{"flags": ["a",], "observations": "x",}')
        assert parsed == {"flags": ["a"], "observations": "x"}

    def test_empty_and_none(self):
        assert parse_model_json("") is None
        assert parse_model_json("   ") is None
        assert parse_model_json(None) is None

    def test_non_json_returns_none(self):
        assert parse_model_json("I could not hear the recording.") is None

    def test_truncated_nested_fields_are_salvaged(self):
        raw = (
            '{"fields": {"liver_main": "Liver is enlarged.", '
            '"cbd_measurement_mm": 7, '
            '"gallbladder_main": "Multiple calc'
        )
        parsed = parse_model_json(raw, FIELDS_SCHEMA)
        assert parsed == {
            "fields": {
                "liver_main": "Liver is enlarged.",
                "gallbladder_main": "Multiple calc",
                "cbd_measurement_mm": "7",
            }
        }

    def test_truncated_arrays_keep_complete_elements(self):
        raw = '{"abnormal_blocks": ["LIVER", "GALLBLA'
        parsed = parse_model_json(raw, FIELDS_SCHEMA)
        assert parsed == {"abnormal_blocks": ["LIVER"]}


class TestFieldSalvage:
    def test_string_field_with_escapes(self):
        text = '{"observations": "a \\"quoted\\" word\\u00e9'
        assert extract_string_field(text, "observations") is None
        assert extract_string_field(text, "observations", lenient=True) == 'a "quoted" wordé'

    def test_numeric_field(self):
        assert extract_string_field('{"cbd_measurement_mm": 5.5,', "cbd_measurement_mm") == "5.5"

    def test_missing_field(self):
        assert extract_string_field('{"a": "b"}', "observations") is None

    def test_flags_parse_strictly(self):
        assert extract_flags('{"flags": ["one", "two"], "x": 1') == ["one", "two"]
        assert extract_flags('{"flags": ["one", "tw') is None
        assert extract_flags('{"observations": "x"}') is None

    def test_string_array_balanced(self):
        assert extract_string_array('{"lines": ["a", "b"]}', "lines") == ["a", "b"]
