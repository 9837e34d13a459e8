"""Tests for other-observation filtering and free-text sanitizing."""

from llm.prompt_engine import FORBIDDEN_HEADERS
from usg.observations import (
    OTHER_OBSERVATIONS_HEADING,
    append_other_observations,
    extract_other_observations,
    is_relevant_observation,
    sanitize_observations,
)


class TestOtherObservations:
    def test_relevant_lines(self):
        assert is_relevant_observation("Small umbilical hernia noted in abdominal wall.")
        assert is_relevant_observation("Para-aortic lymph nodes not enlarged.")

    def test_noise_and_length_rejected(self):
        assert not is_relevant_observation("Hello doctor, start recording.")
        assert not is_relevant_observation("Patient said the liver pain started yesterday.")
        assert not is_relevant_observation("ivc")
        assert not is_relevant_observation("liver " * 60)
        assert not is_relevant_observation("[Unclear - needs review]")

    def test_unrelated_topic_rejected(self):
        assert not is_relevant_observation("Mild cardiomegaly on chest film.")

    def test_dedupe_first_spelling_wins(self):
        parsed = {
            "other_observations": [
                "Small  umbilical hernia in abdominal wall.",
                "small umbilical hernia in abdominal wall.",
                "hello doctor",
            ]
        }
        result = extract_other_observations(parsed)
        assert result.accepted == ["Small umbilical hernia in abdominal wall."]
        assert result.dropped_count == 1

    def test_alias_and_string_value(self):
        result = extract_other_observations({"additionalObservations": "Aorta is of normal calibre."})
        assert result.accepted == ["Aorta is of normal calibre."]

    def test_append(self):
        text = append_other_observations("REPORT\n", ["Aorta normal.", "IVC normal."])
        assert text == f"REPORT\n\n{OTHER_OBSERVATIONS_HEADING}\n- Aorta normal.\n- IVC normal."
        assert append_other_observations("REPORT", []) == "REPORT"


class TestSanitizeObservations:
    def test_removes_forbidden_lines(self):
        text = "Brain parenchyma is normal.\nImpression: normal study.\nVentricles are normal.\nPlan: follow up."
        cleaned, removed = sanitize_observations(text, FORBIDDEN_HEADERS)
        assert removed
        assert cleaned == "Brain parenchyma is normal.\nVentricles are normal."

    def test_header_must_start_line(self):
        text = "No definite diagnosis of fracture."
        cleaned, removed = sanitize_observations(text, FORBIDDEN_HEADERS)
        assert not removed
        assert cleaned == text
