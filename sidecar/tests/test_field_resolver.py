"""Tests for alias-based field resolution and patient info."""

from usg.field_resolver import (
    get_field_value,
    has_all_canonical_keys,
    normalize_gender,
    resolve_extraction_confidence,
    resolve_fields,
    resolve_patient_info,
    resolve_string_list,
)
from usg.fields import (
    FIELD_ALIASES,
    Gender,
    ReportVariant,
    baseline_defaults,
    canonical_keys,
    organ_groups,
)

WHOLE_ABDOMEN_KEYS = canonical_keys(ReportVariant.WHOLE_ABDOMEN)


class TestResolveFields:
    def test_every_key_present(self):
        fields = resolve_fields({"fields": {}}, WHOLE_ABDOMEN_KEYS)
        assert list(fields) == list(WHOLE_ABDOMEN_KEYS)
        assert all(value == "" for value in fields.values())

    def test_aliases_and_camel_case(self):
        parsed = {
            "fields": {
                "liverMain": "Liver is enlarged.",
                "gallbladder": "Wall is thickened.",
                "cbd_mm": 5.0,
            }
        }
        fields = resolve_fields(parsed, WHOLE_ABDOMEN_KEYS)
        assert fields["liver_main"] == "Liver is enlarged."
        assert fields["gallbladder_main"] == "Wall is thickened."
        assert fields["cbd_measurement_mm"] == "5"

    def test_legacy_aliases(self):
        parsed = {
            "fields": {
                "gallBladderMain": "Wall is thickened.",
                "gall_bladder_calculus_sludge": "A 9 mm calculus is seen.",
                "cortical_scarring": "Cortical scarring in the right kidney.",
                "parenchyma": "Parenchymal echogenicity is raised.",
                "renal_calculus_hydronephrosis": "Left renal calculus of 6 mm.",
                "peritonealFluid": "Mild free fluid.",
            }
        }
        fields = resolve_fields(parsed, WHOLE_ABDOMEN_KEYS)
        assert fields["gallbladder_main"] == "Wall is thickened."
        assert fields["gallbladder_calculus_sludge"] == "A 9 mm calculus is seen."
        assert fields["kidneys_cortical_scarring"] == "Cortical scarring in the right kidney."
        assert fields["kidneys_parenchyma"] == "Parenchymal echogenicity is raised."
        assert fields["kidneys_calculus_hydronephrosis"] == "Left renal calculus of 6 mm."
        assert fields["peritoneal_fluid"] == "Mild free fluid."

    def test_camel_case_gall_bladder_sludge(self):
        parsed = {"gallBladderCalculusSludge": "Sludge is present."}
        assert resolve_fields(parsed, WHOLE_ABDOMEN_KEYS)["gallbladder_calculus_sludge"] == "Sludge is present."

    def test_empty_alias_falls_through(self):
        parsed = {"fields": {"bladder_main": "  ", "urinary_bladder": "Walls are thickened."}}
        assert resolve_fields(parsed, ["bladder_main"])["bladder_main"] == "Walls are thickened."

    def test_top_level_fields_when_not_nested(self):
        assert resolve_fields({"spleen_main": "Splenomegaly."}, ["spleen_main"]) == {
            "spleen_main": "Splenomegaly."
        }

    def test_unusable_values_ignored(self):
        source = {"a": True, "b": float("nan"), "c": None, "d": 7.25}
        assert get_field_value(source, ["a", "b", "c", "d"]) == "7.25"

    def test_none_input(self):
        assert resolve_fields(None, ["liver_main"]) == {"liver_main": ""}

    def test_has_all_canonical_keys(self):
        complete = {"fields": {key: "" for key in WHOLE_ABDOMEN_KEYS}}
        assert has_all_canonical_keys(complete, WHOLE_ABDOMEN_KEYS)
        assert not has_all_canonical_keys({"fields": {"liver_main": ""}}, WHOLE_ABDOMEN_KEYS)
        assert not has_all_canonical_keys({}, WHOLE_ABDOMEN_KEYS)


class TestPatientAndSignals:
    def test_patient_info_top_level_then_nested(self):
        parsed = {"patient_name": "Asha Rao", "fields": {"patientGender": "F", "examDate": "2025-01-04"}}
        info = resolve_patient_info(parsed)
        assert info.name == "Asha Rao"
        assert info.gender_raw == "F"
        assert info.date == "2025-01-04"

    def test_normalize_gender(self):
        assert normalize_gender("Male") == Gender.MALE
        assert normalize_gender(" f ") == Gender.FEMALE
        assert normalize_gender("unknown") is None
        assert normalize_gender("") is None

    def test_string_list_from_array_or_csv(self):
        assert resolve_string_list({"abnormal_blocks": ["LIVER", "", 3]}, ["abnormal_blocks"]) == ["LIVER", "3"]
        assert resolve_string_list({"abnormalBlocks": "LIVER, KIDNEYS"}, ["abnormal_blocks", "abnormalBlocks"]) == [
            "LIVER",
            "KIDNEYS",
        ]
        assert resolve_string_list({}, ["abnormal_blocks"]) == []

    def test_extraction_confidence_clamped(self):
        assert resolve_extraction_confidence({"extraction_confidence": 1.7}) == 1.0
        assert resolve_extraction_confidence({"extractionConfidence": 0.4}) == 0.4
        assert resolve_extraction_confidence({"extraction_confidence": "0.4"}) is None
        assert resolve_extraction_confidence({}) is None


class TestFieldTables:
    def test_aliases_start_with_canonical_key(self):
        for key, aliases in FIELD_ALIASES.items():
            assert aliases[0] == key

    def test_male_defaults_blank_female_organs(self):
        defaults = baseline_defaults(ReportVariant.WHOLE_ABDOMEN, Gender.MALE)
        assert defaults["uterus_main"] == ""
        assert defaults["prostate_main"]

    def test_defaults_are_copies(self):
        defaults = baseline_defaults(ReportVariant.KUB, Gender.FEMALE)
        defaults["impression"] = "changed"
        assert baseline_defaults(ReportVariant.KUB, Gender.FEMALE)["impression"] != "changed"

    def test_kub_groups_drop_whole_abdomen_organs(self):
        organs = [group.organ for group in organ_groups(ReportVariant.KUB)]
        assert "liver" not in organs
        assert "kidneys" in organs
