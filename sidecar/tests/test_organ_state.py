"""Tests for organ visualization state inference and impression cleanup."""

from usg.fields import Gender, ReportVariant, canonical_keys
from usg.organ_state import OrganState, infer_organ_state, normalize, state_sentence
from usg.terminology import CYSTITIS_IMPRESSION, canonicalize_terms, normalize_impression


def _make_fields(**values) -> dict[str, str]:
    fields = {key: "" for key in canonical_keys(ReportVariant.WHOLE_ABDOMEN)}
    fields.update(values)
    return fields


class TestInferOrganState:
    def test_visualized_by_default(self):
        assert infer_organ_state("liver", "Liver is enlarged.", "") == OrganState.VISUALIZED

    def test_not_visualized(self):
        assert infer_organ_state("gallbladder", "Gall bladder is not visualized.", "") == OrganState.NOT_VISUALIZED

    def test_surgical_term_in_impression(self):
        state = infer_organ_state("gallbladder", "", "Post cholecystectomy status.")
        assert state == OrganState.SURGICALLY_ABSENT

    def test_limited(self):
        assert infer_organ_state("gallbladder", "Gall bladder is contracted.", "") == OrganState.LIMITED_VISUALIZATION

    def test_local_beats_global(self):
        state = infer_organ_state(
            "gallbladder",
            "Gall bladder is partially distended.",
            "Gall bladder not visualized.",
        )
        assert state == OrganState.LIMITED_VISUALIZATION

    def test_negated_limited_terms(self):
        assert infer_organ_state("gallbladder", "Gall bladder is not contracted.", "") == OrganState.VISUALIZED
        assert infer_organ_state("pancreas", "No bowel gas obscuring the pancreas.", "") == OrganState.VISUALIZED
        state = infer_organ_state("pancreas", "Pancreatic tail obscured by bowel gas.", "")
        assert state == OrganState.LIMITED_VISUALIZATION

    def test_impression_clause_must_name_organ(self):
        assert infer_organ_state("spleen", "", "Gall bladder not visualized.") == OrganState.VISUALIZED

    def test_unilateral_kidney_does_not_suppress_both(self):
        state = infer_organ_state("kidneys", "Right kidney is not visualized.", "")
        assert state == OrganState.VISUALIZED

    def test_bilateral_kidneys(self):
        state = infer_organ_state("kidneys", "Both kidneys not visualized.", "")
        assert state == OrganState.NOT_VISUALIZED


class TestStateSentence:
    def test_surgical_sentences(self):
        assert state_sentence("gallbladder", OrganState.SURGICALLY_ABSENT) == (
            "is not visualized (likely post-cholecystectomy status)."
        )
        assert state_sentence("kidneys", OrganState.SURGICALLY_ABSENT) == (
            "Both kidneys are not visualized (likely post-bilateral nephrectomy status)."
        )
        assert state_sentence("liver", OrganState.SURGICALLY_ABSENT) == "is surgically absent."

    def test_other_states(self):
        assert state_sentence("bladder", OrganState.NOT_ASSESSED) == "is not assessed."
        assert state_sentence("prostate", OrganState.LIMITED_VISUALIZATION) == (
            "The prostate gland is only partially visualized; evaluation is limited."
        )


class TestNormalize:
    def test_suppresses_detail_fields(self):
        fields = _make_fields(
            gallbladder_main="Gall bladder is not visualized.",
            gallbladder_calculus_sludge="No calculi.",
        )
        result = normalize(fields, Gender.MALE)
        assert result.organ_states["gallbladder"] == OrganState.NOT_VISUALIZED
        assert result.fields["gallbladder_main"] == "Gall bladder is not visualized."
        assert result.fields["gallbladder_calculus_sludge"] == ""
        assert "gallbladder_calculus_sludge" in result.suppressed
        assert "gallbladder_main" not in result.suppressed
        assert not result.is_visualized("gallbladder")

    def test_empty_main_gets_state_sentence(self):
        result = normalize(_make_fields(impression="Post cholecystectomy status."), Gender.MALE)
        assert result.fields["gallbladder_main"] == "is not visualized (likely post-cholecystectomy status)."
        assert "gallbladder_main" in result.suppressed

    def test_opposite_gender_groups_suppressed(self):
        result = normalize(_make_fields(uterus_main="Bulky uterus.", ovaries_main="Normal."), Gender.MALE)
        assert result.fields["uterus_main"] == ""
        assert result.fields["ovaries_main"] == ""
        assert {"uterus_main", "uterus_myometrium", "ovaries_main", "adnexal_mass"} <= result.suppressed
        assert result.organ_states["uterus"] == OrganState.NOT_ASSESSED

    def test_idempotent(self):
        fields = _make_fields(
            impression="Post cholecystectomy status.",
            spleen_main="Spleen is not visualized due to bowel gas.",
            spleen_focal_lesion="No lesion.",
        )
        first = normalize(fields, Gender.FEMALE)
        second = normalize(first.fields, Gender.FEMALE)
        assert second.fields == first.fields
        assert second.suppressed == first.suppressed

    def test_state_from_detail_field_is_kept(self):
        fields = _make_fields(
            gallbladder_main="Gall bladder wall is normal.",
            gallbladder_calculus_sludge="Lumen obscured by bowel gas.",
        )
        first = normalize(fields, Gender.MALE)
        assert first.organ_states["gallbladder"] == OrganState.LIMITED_VISUALIZATION
        assert first.fields["gallbladder_main"] == (
            "Gall bladder wall is normal. Gall bladder is only partially visualized; evaluation is limited."
        )
        assert "gallbladder_calculus_sludge" in first.suppressed

        second = normalize(first.fields, Gender.MALE)
        assert second.organ_states["gallbladder"] == OrganState.LIMITED_VISUALIZATION
        assert second.suppressed == first.suppressed
        assert second.fields == first.fields

    def test_state_from_impression_leaves_main_alone(self):
        fields = _make_fields(gallbladder_main="Gall bladder wall is normal.", impression="Post cholecystectomy status.")
        result = normalize(fields, Gender.MALE)
        assert result.fields["gallbladder_main"] == "Gall bladder wall is normal."

    def test_input_not_mutated(self):
        fields = _make_fields(gallbladder_main="Not visualized.", gallbladder_calculus_sludge="No calculi.")
        normalize(fields, Gender.MALE)
        assert fields["gallbladder_calculus_sludge"] == "No calculi."

    def test_bladder_thickening_adds_cystitis(self):
        fields = _make_fields(
            bladder_main="Urinary bladder walls are diffusely thickened.",
            impression="Right renal calculus.",
        )
        result = normalize(fields, Gender.MALE)
        assert result.fields["impression"] == f"Right renal calculus. {CYSTITIS_IMPRESSION}"


class TestTerminology:
    def test_spelling_and_plurals(self):
        assert canonicalize_terms("Multiple renal calculus with cholilithiasis") == (
            "Multiple renal calculi with cholelithiasis"
        )
        assert canonicalize_terms("Single calculi in the bladder") == "Single calculus in the bladder"

    def test_negated_thickening_ignored(self):
        assert normalize_impression("Normal study.", "No diffuse wall thickening.") == "Normal study."

    def test_existing_cystitis_not_duplicated(self):
        assert normalize_impression("Cystitis.", "Walls are diffusely thickened.") == "Cystitis."

    def test_cystitis_on_empty_impression(self):
        assert normalize_impression("", "Diffuse wall thickening.") == CYSTITIS_IMPRESSION
