"""
Render a canonical field set into the final report text.

The report is built as an ordered list of sections (heading + lines) and
serialized at the end, so the regeneration loop can swap one section's
lines without re-parsing flattened text.

Every field resolves as: model value, else "" when suppressed, else the
baseline default for the variant and gender. A section whose body resolves
to nothing is left out.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from usg import blocks as b
from usg.field_resolver import PatientInfo
from usg.fields import Gender, ReportVariant, baseline_defaults

NAME_PLACEHOLDER = "________________"
DATE_PLACEHOLDER = "____/____/______"

WHOLE_ABDOMEN_TITLE = "SONOGRAPHY WHOLE ABDOMEN"
KUB_TITLE = "SONOGRAPHY KUB (KIDNEYS, URETERS & BLADDER)"

END_OF_REPORT_MALE = (
    "--------------------------------------------------------------END OF REPORT "
    "--------------------------------------------------------------"
)
END_OF_REPORT_FEMALE = (
    "------------------------------------------------END of report "
    "-----------------------------------------------------------"
)

LIMITATIONS_NOTE = (
    "NON OBSTRUCTING URETERIC CALCULI MAY BE MISSED IN NON DILATED URETERS . "
    "SONOGRAPHY HAS ITS LIMITATIONS . IT CANNOT DETECT ALL ABNORMALITIES , "
    "SOME FINDINGS MAY BE MISSED DESPITE BEST EFFORTS OF DOCTOR . "
    "HENCE IN CASE OF ANY DISCREPANCY , KINDLY CONTACT THE UNDERSIGNED FOR REVIEW/ DISCUSSION"
)

_LABELLED_CONCLUSION_RE = re.compile(r"^(?:impression|conclusion|significant findings)\b", re.IGNORECASE)
_LEADING_NUMBER_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)")


@dataclass
class ReportSection:
    lines: list[str]
    heading: Optional[str] = None
    block_id: Optional[str] = None

    def render(self) -> list[str]:
        if self.heading and self.lines:
            return [f"{self.heading} {self.lines[0]}"] + self.lines[1:]
        if self.heading:
            return [self.heading]
        return list(self.lines)


@dataclass
class AssembledReport:
    sections: list[ReportSection] = field(default_factory=list)

    def add(
        self,
        lines: Iterable[str],
        heading: Optional[str] = None,
        block_id: Optional[str] = None,
    ) -> None:
        kept = [line for line in lines if line]
        if kept:
            self.sections.append(ReportSection(kept, heading, block_id))

    def find_section(self, heading: str) -> Optional[ReportSection]:
        for section in self.sections:
            if section.heading == heading:
                return section
        return None

    def section_lines(self, heading: str) -> Optional[list[str]]:
        section = self.find_section(heading)
        return list(section.lines) if section else None

    def replace_section(self, heading: str, lines: list[str]) -> bool:
        """Swap the body under an exactly matching heading.

        Returns False, leaving the report untouched, when no section carries
        that heading.
        """
        section = self.find_section(heading)
        if section is None or not lines:
            return False
        section.lines = list(lines)
        return True

    def to_text(self) -> str:
        rendered: list[str] = []
        for section in self.sections:
            rendered.extend(section.render())
        return "\n".join(rendered)

    def __str__(self) -> str:
        return self.to_text()


def ensure_period(text: str) -> str:
    trimmed = (text or "").strip()
    if not trimmed:
        return ""
    return trimmed if trimmed[-1] in ".!?" else f"{trimmed}."


def join_sentences(parts: Iterable[str]) -> str:
    return " ".join(p for p in (ensure_period(part) for part in parts) if p)


def measurement_value(text: str) -> str:
    """The bare number from a measurement field, or the raw text if it has none."""
    match = _LEADING_NUMBER_RE.match(text or "")
    return match.group(1) if match else (text or "").strip()


def header_line(patient: Optional[PatientInfo], gender: Gender) -> str:
    patient = patient or PatientInfo()
    name = patient.name.strip() or NAME_PLACEHOLDER
    date = patient.date.strip() or DATE_PLACEHOLDER
    return f"NAME: {name}    GENDER: {gender.label}    DATE: {date}"


def _field_getter(
    fields: dict[str, str],
    suppressed: set[str],
    defaults: dict[str, str],
) -> Callable[[str], str]:
    def get(key: str) -> str:
        value = (fields.get(key) or "").strip()
        if value:
            return value
        if key in suppressed:
            return ""
        return defaults.get(key, "")

    return get


def _conclusion(report: AssembledReport, text: str, label: str) -> None:
    text = text.strip()
    if _LABELLED_CONCLUSION_RE.match(text):
        report.add([ensure_period(text)], block_id=b.IMPRESSION_BLOCK_ID)
    else:
        report.add([ensure_period(text)], heading=label, block_id=b.IMPRESSION_BLOCK_ID)


def _closing(report: AssembledReport, get: Callable[[str], str], gender: Gender) -> None:
    report.add([ensure_period(get("correlate_clinically"))])
    report.add([END_OF_REPORT_FEMALE if gender == Gender.FEMALE else END_OF_REPORT_MALE])
    report.add([LIMITATIONS_NOTE])


# ---------------------------------------------------------------------------
# Layouts
# ---------------------------------------------------------------------------


def _assemble_whole_abdomen(
    get: Callable[[str], str],
    suppressed: set[str],
    gender: Gender,
    patient: Optional[PatientInfo],
) -> AssembledReport:
    report = AssembledReport()
    report.add([header_line(patient, gender)])
    report.add([WHOLE_ABDOMEN_TITLE])

    report.add(
        [join_sentences([
            get("liver_main"),
            get("liver_focal_lesion"),
            get("liver_hepatic_veins"),
            get("liver_ihbr"),
            get("liver_portal_vein"),
        ])],
        heading=b.LIVER_HEADING,
        block_id="LIVER",
    )

    cbd_mm = get("cbd_measurement_mm")
    report.add(
        [join_sentences([
            get("gallbladder_main"),
            get("gallbladder_calculus_sludge"),
            get("cbd_main"),
            f"CBD measures {measurement_value(cbd_mm)} mm" if cbd_mm else "",
        ])],
        heading=b.GALLBLADDER_HEADING,
        block_id="GALLBLADDER",
    )

    report.add(
        [join_sentences([get("pancreas_main"), get("pancreas_echotexture")])],
        heading=b.PANCREAS_HEADING,
        block_id="PANCREAS",
    )
    report.add(
        [join_sentences([get("spleen_main"), get("spleen_focal_lesion")])],
        heading=b.SPLEEN_HEADING,
        block_id="SPLEEN",
    )

    report.add(
        [
            ensure_period(get("kidneys_size")),
            join_sentences([
                get("kidneys_main"),
                get("kidneys_cmd"),
                get("kidneys_cortical_scarring"),
                get("kidneys_parenchyma"),
                get("kidneys_calculus_hydronephrosis"),
            ]),
        ],
        heading=b.KIDNEYS_HEADING,
        block_id="KIDNEYS",
    )

    report.add(
        [join_sentences([get("bladder_main"), get("bladder_mass_calculus")])],
        heading=b.BLADDER_HEADING,
        block_id="BLADDER",
    )

    if gender == Gender.MALE:
        report.add(
            [ensure_period(get("prostate_main")), ensure_period(get("prostate_echotexture"))],
            heading=b.PROSTATE_HEADING,
            block_id="PROSTATE",
        )
    else:
        endometrium = get("endometrium_measurement_mm")
        if "endometrium_measurement_mm" in suppressed:
            endometrium_line = ""
        elif endometrium:
            endometrium_line = f"Endometrial echoes are central ({measurement_value(endometrium)} mm)."
        else:
            endometrium_line = "Endometrial echoes are central."
        report.add(
            [" ".join(p for p in (
                ensure_period(get("uterus_main")),
                ensure_period(get("uterus_myometrium")),
                endometrium_line,
            ) if p)],
            heading=b.UTERUS_HEADING,
            block_id="UTERUS",
        )
        report.add(
            [join_sentences([get("adnexal_mass"), get("ovaries_main")])],
            heading=b.ADNEXA_HEADING,
            block_id="ADNEXA",
        )

    report.add(
        [ensure_period(get("peritoneal_fluid")), ensure_period(get("lymph_nodes"))],
        block_id="PERITONEAL",
    )

    label = b.IMPRESSION_HEADING_FEMALE if gender == Gender.FEMALE else b.IMPRESSION_HEADING_MALE
    _conclusion(report, get("impression"), label)
    _closing(report, get, gender)
    return report


def _assemble_kub(
    get: Callable[[str], str],
    suppressed: set[str],
    gender: Gender,
    patient: Optional[PatientInfo],
) -> AssembledReport:
    report = AssembledReport()
    report.add([header_line(patient, gender)])
    report.add([KUB_TITLE])

    report.add(
        [
            ensure_period(get("kidneys_size")),
            join_sentences([
                get("kidneys_main"),
                get("kidneys_cmd"),
                get("kidneys_cortical_scarring"),
                get("kidneys_parenchyma"),
                get("kidneys_calculus_hydronephrosis"),
            ]),
        ],
        heading=b.KUB_KIDNEYS_HEADING,
        block_id="KIDNEYS",
    )
    report.add([join_sentences([get("ureters_main")])], heading=b.KUB_URETERS_HEADING, block_id="URETERS")

    pvr = get("post_void_residual_ml")
    report.add(
        [join_sentences([
            get("bladder_main"),
            get("bladder_mass_calculus"),
            f"Post-void residual urine volume is {measurement_value(pvr)} ml" if pvr else "",
        ])],
        heading=b.KUB_BLADDER_HEADING,
        block_id="BLADDER",
    )

    if gender == Gender.MALE:
        volume = get("prostate_volume_cc")
        report.add(
            [join_sentences([
                get("prostate_main"),
                get("prostate_echotexture"),
                f"Prostate volume is {measurement_value(volume)} cc" if volume else "",
            ])],
            heading=b.KUB_PROSTATE_HEADING,
            block_id="PROSTATE",
        )
    else:
        endometrium = get("endometrium_measurement_mm")
        report.add(
            [join_sentences([
                get("uterus_main"),
                get("uterus_myometrium"),
                f"Endometrial thickness is {measurement_value(endometrium)} mm" if endometrium else "",
            ])],
            heading=b.KUB_UTERUS_HEADING,
            block_id="UTERUS",
        )
        report.add(
            [join_sentences([get("ovaries_main"), get("adnexal_mass")])],
            heading=b.KUB_ADNEXA_HEADING,
            block_id="ADNEXA",
        )

    report.add([join_sentences([get("peritoneal_fluid")])], heading=b.KUB_PERITONEUM_HEADING, block_id="PERITONEAL")
    _conclusion(report, get("impression"), b.KUB_IMPRESSION_HEADING)
    _closing(report, get, gender)
    return report


_LAYOUTS = {
    ReportVariant.WHOLE_ABDOMEN: _assemble_whole_abdomen,
    ReportVariant.KUB: _assemble_kub,
}


def assemble(
    fields: dict[str, str],
    suppressed: set[str],
    gender: Gender,
    variant: ReportVariant = ReportVariant.WHOLE_ABDOMEN,
    patient: Optional[PatientInfo] = None,
    defaults: Optional[dict[str, str]] = None,
) -> AssembledReport:
    if defaults is None:
        defaults = baseline_defaults(variant, gender)
    get = _field_getter(fields, suppressed, defaults)
    return _LAYOUTS[variant](get, suppressed, gender, patient)


def baseline_template(variant: ReportVariant, gender: Gender) -> str:
    """The report produced when every field falls back to its default."""
    return assemble({}, set(), gender, variant).to_text()


BASELINE_TEMPLATES: dict[tuple[ReportVariant, Gender], str] = {
    (variant, gender): baseline_template(variant, gender)
    for variant in ReportVariant
    for gender in Gender
}
