"""
Anatomical blocks: named groups of canonical fields that map onto one
report section.

Blocks drive two things: server-side abnormality scoring (including the
normal measurement range of a block's numeric field) and section
regeneration, which targets a block by its heading text. A block heading
must match the heading the assembler renders for that section exactly,
otherwise splicing a regenerated section is a no-op.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from usg.fields import Gender, ReportVariant

_LATERALITY_RE = re.compile(r"\b(?:left|right)\b", re.IGNORECASE)


@dataclass(frozen=True)
class MeasurementRange:
    field_key: str
    min_value: float
    max_value: float

    def contains(self, value: float) -> bool:
        return self.min_value <= value <= self.max_value


@dataclass(frozen=True)
class AnatomicalBlock:
    block_id: str
    heading: str
    field_keys: tuple[str, ...]
    measurement: Optional[MeasurementRange] = None
    gender: Optional[Gender] = None

    @property
    def label(self) -> str:
        """Heading without the trailing colon, for user-facing flags."""
        return self.heading.rstrip(" :").strip()


IMPRESSION_BLOCK_ID = "IMPRESSION"


def _kub_heading(label: str) -> str:
    return f"{label:<16}:"


# Whole abdomen headings
LIVER_HEADING = "Liver:"
GALLBLADDER_HEADING = "Gall bladder:"
PANCREAS_HEADING = "Pancreas:"
SPLEEN_HEADING = "Spleen:"
KIDNEYS_HEADING = "Kidneys:"
BLADDER_HEADING = "Urinary Bladder:"
PROSTATE_HEADING = "Prostate:"
UTERUS_HEADING = "Uterus:"
ADNEXA_HEADING = "Adenexa:"
PERITONEAL_HEADING = "Peritoneal Cavity:"
IMPRESSION_HEADING_MALE = "IMPRESSION:"
IMPRESSION_HEADING_FEMALE = "Significant findings :"

# KUB headings
KUB_KIDNEYS_HEADING = _kub_heading("KIDNEYS")
KUB_URETERS_HEADING = _kub_heading("URETERS")
KUB_BLADDER_HEADING = _kub_heading("URINARY BLADDER")
KUB_PROSTATE_HEADING = _kub_heading("PROSTATE")
KUB_UTERUS_HEADING = _kub_heading("UTERUS")
KUB_ADNEXA_HEADING = _kub_heading("ADNEXA")
KUB_PERITONEUM_HEADING = _kub_heading("PERITONEUM")
KUB_IMPRESSION_HEADING = _kub_heading("IMPRESSION")

_KIDNEY_FIELDS = (
    "kidneys_size",
    "kidneys_main",
    "kidneys_cmd",
    "kidneys_cortical_scarring",
    "kidneys_parenchyma",
    "kidneys_calculus_hydronephrosis",
)

WHOLE_ABDOMEN_BLOCKS: tuple[AnatomicalBlock, ...] = (
    AnatomicalBlock(
        "LIVER",
        LIVER_HEADING,
        ("liver_main", "liver_focal_lesion", "liver_hepatic_veins", "liver_ihbr", "liver_portal_vein"),
    ),
    AnatomicalBlock(
        "GALLBLADDER",
        GALLBLADDER_HEADING,
        ("gallbladder_main", "gallbladder_calculus_sludge", "cbd_main", "cbd_measurement_mm"),
        measurement=MeasurementRange("cbd_measurement_mm", 0.0, 6.0),
    ),
    AnatomicalBlock("PANCREAS", PANCREAS_HEADING, ("pancreas_main", "pancreas_echotexture")),
    AnatomicalBlock("SPLEEN", SPLEEN_HEADING, ("spleen_main", "spleen_focal_lesion")),
    AnatomicalBlock("KIDNEYS", KIDNEYS_HEADING, _KIDNEY_FIELDS),
    AnatomicalBlock("BLADDER", BLADDER_HEADING, ("bladder_main", "bladder_mass_calculus")),
    AnatomicalBlock(
        "PROSTATE",
        PROSTATE_HEADING,
        ("prostate_main", "prostate_echotexture"),
        gender=Gender.MALE,
    ),
    AnatomicalBlock(
        "UTERUS",
        UTERUS_HEADING,
        ("uterus_main", "uterus_myometrium", "endometrium_measurement_mm"),
        measurement=MeasurementRange("endometrium_measurement_mm", 0.0, 14.0),
        gender=Gender.FEMALE,
    ),
    AnatomicalBlock("ADNEXA", ADNEXA_HEADING, ("ovaries_main", "adnexal_mass"), gender=Gender.FEMALE),
    # The whole-abdomen layout prints these lines without a heading.
    AnatomicalBlock("PERITONEAL", PERITONEAL_HEADING, ("peritoneal_fluid", "lymph_nodes")),
    AnatomicalBlock(IMPRESSION_BLOCK_ID, IMPRESSION_HEADING_MALE, ("impression",)),
)

KUB_BLOCKS: tuple[AnatomicalBlock, ...] = (
    AnatomicalBlock("KIDNEYS", KUB_KIDNEYS_HEADING, _KIDNEY_FIELDS),
    AnatomicalBlock("URETERS", KUB_URETERS_HEADING, ("ureters_main",)),
    AnatomicalBlock(
        "BLADDER",
        KUB_BLADDER_HEADING,
        ("bladder_main", "bladder_mass_calculus", "post_void_residual_ml"),
        measurement=MeasurementRange("post_void_residual_ml", 0.0, 50.0),
    ),
    AnatomicalBlock(
        "PROSTATE",
        KUB_PROSTATE_HEADING,
        ("prostate_main", "prostate_echotexture", "prostate_volume_cc"),
        measurement=MeasurementRange("prostate_volume_cc", 0.0, 25.0),
        gender=Gender.MALE,
    ),
    AnatomicalBlock(
        "UTERUS",
        KUB_UTERUS_HEADING,
        ("uterus_main", "uterus_myometrium", "endometrium_measurement_mm"),
        measurement=MeasurementRange("endometrium_measurement_mm", 0.0, 14.0),
        gender=Gender.FEMALE,
    ),
    AnatomicalBlock("ADNEXA", KUB_ADNEXA_HEADING, ("ovaries_main", "adnexal_mass"), gender=Gender.FEMALE),
    AnatomicalBlock("PERITONEAL", KUB_PERITONEUM_HEADING, ("peritoneal_fluid",)),
    AnatomicalBlock(IMPRESSION_BLOCK_ID, KUB_IMPRESSION_HEADING, ("impression",)),
)

_BLOCKS_BY_VARIANT: dict[ReportVariant, tuple[AnatomicalBlock, ...]] = {
    ReportVariant.WHOLE_ABDOMEN: WHOLE_ABDOMEN_BLOCKS,
    ReportVariant.KUB: KUB_BLOCKS,
}


def blocks_for(variant: ReportVariant, gender: Gender) -> list[AnatomicalBlock]:
    """Blocks applicable to a report, in report order."""
    return [
        block for block in _BLOCKS_BY_VARIANT[variant]
        if block.gender is None or block.gender == gender
    ]


def known_headings(variant: Optional[ReportVariant] = None) -> set[str]:
    """Every heading a block or section can carry (both variants by default)."""
    variants = [variant] if variant else list(ReportVariant)
    headings = {IMPRESSION_HEADING_FEMALE}
    for v in variants:
        headings.update(block.heading for block in _BLOCKS_BY_VARIANT[v])
    return headings


def contains_laterality(text: str) -> bool:
    return bool(_LATERALITY_RE.search(text or ""))


def word_count(text: str) -> int:
    return len((text or "").split())
