"""
Canonical USG report fields, per-gender baseline defaults and key aliases.

Two report variants share one field vocabulary:
- whole_abdomen: the multi-organ "SONOGRAPHY WHOLE ABDOMEN" report
- kub: the kidneys / ureters / bladder report

Field keys are versioned by FIELD_SCHEMA_VERSION. Adding or renaming a key
requires bumping it, since extraction prompts embed the key list.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

FIELD_SCHEMA_VERSION = 2


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"

    @property
    def label(self) -> str:
        return "Female" if self == Gender.FEMALE else "Male"


class ReportVariant(str, Enum):
    WHOLE_ABDOMEN = "whole_abdomen"
    KUB = "kub"


WHOLE_ABDOMEN_FIELD_KEYS: tuple[str, ...] = (
    "liver_main",
    "liver_focal_lesion",
    "liver_hepatic_veins",
    "liver_ihbr",
    "liver_portal_vein",
    "gallbladder_main",
    "gallbladder_calculus_sludge",
    "cbd_main",
    "cbd_measurement_mm",
    "pancreas_main",
    "pancreas_echotexture",
    "spleen_main",
    "spleen_focal_lesion",
    "kidneys_size",
    "kidneys_main",
    "kidneys_cmd",
    "kidneys_cortical_scarring",
    "kidneys_parenchyma",
    "kidneys_calculus_hydronephrosis",
    "bladder_main",
    "bladder_mass_calculus",
    "prostate_main",
    "prostate_echotexture",
    "uterus_main",
    "uterus_myometrium",
    "endometrium_measurement_mm",
    "ovaries_main",
    "adnexal_mass",
    "peritoneal_fluid",
    "lymph_nodes",
    "impression",
    "correlate_clinically",
)

KUB_FIELD_KEYS: tuple[str, ...] = (
    "kidneys_size",
    "kidneys_main",
    "kidneys_cmd",
    "kidneys_cortical_scarring",
    "kidneys_parenchyma",
    "kidneys_calculus_hydronephrosis",
    "ureters_main",
    "bladder_main",
    "bladder_mass_calculus",
    "post_void_residual_ml",
    "prostate_main",
    "prostate_echotexture",
    "prostate_volume_cc",
    "uterus_main",
    "uterus_myometrium",
    "endometrium_measurement_mm",
    "ovaries_main",
    "adnexal_mass",
    "peritoneal_fluid",
    "impression",
    "correlate_clinically",
)

_FIELD_KEYS_BY_VARIANT: dict[ReportVariant, tuple[str, ...]] = {
    ReportVariant.WHOLE_ABDOMEN: WHOLE_ABDOMEN_FIELD_KEYS,
    ReportVariant.KUB: KUB_FIELD_KEYS,
}

# Union of both variants, whole-abdomen order first.
ALL_FIELD_KEYS: tuple[str, ...] = WHOLE_ABDOMEN_FIELD_KEYS + tuple(
    key for key in KUB_FIELD_KEYS if key not in WHOLE_ABDOMEN_FIELD_KEYS
)

# Numeric fields: the model returns a bare number, the assembler adds units.
MEASUREMENT_FIELD_UNITS: dict[str, str] = {
    "cbd_measurement_mm": "mm",
    "endometrium_measurement_mm": "mm",
    "prostate_volume_cc": "cc",
    "post_void_residual_ml": "ml",
}


def canonical_keys(variant: ReportVariant) -> tuple[str, ...]:
    return _FIELD_KEYS_BY_VARIANT[variant]


# ---------------------------------------------------------------------------
# Baseline defaults
# ---------------------------------------------------------------------------

_WHOLE_ABDOMEN_BASE: dict[str, str] = {
    "liver_main": "Is normal in size. Tissue echotexture is homogenous.",
    "liver_focal_lesion": "No focal lesion seen.",
    "liver_hepatic_veins": "Hepatic veins are not dilated.",
    "liver_ihbr": "Intrahepatic biliary radicals are not dilated.",
    "liver_portal_vein": "Portal vein is of normal diameter.",
    "gallbladder_main": "is normal in contour & wall thickness.",
    "gallbladder_calculus_sludge": (
        "There is no evidence of any calculi or biliary sludge in visualized lumen of gall bladder."
    ),
    "cbd_main": "CBD is normal.",
    "cbd_measurement_mm": "",
    "pancreas_main": "is normal in size, shape & contour.",
    "pancreas_echotexture": "Tissue echotexture is homogenous.",
    "spleen_main": "is normal in size, shape & echotexture.",
    "spleen_focal_lesion": "No focal solid/ cystic lesion is seen.",
    "kidneys_size": "",
    "kidneys_main": "Both kidneys are normal in size, shape, position.",
    "kidneys_cmd": "corticomedullary differentiation is maintained.",
    "kidneys_cortical_scarring": "No cortical scarring seen.",
    "kidneys_parenchyma": "Renal parenchymal & sinus echotexture. Appears normal.",
    "kidneys_calculus_hydronephrosis": "NO calculus, mass lesion or hydronephrosis seen.",
    "bladder_main": "partially filled",
    "bladder_mass_calculus": "",
    "prostate_main": "The volume of prostate gland is normal.",
    "prostate_echotexture": "The prostate gland has homogeneous echotexture with intact capsule.",
    "uterus_main": "Uterus is normal in size and shape.",
    "uterus_myometrium": "Musculature shows normal echopattern.",
    "endometrium_measurement_mm": "",
    "ovaries_main": "both ovaries appears normal",
    "adnexal_mass": "no cyst / mass seen",
    "peritoneal_fluid": "No free fluid seen in peritoneal cavity",
    "lymph_nodes": "No significantly enlarged lymph nodes seen",
    "impression": "no significant abnormality seen in abdomen",
    "correlate_clinically": "Please correlate clinically",
}

_KUB_BASE: dict[str, str] = {
    "kidneys_size": "",
    "kidneys_main": "Both kidneys are normal in size, shape and position.",
    "kidneys_cmd": "Corticomedullary differentiation is maintained.",
    "kidneys_cortical_scarring": "No cortical scarring seen.",
    "kidneys_parenchyma": "Renal parenchymal echotexture appears normal.",
    "kidneys_calculus_hydronephrosis": "No calculus, mass lesion or hydronephrosis seen.",
    "ureters_main": "Both ureters are not dilated. No ureteric calculus seen.",
    "bladder_main": "Urinary bladder is well distended with normal wall thickness.",
    "bladder_mass_calculus": "No calculus or mass lesion seen in the bladder.",
    "post_void_residual_ml": "",
    "prostate_main": "Prostate is normal in size.",
    "prostate_echotexture": "Echotexture is homogeneous with intact capsule.",
    "prostate_volume_cc": "",
    "uterus_main": "Uterus is normal in size and shape.",
    "uterus_myometrium": "Myometrial echopattern is normal.",
    "endometrium_measurement_mm": "",
    "ovaries_main": "Both ovaries appear normal.",
    "adnexal_mass": "No adnexal cyst or mass seen.",
    "peritoneal_fluid": "No free fluid seen.",
    "impression": "No significant abnormality seen in KUB region.",
    "correlate_clinically": "Please correlate clinically.",
}

_BASE_BY_VARIANT: dict[ReportVariant, dict[str, str]] = {
    ReportVariant.WHOLE_ABDOMEN: _WHOLE_ABDOMEN_BASE,
    ReportVariant.KUB: _KUB_BASE,
}

_GENDER_OVERRIDES: dict[tuple[ReportVariant, Gender], dict[str, str]] = {
    (ReportVariant.WHOLE_ABDOMEN, Gender.MALE): {
        "uterus_main": "",
        "uterus_myometrium": "",
        "ovaries_main": "",
        "adnexal_mass": "",
    },
    (ReportVariant.WHOLE_ABDOMEN, Gender.FEMALE): {
        "bladder_main": "walls are well defined & normal in thickness.",
        "bladder_mass_calculus": "There is no filling defect,calculus or foreign body in bladder.",
        "prostate_main": "",
        "prostate_echotexture": "",
        "correlate_clinically": "",
    },
    (ReportVariant.KUB, Gender.MALE): {
        "uterus_main": "",
        "uterus_myometrium": "",
        "ovaries_main": "",
        "adnexal_mass": "",
    },
    (ReportVariant.KUB, Gender.FEMALE): {
        "prostate_main": "",
        "prostate_echotexture": "",
    },
}


def baseline_defaults(variant: ReportVariant, gender: Gender) -> dict[str, str]:
    """Return a fresh copy of the baseline defaults for a variant/gender."""
    defaults = dict(_BASE_BY_VARIANT[variant])
    defaults.update(_GENDER_OVERRIDES[(variant, gender)])
    return defaults


# ---------------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------------

_EXTRA_ALIASES: dict[str, list[str]] = {
    "liver_hepatic_veins": ["hepatic_veins", "hepaticVeins"],
    "liver_ihbr": ["ihbr", "intrahepatic_biliary_radicals"],
    "liver_portal_vein": ["portal_vein", "portalVein"],
    "gallbladder_main": ["gallBladderMain", "gall_bladder_main", "gallbladder"],
    "gallbladder_calculus_sludge": [
        "gallBladderCalculusSludge",
        "gall_bladder_calculus_sludge",
        "gallbladder_calculi",
        "gallbladder_sludge",
    ],
    "cbd_main": ["cbd", "common_bile_duct"],
    "cbd_measurement_mm": ["cbd_mm", "cbd_diameter_mm", "cbdDiameterMm"],
    "kidneys_size": ["kidney_size", "kidneySize"],
    "kidneys_cmd": ["cmd"],
    "kidneys_cortical_scarring": ["cortical_scarring"],
    "kidneys_parenchyma": ["parenchyma"],
    "kidneys_calculus_hydronephrosis": [
        "renal_calculus_hydronephrosis",
        "kidneys_calculus",
        "hydronephrosis",
    ],
    "ureters_main": ["ureters", "ureter"],
    "bladder_main": ["urinary_bladder", "bladder"],
    "post_void_residual_ml": ["pvr_ml", "post_void_residual", "pvr"],
    "prostate_volume_cc": ["prostate_volume", "prostateVolume"],
    "uterus_myometrium": ["myometrium"],
    "endometrium_measurement_mm": [
        "endometrium_mm",
        "endometrial_thickness_mm",
        "endometrium",
    ],
    "ovaries_main": ["ovaries"],
    "peritoneal_fluid": ["peritonealFluid", "free_fluid", "freeFluid", "ascites"],
    "lymph_nodes": ["lymphNodes", "nodes"],
    "impression": ["conclusion"],
    "correlate_clinically": ["correlation"],
}


def _camel_case(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _build_aliases() -> dict[str, list[str]]:
    aliases: dict[str, list[str]] = {}
    for key in ALL_FIELD_KEYS:
        ordered: list[str] = []
        for alias in [key, _camel_case(key)] + _EXTRA_ALIASES.get(key, []):
            if alias not in ordered:
                ordered.append(alias)
        aliases[key] = ordered
    return aliases


FIELD_ALIASES: dict[str, list[str]] = _build_aliases()


# ---------------------------------------------------------------------------
# Organ groups
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrganGroup:
    """Fields describing one organ: a main sentence plus detail findings."""

    organ: str
    main_field: str
    detail_fields: tuple[str, ...]
    gender: Optional[Gender] = None

    @property
    def field_keys(self) -> tuple[str, ...]:
        return (self.main_field,) + self.detail_fields


ORGAN_GROUPS: tuple[OrganGroup, ...] = (
    OrganGroup(
        "liver",
        "liver_main",
        ("liver_focal_lesion", "liver_hepatic_veins", "liver_ihbr", "liver_portal_vein"),
    ),
    OrganGroup("gallbladder", "gallbladder_main", ("gallbladder_calculus_sludge",)),
    OrganGroup("pancreas", "pancreas_main", ("pancreas_echotexture",)),
    OrganGroup("spleen", "spleen_main", ("spleen_focal_lesion",)),
    OrganGroup(
        "kidneys",
        "kidneys_main",
        (
            "kidneys_size",
            "kidneys_cmd",
            "kidneys_cortical_scarring",
            "kidneys_parenchyma",
            "kidneys_calculus_hydronephrosis",
        ),
    ),
    OrganGroup("bladder", "bladder_main", ("bladder_mass_calculus", "post_void_residual_ml")),
    OrganGroup(
        "prostate",
        "prostate_main",
        ("prostate_echotexture", "prostate_volume_cc"),
        gender=Gender.MALE,
    ),
    OrganGroup(
        "uterus",
        "uterus_main",
        ("uterus_myometrium", "endometrium_measurement_mm"),
        gender=Gender.FEMALE,
    ),
    OrganGroup("adnexa", "ovaries_main", ("adnexal_mass",), gender=Gender.FEMALE),
)

ORGANS: tuple[str, ...] = tuple(group.organ for group in ORGAN_GROUPS)


def organ_groups(variant: ReportVariant) -> list[OrganGroup]:
    """Organ groups restricted to the fields a variant actually carries."""
    keys = set(canonical_keys(variant))
    groups = []
    for group in ORGAN_GROUPS:
        if group.main_field not in keys:
            continue
        details = tuple(f for f in group.detail_fields if f in keys)
        groups.append(OrganGroup(group.organ, group.main_field, details, group.gender))
    return groups
