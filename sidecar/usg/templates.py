"""
Report template registry.

Structured USG templates are rendered field by field by the assembler.
Free-text templates (CT, MRI, X-ray, Doppler) return the model's
observations text after forbidden sections are stripped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from usg.fields import Gender, ReportVariant


@dataclass(frozen=True)
class ReportTemplate:
    template_id: str
    title: str
    allowed_topics: tuple[str, ...]
    headings: tuple[str, ...] = field(default_factory=tuple)
    variant: Optional[ReportVariant] = None
    gender: Optional[Gender] = None

    @property
    def is_structured(self) -> bool:
        return self.variant is not None


_ABDOMEN_TOPICS = (
    "Liver", "Gallbladder", "CBD", "Pancreas", "Spleen", "Kidneys", "Urinary bladder",
    "Prostate / Uterus and adnexa", "Peritoneal cavity", "Lymph nodes", "Impression",
)
_ABDOMEN_HEADINGS = (
    "Liver", "Gall bladder", "Pancreas", "Spleen", "Kidneys", "Urinary Bladder",
    "Prostate / Uterus / Adnexa", "Impression",
)
_KUB_TOPICS = (
    "Kidneys", "Ureters", "Urinary bladder", "Post-void residual",
    "Prostate / Uterus and adnexa", "Peritoneum", "Impression",
)
_KUB_HEADINGS = ("Kidneys", "Ureters", "Urinary Bladder", "Prostate / Uterus / Adnexa", "Impression")


TEMPLATES: dict[str, ReportTemplate] = {
    t.template_id: t
    for t in (
        ReportTemplate(
            "USG_ABDOMEN_MALE", "USG Whole Abdomen (Male)", _ABDOMEN_TOPICS, _ABDOMEN_HEADINGS,
            variant=ReportVariant.WHOLE_ABDOMEN, gender=Gender.MALE,
        ),
        ReportTemplate(
            "USG_ABDOMEN_FEMALE", "USG Whole Abdomen (Female)", _ABDOMEN_TOPICS, _ABDOMEN_HEADINGS,
            variant=ReportVariant.WHOLE_ABDOMEN, gender=Gender.FEMALE,
        ),
        ReportTemplate(
            "USG_KUB_MALE", "USG KUB (Male)", _KUB_TOPICS, _KUB_HEADINGS,
            variant=ReportVariant.KUB, gender=Gender.MALE,
        ),
        ReportTemplate(
            "USG_KUB_FEMALE", "USG KUB (Female)", _KUB_TOPICS, _KUB_HEADINGS,
            variant=ReportVariant.KUB, gender=Gender.FEMALE,
        ),
        ReportTemplate(
            "CT_HEAD", "CT Head",
            ("Brain parenchyma", "Hemorrhage", "Midline shift", "Ventricles and cisterns",
             "Extra-axial spaces", "Skull bones", "Paranasal sinuses"),
            ("Parenchyma", "Ventricles", "Extra-axial", "Bones/Sinuses"),
        ),
        ReportTemplate(
            "CT_CHEST", "CT Chest",
            ("Lungs and airways", "Pleura", "Mediastinum", "Heart and great vessels",
             "Lymph nodes", "Chest wall", "Upper abdomen"),
            ("Lungs", "Pleura", "Mediastinum", "Cardiac/Vessels", "Other"),
        ),
        ReportTemplate(
            "MRI_BRAIN", "MRI Brain",
            ("Brain parenchyma", "Diffusion restriction", "Hemorrhage", "Midline shift",
             "Ventricles", "Posterior fossa", "Pituitary/sella", "Orbits", "Paranasal sinuses"),
            ("Parenchyma", "Diffusion", "Ventricles", "Posterior Fossa", "Other"),
        ),
        ReportTemplate(
            "MRI_LUMBAR_SPINE", "MRI Lumbar Spine",
            ("Vertebral alignment", "Marrow signal", "Disc levels (L1-L2 to L5-S1)",
             "Canal stenosis", "Foraminal stenosis", "Conus/cauda", "Paraspinal soft tissues"),
            ("Alignment", "Discs", "Canal/Foramina", "Neural Elements", "Soft Tissues"),
        ),
        ReportTemplate(
            "XRAY_CHEST", "X-ray Chest",
            ("Lung fields", "Pleura", "Cardiac silhouette", "Mediastinum", "Diaphragm",
             "Bones", "Lines/tubes"),
            ("Lungs", "Pleura", "Cardiomediastinal", "Bones/Devices"),
        ),
        ReportTemplate(
            "XRAY_KNEE", "X-ray Knee",
            ("Bony alignment", "Joint spaces", "Fracture/dislocation", "Osteophytes",
             "Soft tissue swelling", "Effusion"),
            ("Alignment", "Bones", "Joint Spaces", "Soft Tissues"),
        ),
        ReportTemplate(
            "USG_ABDOMEN", "USG Abdomen",
            ("Liver", "Gallbladder", "Biliary tree", "Pancreas", "Spleen", "Kidneys",
             "Urinary bladder", "Aorta", "Ascites"),
            ("Hepatobiliary", "Pancreas", "Spleen", "Renal", "Other"),
        ),
        ReportTemplate(
            "DOPPLER_LOWER_LIMB", "Doppler Lower Limb",
            ("Common femoral vein", "Femoral vein", "Popliteal vein", "Calf veins",
             "Compressibility", "Flow pattern", "Thrombus"),
            ("Proximal Veins", "Distal Veins", "Flow/Thrombus"),
        ),
    )
}


def get_template(template_id: str) -> Optional[ReportTemplate]:
    return TEMPLATES.get((template_id or "").strip())


def list_templates() -> list[ReportTemplate]:
    return list(TEMPLATES.values())
