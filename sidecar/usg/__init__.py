"""USG report synthesis: canonical fields, organ-state normalization,
assembly, abnormality reconciliation and section regeneration.

usg.pipeline.generate_report() is the entry point used by the API.
"""

from usg.fields import Gender, ReportVariant
from usg.templates import ReportTemplate, get_template, list_templates

__all__ = [
    "Gender",
    "ReportVariant",
    "ReportTemplate",
    "get_template",
    "list_templates",
]
