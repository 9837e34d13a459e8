"""Pydantic models for report generation endpoints."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from usg.fields import Gender


class RegenerationAttemptModel(BaseModel):
    block_id: str
    ok: bool
    strict: bool = False
    raw_text: str = ""
    error: str = ""


class DebugInfo(BaseModel):
    """Only returned when DEBUG_MODEL_CLIENT=true."""

    raw_text: str = ""
    regeneration_attempts: list[RegenerationAttemptModel] = Field(default_factory=list)


class GenerateResponse(BaseModel):
    template_id: str
    observations: str
    flags: list[str] = Field(default_factory=list)
    disclaimer: str
    debug: Optional[DebugInfo] = None


class GenerateFromTextRequest(BaseModel):
    """Replay an already obtained model response through the report pipeline."""

    template_id: str = Field(..., min_length=1)
    raw_text: str = Field(..., min_length=1)
    gender: Optional[Gender] = None


class TemplateInfo(BaseModel):
    id: str
    title: str
    allowed_topics: list[str]
    headings: list[str] = Field(default_factory=list)
    structured: bool = False
    variant: Optional[str] = None
    gender: Optional[Gender] = None


class TemplateListResponse(BaseModel):
    templates: list[TemplateInfo]
    total: int
