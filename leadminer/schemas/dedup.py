"""schemas/dedup.py - Duplicate-check request and response bodies."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CompanyDuplicateRequest(BaseModel):
    company_name: str = Field(..., min_length=1, max_length=255)
    website: str = ""
    exclude_id: int | None = None


class KDMDuplicateRequest(BaseModel):
    email: str = ""
    linkedin_profile: str = ""
    company_id: int | None = None


class SignalDuplicateRequest(BaseModel):
    company_id: int
    signal_title: str = Field(..., min_length=1)
    signal_type: str = Field(..., min_length=1)
    signal_url: str | None = None


class DuplicateMatchOut(BaseModel):
    record: dict
    match_type: str
    reason: str


class DuplicateCheckResponse(BaseModel):
    is_duplicate: bool
    duplicates: list[DuplicateMatchOut] = Field(default_factory=list)
