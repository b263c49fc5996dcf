"""schemas/providers.py - Validated shapes for external API responses.

Each adapter parses raw JSON into these models at its boundary. Unknown
keys are ignored; wrong types coerce or drop to None.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SearchResult(_Lenient):
    title: str = ""
    snippet: str = ""
    link: str = ""
    date: str | None = None

    @field_validator("title", "snippet", "link", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> str:
        return "" if v is None else str(v)


class Person(_Lenient):
    id: str | None = None
    first_name: str = ""
    last_name: str = ""
    name: str = ""
    title: str = ""
    email: str | None = None
    email_status: str | None = None
    phone: str | None = None
    linkedin_url: str | None = None
    facebook_url: str | None = None

    @field_validator("first_name", "last_name", "name", "title", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @property
    def full_name(self) -> str:
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.name


class OrganizationProfile(_Lenient):
    name: str | None = None
    industry: str | None = None
    estimated_num_employees: int | None = None
    founded_year: int | None = None
    phone: str | None = None
    linkedin_url: str | None = None
    website_url: str | None = None
    short_description: str | None = None


class LinkedInGuess(_Lenient):
    linkedin_url: str | None = None
    confidence: str = "low"

    @field_validator("linkedin_url", mode="before")
    @classmethod
    def _null_string(cls, v: Any) -> str | None:
        if v is None:
            return None
        v = str(v).strip()
        return None if v.lower() in ("", "null", "none") else v


class ScoreResult(_Lenient):
    score: int = Field(default=0)
    reasoning: str = ""
    signals: list[str] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> int:
        try:
            n = int(float(v))
        except (TypeError, ValueError):
            n = 0
        return max(0, min(100, n))

    @field_validator("signals", mode="before")
    @classmethod
    def _strings_only(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [str(s).strip() for s in v if s and str(s).strip()]
