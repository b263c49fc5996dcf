"""In-flight company record carried through the mining pipeline."""

import re
from dataclasses import dataclass, field

from ..utils import safe_int

# Field name -> stored Company column
STORED_FIELDS = {
    "name": "company_name",
    "website": "website",
    "linkedin_url": "linkedin_profile",
    "employee_size": "employee_size",
    "founded_year": "founded",
    "industry": "industry",
    "phone": "public_phone",
    "email": "public_email",
    "description": "description",
}

GAP_FIELDS = ("employee_size", "founded_year", "industry", "phone", "email")

_FIRST_NUMBER_RE = re.compile(r"\d[\d,]*")


def parse_employee_count(value) -> int | None:
    """First integer in an employee-size string: "1,200" -> 1200, "50-200" -> 50."""
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    m = _FIRST_NUMBER_RE.search(str(value))
    return safe_int(m.group(0).replace(",", "")) if m else None


@dataclass
class CompanyCandidate:
    """Company found during a mining session, not yet persisted.

    Populated fields must be written through set_field() so that
    source_info always records which stage produced each value.
    """

    name: str
    website: str = ""
    description: str = ""
    linkedin_url: str | None = None
    employee_size: str | None = None
    employee_size_numeric: int | None = None
    founded_year: int | None = None
    industry: str | None = None
    phone: str | None = None
    email: str | None = None
    source_info: dict[str, str] = field(default_factory=dict)

    ai_score: int | None = None
    score_reasoning: str = ""
    signals: list[dict] = field(default_factory=list)
    contacts: list[dict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def set_field(self, name: str, value, source: str) -> None:
        if name == "employee_size":
            self.employee_size = str(value)
            self.employee_size_numeric = parse_employee_count(value)
        elif name == "founded_year":
            self.founded_year = safe_int(value)
            if self.founded_year is None:
                return
        else:
            setattr(self, name, value)
        self.source_info[name] = source

    def missing_fields(self) -> list[str]:
        return [f for f in GAP_FIELDS if not getattr(self, f)]

    def known_fields(self) -> dict:
        return {
            k: getattr(self, k)
            for k in ("name", "website", "linkedin_url", "description", *GAP_FIELDS)
            if getattr(self, k)
        }

    def record_error(self, stage: str, err: Exception) -> None:
        self.errors.append(f"{stage}: {str(err)[:200]}")
