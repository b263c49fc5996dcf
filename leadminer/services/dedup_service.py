"""Duplicate detection for companies, decision makers, and signals.

Detection is a best-effort quality gate: every database-backed check fails
open and returns "not a duplicate" on any error, so it never aborts an
enrichment run.

Company rule (per existing record):
  1. both websites present and same domain -> "domain" (skip name check)
  2. otherwise similar company names       -> "name"
KDM rule: email (case-insensitive) -> "email", else LinkedIn URL -> "linkedin".
Signal rule: title (case-insensitive) -> "title", else URL -> "url".
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ..models import Company, DecisionMaker, Signal
from ..utils.domain import are_similar_company_names, extract_main_domain

log = logging.getLogger("leadminer.dedup")


@dataclass
class DuplicateMatch:
    record: dict
    match_type: str
    reason: str


@dataclass
class DuplicateCheck:
    is_duplicate: bool = False
    duplicates: list[DuplicateMatch] = field(default_factory=list)

    @classmethod
    def from_matches(cls, matches: list[DuplicateMatch]) -> "DuplicateCheck":
        return cls(is_duplicate=bool(matches), duplicates=matches)

    def to_dict(self) -> dict:
        return {
            "is_duplicate": self.is_duplicate,
            "duplicates": [
                {"record": m.record, "match_type": m.match_type, "reason": m.reason}
                for m in self.duplicates
            ],
        }


def _lower(v) -> str:
    return v.strip().lower() if isinstance(v, str) else ""


# ── Companies ───────────────────────────────────────────────────────────


def find_company_duplicates(company_name: str, website: str, existing: list[dict]) -> list[DuplicateMatch]:
    """Apply the company rule against pre-loaded records.

    Each record is a dict with at least company_name and website.
    """
    matches = []
    candidate_domain = extract_main_domain(website)
    for rec in existing:
        existing_website = rec.get("website")
        if website and existing_website:
            existing_domain = extract_main_domain(existing_website)
            if candidate_domain and existing_domain and candidate_domain == existing_domain:
                matches.append(DuplicateMatch(rec, "domain", f"Same domain: {existing_domain}"))
                continue
        if are_similar_company_names(company_name, rec.get("company_name")):
            matches.append(
                DuplicateMatch(rec, "name", f"Similar company name: {rec.get('company_name')}")
            )
    return matches


def load_company_records(db: Session, owner_id: str, exclude_id: int | None = None) -> list[dict]:
    q = db.query(Company.id, Company.company_name, Company.website).filter(
        Company.owner_id == owner_id
    )
    if exclude_id is not None:
        q = q.filter(Company.id != exclude_id)
    return [
        {"id": row.id, "company_name": row.company_name, "website": row.website}
        for row in q.all()
    ]


def check_company_duplicate(
    db: Session,
    owner_id: str,
    company_name: str,
    website: str,
    exclude_id: int | None = None,
) -> DuplicateCheck:
    try:
        existing = load_company_records(db, owner_id, exclude_id)
        return DuplicateCheck.from_matches(find_company_duplicates(company_name, website, existing))
    except Exception as e:
        log.warning("Company duplicate check failed for %r: %s", company_name, e)
        return DuplicateCheck()


class CompanyIndex:
    """Tenant's stored companies, loaded once per mining session.

    Accepted candidates are added so duplicates within a single session are
    caught as well. Two concurrent sessions for one tenant do not see each
    other's inserts (no locking).
    """

    def __init__(self, records: list[dict] | None = None):
        self.records = list(records or [])

    @classmethod
    def load(cls, db: Session, owner_id: str) -> "CompanyIndex":
        try:
            return cls(load_company_records(db, owner_id))
        except Exception as e:
            log.warning("Could not load existing companies for %s: %s", owner_id, e)
            return cls()

    def matches(self, company_name: str, website: str) -> list[DuplicateMatch]:
        return find_company_duplicates(company_name, website, self.records)

    def add(self, company_name: str, website: str) -> None:
        self.records.append({"id": None, "company_name": company_name, "website": website})


# ── Decision makers ─────────────────────────────────────────────────────


def find_kdm_duplicates(email: str, linkedin_profile: str, existing: list[dict]) -> list[DuplicateMatch]:
    matches = []
    email_l, linkedin_l = _lower(email), _lower(linkedin_profile)
    for rec in existing:
        if email_l and email_l == _lower(rec.get("email")):
            matches.append(DuplicateMatch(rec, "email", f"Same email: {rec.get('email')}"))
            continue
        if linkedin_l and linkedin_l == _lower(rec.get("linkedin_profile")):
            matches.append(
                DuplicateMatch(rec, "linkedin", f"Same LinkedIn profile: {rec.get('linkedin_profile')}")
            )
    return matches


def load_kdm_records(db: Session, company_id: int | None = None) -> list[dict]:
    q = db.query(DecisionMaker)
    if company_id is not None:
        q = q.filter(DecisionMaker.company_id == company_id)
    return [
        {
            "id": k.id,
            "first_name": k.first_name,
            "last_name": k.last_name,
            "email": k.email,
            "linkedin_profile": k.linkedin_profile,
            "company_id": k.company_id,
        }
        for k in q.all()
    ]


def check_kdm_duplicate(
    db: Session,
    email: str,
    linkedin_profile: str,
    company_id: int | None = None,
) -> DuplicateCheck:
    try:
        existing = load_kdm_records(db, company_id)
        return DuplicateCheck.from_matches(find_kdm_duplicates(email, linkedin_profile, existing))
    except Exception as e:
        log.warning("KDM duplicate check failed for %s: %s", email or linkedin_profile, e)
        return DuplicateCheck()


# ── Signals ─────────────────────────────────────────────────────────────


def find_signal_duplicates(signal_title: str, signal_url: str | None, existing: list[dict]) -> list[DuplicateMatch]:
    matches = []
    title_l, url_l = _lower(signal_title), _lower(signal_url)
    for rec in existing:
        if title_l and title_l == _lower(rec.get("signal_title")):
            matches.append(DuplicateMatch(rec, "title", f"Same signal title: {rec.get('signal_title')}"))
            continue
        if url_l and url_l == _lower(rec.get("signal_url")):
            matches.append(DuplicateMatch(rec, "url", f"Same signal URL: {rec.get('signal_url')}"))
    return matches


def load_signal_records(db: Session, company_id: int, signal_type: str) -> list[dict]:
    rows = (
        db.query(Signal)
        .filter(Signal.company_id == company_id, Signal.signal_type == signal_type)
        .all()
    )
    return [
        {
            "id": s.id,
            "signal_title": s.signal_title,
            "signal_type": s.signal_type,
            "signal_url": s.signal_url,
        }
        for s in rows
    ]


def check_signal_duplicate(
    db: Session,
    company_id: int,
    signal_title: str,
    signal_type: str,
    signal_url: str | None = None,
) -> DuplicateCheck:
    try:
        existing = load_signal_records(db, company_id, signal_type)
        return DuplicateCheck.from_matches(find_signal_duplicates(signal_title, signal_url, existing))
    except Exception as e:
        log.warning("Signal duplicate check failed for %r: %s", signal_title, e)
        return DuplicateCheck()
