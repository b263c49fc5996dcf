"""Per-company lead operations - KDM discovery, scoring, signals, enrichment.

These run against one stored Company on demand, with the same adapters the
mining pipeline uses.

Business Rules:
- KDM discovery only runs for companies scoring at or above the threshold
- Titles are tried in priority order; at most one KDM per title
- Each contact reveal costs one credit; stop at max_kdms or max_credits
- Only KDMs with a verified email are stored; stored people are never re-added
- Enrichment fills empty fields only and never overwrites user data
- Signals are inserted only when no duplicate exists for the company

Called by: routers/leads.py
Depends on: connectors (apollo, serper), services (ai_gap_filler, dedup)
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from ..config import settings
from ..connectors.apollo_client import KDM_TITLES, should_discover_contacts
from ..models import Company, DecisionMaker, Signal
from ..utils.domain import extract_main_domain
from .ai_gap_filler import signals_from_score
from .dedup_service import find_kdm_duplicates, find_signal_duplicates, load_kdm_records, load_signal_records

log = logging.getLogger("leadminer.leads")

NEWS_QUERIES = (
    '"{name}" funding raised investment',
    '"{name}" expansion hiring new office',
    '"{name}" product launch',
    '"{name}" partnership',
)

# (signal_type, priority, title keywords), first match wins
SIGNAL_RULES = (
    ("funding", "high", ("funding", "investment", "raised", "series")),
    ("growth", "high", ("hiring", "expansion", "expands", "new office")),
    ("product", "medium", ("launch", "product", "release")),
)


def classify_news_title(title: str) -> tuple[str, str]:
    """Map a headline to (signal_type, priority)."""
    t = (title or "").lower()
    for signal_type, priority, keywords in SIGNAL_RULES:
        if any(kw in t for kw in keywords):
            return signal_type, priority
    return "news", "medium"


def _add_signals(db: Session, company: Company, signals: list[dict]) -> int:
    """Insert signals that don't duplicate stored or earlier ones. Returns count."""
    existing_by_type: dict[str, list[dict]] = {}
    added = 0
    for s in signals:
        stype = s["signal_type"]
        if stype not in existing_by_type:
            existing_by_type[stype] = load_signal_records(db, company.id, stype)
        existing = existing_by_type[stype]
        if find_signal_duplicates(s["signal_title"], s.get("signal_url"), existing):
            log.debug("Skipping duplicate signal for %s: %s", company.company_name, s["signal_title"])
            continue
        db.add(Signal(company_id=company.id, **s))
        existing.append({"signal_title": s["signal_title"], "signal_url": s.get("signal_url")})
        added += 1
    return added


# ── KDM discovery ───────────────────────────────────────────────────────


async def discover_kdms(
    db: Session,
    company: Company,
    directory,
    max_credits: int = 10,
    max_kdms: int = 2,
    threshold: int | None = None,
) -> dict:
    threshold = settings.kdm_score_threshold if threshold is None else threshold
    if not should_discover_contacts(company.ai_score, threshold):
        log.info(
            "Skipping KDM discovery for %s: score %s below %d",
            company.company_name, company.ai_score, threshold,
        )
        return {
            "success": False,
            "error": f"Company score {company.ai_score or 0} is below the KDM threshold of {threshold}",
            "kdms": [],
            "credits_used": 0,
        }

    existing = load_kdm_records(db, company.id)
    domain = extract_main_domain(company.website)
    selected: list[DecisionMaker] = []
    titles_searched: list[str] = []
    skipped_duplicates: list[str] = []
    skipped_unverified: list[str] = []
    credits_used = 0

    for title in KDM_TITLES:
        if len(selected) >= max_kdms or credits_used >= max_credits:
            break
        titles_searched.append(title)
        people = await directory.find_people(
            domain, [title], 5, company_name="" if domain else company.company_name
        )
        for person in people:
            if credits_used >= max_credits:
                break
            if find_kdm_duplicates(person.email, person.linkedin_url, existing):
                skipped_duplicates.append(f"{person.full_name} ({title})")
                continue
            if not person.id:
                continue

            verified = await directory.reveal_person(person.id)
            credits_used += 1
            if not verified or not verified.email or verified.email_status != "verified":
                skipped_unverified.append(f"{person.full_name} ({title})")
                continue
            if find_kdm_duplicates(verified.email, verified.linkedin_url, existing):
                skipped_duplicates.append(f"{verified.full_name} ({title})")
                continue

            kdm = DecisionMaker(
                company_id=company.id,
                first_name=verified.first_name,
                last_name=verified.last_name,
                designation=verified.title or title,
                email=verified.email,
                email_status="verified",
                phone=verified.phone,
                linkedin_profile=verified.linkedin_url,
                facebook_profile=verified.facebook_url,
                contact_type="kdm",
                confidence_score=90,
            )
            db.add(kdm)
            selected.append(kdm)
            existing.append({"email": verified.email, "linkedin_profile": verified.linkedin_url})
            log.info("Added verified KDM %s (%s) for %s", verified.full_name, title, company.company_name)
            break

    db.commit()
    return {
        "success": True,
        "kdms": [
            {"id": k.id, "name": f"{k.first_name} {k.last_name}".strip(), "designation": k.designation, "email": k.email}
            for k in selected
        ],
        "credits_used": credits_used,
        "titles_searched": titles_searched,
        "skipped_duplicates": skipped_duplicates,
        "skipped_unverified": skipped_unverified,
    }


# ── Scoring ─────────────────────────────────────────────────────────────


def _company_view(company: Company) -> dict:
    return {
        "company_name": company.company_name,
        "website": company.website,
        "industry": company.industry,
        "employee_size": company.employee_size,
        "founded": company.founded,
        "description": company.description,
        "enrichment_data": company.enrichment_data or {},
    }


async def score_company(db: Session, company: Company, ai) -> dict:
    """Re-score a stored company. Raises the AI error if scoring fails."""
    result = await ai.score(_company_view(company))
    company.ai_score = result.score
    data = dict(company.enrichment_data or {})
    data["score_reasoning"] = result.reasoning
    data["scored_at"] = datetime.now(timezone.utc).isoformat()
    company.enrichment_data = data
    added = _add_signals(db, company, signals_from_score(result))
    db.commit()
    log.info("Scored %s: %d (%d new signals)", company.company_name, result.score, added)
    return {"success": True, "score": result.score, "reasoning": result.reasoning, "signals_created": added}


# ── Signal generation ───────────────────────────────────────────────────


async def generate_signals(db: Session, company: Company, search) -> dict:
    signals = []
    for template in NEWS_QUERIES:
        results = await search.news(template.format(name=company.company_name), 3)
        for article in results:
            if not article.title:
                continue
            signal_type, priority = classify_news_title(article.title)
            signals.append(
                {
                    "signal_type": signal_type,
                    "signal_title": article.title[:500],
                    "signal_description": article.snippet,
                    "signal_url": article.link or None,
                    "priority": priority,
                }
            )
    added = _add_signals(db, company, signals)
    db.commit()
    log.info("Generated %d signals for %s (%d found)", added, company.company_name, len(signals))
    return {"success": True, "signals_found": len(signals), "signals_created": added}


# ── Enrichment ──────────────────────────────────────────────────────────


async def enrich_company(db: Session, company: Company, directory) -> dict:
    domain = extract_main_domain(company.website)
    org = await directory.enrich_organization(domain)
    if org is None:
        return {"success": False, "message": "Company not found in directory", "updated_fields": []}

    updates = {
        "industry": org.industry,
        "employee_size": str(org.estimated_num_employees) if org.estimated_num_employees else None,
        "employee_size_numeric": org.estimated_num_employees,
        "founded": org.founded_year,
        "public_phone": org.phone,
        "linkedin_profile": org.linkedin_url,
        "description": org.short_description,
    }
    updated = []
    for column, value in updates.items():
        if value and not getattr(company, column):
            setattr(company, column, value)
            updated.append(column)

    data = dict(company.enrichment_data or {})
    data["apollo_data"] = org.model_dump(exclude_none=True)
    data["enriched_at"] = datetime.now(timezone.utc).isoformat()
    company.enrichment_data = data
    company.status = "enriched"
    db.commit()
    log.info("Enriched %s: %s", company.company_name, ", ".join(updated) or "no new fields")
    return {"success": True, "updated_fields": updated}
