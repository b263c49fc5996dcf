"""AI gap-filling - LinkedIn inference, missing-field inference, lead scoring.

All three call sites go through OpenAIClient + extract_json. Acceptance is
conservative: a LinkedIn URL is only taken when it actually points at
linkedin.com, and field filling only ever writes fields that were both
missing and requested.
"""

import json
import logging

import httpx
from pydantic import ValidationError

from ..exceptions import AIRequestError, BudgetExhausted, MalformedResponse
from ..schemas.providers import LinkedInGuess, ScoreResult
from .candidate import GAP_FIELDS, CompanyCandidate

log = logging.getLogger("leadminer.ai")

# Failures every AI call site degrades on
AI_ERRORS = (AIRequestError, MalformedResponse, BudgetExhausted, httpx.HTTPError, ValidationError)

RESEARCHER_SYSTEM = (
    "You are a data researcher. Return only valid JSON with publicly available "
    "company information. Be concise and accurate. Use null for anything you "
    "cannot verify."
)

SCORING_SYSTEM = (
    "You are a B2B lead scoring expert. Analyze companies for sales potential "
    "and respond with JSON only."
)

_FIELD_HINTS = {
    "employee_size": "number of employees (e.g., '50', '100-500')",
    "founded_year": "year founded, as a number",
    "industry": "primary industry category",
    "phone": "main phone number",
    "email": "main contact email",
}


def signal_priority(score: int) -> str:
    if score >= 80:
        return "high"
    if score >= 60:
        return "medium"
    return "low"


def signals_from_score(result: ScoreResult) -> list[dict]:
    """One ai_insight signal payload per signal string returned by scoring."""
    priority = signal_priority(result.score)
    return [
        {
            "signal_type": "ai_insight",
            "signal_title": text[:500],
            "signal_description": result.reasoning or None,
            "priority": priority,
        }
        for text in result.signals
    ]


def apply_field_fill(candidate: CompanyCandidate, missing: list[str], data: dict) -> list[str]:
    """Merge AI-inferred values for the requested missing fields only."""
    filled = []
    for name in missing:
        if name not in GAP_FIELDS or getattr(candidate, name):
            continue
        value = data.get(name)
        if value in (None, "", "null"):
            continue
        if isinstance(value, str):
            value = value.strip()
        candidate.set_field(name, value, "openai")
        if getattr(candidate, name):
            filled.append(name)
    return filled


class AIGapFiller:
    def __init__(self, client, *, max_tokens: int = 500):
        self.client = client
        self.max_tokens = max_tokens

    async def infer_linkedin(self, candidate: CompanyCandidate) -> bool:
        """Ask the model for the LinkedIn page; True if one was accepted."""
        prompt = (
            f"Find the LinkedIn company page URL for: {candidate.name}\n"
            f"Website: {candidate.website}\n\n"
            "Return ONLY a JSON object:\n"
            '{"linkedin_url": "exact LinkedIn company page URL or null if not found", '
            '"confidence": "high|medium|low"}'
        )
        try:
            data = await self.client.complete_json(prompt, 150, system=RESEARCHER_SYSTEM)
            guess = LinkedInGuess.model_validate(data)
        except AI_ERRORS as e:
            log.warning("LinkedIn inference failed for %s: %s", candidate.name, e)
            return False

        if not guess.linkedin_url or "linkedin.com" not in guess.linkedin_url.lower():
            return False
        candidate.set_field("linkedin_url", guess.linkedin_url, "openai")
        return True

    async def fill_missing_fields(self, candidate: CompanyCandidate) -> list[str]:
        """Infer only the candidate's missing gap fields. Returns fields filled."""
        missing = candidate.missing_fields()
        if not missing:
            return []

        schema = ",\n".join(f'  "{f}": "{_FIELD_HINTS[f]}"' for f in missing)
        known = json.dumps(candidate.known_fields(), default=str)
        prompt = (
            f"Company: {candidate.name}\n"
            f"Website: {candidate.website}\n"
            f"Known data: {known}\n\n"
            f"The following fields are missing: {', '.join(missing)}.\n"
            "Return ONLY a JSON object with exactly these fields (use null if not found):\n"
            f"{{\n{schema}\n}}"
        )
        try:
            data = await self.client.complete_json(prompt, self.max_tokens, system=RESEARCHER_SYSTEM)
        except AI_ERRORS as e:
            log.warning("Gap filling failed for %s: %s", candidate.name, e)
            return []
        return apply_field_fill(candidate, missing, data)

    async def score(self, company: dict) -> ScoreResult:
        """Qualitative 0-100 lead score with reasoning and signal strings.

        Raises on failure; callers choose the fallback score.
        """
        enrichment = company.get("enrichment_data") or {}
        prompt = (
            "Analyze this B2B lead and score its sales potential.\n\n"
            f"Company: {company.get('company_name') or company.get('name')}\n"
            f"Industry: {company.get('industry') or 'N/A'}\n"
            f"Size: {company.get('employee_size') or 'N/A'}\n"
            f"Founded: {company.get('founded') or company.get('founded_year') or 'N/A'}\n"
            f"Website: {company.get('website') or 'N/A'}\n"
            f"Description: {company.get('description') or 'N/A'}\n"
            f"Enrichment data: {json.dumps(enrichment, default=str)[:2000]}\n\n"
            "Respond in JSON format:\n"
            '{"score": number 0-100, "reasoning": "brief assessment", '
            '"signals": ["growth or buying signal", "..."]}'
        )
        data = await self.client.complete_json(prompt, self.max_tokens, system=SCORING_SYSTEM)
        return ScoreResult.model_validate(data)


def candidate_scoring_view(candidate: CompanyCandidate) -> dict:
    return {
        "company_name": candidate.name,
        "website": candidate.website,
        "industry": candidate.industry,
        "employee_size": candidate.employee_size,
        "founded_year": candidate.founded_year,
        "description": candidate.description,
        "enrichment_data": {"linkedin_url": candidate.linkedin_url, "data_sources": candidate.source_info},
    }
