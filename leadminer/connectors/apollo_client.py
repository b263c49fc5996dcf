"""Apollo.io client - decision-maker discovery and company firmographics.

Three capabilities:
  1. find_people()          - people at a domain filtered by title (mixed_people/search)
  2. reveal_person()        - verified contact details for one person (costs a credit)
  3. enrich_organization()  - company firmographics by domain (organizations/enrich)

A 401 is logged as an API-key problem and treated as zero results, like
every other failure: one company's directory lookup never stops a run.
"""

import logging
import re

import httpx
from pydantic import ValidationError

from ..exceptions import BudgetExhausted, ConfigurationError
from ..http_client import http
from ..schemas.providers import OrganizationProfile, Person

log = logging.getLogger("leadminer.apollo")

APOLLO_BASE = "https://api.apollo.io/v1"

# Titles searched during bulk mining
MINING_TITLES = ["CEO", "CTO", "Founder", "Co-Founder", "President", "VP", "Director"]

# Prioritized titles for single-company KDM discovery
KDM_TITLES = [
    "CEO",
    "COO",
    "Chief People Officer",
    "Director of Operations",
    "Human Resources Director",
    "Head of Operations",
    "Head of HR",
    "HR Manager",
    "Operations Manager",
]

# Title keyword families, checked in order. Multi-word keys match as
# substrings, single words match whole words only.
_CONTACT_TYPE_KEYWORDS = [
    ("ceo", ("chief executive", "managing director", "ceo", "founder", "president", "owner")),
    ("coo", ("chief operating", "coo", "operations")),
    ("hro", ("human resources", "chief people", "chro", "hr", "people", "talent")),
]


def classify_contact_type(title: str) -> str:
    """Map a job title to ceo / coo / hro, else kdm."""
    t = (title or "").lower().replace("vice president", "vp")
    words = set(re.findall(r"[a-z]+", t))
    for contact_type, keywords in _CONTACT_TYPE_KEYWORDS:
        for kw in keywords:
            if (" " in kw and kw in t) or kw in words:
                return contact_type
    return "kdm"


def should_discover_contacts(ai_score: int | None, threshold: int) -> bool:
    """KDM discovery is a paid call; only worth it for promising companies."""
    return (ai_score or 0) >= threshold


class ApolloClient:
    provider = "apollo"

    def __init__(self, api_key: str, *, throttle=None, client: httpx.AsyncClient | None = None, timeout: int = 30):
        if not api_key:
            raise ConfigurationError("APOLLO_API_KEY is not configured")
        self.api_key = api_key
        self.throttle = throttle
        self.client = client or http
        self.timeout = timeout

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Cache-Control": "no-cache",
            "X-Api-Key": self.api_key,
        }

    async def _request(self, method: str, path: str, **kwargs) -> dict | None:
        """Send one request. Returns parsed JSON or None on any failure."""
        try:
            if self.throttle is not None:
                await self.throttle.acquire(self.provider)
            resp = await self.client.request(
                method,
                f"{APOLLO_BASE}/{path}",
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
        except BudgetExhausted as e:
            log.warning("Apollo call skipped: %s", e)
            return None
        except httpx.HTTPError as e:
            log.error("Apollo request error on %s: %s", path, e)
            return None

        if resp.status_code == 401:
            log.error("Apollo authentication failed - check API key")
            return None
        if resp.status_code != 200:
            log.warning("Apollo %s failed: %s %s", path, resp.status_code, resp.text[:200])
            return None
        try:
            data = resp.json()
        except ValueError as e:
            log.warning("Apollo %s returned invalid JSON: %s", path, e)
            return None
        return data if isinstance(data, dict) else None

    async def find_people(
        self,
        domain: str = "",
        title_filter: list[str] | None = None,
        max_results: int = 2,
        *,
        company_name: str = "",
    ) -> list[Person]:
        """People at a company, by domain (preferred) or organization name."""
        payload: dict = {
            "person_titles": title_filter or MINING_TITLES,
            "page": 1,
            "per_page": max_results,
        }
        if domain:
            payload["q_organization_domains"] = [domain]
        elif company_name:
            payload["q_organization_names"] = [company_name]
        else:
            return []

        data = await self._request("POST", "mixed_people/search", json=payload)
        if not data:
            return []
        people = []
        for p in (data.get("people") or [])[:max_results]:
            if not isinstance(p, dict):
                continue
            try:
                people.append(_person_from_raw(p))
            except ValidationError as e:
                log.debug("Skipping malformed Apollo person: %s", e)
        return people

    async def reveal_person(self, person_id: str) -> Person | None:
        """Verified contact info for one person (one credit)."""
        data = await self._request("GET", f"people/{person_id}")
        if not data or not isinstance(data.get("person"), dict):
            return None
        try:
            return _person_from_raw(data["person"])
        except ValidationError as e:
            log.debug("Malformed Apollo person %s: %s", person_id, e)
            return None

    async def enrich_organization(self, domain: str) -> OrganizationProfile | None:
        if not domain:
            return None
        data = await self._request("GET", "organizations/enrich", params={"domain": domain})
        if not data or not isinstance(data.get("organization"), dict):
            return None
        org = dict(data["organization"])
        org["phone"] = org.get("phone") or _primary_phone(org.get("primary_phone"))
        try:
            return OrganizationProfile.model_validate(org)
        except ValidationError as e:
            log.warning("Malformed Apollo organization for %s: %s", domain, e)
            return None


def _primary_phone(value) -> str | None:
    # Apollo sends {"number": ...} but some records carry a bare string
    if isinstance(value, dict):
        value = value.get("number")
    return value if isinstance(value, str) and value else None


def _person_from_raw(p: dict) -> Person:
    data = dict(p)
    data["phone"] = _best_phone(p)
    if data.get("id") is not None:
        data["id"] = str(data["id"])
    return Person.model_validate(data)


def _best_phone(person: dict) -> str | None:
    """Direct dial > mobile > work > first listed."""
    if person.get("phone_number"):
        return person["phone_number"]
    phones = [p for p in (person.get("phone_numbers") or []) if isinstance(p, dict)]
    for ptype in ("direct_dial", "mobile", "work"):
        for p in phones:
            if p.get("type") == ptype and p.get("sanitized_number"):
                return p["sanitized_number"]
    if phones and phones[0].get("sanitized_number"):
        return phones[0]["sanitized_number"]
    return None
