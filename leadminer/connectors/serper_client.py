"""Serper.dev client - Google web and news search.

Used twice by the mining pipeline:
  1. discovery: industry + geography phrase -> company candidates
  2. profile:   "<name>" site:linkedin.com/company -> LinkedIn page

Every failure (non-200, transport error, spent budget, bad payload) is
logged and returned as "nothing found". A missing API key is a
configuration error raised at construction.
"""

import logging
import re

import httpx
from pydantic import ValidationError

from ..exceptions import BudgetExhausted, ConfigurationError
from ..http_client import http
from ..schemas.providers import SearchResult
from ..services.candidate import CompanyCandidate
from ..utils.domain import hostname_domain

log = logging.getLogger("leadminer.serper")

SERPER_BASE = "https://google.serper.dev"

_EMPLOYEES_RE = re.compile(r"(\d[\d,]*)\s*employees", re.IGNORECASE)


class SerperClient:
    provider = "serper"

    def __init__(self, api_key: str, *, throttle=None, client: httpx.AsyncClient | None = None, timeout: int = 15):
        if not api_key:
            raise ConfigurationError("SERPER_API_KEY is not configured")
        self.api_key = api_key
        self.throttle = throttle
        self.client = client or http
        self.timeout = timeout

    async def _post(self, path: str, payload: dict, result_key: str) -> list[SearchResult]:
        try:
            if self.throttle is not None:
                await self.throttle.acquire(self.provider)
            resp = await self.client.post(
                f"{SERPER_BASE}/{path}",
                headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
                json=payload,
                timeout=self.timeout,
            )
        except BudgetExhausted as e:
            log.warning("Serper search skipped: %s", e)
            return []
        except httpx.HTTPError as e:
            log.error("Serper request error for %r: %s", payload.get("q"), e)
            return []

        if resp.status_code != 200:
            log.warning("Serper search failed: %s %s", resp.status_code, resp.text[:200])
            return []

        try:
            items = resp.json().get(result_key) or []
            return [SearchResult.model_validate(i) for i in items if isinstance(i, dict)]
        except (ValueError, AttributeError, ValidationError) as e:
            log.warning("Serper returned malformed payload: %s", e)
            return []

    async def search(self, query: str, result_count: int = 10, region: str | None = None) -> list[SearchResult]:
        """Organic web results, best first."""
        payload = {"q": query, "num": result_count}
        if region:
            payload["gl"] = region
        return await self._post("search", payload, "organic")

    async def news(self, query: str, result_count: int = 3, period: str = "qdr:m3") -> list[SearchResult]:
        """News articles from the given period (default last 3 months)."""
        return await self._post("news", {"q": query, "num": result_count, "tbs": period}, "news")

    async def resolve_linkedin_profile(self, candidate: CompanyCandidate) -> bool:
        """Find the company's LinkedIn page; backfill employee size from the snippet.

        Returns True when a profile was found.
        """
        results = await self.search(f'"{candidate.name}" site:linkedin.com/company', result_count=3)
        for r in results:
            if "linkedin.com/company/" not in r.link:
                continue
            candidate.set_field("linkedin_url", r.link, "serper")
            m = _EMPLOYEES_RE.search(r.snippet)
            if m and not candidate.employee_size:
                candidate.set_field("employee_size", m.group(1), "serper")
            return True
        return False


def region_for_geography(geography: str) -> str:
    """Serper "gl" country code for a geography selector."""
    g = (geography or "").strip().lower()
    if g in ("uk", "uk-au", "united kingdom", "gb"):
        return "uk"
    if g in ("au", "australia"):
        return "au"
    return "us"


def discovery_query(industry: str, geography: str) -> str:
    return f'"{industry}" companies {geography} startup scaleup'


def company_name_from_title(title: str) -> str:
    return title.split(" - ")[0].split(" | ")[0].strip()


def candidates_from_results(results: list[SearchResult], limit: int) -> list[CompanyCandidate]:
    """Turn ranked search results into company candidates.

    Title is cut at the first " - " / " | " to approximate the company name;
    the link hostname (minus www.) becomes the website.
    """
    candidates = []
    for r in results[:limit]:
        if not r.link or not r.title:
            continue
        domain = hostname_domain(r.link)
        if not domain:
            log.debug("Invalid URL in search result: %s", r.link)
            continue
        name = company_name_from_title(r.title)
        if not name:
            continue
        c = CompanyCandidate(name=name, source_info={"name": "serper"})
        c.set_field("website", f"https://{domain}", "serper")
        if r.snippet:
            c.set_field("description", r.snippet, "serper")
        candidates.append(c)
    return candidates
