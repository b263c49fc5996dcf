"""Mining pipeline - discover, enrich, score, dedup, and save leads.

One session runs as one sequential worker. External rate limits are the
binding constraint, so candidates are processed one at a time and every
outbound call goes through the session's Throttle.

States:
  initializing -> searching -> resolving_profiles -> enriching_gaps
  -> discovering_contacts -> deduplicating -> saving -> completed
  (cancelled / failed reachable from any non-terminal state)

Business Rules:
- Cancellation is checked before every unit of work in every stage
- Zero companies from the discovery search fails the whole session
- Any per-candidate failure after discovery is logged and the candidate
  continues; the candidate set never shrinks before dedup
- Existing companies are loaded once per session for dedup; concurrent
  sessions for the same tenant can still insert the same new company
- A rejected bulk insert marks progress failed but still returns the
  in-memory leads with success=True and a warning

Called by: routers/mining.py (start_mining), tests
Depends on: connectors (serper, apollo), services (ai_gap_filler, dedup,
progress), rate_limit
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ..config import Settings
from ..config import settings as default_settings
from ..connectors.apollo_client import MINING_TITLES, ApolloClient, classify_contact_type, should_discover_contacts
from ..connectors.serper_client import SerperClient, candidates_from_results, discovery_query, region_for_geography
from ..exceptions import ConfigurationError, NoSeedDataError, SessionConflictError
from ..models import Company, DecisionMaker, Signal
from ..rate_limit import Throttle, ThrottlePolicy, record_usage, remaining_daily
from ..schemas.mining import MiningRequest, MiningResult
from ..utils.domain import extract_main_domain
from ..utils.openai_client import OpenAIClient
from .ai_gap_filler import AIGapFiller, candidate_scoring_view, signals_from_score
from .candidate import CompanyCandidate
from .dedup_service import CompanyIndex, find_kdm_duplicates, find_signal_duplicates
from .progress_service import MINING_OPERATION, ProgressStore

log = logging.getLogger("leadminer.mining")

# Stage percentages: (start, end)
PCT_INITIALIZING = 5
PCT_SEARCHING = (5, 25)
PCT_PROFILES = (35, 65)
PCT_GAPS = (65, 85)
PCT_CONTACTS = (85, 95)
PCT_SAVING = 95

PROVIDERS = ("serper", "openai", "apollo")


class MiningCancelled(Exception):
    """Raised internally when the session's progress row is cancelled."""


@dataclass
class MiningConfig:
    """Everything a session needs, resolved once at session start."""

    serper_api_key: str = ""
    openai_api_key: str = ""
    apollo_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    results_per_query: int = 10
    max_tokens: int = 500
    max_kdms_per_company: int = 2
    kdm_score_threshold: int = 40
    auto_approve_high_score: bool = False
    auto_approve_threshold: int = 85
    default_score: int = 50
    policy: ThrottlePolicy = field(default_factory=ThrottlePolicy)

    @classmethod
    def from_settings(cls, settings: Settings, request: MiningRequest) -> "MiningConfig":
        limits = request.rate_limits
        return cls(
            serper_api_key=settings.serper_api_key,
            openai_api_key=settings.openai_api_key,
            apollo_api_key=settings.apollo_api_key,
            openai_model=settings.openai_model,
            results_per_query=limits.serper.results_per_query,
            max_tokens=limits.openai.max_tokens_per_request,
            max_kdms_per_company=limits.apollo.max_kdms_per_company,
            kdm_score_threshold=settings.kdm_score_threshold,
            auto_approve_high_score=settings.auto_approve_high_score,
            auto_approve_threshold=settings.auto_approve_threshold,
            default_score=settings.default_score,
            policy=ThrottlePolicy(
                intervals={
                    "serper": settings.serper_min_interval,
                    "openai": settings.openai_min_interval,
                    "apollo": settings.apollo_min_interval,
                },
                budgets={
                    "serper": limits.serper.daily_requests,
                    "openai": limits.openai.daily_requests,
                    "apollo": limits.apollo.max_credits_per_company * request.limit,
                },
            ),
        )

    def validate(self) -> None:
        missing = [
            name
            for name, value in (
                ("SERPER_API_KEY", self.serper_api_key),
                ("OPENAI_API_KEY", self.openai_api_key),
                ("APOLLO_API_KEY", self.apollo_api_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing required API keys ({', '.join(missing)})")


def _stage_pct(span: tuple[int, int], done: int, total: int) -> int:
    start, end = span
    if total <= 0:
        return end
    return round(start + (done / total) * (end - start))


def contact_payload(person) -> dict:
    return {
        "first_name": person.first_name,
        "last_name": person.last_name,
        "name": person.full_name,
        "title": person.title,
        "email": person.email,
        "phone": person.phone,
        "linkedin_url": person.linkedin_url,
        "contact_type": classify_contact_type(person.title),
    }


class MiningPipeline:
    def __init__(
        self,
        db: Session,
        config: MiningConfig,
        *,
        session_id: str,
        owner_id: str,
        search,
        ai,
        directory,
        progress: ProgressStore | None = None,
        throttle: Throttle | None = None,
        operation_type: str = MINING_OPERATION,
    ):
        self.db = db
        self.config = config
        self.session_id = session_id
        self.owner_id = owner_id
        self.search = search
        self.ai = ai
        self.directory = directory
        self.progress = progress or ProgressStore(db)
        self.throttle = throttle
        self.operation_type = operation_type

        self.state = "initializing"
        self.candidates: list[CompanyCandidate] = []
        self._pct = 0

    # ── Progress & cancellation ─────────────────────────────────────────

    def _enter(self, state: str) -> None:
        log.info("Mining %s: %s -> %s", self.session_id, self.state, state)
        self.state = state

    def _report(self, step: str, pct: int, results: int | None = None) -> None:
        # Progress reaches 100 only through the completion path
        self._pct = max(self._pct, min(pct, 99))
        if results is None:
            results = len(self.candidates)
        self.progress.upsert(
            self.session_id, self.operation_type, step, self._pct, results, owner_id=self.owner_id
        )

    def _check_cancelled(self) -> None:
        if self.progress.is_cancelled(self.session_id):
            raise MiningCancelled()

    # ── Run ─────────────────────────────────────────────────────────────

    async def run(self, request: MiningRequest) -> MiningResult:
        log.info(
            "Mining leads for %s in %s, limit %d (session %s)",
            request.industry, request.geography, request.limit, self.session_id,
        )
        try:
            return await self._run(request)
        except MiningCancelled:
            log.info("Mining %s cancelled during %s", self.session_id, self.state)
            self._enter("cancelled")
            self.progress.mark_cancelled(
                self.session_id,
                self.operation_type,
                f"Mining cancelled by user ({len(self.candidates)} candidates found)",
                len(self.candidates),
            )
            return MiningResult(
                success=True,
                cancelled=True,
                session_id=self.session_id,
                leads=[self._lead_payload(c, request) for c in self.candidates],
                count=len(self.candidates),
            )
        except NoSeedDataError as e:
            log.warning("Mining %s: %s", self.session_id, e)
            return self._fail(str(e), results=0)
        except Exception as e:
            log.exception("Mining %s failed during %s", self.session_id, self.state)
            return self._fail(str(e) or e.__class__.__name__, results=len(self.candidates))
        finally:
            self._record_usage()

    def _fail(self, message: str, results: int) -> MiningResult:
        self._enter("failed")
        self.progress.upsert(
            self.session_id, self.operation_type, "Mining failed", self._pct, results, error=message
        )
        return MiningResult(success=False, session_id=self.session_id, error=message)

    async def _run(self, request: MiningRequest) -> MiningResult:
        self._check_cancelled()
        self._report("Initializing enhanced mining process...", PCT_INITIALIZING, 0)

        await self._search(request)
        await self._resolve_profiles()
        await self._enrich_gaps()
        await self._discover_contacts()
        unique, skipped = self._deduplicate()
        return self._save(request, unique, skipped)

    # ── Stages ──────────────────────────────────────────────────────────

    async def _search(self, request: MiningRequest) -> None:
        self._enter("searching")
        self._check_cancelled()
        self._report("Searching for companies...", PCT_SEARCHING[0] + 5, 0)

        results = await self.search.search(
            discovery_query(request.industry, request.geography),
            self.config.results_per_query,
            region_for_geography(request.geography),
        )
        self.candidates = candidates_from_results(results, request.limit)
        log.info("Search found %d results, %d candidates", len(results), len(self.candidates))
        if not self.candidates:
            raise NoSeedDataError(
                f"No companies found for {request.industry} in {request.geography}"
            )
        self._report(f"Found {len(self.candidates)} potential companies", PCT_SEARCHING[1])

    async def _resolve_profiles(self) -> None:
        self._enter("resolving_profiles")
        total = len(self.candidates)
        self._report("Discovering LinkedIn profiles...", PCT_PROFILES[0])
        for i, candidate in enumerate(self.candidates, 1):
            self._check_cancelled()
            try:
                found = await self.search.resolve_linkedin_profile(candidate)
                if not found:
                    await self.ai.infer_linkedin(candidate)
            except Exception as e:
                log.error("LinkedIn discovery failed for %s: %s", candidate.name, e)
                candidate.record_error("resolving_profiles", e)
            self._report(
                f"LinkedIn discovery: {i}/{total} companies", _stage_pct(PCT_PROFILES, i, total)
            )

    async def _enrich_gaps(self) -> None:
        self._enter("enriching_gaps")
        total = len(self.candidates)
        self._report("Enriching company data with AI...", PCT_GAPS[0])
        for i, candidate in enumerate(self.candidates, 1):
            self._check_cancelled()
            try:
                await self.ai.fill_missing_fields(candidate)
            except Exception as e:
                log.error("AI enrichment failed for %s: %s", candidate.name, e)
                candidate.record_error("enriching_gaps", e)

            try:
                result = await self.ai.score(candidate_scoring_view(candidate))
                candidate.ai_score = result.score
                candidate.score_reasoning = result.reasoning
                candidate.signals = signals_from_score(result)
            except Exception as e:
                log.warning("Scoring failed for %s, using default: %s", candidate.name, e)
                candidate.ai_score = self.config.default_score
                candidate.record_error("scoring", e)

            self._report(f"AI enrichment: {i}/{total} companies", _stage_pct(PCT_GAPS, i, total))

    async def _discover_contacts(self) -> None:
        self._enter("discovering_contacts")
        total = len(self.candidates)
        self._report("Discovering key decision makers...", PCT_CONTACTS[0])
        for i, candidate in enumerate(self.candidates, 1):
            self._check_cancelled()
            domain = extract_main_domain(candidate.website)
            if domain and should_discover_contacts(candidate.ai_score, self.config.kdm_score_threshold):
                try:
                    people = await self.directory.find_people(
                        domain, MINING_TITLES, self.config.max_kdms_per_company
                    )
                    candidate.contacts = [contact_payload(p) for p in people]
                    first_email = next((p.email for p in people if p.email), None)
                    if first_email and not candidate.email:
                        candidate.set_field("email", first_email, "apollo")
                except Exception as e:
                    log.error("KDM discovery failed for %s: %s", candidate.name, e)
                    candidate.record_error("discovering_contacts", e)
            else:
                log.debug(
                    "Skipping KDM discovery for %s (score %s)", candidate.name, candidate.ai_score
                )
            self._report(
                f"KDM discovery: {i}/{total} companies", _stage_pct(PCT_CONTACTS, i, total)
            )

    def _deduplicate(self) -> tuple[list[CompanyCandidate], int]:
        self._enter("deduplicating")
        self._check_cancelled()
        self._report("Checking for duplicates...", PCT_SAVING)

        index = CompanyIndex.load(self.db, self.owner_id)
        unique, skipped = [], 0
        for candidate in self.candidates:
            matches = index.matches(candidate.name, candidate.website)
            if matches:
                skipped += 1
                log.info("Skipping duplicate: %s (%s)", candidate.name, matches[0].reason)
                continue
            index.add(candidate.name, candidate.website)
            unique.append(candidate)
        return unique, skipped

    def _save(self, request: MiningRequest, unique: list[CompanyCandidate], skipped: int) -> MiningResult:
        self._enter("saving")
        self._check_cancelled()
        leads = [self._lead_payload(c, request) for c in self.candidates]
        result = MiningResult(
            success=True,
            session_id=self.session_id,
            leads=leads,
            count=len(leads),
            duplicates_skipped=skipped,
            sources_used={p: True for p in PROVIDERS},
        )

        if not unique:
            self._complete("No new unique leads found", 0)
            return result

        self._report("Saving results to database...", PCT_SAVING, len(unique))
        try:
            saved = self._insert(request, unique)
        except Exception as e:
            self.db.rollback()
            log.error("Database insert failed for session %s: %s", self.session_id, e)
            self._enter("failed")
            self.progress.upsert(
                self.session_id, self.operation_type, "Database save failed",
                self._pct, len(unique), error=str(e),
            )
            result.warning = "Some leads may not have been saved to database"
            result.database_error = str(e)
            return result

        result.saved = saved
        self._complete(f"Successfully saved {saved} leads", saved)
        return result

    def _complete(self, step: str, results: int) -> None:
        self._enter("completed")
        self._pct = 100
        self.progress.upsert(
            self.session_id, self.operation_type, step, 100, results, owner_id=self.owner_id
        )

    # ── Persistence ─────────────────────────────────────────────────────

    def _status_for(self, score: int | None) -> str:
        if self.config.auto_approve_high_score and (score or 0) >= self.config.auto_approve_threshold:
            return "approved"
        return "pending_review"

    def _lead_payload(self, c: CompanyCandidate, request: MiningRequest) -> dict:
        return {
            "company_name": c.name,
            "website": c.website,
            "linkedin_profile": c.linkedin_url,
            "industry": c.industry or request.industry,
            "employee_size": c.employee_size or "",
            "employee_size_numeric": c.employee_size_numeric,
            "founded": c.founded_year,
            "public_email": c.email or "",
            "public_phone": c.phone or "",
            "description": c.description or "",
            "location": request.geography,
            "owner_id": self.owner_id,
            "source": "scraping",
            "status": self._status_for(c.ai_score),
            "ai_score": c.ai_score if c.ai_score is not None else self.config.default_score,
            "enrichment_data": {
                "session_id": self.session_id,
                "contacts_found": len(c.contacts),
                "data_sources": dict(c.source_info),
                "apollo_contacts": [
                    {k: p.get(k) for k in ("name", "title", "email", "linkedin_url")}
                    for p in c.contacts
                ],
                "score_reasoning": c.score_reasoning,
                "errors": list(c.errors),
            },
        }

    def _insert(self, request: MiningRequest, unique: list[CompanyCandidate]) -> int:
        """Insert companies with their KDMs and signals as one transaction."""
        for c in unique:
            company = Company(**self._lead_payload(c, request))
            self.db.add(company)
            self.db.flush()

            kept_contacts: list[dict] = []
            for p in c.contacts:
                if find_kdm_duplicates(p.get("email"), p.get("linkedin_url"), kept_contacts):
                    continue
                kept_contacts.append({"email": p.get("email"), "linkedin_profile": p.get("linkedin_url")})
                self.db.add(
                    DecisionMaker(
                        company_id=company.id,
                        first_name=p.get("first_name") or "",
                        last_name=p.get("last_name") or "",
                        designation=p.get("title"),
                        email=p.get("email"),
                        phone=p.get("phone"),
                        linkedin_profile=p.get("linkedin_url"),
                        contact_type=p.get("contact_type") or "kdm",
                        confidence_score=70 if p.get("email") else 50,
                    )
                )

            kept_signals: list[dict] = []
            for s in c.signals:
                if find_signal_duplicates(s["signal_title"], s.get("signal_url"), kept_signals):
                    continue
                kept_signals.append(s)
                self.db.add(Signal(company_id=company.id, **s))

        self.db.commit()
        log.info("Inserted %d unique companies for session %s", len(unique), self.session_id)
        return len(unique)

    def _record_usage(self) -> None:
        if self.throttle is None:
            return
        for provider, count in self.throttle.calls.items():
            record_usage(self.db, self.owner_id, provider, self.operation_type, count)


# ── Session entry points ────────────────────────────────────────────────

_running_tasks: set[asyncio.Task] = set()


def build_pipeline(
    db: Session,
    config: MiningConfig,
    *,
    session_id: str,
    owner_id: str,
    daily_limits: dict[str, int] | None = None,
    client=None,
) -> MiningPipeline:
    """Wire real adapters for a session, sharing one Throttle."""
    policy = config.policy
    if daily_limits:
        budgets = dict(policy.budgets)
        for provider, limit in daily_limits.items():
            left = remaining_daily(db, owner_id, provider, limit)
            current = budgets.get(provider)
            budgets[provider] = left if current is None else min(current, left)
        policy = ThrottlePolicy(intervals=dict(policy.intervals), budgets=budgets)

    throttle = Throttle(policy)
    search = SerperClient(config.serper_api_key, throttle=throttle, client=client)
    ai_client = OpenAIClient(
        config.openai_api_key, model=config.openai_model, throttle=throttle, client=client
    )
    directory = ApolloClient(config.apollo_api_key, throttle=throttle, client=client)
    return MiningPipeline(
        db,
        config,
        session_id=session_id,
        owner_id=owner_id,
        search=search,
        ai=AIGapFiller(ai_client, max_tokens=config.max_tokens),
        directory=directory,
        progress=ProgressStore(db),
        throttle=throttle,
    )


def _daily_limits(settings: Settings) -> dict[str, int]:
    return {
        "serper": settings.serper_daily_limit,
        "openai": settings.openai_daily_limit,
        "apollo": settings.apollo_daily_limit,
    }


async def _execute_mining(session_id: str, owner_id: str, request: MiningRequest, config: MiningConfig, daily_limits: dict):
    """Run one session in the background on its own DB session."""
    from ..database import SessionLocal

    db = SessionLocal()
    try:
        pipeline = build_pipeline(
            db, config, session_id=session_id, owner_id=owner_id, daily_limits=daily_limits
        )
        result = await pipeline.run(request)
        log.info(
            "Mining %s finished: success=%s cancelled=%s saved=%d",
            session_id, result.success, result.cancelled, result.saved,
        )
    finally:
        db.close()


def _on_mining_done(session_id: str, owner_id: str):
    """Done-callback: log a run that crashed outside the pipeline and fail its row."""

    def callback(task: asyncio.Task) -> None:
        _running_tasks.discard(task)
        if task.cancelled() or task.exception() is None:
            return
        exc = task.exception()
        log.error("Mining %s crashed: %s", session_id, exc, exc_info=exc)

        from ..database import SessionLocal

        try:
            with SessionLocal() as db:
                ProgressStore(db).upsert(
                    session_id, MINING_OPERATION, "Mining failed", 0, 0, error=str(exc), owner_id=owner_id
                )
        except Exception as e:
            log.error("Could not mark mining %s failed: %s", session_id, e)

    return callback


def start_mining(db: Session, owner_id: str, request: MiningRequest, settings: Settings | None = None) -> str:
    """Validate configuration, create the progress row, schedule the run.

    Raises ConfigurationError before anything is written, and
    SessionConflictError when a client-chosen session id is already taken
    (by any tenant, in any status). Must be called from a running event loop.
    """
    settings = settings or default_settings
    config = MiningConfig.from_settings(settings, request)
    config.validate()

    store = ProgressStore(db)
    session_id = request.session_id or uuid.uuid4().hex
    if request.session_id and store.get(session_id) is not None:
        raise SessionConflictError(f"Mining session {session_id} already exists")
    store.upsert(session_id, MINING_OPERATION, "Mining session queued", 0, 0, owner_id=owner_id)

    task = asyncio.create_task(
        _execute_mining(session_id, owner_id, request, config, _daily_limits(settings))
    )
    _running_tasks.add(task)
    task.add_done_callback(_on_mining_done(session_id, owner_id))
    return session_id
