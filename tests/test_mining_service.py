"""
test_mining_service.py - Tests for leadminer/services/mining_service.py

Covers: end-to-end pipeline with fake adapters, zero-seed failure,
per-candidate failure isolation, KDM score gate, dedup against stored
companies, cancellation, storage failure reporting, auto-approval,
usage recording, and session start validation.

Called by: pytest
Depends on: leadminer.services.mining_service, tests/fakes.py, conftest fixtures
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from fakes import FakeAI, FakeDirectory, FakeSearch, make_person, make_results
from leadminer.config import Settings
from leadminer.exceptions import ConfigurationError, SessionConflictError
from leadminer.models import ApiUsage, Company, DecisionMaker, MiningProgress, Signal
from leadminer.rate_limit import Throttle, ThrottlePolicy, record_usage
from leadminer.schemas.mining import MiningRequest
from leadminer.services.mining_service import MiningConfig, MiningPipeline, build_pipeline, start_mining
from leadminer.services.progress_service import MINING_OPERATION, ProgressBroadcaster, ProgressStore

SID = "mine-1"
OWNER = "user-1"
NAMES = ("Alpha Labs", "Beta Works", "Gamma Data", "Delta Cloud", "Omega Apps")


class RecordingStore(ProgressStore):
    """ProgressStore that remembers every percentage it was asked to write."""

    def __init__(self, db):
        super().__init__(db, ProgressBroadcaster())
        self.percentages = []

    def upsert(self, session_id, operation_type, step, percentage, results=0, error=None, *, owner_id=None):
        self.percentages.append(percentage)
        return super().upsert(session_id, operation_type, step, percentage, results, error, owner_id=owner_id)


def _config(**kw) -> MiningConfig:
    base = dict(serper_api_key="s", openai_api_key="o", apollo_api_key="a")
    base.update(kw)
    return MiningConfig(**base)


def _request(limit=5) -> MiningRequest:
    return MiningRequest(industry="SaaS", geography="UK", limit=limit)


def _pipeline(db, *, search=None, ai=None, directory=None, config=None, throttle=None):
    return MiningPipeline(
        db,
        config or _config(),
        session_id=SID,
        owner_id=OWNER,
        search=search or FakeSearch(make_results(*NAMES)),
        ai=ai or FakeAI(),
        directory=directory or FakeDirectory([make_person()]),
        progress=RecordingStore(db),
        throttle=throttle,
    )


def _progress(db) -> MiningProgress:
    return db.query(MiningProgress).filter_by(session_id=SID).one()


# ── Happy path ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_pipeline_saves_enriched_leads(db_session):
    search = FakeSearch(make_results(*NAMES[:3]), linkedin={"Alpha Labs": "https://linkedin.com/company/alpha"})
    ai = FakeAI(score=75)
    pipeline = _pipeline(db_session, search=search, ai=ai)

    result = await pipeline.run(_request())

    assert result.success and not result.cancelled
    assert result.count == 3
    assert result.saved == 3
    assert result.duplicates_skipped == 0
    assert search.search_calls == [('"SaaS" companies UK startup scaleup', 10, "uk")]
    # LinkedIn found by search for Alpha, AI fallback for the other two
    assert ai.infer_calls == ["Beta Works", "Gamma Data"]

    companies = db_session.query(Company).order_by(Company.id).all()
    assert [c.company_name for c in companies] == ["Alpha Labs", "Beta Works", "Gamma Data"]
    alpha = companies[0]
    assert alpha.owner_id == OWNER
    assert alpha.source == "scraping"
    assert alpha.status == "pending_review"
    assert alpha.ai_score == 75
    assert alpha.linkedin_profile == "https://linkedin.com/company/alpha"
    assert alpha.location == "UK"
    assert alpha.public_email == "sam@example.com"
    data = alpha.enrichment_data
    assert data["session_id"] == SID
    assert data["contacts_found"] == 1
    assert data["score_reasoning"] == "Strong fit"
    assert data["data_sources"]["linkedin_url"] == "serper"
    assert data["data_sources"]["industry"] == "openai"
    assert data["data_sources"]["email"] == "apollo"

    kdms = db_session.query(DecisionMaker).filter_by(company_id=alpha.id).all()
    assert len(kdms) == 1
    assert kdms[0].contact_type == "ceo"
    signals = db_session.query(Signal).filter_by(company_id=alpha.id).all()
    assert [(s.signal_type, s.priority) for s in signals] == [("ai_insight", "medium")]

    row = _progress(db_session)
    assert row.status == "completed"
    assert row.progress_percentage == 100
    assert row.results_so_far == 3


@pytest.mark.asyncio
async def test_progress_is_monotonic_and_ends_at_100(db_session):
    pipeline = _pipeline(db_session)
    await pipeline.run(_request())
    pcts = pipeline.progress.percentages
    assert pcts[0] == 5
    assert pcts == sorted(pcts)
    assert pcts[-1] == 100
    assert pipeline.state == "completed"


# ── Failures ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_zero_seeds_fails_session(db_session):
    directory = FakeDirectory([make_person()])
    pipeline = _pipeline(db_session, search=FakeSearch([]), directory=directory)

    result = await pipeline.run(_request())

    assert result.success is False
    assert "No companies found" in result.error
    row = _progress(db_session)
    assert row.status == "failed"
    assert row.results_so_far == 0
    assert "No companies found" in row.error_message
    assert directory.find_calls == []
    assert db_session.query(Company).count() == 0


@pytest.mark.asyncio
async def test_one_gap_fill_failure_keeps_all_candidates(db_session):
    ai = FakeAI(fail_fill_for={"Gamma Data"})
    pipeline = _pipeline(db_session, ai=ai)

    result = await pipeline.run(_request())

    assert result.success
    assert result.count == 5
    assert result.saved == 5
    gamma = next(c for c in pipeline.candidates if c.name == "Gamma Data")
    assert any(e.startswith("enriching_gaps") for e in gamma.errors)
    assert gamma.ai_score == 75


@pytest.mark.asyncio
async def test_scoring_failure_uses_default_score(db_session):
    ai = FakeAI(score=90, fail_score_for={"Beta Works"})
    pipeline = _pipeline(db_session, ai=ai, config=_config(default_score=50))
    await pipeline.run(_request())
    beta = db_session.query(Company).filter_by(company_name="Beta Works").one()
    assert beta.ai_score == 50
    assert db_session.query(Signal).filter_by(company_id=beta.id).count() == 0


@pytest.mark.asyncio
async def test_directory_error_is_isolated(db_session):
    directory = FakeDirectory([make_person()])
    directory.find_people = AsyncMock(side_effect=[RuntimeError("apollo down")] + [[make_person()]] * 4)
    pipeline = _pipeline(db_session, directory=directory)

    result = await pipeline.run(_request())

    assert result.saved == 5
    assert db_session.query(DecisionMaker).count() == 4


# ── KDM gate ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_low_score_skips_contact_discovery(db_session):
    directory = FakeDirectory([make_person()])
    pipeline = _pipeline(db_session, ai=FakeAI(score=39), directory=directory, config=_config(kdm_score_threshold=40))

    result = await pipeline.run(_request())

    assert result.saved == 5
    assert directory.find_calls == []
    assert db_session.query(DecisionMaker).count() == 0


@pytest.mark.asyncio
async def test_contact_discovery_uses_domain_and_titles(db_session):
    directory = FakeDirectory([make_person()])
    pipeline = _pipeline(db_session, search=FakeSearch(make_results("Alpha Labs")), directory=directory,
                         config=_config(max_kdms_per_company=3))
    await pipeline.run(_request())
    domain, titles, max_results = directory.find_calls[0]
    assert domain == "alphalabs.com"
    assert "CEO" in titles
    assert max_results == 3


# ── Dedup ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_existing_company_is_skipped(db_session):
    db_session.add(Company(owner_id=OWNER, company_name="Something Else", website="https://betaworks.com"))
    db_session.add(Company(owner_id="user-2", company_name="Gamma Data", website="gammadata.com"))
    db_session.commit()

    result = await _pipeline(db_session).run(_request())

    assert result.duplicates_skipped == 1
    assert result.saved == 4
    assert result.count == 5
    assert db_session.query(Company).filter_by(owner_id=OWNER).count() == 5


@pytest.mark.asyncio
async def test_same_session_duplicates_saved_once(db_session):
    results = make_results("Alpha Labs") + make_results("Alpha Labs")
    result = await _pipeline(db_session, search=FakeSearch(results)).run(_request())
    assert result.duplicates_skipped == 1
    assert result.saved == 1


@pytest.mark.asyncio
async def test_all_duplicates_completes_with_zero(db_session):
    for name in NAMES:
        db_session.add(Company(owner_id=OWNER, company_name=name))
    db_session.commit()

    result = await _pipeline(db_session).run(_request())

    assert result.success
    assert result.saved == 0
    assert result.duplicates_skipped == 5
    row = _progress(db_session)
    assert row.status == "completed"
    assert row.current_step == "No new unique leads found"


# ── Cancellation ─────────────────────────────────────────────────────


class CancellingSearch(FakeSearch):
    """Cancels the session while resolving the named candidate."""

    def __init__(self, store_factory, cancel_on, *args, **kw):
        super().__init__(*args, **kw)
        self.store_factory = store_factory
        self.cancel_on = cancel_on

    async def resolve_linkedin_profile(self, candidate):
        if candidate.name == self.cancel_on:
            self.store_factory().cancel(SID, OWNER)
        return await super().resolve_linkedin_profile(candidate)


@pytest.mark.asyncio
async def test_cancel_between_candidates(db_session):
    search = CancellingSearch(lambda: ProgressStore(db_session), "Beta Works", make_results(*NAMES))
    ai = FakeAI()
    pipeline = _pipeline(db_session, search=search, ai=ai)

    result = await pipeline.run(_request())

    assert result.success and result.cancelled
    assert result.count == 5
    assert search.resolve_calls == ["Alpha Labs", "Beta Works"]
    assert ai.fill_calls == []
    row = _progress(db_session)
    assert row.status == "cancelled"
    assert row.results_so_far == 5
    assert "cancelled" in row.current_step.lower()
    assert db_session.query(Company).count() == 0


@pytest.mark.asyncio
async def test_cancelled_before_start_does_no_work(db_session):
    store = ProgressStore(db_session)
    store.upsert(SID, MINING_OPERATION, "Mining session queued", 0, owner_id=OWNER)
    store.cancel(SID, OWNER)
    search = FakeSearch(make_results(*NAMES))

    result = await _pipeline(db_session, search=search).run(_request())

    assert result.cancelled
    assert search.search_calls == []


# ── Storage failure ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_storage_failure_returns_leads_with_warning(db_session):
    pipeline = _pipeline(db_session)
    with patch.object(MiningPipeline, "_insert", side_effect=RuntimeError("disk full")):
        result = await pipeline.run(_request())

    assert result.success is True
    assert result.warning
    assert result.database_error == "disk full"
    assert result.count == 5
    assert len(result.leads) == 5
    assert result.saved == 0
    row = _progress(db_session)
    assert row.status == "failed"
    assert row.error_message == "disk full"
    assert db_session.query(Company).count() == 0


# ── Policy ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_auto_approve_high_scores(db_session):
    config = _config(auto_approve_high_score=True, auto_approve_threshold=85)
    await _pipeline(db_session, ai=FakeAI(score=90), config=config).run(_request())
    assert {c.status for c in db_session.query(Company)} == {"approved"}


@pytest.mark.asyncio
async def test_auto_approve_off_by_default(db_session):
    await _pipeline(db_session, ai=FakeAI(score=99)).run(_request())
    assert {c.status for c in db_session.query(Company)} == {"pending_review"}


@pytest.mark.asyncio
async def test_usage_recorded_from_throttle(db_session):
    throttle = Throttle(ThrottlePolicy.unthrottled())
    throttle.calls = {"serper": 6, "openai": 10}
    await _pipeline(db_session, throttle=throttle).run(_request())
    usage = {u.api_name: u.daily_count for u in db_session.query(ApiUsage).filter_by(owner_id=OWNER)}
    assert usage == {"serper": 6, "openai": 10}


# ── Config & session start ───────────────────────────────────────────


def test_config_from_settings_uses_request_limits():
    settings = Settings(serper_api_key="s", openai_api_key="o", apollo_api_key="a", kdm_score_threshold=55)
    request = MiningRequest.model_validate(
        {
            "industry": "SaaS",
            "geography": "US",
            "limit": 4,
            "rateLimits": {
                "serper": {"dailyRequests": 30, "resultsPerQuery": 20},
                "apollo": {"maxCreditsPerCompany": 2, "maxKDMsPerCompany": 3},
            },
        }
    )
    config = MiningConfig.from_settings(settings, request)
    assert config.results_per_query == 20
    assert config.max_kdms_per_company == 3
    assert config.kdm_score_threshold == 55
    assert config.policy.budgets == {"serper": 30, "openai": 200, "apollo": 8}
    assert config.policy.intervals["serper"] == settings.serper_min_interval


def test_config_validate_lists_missing_keys():
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY.*APOLLO_API_KEY"):
        _config(openai_api_key="", apollo_api_key="").validate()


def test_build_pipeline_caps_budget_by_daily_usage(db_session):
    record_usage(db_session, OWNER, "serper", "enhanced_mining", 95)
    pipeline = build_pipeline(
        db_session, _config(), session_id=SID, owner_id=OWNER, daily_limits={"serper": 100}
    )
    assert pipeline.throttle.policy.budgets["serper"] == 5
    assert pipeline.search.throttle is pipeline.throttle
    assert pipeline.directory.throttle is pipeline.throttle


@pytest.mark.asyncio
async def test_start_mining_missing_key_writes_nothing(db_session):
    settings = Settings(serper_api_key="", openai_api_key="o", apollo_api_key="a")
    with pytest.raises(ConfigurationError):
        start_mining(db_session, OWNER, _request(), settings)
    assert db_session.query(MiningProgress).count() == 0


@pytest.mark.asyncio
async def test_start_mining_schedules_run(db_session):
    settings = Settings(serper_api_key="s", openai_api_key="o", apollo_api_key="a")
    with patch("leadminer.services.mining_service._execute_mining", new_callable=AsyncMock) as run:
        session_id = start_mining(db_session, OWNER, _request(), settings)
        await asyncio.sleep(0)

    row = db_session.query(MiningProgress).filter_by(session_id=session_id).one()
    assert row.owner_id == OWNER
    assert row.status == "running"
    run.assert_awaited_once()
    assert run.await_args.args[:2] == (session_id, OWNER)


@pytest.mark.asyncio
async def test_start_mining_rejects_taken_session_id(db_session):
    settings = Settings(serper_api_key="s", openai_api_key="o", apollo_api_key="a")
    ProgressStore(db_session).upsert("shared-id", MINING_OPERATION, "Searching", 40, 2, owner_id="tenant-b")
    request = MiningRequest(industry="SaaS", geography="UK", limit=5, sessionId="shared-id")

    with patch("leadminer.services.mining_service._execute_mining", new_callable=AsyncMock) as run:
        with pytest.raises(SessionConflictError):
            start_mining(db_session, "tenant-a", request, settings)
    run.assert_not_called()

    row = ProgressStore(db_session).get("shared-id")
    assert (row.owner_id, row.current_step, row.progress_percentage) == ("tenant-b", "Searching", 40)


@pytest.mark.asyncio
async def test_crashed_run_marks_progress_failed(db_session, session_factory):
    settings = Settings(serper_api_key="s", openai_api_key="o", apollo_api_key="a")
    crash = AsyncMock(side_effect=RuntimeError("engine unavailable"))
    with patch("leadminer.services.mining_service._execute_mining", crash), patch(
        "leadminer.database.SessionLocal", session_factory
    ):
        session_id = start_mining(db_session, OWNER, _request(), settings)
        for _ in range(3):
            await asyncio.sleep(0)

    db_session.expire_all()
    row = db_session.query(MiningProgress).filter_by(session_id=session_id).one()
    assert row.status == "failed"
    assert "engine unavailable" in row.error_message
