"""Lead API - duplicate checks and on-demand per-company operations."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..config import settings
from ..connectors.apollo_client import ApolloClient
from ..connectors.serper_client import SerperClient
from ..database import get_db
from ..dependencies import get_owner_id, get_owned_company, owned_company
from ..exceptions import ConfigurationError
from ..models import Company
from ..rate_limit import Throttle, ThrottlePolicy, record_usage, remaining_daily
from ..schemas.dedup import (
    CompanyDuplicateRequest,
    DuplicateCheckResponse,
    KDMDuplicateRequest,
    SignalDuplicateRequest,
)
from ..services import lead_service
from ..services.ai_gap_filler import AI_ERRORS, AIGapFiller
from ..services.dedup_service import check_company_duplicate, check_kdm_duplicate, check_signal_duplicate
from ..utils.openai_client import OpenAIClient

router = APIRouter(tags=["leads"])
log = logging.getLogger("leadminer.routers.leads")


# ── Duplicate checks ─────────────────────────────────────────────────


@router.post("/api/companies/check-duplicate", response_model=DuplicateCheckResponse)
def api_check_company_duplicate(
    body: CompanyDuplicateRequest,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    return check_company_duplicate(db, owner_id, body.company_name, body.website, body.exclude_id).to_dict()


@router.post("/api/kdms/check-duplicate", response_model=DuplicateCheckResponse)
def api_check_kdm_duplicate(
    body: KDMDuplicateRequest,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    if not body.email and not body.linkedin_profile:
        raise HTTPException(400, "email or linkedin_profile is required")
    if body.company_id is not None:
        get_owned_company(body.company_id, owner_id, db)
    return check_kdm_duplicate(db, body.email, body.linkedin_profile, body.company_id).to_dict()


@router.post("/api/signals/check-duplicate", response_model=DuplicateCheckResponse)
def api_check_signal_duplicate(
    body: SignalDuplicateRequest,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    get_owned_company(body.company_id, owner_id, db)
    return check_signal_duplicate(
        db, body.company_id, body.signal_title, body.signal_type, body.signal_url
    ).to_dict()


# ── Per-company operations ───────────────────────────────────────────


def _throttle(db: Session, owner_id: str) -> Throttle:
    return Throttle(
        ThrottlePolicy(
            intervals={
                "serper": settings.serper_min_interval,
                "openai": settings.openai_min_interval,
                "apollo": settings.apollo_min_interval,
            },
            budgets={
                "serper": remaining_daily(db, owner_id, "serper", settings.serper_daily_limit),
                "openai": remaining_daily(db, owner_id, "openai", settings.openai_daily_limit),
                "apollo": remaining_daily(db, owner_id, "apollo", settings.apollo_daily_limit),
            },
        )
    )


def _record(db: Session, owner_id: str, throttle: Throttle, operation: str) -> None:
    for provider, count in throttle.calls.items():
        record_usage(db, owner_id, provider, operation, count)


@router.post("/api/companies/{company_id}/kdms/discover")
async def api_discover_kdms(
    max_credits: int = 10,
    company: Company = Depends(owned_company),
    db: Session = Depends(get_db),
):
    throttle = _throttle(db, company.owner_id)
    try:
        directory = ApolloClient(settings.apollo_api_key, throttle=throttle)
    except ConfigurationError as e:
        raise HTTPException(503, str(e))
    result = await lead_service.discover_kdms(
        db, company, directory, max_credits=max_credits, max_kdms=settings.max_kdms_per_company
    )
    _record(db, company.owner_id, throttle, "kdm_discovery")
    return result


@router.post("/api/companies/{company_id}/score")
async def api_score_company(
    company: Company = Depends(owned_company),
    db: Session = Depends(get_db),
):
    throttle = _throttle(db, company.owner_id)
    try:
        client = OpenAIClient(settings.openai_api_key, model=settings.openai_model, throttle=throttle)
    except ConfigurationError as e:
        raise HTTPException(503, str(e))
    try:
        result = await lead_service.score_company(db, company, AIGapFiller(client))
    except AI_ERRORS as e:
        log.error("Scoring failed for company %d: %s", company.id, e)
        raise HTTPException(502, "AI scoring failed")
    finally:
        _record(db, company.owner_id, throttle, "lead_scoring")
    return result


@router.post("/api/companies/{company_id}/signals/generate")
async def api_generate_signals(
    company: Company = Depends(owned_company),
    db: Session = Depends(get_db),
):
    throttle = _throttle(db, company.owner_id)
    try:
        search = SerperClient(settings.serper_api_key, throttle=throttle)
    except ConfigurationError as e:
        raise HTTPException(503, str(e))
    result = await lead_service.generate_signals(db, company, search)
    _record(db, company.owner_id, throttle, "signal_generation")
    return result


@router.post("/api/companies/{company_id}/enrich")
async def api_enrich_company(
    company: Company = Depends(owned_company),
    db: Session = Depends(get_db),
):
    throttle = _throttle(db, company.owner_id)
    try:
        directory = ApolloClient(settings.apollo_api_key, throttle=throttle)
    except ConfigurationError as e:
        raise HTTPException(503, str(e))
    result = await lead_service.enrich_company(db, company, directory)
    _record(db, company.owner_id, throttle, "company_enrichment")
    if not result["success"]:
        raise HTTPException(404, result["message"])
    return result
