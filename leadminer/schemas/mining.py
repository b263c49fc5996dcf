"""schemas/mining.py - Mining session requests, results and progress snapshots."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SerperLimits(_CamelModel):
    daily_requests: int = Field(default=100, ge=1, alias="dailyRequests")
    results_per_query: int = Field(default=10, ge=1, le=100, alias="resultsPerQuery")


class OpenAILimits(_CamelModel):
    daily_requests: int = Field(default=200, ge=1, alias="dailyRequests")
    max_tokens_per_request: int = Field(default=500, ge=50, le=4000, alias="maxTokensPerRequest")


class ApolloLimits(_CamelModel):
    max_credits_per_company: int = Field(default=1, ge=1, alias="maxCreditsPerCompany")
    max_kdms_per_company: int = Field(default=2, ge=1, le=25, alias="maxKDMsPerCompany")


class RateLimits(_CamelModel):
    serper: SerperLimits = Field(default_factory=SerperLimits)
    openai: OpenAILimits = Field(default_factory=OpenAILimits)
    apollo: ApolloLimits = Field(default_factory=ApolloLimits)


class MiningRequest(_CamelModel):
    industry: str = Field(..., min_length=1, max_length=200)
    geography: str = Field(..., min_length=1, max_length=100)
    limit: int = Field(default=10, ge=1, le=100)
    rate_limits: RateLimits = Field(default_factory=RateLimits, alias="rateLimits")
    session_id: str | None = Field(default=None, alias="sessionId", max_length=64)


class MiningStartResponse(BaseModel):
    session_id: str


class MiningResult(BaseModel):
    """Outcome of one mining run.

    success=False only for fatal errors (no seed data, unexpected crash).
    A storage failure is success=True with warning/database_error set.
    Cancellation is success=True, cancelled=True.
    """

    success: bool
    session_id: str
    cancelled: bool = False
    leads: list[dict] = Field(default_factory=list)
    count: int = 0
    saved: int = 0
    duplicates_skipped: int = 0
    warning: str | None = None
    database_error: str | None = None
    error: str | None = None
    sources_used: dict[str, bool] = Field(default_factory=dict)


class ProgressSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    operation_type: str
    status: str
    current_step: str | None = None
    progress_percentage: int = 0
    results_so_far: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
