"""Rate limiting - inbound (slowapi) and outbound (per-provider throttle).

Inbound: a shared slowapi Limiter guards the mining trigger endpoint.

Outbound: each mining session gets one Throttle, injected into every
adapter. Before each external call the adapter awaits acquire(provider),
which enforces the provider's minimum interval and per-session request
budget. Business code never sleeps directly.

Daily usage per tenant is persisted in api_usage so budgets survive across
sessions.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from .config import settings
from .exceptions import BudgetExhausted

log = logging.getLogger("leadminer.rate_limit")

limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit_enabled,
)


@dataclass
class ThrottlePolicy:
    """Minimum seconds between calls and max calls per session, per provider.

    A budget of None means unlimited.
    """

    intervals: dict[str, float] = field(default_factory=dict)
    budgets: dict[str, int | None] = field(default_factory=dict)

    @classmethod
    def unthrottled(cls) -> "ThrottlePolicy":
        return cls()


class Throttle:
    def __init__(self, policy: ThrottlePolicy, *, clock=time.monotonic, sleep=asyncio.sleep):
        self.policy = policy
        self._clock = clock
        self._sleep = sleep
        self._last: dict[str, float] = {}
        self.calls: dict[str, int] = {}

    def remaining(self, provider: str) -> int | None:
        budget = self.policy.budgets.get(provider)
        if budget is None:
            return None
        return max(budget - self.calls.get(provider, 0), 0)

    async def acquire(self, provider: str) -> None:
        """Wait for the provider's slot. Raises BudgetExhausted when spent."""
        if self.remaining(provider) == 0:
            raise BudgetExhausted(provider)

        interval = self.policy.intervals.get(provider, 0)
        last = self._last.get(provider)
        if interval > 0 and last is not None:
            wait = interval - (self._clock() - last)
            if wait > 0:
                await self._sleep(wait)

        self._last[provider] = self._clock()
        self.calls[provider] = self.calls.get(provider, 0) + 1


# ── Persisted daily usage ───────────────────────────────────────────────


def _usage_row(db: Session, owner_id: str, api_name: str, day: date):
    from .models import ApiUsage

    return (
        db.query(ApiUsage)
        .filter_by(owner_id=owner_id, api_name=api_name, date=day)
        .first()
    )


def remaining_daily(db: Session, owner_id: str, api_name: str, daily_limit: int) -> int:
    """Calls left today for this tenant and provider. Fails open to the full limit."""
    try:
        row = _usage_row(db, owner_id, api_name, datetime.now(timezone.utc).date())
    except Exception as e:
        log.warning("Usage lookup failed for %s/%s: %s", owner_id, api_name, e)
        return daily_limit
    used = row.daily_count if row else 0
    return max(daily_limit - used, 0)


def record_usage(db: Session, owner_id: str, api_name: str, operation: str, count: int = 1) -> None:
    """Add count calls to today's usage row (upsert)."""
    from .models import ApiUsage

    if count <= 0:
        return
    today = datetime.now(timezone.utc).date()
    try:
        row = _usage_row(db, owner_id, api_name, today)
        if row is None:
            row = ApiUsage(owner_id=owner_id, api_name=api_name, date=today, daily_count=0)
            db.add(row)
        row.daily_count = (row.daily_count or 0) + count
        row.last_operation = operation
        db.commit()
    except Exception as e:
        db.rollback()
        log.error("Failed to record %s usage for %s: %s", api_name, owner_id, e)
