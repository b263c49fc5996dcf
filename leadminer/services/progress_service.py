"""Mining progress store - persisted, polled, and streamed.

One mining_progress row per (session_id, operation_type). The pipeline writes
it after every unit of work; the UI reads it through a single event stream
(watch_progress), where change notifications wake readers early and a
periodic re-read of the same row is the polling fallback.

Business Rules:
- Status is derived: failed if an error is given, completed at >= 100%, else running
- Percentage is clamped to 0-100 and never moves backwards
- A terminal row (completed/failed/cancelled) never changes status again
- completed_at is stamped exactly once, when the row turns terminal
- is_cancelled() fails open (False) so a read error never stalls a run

Called by: services/mining_service.py, routers/mining.py
Depends on: models.MiningProgress
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from ..models import MiningProgress
from ..models.mining import TERMINAL_STATUSES
from ..schemas.mining import ProgressSnapshot

log = logging.getLogger("leadminer.progress")

MINING_OPERATION = "enhanced_mining"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def derive_status(percentage: int, error: str | None) -> str:
    if error:
        return "failed"
    if percentage >= 100:
        return "completed"
    return "running"


class ProgressBroadcaster:
    """In-process change notifications, keyed by session id.

    notify() is safe to call from worker threads (sync route handlers).
    """

    def __init__(self):
        self._subscribers: dict[str, set[tuple[asyncio.AbstractEventLoop, asyncio.Event]]] = {}

    def subscribe(self, session_id: str) -> asyncio.Event:
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._subscribers.setdefault(session_id, set()).add((loop, event))
        return event

    def unsubscribe(self, session_id: str, event: asyncio.Event) -> None:
        subs = self._subscribers.get(session_id)
        if not subs:
            return
        for entry in [s for s in subs if s[1] is event]:
            subs.discard(entry)
        if not subs:
            self._subscribers.pop(session_id, None)

    def notify(self, session_id: str) -> None:
        for loop, event in list(self._subscribers.get(session_id, ())):
            try:
                loop.call_soon_threadsafe(event.set)
            except RuntimeError:
                # Loop already closed; the reader is gone
                pass


broadcaster = ProgressBroadcaster()


class ProgressStore:
    def __init__(self, db: Session, notifier: ProgressBroadcaster | None = None):
        self.db = db
        self.notifier = notifier or broadcaster

    def _row(self, session_id: str, operation_type: str) -> MiningProgress | None:
        return (
            self.db.query(MiningProgress)
            .filter_by(session_id=session_id, operation_type=operation_type)
            .first()
        )

    def upsert(
        self,
        session_id: str,
        operation_type: str,
        step: str,
        percentage: int,
        results: int = 0,
        error: str | None = None,
        *,
        owner_id: str | None = None,
    ) -> MiningProgress | None:
        """Idempotent write keyed by (session_id, operation_type).

        Returns the row, or None if the write itself failed (logged).
        """
        status = derive_status(percentage, error)
        return self._write(session_id, operation_type, step, percentage, results, error, status, owner_id)

    def mark_cancelled(
        self,
        session_id: str,
        operation_type: str,
        step: str = "Mining cancelled",
        results: int = 0,
    ) -> MiningProgress | None:
        """Terminal cancelled write made by the pipeline when it stops."""
        return self._write(session_id, operation_type, step, 0, results, None, "cancelled", None)

    def _write(self, session_id, operation_type, step, percentage, results, error, status, owner_id):
        now = _now()
        pct = max(0, min(100, int(percentage)))
        try:
            row = self._row(session_id, operation_type)
            if row is None:
                row = MiningProgress(
                    session_id=session_id,
                    operation_type=operation_type,
                    owner_id=owner_id,
                    progress_percentage=0,
                    started_at=now,
                )
                self.db.add(row)
            elif row.is_terminal and row.status != status:
                log.debug(
                    "Ignoring %s update for %s: already %s", status, session_id, row.status
                )
                return row

            if owner_id and not row.owner_id:
                row.owner_id = owner_id
            row.status = status
            row.current_step = step[:500] if step else step
            row.progress_percentage = max(row.progress_percentage or 0, pct)
            row.results_so_far = results or 0
            row.error_message = error
            row.updated_at = now
            if status in TERMINAL_STATUSES and row.completed_at is None:
                row.completed_at = now
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            log.error("Progress update failed for %s: %s", session_id, e)
            return None

        self.notifier.notify(session_id)
        return row

    def is_cancelled(self, session_id: str) -> bool:
        try:
            return (
                self.db.query(MiningProgress.id)
                .filter_by(session_id=session_id, status="cancelled")
                .first()
                is not None
            )
        except Exception as e:
            log.warning("Cancellation check failed for %s: %s", session_id, e)
            return False

    def cancel(self, session_id: str, owner_id: str) -> bool:
        """User-requested cancellation of a running session. True if a row changed."""
        rows = (
            self.db.query(MiningProgress)
            .filter_by(session_id=session_id, owner_id=owner_id, status="running")
            .all()
        )
        if not rows:
            return False
        now = _now()
        for row in rows:
            row.status = "cancelled"
            row.current_step = "Cancellation requested"
            row.updated_at = now
            row.completed_at = now
        self.db.commit()
        log.info("Mining session %s cancelled by %s", session_id, owner_id)
        self.notifier.notify(session_id)
        return True

    def get(self, session_id: str, operation_type: str | None = None) -> MiningProgress | None:
        q = self.db.query(MiningProgress).filter_by(session_id=session_id)
        if operation_type:
            q = q.filter_by(operation_type=operation_type)
        return q.order_by(MiningProgress.updated_at.desc()).first()

    def cleanup(self, owner_id: str, older_than_days: int = 7) -> int:
        """Delete this tenant's progress rows started before the cutoff."""
        cutoff = _now() - timedelta(days=older_than_days)
        deleted = (
            self.db.query(MiningProgress)
            .filter(MiningProgress.owner_id == owner_id, MiningProgress.started_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        log.info("Cleaned up %d old mining sessions for %s", deleted, owner_id)
        return deleted

    def fail_stale(self, max_age_minutes: int = 60) -> int:
        """Mark running rows with no update since the cutoff as failed."""
        cutoff = _now() - timedelta(minutes=max_age_minutes)
        rows = (
            self.db.query(MiningProgress)
            .filter(MiningProgress.status == "running", MiningProgress.updated_at < cutoff)
            .all()
        )
        now = _now()
        for row in rows:
            row.status = "failed"
            row.error_message = "Session abandoned (no progress updates)"
            row.updated_at = now
            row.completed_at = now
        if rows:
            self.db.commit()
            for row in rows:
                self.notifier.notify(row.session_id)
        return len(rows)


async def watch_progress(
    session_factory,
    session_id: str,
    *,
    poll_interval: float = 2.0,
    operation_type: str | None = None,
    notifier: ProgressBroadcaster | None = None,
):
    """Yield a ProgressSnapshot every time the session's row changes.

    Stops after yielding a terminal snapshot. Waits for a change
    notification, re-reading the row at least every poll_interval seconds.
    """
    notifier = notifier or broadcaster
    event = notifier.subscribe(session_id)
    last = None
    try:
        while True:
            with session_factory() as db:
                row = ProgressStore(db, notifier).get(session_id, operation_type)
                snap = ProgressSnapshot.model_validate(row) if row else None

            if snap is not None:
                key = (
                    snap.status,
                    snap.progress_percentage,
                    snap.current_step,
                    snap.results_so_far,
                    snap.updated_at,
                )
                if key != last:
                    last = key
                    yield snap
                if snap.status in TERMINAL_STATUSES:
                    return

            try:
                await asyncio.wait_for(event.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                pass
            event.clear()
    finally:
        notifier.unsubscribe(session_id, event)
