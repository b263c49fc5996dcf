"""Mining API - start a session, follow its progress, cancel, clean up.

Progress is delivered as one server-sent event stream per session
(/events). /progress returns the same snapshot for clients that poll.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal, get_db
from ..dependencies import get_owner_id
from ..exceptions import ConfigurationError, SessionConflictError
from ..rate_limit import limiter
from ..schemas.mining import MiningRequest, MiningStartResponse, ProgressSnapshot
from ..services.mining_service import start_mining
from ..services.progress_service import ProgressStore, watch_progress

router = APIRouter(tags=["mining"])
log = logging.getLogger("leadminer.routers.mining")


def _owned_progress(db: Session, session_id: str, owner_id: str):
    row = ProgressStore(db).get(session_id)
    if not row or (row.owner_id and row.owner_id != owner_id):
        raise HTTPException(404, "Mining session not found")
    return row


@router.post("/api/mining/start", response_model=MiningStartResponse)
@limiter.limit(settings.rate_limit_mining)
async def api_start_mining(
    request: Request,
    body: MiningRequest,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    """Validate configuration and launch a background mining session."""
    try:
        session_id = start_mining(db, owner_id, body)
    except ConfigurationError as e:
        log.error("Mining not started: %s", e)
        raise HTTPException(503, str(e))
    except SessionConflictError as e:
        raise HTTPException(409, str(e))
    return MiningStartResponse(session_id=session_id)


@router.get("/api/mining/{session_id}/progress", response_model=ProgressSnapshot)
def api_mining_progress(
    session_id: str,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    return ProgressSnapshot.model_validate(_owned_progress(db, session_id, owner_id))


@router.get("/api/mining/{session_id}/events")
async def api_mining_events(
    session_id: str,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    """Server-sent events: one `progress` event per change, ending at a terminal state."""
    _owned_progress(db, session_id, owner_id)

    async def stream():
        async for snap in watch_progress(
            SessionLocal, session_id, poll_interval=settings.progress_poll_seconds
        ):
            payload = json.dumps(snap.model_dump(mode="json"))
            yield f"event: progress\ndata: {payload}\n\n"

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/api/mining/{session_id}/cancel")
def api_cancel_mining(
    session_id: str,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    if not ProgressStore(db).cancel(session_id, owner_id):
        raise HTTPException(400, "No running mining session found to cancel")
    return {"status": "cancelled", "session_id": session_id}


@router.post("/api/mining/cleanup")
def api_cleanup_mining(
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    """Delete old progress rows and fail sessions that stopped reporting."""
    store = ProgressStore(db)
    stale = store.fail_stale(settings.stale_session_minutes)
    deleted = store.cleanup(owner_id, settings.progress_retention_days)
    return {"deleted": deleted, "stale_failed": stale}
