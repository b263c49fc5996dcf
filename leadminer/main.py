"""
LeadMiner - Lead discovery and enrichment API

Wires the routers, inbound rate limiting and logging into one FastAPI app.

Called by: uvicorn leadminer.main:app
Depends on: routers, logging_config, rate_limit, http_client
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import __version__
from .config import settings
from .database import SessionLocal
from .http_client import close_clients
from .logging_config import setup_logging
from .rate_limit import limiter
from .routers import leads, mining
from .services.progress_service import ProgressStore

log = logging.getLogger("leadminer.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    try:
        with SessionLocal() as db:
            stale = ProgressStore(db).fail_stale(settings.stale_session_minutes)
        if stale:
            log.warning("Marked %d abandoned mining sessions as failed", stale)
    except Exception as e:
        log.error("Stale session sweep failed: %s", e)
    log.info("LeadMiner %s started", __version__)
    yield
    await close_clients()


app = FastAPI(title="LeadMiner", version=__version__, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(mining.router)
app.include_router(leads.router)


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}
