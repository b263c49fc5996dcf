"""
conftest.py - Shared Test Fixtures for LeadMiner

Provides an in-memory SQLite database, a FastAPI TestClient with the DB
dependency overridden, and factory fixtures for core models. Fake
provider adapters live in fakes.py.

Business Rules:
- All tests run against an isolated in-memory DB
- No test reaches a real external API
- Each test function gets fresh tables

Called by: all test files via pytest autodiscovery
Depends on: leadminer.models (Base), leadminer.database (get_db), tests/fakes.py
"""

import os

# Must be set before importing leadminer modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("SERPER_API_KEY", "test-serper-key")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("APOLLO_API_KEY", "test-apollo-key")

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadminer.models import Base, Company, DecisionMaker, Signal

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default - turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


OWNER = "user-1"


@pytest.fixture()
def owner_id() -> str:
    return OWNER


@pytest.fixture()
def test_company(db_session: Session) -> Company:
    """A stored company scoring above the KDM threshold."""
    co = Company(
        owner_id=OWNER,
        company_name="Acme Analytics",
        website="https://www.acme-analytics.com",
        industry="SaaS",
        ai_score=72,
        status="pending_review",
        source="scraping",
        enrichment_data={},
    )
    db_session.add(co)
    db_session.commit()
    db_session.refresh(co)
    return co


@pytest.fixture()
def test_kdm(db_session: Session, test_company: Company) -> DecisionMaker:
    kdm = DecisionMaker(
        company_id=test_company.id,
        first_name="Jane",
        last_name="Doe",
        designation="CEO",
        email="jane@acme-analytics.com",
        linkedin_profile="https://linkedin.com/in/janedoe",
        contact_type="ceo",
    )
    db_session.add(kdm)
    db_session.commit()
    db_session.refresh(kdm)
    return kdm


@pytest.fixture()
def test_signal(db_session: Session, test_company: Company) -> Signal:
    sig = Signal(
        company_id=test_company.id,
        signal_type="funding",
        signal_title="Acme Analytics raises $10M Series A",
        signal_url="https://news.example.com/acme-series-a",
        priority="high",
    )
    db_session.add(sig)
    db_session.commit()
    db_session.refresh(sig)
    return sig


@pytest.fixture()
def client(db_session: Session):
    """FastAPI TestClient with get_db overridden to the test session."""
    from leadminer.database import get_db
    from leadminer.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    with patch("leadminer.routers.mining.SessionLocal", TestSessionLocal):
        c = TestClient(app)
        c.headers.update({"X-User-Id": OWNER})
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def session_factory():
    """Session factory bound to the test engine (for code that opens its own sessions)."""
    return TestSessionLocal
