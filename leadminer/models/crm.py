"""CRM models - Companies, Decision Makers, and Signals."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .base import Base

COMPANY_STATUSES = ("pending_review", "approved", "rejected", "enriched")
COMPANY_SOURCES = ("manual", "apollo", "linkedin", "scraping")


class Company(Base):
    """A prospective customer company, owned by one tenant."""

    __tablename__ = "companies"
    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)

    company_name = Column(String(255), nullable=False)
    website = Column(String(500))
    industry = Column(String(255))
    employee_size = Column(String(50))  # "50", "100-500", "1,200"
    employee_size_numeric = Column(Integer)
    founded = Column(Integer)
    description = Column(Text)
    public_email = Column(String(255))
    public_phone = Column(String(100))
    linkedin_profile = Column(String(500))
    location = Column(String(255))

    ai_score = Column(Integer, default=0)  # 0-100
    status = Column(String(20), nullable=False, default="pending_review")
    source = Column(String(20), nullable=False, default="manual")
    enrichment_data = Column(JSON, default=dict)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    decision_makers = relationship("DecisionMaker", back_populates="company")
    signals = relationship("Signal", back_populates="company")

    __table_args__ = (
        Index("ix_companies_owner", "owner_id"),
        Index("ix_companies_owner_status", "owner_id", "status"),
    )


class DecisionMaker(Base):
    """Key decision maker (KDM) at a company. Never cascade-deleted."""

    __tablename__ = "decision_makers"
    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)

    first_name = Column(String(255), nullable=False, default="")
    last_name = Column(String(255), nullable=False, default="")
    designation = Column(String(255))
    email = Column(String(255))
    email_status = Column(String(20))
    phone = Column(String(100))
    linkedin_profile = Column(String(500))
    facebook_profile = Column(String(500))
    contact_type = Column(String(20), default="kdm")  # kdm, influencer, gatekeeper, ceo, coo, hro
    confidence_score = Column(Integer, default=0)  # 0-100

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    company = relationship("Company", back_populates="decision_makers")

    __table_args__ = (
        Index("ix_decision_makers_company", "company_id"),
        Index("ix_decision_makers_email", "email"),
    )


class Signal(Base):
    """Buying signal detected for a company (funding, hiring, AI insight...)."""

    __tablename__ = "signals"
    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)

    signal_type = Column(String(50), nullable=False)
    signal_title = Column(String(500), nullable=False)
    signal_description = Column(Text)
    signal_url = Column(String(1000))
    priority = Column(String(10), nullable=False, default="medium")  # high, medium, low
    detected_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    processed = Column(Boolean, default=False)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    company = relationship("Company", back_populates="signals")

    __table_args__ = (
        Index("ix_signals_company_type", "company_id", "signal_type"),
    )
