"""Mining models - session progress and external API usage."""

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .base import Base

TERMINAL_STATUSES = ("completed", "failed", "cancelled")


class MiningProgress(Base):
    """One row per (session_id, operation_type). Polled and streamed by the UI."""

    __tablename__ = "mining_progress"
    id = Column(Integer, primary_key=True)
    session_id = Column(String(64), nullable=False)
    operation_type = Column(String(50), nullable=False, default="enhanced_mining")
    owner_id = Column(String(64))

    status = Column(String(20), nullable=False, default="running")
    current_step = Column(String(500))
    progress_percentage = Column(Integer, nullable=False, default=0)
    results_so_far = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)

    started_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    completed_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("session_id", "operation_type", name="uq_mining_progress_session_op"),
        Index("ix_mining_progress_owner_started", "owner_id", "started_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ApiUsage(Base):
    """Daily external API call counts per tenant."""

    __tablename__ = "api_usage"
    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)
    api_name = Column(String(50), nullable=False)
    date = Column(Date, nullable=False)
    daily_count = Column(Integer, nullable=False, default=0)
    last_operation = Column(String(100))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "api_name", "date", name="uq_api_usage_owner_api_date"),
    )
